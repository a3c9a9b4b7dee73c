from app.ums import create_app

app = create_app()
