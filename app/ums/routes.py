from flask import Blueprint, jsonify

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    return jsonify({"ok": True})


@bp.get("/healthz")
def healthz():
    # Plain-text variant for load balancers.
    return "ok", 200, {"Content-Type": "text/plain; charset=utf-8"}
