"""
Account management: user CRUD and the owned Address sub-resource.
"""
