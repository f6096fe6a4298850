"""API Layer — route binding and FastAPI error handlers.

Invariants:
    - Routes reach the server only through route_binder.bind at view load
"""
