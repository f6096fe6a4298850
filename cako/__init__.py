"""Cako — thin MVC composition layer over FastAPI and SQLAlchemy.

Invariants:
    - Package root contains no executable code (import side-effects prohibited)

Design Decisions:
    - Empty __init__.py: explicit imports only (`from cako.app import Cako`)
"""
