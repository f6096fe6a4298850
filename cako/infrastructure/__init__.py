"""Infrastructure Layer — persistence handle and logging setup.

Invariants:
    - Infrastructure never imports from services/
    - All SQLAlchemy errors mapped to Cako errors at this boundary
"""
