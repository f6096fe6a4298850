"""Core Layer — entity graph, relation resolution and error types; no IO, no SQLAlchemy.

Invariants:
    - No module in core/ imports from services/, api/, infrastructure/, or db/
"""
