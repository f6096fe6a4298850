"""Pydantic Schemas — validation of relation descriptors and handler declarations.

Invariants:
    - Schemas validate at the registration boundary (define_relation, define_controller)
"""
