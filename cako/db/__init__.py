"""Schema materialization — entity graph to SQLAlchemy tables and mapped records."""
