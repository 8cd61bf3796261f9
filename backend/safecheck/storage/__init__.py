"""
storage — Persistence for check-ins, queued messages and contacts.

Sub-modules:
    base    — Store interfaces the core depends on
    memory  — Lock-protected in-memory implementations
    sql     — SQLAlchemy implementations (checkins, queued_messages tables)
"""
