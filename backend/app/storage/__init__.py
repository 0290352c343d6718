"""
storage — Persistence contracts and their implementations.

Sub-modules:
    base    — Directory / Store abstract contracts
    memory  — in-process implementations (tests, local dev)
    tables  — SQLAlchemy ORM tables
    sql     — SQLAlchemy asyncio implementations
"""
