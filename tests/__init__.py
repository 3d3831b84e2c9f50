"""
Sparkle Gamification Test Suite
===============================

Test Organization
-----------------
- tests/unit/          : Pure logic and mocked collaborators (no database)
- tests/integration/   : Whole operations against a temporary SQLite file;
                         ``slow`` tests use PostgreSQL and Redis containers
- tests/factories.py   : Catalogue data and host activity row helpers

Run ``pytest -m "not slow"`` to skip the container-backed tests.
"""
