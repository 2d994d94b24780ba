"""
Test suite for CareLink Scheduling.

Tests run against a temporary SQLite database built through the
application factory; see conftest.py for fixtures.
"""
