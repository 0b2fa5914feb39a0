"""
Recall Scheduler Test Suite

Test Structure:
    tests/
    ├── conftest.py          # Shared fixtures (env, SQLite sessions, mocks)
    ├── factories.py         # Seed helpers for learners, decks, states, events
    ├── unit/                # Unit tests (SQLite or mocks, no external services)
    └── integration/         # Integration tests (require PostgreSQL)

Running Tests:
    # Run all tests
    pytest backend/tests/ -v

    # Run only unit tests (fast, no dependencies)
    pytest backend/tests/unit/ -v

    # Run only integration tests (requires a PostgreSQL test database)
    pytest backend/tests/integration/ -v -m integration
"""
