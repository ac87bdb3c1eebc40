"""Shared test fixtures for planner tests."""

import sys
from datetime import datetime
from pathlib import Path

import pytest

# Ensure the repo root (pkg/, planner_server.py) is importable
sys.path.insert(0, str(Path(__file__).parent.parent))

from pkg.planner.state import AppState
from pkg.planner.store import PlannerStore

# Fixed wall clock for every view computation: Tuesday, 2024-01-02 10:00 (naive local)
NOW = datetime(2024, 1, 2, 10, 0, 0)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "planner.db")


@pytest.fixture
def store(db_path):
    return PlannerStore(db_path)


@pytest.fixture
def state(store):
    return AppState(store, clock=lambda: NOW).load_data()
