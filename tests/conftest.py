from __future__ import annotations

from datetime import datetime, timezone

import pytest

import onboarding
from models import AppState

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
TODAY = NOW.date()

FAMILY = [
    {"name": "Asha", "dob": "1985-03-02", "role": "Admin", "educationLevel": "Masters"},
    {"name": "Kabir", "dob": "2014-01-15", "role": "User"},
]


@pytest.fixture
def family_state() -> AppState:
    """A set-up library: two rooms, a Main Shelf, the starter books and two users."""
    return onboarding.complete_setup(AppState(), FAMILY, now=NOW, today=TODAY)
