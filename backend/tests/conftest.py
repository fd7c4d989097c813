"""Shared test fixtures and configuration."""
from datetime import datetime

import pytest

from console.schemas.caller import Caller
from grant_helpers import NOW


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def alice() -> Caller:
    return Caller(email="alice@example.com", groups=[])


@pytest.fixture
def bob() -> Caller:
    return Caller(email="bob@example.com", groups=["eng"])
