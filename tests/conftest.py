"""Pytest configuration and shared fixtures.

This module provides fixtures for testing the circulation tracker,
including an in-memory database, a controllable clock and sample items.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Generator

import pytest

from libcirc.tracker.auth import AllowAllAuthorizer
from libcirc.tracker.config import reset_config
from libcirc.tracker.db.schemas import ItemCreate, ItemResponse, ItemType
from libcirc.tracker.db.sqlite import Database, reset_db
from libcirc.tracker.ledger import BorrowerLedger
from libcirc.tracker.lending import CirculationEngine
from libcirc.tracker.policy import PolicyBook, reset_policies
from libcirc.tracker.registry import ItemRegistry
from libcirc.tracker.stats import CirculationAnalytics

NOW = datetime(2025, 3, 3, 12, 0, tzinfo=timezone.utc)

ENV_VARS = (
    "LIBCIRC_DB_PATH",
    "LIBCIRC_POLICY_FILE",
    "LIBCIRC_LIBRARIANS",
    "LIBCIRC_LOG_LEVEL",
    "LIBCIRC_RETRY_MAX",
    "LIBCIRC_RETRY_DELAY",
    "LIBCIRC_BUSY_TIMEOUT",
)


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


# ============================================================================
# Global State
# ============================================================================


@pytest.fixture(autouse=True)
def clean_globals() -> Generator[None, None, None]:
    """Reset global config, database and policies around every test."""
    saved = {name: os.environ.pop(name) for name in ENV_VARS if name in os.environ}
    reset_config()
    reset_db()
    reset_policies()
    yield
    reset_config()
    reset_db()
    reset_policies()
    for name in ENV_VARS:
        os.environ.pop(name, None)
    os.environ.update(saved)


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def now() -> datetime:
    """The instant the test clock starts at."""
    return NOW


@pytest.fixture
def clock() -> FrozenClock:
    """A clock frozen at NOW."""
    return FrozenClock()


@pytest.fixture
def db() -> Database:
    """Create an in-memory database for testing."""
    database = Database(":memory:", busy_timeout=1.0)
    database.create_tables()
    return database


@pytest.fixture
def policies() -> PolicyBook:
    """Default borrowing policies."""
    return PolicyBook()


@pytest.fixture
def registry(db: Database, clock: FrozenClock) -> ItemRegistry:
    """Create an ItemRegistry with test database."""
    return ItemRegistry(db, clock=clock, authorizer=AllowAllAuthorizer())


@pytest.fixture
def ledger(db: Database) -> BorrowerLedger:
    """Create a BorrowerLedger with test database."""
    return BorrowerLedger(db)


@pytest.fixture
def engine(db, policies, registry, ledger, clock) -> CirculationEngine:
    """Create a CirculationEngine with test database."""
    return CirculationEngine(
        db,
        policies=policies,
        registry=registry,
        ledger=ledger,
        clock=clock,
        max_retries=3,
        initial_backoff=0.0,
    )


@pytest.fixture
def analytics(db: Database, clock: FrozenClock) -> CirculationAnalytics:
    """Create CirculationAnalytics with test database."""
    return CirculationAnalytics(db, clock=clock)


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def make_item(registry: ItemRegistry):
    """Factory registering an available item."""

    def _make(
        code: str,
        item_type: ItemType = ItemType.BOOK,
        name: str = "",
        author: str = "Test Author",
    ) -> ItemResponse:
        return registry.register_item(
            "librarian",
            ItemCreate(
                code=code,
                item_type=item_type,
                name=name or f"Item {code}",
                author=author,
            ),
        )

    return _make


@pytest.fixture
def book(make_item) -> ItemResponse:
    """A single available book, BK-001."""
    return make_item("BK-001", ItemType.BOOK, name="The Pragmatic Programmer")


@pytest.fixture
def sample_items(make_item) -> list[ItemResponse]:
    """A small mixed collection."""
    return [
        make_item("BK-001", ItemType.BOOK, name="Dune"),
        make_item("BK-002", ItemType.BOOK, name="Hyperion"),
        make_item("BK-003", ItemType.BOOK, name="Foundation"),
        make_item("BK-004", ItemType.BOOK, name="Neuromancer"),
        make_item("DVD-001", ItemType.DVD, name="Metropolis"),
        make_item("EQ-001", ItemType.EQUIPMENT, name="Projector"),
    ]
