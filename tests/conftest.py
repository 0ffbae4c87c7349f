"""
Shared pytest fixtures.
"""

import pytest
from fakes import NOW, FakeEventStore

from ooosync.sync.reconciler import Reconciler


@pytest.fixture
def store() -> FakeEventStore:
    return FakeEventStore(now=NOW)


@pytest.fixture
def reconciler(store: FakeEventStore) -> Reconciler:
    return Reconciler(store, clock=lambda: NOW)
