from __future__ import annotations

import pytest

from safeharbor.core.config import get_settings
from safeharbor.persistence.object_store import ObjectStore
from safeharbor.services.auth.sessions import SessionManager
from safeharbor.tests.utils.builders import make_sessions, make_store


@pytest.fixture(autouse=True)
def reset_settings_cache() -> None:
    # Settings are cached per process; clear so env overrides in one test do not leak.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def store() -> ObjectStore:
    return make_store()


@pytest.fixture
def sessions(store: ObjectStore) -> SessionManager:
    return make_sessions(store)
