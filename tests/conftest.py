from __future__ import annotations

import pytest

from selfheal.config.schema import HealingConfig
from selfheal.storage.repository import IN_MEMORY, SelectorRepository


@pytest.fixture()
def repository():
    store = SelectorRepository(IN_MEMORY)
    store.initialize()
    yield store
    store.close()


@pytest.fixture()
def healing_config():
    return HealingConfig(mode="auto", confidence_threshold=0.5, max_attempts=3)
