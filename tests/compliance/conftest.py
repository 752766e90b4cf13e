"""Fixtures for compliance automation tests.

Every run uses a fixed reference time and in-memory collaborators, so the
tests are deterministic and offline.
"""

import pytest

from agents.compliance.catalog import load_catalog
from agents.compliance.clients import InMemoryEntitySource
from agents.compliance.config import AutomationConfig
from agents.compliance.dto import EntityType
from agents.compliance.ledger import InMemoryLedger
from agents.compliance.notifiers import LogNotifier
from agents.compliance.playbooks import AutomationContext
from agents.compliance.stores import InMemoryAlertStore, InMemoryTaskStore
from tests.compliance.factories import NOW, TODAY, make_agent


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def config():
    """Defaults without environment overrides."""
    return AutomationConfig()


@pytest.fixture
def catalog():
    return load_catalog()


@pytest.fixture
def source():
    return InMemoryEntitySource({EntityType.AGENT: [make_agent()]})


@pytest.fixture
def notifier():
    return LogNotifier(echo=False)


@pytest.fixture
def context(config, catalog, source, notifier):
    """In-memory automation context."""
    return AutomationContext(
        config=config,
        catalog=catalog,
        source=source,
        ledger=InMemoryLedger(),
        alert_store=InMemoryAlertStore(),
        task_store=InMemoryTaskStore(),
        notifier=notifier,
    )
