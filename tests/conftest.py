"""
Shared fixtures: a throwaway SQLite database, stores, and in-memory adapters.
"""

import pytest

from teamforge.adapters import in_memory_adapters
from teamforge.config import Settings
from teamforge.jobs import LocalIntentQueue
from teamforge.services import build_services
from teamforge.storage import Database


@pytest.fixture
def settings(tmp_path):
    return Settings(database_url=f"sqlite:///{tmp_path / 'teamforge.db'}", adapter_call_timeout_seconds=2.0)


@pytest.fixture
def db(settings):
    database = Database(settings.database_url)
    yield database
    database.dispose()


@pytest.fixture
def adapters():
    """In-memory adapters with both parent groups present."""
    return in_memory_adapters()


@pytest.fixture
def services(settings, adapters, db):
    return build_services(settings, adapters, db=db)


@pytest.fixture
def team_store(services):
    return services.team_store


@pytest.fixture
def event_store(services):
    return services.event_store


@pytest.fixture
def task_store(services):
    return services.task_store


@pytest.fixture
def queue(services):
    return LocalIntentQueue(services.task_store, services.runner)


@pytest.fixture
def make_team(team_store):
    """Create a team with members given as emails."""

    def _make(name="alpha", kind="competition", subtype=None, members=(), description=None):
        team = team_store.create_team(name, kind=kind, subtype=subtype, description=description)
        for email in members:
            user_id = team_store.create_user(email)
            team_store.add_member(team.id, user_id)
        return team

    return _make
