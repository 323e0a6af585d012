"""
Pytest configuration and fixtures for TeamTrack tests.
"""
import os
import sys
import pytest
import pytest_asyncio

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Set testing environment before importing app
os.environ['FLASK_ENV'] = 'testing'

from teamtrack.app import create_app
from teamtrack.identity import InMemoryIdentityProvider
from teamtrack.models import Role
from teamtrack.services import ServiceContainer
from teamtrack.store import InMemoryDocumentStore


@pytest.fixture(scope='function')
def app():
    """Create application for testing. Each test gets a fresh in-memory store."""
    return create_app('testing')


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def identity():
    return InMemoryIdentityProvider()


@pytest.fixture
def services(store, identity):
    """Fully wired registries, checker and orchestrator over the in-memory store."""
    return ServiceContainer(store, identity)


@pytest_asyncio.fixture
async def users(services):
    """Register four users keyed by first name."""
    registered = {}
    for name in ('alice', 'bob', 'carol', 'dave'):
        registered[name] = await services.profiles.register_user(
            email=f'{name}@example.com',
            password='secret-password',
            first_name=name.capitalize(),
            last_name='Tester'
        )
    return registered


@pytest_asyncio.fixture
async def team(services, users):
    """Team created by alice, who is its only coach."""
    return await services.teams.create_team('Tigers', users['alice'].id, sport='soccer')


@pytest_asyncio.fixture
async def two_coach_team(services, users, team):
    """The Tigers with bob added as a second accepted coach."""
    await services.memberships.add_membership(users['bob'].id, team.id, Role.COACH)
    return await services.teams.get_team(team.id)


@pytest_asyncio.fixture
async def tournament(services, users):
    """Tournament created by alice, who is its only organizer."""
    return await services.tournaments.create_tournament('Spring Cup', users['alice'].id, max_size=4)
