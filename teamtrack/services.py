import logging
from contextlib import asynccontextmanager

from shared.pubsub import EventPublisher, build_publisher

from .cascade import CascadeOrchestrator
from .identity import IdentityProvider, build_identity_provider
from .membership_registry import MembershipRegistry
from .organizer_registry import DEFAULT_MAX_ORGANIZERS, OrganizerRegistry
from .profile_registry import ProfileRegistry
from .safety import SafetyInvariantChecker
from .store import DocumentStore, build_store
from .team_registry import TeamRegistry
from .tournament_registry import TournamentRegistry

logger = logging.getLogger(__name__)


class ServiceContainer:
    """
    Wires the registries, the safety checker and the cascade
    orchestrator around one store and identity provider.
    """

    def __init__(
        self,
        store: DocumentStore,
        identity: IdentityProvider,
        publisher: EventPublisher = None,
        max_organizers: int = DEFAULT_MAX_ORGANIZERS
    ):
        self.store = store
        self.identity = identity
        self.publisher = publisher

        self.profiles = ProfileRegistry(store, identity)
        self.memberships = MembershipRegistry(store, self.profiles, publisher)
        self.organizers = OrganizerRegistry(
            store, self.profiles, publisher, default_max_organizers=max_organizers
        )

        # The registries gate removals through the checker, which reads them back
        self.safety = SafetyInvariantChecker(self.memberships, self.organizers, store)
        self.memberships.safety = self.safety
        self.organizers.safety = self.safety

        self.teams = TeamRegistry(store, self.memberships)
        self.tournaments = TournamentRegistry(store, self.organizers, publisher)
        self.cascade = CascadeOrchestrator(
            store=store,
            memberships=self.memberships,
            organizers=self.organizers,
            teams=self.teams,
            tournaments=self.tournaments,
            profiles=self.profiles,
            identity=identity,
            safety=self.safety,
            publisher=publisher
        )

    @classmethod
    def from_config(cls, config) -> "ServiceContainer":
        return cls(
            build_store(config),
            build_identity_provider(config),
            build_publisher(config),
            max_organizers=config.get('MAX_ORGANIZERS_PER_TOURNAMENT', DEFAULT_MAX_ORGANIZERS)
        )

    async def close(self):
        await self.store.close()
        await self.identity.close()
        if self.publisher:
            await self.publisher.close()


def init_services(app):
    """
    Build the collaborators that can outlive a request.

    In-memory backends hold the data, so they are created once per app.
    Redis clients are bound to the event loop that created them and every
    async view runs in its own loop, so those are opened per request.
    """
    shared = {'identity': build_identity_provider(app.config)}
    if app.config.get('STORE_BACKEND', 'memory') == 'memory':
        shared['store'] = build_store(app.config)
    app.extensions['teamtrack'] = shared


@asynccontextmanager
async def open_services(app):
    shared = app.extensions['teamtrack']
    store = shared.get('store') or build_store(app.config)
    publisher = build_publisher(app.config)

    services = ServiceContainer(
        store,
        shared['identity'],
        publisher,
        max_organizers=app.config.get('MAX_ORGANIZERS_PER_TOURNAMENT', DEFAULT_MAX_ORGANIZERS)
    )
    try:
        yield services
    finally:
        if 'store' not in shared:
            await store.close()
        if publisher:
            await publisher.close()
