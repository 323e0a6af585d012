"""
Unit tests for OrganizerRegistry.
Tests: invite_organizer, accept/decline, remove_organizer, capacity,
       listings, organizer counter maintenance
"""
import pytest

from teamtrack.errors import NotFoundError, SafetyViolationError, ValidationError
from teamtrack.models import ORGANIZER_RELATIONS


async def organizer_count(services, tournament_id):
    return (await services.tournaments.get_tournament(tournament_id)).organizer_count


class TestInviteOrganizer:
    """Tests for invite_organizer."""

    @pytest.mark.asyncio
    async def test_creator_is_active_organizer(self, services, users, tournament):
        organizers = await services.organizers.list_organizers(tournament.id)

        assert len(organizers) == 1
        assert organizers[0].relation.user_id == users['alice'].id
        assert organizers[0].relation.active is True
        assert organizers[0].profile.email == 'alice@example.com'
        assert tournament.organizer_count == 1

    @pytest.mark.asyncio
    async def test_invite_creates_pending_relation(self, services, users, tournament):
        relation = await services.organizers.invite_organizer(tournament.id, 'bob@example.com')

        assert relation.active is False
        assert relation.user_id == users['bob'].id
        pending = await services.organizers.list_pending_invites(users['bob'].id)
        assert [r.id for r in pending] == [relation.id]
        # Pending invites are not listed as organizers by default
        assert len(await services.organizers.list_organizers(tournament.id)) == 1
        assert len(await services.organizers.list_organizers(tournament.id, include_pending=True)) == 2

    @pytest.mark.asyncio
    async def test_invite_existing_organizer_rejected(self, services, users, tournament):
        with pytest.raises(ValidationError):
            await services.organizers.invite_organizer(tournament.id, 'alice@example.com')

    @pytest.mark.asyncio
    async def test_duplicate_invite_rejected(self, services, users, tournament):
        await services.organizers.invite_organizer(tournament.id, 'bob@example.com')
        with pytest.raises(ValidationError):
            await services.organizers.invite_organizer(tournament.id, 'bob@example.com')

    @pytest.mark.asyncio
    async def test_unknown_email(self, services, users, tournament):
        with pytest.raises(NotFoundError):
            await services.organizers.invite_organizer(tournament.id, 'ghost@example.com')

    @pytest.mark.asyncio
    async def test_unknown_tournament(self, services, users):
        with pytest.raises(NotFoundError):
            await services.organizers.invite_organizer('missing', 'bob@example.com')

    @pytest.mark.asyncio
    async def test_invite_at_capacity_rejected(self, services, users):
        """organizer_count >= max_organizers blocks new invites."""
        small = await services.tournaments.create_tournament(
            'Tiny Cup', users['alice'].id, max_size=4, max_organizers=1
        )
        with pytest.raises(ValidationError):
            await services.organizers.invite_organizer(small.id, 'bob@example.com')


class TestAcceptDecline:
    """Tests for accept_invite and decline_invite."""

    @pytest.mark.asyncio
    async def test_accept_increments_count(self, services, users, tournament):
        relation = await services.organizers.invite_organizer(tournament.id, 'bob@example.com')
        accepted = await services.organizers.accept_invite(relation.id)

        assert accepted.active is True
        assert await organizer_count(services, tournament.id) == 2
        assert tournament.id in await services.organizers.list_tournaments_organized_by(users['bob'].id)

    @pytest.mark.asyncio
    async def test_accept_when_capacity_filled_meanwhile(self, services, users):
        """The capacity guard is re-checked at accept time."""
        cup = await services.tournaments.create_tournament(
            'Duo Cup', users['alice'].id, max_size=4, max_organizers=2
        )
        bob = await services.organizers.invite_organizer(cup.id, 'bob@example.com')
        carol = await services.organizers.invite_organizer(cup.id, 'carol@example.com')
        await services.organizers.accept_invite(bob.id)

        with pytest.raises(ValidationError):
            await services.organizers.accept_invite(carol.id)
        assert await organizer_count(services, cup.id) == 2

    @pytest.mark.asyncio
    async def test_accept_twice_rejected(self, services, users, tournament):
        relation = await services.organizers.invite_organizer(tournament.id, 'bob@example.com')
        await services.organizers.accept_invite(relation.id)
        with pytest.raises(ValidationError):
            await services.organizers.accept_invite(relation.id)

    @pytest.mark.asyncio
    async def test_decline_deletes(self, services, users, tournament):
        relation = await services.organizers.invite_organizer(tournament.id, 'bob@example.com')
        await services.organizers.decline_invite(relation.id)

        assert await services.organizers.find_relation(relation.id) is None
        assert await organizer_count(services, tournament.id) == 1

    @pytest.mark.asyncio
    async def test_decline_missing(self, services):
        with pytest.raises(NotFoundError):
            await services.organizers.decline_invite('missing')


class TestRemoveOrganizer:
    """Tests for remove_organizer."""

    @pytest.mark.asyncio
    async def test_sole_organizer_refused(self, services, users, tournament):
        with pytest.raises(SafetyViolationError) as exc_info:
            await services.organizers.remove_organizer(users['alice'].id, tournament.id)

        assert exc_info.value.aggregate_type == 'tournament'
        assert exc_info.value.privileged_count == 1
        assert await services.organizers.find_pair(users['alice'].id, tournament.id) is not None

    @pytest.mark.asyncio
    async def test_remove_one_of_two(self, services, users, tournament):
        relation = await services.organizers.invite_organizer(tournament.id, 'bob@example.com')
        await services.organizers.accept_invite(relation.id)

        await services.organizers.remove_organizer(users['alice'].id, tournament.id)

        organizers = await services.organizers.list_organizers(tournament.id)
        assert [o.relation.user_id for o in organizers] == [users['bob'].id]
        assert await organizer_count(services, tournament.id) == 1

    @pytest.mark.asyncio
    async def test_remove_pending_invite(self, services, users, tournament):
        """Removing someone who never accepted just withdraws the invite."""
        await services.organizers.invite_organizer(tournament.id, 'bob@example.com')
        await services.organizers.remove_organizer(users['bob'].id, tournament.id)

        assert await services.organizers.find_pair(users['bob'].id, tournament.id) is None
        assert await organizer_count(services, tournament.id) == 1

    @pytest.mark.asyncio
    async def test_remove_non_organizer(self, services, users, tournament):
        with pytest.raises(NotFoundError):
            await services.organizers.remove_organizer(users['dave'].id, tournament.id)


class TestOrganizerCounters:
    """Tests for adjust_organizer_count and delete_relation_record."""

    @pytest.mark.asyncio
    async def test_floor_of_one(self, services, tournament):
        assert await services.organizers.adjust_organizer_count(tournament.id, -3) == 1

    @pytest.mark.asyncio
    async def test_missing_tournament_is_noop(self, services):
        assert await services.organizers.adjust_organizer_count('gone', -1) is None

    @pytest.mark.asyncio
    async def test_record_delete_decrements_once(self, services, users, tournament):
        relation = await services.organizers.invite_organizer(tournament.id, 'bob@example.com')
        relation = await services.organizers.accept_invite(relation.id)
        assert await organizer_count(services, tournament.id) == 2

        assert await services.organizers.delete_relation_record(relation) is True
        assert await services.organizers.delete_relation_record(relation) is False
        assert await organizer_count(services, tournament.id) == 1


class TestLegacyRelations:
    """Version-1 (camelCase) organizer relations are found by every lookup."""

    @pytest.mark.asyncio
    async def test_legacy_organizer_listed(self, services, store, users, tournament):
        await store.set(ORGANIZER_RELATIONS, 'legacy', {
            'userId': users['carol'].id, 'tournamentId': tournament.id, 'isActive': True
        })

        assert await services.organizers.list_tournaments_organized_by(users['carol'].id) == [tournament.id]
        active = await services.organizers.list_active_relations(tournament.id)
        assert {r.user_id for r in active} == {users['alice'].id, users['carol'].id}

    @pytest.mark.asyncio
    async def test_legacy_organizer_lets_creator_leave(self, services, store, users, tournament):
        await store.set(ORGANIZER_RELATIONS, 'legacy', {
            'userId': users['carol'].id, 'tournamentId': tournament.id, 'isActive': True
        })

        await services.organizers.remove_organizer(users['alice'].id, tournament.id)

        with pytest.raises(SafetyViolationError):
            await services.organizers.remove_organizer(users['carol'].id, tournament.id)

    @pytest.mark.asyncio
    async def test_legacy_pending_invite(self, services, store, users, tournament):
        await store.set(ORGANIZER_RELATIONS, 'legacy-invite', {
            'userId': users['bob'].id, 'tournamentId': tournament.id, 'isActive': False
        })

        pending = await services.organizers.list_pending_invites(users['bob'].id)
        assert [r.id for r in pending] == ['legacy-invite']

        with pytest.raises(ValidationError):
            await services.organizers.invite_organizer(tournament.id, 'bob@example.com')
