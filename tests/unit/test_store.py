"""
Unit tests for the document stores.
Both backends run the same behaviour tests; the Redis store is backed by
fakeredis.
"""
import fakeredis
import fakeredis.aioredis
import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError

from teamtrack.errors import NotFoundError, StoreUnavailableError, ValidationError
from teamtrack.store import (
    InMemoryDocumentStore, RedisDocumentStore, Where, apply_query, build_store, eq
)


def fake_redis():
    """A client on its own server so tests never share keys."""
    return fakeredis.aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest_asyncio.fixture(params=['memory', 'redis'])
async def doc_store(request):
    if request.param == 'memory':
        yield InMemoryDocumentStore()
        return

    store = RedisDocumentStore(fake_redis(), prefix='test')
    yield store
    await store.close()


async def seed(store):
    await store.set('teams', 't1', {'name': 'Tigers', 'rank': 3, 'is_active': True})
    await store.set('teams', 't2', {'name': 'Lions', 'rank': 1, 'is_active': True})
    await store.set('teams', 't3', {'name': 'Bears', 'rank': 2, 'is_active': False})


class TestDocumentStore:
    """Behaviour shared by every backend."""

    @pytest.mark.asyncio
    async def test_set_and_get(self, doc_store):
        await doc_store.set('teams', 't1', {'name': 'Tigers'})
        assert await doc_store.get('teams', 't1') == {'name': 'Tigers', 'id': 't1'}

    @pytest.mark.asyncio
    async def test_get_missing(self, doc_store):
        assert await doc_store.get('teams', 'nope') is None

    @pytest.mark.asyncio
    async def test_update_merges(self, doc_store):
        await doc_store.set('teams', 't1', {'name': 'Tigers', 'coach_count': 1})
        updated = await doc_store.update('teams', 't1', {'coach_count': 2})

        assert updated == {'name': 'Tigers', 'coach_count': 2, 'id': 't1'}
        assert (await doc_store.get('teams', 't1'))['coach_count'] == 2

    @pytest.mark.asyncio
    async def test_update_missing_raises(self, doc_store):
        with pytest.raises(NotFoundError):
            await doc_store.update('teams', 'nope', {'name': 'x'})

    @pytest.mark.asyncio
    async def test_delete_reports_removal(self, doc_store):
        await doc_store.set('teams', 't1', {'name': 'Tigers'})

        assert await doc_store.delete('teams', 't1') is True
        assert await doc_store.delete('teams', 't1') is False
        assert await doc_store.query('teams') == []

    @pytest.mark.asyncio
    async def test_query_filters(self, doc_store):
        await seed(doc_store)

        active = await doc_store.query('teams', [eq('is_active', True)], order_by='name')
        assert [d['id'] for d in active] == ['t2', 't1']

        ranked = await doc_store.query('teams', [Where('rank', '>=', 2)], order_by='rank')
        assert [d['id'] for d in ranked] == ['t3', 't1']

        picked = await doc_store.query('teams', [Where('name', 'in', ['Bears', 'Lions'])], order_by='rank')
        assert [d['id'] for d in picked] == ['t2', 't3']

    @pytest.mark.asyncio
    async def test_query_order_and_paging(self, doc_store):
        await seed(doc_store)

        docs = await doc_store.query('teams', order_by='rank', descending=True, limit=2, offset=1)
        assert [d['id'] for d in docs] == ['t3', 't2']

    @pytest.mark.asyncio
    async def test_collections_are_separate(self, doc_store):
        await doc_store.set('teams', 'x', {'name': 'Team'})
        await doc_store.set('tournaments', 'x', {'name': 'Cup'})

        assert (await doc_store.get('teams', 'x'))['name'] == 'Team'
        assert len(await doc_store.query('tournaments')) == 1


class TestQueryHelpers:
    """Tests for Where and apply_query."""

    def test_unknown_operator(self):
        with pytest.raises(ValidationError):
            Where('rank', '~=', 1)

    def test_missing_field_never_matches(self):
        assert eq('rank', None).matches({'name': 'Tigers'}) is False

    def test_incomparable_values_do_not_match(self):
        assert Where('rank', '>', 1).matches({'rank': 'high'}) is False

    def test_missing_order_field_sorts_first(self):
        docs = [{'id': 'a', 'rank': 2}, {'id': 'b'}, {'id': 'c', 'rank': 1}]
        assert [d['id'] for d in apply_query(docs, order_by='rank')] == ['b', 'c', 'a']


class TestInMemoryIsolation:

    @pytest.mark.asyncio
    async def test_returned_documents_are_copies(self):
        store = InMemoryDocumentStore()
        await store.set('teams', 't1', {'name': 'Tigers', 'team_ids': []})

        doc = await store.get('teams', 't1')
        doc['team_ids'].append('leak')

        assert (await store.get('teams', 't1'))['team_ids'] == []
        assert store.count('teams') == 1


class TestRedisDocumentStore:
    """Redis specific behaviour."""

    @pytest.mark.asyncio
    async def test_key_layout(self):
        client = fake_redis()
        store = RedisDocumentStore(client, prefix='tt')
        await store.set('teams', 't1', {'name': 'Tigers'})

        assert await client.smembers('tt:teams') == {'t1'}
        assert await client.exists('tt:teams:t1') == 1

    @pytest.mark.asyncio
    async def test_redis_errors_become_unavailable(self, mocker):
        client = fake_redis()
        store = RedisDocumentStore(client)
        mocker.patch.object(client, 'get', new=mocker.AsyncMock(side_effect=RedisConnectionError('down')))

        with pytest.raises(StoreUnavailableError):
            await store.get('teams', 't1')

    @pytest.mark.asyncio
    async def test_query_errors_become_unavailable(self, mocker):
        client = fake_redis()
        store = RedisDocumentStore(client)
        mocker.patch.object(client, 'smembers', new=mocker.AsyncMock(side_effect=RedisConnectionError('down')))

        with pytest.raises(StoreUnavailableError):
            await store.query('teams')


class TestBuildStore:

    def test_memory_default(self):
        assert isinstance(build_store({}), InMemoryDocumentStore)

    def test_redis_backend(self):
        store = build_store({'STORE_BACKEND': 'redis', 'REDIS_URL': 'redis://localhost:6379/1'})
        assert isinstance(store, RedisDocumentStore)
        assert store.prefix == 'teamtrack'

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            build_store({'STORE_BACKEND': 'firestore'})
