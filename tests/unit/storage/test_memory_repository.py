"""
Unit tests for InMemoryRecordRepository.
"""

import pytest
import pytest_asyncio

from tinkerchat.context.models import Knowledge, RecordKind, UserInput
from tinkerchat.storage.memory import cosine_similarity


def user_fields(content, embedding=(1.0, 0.0)):
    return {
        "kind": RecordKind.USER_INPUT,
        "content": content,
        "token_count": 1,
        "embedding": list(embedding),
    }


@pytest_asyncio.fixture
async def session(repository):
    return await repository.create_session("proj", "Test", {"model": "m"})


class TestSessions:

    @pytest.mark.asyncio
    async def test_create_and_get(self, repository):
        session = await repository.create_session("proj", "Title", {"provider": "p"})

        loaded = await repository.get_session(session.id)
        assert loaded == session
        assert loaded.project_id == "proj"
        assert loaded.metadata == {"provider": "p"}

    @pytest.mark.asyncio
    async def test_unknown_session_is_none(self, repository):
        assert await repository.get_session("missing") is None

    @pytest.mark.asyncio
    async def test_list_most_recently_updated_first(self, repository):
        first = await repository.create_session("proj", "first")
        second = await repository.create_session("proj", "second")
        await repository.add_record(first.id, user_fields("bump"))

        sessions = await repository.list_sessions()
        assert [s.id for s in sessions] == [first.id, second.id]


class TestRecords:

    @pytest.mark.asyncio
    async def test_add_assigns_identity(self, repository, session):
        record = await repository.add_record(session.id, user_fields("hi"))

        assert isinstance(record, UserInput)
        assert record.id
        assert record.session_id == session.id
        assert await repository.get_records(session.id) == [record]

    @pytest.mark.asyncio
    async def test_timestamps_strictly_increase(self, repository, session):
        records = [await repository.add_record(session.id, user_fields(str(i))) for i in range(20)]

        timestamps = [r.timestamp for r in records]
        assert all(a < b for a, b in zip(timestamps, timestamps[1:]))

    @pytest.mark.asyncio
    async def test_unknown_session_rejected(self, repository):
        with pytest.raises(KeyError):
            await repository.add_record("missing", user_fields("hi"))

    @pytest.mark.asyncio
    async def test_sessions_are_isolated(self, repository, session):
        other = await repository.create_session("proj", "Other")
        await repository.add_record(session.id, user_fields("mine"))

        assert await repository.get_records(other.id) == []

    @pytest.mark.asyncio
    async def test_delete_after_is_strict(self, repository, session):
        records = [await repository.add_record(session.id, user_fields(str(i))) for i in range(4)]

        removed = await repository.delete_records_after(session.id, records[1].timestamp)

        assert removed == 2
        assert await repository.get_records(session.id) == records[:2]

    @pytest.mark.asyncio
    async def test_delete_after_last_is_noop(self, repository, session):
        record = await repository.add_record(session.id, user_fields("only"))
        assert await repository.delete_records_after(session.id, record.timestamp) == 0

    @pytest.mark.asyncio
    async def test_set_pinned(self, repository, session):
        record = await repository.add_record(session.id, user_fields("pin me"))

        pinned = await repository.set_pinned(record.id, True)

        assert pinned.pinned is True
        assert (await repository.get_records(session.id))[0].pinned is True
        assert await repository.set_pinned("missing", True) is None


class TestSearch:

    @pytest.mark.asyncio
    async def test_records_ranked_by_similarity(self, repository, session):
        near = await repository.add_record(session.id, user_fields("near", (1.0, 0.1)))
        far = await repository.add_record(session.id, user_fields("far", (-1.0, 0.0)))

        results = await repository.search_records([1.0, 0.0], limit=2, session_id=session.id)

        assert [r.id for r, _ in results] == [near.id, far.id]
        assert results[0][1] > 0.9
        assert results[1][1] == pytest.approx(0.0)

    @pytest.mark.asyncio
    async def test_knowledge_gets_relevance(self, repository):
        await repository.add_knowledge(Knowledge(id="k1", content="same", embedding=[0.0, 1.0]))
        await repository.add_knowledge(Knowledge(id="k2", content="orthogonal", embedding=[1.0, 0.0]))

        results = await repository.search_knowledge([0.0, 2.0], limit=1)

        assert [k.id for k in results] == ["k1"]
        assert results[0].relevance_score == pytest.approx(1.0)


class TestCosineSimilarity:

    def test_orthogonal_is_midpoint(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.5)

    def test_degenerate_vectors_score_zero(self):
        assert cosine_similarity([], []) == 0.0
        assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0
        assert cosine_similarity([1.0], [1.0, 0.0]) == 0.0
