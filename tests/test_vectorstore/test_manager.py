"""Tests for VectorStoreManager orchestration."""

import asyncio
from itertools import count
from unittest.mock import AsyncMock

import pytest

from pgdocstore.embedding.fake import FakeEmbeddings
from pgdocstore.vectorstore.base import Document
from pgdocstore.vectorstore.config import VectorStoreConfig
from pgdocstore.vectorstore.errors import (
    EmbeddingError,
    FilterError,
    StorageError,
    ValidationError,
)
from pgdocstore.vectorstore.manager import VectorStoreManager
from pgdocstore.vectorstore.memory_store import InMemoryVectorStore


class FlakyEmbeddings(FakeEmbeddings):
    """Fake embeddings whose Nth batch call raises the given exception."""

    def __init__(self, fail_on_call: int, error: BaseException, dimensions: int = 16):
        super().__init__(dimensions)
        self._fail_on_call = fail_on_call
        self._error = error

    async def embed_batch(self, texts):
        if len(self.calls) + 1 == self._fail_on_call:
            self.calls.append(list(texts))
            raise self._error
        return await super().embed_batch(texts)


def _numbered(values, key="a") -> list[Document]:
    return [Document(content=f"document number {v}", metadata={key: v}) for v in values]


class TestAddDocuments:
    """Tests for add_documents()."""

    @pytest.mark.asyncio
    async def test_round_trip(self, manager, sample_documents):
        """Searching with a document's own content returns that document first."""
        await manager.add_documents(sample_documents)

        for doc in sample_documents:
            results = await manager.similarity_search(doc.content, k=1)
            assert len(results) == 1
            assert results[0].content == doc.content
            assert results[0].metadata == doc.metadata

    @pytest.mark.asyncio
    async def test_returns_generated_ids_in_order(self, memory_store, fake_embeddings, metrics):
        counter = count()
        manager = VectorStoreManager(
            memory_store,
            fake_embeddings,
            metrics=metrics,
            id_factory=lambda: f"gen-{next(counter)}",
        )

        ids = await manager.add_documents(_numbered([1, 2, 3]))

        assert ids == ["gen-0", "gen-1", "gen-2"]
        assert await memory_store.count() == 3

    @pytest.mark.asyncio
    async def test_chunk_boundary(self, manager, fake_embeddings, vector_store_config):
        """chunk_size + 1 documents persist as exactly chunk_size + 1 rows."""
        n = vector_store_config.chunk_size + 1

        ids = await manager.add_documents(_numbered(range(n)))

        assert await manager.count() == n
        assert len(set(ids)) == n
        assert [len(call) for call in fake_embeddings.calls] == [vector_store_config.chunk_size, 1]

    @pytest.mark.asyncio
    async def test_explicit_ids(self, manager):
        """Explicit ids address rows exactly."""
        await manager.add_documents(_numbered([1, 2]), ids=["id1", "id2"])

        found = await manager.get_by_ids(["id1"])

        assert len(found) == 1
        assert found[0].id == "id1"
        assert found[0].metadata == {"a": 1}
        assert await manager.count() == 2

    @pytest.mark.asyncio
    async def test_document_own_id_used(self, manager):
        ids = await manager.add_documents([Document(content="x", id="mine")])
        assert ids == ["mine"]

    @pytest.mark.asyncio
    async def test_ids_length_mismatch(self, manager, fake_embeddings):
        """Mismatch fails before any embedding or write."""
        with pytest.raises(ValidationError, match="same length"):
            await manager.add_documents(_numbered([1, 2]), ids=["only"])

        assert fake_embeddings.calls == []
        assert await manager.count() == 0

    @pytest.mark.asyncio
    async def test_upsert_overwrites_existing_id(self, manager):
        """Re-ingesting an id replaces content and metadata in place."""
        await manager.add_documents([Document(content="old", metadata={"v": 1})], ids=["x"])
        await manager.add_documents([Document(content="new", metadata={"v": 2})], ids=["x"])

        [doc] = await manager.get_by_ids(["x"])

        assert (doc.content, doc.metadata) == ("new", {"v": 2})
        assert await manager.count() == 1

    @pytest.mark.asyncio
    async def test_same_id_across_chunks_last_writer_wins(self, manager):
        """Chunks run in order, so the later duplicate wins."""
        docs = [Document(content=f"v{i}") for i in range(3)]

        await manager.add_documents(docs, ids=["dup", "other", "dup"])

        [doc] = await manager.get_by_ids(["dup"])
        assert doc.content == "v2"

    @pytest.mark.asyncio
    async def test_accepts_mappings(self, manager):
        ids = await manager.add_documents([{"content": "hello", "metadata": {"a": 1}, "id": "m1"}])

        assert ids == ["m1"]
        assert (await manager.get_by_ids(["m1"]))[0].metadata == {"a": 1}

    @pytest.mark.asyncio
    async def test_rejects_malformed_documents(self, manager):
        with pytest.raises(ValidationError):
            await manager.add_documents([{"metadata": {}}])
        with pytest.raises(ValidationError):
            await manager.add_documents(["plain string"])
        with pytest.raises(ValidationError):
            await manager.add_documents("not a list")

    @pytest.mark.asyncio
    async def test_from_documents(self, memory_store, fake_embeddings, metrics, sample_documents):
        manager = await VectorStoreManager.from_documents(
            sample_documents,
            fake_embeddings,
            memory_store,
            ids=["x", "y", "z"],
            metrics=metrics,
        )

        assert await manager.count() == 3
        assert [d.id for d in await manager.get_by_ids(["z", "x"])] == ["x", "z"]


class TestAddDocumentsFailures:
    """Error propagation from collaborators."""

    @pytest.mark.asyncio
    async def test_gateway_error_wrapped(self, memory_store, metrics):
        """Arbitrary gateway exceptions become EmbeddingError with the cause kept."""
        embeddings = FlakyEmbeddings(fail_on_call=1, error=RuntimeError("quota exceeded"))
        manager = VectorStoreManager(memory_store, embeddings, metrics=metrics)

        with pytest.raises(EmbeddingError, match="quota exceeded") as exc_info:
            await manager.add_documents(_numbered([1]))

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert await memory_store.count() == 0

    @pytest.mark.asyncio
    async def test_embedding_error_passes_through(self, memory_store, metrics):
        original = EmbeddingError("provider down", status_code=503)
        embeddings = FlakyEmbeddings(fail_on_call=1, error=original)
        manager = VectorStoreManager(memory_store, embeddings, metrics=metrics)

        with pytest.raises(EmbeddingError) as exc_info:
            await manager.add_documents(_numbered([1]))

        assert exc_info.value is original

    @pytest.mark.asyncio
    async def test_failed_chunk_keeps_earlier_chunks(self, memory_store, vector_store_config, metrics):
        """Chunks written before the failing one stay committed."""
        embeddings = FlakyEmbeddings(fail_on_call=2, error=EmbeddingError("boom"))
        manager = VectorStoreManager(
            memory_store, embeddings, config=vector_store_config, metrics=metrics
        )

        with pytest.raises(EmbeddingError):
            await manager.add_documents(_numbered(range(5)))

        assert await memory_store.count() == vector_store_config.chunk_size

    @pytest.mark.asyncio
    async def test_cancellation_not_wrapped(self, memory_store, vector_store_config, metrics):
        """Cancellation mid-import propagates as-is; earlier chunks persist."""
        embeddings = FlakyEmbeddings(fail_on_call=2, error=asyncio.CancelledError())
        manager = VectorStoreManager(
            memory_store, embeddings, config=vector_store_config, metrics=metrics
        )

        with pytest.raises(asyncio.CancelledError):
            await manager.add_documents(_numbered(range(5)))

        assert await memory_store.count() == vector_store_config.chunk_size

    @pytest.mark.asyncio
    async def test_wrong_vector_count(self, memory_store, metrics):
        embeddings = FakeEmbeddings(dimensions=4)
        embeddings.embed_batch = AsyncMock(return_value=[[0.0] * 4])
        manager = VectorStoreManager(memory_store, embeddings, metrics=metrics)

        with pytest.raises(EmbeddingError, match="1 vectors for 2 texts"):
            await manager.add_documents(_numbered([1, 2]))

    @pytest.mark.asyncio
    async def test_inconsistent_dimensions(self, memory_store, metrics):
        embeddings = FakeEmbeddings(dimensions=4)
        embeddings.embed_batch = AsyncMock(return_value=[[0.0] * 4, [0.0] * 3])
        manager = VectorStoreManager(memory_store, embeddings, metrics=metrics)

        with pytest.raises(EmbeddingError, match="3 dimensions, expected 4"):
            await manager.add_documents(_numbered([1, 2]))

    @pytest.mark.asyncio
    async def test_configured_dimensions_enforced(self, memory_store, metrics):
        manager = VectorStoreManager(
            memory_store,
            FakeEmbeddings(dimensions=8),
            config=VectorStoreConfig(dimensions=16),
            metrics=metrics,
        )

        with pytest.raises(EmbeddingError, match="expected 16"):
            await manager.add_documents(_numbered([1]))

    @pytest.mark.asyncio
    async def test_storage_error_propagates(self, fake_embeddings, metrics):
        store = AsyncMock(spec=InMemoryVectorStore)
        store.upsert = AsyncMock(side_effect=StorageError("disk full", operation="upsert"))
        manager = VectorStoreManager(store, fake_embeddings, metrics=metrics)

        with pytest.raises(StorageError, match="disk full"):
            await manager.add_documents(_numbered([1]))

        errors = metrics.registry.get_sample_value(
            "pgdocstore_operation_errors_total",
            {"operation": "add_documents", "error_type": "StorageError"},
        )
        assert errors == 1.0


class TestAddVectors:
    """Tests for add_vectors()."""

    @pytest.mark.asyncio
    async def test_no_gateway_call(self, manager, fake_embeddings):
        vectors = [[1.0] + [0.0] * 15, [0.0, 1.0] + [0.0] * 14]

        ids = await manager.add_vectors(vectors, _numbered([1, 2]), ids=["v1", "v2"])

        assert ids == ["v1", "v2"]
        assert fake_embeddings.calls == []
        results = await manager.similarity_search_by_vector(vectors[1], k=1, include_ids=True)
        assert results[0].id == "v2"

    @pytest.mark.asyncio
    async def test_length_mismatch(self, manager):
        with pytest.raises(ValidationError, match="vectors and documents"):
            await manager.add_vectors([[0.0] * 16], _numbered([1, 2]))

    @pytest.mark.asyncio
    async def test_wrong_dimensions(self, manager):
        with pytest.raises(ValidationError, match="3 dimensions, expected 16"):
            await manager.add_vectors([[0.0] * 3], _numbered([1]))


class TestSimilaritySearch:
    """Tests for the search family."""

    @pytest.mark.asyncio
    async def test_filter_equality(self, manager):
        """Only the document with a == 2 is returned."""
        await manager.add_documents(_numbered([1, 2, 1]))

        results = await manager.similarity_search("document", k=10, filter={"a": 2})

        assert [r.metadata for r in results] == [{"a": 2}]

    @pytest.mark.asyncio
    async def test_in_operator(self, manager):
        """`in` returns exactly the members; unfiltered k=3 returns all three."""
        await manager.add_documents(_numbered([100, 200, 300]))

        filtered = await manager.similarity_search("document", k=3, filter={"a": {"in": [100, 300]}})
        unfiltered = await manager.similarity_search("document", k=3)

        assert sorted(r.metadata["a"] for r in filtered) == [100, 300]
        assert sorted(r.metadata["a"] for r in unfiltered) == [100, 200, 300]

    @pytest.mark.asyncio
    async def test_fewer_matches_than_k(self, manager):
        await manager.add_documents(_numbered([1, 2]))

        assert len(await manager.similarity_search("document", k=10)) == 2

    @pytest.mark.asyncio
    async def test_default_k_from_config(self, manager, vector_store_config):
        await manager.add_documents(_numbered(range(10)))

        assert len(await manager.similarity_search("document")) == vector_store_config.default_k

    @pytest.mark.asyncio
    async def test_ties_broken_by_ascending_id(self, manager):
        """Identical content gives identical distances; ids decide the order."""
        docs = [Document(content="same text", metadata={"n": i}) for i in range(3)]
        await manager.add_documents(docs, ids=["c", "a", "b"])

        results = await manager.similarity_search("same text", k=3, include_ids=True)

        assert [r.id for r in results] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_ties_use_code_point_order_for_mixed_case(self, manager):
        """Uppercase sorts before lowercase, as under the C collation."""
        await manager.add_documents([Document(content="same")] * 3, ids=["a", "B", "_"])

        results = await manager.similarity_search("same", k=3, include_ids=True)

        assert [r.id for r in results] == ["B", "_", "a"]

    @pytest.mark.asyncio
    async def test_results_omit_ids_by_default(self, manager):
        """Search returns content and metadata only."""
        await manager.add_documents([Document(content="Lorem Ipsum", metadata={"a": 100})])

        results = await manager.similarity_search("Lorem Ipsum", k=1)
        scored = await manager.similarity_search_with_score("Lorem Ipsum", k=1)

        assert results == [Document(content="Lorem Ipsum", metadata={"a": 100})]
        assert results[0].id is None
        assert scored[0][0].id is None

    @pytest.mark.asyncio
    async def test_include_ids_opt_in(self, manager):
        ids = await manager.add_documents([Document(content="Lorem Ipsum")])

        [doc] = await manager.similarity_search("Lorem Ipsum", k=1, include_ids=True)
        [(scored, _)] = await manager.similarity_search_with_score(
            "Lorem Ipsum", k=1, include_ids=True
        )

        assert doc.id == ids[0]
        assert scored.id == ids[0]

    @pytest.mark.asyncio
    async def test_with_score_returns_raw_distance(self, manager, sample_documents):
        await manager.add_documents(sample_documents)

        results = await manager.similarity_search_with_score(sample_documents[0].content, k=3)

        distances = [score for _, score in results]
        assert distances == sorted(distances)
        assert distances[0] == pytest.approx(0.0, abs=1e-9)
        assert results[0][0].content == sample_documents[0].content

    @pytest.mark.asyncio
    @pytest.mark.parametrize("k", [0, -1, 1.5, True, "3"])
    async def test_invalid_k(self, manager, k):
        with pytest.raises(ValidationError, match="k must be a positive integer"):
            await manager.similarity_search("q", k=k)

    @pytest.mark.asyncio
    async def test_unknown_operator_fails_before_embedding(self, manager, fake_embeddings):
        with pytest.raises(FilterError, match="'like'"):
            await manager.similarity_search("q", filter={"a": {"like": "x%"}})

        assert fake_embeddings.calls == []

    @pytest.mark.asyncio
    async def test_query_embedding_failure(self, memory_store, metrics):
        embeddings = FakeEmbeddings(dimensions=4)
        embeddings.embed = AsyncMock(side_effect=ConnectionError("reset"))
        manager = VectorStoreManager(memory_store, embeddings, metrics=metrics)

        with pytest.raises(EmbeddingError, match="reset"):
            await manager.similarity_search("q")

    @pytest.mark.asyncio
    async def test_non_string_query(self, manager):
        with pytest.raises(ValidationError, match="query must be a string"):
            await manager.similarity_search(["q"])

    @pytest.mark.asyncio
    async def test_by_vector_dimension_check(self, manager):
        with pytest.raises(ValidationError, match="expected 16"):
            await manager.similarity_search_by_vector([1.0, 0.0, 0.0])

    @pytest.mark.asyncio
    async def test_search_results_include_embeddings(self, manager, fake_embeddings):
        await manager.add_documents([Document(content="alpha")], ids=["x"])

        [result] = await manager.search_results_by_vector(
            fake_embeddings.vector_for("alpha"), k=1, include_embeddings=True
        )

        assert result.document_id == "x"
        assert result.embedding == pytest.approx(fake_embeddings.vector_for("alpha"))

    @pytest.mark.asyncio
    async def test_search_counted(self, manager, metrics):
        await manager.similarity_search("q")
        await manager.similarity_search("q")

        assert metrics.registry.get_sample_value("pgdocstore_searches_total") == 2.0


class TestDelete:
    """Tests for delete()."""

    @pytest.mark.asyncio
    async def test_delete_by_ids(self, manager):
        """Deleting two of three ids leaves the third."""
        await manager.add_documents(_numbered([1, 2, 3]), ids=["a", "b", "c"])

        deleted = await manager.delete(ids=["a", "b"])

        assert deleted == 2
        assert await manager.count() == 1
        assert [d.id for d in await manager.get_by_ids(["a", "b", "c"])] == ["c"]

    @pytest.mark.asyncio
    async def test_delete_by_filter(self, manager):
        """Filter {a:1, b:1} removes only the row matching both keys."""
        docs = [
            Document(content="one", metadata={"a": 1, "b": 1}),
            Document(content="two", metadata={"a": 2, "b": 1}),
            Document(content="three", metadata={"a": 1, "c": 1}),
        ]
        await manager.add_documents(docs, ids=["1", "2", "3"])

        deleted = await manager.delete(filter={"a": 1, "b": 1})

        assert deleted == 1
        assert [d.id for d in await manager.get_by_ids(["1", "2", "3"])] == ["2", "3"]

    @pytest.mark.asyncio
    async def test_idempotent_delete(self, manager):
        await manager.add_documents(_numbered([1]), ids=["a"])
        await manager.delete(ids=["a"])

        assert await manager.delete(ids=["a"]) == 0
        assert await manager.delete(ids=["never-existed"]) == 0
        assert await manager.count() == 0

    @pytest.mark.asyncio
    async def test_duplicate_ids_counted_once(self, manager):
        await manager.add_documents(_numbered([1, 2]), ids=["a", "b"])

        assert await manager.delete(ids=["a", "a"]) == 1

    @pytest.mark.asyncio
    async def test_empty_ids_is_noop(self, manager):
        await manager.add_documents(_numbered([1]))

        assert await manager.delete(ids=[]) == 0
        assert await manager.count() == 1

    @pytest.mark.asyncio
    async def test_empty_filter_deletes_everything(self, manager):
        await manager.add_documents(_numbered([1, 2, 3]))

        assert await manager.delete(filter={}) == 3
        assert await manager.count() == 0

    @pytest.mark.asyncio
    async def test_both_ids_and_filter_rejected(self, manager):
        await manager.add_documents(_numbered([1]), ids=["a"])

        with pytest.raises(ValidationError, match="not both"):
            await manager.delete(ids=["a"], filter={"a": 1})
        assert await manager.count() == 1

    @pytest.mark.asyncio
    async def test_neither_rejected(self, manager):
        with pytest.raises(ValidationError, match="requires ids or filter"):
            await manager.delete()

    @pytest.mark.asyncio
    async def test_string_ids_rejected(self, manager):
        with pytest.raises(ValidationError, match="not a string"):
            await manager.delete(ids="abc")

    @pytest.mark.asyncio
    async def test_delete_metrics_by_mode(self, manager, metrics):
        await manager.add_documents(_numbered([1, 2, 3]), ids=["a", "b", "c"])

        await manager.delete(ids=["a"])
        await manager.delete(filter={"a": {"in": [2, 3]}})

        sample = metrics.registry.get_sample_value
        assert sample("pgdocstore_rows_deleted_total", {"mode": "ids"}) == 1.0
        assert sample("pgdocstore_rows_deleted_total", {"mode": "filter"}) == 2.0
        assert sample("pgdocstore_documents_written_total") == 3.0


class TestCount:
    """Tests for count()."""

    @pytest.mark.asyncio
    async def test_count_with_filter(self, manager):
        await manager.add_documents(_numbered([1, 2, 1]))

        assert await manager.count() == 3
        assert await manager.count({"a": 1}) == 2
        assert await manager.count({"a": {"ne": 1}}) == 1

    @pytest.mark.asyncio
    async def test_close_closes_collaborators(self, metrics):
        store = AsyncMock(spec=InMemoryVectorStore)
        embeddings = AsyncMock(spec=FakeEmbeddings)
        manager = VectorStoreManager(store, embeddings, metrics=metrics)

        await manager.close()

        embeddings.close.assert_awaited_once()
        store.close.assert_awaited_once()
