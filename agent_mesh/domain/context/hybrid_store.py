from typing import Any, Dict, List, Optional, Union
import asyncio
from datetime import datetime

import structlog

from agent_mesh.domain.context.chunking import chunk_text
from agent_mesh.domain.context.context_ranker import (
    cosine_similarity,
    distance_to_score,
    fuse_results,
    keyword_rank_score,
    matches_filter,
)
from agent_mesh.domain.context.memory.keyword_index import KeywordIndex
from agent_mesh.domain.context.memory.record_store import (
    CONTEXT_SLICES,
    DOCUMENTS,
    MEMORIES,
    InMemoryRecordStore,
    RecordStore,
)
from agent_mesh.domain.context.memory.vector_memory_store import VectorMemoryStore
from agent_mesh.domain.models.agent_state import new_id
from agent_mesh.domain.models.errors import StorageError
from agent_mesh.domain.models.records import (
    AgentMemoryEntry,
    ChunkConfig,
    ContextSlice,
    Document,
    DocumentMetadata,
    MemoryType,
    SearchMode,
    SearchOptions,
    SearchResult,
)
from agent_mesh.infrastructure.config.settings import RetrievalSettings
from agent_mesh.infrastructure.llm.embedder import Embedder
from agent_mesh.infrastructure.observability.logging import metrics

logger = structlog.get_logger(__name__)

MetadataLike = Union[DocumentMetadata, Dict[str, Any]]


class HybridStore:
    """Local knowledge store searchable by meaning and by keyword.

    Documents live in a ``RecordStore``; the keyword index and the vector
    index are derived from it and rebuilt on ``initialize``. Index mutation
    is serialized by a single writer lock.
    """

    def __init__(
        self,
        embedder: Embedder,
        record_store: Optional[RecordStore] = None,
        settings: Optional[RetrievalSettings] = None,
    ):
        self.embedder = embedder
        self.record_store = record_store or InMemoryRecordStore()
        self.settings = settings or RetrievalSettings()
        self.keyword_index = KeywordIndex()
        self.vector_index = VectorMemoryStore()
        self._write_lock = asyncio.Lock()
        self._init_lock = asyncio.Lock()
        self._initialized = False

    async def initialize(self) -> None:
        """Load persisted documents into both indices. Safe to call repeatedly."""

        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return

            documents = await self.record_store.get_all(DOCUMENTS)
            async with self._write_lock:
                self.keyword_index.clear()
                for doc in documents:
                    self._index_keywords(doc)
                await self.vector_index.rebuild(
                    {doc.id: doc.embedding for doc in documents if doc.embedding}
                )

            self._initialized = True
            logger.info(
                "Hybrid store initialized",
                documents=len(documents),
                vectors=self.vector_index.size,
            )

    def _index_keywords(self, doc: Document) -> None:
        self.keyword_index.add(doc.id, doc.content, doc.metadata.title, doc.metadata.tags)

    async def generate_embedding(self, text: str) -> List[float]:
        return await self.embedder.embed(text)

    async def try_embed(self, text: str, purpose: str) -> Optional[List[float]]:
        try:
            return await self.generate_embedding(text)
        except Exception as e:
            logger.warning("Embedding failed, continuing without vector", purpose=purpose, error=str(e))
            return None

    async def add_document(
        self,
        content: str,
        metadata: MetadataLike,
        generate_embedding: bool = True,
    ) -> Document:
        """Persist and index a document.

        Embedding is best effort: a document without an embedding is still
        reachable through keyword search. A failed write raises StorageError.
        """
        await self.initialize()

        if not isinstance(metadata, DocumentMetadata):
            metadata = DocumentMetadata.model_validate(metadata)

        embedding = await self.try_embed(content, "document") if generate_embedding else None

        now = datetime.utcnow()
        doc = Document(
            content=content,
            metadata=metadata,
            embedding=embedding,
            created_at=now,
            updated_at=now,
        )

        async with self._write_lock:
            try:
                await self.record_store.put(DOCUMENTS, doc.id, doc)
            except Exception as e:
                logger.error("Failed to persist document", document_id=doc.id, error=str(e))
                raise StorageError(f"Failed to persist document {doc.id}: {e}") from e

            self._index_keywords(doc)
            if embedding:
                await self.vector_index.add(doc.id, embedding)

        metrics.increment_counter("store.documents_added")
        logger.debug(
            "Document added",
            document_id=doc.id,
            type=metadata.type.value,
            embedded=embedding is not None,
        )
        return doc

    async def add_document_with_chunking(
        self,
        content: str,
        metadata: MetadataLike,
        config: Optional[ChunkConfig] = None,
    ) -> List[Document]:
        if not isinstance(metadata, DocumentMetadata):
            metadata = DocumentMetadata.model_validate(metadata)
        config = config or ChunkConfig(
            chunk_size=self.settings.chunk_size,
            chunk_overlap=self.settings.chunk_overlap,
        )

        chunks = chunk_text(content, config)
        parent_id = new_id()
        documents = []

        for index, chunk in enumerate(chunks):
            chunk_metadata = metadata.model_copy(update={
                "parent_id": parent_id,
                "chunk_index": index,
                "total_chunks": len(chunks),
            })
            documents.append(await self.add_document(chunk, chunk_metadata))

        logger.info("Chunked document added", parent_id=parent_id, chunks=len(documents))
        return documents

    async def get_document(self, document_id: str) -> Optional[Document]:
        await self.initialize()
        return await self.record_store.get(DOCUMENTS, document_id)

    async def delete_document(self, document_id: str) -> bool:
        await self.initialize()

        async with self._write_lock:
            deleted = await self.record_store.delete(DOCUMENTS, document_id)
            self.keyword_index.remove(document_id)
            await self.vector_index.remove(document_id)

        if deleted:
            logger.debug("Document deleted", document_id=document_id)
        return deleted

    async def semantic_search(self, query: str, limit: int = 10) -> List[SearchResult]:
        try:
            await self.initialize()
            query_vector = await self.generate_embedding(query)

            results = []
            for document_id, distance in self.vector_index.search(query_vector, limit):
                doc = await self.record_store.get(DOCUMENTS, document_id)
                if doc:
                    results.append(SearchResult(
                        document=doc,
                        score=distance_to_score(distance),
                        match_type=SearchMode.SEMANTIC,
                    ))
            return results

        except Exception as e:
            logger.warning("Semantic search failed", query=query[:100], error=str(e))
            return []

    async def keyword_search(self, query: str, limit: int = 10) -> List[SearchResult]:
        try:
            await self.initialize()

            results: List[SearchResult] = []
            for document_id in self.keyword_index.search(query, limit):
                doc = await self.record_store.get(DOCUMENTS, document_id)
                if doc:
                    results.append(SearchResult(
                        document=doc,
                        score=keyword_rank_score(len(results)),
                        match_type=SearchMode.KEYWORD,
                    ))
            return results

        except Exception as e:
            logger.warning("Keyword search failed", query=query[:100], error=str(e))
            return []

    async def search(self, query: str, options: Optional[SearchOptions] = None, **overrides: Any) -> List[SearchResult]:
        """Search in the requested mode; hybrid fuses both rankings by id"""

        if options is None:
            options = SearchOptions(
                limit=self.settings.default_limit,
                semantic_weight=self.settings.semantic_weight,
            )
        if overrides:
            options = SearchOptions.model_validate({**options.model_dump(), **overrides})

        start = datetime.utcnow()

        if options.search_mode == SearchMode.SEMANTIC:
            results = await self.semantic_search(query, options.limit)
        elif options.search_mode == SearchMode.KEYWORD:
            results = await self.keyword_search(query, options.limit)
        else:
            semantic, keyword = await asyncio.gather(
                self.semantic_search(query, options.limit * 2),
                self.keyword_search(query, options.limit * 2),
            )
            results = fuse_results(
                semantic,
                keyword,
                semantic_weight=options.semantic_weight,
                threshold=options.threshold,
                limit=options.limit,
                metadata_filter=options.filter,
            )

        if options.filter and options.search_mode != SearchMode.HYBRID:
            results = [r for r in results if matches_filter(r, options.filter)]

        duration_ms = (datetime.utcnow() - start).total_seconds() * 1000
        metrics.record_latency("store.search", duration_ms, {"mode": options.search_mode.value})
        return results

    async def store_memory(
        self,
        agent_id: str,
        content: str,
        memory_type: MemoryType = MemoryType.SHORT_TERM,
        importance: float = 0.5,
    ) -> AgentMemoryEntry:
        embedding = await self.try_embed(content, "memory")
        entry = AgentMemoryEntry(
            agent_id=agent_id,
            type=memory_type,
            content=content,
            importance=importance,
            embedding=embedding,
        )

        try:
            await self.record_store.put(MEMORIES, entry.id, entry)
        except Exception as e:
            raise StorageError(f"Failed to persist memory {entry.id}: {e}") from e
        return entry

    async def get_agent_memories(
        self,
        agent_id: str,
        memory_type: Optional[MemoryType] = None,
    ) -> List[AgentMemoryEntry]:
        """Memories of one agent, most important first"""

        memories = await self.record_store.get_all_from_index(MEMORIES, "agent_id", agent_id)
        if memory_type is not None:
            memories = [m for m in memories if m.type == memory_type]
        return sorted(memories, key=lambda m: m.importance, reverse=True)

    async def store_context_slice(self, context_slice: ContextSlice) -> None:
        try:
            await self.record_store.put(CONTEXT_SLICES, context_slice.id, context_slice)
        except Exception as e:
            raise StorageError(f"Failed to persist context slice {context_slice.id}: {e}") from e

    async def get_recent_context_slices(self, limit: int = 10) -> List[ContextSlice]:
        slices = await self.record_store.get_all(CONTEXT_SLICES)
        slices.sort(key=lambda s: s.timestamp, reverse=True)
        return slices[:limit]

    async def search_context_slices(self, query: str, limit: int = 5) -> List[ContextSlice]:
        query_vector = await self.try_embed(query, "slice_query")
        if query_vector is None:
            return []

        slices = await self.record_store.get_all(CONTEXT_SLICES)
        scored = [
            (cosine_similarity(query_vector, s.embedding), s)
            for s in slices
            if s.embedding
        ]
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [s for _, s in scored[:limit]]

    async def get_stats(self) -> Dict[str, Any]:
        await self.initialize()
        return {
            "documents": await self.record_store.count(DOCUMENTS),
            "memories": await self.record_store.count(MEMORIES),
            "context_slices": await self.record_store.count(CONTEXT_SLICES),
            "keyword_entries": len(self.keyword_index),
            "vector_entries": self.vector_index.size,
            "vector_dimension": self.vector_index.dimension,
        }

    async def clear(self) -> None:
        async with self._write_lock:
            for collection in (DOCUMENTS, MEMORIES, CONTEXT_SLICES):
                await self.record_store.clear(collection)
            self.keyword_index.clear()
            await self.vector_index.clear()

        logger.info("Hybrid store cleared")
