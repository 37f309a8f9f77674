"""Dense retriever scoped to one tenant and one agent.

The query is embedded with the same model (and dimensions) used at ingest,
so the lookup always hits the vec table that model wrote to. Tenant and
agent filters are applied inside the KNN query, never after it.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from ragline.db.repository import Repository
from ragline.db.vectors import vec_table_exists, vec_table_for
from ragline.ingest.embedder import Embedder

logger = structlog.get_logger(logger_name=__name__)


@dataclass
class RetrievedChunk:
    """A chunk returned for a query, ready for prompt building and citations.

    Attributes:
        score: Cosine similarity to the query (higher = more relevant).
    """

    chunk_id: str
    score: float
    content: str
    source_id: str
    source_type: str
    source_name: str
    chunk_index: int
    page_number: int | None = None
    url: str | None = None


class Retriever:
    def __init__(
        self,
        embedder: Embedder,
        repo: Repository,
        dimensions: int | None = None,
    ) -> None:
        self._embedder = embedder
        self._repo = repo
        dims = dimensions if dimensions is not None else embedder.dimensions
        if dims is None:
            raise ValueError("Retriever needs the agent's embedding dimensions")
        self._vec_table = vec_table_for(embedder.model, dims)

    @property
    def vec_table(self) -> str:
        return self._vec_table

    def retrieve(
        self, tenant_id: str, agent_id: str, query: str, k: int = 5
    ) -> list[RetrievedChunk]:
        """Embed *query* and return the *k* most similar chunks, best first."""
        if not query.strip():
            return []
        if not vec_table_exists(self._repo.conn, self._vec_table):
            logger.info("no_vec_table", vec_table=self._vec_table)
            return []
        vector = self._embedder.embed_one(query)
        return self.retrieve_by_vector(tenant_id, agent_id, vector, k=k)

    def retrieve_by_vector(
        self, tenant_id: str, agent_id: str, vector: list[float], k: int = 5
    ) -> list[RetrievedChunk]:
        """Search with a pre-computed query embedding."""
        if not vec_table_exists(self._repo.conn, self._vec_table):
            return []

        hits = self._repo.similarity_search(self._vec_table, tenant_id, agent_id, vector, k)
        chunks = {c.id: c for c in self._repo.get_chunks_by_ids([cid for cid, _ in hits])}

        results: list[RetrievedChunk] = []
        for chunk_id, score in hits:
            chunk = chunks.get(chunk_id)
            if chunk is None:  # deleted between search and hydration
                continue
            results.append(
                RetrievedChunk(
                    chunk_id=chunk.id,
                    score=score,
                    content=chunk.content,
                    source_id=chunk.source_id,
                    source_type=chunk.metadata.source_type,
                    source_name=chunk.metadata.source_name,
                    chunk_index=chunk.chunk_index,
                    page_number=chunk.metadata.page_number,
                    url=chunk.metadata.url,
                )
            )
        logger.debug("retrieved", tenant_id=tenant_id, agent_id=agent_id, hits=len(results))
        return results
