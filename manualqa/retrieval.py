"""
Multi-query retrieval over the corpus store.

Each planned query is embedded and searched concurrently (bounded by a
semaphore). A failed or timed-out sub-query contributes nothing; the others
still count. Results are merged by chunk id in query order, then sorted by
similarity and capped.
"""
import asyncio
from dataclasses import dataclass
from time import perf_counter
from typing import List, Optional, Sequence

from .logging_config import logger
from .store import SearchHit


@dataclass(frozen=True)
class RetrievedChunk:
    chunk_id: str
    document_id: str
    file_name: str
    position: int
    text: str
    similarity: float
    query: str

    @classmethod
    def from_hit(cls, hit: SearchHit, query: str) -> "RetrievedChunk":
        return cls(
            chunk_id=hit.chunk_id,
            document_id=hit.document_id,
            file_name=hit.file_name,
            position=hit.position,
            text=hit.text,
            similarity=hit.similarity,
            query=query,
        )


class Retriever:
    def __init__(
        self,
        embedder,
        store,
        workers: int = 4,
        embed_timeout: float = 30.0,
        search_timeout: float = 15.0,
    ):
        self.embedder = embedder
        self.store = store
        self.workers = max(1, workers)
        self.embed_timeout = embed_timeout
        self.search_timeout = search_timeout

    async def _run_query(
        self,
        query: str,
        semaphore: asyncio.Semaphore,
        threshold: float,
        limit: int,
        scope: Optional[Sequence[str]],
        owner_id: Optional[str],
    ) -> List[RetrievedChunk]:
        async with semaphore:
            t = perf_counter()
            try:
                vector = await asyncio.wait_for(self.embedder.embed_one(query), self.embed_timeout)
                hits = await asyncio.wait_for(
                    asyncio.to_thread(self.store.search, vector, threshold, limit, scope, owner_id),
                    self.search_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning("Sub-query timed out", query=query[:80])
                return []
            except Exception as e:
                logger.warning("Sub-query failed", query=query[:80], error=str(e) or e.__class__.__name__)
                return []
            logger.info(
                "Sub-query searched",
                query=query[:80],
                hits=len(hits),
                ms=round((perf_counter() - t) * 1000, 2),
            )
            return [RetrievedChunk.from_hit(h, query) for h in hits]

    async def retrieve(
        self,
        queries: Sequence[str],
        scope: Optional[Sequence[str]] = None,
        threshold: float = 0.6,
        per_query_limit: int = 5,
        top_n: int = 7,
        owner_id: Optional[str] = None,
    ) -> List[RetrievedChunk]:
        """
        Retrieve the best chunks for a set of queries.

        Args:
            queries: planned search queries (blank ones are ignored)
            scope: document ids to restrict the search to; None means no
                   restriction and an empty list matches nothing
            threshold: minimum cosine similarity
            per_query_limit: hits kept per sub-query
            top_n: maximum number of chunks returned

        Returns:
            Unique chunks, highest similarity first
        """
        if scope is not None and len(scope) == 0:
            logger.info("Empty retrieval scope, skipping search")
            return []

        unique_queries = list(dict.fromkeys(q.strip() for q in queries if q and q.strip()))
        if not unique_queries:
            return []

        semaphore = asyncio.Semaphore(self.workers)
        results = await asyncio.gather(
            *(
                self._run_query(q, semaphore, threshold, per_query_limit, scope, owner_id)
                for q in unique_queries
            )
        )

        merged = {}
        for hits in results:
            for chunk in hits:
                merged.setdefault(chunk.chunk_id, chunk)

        ranked = sorted(merged.values(), key=lambda c: c.similarity, reverse=True)[:top_n]
        logger.info(
            "Retrieval finished",
            queries=len(unique_queries),
            unique_chunks=len(merged),
            returned=len(ranked),
        )
        return ranked
