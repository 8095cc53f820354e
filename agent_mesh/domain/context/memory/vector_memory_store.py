from typing import Dict, List, Optional, Sequence, Tuple
import asyncio

import numpy as np
import structlog

logger = structlog.get_logger(__name__)


class VectorMemoryStore:
    """Exact k-nearest-neighbour index over document embeddings.

    Rows are kept L2-normalized so cosine distance is ``1 - dot``. Writers
    build a fresh matrix and swap it in, so a search always reads one
    consistent snapshot even while a rebuild is in progress.
    """

    def __init__(self):
        self.embeddings: Dict[str, np.ndarray] = {}
        self._snapshot: Tuple[List[str], Optional[np.ndarray]] = ([], None)
        self._lock = asyncio.Lock()

    @property
    def size(self) -> int:
        return len(self._snapshot[0])

    @property
    def dimension(self) -> Optional[int]:
        matrix = self._snapshot[1]
        return None if matrix is None else int(matrix.shape[1])

    async def add(self, item_id: str, embedding: Sequence[float]) -> None:
        async with self._lock:
            self.embeddings[item_id] = np.asarray(embedding, dtype=np.float32)
            self._rebuild()

    async def remove(self, item_id: str) -> bool:
        async with self._lock:
            if self.embeddings.pop(item_id, None) is None:
                return False
            self._rebuild()
            return True

    async def rebuild(self, items: Dict[str, Sequence[float]]) -> None:
        """Replace the whole index with ``items``"""

        async with self._lock:
            self.embeddings = {
                item_id: np.asarray(vector, dtype=np.float32)
                for item_id, vector in items.items()
            }
            self._rebuild()

    async def clear(self) -> None:
        async with self._lock:
            self.embeddings = {}
            self._snapshot = ([], None)

    def _rebuild(self) -> None:
        if not self.embeddings:
            self._snapshot = ([], None)
            return

        dimensions = {vector.shape[0] for vector in self.embeddings.values()}
        if len(dimensions) > 1:
            # Keep the majority dimension; mixed embedders cannot share one index
            majority = max(dimensions, key=lambda d: sum(1 for v in self.embeddings.values() if v.shape[0] == d))
            logger.warning("Dropping embeddings with mismatched dimension", expected=majority)
            items = {k: v for k, v in self.embeddings.items() if v.shape[0] == majority}
        else:
            items = self.embeddings

        ids = list(items.keys())
        matrix = np.vstack([items[item_id] for item_id in ids])
        norms = np.linalg.norm(matrix, axis=1, keepdims=True)
        norms[norms == 0] = 1.0
        self._snapshot = (ids, matrix / norms)

    def search(self, query: Sequence[float], k: int) -> List[Tuple[str, float]]:
        """Return up to ``k`` ``(id, cosine_distance)`` pairs, nearest first"""

        ids, matrix = self._snapshot
        if matrix is None or k <= 0:
            return []

        vector = np.asarray(query, dtype=np.float32)
        if vector.shape[0] != matrix.shape[1]:
            logger.warning("Query dimension mismatch", query_dim=int(vector.shape[0]), index_dim=int(matrix.shape[1]))
            return []

        norm = np.linalg.norm(vector)
        if norm == 0:
            return []

        similarities = matrix @ (vector / norm)
        top = np.argsort(-similarities)[:k]
        return [(ids[i], float(1.0 - similarities[i])) for i in top]
