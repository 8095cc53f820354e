from typing import Any, Dict, List, Optional, Protocol, runtime_checkable
import asyncio
from enum import Enum

from pydantic import BaseModel

DOCUMENTS = "documents"
MEMORIES = "memories"
CONTEXT_SLICES = "context_slices"

# collection -> index name -> attribute path on the stored record
DEFAULT_INDEXES: Dict[str, Dict[str, str]] = {
    DOCUMENTS: {
        "source": "metadata.source",
        "type": "metadata.type",
        "parent_id": "metadata.parent_id",
    },
    MEMORIES: {
        "agent_id": "agent_id",
        "type": "type",
    },
    CONTEXT_SLICES: {},
}


@runtime_checkable
class RecordStore(Protocol):
    """Keyed persistence for the hybrid store's three collections"""

    async def put(self, collection: str, key: str, record: BaseModel) -> None: ...

    async def get(self, collection: str, key: str) -> Optional[BaseModel]: ...

    async def delete(self, collection: str, key: str) -> bool: ...

    async def get_all(self, collection: str) -> List[BaseModel]: ...

    async def get_all_from_index(self, collection: str, index: str, value: Any) -> List[BaseModel]: ...

    async def count(self, collection: str) -> int: ...

    async def clear(self, collection: str) -> None: ...


def _resolve(record: BaseModel, path: str) -> Any:
    value: Any = record
    for part in path.split("."):
        if value is None:
            return None
        value = getattr(value, part, None)
    if isinstance(value, Enum):
        return value.value
    return value


class InMemoryRecordStore:
    """In-memory record store with secondary indexes"""

    def __init__(self, indexes: Optional[Dict[str, Dict[str, str]]] = None):
        self.indexes = indexes or DEFAULT_INDEXES
        self.collections: Dict[str, Dict[str, BaseModel]] = {name: {} for name in self.indexes}
        self._lock = asyncio.Lock()

    def _collection(self, collection: str) -> Dict[str, BaseModel]:
        if collection not in self.collections:
            raise KeyError(f"Unknown collection: {collection}")
        return self.collections[collection]

    async def put(self, collection: str, key: str, record: BaseModel) -> None:
        async with self._lock:
            self._collection(collection)[key] = record.model_copy(deep=True)

    async def get(self, collection: str, key: str) -> Optional[BaseModel]:
        async with self._lock:
            record = self._collection(collection).get(key)
            return record.model_copy(deep=True) if record is not None else None

    async def delete(self, collection: str, key: str) -> bool:
        async with self._lock:
            return self._collection(collection).pop(key, None) is not None

    async def get_all(self, collection: str) -> List[BaseModel]:
        async with self._lock:
            return [record.model_copy(deep=True) for record in self._collection(collection).values()]

    async def get_all_from_index(self, collection: str, index: str, value: Any) -> List[BaseModel]:
        """Return every record whose indexed attribute equals ``value``"""

        path = self.indexes.get(collection, {}).get(index)
        if path is None:
            raise KeyError(f"Unknown index {index!r} on collection {collection!r}")
        if isinstance(value, Enum):
            value = value.value

        async with self._lock:
            return [
                record.model_copy(deep=True)
                for record in self._collection(collection).values()
                if _resolve(record, path) == value
            ]

    async def count(self, collection: str) -> int:
        async with self._lock:
            return len(self._collection(collection))

    async def clear(self, collection: str) -> None:
        async with self._lock:
            self._collection(collection).clear()
