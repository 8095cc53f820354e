from typing import List, Optional
import asyncio

from agent_mesh.domain.models.agent_state import ConversationTurn


class RuntimeMemory:
    """Live conversation turns with a running token total.

    ``current_tokens`` always equals the sum of ``token_count`` over the
    held turns; every mutation updates both under one lock.
    """

    def __init__(self):
        self.turns: List[ConversationTurn] = []
        self.current_tokens = 0
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self.turns)

    async def append(self, turn: ConversationTurn) -> int:
        """Append a turn and return the new token total"""

        async with self._lock:
            self.turns.append(turn)
            self.current_tokens += turn.token_count
            return self.current_tokens

    def snapshot(self) -> List[ConversationTurn]:
        return list(self.turns)

    def oldest(self, count: int) -> List[ConversationTurn]:
        return list(self.turns[:count])

    async def remove_oldest(self, expected: List[ConversationTurn]) -> int:
        """Drop exactly ``expected`` from the head and return the tokens freed.

        Raises if the head no longer matches, which means another writer
        changed the history between selection and removal.
        """
        async with self._lock:
            head = self.turns[:len(expected)]
            if [t.id for t in head] != [t.id for t in expected]:
                raise RuntimeError("Conversation head changed during eviction")

            freed = sum(t.token_count for t in expected)
            del self.turns[:len(expected)]
            self.current_tokens -= freed
            return freed

    async def clear(self) -> None:
        async with self._lock:
            self.turns = []
            self.current_tokens = 0

    def last(self) -> Optional[ConversationTurn]:
        return self.turns[-1] if self.turns else None
