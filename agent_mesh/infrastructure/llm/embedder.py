from typing import List, Protocol, runtime_checkable
from langchain_core.embeddings import Embeddings


@runtime_checkable
class Embedder(Protocol):
    """Maps text to a fixed-dimension vector"""

    async def embed(self, text: str) -> List[float]:
        ...


class LangChainEmbedder:
    """Adapts any LangChain ``Embeddings`` implementation to the Embedder protocol"""

    def __init__(self, embeddings: Embeddings):
        self.embeddings = embeddings

    async def embed(self, text: str) -> List[float]:
        vector = await self.embeddings.aembed_query(text)
        return [float(value) for value in vector]
