from typing import List, Optional

from agent_mesh.domain.models.records import ChunkConfig


def _split_oversized(segment: str, size: int) -> List[str]:
    """Pack the words of a segment into chunks of at most ``size`` characters.

    Words longer than ``size`` are cut at character boundaries.
    """
    chunks: List[str] = []
    current = ""

    for word in segment.split(" "):
        pieces = [word[i:i + size] for i in range(0, len(word), size)] if len(word) > size else [word]
        for piece in pieces:
            candidate = f"{current} {piece}" if current else piece
            if len(candidate) <= size:
                current = candidate
            else:
                chunks.append(current)
                current = piece

    if current:
        chunks.append(current)
    return chunks


def chunk_text(text: str, config: Optional[ChunkConfig] = None) -> List[str]:
    """Split text into bounded chunks with optional trailing-context overlap.

    Segments separated by ``config.separator`` are packed greedily. Before
    overlap is applied every chunk is at most ``chunk_size`` characters.
    Chunk ``i > 0`` is then prefixed with the last ``chunk_overlap``
    characters of chunk ``i - 1`` and a single space.
    """
    config = config or ChunkConfig()
    size = config.chunk_size
    separator = config.separator

    if not text:
        return []

    chunks: List[str] = []
    current = ""

    for segment in text.split(separator):
        candidate = f"{current}{separator}{segment}" if current else segment
        if len(candidate) <= size:
            current = candidate
            continue

        if current:
            chunks.append(current)
            current = ""

        if len(segment) <= size:
            current = segment
        else:
            pieces = _split_oversized(segment, size)
            chunks.extend(pieces[:-1])
            current = pieces[-1] if pieces else ""

    if current:
        chunks.append(current)

    if config.chunk_overlap <= 0 or len(chunks) < 2:
        return chunks

    overlapped = [chunks[0]]
    for previous, chunk in zip(chunks, chunks[1:]):
        overlapped.append(f"{previous[-config.chunk_overlap:]} {chunk}")
    return overlapped
