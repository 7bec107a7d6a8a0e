"""Overlapping text chunking for knowledge ingestion."""

from casesim.core.errors import ChunkingFailure

# Tried in order; the empty separator is a hard character cut
DEFAULT_SEPARATORS: tuple[str, ...] = ("\n\n", "\n", ". ", "? ", "! ", "; ", ", ", " ", "")


def split_text(
    text: str,
    chunk_size: int = 1000,
    chunk_overlap: int = 100,
    separators: tuple[str, ...] = DEFAULT_SEPARATORS,
) -> list[str]:
    """
    Split text into overlapping chunks no longer than chunk_size.

    Each chunk ends at the highest-priority separator found in the back half
    of its window, falling back to lower-priority separators and finally to a
    character cut. Chunk i+1 always starts with the last chunk_overlap
    characters of chunk i, so joining the chunks with the overlaps removed
    reproduces the input exactly.

    Args:
        text: Text to split
        chunk_size: Maximum characters per chunk
        chunk_overlap: Characters shared between consecutive chunks

    Returns:
        List of chunk strings (empty for blank input)

    Raises:
        ValueError: If chunk_size <= chunk_overlap or chunk_overlap < 0
    """
    if chunk_overlap < 0:
        raise ValueError(f"chunk_overlap ({chunk_overlap}) must be non-negative")
    if chunk_size <= chunk_overlap:
        raise ValueError(
            f"chunk_size ({chunk_size}) must be greater than chunk_overlap ({chunk_overlap})"
        )

    if not text or not text.strip():
        return []

    if len(text) <= chunk_size:
        return [text]

    chunks: list[str] = []
    start = 0
    text_length = len(text)

    while True:
        window_end = start + chunk_size
        if window_end >= text_length:
            chunks.append(text[start:])
            break

        end = _find_break(text, start, window_end, chunk_size, chunk_overlap, separators)
        chunks.append(text[start:end])
        start = end - chunk_overlap

    return chunks


def _find_break(
    text: str,
    start: int,
    window_end: int,
    chunk_size: int,
    chunk_overlap: int,
    separators: tuple[str, ...],
) -> int:
    # Breaks earlier than this would produce tiny chunks or stall the cursor
    earliest = start + max(chunk_overlap + 1, chunk_size // 2)

    for separator in separators:
        if not separator:
            return window_end
        position = text.rfind(separator, earliest, window_end)
        if position == -1:
            continue
        end = position + len(separator)
        if earliest <= end <= window_end:
            return end

    return window_end


def reassemble(chunks: list[str], chunk_overlap: int) -> str:
    """Join chunks produced by split_text, dropping the shared overlaps."""
    if not chunks:
        return ""
    return chunks[0] + "".join(chunk[chunk_overlap:] for chunk in chunks[1:])


class KnowledgeChunker:
    """Chunker bound to configured size and overlap."""

    def __init__(self, chunk_size: int = 1000, chunk_overlap: int = 100):
        if chunk_size <= chunk_overlap:
            raise ValueError(
                f"chunk_size ({chunk_size}) must be greater than chunk_overlap ({chunk_overlap})"
            )
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    def split(self, text: str) -> list[str]:
        """Split text, translating internal failures into ChunkingFailure."""
        try:
            chunks = split_text(text, self.chunk_size, self.chunk_overlap)
        except ValueError as e:
            raise ChunkingFailure(str(e)) from e

        if any(len(chunk) > self.chunk_size for chunk in chunks):
            raise ChunkingFailure("Chunk exceeded configured size")
        if reassemble(chunks, self.chunk_overlap) != text and text.strip():
            raise ChunkingFailure("Chunks do not reconstruct the source text")
        return chunks
