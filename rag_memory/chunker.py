"""Fixed-size, overlapping character windows over document text."""

from dataclasses import dataclass
from typing import List

from rag_memory.config import validate_chunking


@dataclass(frozen=True)
class ChunkWindow:
    index: int
    content: str
    start_pos: int
    end_pos: int

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "text": self.content,
            "startPos": self.start_pos,
            "endPos": self.end_pos,
        }


def compute_chunk_windows(
    text: str, max_chunk_size: int = 500, overlap: int = 50
) -> List[ChunkWindow]:
    """Split text into windows of at most max_chunk_size characters.

    Window i starts at i * (max_chunk_size - overlap). Boundaries ignore word
    and sentence structure, so identical input always yields identical chunks.
    """
    validate_chunking(max_chunk_size, overlap)

    step = max_chunk_size - overlap
    windows: List[ChunkWindow] = []
    start = 0
    while start < len(text):
        end = min(start + max_chunk_size, len(text))
        windows.append(ChunkWindow(
            index=len(windows), content=text[start:end], start_pos=start, end_pos=end,
        ))
        start += step
    return windows
