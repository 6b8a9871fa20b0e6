"""
Recursive Character Chunker

Splits extracted document text into overlapping, retrieval-sized segments,
cutting at the strongest semantic boundary available inside each window:

- paragraph break ("\\n\\n")
- line break ("\\n")
- sentence end (". ", "? ", "! ")
- word space (" ")
- raw character limit (last resort)

Segments tile the input: each one starts at or before the end of the
previous one, so no text is ever dropped.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterator, Optional

from .errors import ChunkingConfigError

logger = logging.getLogger(__name__)

DEFAULT_SEPARATORS = ["\n\n", "\n", ". ", "? ", "! ", " ", ""]


@dataclass
class TextSegment:
    """A contiguous slice of the source text."""
    index: int
    content: str
    start: int
    end: int

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "content": self.content,
            "start": self.start,
            "end": self.end,
        }


@dataclass
class ChunkConfig:
    """Configuration for chunking parameters (sizes in characters)."""
    chunk_size: int = 1000
    chunk_overlap: int = 200
    separators: list[str] = field(default_factory=lambda: list(DEFAULT_SEPARATORS))


class TextChunker:
    """
    Splits text into overlapping segments along semantic boundaries.

    For each window ``[start, start + chunk_size)`` the chunker searches
    backward from the window end for a separator, trying separators in
    preference order. A boundary is only used if the segment it produces is
    longer than the overlap, so every step moves the window forward. The
    empty separator means "cut at the raw size limit".
    """

    def __init__(self, config: Optional[ChunkConfig] = None):
        self.config = config or ChunkConfig()
        if self.config.chunk_size <= 0:
            raise ChunkingConfigError(
                f"chunk_size must be positive, got {self.config.chunk_size}"
            )
        if self.config.chunk_overlap < 0:
            raise ChunkingConfigError(
                f"chunk_overlap must not be negative, got {self.config.chunk_overlap}"
            )
        if self.config.chunk_overlap >= self.config.chunk_size:
            raise ChunkingConfigError(
                f"chunk_overlap ({self.config.chunk_overlap}) must be smaller "
                f"than chunk_size ({self.config.chunk_size})"
            )

        # The raw cut is always available, even if the caller left it out
        self._separators = [s for s in self.config.separators if s]

    def iter_segments(self, text: str) -> Iterator[TextSegment]:
        """Yield segments lazily, in document order."""
        if not text:
            return

        size = self.config.chunk_size
        overlap = self.config.chunk_overlap
        length = len(text)
        start = 0
        index = 0

        while start < length:
            window_end = min(start + size, length)
            if window_end == length:
                end = length
            else:
                end = self._find_cut(text, start, window_end)

            yield TextSegment(index=index, content=text[start:end], start=start, end=end)
            index += 1

            if end >= length:
                break
            # Never step back before the previous window's start
            start = max(end - overlap, start + 1, 0)

    def split_segments(self, text: str) -> list[TextSegment]:
        segments = list(self.iter_segments(text))
        logger.debug(f"Split {len(text)} chars into {len(segments)} segments")
        return segments

    def split(self, text: str) -> list[str]:
        """Split text into a list of segment strings."""
        return [segment.content for segment in self.iter_segments(text)]

    def _find_cut(self, text: str, start: int, window_end: int) -> int:
        """Return the cut position for the window, preferring stronger boundaries."""
        min_cut = start + self.config.chunk_overlap

        for separator in self._separators:
            idx = text.rfind(separator, start, window_end)
            if idx == -1:
                continue
            cut = idx + len(separator)
            if cut > min_cut:
                return cut

        return window_end
