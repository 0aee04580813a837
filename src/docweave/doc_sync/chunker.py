"""Chunking engine: split document bodies into overlapping content chunks."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_OVERLAP = 200
DEFAULT_MIN_CHUNK_SIZE = 100

# Paragraph separator: a blank line (optionally with CRLF endings).
_PARAGRAPH_SPLIT_RE = re.compile(r"\r?\n\r?\n")

_SEPARATOR = "\n\n"

# A word boundary this close to the end of the overlap window is ignored.
_MIN_OVERLAP_TAIL = 10


@dataclass(frozen=True)
class ChunkingOptions:
    """Chunk sizing parameters, in characters."""

    chunk_size: int = DEFAULT_CHUNK_SIZE
    overlap: int = DEFAULT_OVERLAP
    min_chunk_size: int = DEFAULT_MIN_CHUNK_SIZE
    respect_paragraph_boundaries: bool = True

    def validate(self) -> None:
        """Raise ``ValueError`` if the options are inconsistent."""
        if self.chunk_size <= 0:
            msg = "chunk_size must be greater than 0"
            raise ValueError(msg)
        if self.overlap < 0:
            msg = "overlap cannot be negative"
            raise ValueError(msg)
        if self.overlap >= self.chunk_size:
            msg = "overlap must be less than chunk_size"
            raise ValueError(msg)
        if self.min_chunk_size < 0:
            msg = "min_chunk_size cannot be negative"
            raise ValueError(msg)


@dataclass(frozen=True)
class ContentChunk:
    """A slice of a document body with offsets into the original text."""

    index: int
    content: str
    start_offset: int
    end_offset: int

    @property
    def length(self) -> int:
        return len(self.content)


def should_chunk(text: str, options: ChunkingOptions | None = None) -> bool:
    """Return True if *text* is longer than one chunk."""
    options = options or ChunkingOptions()
    return bool(text) and len(text) > options.chunk_size


def estimate_chunk_count(text: str, options: ChunkingOptions | None = None) -> int:
    options = options or ChunkingOptions()
    if not text or len(text) <= options.chunk_size:
        return 1
    step = options.chunk_size - options.overlap
    return math.ceil(len(text) / step)


def chunk_text(text: str, options: ChunkingOptions | None = None) -> list[ContentChunk]:
    """Split *text* into ordered chunks.

    Bodies no longer than ``chunk_size`` yield a single chunk. Longer bodies
    are split on paragraph boundaries (or by a sliding window when
    ``respect_paragraph_boundaries`` is off), then chunks shorter than
    ``min_chunk_size`` are folded into their successor.
    """
    options = options or ChunkingOptions()
    options.validate()

    if not text:
        return []

    if len(text) <= options.chunk_size:
        return [ContentChunk(index=0, content=text.strip(), start_offset=0, end_offset=len(text))]

    if options.respect_paragraph_boundaries:
        chunks = _chunk_by_paragraphs(text, options)
    else:
        chunks = _chunk_by_size(text, options)

    return merge_small_chunks(chunks, options.min_chunk_size)


def _split_paragraphs(text: str) -> list[tuple[str, int]]:
    """Return ``(paragraph, start_offset)`` pairs for non-blank paragraphs."""
    paragraphs: list[tuple[str, int]] = []
    pos = 0
    for match in _PARAGRAPH_SPLIT_RE.finditer(text):
        _append_paragraph(paragraphs, text, pos, match.start())
        pos = match.end()
    _append_paragraph(paragraphs, text, pos, len(text))
    return paragraphs


def _append_paragraph(out: list[tuple[str, int]], text: str, start: int, end: int) -> None:
    raw = text[start:end]
    stripped = raw.strip()
    if stripped:
        out.append((stripped, start + raw.index(stripped[0])))


def overlap_tail(content: str, overlap: int) -> str:
    """Return the tail of *content* used to seed the next chunk.

    Prefers cutting just after the first space inside the last *overlap*
    characters; falls back to a hard character cut.
    """
    if overlap <= 0:
        return ""
    if len(content) <= overlap:
        return content
    start = len(content) - overlap
    space = content.find(" ", start)
    if space != -1 and space < len(content) - _MIN_OVERLAP_TAIL:
        return content[space + 1 :]
    return content[start:]


def _chunk_by_paragraphs(text: str, options: ChunkingOptions) -> list[ContentChunk]:
    chunks: list[ContentChunk] = []
    current = ""
    current_start = 0
    last_end = 0

    for para, para_start in _split_paragraphs(text):
        if current and len(current) + len(para) + len(_SEPARATOR) > options.chunk_size:
            closed = current.strip()
            if closed:
                chunks.append(
                    ContentChunk(
                        index=len(chunks),
                        content=closed,
                        start_offset=current_start,
                        end_offset=last_end,
                    )
                )
            tail = overlap_tail(closed, options.overlap)
            current = tail
            current_start = max(last_end - len(tail), 0) if tail else para_start

        current = f"{current}{_SEPARATOR}{para}" if current else para
        if not chunks and len(current) == len(para):
            current_start = para_start
        last_end = para_start + len(para)

    final = current.strip()
    if final:
        chunks.append(
            ContentChunk(
                index=len(chunks),
                content=final,
                start_offset=current_start,
                end_offset=len(text),
            )
        )
    return chunks


def _chunk_by_size(text: str, options: ChunkingOptions) -> list[ContentChunk]:
    chunks: list[ContentChunk] = []
    step = options.chunk_size - options.overlap
    offset = 0
    while offset < len(text):
        end = min(offset + options.chunk_size, len(text))
        chunks.append(
            ContentChunk(index=len(chunks), content=text[offset:end], start_offset=offset, end_offset=end)
        )
        if end >= len(text):
            break
        next_offset = offset + step
        # Always make forward progress.
        offset = next_offset if next_offset > offset else end
    return chunks


def merge_small_chunks(chunks: list[ContentChunk], min_chunk_size: int) -> list[ContentChunk]:
    """Fold chunks shorter than *min_chunk_size* into their successor.

    The final chunk is never merged (it has no successor). Indices are
    renumbered sequentially.
    """
    if len(chunks) <= 1 or min_chunk_size <= 0:
        return list(chunks)

    pending = list(chunks)
    result: list[ContentChunk] = []
    i = 0
    while i < len(pending):
        current = pending[i]
        if len(current.content) < min_chunk_size and i + 1 < len(pending):
            nxt = pending[i + 1]
            pending[i + 1] = ContentChunk(
                index=len(result),
                content=f"{current.content}{_SEPARATOR}{nxt.content}",
                start_offset=current.start_offset,
                end_offset=nxt.end_offset,
            )
            i += 1
            continue
        result.append(
            ContentChunk(
                index=len(result),
                content=current.content,
                start_offset=current.start_offset,
                end_offset=current.end_offset,
            )
        )
        i += 1
    return result


def line_number_at(text: str, offset: int) -> int:
    """Return the 1-based line number of character *offset* in *text*."""
    if not text or offset <= 0:
        return 1
    return text.count("\n", 0, min(offset, len(text))) + 1
