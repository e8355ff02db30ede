"""
Splits sanitized document text into ordered, overlapping chunks.

Splitting is separator-priority based: a segment that is too long is split on
the first separator from DEFAULT_SEPARATORS that occurs in it, and any piece
still too long is split again with the separators after that one. The empty
separator means a hard character cut. This is done with an explicit work
stack rather than recursion, so deep documents cannot exhaust the stack.
"""
from collections import deque
from dataclasses import dataclass
from typing import List, Sequence

from .sanitizer import sanitize

DEFAULT_CHUNK_SIZE = 1500
DEFAULT_CHUNK_OVERLAP = 200

# Tried in this order; earlier entries win.
DEFAULT_SEPARATORS = (
    "\n\n",
    "。\n",
    "！\n",
    "？\n",
    "\n",
    "。",
    "！",
    "？",
    ". ",
    "! ",
    "? ",
    "、",
    " ",
    "　",
    "",
)


@dataclass(frozen=True)
class ChunkDraft:
    order: int
    text: str


def _split_keep_separator(segment: str, separator: str) -> List[str]:
    parts = segment.split(separator)
    pieces = [part + separator for part in parts[:-1]] + [parts[-1]]
    return [p for p in pieces if p]


def _hard_cut(segment: str, size: int) -> List[str]:
    return [segment[i:i + size] for i in range(0, len(segment), size)]


def _atomize(text: str, chunk_size: int, separators: Sequence[str]) -> List[str]:
    """Break text into in-order pieces that each fit in chunk_size."""
    atoms = []
    # Each entry: (segment, index of the first separator still allowed)
    stack = [(text, 0)]
    while stack:
        segment, sep_index = stack.pop()
        if len(segment) <= chunk_size:
            atoms.append(segment)
            continue

        pieces = None
        for i in range(sep_index, len(separators)):
            separator = separators[i]
            if separator == "":
                pieces = [(p, len(separators)) for p in _hard_cut(segment, chunk_size)]
                break
            if separator in segment:
                pieces = [(p, i + 1) for p in _split_keep_separator(segment, separator)]
                break

        if pieces is None:
            pieces = [(p, len(separators)) for p in _hard_cut(segment, chunk_size)]

        # Reverse so the first piece is processed first.
        stack.extend(reversed(pieces))
    return atoms


def _merge(atoms: List[str], chunk_size: int, chunk_overlap: int) -> List[str]:
    """Greedily pack atoms into chunks, carrying up to chunk_overlap chars of tail."""
    chunks = []
    current = deque()
    total = 0
    for atom in atoms:
        n = len(atom)
        if current and total + n > chunk_size:
            chunks.append("".join(current))
            while current and (total > chunk_overlap or total + n > chunk_size):
                total -= len(current.popleft())
        current.append(atom)
        total += n
    if current:
        chunks.append("".join(current))
    return chunks


def split_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    separators: Sequence[str] = DEFAULT_SEPARATORS,
) -> List[str]:
    """
    Split text into chunks of at most chunk_size characters.

    Args:
        text: Text to split
        chunk_size: Maximum characters per chunk
        chunk_overlap: Characters of trailing context repeated at the start of the next chunk
        separators: Separator priority table; "" enables hard cuts

    Returns:
        Ordered list of raw (unsanitized) chunk strings
    """
    if chunk_overlap >= chunk_size:
        raise ValueError("chunk_overlap must be smaller than chunk_size")
    if not text:
        return []
    atoms = _atomize(text, chunk_size, separators)
    return _merge(atoms, chunk_size, chunk_overlap)


def chunk_document(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> List[ChunkDraft]:
    """
    Split and re-sanitize document text.

    Pieces that are empty after sanitization are dropped and the kept ones
    are numbered 1..N.
    """
    kept = []
    for piece in split_text(text, chunk_size, chunk_overlap):
        clean = sanitize(piece)
        if clean:
            kept.append(clean)
    return [ChunkDraft(order=i, text=t) for i, t in enumerate(kept, start=1)]
