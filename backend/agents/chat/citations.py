"""
Citation handling for source-grounded answers.

Chunks are numbered by position: the first retrieved chunk is [1], the
second [2], and so on. Any marker outside 1..N is removed from the answer,
including while it streams.
"""
import re
from typing import Any, Dict, List, Sequence

CITATION_PATTERN = re.compile(r"\[(\d+)\]")
# An unterminated marker at the end of a streamed piece, e.g. "[" or "[1"
_PARTIAL_MARKER = re.compile(r"\[\d*$")


def strip_invalid_citations(text: str, max_index: int) -> str:
    def _keep_valid(match: "re.Match[str]") -> str:
        number = int(match.group(1))
        return match.group(0) if 1 <= number <= max_index else ""

    return CITATION_PATTERN.sub(_keep_valid, text)


def cited_indices(text: str) -> List[int]:
    return [int(number) for number in CITATION_PATTERN.findall(text)]


class CitationFilter:
    """
    Incremental strip_invalid_citations for streamed text.

    Only a trailing partial marker is held back until the next piece (or
    flush) decides whether it is a citation, so the concatenation of every
    feed() and flush() result equals strip_invalid_citations(full_text).
    """

    def __init__(self, max_index: int):
        self.max_index = max_index
        self._pending = ""

    def feed(self, text: str) -> str:
        buffer = self._pending + text
        match = _PARTIAL_MARKER.search(buffer)
        if match:
            self._pending = buffer[match.start():]
            buffer = buffer[:match.start()]
        else:
            self._pending = ""
        return strip_invalid_citations(buffer, self.max_index)

    def flush(self) -> str:
        rest, self._pending = self._pending, ""
        return strip_invalid_citations(rest, self.max_index)


def format_chunks_for_prompt(chunks: Sequence[Dict[str, Any]]) -> str:
    lines = []
    for position, chunk in enumerate(chunks, start=1):
        source_name = chunk.get("source_name") or "Unknown source"
        lines.append(f"[{position}] (from {source_name})\n{chunk.get('text', '').strip()}")
    return "\n\n".join(lines)


def build_message_sources(chunks: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """One citation per chunk, in chunk order (citation k = chunk k)."""
    return [
        {
            "citation": position,
            "chunk_id": chunk.get("chunk_id", ""),
            "source_id": chunk.get("source_id", ""),
            "source_name": chunk.get("source_name", ""),
            "chunk_text": chunk.get("text", ""),
            "chunk_index": chunk.get("index", 0),
            "similarity": chunk.get("similarity", 0.0),
        }
        for position, chunk in enumerate(chunks, start=1)
    ]
