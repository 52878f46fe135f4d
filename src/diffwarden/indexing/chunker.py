"""
Text Chunker

Splits file contents into bounded, overlapping chunks for embedding.
Prefers paragraph boundaries, then lines, then sentences, and only cuts
mid-text when nothing else fits.
"""

import hashlib

from .file_filter import detect_language
from .models import Chunk, make_chunk_id


class TextChunker:
    """Recursive character splitter with overlap."""

    # Most to least preferred split points; "" means hard cut
    SEPARATORS = ["\n\n", "\n", ". ", ""]

    def __init__(self, chunk_size: int = 1000, chunk_overlap: int = 200):
        """
        Initialize chunker.

        Args:
            chunk_size: Maximum characters per chunk
            chunk_overlap: Characters carried over between adjacent chunks
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 <= chunk_overlap < chunk_size:
            raise ValueError("chunk_overlap must be in [0, chunk_size)")
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    def split_text(self, text: str) -> list[str]:
        """Split text into chunks of at most ``chunk_size`` characters."""
        if not text.strip():
            return []
        pieces = self._split(text, self.SEPARATORS)
        return [p.strip() for p in pieces if p.strip()]

    def chunk_file(self, path: str, text: str, namespace: str) -> list[Chunk]:
        """Split a file and attach deterministic ids and metadata."""
        language = detect_language(path)
        chunks: list[Chunk] = []
        for index, piece in enumerate(self.split_text(text)):
            content_hash = hashlib.md5(piece.encode("utf-8")).hexdigest()
            chunks.append(
                Chunk(
                    id=make_chunk_id(namespace, path, index, content_hash),
                    text=piece,
                    file_path=path,
                    chunk_index=index,
                    content_hash=content_hash,
                    language=language,
                    namespace=namespace,
                )
            )
        return chunks

    def _split(self, text: str, separators: list[str]) -> list[str]:
        separator = ""
        remaining: list[str] = []
        for i, candidate in enumerate(separators):
            if candidate == "":
                break
            if candidate in text:
                separator = candidate
                remaining = separators[i + 1 :]
                break

        if separator == "":
            return self._hard_cut(text)

        chunks: list[str] = []
        pending: list[str] = []
        for piece in self._split_keeping_separator(text, separator):
            if len(piece) <= self.chunk_size:
                pending.append(piece)
                continue
            if pending:
                chunks.extend(self._merge(pending))
                pending = []
            chunks.extend(self._split(piece, remaining) if remaining else self._hard_cut(piece))
        if pending:
            chunks.extend(self._merge(pending))
        return chunks

    @staticmethod
    def _split_keeping_separator(text: str, separator: str) -> list[str]:
        parts = text.split(separator)
        pieces = [part + separator for part in parts[:-1]]
        pieces.append(parts[-1])
        return [p for p in pieces if p]

    def _hard_cut(self, text: str) -> list[str]:
        step = self.chunk_size - self.chunk_overlap
        chunks = []
        for start in range(0, len(text), step):
            chunks.append(text[start : start + self.chunk_size])
            if start + self.chunk_size >= len(text):
                break
        return chunks

    def _merge(self, pieces: list[str]) -> list[str]:
        """Greedily join pieces up to chunk_size, carrying an overlap tail."""
        merged: list[str] = []
        current: list[str] = []
        total = 0

        for piece in pieces:
            if current and total + len(piece) > self.chunk_size:
                merged.append("".join(current))
                # Drop from the front until the tail fits the overlap and the next piece
                while current and (
                    total > self.chunk_overlap or total + len(piece) > self.chunk_size
                ):
                    total -= len(current[0])
                    current.pop(0)
            current.append(piece)
            total += len(piece)

        if current:
            merged.append("".join(current))
        return merged
