"""Chunking of file lists under a command-line length budget."""

from __future__ import annotations

import logging
import math
import os
import sys
from collections.abc import Sequence
from pathlib import Path

logger = logging.getLogger(__name__)


def get_max_arg_length(platform: str | None = None) -> int:
    """Return the platform argument budget, halved to leave room for the command and env."""
    name = platform or sys.platform
    if name == "darwin":
        budget = 262144
    elif name == "win32":
        budget = 8191
    else:
        budget = 131072
    return budget // 2


def normalize_path(path: str) -> str:
    """Use forward slashes regardless of platform."""
    return path.replace(os.sep, "/") if os.sep != "/" else path


def _chunk_by_length(lengths: list[int], max_arg_length: int, chunk_count: int) -> list[int]:
    """Choose chunk end offsets so every chunk stays within the budget when possible.

    The remaining length is spread over the remaining chunks, so chunk sizes
    follow path lengths rather than file counts.
    """
    boundaries: list[int] = []
    position = 0
    total = len(lengths)
    for index in range(chunk_count):
        remaining_chunks = chunk_count - index
        if remaining_chunks == 1:
            boundaries.append(total)
            break
        remaining_length = sum(lengths[position:]) + (total - position - 1)
        target = min(max_arg_length, math.ceil(remaining_length / remaining_chunks))
        # Leave at least one file for each remaining chunk.
        limit = total - (remaining_chunks - 1)
        end = position + 1
        used = lengths[position]
        while end < limit and used + 1 + lengths[end] <= target:
            used += 1 + lengths[end]
            end += 1
        boundaries.append(end)
        position = end
    return boundaries


def chunk_files(
    files: Sequence[str],
    base_dir: Path,
    *,
    max_arg_length: int | None = None,
    relative: bool = False,
) -> list[list[str]]:
    """Chunk ``files`` so that no joined argument string exceeds ``max_arg_length``.

    Without a budget, one chunk holds every file. Identical input always yields
    identical chunk boundaries.
    """
    if not max_arg_length:
        logger.debug("Skip chunking files because of undefined max_arg_length")
        return [list(files)]
    if not files:
        return [[]]

    normalized = [
        normalize_path(path if relative else str((base_dir / path).resolve()))
        for path in files
    ]
    lengths = [len(path) for path in normalized]
    file_list_length = sum(lengths) + len(lengths) - 1
    logger.debug(
        "Resolved an argument string length of %d characters from %d files",
        file_list_length,
        len(normalized),
    )
    chunk_count = min(math.ceil(file_list_length / max_arg_length), len(normalized))
    logger.debug("Creating %d chunks for max_arg_length of %d", chunk_count, max_arg_length)
    if chunk_count <= 1:
        return [list(files)]

    chunk_count = _fit_chunk_count(lengths, max_arg_length, chunk_count)
    chunks: list[list[str]] = []
    start = 0
    for end in _chunk_by_length(lengths, max_arg_length, chunk_count):
        chunks.append(list(files[start:end]))
        start = end
    return chunks


def _fit_chunk_count(lengths: list[int], max_arg_length: int, chunk_count: int) -> int:
    """Raise ``chunk_count`` until every multi-file chunk fits the budget."""
    while chunk_count < len(lengths):
        start = 0
        fits = True
        for end in _chunk_by_length(lengths, max_arg_length, chunk_count):
            size = sum(lengths[start:end]) + (end - start - 1)
            if end - start > 1 and size > max_arg_length:
                fits = False
                break
            start = end
        if fits:
            return chunk_count
        chunk_count += 1
    return chunk_count
