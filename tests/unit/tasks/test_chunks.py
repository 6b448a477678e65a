"""Tests for argument-length chunking."""

from __future__ import annotations

from pathlib import Path

import pytest

from stagelint.tasks.chunks import chunk_files, get_max_arg_length


def _joined_length(chunk: list[str]) -> int:
    return sum(len(path) for path in chunk) + len(chunk) - 1


@pytest.mark.parametrize(
    ("platform", "expected"),
    [("darwin", 131072), ("win32", 4095), ("linux", 65536)],
)
def test_max_arg_length_is_half_the_platform_budget(platform: str, expected: int) -> None:
    assert get_max_arg_length(platform) == expected


def test_without_budget_returns_single_chunk(tmp_path: Path) -> None:
    files = ["a.py", "b.py", "c.py"]
    assert chunk_files(files, tmp_path) == [files]
    assert chunk_files(files, tmp_path, max_arg_length=0) == [files]


def test_empty_file_list_yields_one_empty_chunk(tmp_path: Path) -> None:
    assert chunk_files([], tmp_path, max_arg_length=10) == [[]]


def test_files_fitting_budget_stay_together(tmp_path: Path) -> None:
    files = ["a.py", "b.py"]
    assert chunk_files(files, tmp_path, max_arg_length=100, relative=True) == [files]


def test_chunks_are_lossless_and_within_budget(tmp_path: Path) -> None:
    files = [f"file{i:03d}.py" for i in range(50)]
    chunks = chunk_files(files, tmp_path, max_arg_length=60, relative=True)

    assert [path for chunk in chunks for path in chunk] == files
    assert len(chunks) == 10
    for chunk in chunks:
        assert _joined_length(chunk) <= 60


def test_uneven_path_lengths_respect_budget(tmp_path: Path) -> None:
    files = ["a" * 40, "b", "c", "d" * 30, "e", "f" * 25, "g" * 5, "h"]
    chunks = chunk_files(files, tmp_path, max_arg_length=45, relative=True)

    assert [path for chunk in chunks for path in chunk] == files
    for chunk in chunks:
        if len(chunk) > 1:
            assert _joined_length(chunk) <= 45


def test_oversized_single_file_gets_its_own_chunk(tmp_path: Path) -> None:
    files = ["x" * 100, "y.py"]
    chunks = chunk_files(files, tmp_path, max_arg_length=20, relative=True)
    assert chunks == [["x" * 100], ["y.py"]]


def test_absolute_paths_count_towards_budget(tmp_path: Path) -> None:
    files = ["a.py", "b.py"]
    absolute_length = len(str((tmp_path / "a.py").resolve()))
    chunks = chunk_files(files, tmp_path, max_arg_length=absolute_length + 1)
    assert chunks == [["a.py"], ["b.py"]]


def test_chunking_is_deterministic(tmp_path: Path) -> None:
    files = [f"src/module_{i}.py" for i in range(200)]
    first = chunk_files(files, tmp_path, max_arg_length=300, relative=True)
    second = chunk_files(files, tmp_path, max_arg_length=300, relative=True)
    assert first == second
