"""Task planning, chunking and execution."""

from stagelint.tasks.chunks import chunk_files
from stagelint.tasks.executor import CancelToken, run_task_commands
from stagelint.tasks.planner import generate_tasks

__all__ = ["CancelToken", "chunk_files", "generate_tasks", "run_task_commands"]
