"""Git plumbing for stagelint runs."""

from stagelint.git.exec import GitCommandError, run_git
from stagelint.git.repo import GitRepo, resolve_git_repo
from stagelint.git.workflow import GitWorkflow

__all__ = ["GitCommandError", "GitRepo", "GitWorkflow", "resolve_git_repo", "run_git"]
