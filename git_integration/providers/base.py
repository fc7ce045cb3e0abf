"""Abstract base for code-hosting providers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

# Directories never descended into when walking a repository tree.
IGNORED_TREE_DIRS = (".git", "node_modules", "__pycache__", ".venv", "dist", "build", ".next")


@dataclass
class PullRequest:
    """The subset of PR metadata a review needs."""

    number: int
    title: str
    body: str
    head_ref: str
    head_sha: str
    head_repo: str
    base_ref: str


@dataclass
class ChangedFile:
    filename: str
    status: str  # "added", "removed", "modified", "renamed"
    additions: int
    deletions: int
    changes: int
    patch: Optional[str] = None


@dataclass
class RepoVariable:
    name: str
    value: str


class CodeHost(ABC):
    """Read access to a repository and its PRs, plus a single status comment."""

    @abstractmethod
    async def get_pull_request(self, repo: str, pr_number: int) -> PullRequest:
        ...

    @abstractmethod
    async def list_pr_files(self, repo: str, pr_number: int) -> list[ChangedFile]:
        ...

    @abstractmethod
    async def get_file_content(self, repo: str, path: str, ref: Optional[str] = None) -> Optional[str]:
        """Return decoded file content, or None if the file does not exist."""
        ...

    @abstractmethod
    async def get_tree(self, repo: str, ref: Optional[str] = None, max_depth: int = 3) -> str:
        """Return an indented text rendering of the repository tree."""
        ...

    @abstractmethod
    async def list_variables(self, repo: str) -> list[RepoVariable]:
        """List repository-level configuration variables."""
        ...

    @abstractmethod
    async def post_comment(self, repo: str, pr_number: int, body: str) -> int:
        """Create an issue comment on the PR and return its id."""
        ...

    @abstractmethod
    async def edit_comment(self, repo: str, comment_id: int, body: str) -> bool:
        ...

    @abstractmethod
    def clone_url(self, repo: str) -> str:
        """Plain HTTPS clone URL, without embedded credentials."""
        ...

    def clone_auth_header(self) -> Optional[str]:
        """HTTP header for authenticated git clones, or None for anonymous."""
        return None
