"""Repository collaborator interface.

The engine never talks to a git hosting service directly. It consumes a
RepositoryClient, which the embedding application implements for its
hosting service (a local ``git`` implementation ships in this package).

All methods may raise ExternalServiceError subclasses:
    - RepositoryUnavailableError: transient, retried with backoff
    - CommitRejectedError: the repository refused the commit (not retried)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional


@dataclass
class RemoteCommit:
    """A commit as reported by the repository.

    Attributes:
        sha: Commit identifier
        message: Commit message (first line)
        author: Author name
        committed_at: Commit time
        added: Files added by the commit
        modified: Files modified by the commit
        removed: Files removed by the commit
    """
    sha: str
    message: str = ""
    author: Optional[str] = None
    committed_at: Optional[datetime] = None
    added: List[str] = field(default_factory=list)
    modified: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)

    @property
    def files_changed(self) -> List[str]:
        return sorted(set(self.added) | set(self.modified) | set(self.removed))


class RepositoryClient(ABC):
    """Abstract repository collaborator."""

    @abstractmethod
    def fetch_commits(self, since: Optional[str], branch: str) -> List[RemoteCommit]:
        """Return commits on branch after since (exclusive), oldest first.

        Args:
            since: Last known commit, None for the full history
            branch: Branch to read
        """

    @abstractmethod
    def get_file_contents(self, path: str, ref: str) -> Optional[str]:
        """Return the content of path at ref, or None if it does not exist there."""

    @abstractmethod
    def create_commit(self, files: Dict[str, Optional[str]], message: str,
                      branch: str) -> str:
        """Commit file changes on top of branch and return the new commit sha.

        Args:
            files: Path -> new content; None deletes the file
            message: Commit message
            branch: Branch to commit to

        Raises:
            CommitRejectedError: If the repository refuses the commit
        """

    @abstractmethod
    def register_webhook(self, url: str, secret: Optional[str]) -> str:
        """Register a push webhook and return its identifier."""

    @abstractmethod
    def head_commit(self, branch: str) -> Optional[str]:
        """Return the current head of branch, or None if the branch has no commits."""
