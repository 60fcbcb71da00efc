"""Repository collaborator: interface, local git client and retry policy."""

from .client import RemoteCommit, RepositoryClient
from .git_repository import LocalGitRepository
from .retry_logic import RetryingRepository, retry_on_transient

__all__ = [
    'LocalGitRepository',
    'RemoteCommit',
    'RepositoryClient',
    'RetryingRepository',
    'retry_on_transient',
]
