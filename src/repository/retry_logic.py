"""Retry logic with exponential backoff for repository calls.

Transient repository failures (RepositoryUnavailableError, connection errors
and timeouts) are retried with exponential backoff (1s, 2s, 4s by default).
Every other error fails fast.
"""

import logging
import time
from typing import Callable, Dict, List, Optional, TypeVar

from src.core.errors import ExternalServiceError, RepositoryUnavailableError

from .client import RemoteCommit, RepositoryClient

logger = logging.getLogger(__name__)

T = TypeVar('T')

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0


def retry_on_transient(func: Callable[..., T], *args,
                       max_retries: int = DEFAULT_MAX_RETRIES,
                       base_delay: float = DEFAULT_BASE_DELAY,
                       sleep: Callable[[float], None] = time.sleep,
                       **kwargs) -> T:
    """Call func, retrying transient failures with exponential backoff.

    Args:
        func: The function to execute with retry logic
        *args: Positional arguments to pass to the function
        max_retries: Retries after the first attempt
        base_delay: First backoff delay; doubles after every retry
        sleep: Sleep function (injectable for tests)
        **kwargs: Keyword arguments to pass to the function

    Returns:
        The return value of the function

    Raises:
        RepositoryUnavailableError: If the failure persists after max_retries
        Other exceptions: Passed through immediately without retry

    Example:
        >>> head = retry_on_transient(client.head_commit, "main")
    """
    for retry_num in range(max_retries + 1):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            if not _is_transient_error(e):
                raise

            if retry_num >= max_retries:
                logger.error(
                    f"Repository failure persisted after {max_retries} retries, giving up"
                )
                detail = e.message if isinstance(e, ExternalServiceError) else str(e)
                raise RepositoryUnavailableError(
                    f"{detail} (after {max_retries} retries)"
                ) from e

            wait_time = base_delay * (2 ** retry_num)
            logger.info(
                f"Transient repository failure ({e}), retrying in {wait_time:g}s "
                f"(retry {retry_num + 1}/{max_retries})"
            )
            sleep(wait_time)

    raise RepositoryUnavailableError(f"failed after {max_retries} retries")


def _is_transient_error(exception: Exception) -> bool:
    """Check if an exception is worth retrying.

    Args:
        exception: The exception to check

    Returns:
        True for retryable ExternalServiceErrors, connection errors and timeouts
    """
    if isinstance(exception, ExternalServiceError):
        return exception.retryable
    return isinstance(exception, (ConnectionError, TimeoutError))


class RetryingRepository(RepositoryClient):
    """RepositoryClient wrapper applying retry_on_transient to every call.

    Args:
        client: The wrapped repository client
        max_retries: Retries after the first attempt
        base_delay: First backoff delay in seconds
        sleep: Sleep function (injectable for tests)
    """

    def __init__(self, client: RepositoryClient, max_retries: int = DEFAULT_MAX_RETRIES,
                 base_delay: float = DEFAULT_BASE_DELAY,
                 sleep: Callable[[float], None] = time.sleep):
        self.client = client
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.sleep = sleep

    def _call(self, func: Callable[..., T], *args) -> T:
        return retry_on_transient(
            func, *args,
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            sleep=self.sleep,
        )

    def fetch_commits(self, since: Optional[str], branch: str) -> List[RemoteCommit]:
        return self._call(self.client.fetch_commits, since, branch)

    def get_file_contents(self, path: str, ref: str) -> Optional[str]:
        return self._call(self.client.get_file_contents, path, ref)

    def create_commit(self, files: Dict[str, Optional[str]], message: str,
                      branch: str) -> str:
        return self._call(self.client.create_commit, files, message, branch)

    def register_webhook(self, url: str, secret: Optional[str]) -> str:
        return self._call(self.client.register_webhook, url, secret)

    def head_commit(self, branch: str) -> Optional[str]:
        return self._call(self.client.head_commit, branch)
