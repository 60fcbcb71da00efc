"""Baseline management for three-way merge decisions.

The baseline of a file is the canonical content both sides agreed on after
the last sync that touched it. It is the "base" of the three-way merge:

- baseline: content from the last successful sync of the file
- local: current page content
- remote: current file content in the repository

When no baseline was recorded for a file yet, the file content at the
config's last synced commit is used instead.
"""

import logging
import re
from typing import TYPE_CHECKING, List, Optional

from src.core.clock import Clock, utc_now
from src.core.errors import ValidationError

from .models import GitSyncConfig, SyncBaseline

if TYPE_CHECKING:
    from src.git_mapping.git_mapper import GitMapper
    from src.repository.client import RepositoryClient
    from src.storage.store import ContentStore

logger = logging.getLogger(__name__)

# Pattern to detect unresolved merge conflict markers
CONFLICT_MARKER_PATTERN = re.compile(
    r'^<{7}\s|^={7}\s*$|^>{7}\s',
    re.MULTILINE
)


class BaselineManager:
    """Reads and records per-file baselines of a repository binding.

    Args:
        store: Persistence collaborator holding the baselines
        clock: Time source for update timestamps
    """

    def __init__(self, store: 'ContentStore', clock: Clock = utc_now):
        self.store = store
        self.clock = clock

    def get(self, config_id: str, file_path: str) -> Optional[str]:
        """Return the recorded baseline content of a file, if any."""
        baseline = self.store.get_baseline(config_id, file_path)
        return baseline.content if baseline else None

    def resolve_base(self, config: GitSyncConfig, file_path: str, mapper: 'GitMapper',
                     repository: 'RepositoryClient') -> Optional[str]:
        """Return the three-way base of a file.

        Falls back to the canonical file content at the last synced commit
        when no baseline was recorded. Unparseable fallback content yields
        None (no known ancestor).
        """
        content = self.get(config.id, file_path)
        if content is not None or not config.last_sync_commit:
            return content

        text = repository.get_file_contents(file_path, config.last_sync_commit)
        if text is None:
            return None
        try:
            return mapper.canonicalize(file_path, text)
        except ValidationError as e:
            logger.warning(f"Cannot use {file_path}@{config.last_sync_commit[:8]} as base: {e}")
            return None

    def update(self, config_id: str, file_path: str, content: str,
               commit_sha: Optional[str] = None) -> None:
        """Record the agreed content of a file.

        Raises:
            ValidationError: If content still contains conflict markers
        """
        if CONFLICT_MARKER_PATTERN.search(content):
            raise ValidationError(
                f"Refusing to record a baseline with conflict markers for {file_path}",
                'content'
            )
        self.store.save_baseline(SyncBaseline(
            config_id=config_id,
            file_path=file_path,
            content=content,
            commit_sha=commit_sha,
            updated_at=self.clock(),
        ))
        logger.debug(f"Updated baseline of {file_path}")

    def remove(self, config_id: str, file_path: str) -> None:
        self.store.delete_baseline(config_id, file_path)

    def tracked_files(self, config_id: str) -> List[str]:
        """Return the files that have a baseline, sorted."""
        return sorted(baseline.file_path for baseline in self.store.list_baselines(config_id))
