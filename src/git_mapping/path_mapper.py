"""Mapping between page paths and repository file paths.

One page maps to one file at ``root_path + page.path + extension``:

    root_path "docs", page path "/guide/setup"  ->  docs/guide/setup.md

Files outside the root, without the extension, or not selected by the
include/exclude glob patterns are not page files.
"""

import fnmatch
import logging
from typing import List, Optional

from src.content_tree.slug import SlugConverter
from src.core.errors import ValidationError

logger = logging.getLogger(__name__)


def normalize_root(root_path: str) -> str:
    """Normalize a configured root path ("./docs/" -> "docs", "." -> "")."""
    parts = [part for part in (root_path or '').replace('\\', '/').split('/')
             if part and part != '.']
    if '..' in parts:
        raise ValidationError(f"Root path '{root_path}' may not contain '..'", 'root_path')
    return '/'.join(parts)


class PathMapper:
    """Translates page paths to file paths and filters repository files.

    Args:
        root_path: Directory inside the repository holding page files
        extension: Page file extension, including the dot
        include_patterns: Globs (relative to the root) a file must match
        exclude_patterns: Globs (relative to the root) that exclude a file
    """

    def __init__(self, root_path: str = "docs", extension: str = ".md",
                 include_patterns: Optional[List[str]] = None,
                 exclude_patterns: Optional[List[str]] = None):
        self.root = normalize_root(root_path)
        self.extension = extension
        self.include_patterns = list(include_patterns or [f"*{extension}"])
        self.exclude_patterns = list(exclude_patterns or [])

    def page_to_file(self, page_path: str) -> str:
        """Return the repository file path of a page path."""
        relative = page_path.strip('/')
        if self.root:
            return f"{self.root}/{relative}{self.extension}"
        return f"{relative}{self.extension}"

    def file_to_page(self, file_path: str) -> Optional[str]:
        """Return the page path of a repository file, or None if it is not a page file."""
        relative = self._relative(file_path)
        if relative is None or not self._selected(relative):
            return None

        segments = relative[:-len(self.extension)].split('/')
        try:
            for segment in segments:
                SlugConverter.validate(segment)
        except ValidationError:
            logger.warning(f"Ignoring {file_path}: path segment is not a valid slug")
            return None
        return '/' + '/'.join(segments)

    def is_page_file(self, file_path: str) -> bool:
        return self.file_to_page(file_path) is not None

    def _relative(self, file_path: str) -> Optional[str]:
        path = file_path.replace('\\', '/').lstrip('/')
        if path.startswith('./'):
            path = path[2:]
        if self.root:
            prefix = self.root + '/'
            if not path.startswith(prefix):
                return None
            path = path[len(prefix):]
        if not path.endswith(self.extension) or len(path) == len(self.extension):
            return None
        return path

    def _selected(self, relative: str) -> bool:
        if not any(fnmatch.fnmatchcase(relative, pattern) for pattern in self.include_patterns):
            return False
        return not any(fnmatch.fnmatchcase(relative, pattern) for pattern in self.exclude_patterns)
