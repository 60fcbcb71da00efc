"""Construction of the git mapper for a repository binding."""

from typing import TYPE_CHECKING

from src.git_mapping.git_mapper import GitMapper
from src.git_mapping.path_mapper import PathMapper

from .models import GitSyncConfig

if TYPE_CHECKING:
    from src.content_tree.tree_store import ContentTreeStore


def build_mapper(config: GitSyncConfig, tree: 'ContentTreeStore',
                 extension: str = ".md") -> GitMapper:
    """Return a GitMapper for config whose references resolve against tree."""
    paths = PathMapper(
        root_path=config.root_path,
        extension=extension,
        include_patterns=config.include_patterns,
        exclude_patterns=config.exclude_patterns,
    )
    return GitMapper(paths, resolver=tree.reusable_fallback)
