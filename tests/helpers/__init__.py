"""Shared test doubles.

- fake_repository: in-memory RepositoryClient
- executors: immediate/deferred executors and a ticking clock
- builders: block tree and page file shortcuts
"""

from .builders import heading, page_file, paragraph, paragraphs, texts
from .executors import DeferredExecutor, ImmediateExecutor, TickingClock
from .fake_repository import InMemoryRepository

__all__ = [
    'DeferredExecutor',
    'ImmediateExecutor',
    'InMemoryRepository',
    'TickingClock',
    'heading',
    'page_file',
    'paragraph',
    'paragraphs',
    'texts',
]
