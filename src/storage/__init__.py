"""Persistence collaborator: transactional entity store."""

from .records import from_record, to_record
from .store import ContentStore, StoreState
from .yaml_store import YamlStore

__all__ = [
    'ContentStore',
    'StoreState',
    'YamlStore',
    'from_record',
    'to_record',
]
