"""Command-line interface for docsync.

This package provides the `docsync` CLI tool that binds a documentation
space to a local git checkout and runs pulls, pushes and conflict
resolution through the DocsEngine, with Rich terminal output.
"""

from .config import ConfigLoader
from .errors import CLIError, ConfigFilesystemError, ConfigNotFoundError, InitError
from .models import ExitCode, ProjectConfig, exit_code_for

__all__ = [
    'CLIError',
    'ConfigFilesystemError',
    'ConfigLoader',
    'ConfigNotFoundError',
    'ExitCode',
    'InitError',
    'ProjectConfig',
    'exit_code_for',
]
