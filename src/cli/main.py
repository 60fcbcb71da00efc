"""Main CLI entry point for the docsync command.

This module provides the Typer application binding a space to a local git
checkout. Store state lives in .docsync/state.yaml next to the
configuration, so every command runs in its own process against the same
state.

QUICK START:
  docsync init --space handbook --repo .      # Bind the checkout
  docsync sync                                # Pull, then push
  docsync status                              # Show sync status and conflicts
  docsync resolve /guide/setup --choice take_remote
"""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import typer

from src.core.errors import DocSyncError, NotFoundError
from src.engine.docs_engine import DocsEngine
from src.repository.git_repository import LocalGitRepository
from src.storage.yaml_store import YamlStore
from src.sync.models import GitSyncConfig, SyncDirection

from .config import ConfigLoader, config_path_for, state_path_for
from .errors import InitError
from .models import ExitCode, ProjectConfig, exit_code_for, exit_code_for_status
from .output import OutputHandler

app = typer.Typer(
    name="docsync",
    help="Bidirectional sync between documentation spaces and a git repository.",
    add_completion=False,
    rich_markup_mode=None,
    no_args_is_help=True,
)

# Module logger
logger = logging.getLogger(__name__)

VERBOSITY_HELP = "Verbosity level: 0=summary, 1=info, 2=debug"


def _configure_logging(verbosity: int, logdir: Optional[str] = None) -> None:
    """Configure logging based on verbosity level.

    Configures only the 'src' namespace logger to avoid affecting third-party
    libraries. The root logger is left unchanged.

    Args:
        verbosity: Verbosity level (0=WARNING, 1=INFO, 2=DEBUG)
        logdir: Optional directory for log files (creates timestamped log file)
    """
    if verbosity == 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    app_logger = logging.getLogger("src")
    app_logger.setLevel(level)
    app_logger.handlers.clear()

    date_format = "%Y-%m-%d %H:%M:%S"
    formatter = logging.Formatter("%(asctime)s [%(levelname)8s] %(message)s",
                                  datefmt=date_format)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    app_logger.addHandler(console_handler)

    if logdir:
        log_path = Path(logdir)
        log_path.mkdir(parents=True, exist_ok=True)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = log_path / f"docsync_{timestamp}.log"

        file_formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt=date_format
        )
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(file_formatter)
        app_logger.addHandler(file_handler)

        logger.info(f"Logging to file: {log_file}")


def _open_engine(config: ProjectConfig, project_dir: str) -> DocsEngine:
    repository_path = config.repository_path
    if not os.path.isabs(repository_path):
        repository_path = os.path.join(project_dir, repository_path)
    repository = LocalGitRepository(repository_path, config.author_name, config.author_email)
    store = YamlStore(state_path_for(project_dir))
    return DocsEngine(repository, store=store, settings=config.settings)


def _bind(engine: DocsEngine, config: ProjectConfig) -> GitSyncConfig:
    """Create or refresh the space binding from the configuration file."""
    return engine.configure_sync(
        config.space_id,
        config.repository_path,
        default_branch=config.default_branch,
        root_path=config.root_path,
        include_patterns=config.include_patterns,
        exclude_patterns=config.exclude_patterns,
        commit_message_template=config.commit_message_template,
    )


def _fail(output: OutputHandler, error: DocSyncError) -> None:
    logger.error(str(error))
    output.error(str(error))
    raise typer.Exit(exit_code_for(error))


@app.command()
def init(
    space_id: str = typer.Option(..., "--space", help="Space to bind to the repository"),
    repository_path: str = typer.Option(".", "--repo", help="Path to the local git repository"),
    default_branch: str = typer.Option("main", "--branch", help="Branch the pages mirror"),
    root_path: str = typer.Option("docs", "--root", help="Directory holding page files"),
    include: Optional[List[str]] = typer.Option(
        None, "--include", help="Glob pattern of files to sync (repeatable)"),
    exclude: Optional[List[str]] = typer.Option(
        None, "--exclude", help="Glob pattern of files to skip (repeatable)"),
    project_dir: str = typer.Option(".", "--project-dir", help="Directory holding .docsync"),
    verbosity: int = typer.Option(0, "--verbosity", "-v", help=VERBOSITY_HELP),
    no_color: bool = typer.Option(False, "--no-color", help="Disable colored output"),
) -> None:
    """Write .docsync/config.yaml and bind the space."""
    _configure_logging(verbosity)
    output = OutputHandler(verbosity=verbosity, no_color=no_color)
    config_path = config_path_for(project_dir)

    try:
        if os.path.exists(config_path):
            raise InitError(f"Configuration already exists at {config_path}")

        config = ProjectConfig(
            space_id=space_id,
            repository_path=repository_path,
            default_branch=default_branch,
            root_path=root_path,
        )
        if include:
            config.include_patterns = list(include)
        if exclude:
            config.exclude_patterns = list(exclude)

        with _open_engine(config, project_dir) as engine:
            binding = _bind(engine, config)
        ConfigLoader.save(config_path, config)

    except DocSyncError as e:
        _fail(output, e)

    output.success("Configuration initialized successfully")
    output.info(f"  Config file: {config_path}")
    output.info(f"  Repository: {binding.repository_url} ({binding.default_branch})")
    output.info("")
    output.info("Next steps:")
    output.info("  1. Review .docsync/config.yaml")
    output.info("  2. Run 'docsync sync' to start syncing")


@app.command()
def sync(
    direction: str = typer.Option(
        "both", "--direction", "-d", help="pull, push, or both (pull then push)"),
    project_dir: str = typer.Option(".", "--project-dir", help="Directory holding .docsync"),
    logdir: Optional[str] = typer.Option(
        None, "--logdir", help="Directory for log files (creates timestamped log file)"),
    verbosity: int = typer.Option(0, "--verbosity", "-v", help=VERBOSITY_HELP),
    no_color: bool = typer.Option(False, "--no-color", help="Disable colored output"),
) -> None:
    """Run a pull and/or push against the repository."""
    _configure_logging(verbosity, logdir)
    output = OutputHandler(verbosity=verbosity, no_color=no_color)

    if direction == "both":
        directions = [SyncDirection.PULL, SyncDirection.PUSH]
    else:
        try:
            directions = [SyncDirection(direction)]
        except ValueError:
            output.error(f"Unknown direction '{direction}', expected pull, push or both")
            raise typer.Exit(ExitCode.GENERAL_ERROR)

    exit_code = ExitCode.SUCCESS
    try:
        config = ConfigLoader.load(config_path_for(project_dir))
        with _open_engine(config, project_dir) as engine:
            engine.sweep_stuck_syncs()
            binding = _bind(engine, config)
            for step in directions:
                with output.spinner(f"Running {step.value}..."):
                    history_id = engine.trigger_sync(binding.id, step.value)
                    history = engine.wait_for_sync(history_id)
                output.print_sync_summary(history)
                exit_code = max(exit_code, exit_code_for_status(history.status))
                if exit_code != ExitCode.SUCCESS:
                    break
    except DocSyncError as e:
        _fail(output, e)

    raise typer.Exit(exit_code)


@app.command()
def status(
    project_dir: str = typer.Option(".", "--project-dir", help="Directory holding .docsync"),
    no_color: bool = typer.Option(False, "--no-color", help="Disable colored output"),
) -> None:
    """Show the sync status and unresolved conflicts."""
    _configure_logging(0)
    output = OutputHandler(no_color=no_color)

    try:
        config = ConfigLoader.load(config_path_for(project_dir))
        with _open_engine(config, project_dir) as engine:
            binding = engine.store.config_for_space(config.space_id)
            if binding is None:
                raise NotFoundError("GitSyncConfig", f"for space {config.space_id}")
            conflicts = [page for page in engine.store.list_pages(config.space_id)
                         if page.has_conflict]
    except DocSyncError as e:
        _fail(output, e)

    output.print_status(binding, conflicts)
    if conflicts:
        raise typer.Exit(ExitCode.CONFLICTS)


@app.command()
def history(
    limit: int = typer.Option(10, "--limit", "-n", help="Number of runs to show"),
    project_dir: str = typer.Option(".", "--project-dir", help="Directory holding .docsync"),
    no_color: bool = typer.Option(False, "--no-color", help="Disable colored output"),
) -> None:
    """List the most recent sync runs."""
    _configure_logging(0)
    output = OutputHandler(no_color=no_color)

    try:
        config = ConfigLoader.load(config_path_for(project_dir))
        with _open_engine(config, project_dir) as engine:
            binding = engine.store.config_for_space(config.space_id)
            runs = engine.list_sync_history(binding.id) if binding else []
    except DocSyncError as e:
        _fail(output, e)

    output.print_history_table(runs[-limit:] if limit > 0 else runs)


@app.command()
def resolve(
    page_path: str = typer.Argument(..., help="Path of the conflicting page, e.g. /guide/setup"),
    choice: str = typer.Option(..., "--choice", "-c",
                               help="keep_local, take_remote or merged"),
    merged_file: Optional[str] = typer.Option(
        None, "--file", "-f", help="File with the merged content (with --choice merged)"),
    project_dir: str = typer.Option(".", "--project-dir", help="Directory holding .docsync"),
    verbosity: int = typer.Option(0, "--verbosity", "-v", help=VERBOSITY_HELP),
    no_color: bool = typer.Option(False, "--no-color", help="Disable colored output"),
) -> None:
    """Resolve the sync conflict of one page."""
    _configure_logging(verbosity)
    output = OutputHandler(verbosity=verbosity, no_color=no_color)

    content = None
    if merged_file:
        try:
            with open(merged_file, 'r', encoding='utf-8') as f:
                content = f.read()
        except OSError as e:
            output.error(f"Cannot read {merged_file}: {e}")
            raise typer.Exit(ExitCode.GENERAL_ERROR)

    try:
        config = ConfigLoader.load(config_path_for(project_dir))
        with _open_engine(config, project_dir) as engine:
            page = engine.store.find_page_by_path(config.space_id, page_path)
            if page is None:
                raise NotFoundError("Page", page_path)
            engine.resolve_conflict(page.id, choice, content=content)
    except DocSyncError as e:
        _fail(output, e)

    output.success(f"Resolved conflict on {page_path} ({choice})")


def main() -> None:
    """Main entry point for the CLI application."""
    app()


# Allow running as: python -m src.cli.main
if __name__ == "__main__":
    main()
