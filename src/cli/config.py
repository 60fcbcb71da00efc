"""YAML configuration loading and validation for .docsync/config.yaml.

Configuration file structure:
    space_id: "handbook"
    repository_path: "."
    default_branch: "main"
    root_path: "docs"
    include_patterns: ["**/*.md", "*.md"]
    exclude_patterns: ["drafts/**"]
    commit_message_template: "docs: {summary} [docsync]"
    author_name: "docsync"
    author_email: "docsync@localhost"
    settings:
      watchdog_timeout_seconds: 900
      required_approvals: 1
"""

import dataclasses
import os
from typing import Any, Dict, List, Optional

import yaml

from src.core.errors import ConfigError
from src.core.settings import EngineSettings

from .errors import ConfigFilesystemError, ConfigNotFoundError
from .models import ProjectConfig

CONFIG_DIR = '.docsync'
CONFIG_FILE = 'config.yaml'
STATE_FILE = 'state.yaml'


def config_path_for(project_dir: str = '.') -> str:
    return os.path.join(project_dir, CONFIG_DIR, CONFIG_FILE)


def state_path_for(project_dir: str = '.') -> str:
    return os.path.join(project_dir, CONFIG_DIR, STATE_FILE)


class ConfigLoader:
    """Handles configuration file loading, validation, and saving."""

    # Required top-level config fields
    REQUIRED_FIELDS = {'space_id', 'repository_path'}

    @classmethod
    def load(cls, config_path: str, env_file: Optional[str] = None) -> ProjectConfig:
        """Load and parse configuration from a YAML file.

        Environment overrides (DOCSYNC_*) are applied to the settings after
        the file is parsed.

        Args:
            config_path: Path to the YAML configuration file
            env_file: Optional .env file with DOCSYNC_* overrides

        Returns:
            ProjectConfig object with parsed configuration

        Raises:
            ConfigNotFoundError: If the file does not exist
            ConfigFilesystemError: If file cannot be read
            ConfigError: If configuration is invalid or malformed
        """
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                content = f.read()
        except FileNotFoundError:
            raise ConfigNotFoundError(config_path)
        except OSError as e:
            raise ConfigFilesystemError(config_path, 'read', str(e))

        try:
            config_dict = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML syntax: {str(e)}")

        if config_dict is None:
            raise ConfigError("Configuration file is empty")

        if not isinstance(config_dict, dict):
            raise ConfigError(
                f"Configuration must be a YAML dictionary, got {type(config_dict).__name__}"
            )

        config = cls._parse_config(config_dict)
        config.settings.apply_environment(env_file)
        return config

    @classmethod
    def save(cls, config_path: str, config: ProjectConfig) -> None:
        """Save configuration to a YAML file.

        Raises:
            ConfigFilesystemError: If file cannot be written
        """
        config_dict: Dict[str, Any] = {
            'space_id': config.space_id,
            'repository_path': config.repository_path,
            'default_branch': config.default_branch,
            'root_path': config.root_path,
            'include_patterns': list(config.include_patterns),
            'exclude_patterns': list(config.exclude_patterns),
            'author_name': config.author_name,
            'author_email': config.author_email,
        }
        if config.commit_message_template:
            config_dict['commit_message_template'] = config.commit_message_template

        # Only settings that differ from the defaults are written
        defaults = EngineSettings()
        settings = {
            name: value for name, value in dataclasses.asdict(config.settings).items()
            if value != getattr(defaults, name)
        }
        if settings:
            config_dict['settings'] = settings

        yaml_str = yaml.safe_dump(
            config_dict,
            default_flow_style=False,
            allow_unicode=True,
            sort_keys=False
        )

        config_dir = os.path.dirname(config_path)
        if config_dir:
            try:
                os.makedirs(config_dir, exist_ok=True)
            except OSError as e:
                raise ConfigFilesystemError(config_dir, 'create_directory', str(e))

        try:
            with open(config_path, 'w', encoding='utf-8') as f:
                f.write(yaml_str)
        except OSError as e:
            raise ConfigFilesystemError(config_path, 'write', str(e))

    @classmethod
    def _parse_config(cls, config_dict: Dict[str, Any]) -> ProjectConfig:
        """Parse and validate configuration dictionary.

        Raises:
            ConfigError: If configuration is invalid
        """
        missing_fields = cls.REQUIRED_FIELDS - set(config_dict.keys())
        if missing_fields:
            raise ConfigError(
                f"Missing required fields: {', '.join(sorted(missing_fields))}"
            )

        strings = {}
        for name in ('space_id', 'repository_path', 'default_branch', 'root_path',
                     'author_name', 'author_email'):
            if name not in config_dict:
                continue
            value = config_dict[name]
            if value is None or not str(value).strip():
                raise ConfigError(f"Field '{name}' cannot be empty", name)
            strings[name] = str(value).strip()

        template = config_dict.get('commit_message_template')
        if template is not None and '{summary}' not in str(template):
            raise ConfigError(
                "Template must contain a {summary} placeholder", 'commit_message_template'
            )

        config = ProjectConfig(
            space_id=strings['space_id'],
            repository_path=strings['repository_path'],
            commit_message_template=str(template) if template is not None else None,
            settings=EngineSettings.from_dict(config_dict.get('settings')),
        )
        for name in ('default_branch', 'root_path', 'author_name', 'author_email'):
            if name in strings:
                setattr(config, name, strings[name])

        include = cls._parse_patterns(config_dict, 'include_patterns')
        if include is not None:
            config.include_patterns = include
        exclude = cls._parse_patterns(config_dict, 'exclude_patterns')
        if exclude is not None:
            config.exclude_patterns = exclude
        return config

    @staticmethod
    def _parse_patterns(config_dict: Dict[str, Any], name: str) -> Optional[List[str]]:
        raw = config_dict.get(name)
        if raw is None:
            return None
        if not isinstance(raw, list):
            raise ConfigError(f"Field '{name}' must be a list", name)
        return [str(pattern) for pattern in raw]
