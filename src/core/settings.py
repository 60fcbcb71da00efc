"""Engine settings with YAML and environment overrides.

Settings are plain values shared by every engine component: watchdog
timing, approval policy, retry policy and worker pool size. They are read
from the ``settings`` section of ``.docsync/config.yaml`` and may be
overridden through environment variables (a ``.env`` file is honoured via
python-dotenv).

Environment overrides:
    DOCSYNC_WATCHDOG_TIMEOUT: seconds before a running sync is considered stuck
    DOCSYNC_REQUIRED_APPROVALS: default approvals needed to merge
    DOCSYNC_MAX_RETRIES: retries for transient repository failures
    DOCSYNC_WEBHOOK_SECRET: default secret used to verify webhook signatures
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .errors import ConfigError


@dataclass
class EngineSettings:
    """Tunable engine behaviour.

    Attributes:
        watchdog_timeout_seconds: A sync stuck in 'syncing' longer than this
            is marked as 'error' and its mutex released
        watchdog_interval_seconds: How often the watchdog sweeps
        required_approvals: Approvals needed before a change request merges
            (spaces may override this, zero allowed)
        space_required_approvals: Per-space overrides of required_approvals
        max_retries: Retries for transient repository failures
        retry_base_delay: First backoff delay in seconds (doubles per retry)
        file_extension: Extension used for page files in the repository
        max_workers: Background sync worker threads
        merge_lock_timeout_seconds: Wait for the per-branch merge lock
        webhook_secret: Fallback secret for webhook signature verification
    """
    watchdog_timeout_seconds: float = 900.0
    watchdog_interval_seconds: float = 60.0
    required_approvals: int = 1
    space_required_approvals: Dict[str, int] = field(default_factory=dict)
    max_retries: int = 3
    retry_base_delay: float = 1.0
    file_extension: str = ".md"
    max_workers: int = 4
    merge_lock_timeout_seconds: float = 30.0
    webhook_secret: Optional[str] = None

    def approvals_required_for(self, space_id: str) -> int:
        """Return the number of approvals a change request in space_id needs."""
        return self.space_required_approvals.get(space_id, self.required_approvals)

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "EngineSettings":
        """Build settings from a parsed YAML mapping.

        Unknown keys are rejected so typos surface instead of being ignored.

        Args:
            raw: Mapping from the 'settings' section (None means defaults)

        Returns:
            Validated EngineSettings

        Raises:
            ConfigError: If a key is unknown or a value has the wrong type
        """
        settings = cls()
        if raw is None:
            return settings
        if not isinstance(raw, dict):
            raise ConfigError(
                f"Settings must be a dictionary, got {type(raw).__name__}",
                'settings'
            )

        known = set(cls.__dataclass_fields__)
        unknown = set(raw) - known
        if unknown:
            raise ConfigError(
                f"Unknown settings: {', '.join(sorted(unknown))}",
                'settings'
            )

        try:
            for name in ('watchdog_timeout_seconds', 'watchdog_interval_seconds',
                         'retry_base_delay', 'merge_lock_timeout_seconds'):
                if name in raw:
                    setattr(settings, name, float(raw[name]))
            for name in ('required_approvals', 'max_retries', 'max_workers'):
                if name in raw:
                    setattr(settings, name, int(raw[name]))
            if 'file_extension' in raw:
                settings.file_extension = str(raw['file_extension'])
            if raw.get('webhook_secret') is not None:
                settings.webhook_secret = str(raw['webhook_secret'])
            overrides = raw.get('space_required_approvals') or {}
            if not isinstance(overrides, dict):
                raise ConfigError(
                    "Field 'space_required_approvals' must be a dictionary",
                    'settings.space_required_approvals'
                )
            settings.space_required_approvals = {
                str(space): int(count) for space, count in overrides.items()
            }
        except (ValueError, TypeError) as e:
            raise ConfigError(f"Invalid settings value: {e}", 'settings')

        settings.validate()
        return settings

    def apply_environment(self, env_file: Optional[str] = None) -> "EngineSettings":
        """Apply DOCSYNC_* environment overrides in place.

        Args:
            env_file: Optional path to a .env file (defaults to ./.env lookup)

        Returns:
            self, for chaining
        """
        load_dotenv(env_file)

        try:
            timeout = os.getenv('DOCSYNC_WATCHDOG_TIMEOUT')
            if timeout:
                self.watchdog_timeout_seconds = float(timeout)
            approvals = os.getenv('DOCSYNC_REQUIRED_APPROVALS')
            if approvals:
                self.required_approvals = int(approvals)
            retries = os.getenv('DOCSYNC_MAX_RETRIES')
            if retries:
                self.max_retries = int(retries)
        except ValueError as e:
            raise ConfigError(f"Invalid environment override: {e}")

        secret = os.getenv('DOCSYNC_WEBHOOK_SECRET')
        if secret:
            self.webhook_secret = secret

        self.validate()
        return self

    def validate(self) -> None:
        """Check value ranges.

        Raises:
            ConfigError: If any value is out of range
        """
        if self.watchdog_timeout_seconds <= 0:
            raise ConfigError(
                f"must be positive, got {self.watchdog_timeout_seconds}",
                'watchdog_timeout_seconds'
            )
        if self.watchdog_interval_seconds <= 0:
            raise ConfigError(
                f"must be positive, got {self.watchdog_interval_seconds}",
                'watchdog_interval_seconds'
            )
        if self.required_approvals < 0:
            raise ConfigError(
                f"cannot be negative, got {self.required_approvals}",
                'required_approvals'
            )
        for space_id, count in self.space_required_approvals.items():
            if count < 0:
                raise ConfigError(
                    f"cannot be negative for space {space_id}, got {count}",
                    'space_required_approvals'
                )
        if self.max_retries < 0:
            raise ConfigError(
                f"cannot be negative, got {self.max_retries}", 'max_retries'
            )
        if self.max_workers < 1:
            raise ConfigError(
                f"must be at least 1, got {self.max_workers}", 'max_workers'
            )
        if not self.file_extension.startswith('.'):
            raise ConfigError(
                f"must start with '.', got '{self.file_extension}'",
                'file_extension'
            )
