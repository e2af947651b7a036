"""
Configuration management for composesync.
Loads settings from a YAML file, the environment and CLI overrides.
"""

import os
from dataclasses import dataclass, field, asdict, fields
from pathlib import Path
from typing import Optional, List, Dict, Any

import yaml

from composesync.errors import ConfigError


ENV_SOURCES = "SOURCE_REPOS"
ENV_STATE_DIR = "COMPOSESYNC_STATE_DIR"
ENV_BRANCH = "COMPOSESYNC_BRANCH"
ENV_TIMEOUT = "COMPOSESYNC_TIMEOUT"


def split_sources(value: str) -> List[str]:
    """Split a comma separated source list, dropping empty entries."""
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class Config:
    """Configuration for a reconciliation run."""

    sources: List[str] = field(default_factory=list)
    state_dir: str = "/var/lib/composesync"
    branch: str = "main"
    unit_dir: str = "services"
    unit_suffixes: List[str] = field(default_factory=lambda: [".yml", ".yaml"])
    compose_file: str = "docker-compose.yml"
    command_timeout: float = 600.0
    pull: bool = True
    log_file: Optional[str] = None

    @classmethod
    def load(cls, config_path: str) -> "Config":
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to the YAML configuration file

        Returns:
            Config object with loaded settings

        Raises:
            FileNotFoundError: If config file doesn't exist
            ConfigError: If the file is not valid YAML or has unknown keys
        """
        path = Path(config_path).expanduser()
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in configuration file: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError("Configuration file must contain a YAML mapping")

        return cls().merged(data)

    @classmethod
    def from_env(cls, base: Optional["Config"] = None, environ: Optional[Dict[str, str]] = None) -> "Config":
        """
        Apply environment variables on top of a base configuration.

        SOURCE_REPOS is a comma separated list of repository addresses.
        """
        environ = os.environ if environ is None else environ
        overrides: Dict[str, Any] = {}

        if environ.get(ENV_SOURCES):
            overrides["sources"] = split_sources(environ[ENV_SOURCES])
        if environ.get(ENV_STATE_DIR):
            overrides["state_dir"] = environ[ENV_STATE_DIR]
        if environ.get(ENV_BRANCH):
            overrides["branch"] = environ[ENV_BRANCH]
        if environ.get(ENV_TIMEOUT):
            try:
                overrides["command_timeout"] = float(environ[ENV_TIMEOUT])
            except ValueError as e:
                raise ConfigError(f"{ENV_TIMEOUT} must be a number, got {environ[ENV_TIMEOUT]!r}") from e

        return (base or cls()).merged(overrides)

    def merged(self, overrides: Dict[str, Any]) -> "Config":
        """
        Return a copy with the given fields replaced.

        None values are skipped so unset CLI options keep the current value.

        Raises:
            ConfigError: If an override names an unknown field
        """
        known = {f.name for f in fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")

        data = asdict(self)
        for key, value in overrides.items():
            if value is None:
                continue
            if key == "sources" and isinstance(value, str):
                value = split_sources(value)
            data[key] = value
        return Config(**data)

    def validate(self) -> None:
        """
        Check that the configuration can drive a run.

        Raises:
            ConfigError: Describing the first problem found
        """
        if not self.sources:
            raise ConfigError(
                f"No sources declared. Set {ENV_SOURCES} or list 'sources' in the config file"
            )
        if not isinstance(self.sources, list) or not all(isinstance(s, str) for s in self.sources):
            raise ConfigError("'sources' must be a list of repository addresses")
        if len(set(self.sources)) != len(self.sources):
            raise ConfigError("'sources' contains duplicate addresses")
        for name in ("state_dir", "branch", "unit_dir", "compose_file"):
            if not isinstance(getattr(self, name), str) or not getattr(self, name):
                raise ConfigError(f"'{name}' must be a non-empty string")
        if self.log_file is not None and not isinstance(self.log_file, str):
            raise ConfigError("'log_file' must be a string")
        if not isinstance(self.pull, bool):
            raise ConfigError("'pull' must be true or false")
        if isinstance(self.command_timeout, bool) or not isinstance(self.command_timeout, (int, float)):
            raise ConfigError(f"'command_timeout' must be a number, got {self.command_timeout!r}")
        if self.command_timeout <= 0:
            raise ConfigError("'command_timeout' must be positive")
        if not isinstance(self.unit_suffixes, list) or not all(
            isinstance(s, str) and s.startswith(".") for s in self.unit_suffixes
        ):
            raise ConfigError("'unit_suffixes' must be a list of suffixes such as '.yml'")
        if not self.unit_suffixes:
            raise ConfigError("'unit_suffixes' must not be empty")

    @property
    def root(self) -> Path:
        return Path(os.path.expanduser(os.path.expandvars(self.state_dir)))

    @property
    def current_path(self) -> Path:
        return self.root / "state"

    @property
    def staging_path(self) -> Path:
        return self.root / "state.new"

    @property
    def previous_path(self) -> Path:
        return self.root / "state.old"

    @property
    def retired_path(self) -> Path:
        return self.root / "state.retired"

    @property
    def sources_path(self) -> Path:
        return self.root / "sources"

    @property
    def lock_path(self) -> Path:
        return self.root / "composesync.lock"

    def ensure_directories(self) -> None:
        """Create the state root and clone directory if they don't exist."""
        for directory in (self.root, self.sources_path):
            directory.mkdir(parents=True, exist_ok=True)
