"""
Manages loading, saving, and validating the project configuration using Pydantic.

This module defines the configuration schema as Pydantic models (`Settings` and
its groups) and provides a manager class (`ConfigManager`) to handle
persistence to a JSON file in the project root.
"""

import json
import re
import logging
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .constants import (
    PRIMARY_MANIFEST, TAURI_CONF, CARGO_TOML, CARGO_LOCK, NATIVE_DIR, DEFAULT_LINE_PATTERN,
    LOCK_BUILD_TOOL, LOCK_BUILD_ARGS, LOCK_REGEN_TIMEOUT, STAGING_TIMEOUT,
    APP_NAME, GITHUB_OWNER, GITHUB_REPO, GITHUB_API_BASE, GITHUB_WEB_BASE, REQUEST_TIMEOUT,
)
from .exceptions import ConfigError


class FormatKind(str, Enum):
    """The closed set of manifest syntaxes an adapter exists for."""
    STRUCTURED = 'structured'
    LINE_ORIENTED = 'line'


class ManifestDescriptor(BaseModel):
    """
    Describes one dependent manifest and how to find its version token.

    Attributes:
        path: File path relative to the project root.
        kind: Which adapter handles the file.
        key_path: Key path to the version string (structured documents).
        pattern: Regex with a named `version` group (line-oriented documents).
        section: Optional `[section]` the pattern is restricted to.
        lock_dependent: Whether a change requires regenerating the lock artifact.
    """
    model_config = ConfigDict(frozen=True)

    path: str
    kind: FormatKind = FormatKind.STRUCTURED
    key_path: Tuple[str, ...] = ('version',)
    pattern: str = DEFAULT_LINE_PATTERN
    section: Optional[str] = None
    lock_dependent: bool = False

    @field_validator('key_path')
    def validate_key_path(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        if not value:
            raise ValueError("key_path must name at least one key.")
        return value

    @field_validator('pattern')
    def validate_pattern(cls, value: str) -> str:
        """Ensures the pattern compiles and captures a `version` group."""
        try:
            compiled = re.compile(value)
        except re.error as e:
            raise ValueError(f"Invalid pattern: {e}")
        if 'version' not in compiled.groupindex:
            raise ValueError("Pattern must define a named group 'version'.")
        return value


def _default_descriptors() -> List[ManifestDescriptor]:
    return [
        ManifestDescriptor(path=TAURI_CONF, kind=FormatKind.STRUCTURED),
        ManifestDescriptor(path=CARGO_TOML, kind=FormatKind.LINE_ORIENTED, section='package', lock_dependent=True),
    ]


class SyncSettings(BaseModel):
    """Settings for the build-time manifest synchronization."""
    primary_manifest: str = PRIMARY_MANIFEST
    primary_key_path: Tuple[str, ...] = ('version',)
    manifests: List[ManifestDescriptor] = Field(default_factory=_default_descriptors)
    lock_working_dir: str = NATIVE_DIR
    lock_file: str = CARGO_LOCK
    lock_build_tool: str = LOCK_BUILD_TOOL
    lock_build_args: Tuple[str, ...] = LOCK_BUILD_ARGS
    lock_timeout: float = Field(default=LOCK_REGEN_TIMEOUT, gt=0)
    stage_changes: bool = True
    git_executable: str = 'git'
    staging_timeout: float = Field(default=STAGING_TIMEOUT, gt=0)

    @model_validator(mode='after')
    def validate_unique_paths(self) -> 'SyncSettings':
        """Rejects duplicate descriptors and descriptors that point at the primary manifest."""
        seen = set()
        for descriptor in self.manifests:
            normalized = Path(descriptor.path).as_posix()
            if normalized in seen:
                raise ValueError(f"Manifest '{descriptor.path}' is listed more than once.")
            if normalized == Path(self.primary_manifest).as_posix():
                raise ValueError("The primary manifest cannot also be a dependent manifest.")
            seen.add(normalized)
        return self


class UpdaterSettings(BaseModel):
    """Settings for the runtime update check."""
    app_name: str = APP_NAME
    github_owner: str = GITHUB_OWNER
    github_repo: str = GITHUB_REPO
    api_base: str = GITHUB_API_BASE
    web_base: str = GITHUB_WEB_BASE
    request_timeout: float = Field(default=REQUEST_TIMEOUT, gt=0)
    use_release_page_fallback: bool = True
    tag_prefix: str = 'v'

    @property
    def latest_release_api_url(self) -> str:
        return f"{self.api_base}/repos/{self.github_owner}/{self.github_repo}/releases/latest"

    @property
    def releases_url(self) -> str:
        return f"{self.web_base}/{self.github_owner}/{self.github_repo}/releases"


class Settings(BaseModel):
    """
    Defines the application's configuration schema using Pydantic.

    This class provides type hints, default values, and validation logic for all
    configuration settings.
    """
    log_level: str = 'INFO'
    sync: SyncSettings = Field(default_factory=SyncSettings)
    updater: UpdaterSettings = Field(default_factory=UpdaterSettings)

    @field_validator('log_level')
    def validate_log_level(cls, value: str) -> str:
        """Ensures log_level is a valid logging level string."""
        upper_value = value.upper()
        allowed_levels: List[str] = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if upper_value not in allowed_levels:
            raise ValueError(f"'{value}' is not a valid log level. Must be one of {allowed_levels}.")
        return upper_value


class ConfigManager:
    """Handles loading and saving the project configuration file."""
    def __init__(self, config_path: Path):
        """
        Initializes the ConfigManager.

        Args:
            config_path: The path to the configuration file.
        """
        self.config_path = config_path
        self.logger = logging.getLogger(__name__)

    def load(self) -> Settings:
        """
        Loads config from file, merges with defaults, validates, and returns it.

        A missing file yields the default layout. An invalid file is an error:
        syncing with guessed settings could rewrite the wrong files.

        Returns:
            A validated Settings object.

        Raises:
            ConfigError: If the file cannot be read, parsed, or validated.
        """
        if not self.config_path.exists():
            self.logger.debug(f"No {self.config_path.name} found. Using default settings.")
            return Settings()

        try:
            config_data = json.loads(self.config_path.read_text(encoding='utf-8'))
            return Settings.model_validate(config_data)
        except (ValidationError, json.JSONDecodeError, IOError) as e:
            self.logger.error(f"Error loading {self.config_path}: {e}")
            raise ConfigError(f"Invalid configuration in {self.config_path}: {e}") from e

    def save(self, settings: Settings):
        """
        Saves the provided settings object to the config file.

        Args:
            settings: The Settings object to save.
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            self.config_path.write_text(settings.model_dump_json(indent=4), encoding='utf-8')
        except IOError as e:
            self.logger.error(f"Error saving config file to {self.config_path}: {e}")
            raise ConfigError(f"Could not save configuration to {self.config_path}: {e}") from e
