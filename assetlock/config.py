"""
Configuration for asset allocation.

Covers the remote lock service settings (loaded once from a key/value data
file), the environment-driven location of the candidate store, and the
shared property store that claimed assets publish their data into.
"""

import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from loguru import logger
from pydantic import BaseModel, ValidationError, field_validator, model_validator

from assetlock.errors import ConfigurationError
from assetlock.store import DataFile, PathLike
from assetlock.types import VerificationMode

DEFAULT_CONFIGURATION_FILE = "./data/resourcelock.csv"

DEFAULT_LOCK_NAME = "n8_etcd"
DEFAULT_STATUS_URI = "/plugin/lockable-resources/api/json"
URI_PATH_ROOT = "/lockable-resources"
DEFAULT_LOCK_URI = URI_PATH_ROOT + "/reserve?resource="
DEFAULT_UNLOCK_URI = URI_PATH_ROOT + "/unreserve?resource="
DEFAULT_WAIT_TIME_MS = 5000

ENV_VARIABLE_TEST_RESOURCES_DIR = "TEST_RESOURCES_DIR"
ENV_VARIABLE_TEST_SETTINGS_DIR = "TEST_SETTINGS_DIR"


class LockServiceConfig(BaseModel):
    """Remote lock service configuration. Durations are in milliseconds."""

    endpoint_url: str
    lock_name: str = DEFAULT_LOCK_NAME
    ttl: int = 0
    wait_time: int = DEFAULT_WAIT_TIME_MS
    wait_timeout: int = 0
    status_uri: str = DEFAULT_STATUS_URI
    lock_uri: str = DEFAULT_LOCK_URI
    unlock_uri: str = DEFAULT_UNLOCK_URI
    verification: VerificationMode = VerificationMode.STATUS
    resource_name: Optional[str] = None
    username: Optional[str] = None
    api_token: Optional[str] = None
    request_timeout: float = 30.0

    @field_validator("endpoint_url")
    @classmethod
    def _strip_endpoint(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value:
            raise ValueError("endpoint_url must not be empty")
        return value

    @field_validator("ttl", "wait_timeout")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError(f"must not be negative, got {value}")
        return value

    @field_validator("wait_time")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError(f"wait_time must be positive, got {value}")
        return value

    @model_validator(mode="after")
    def _html_needs_resource_name(self) -> "LockServiceConfig":
        if self.verification == VerificationMode.HTML and not self.resource_name:
            raise ValueError("html verification requires resource_name")
        return self

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "LockServiceConfig":
        """
        Build the configuration from key/value settings.

        Blank values are ignored so the defaults apply.

        Raises:
            ConfigurationError: If a required key is missing or a value is invalid.
        """
        cleaned = {
            key.strip(): value.strip() if isinstance(value, str) else value
            for key, value in values.items()
            if value is not None and not (isinstance(value, str) and not value.strip())
        }
        try:
            return cls(**cleaned)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid lock service configuration: {e}") from e

    @classmethod
    def from_data_file(cls, path: PathLike = DEFAULT_CONFIGURATION_FILE) -> "LockServiceConfig":
        """Load the configuration from a ``key,value`` data file."""
        logger.debug(f"Setting up Resource Lock configuration from file: {path}")
        try:
            data = DataFile.load(path)
        except OSError as e:
            raise ConfigurationError(f"Unable to read lock service configuration {path}: {e}") from e
        config = cls.from_mapping(data.as_properties())
        logger.debug(
            f"Resource Lock service endpoint URL: {config.endpoint_url} "
            f"(lock name: {config.lock_name}, ttl: {config.ttl}, "
            f"wait time: {config.wait_time}, wait timeout: {config.wait_timeout})"
        )
        return config


@dataclass
class ManagerSettings:
    """Where the candidate store lives. Environment variables win over arguments."""
    resources_dir: Optional[str] = None
    settings_dir: Optional[str] = None

    def __post_init__(self) -> None:
        if self.resources_dir is None and self.settings_dir is None:
            raise ValueError("resources_dir or settings_dir must be set")

    @classmethod
    def from_environment(
        cls,
        resources_dir: Optional[str] = None,
        settings_dir: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "ManagerSettings":
        env = os.environ if environ is None else environ
        return cls(
            resources_dir=env.get(ENV_VARIABLE_TEST_RESOURCES_DIR, resources_dir),
            settings_dir=env.get(ENV_VARIABLE_TEST_SETTINGS_DIR, settings_dir),
        )

    @property
    def directory(self) -> Path:
        """The directory holding the asset data files."""
        if self.resources_dir is None:
            return Path(self.settings_dir)
        if self.settings_dir is None:
            return Path(self.resources_dir)
        return Path(self.resources_dir) / self.settings_dir

    @property
    def directories(self) -> List[str]:
        return [str(self.directory)]

    @property
    def lock_name_prefix(self) -> str:
        if not self.settings_dir:
            return ""
        return f"{Path(self.settings_dir).name}-"


class SharedProperties:
    """
    Process-wide key/value store that claimed assets publish their data into.

    Passed explicitly to the asset manager; workflow code reads from the
    same instance.
    """

    def __init__(self, initial: Optional[Mapping[str, str]] = None) -> None:
        self._lock = threading.Lock()
        self._values: Dict[str, str] = dict(initial or {})

    def add_properties(self, data_file: PathLike) -> None:
        """
        Merge every dataset of a data file into the store.

        Raises:
            OSError: If the file cannot be read.
        """
        logger.info(f"Attempt to add properties by file: {data_file}")
        properties = DataFile.load(data_file).as_properties()
        with self._lock:
            self._values.update(properties)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._lock:
            return self._values.get(key, default)

    def as_dict(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._values)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._values
