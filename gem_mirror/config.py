import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import yaml

from .errors import ConfigError
from .models import ErrorPolicy

logger = logging.getLogger(__name__)

USER_AGENT = os.getenv("GEM_MIRROR_USER_AGENT", "gem-mirror/1.0")
CONNECT_TIMEOUT = int(os.getenv("GEM_MIRROR_CONNECT_TIMEOUT", "10"))
DOWNLOAD_TIMEOUT = int(os.getenv("GEM_MIRROR_TIMEOUT", "7200"))
DEBUG = os.getenv("GEM_MIRROR_DEBUG", "").lower() in ("true", "1", "yes", "y")

CONFIG_ENV = "GEM_MIRROR_CONFIG"
DEFAULT_CONFIG_PATH = Path("~") / ".gem" / ".mirrorrc"

DEFAULT_INDEX_FILES = ("specs.4.8.json.gz", "prerelease_specs.4.8.json.gz")

# .mirrorrc key -> MirrorConfig field. Long-form names are accepted as well.
KEY_ALIASES = {
    "from": "source",
    "to": "destination",
    "skiperror": "skip_on_error",
    "maxage": "max_age_days",
    "minversions": "min_versions",
    "delete_stale": "delete",
    "max_age": "max_age_days",
    "min_versions_retained": "min_versions",
}
KNOWN_KEYS = {
    "source", "destination", "parallelism", "retries", "delete",
    "skip_on_error", "max_age_days", "min_versions", "verbose",
    "verify_local", "retry_backoff", "index_files", "publish_index",
    "max_delete_ratio",
}


def _check_int(name: str, value: Any, minimum: int, optional: bool = False):
    if value is None and optional:
        return
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")


def _check_bool(name: str, value: Any):
    if not isinstance(value, bool):
        raise ConfigError(f"{name} must be true or false, got {value!r}")


@dataclass(frozen=True)
class MirrorConfig:
    """One mirrored source/destination pair. Never mutated during a run."""
    source: str
    destination: Path
    parallelism: int = 1
    retries: int = 0
    delete: bool = False
    error_policy: ErrorPolicy = ErrorPolicy.SKIP
    # None means unlimited
    max_age_days: Optional[int] = None
    min_versions: Optional[int] = None
    verbose: bool = False
    verify_local: bool = True
    retry_backoff: float = 0.0
    index_files: Tuple[str, ...] = field(default=DEFAULT_INDEX_FILES)
    publish_index: bool = True
    max_delete_ratio: Optional[float] = None

    def __post_init__(self):
        if not self.source or not isinstance(self.source, str):
            raise ConfigError(f"source must be a non-empty URI, got {self.source!r}")
        if not self.destination:
            raise ConfigError("destination must be set")
        object.__setattr__(self, "destination", Path(self.destination).expanduser())
        object.__setattr__(self, "index_files", tuple(self.index_files))
        _check_int("parallelism", self.parallelism, 1)
        _check_int("retries", self.retries, 0)
        _check_int("max_age_days", self.max_age_days, 0, optional=True)
        _check_int("min_versions", self.min_versions, 0, optional=True)
        for flag in ("delete", "verbose", "verify_local", "publish_index"):
            _check_bool(flag, getattr(self, flag))
        if not self.index_files:
            raise ConfigError("index_files must name at least one index document")
        for name in self.index_files:
            if not name or " " in name:
                raise ConfigError(f"Invalid item in index_files: {name!r}")
        if self.retry_backoff < 0:
            raise ConfigError(f"retry_backoff must be >= 0, got {self.retry_backoff}")
        if self.max_delete_ratio is not None and not 0 < self.max_delete_ratio <= 1:
            raise ConfigError(f"max_delete_ratio must be in (0, 1], got {self.max_delete_ratio}")

    @property
    def skip_on_error(self) -> bool:
        return self.error_policy is ErrorPolicy.SKIP

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "MirrorConfig":
        """Build a config from one entry of a ``.mirrorrc`` document."""
        if not isinstance(raw, Mapping):
            raise ConfigError(f"mirror entry must be a mapping, got {type(raw).__name__}")
        values: Dict[str, Any] = {}
        for key, value in raw.items():
            name = KEY_ALIASES.get(key, key)
            if name not in KNOWN_KEYS:
                logger.warning("Ignoring unknown mirror option %r", key)
                continue
            # YAML `key:` with no value means "use the default"
            if value is not None:
                values[name] = value
        for required, original in (("source", "from"), ("destination", "to")):
            if required not in values:
                raise ConfigError(f"mirror missing '{original}' field")
        skip = values.pop("skip_on_error", True)
        _check_bool("skiperror", skip)
        values["error_policy"] = ErrorPolicy.SKIP if skip else ErrorPolicy.ABORT
        if "index_files" in values and isinstance(values["index_files"], str):
            values["index_files"] = [values["index_files"]]
        try:
            return cls(**values)
        except TypeError as e:
            raise ConfigError(f"Invalid mirror entry: {e}") from e


def config_path(path: Union[str, Path, None] = None) -> Path:
    if path is None:
        path = os.getenv(CONFIG_ENV) or DEFAULT_CONFIG_PATH
    return Path(path).expanduser()


def load_config(path: Union[str, Path, None] = None) -> List[MirrorConfig]:
    """
    Read a YAML document holding a list of mirror definitions.

    Lookup order is the explicit ``path``, then ``$GEM_MIRROR_CONFIG``, then
    ``~/.gem/.mirrorrc``.
    """
    config_file = config_path(path)
    if not config_file.is_file():
        raise ConfigError(f"Config file {config_file} not found")
    try:
        with config_file.open("r", encoding="utf-8") as f:
            mirrors = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid config file {config_file}: {e}") from e
    if not isinstance(mirrors, list):
        raise ConfigError(f"Invalid config file {config_file}")
    return [MirrorConfig.from_mapping(mir) for mir in mirrors]
