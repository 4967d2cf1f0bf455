"""apix core - config file, environment and working directories.

A config file is YAML with a single ``defaults`` mapping (timeout, headers,
auth, env_file, requests_dir, stories_dir, state_dir, ...). Relative paths
inside it are read against the directory holding the file.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import dotenv_values

from apix import storage

logger = logging.getLogger(__name__)

GLOBAL_DIR = Path.home() / ".apix"
GLOBAL_CONFIG = GLOBAL_DIR / "config.yaml"

STATE_DIR_NAME = ".apix"

CONFIG_NAMES = (".apix.yaml", ".apix.yml", "apix.yaml", "apix.yml")

_ENV_REF_RE = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


@dataclass
class Config:
    """The loaded config file. ``path`` is None when no file was found."""

    path: Path | None = None
    defaults: dict[str, Any] = field(default_factory=dict)

    @property
    def base_dir(self) -> Path | None:
        return self.path.parent if self.path else None

    def local_path(self, key: str) -> Path | None:
        """Path-valued default ``key``, relative to the config file."""
        value = self.defaults.get(key)
        if not value:
            return None
        p = Path(value).expanduser()
        if not p.is_absolute() and self.base_dir:
            p = self.base_dir / p
        return p

    def save(self, path: Path | None = None) -> Path:
        """Write the defaults back, to the global config when none was loaded."""
        target = path or self.path or GLOBAL_CONFIG
        storage.write_yaml(target, {"defaults": self.defaults})
        self.path = Path(target).resolve()
        return self.path


def find_config(explicit: str | None = None) -> Path | None:
    """Config file to load.

    An explicit --config path is used as given (None when missing, no
    fallthrough). Otherwise the first of .apix.yaml/.apix.yml/apix.yaml/
    apix.yml in CWD, then ~/.apix/config.yaml.
    """
    if explicit:
        p = Path(explicit)
        return p.resolve() if p.is_file() else None
    for p in [Path(name) for name in CONFIG_NAMES] + [GLOBAL_CONFIG]:
        if p.is_file():
            return p.resolve()
    return None


def read_config(path: Path | None) -> Config:
    if path is None or not Path(path).is_file():
        return Config()
    data = storage.read_yaml(Path(path)) or {}
    defaults = data.get("defaults") if isinstance(data, dict) else None
    logger.debug("config loaded from %s", path)
    return Config(path=Path(path).resolve(), defaults=dict(defaults or {}))


def load_env(config: Config) -> dict[str, str]:
    """os.environ overlaid with the configured .env file (file wins)."""
    env = dict(os.environ)
    env_file = config.local_path("env_file")
    if env_file and env_file.is_file():
        env.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
    elif env_file:
        logger.debug("env file %s not found", env_file)
    return env


def expand_env(value, env: dict[str, str]):
    """Replace $VAR and ${VAR} in a config string; unknown names stay as written."""
    if not isinstance(value, str):
        return value
    return _ENV_REF_RE.sub(lambda m: env.get(m.group(1) or m.group(2), m.group(0)), value)


@dataclass(frozen=True)
class Dirs:
    requests: Path
    stories: Path
    state: Path


def _definitions_dir(kind: str, override: str | None, config: Config) -> Path:
    """requests/ or stories/: flag, config, ./<kind>/, ~/.apix/<kind>/.

    The flag is taken as given. The other candidates are used only when
    they exist; with none present, ./<kind>/ is returned for creation.
    """
    if override:
        return Path(override).expanduser().absolute()
    for candidate in (config.local_path(f"{kind}_dir"), Path(kind), GLOBAL_DIR / kind):
        if candidate is not None and candidate.is_dir():
            return candidate.resolve()
    return Path(kind)


def _state_dir(override: str | None, config: Config) -> Path:
    """Contexts and history: flag, config state_dir, ./.apix/ when present, ~/.apix/."""
    if override:
        return Path(override).expanduser().absolute()
    configured = config.local_path("state_dir")
    if configured is not None:
        return configured
    local = Path(STATE_DIR_NAME)
    if local.is_dir():
        return local.resolve()
    return GLOBAL_DIR


def resolve_dirs(
    config: Config,
    requests: str | None = None,
    stories: str | None = None,
    state: str | None = None,
) -> Dirs:
    """Directories one invocation works in, given the CLI overrides."""
    return Dirs(
        requests=_definitions_dir("requests", requests, config),
        stories=_definitions_dir("stories", stories, config),
        state=_state_dir(state, config),
    )
