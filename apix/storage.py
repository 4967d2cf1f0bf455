"""apix storage - atomic reads and writes for shared state files.

Writers put the new content in a sibling temp file and os.replace() it over
the target, so a concurrent reader sees either the old or the new file.
Readers retry briefly when the file is momentarily absent.
"""

import json
import logging
import os
import time
from pathlib import Path
from typing import Any

import yaml

from apix.errors import ContextUnavailable

logger = logging.getLogger(__name__)

READ_ATTEMPTS = 3
READ_DELAY = 0.05


def atomic_write_text(path: Path, content: str) -> Path:
    """Write content to path via temp file + os.replace."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    try:
        tmp_path.write_text(content, encoding="utf-8")
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()
    logger.debug("wrote %s", path)
    return path


def read_text(path: Path) -> str:
    """Read a state file, retrying while it is missing mid-replace."""
    last_error: OSError | None = None
    for attempt in range(READ_ATTEMPTS):
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            last_error = e
            logger.debug("%s missing (attempt %d), retrying", path, attempt + 1)
            time.sleep(READ_DELAY)
        except OSError as e:
            raise ContextUnavailable(path, str(e)) from e
    raise ContextUnavailable(path, str(last_error))


def dump_yaml(data: Any) -> str:
    return yaml.safe_dump(data, sort_keys=False, allow_unicode=True, default_flow_style=False)


def write_yaml(path: Path, data: Any) -> Path:
    return atomic_write_text(path, dump_yaml(data))


def read_yaml(path: Path) -> Any:
    text = read_text(path)
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ContextUnavailable(path, f"invalid YAML: {e}") from e


def write_json(path: Path, data: Any) -> Path:
    return atomic_write_text(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n")


def read_json(path: Path) -> Any:
    text = read_text(path)
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ContextUnavailable(path, f"invalid JSON: {e}") from e
