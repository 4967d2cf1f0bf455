"""apix history - append-only record of executed requests.

One JSON file per request name under <state>/history/, named by
history_key() so distinct names never share a file. Entries are only
ever appended; the file is rewritten atomically each time.
"""

from __future__ import annotations

import datetime
import hashlib
import logging
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from apix import storage
from apix.errors import ContextUnavailable, HistoryNotFound

logger = logging.getLogger(__name__)

HISTORY_DIR = "history"

_SLUG_RE = re.compile(r"[^A-Za-z0-9_.-]+")


def utcnow_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


@dataclass(frozen=True)
class ExecutionResult:
    request_name: str
    context: str
    timestamp: str
    request: dict[str, Any]
    status_code: int
    headers: dict[str, str]
    body: Any
    duration_ms: float
    outcome: str = "completed"
    exports: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> ExecutionResult:
        return cls(
            request_name=data["request_name"],
            context=data.get("context", ""),
            timestamp=data["timestamp"],
            request=data.get("request") or {},
            status_code=int(data.get("status_code", 0)),
            headers=data.get("headers") or {},
            body=data.get("body"),
            duration_ms=float(data.get("duration_ms", 0)),
            outcome=data.get("outcome", "completed"),
            exports=data.get("exports") or {},
        )


def slugify(name: str) -> str:
    slug = _SLUG_RE.sub("_", name).strip("._")
    return slug or "request"


def history_key(name: str) -> str:
    """File stem for name: readable slug plus a digest of the exact name."""
    digest = hashlib.sha1(name.encode("utf-8")).hexdigest()[:10]
    return f"{slugify(name)}-{digest}"


class HistoryStore:
    def __init__(self, root: Path):
        self.root = Path(root) / HISTORY_DIR

    def _path(self, request_name: str) -> Path:
        return self.root / f"{history_key(request_name)}.json"

    def _load(self, request_name: str) -> list[dict]:
        path = self._path(request_name)
        if not path.exists():
            return []
        data = storage.read_json(path)
        if not isinstance(data, dict) or not isinstance(data.get("entries"), list):
            raise ContextUnavailable(path, "not a history file")
        return data["entries"]

    def append(self, request_name: str, result: ExecutionResult) -> Path:
        entries = self._load(request_name)
        entries.append(result.to_dict())
        path = storage.write_json(
            self._path(request_name),
            {"request": request_name, "entries": entries},
        )
        logger.debug("history %s: %d entries", request_name, len(entries))
        return path

    def list(self, request_name: str) -> list[ExecutionResult]:
        """All results for request_name, oldest first."""
        return [ExecutionResult.from_dict(e) for e in self._load(request_name)]

    def latest(self, request_name: str) -> ExecutionResult:
        entries = self._load(request_name)
        if not entries:
            raise HistoryNotFound(request_name)
        return ExecutionResult.from_dict(entries[-1])

    def names(self) -> list[str]:
        if not self.root.is_dir():
            return []
        out = []
        for f in sorted(self.root.glob("*.json")):
            data = storage.read_json(f)
            if isinstance(data, dict) and data.get("request"):
                out.append(str(data["request"]))
        return out
