"""Thread-safe JSONL event logging with size-based rotation."""

from __future__ import annotations

import dataclasses
import datetime as _dt
import gzip
import json
import os
import shutil
import socket
import threading
from decimal import Decimal
from pathlib import Path
from typing import Any, Mapping, MutableMapping

REPO_ROOT = Path(__file__).resolve().parent.parent
_HOSTNAME = socket.gethostname()

__all__ = ["JsonlLogger", "get_logger", "log_event", "safe_dump", "read_jsonl"]


class JsonlLogger:
    """Append-only JSONL writer; the oldest rotated file is gzipped into archive/."""

    def __init__(self, path: Path, max_bytes: int, backup_count: int) -> None:
        self.path = Path(path)
        self.max_bytes = max_bytes
        self.backup_count = backup_count
        self._lock = threading.RLock()
        self._archive_root = self.path.parent / "archive"

    def write(self, record: Mapping[str, Any] | None) -> None:
        line = json.dumps(safe_dump(record or {}), ensure_ascii=False)
        encoded = f"{line}\n".encode("utf-8")
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._rotate_if_needed(len(encoded))
            with self.path.open("ab") as handle:
                handle.write(encoded)
                handle.flush()
                os.fsync(handle.fileno())

    def _indexed_path(self, index: int) -> Path:
        if index == 0:
            return self.path
        suffix = self.path.suffix
        base = self.path.name[: -len(suffix)] if suffix else self.path.name
        return self.path.with_name(f"{base}.{index}{suffix}")

    def _rotate_if_needed(self, incoming_len: int) -> None:
        if self.backup_count <= 0 or self.max_bytes <= 0 or not self.path.exists():
            return
        if self.path.stat().st_size + incoming_len <= self.max_bytes:
            return
        oldest = self._indexed_path(self.backup_count)
        if oldest.exists():
            self._archive(oldest)
        for idx in range(self.backup_count, 0, -1):
            src = self._indexed_path(idx - 1)
            if src.exists():
                os.replace(src, self._indexed_path(idx))

    def _archive(self, path: Path) -> None:
        self._archive_root.mkdir(parents=True, exist_ok=True)
        stamp = _dt.datetime.now(tz=_dt.timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        target = self._archive_root / f"{path.name}.{stamp}.gz"
        with path.open("rb") as src, gzip.open(target, "wb") as dst:
            shutil.copyfileobj(src, dst)
        path.unlink()


def get_logger(path: str, max_bytes: int = 10_000_000, backup_count: int = 5) -> JsonlLogger:
    target = Path(path)
    if not target.is_absolute():
        target = REPO_ROOT / target
    return JsonlLogger(target, max_bytes=max_bytes, backup_count=backup_count)


def log_event(logger: JsonlLogger, event_type: str, payload: Mapping[str, Any] | None) -> None:
    event: MutableMapping[str, Any] = safe_dump(payload or {})
    event.update(
        {
            "ts": _dt.datetime.now(tz=_dt.timezone.utc).isoformat(),
            "event_type": event_type,
            "pid": os.getpid(),
            "hostname": _HOSTNAME,
        }
    )
    logger.write(event)


def read_jsonl(path: Path) -> list:
    if not Path(path).exists():
        return []
    with Path(path).open("r", encoding="utf-8") as handle:
        return [json.loads(line) for line in handle if line.strip()]


def safe_dump(obj: Any) -> MutableMapping[str, Any]:
    """Return a JSON-serializable dict; ints wider than 53 bits are kept exact as strings."""

    def coerce(value: Any) -> Any:
        if value is None or isinstance(value, (str, bool, float)):
            return value
        if isinstance(value, int):
            return value if abs(value) < 2**53 else str(value)
        if isinstance(value, Decimal):
            return str(value)
        if isinstance(value, Mapping):
            return {str(k): coerce(v) for k, v in value.items()}
        if dataclasses.is_dataclass(value) and not isinstance(value, type):
            return coerce(dataclasses.asdict(value))
        if isinstance(value, (list, tuple, set)):
            return [coerce(v) for v in value]
        if isinstance(value, _dt.datetime):
            item = value if value.tzinfo else value.replace(tzinfo=_dt.timezone.utc)
            return item.astimezone(_dt.timezone.utc).isoformat()
        if isinstance(value, _dt.date):
            return value.isoformat()
        return repr(value)

    if obj is None:
        return {}
    if isinstance(obj, Mapping):
        return {str(k): coerce(v) for k, v in obj.items()}
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return safe_dump(dataclasses.asdict(obj))
    return {"value": coerce(obj)}
