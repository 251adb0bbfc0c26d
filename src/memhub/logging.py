"""Structured event log.

Knowledge operations and tool calls are appended to ``events.jsonl``, one
JSON object per line. Once the file reaches ``max_size_mb`` it is renamed
with a UTC timestamp suffix and a new file is started.
"""

import json
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

DEFAULT_LOG_DIR = Path.home() / ".memhub" / "logs"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class EventRecord:
    """One line of the event log."""

    timestamp: str
    event: str
    tool_name: str | None = None
    entry_id: int | None = None
    duration_ms: float | None = None
    success: bool | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serializable form; unset fields and an empty ``extra`` are omitted."""
        data: dict[str, Any] = {"timestamp": self.timestamp, "event": self.event}
        for name in ("tool_name", "entry_id", "duration_ms", "success", "error"):
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        if self.extra:
            data["extra"] = self.extra
        return data


class JSONLLogger:
    """Appends EventRecords to a size-rotated JSONL file.

    Safe to share between threads.
    """

    def __init__(
        self,
        log_dir: str | Path | None = None,
        filename: str = "events.jsonl",
        max_size_mb: float = 10.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the log and create its directory.

        Args:
            log_dir: Directory for the log files (~/.memhub/logs if None).
            filename: Name of the active log file.
            max_size_mb: Size at which the active file is rotated.
            clock: Source of event timestamps (defaults to UTC now).
        """
        self.log_dir = Path(log_dir) if log_dir is not None else DEFAULT_LOG_DIR
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.filename = filename
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)
        self._clock = clock or _utcnow
        self._lock = threading.Lock()

    @property
    def log_path(self) -> Path:
        """Active log file."""
        return self.log_dir / self.filename

    def _rotated_path(self) -> Path:
        stem, suffix = self.log_path.stem, self.log_path.suffix
        base = f"{stem}_{self._clock().strftime('%Y%m%d_%H%M%S_%f')}"
        path = self.log_dir / f"{base}{suffix}"
        n = 1
        while path.exists():
            path = self.log_dir / f"{base}_{n}{suffix}"
            n += 1
        return path

    def _append(self, record: EventRecord) -> None:
        line = json.dumps(record.to_dict(), default=str, ensure_ascii=False)
        with self._lock:
            path = self.log_path
            if path.exists() and path.stat().st_size >= self.max_size_bytes:
                path.rename(self._rotated_path())
            with open(path, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def log(
        self,
        event: str,
        *,
        tool_name: str | None = None,
        entry_id: int | None = None,
        duration_ms: float | None = None,
        success: bool | None = None,
        error: str | None = None,
        **extra: Any,
    ) -> None:
        """Record an event; keyword arguments not named here go to ``extra``."""
        self._append(
            EventRecord(
                timestamp=self._clock().isoformat(),
                event=event,
                tool_name=tool_name,
                entry_id=entry_id,
                duration_ms=duration_ms,
                success=success,
                error=error,
                extra=extra,
            )
        )

    def log_tool_call(self, tool_name: str, args: dict[str, Any]) -> None:
        self.log("tool_call", tool_name=tool_name, tool_args=args)

    def log_tool_result(
        self,
        tool_name: str,
        success: bool,
        *,
        duration_ms: float | None = None,
        error: str | None = None,
    ) -> None:
        """Record the outcome of a tool call; ``error`` is kept only on failure."""
        self.log(
            "tool_result",
            tool_name=tool_name,
            success=success,
            duration_ms=duration_ms,
            error=None if success else error,
        )

    def log_error(self, error: BaseException, *, tool_name: str | None = None) -> None:
        """Record an unexpected failure."""
        self.log(
            "error",
            tool_name=tool_name,
            error=str(error),
            error_type=type(error).__name__,
        )
