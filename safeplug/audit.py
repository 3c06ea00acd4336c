"""Append-only JSONL record of plugin runs, installs and updates."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from safeplug.config import METADATA_DIR
from safeplug.redaction import redact

AUDIT_FILE = "audit.jsonl"


@dataclass
class AuditEvent:
    """A single audit log entry.

    ``action`` is ``plugin:command`` for runs and ``add:<plugin>`` or
    ``update:<plugin>`` for registry operations.  ``grants`` holds the
    runtime flags a run was launched with.
    """

    action: str
    status: str
    detail: str = ""
    grants: list[str] = field(default_factory=list)


def audit_path(project_root: Path | str) -> Path:
    return Path(project_root).resolve() / METADATA_DIR / AUDIT_FILE


def write_audit(project_root: Path | str, event: AuditEvent) -> Path:
    """Append an event to the project's audit log.

    Plugin arguments end up in the detail, so it goes through
    ``redact()`` first.  A UTC ISO-8601 timestamp is added.

    Returns:
        Path to the audit log file.
    """
    path = audit_path(project_root)
    path.parent.mkdir(parents=True, exist_ok=True)

    record = asdict(event)
    record["detail"] = redact(record["detail"])
    record["timestamp"] = datetime.now(UTC).isoformat()

    with path.open("a", encoding="utf-8") as fh:
        fh.write(json.dumps(record, ensure_ascii=False) + "\n")

    return path


def read_audit(project_root: Path | str, last_n: int = 20) -> list[dict]:
    """Return the most recent *last_n* entries, newest first."""
    path = audit_path(project_root)
    if not path.exists():
        return []

    lines = path.read_text(encoding="utf-8").strip().splitlines()
    entries = [json.loads(line) for line in lines if line.strip()]
    return list(reversed(entries[-last_n:]))
