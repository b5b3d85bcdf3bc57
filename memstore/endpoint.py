"""Semantic server endpoint resolution.

An endpoint is a path to a server script or executable. It comes from the
``semantic.endpoint`` option, or from a ``memory-db: <path>`` line in a
CLAUDE.md file (the user's global one first, then the working directory's).
"""

from __future__ import annotations

import logging
import re
import sys
from pathlib import Path

log = logging.getLogger("memstore.endpoint")

GLOBAL_NOTES = Path.home() / ".claude" / "CLAUDE.md"
LOCAL_NOTES_NAME = "CLAUDE.md"

_ENDPOINT_RE = re.compile(r"memory-db:\s*([^\n]+)")

_INTERPRETERS = {
    ".js": ["node"],
    ".mjs": ["node"],
    ".py": [sys.executable],
}


def _endpoint_from_notes(path: Path) -> Path | None:
    if not path.is_file():
        return None
    try:
        match = _ENDPOINT_RE.search(path.read_text())
    except OSError as exc:
        log.debug("cannot read %s: %s", path, exc)
        return None
    if not match:
        return None
    candidate = Path(match.group(1).strip()).expanduser()
    if candidate.exists():
        log.info("found semantic server in %s: %s", path, candidate)
        return candidate
    log.debug("%s names %s, which does not exist", path, candidate)
    return None


def resolve_endpoint(configured: str = "", local_dir: str | Path | None = None) -> Path | None:
    """Return the first existing endpoint path, or None."""
    if configured:
        candidate = Path(configured).expanduser()
        if candidate.exists():
            return candidate
        log.warning("configured semantic endpoint %s does not exist", candidate)

    for notes in (GLOBAL_NOTES, Path(local_dir or Path.cwd()) / LOCAL_NOTES_NAME):
        found = _endpoint_from_notes(notes)
        if found:
            return found
    return None


def endpoint_command(endpoint: Path) -> list[str]:
    """Build the argv that launches ``endpoint``."""
    return [*_INTERPRETERS.get(endpoint.suffix.lower(), []), str(endpoint)]
