"""Output naming, freshness checks, build records and atomic writes.

Map targets mirror each source's path below the source root into the
destination root; reduce targets name their single output explicitly.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

logger = logging.getLogger("pipeline.naming")


def ensure_directory(path: str) -> str:
    """Ensure the directory for *path* exists, creating it if necessary.

    If *path* looks like a file (has an extension), the **parent** directory
    is created.  If it ends with ``/``, the directory itself is created.

    Returns the (possibly created) directory path.
    """
    p = Path(path)
    if p.suffix or not path.endswith("/"):
        directory = p.parent
    else:
        directory = p
    directory.mkdir(parents=True, exist_ok=True)
    return str(directory)


class DestinationNamer:
    """Deterministic output path generator for per-file targets.

    Each source keeps its path relative to the source root::

        namer = DestinationNamer("/game/artwork", "/game/assets")
        namer("/game/artwork/props/barrel.glb")
        # → "/game/assets/props/barrel.glb"

    With ``subdir`` the mirrored path is re-rooted below that directory
    of the destination root instead::

        namer = DestinationNamer("/game/artwork", "/game/assets", subdir="audio/fx")
        namer("/game/artwork/sfx/door.ogg")
        # → "/game/assets/audio/fx/door.ogg"

    Args:
        src_root: Root the source paths are relative to.
        dst_root: Root directory for all outputs.
        subdir:   Optional directory below ``dst_root``; when given, only the
                  file name (and any path below the target's own source
                  directory, see ``base``) is kept.
        base:     Directory below ``src_root`` to strip when ``subdir`` is set.
    """

    def __init__(
        self,
        src_root: str,
        dst_root: str,
        *,
        subdir: Optional[str] = None,
        base: str = "",
    ) -> None:
        self.src_root = os.path.abspath(src_root)
        self.dst_root = os.path.abspath(dst_root)
        self.subdir = subdir
        self.base = base

    def __call__(self, input_path: str) -> str:
        rel = os.path.relpath(os.path.abspath(input_path), self.src_root)
        if rel.startswith(os.pardir):
            raise ValueError(f"{input_path} is not below source root {self.src_root}")
        if self.subdir is None:
            return os.path.join(self.dst_root, rel)
        rel = os.path.relpath(rel, self.base or os.curdir)
        return os.path.join(self.dst_root, self.subdir, rel)


def is_up_to_date(sources: Iterable[str], output_path: str) -> bool:
    """True if *output_path* exists and is at least as new as every source."""
    try:
        out_mtime = os.stat(output_path).st_mtime
    except FileNotFoundError:
        return False
    for source in sources:
        if os.stat(source).st_mtime > out_mtime:
            return False
    return True


def write_bytes_atomic(path: str, data: bytes) -> None:
    """Write *data* to *path* via a temp file in the same directory."""
    path = str(path)
    ensure_directory(path)
    d = os.path.dirname(path) or "."
    fd, tmp = tempfile.mkstemp(prefix=".build_", dir=d)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        shutil.move(tmp, path)
    finally:
        if os.path.exists(tmp):
            os.remove(tmp)
    logger.debug("wrote %d byte(s) to %s", len(data), path)


def write_json_atomic(path: str, data: Any) -> None:
    """Write *data* as indented JSON, newline-terminated."""
    text = json.dumps(data, indent=2) + "\n"
    write_bytes_atomic(path, text.encode("utf-8"))


# Build records live below the destination root, one JSON file per output.
BUILD_STATE_DIR = ".build-state"


def build_state_path(dst_root: str, output_path: str) -> str:
    """Location of the build record for *output_path*."""
    rel = os.path.relpath(os.path.abspath(output_path), os.path.abspath(dst_root))
    key = hashlib.sha1(rel.replace(os.sep, "/").encode("utf-8")).hexdigest()
    return os.path.join(dst_root, BUILD_STATE_DIR, key + ".json")


def read_build_state(dst_root: str, output_path: str) -> Optional[Dict[str, Any]]:
    """Return the build record for *output_path*, or None if there is none.

    An unreadable record counts as missing, so the output gets rebuilt.
    """
    path = build_state_path(dst_root, output_path)
    try:
        with open(path, encoding="utf-8") as f:
            state = json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as exc:
        logger.warning("ignoring unreadable build record %s: %s", path, exc)
        return None
    return state if isinstance(state, dict) else None


def write_build_state(dst_root: str, output_path: str, state: Dict[str, Any]) -> None:
    write_json_atomic(build_state_path(dst_root, output_path), state)
