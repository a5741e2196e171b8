"""Build configuration: roots and the target table, loaded from JSON.

    {
      "src_root": "artwork",
      "dst_root": "assets",
      "targets": [
        {"name": "props", "dir": "props", "match": "*.glb", "transform": "optimize"},
        {"name": "flora-shrubs", "dir": "flora/shrubs", "match": "*.glb",
         "reduce": "flora-merge", "dest": "terrain/models/shrubs.glb"}
      ]
    }

Relative roots are resolved against the directory holding the config file.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from build_assets.targets import Target, TargetRegistry

logger = logging.getLogger("pipeline.config")

DEFAULT_CONFIG_NAME = "assets.json"


class ConfigError(ValueError):
    """Raised when the build configuration is missing or malformed."""


@dataclass
class BuildConfig:
    src_root: str
    dst_root: str
    targets: TargetRegistry


def parse_config(data: Dict[str, Any], base_dir: str = ".") -> BuildConfig:
    """Build a BuildConfig from an already-parsed JSON object."""
    if not isinstance(data, dict):
        raise ConfigError("config root must be an object")
    records = data.get("targets", [])
    if not isinstance(records, list):
        raise ConfigError("'targets' must be a list")

    registry = TargetRegistry()
    for position, record in enumerate(records):
        if not isinstance(record, dict):
            raise ConfigError(f"target #{position} is not an object")
        try:
            registry.register(Target.from_dict(record))
        except (ValueError, KeyError) as exc:
            message = exc.args[0] if exc.args else str(exc)
            raise ConfigError(f"target #{position}: {message}") from exc

    base_dir = os.path.abspath(base_dir)
    return BuildConfig(
        src_root=os.path.join(base_dir, data.get("src_root", "artwork")),
        dst_root=os.path.join(base_dir, data.get("dst_root", "assets")),
        targets=registry,
    )


def load_config(path: Optional[str] = None) -> BuildConfig:
    """Load the target table from *path* (default: ``./assets.json``).

    Raises:
        ConfigError: If the file is missing, not JSON, or has a bad target.
    """
    path = os.path.abspath(path or DEFAULT_CONFIG_NAME)
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigError(f"config file not found: {path}") from None
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{path}: invalid JSON: {exc}") from exc

    config = parse_config(data, base_dir=os.path.dirname(path))
    logger.debug(
        "loaded %d target(s) from %s (src=%s, dst=%s)",
        len(config.targets), path, config.src_root, config.dst_root,
    )
    return config
