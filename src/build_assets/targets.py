"""Build targets: what to read, how to transform it, where to write it.

A Target pairs a source selector with a transform and a destination.
Targets are plain records; the build pipeline in ``build_assets.build``
turns each one into a Pipeline at run time.

    registry = TargetRegistry()
    registry.register(directory("props", "*.glb").map("props", transform="optimize"))
    registry.flora("flora-shrubs", "flora/shrubs", "terrain/models/shrubs.glb")
"""

from __future__ import annotations

import fnmatch
import os
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from build_assets.transforms import SourceFile, get_map_transform, get_reduce_transform


# ---------------------------------------------------------------------------
# Source selectors
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DirectorySource:
    """Regular files directly inside ``src_root/subdir`` matching ``pattern``."""

    subdir: str
    pattern: str = "*"

    def files(self, src_root: str) -> List[SourceFile]:
        """Return matching files sorted by relative path.

        Sorting makes reduce targets fold in the same order on every
        filesystem.  A missing directory matches nothing.
        """
        directory = os.path.join(src_root, self.subdir)
        if not os.path.isdir(directory):
            return []
        names = sorted(
            name for name in os.listdir(directory)
            if fnmatch.fnmatchcase(name, self.pattern)
            and os.path.isfile(os.path.join(directory, name))
        )
        return [
            SourceFile(
                relpath=os.path.normpath(os.path.join(self.subdir, name)).replace(os.sep, "/"),
                path=os.path.join(directory, name),
            )
            for name in names
        ]

    def describe(self) -> str:
        return f"{self.subdir.rstrip('/')}/{self.pattern}"

    def map(self, name: str, transform: str = "copy", dest: Optional[str] = None) -> Target:
        return Target(name=name, source=self, transform=transform, dest=dest)

    def reduce(self, name: str, reduce: str, dest: str) -> Target:
        return Target(name=name, source=self, reduce=reduce, dest=dest)


@dataclass(frozen=True)
class FileSource:
    """One explicit file below the source root."""

    path: str

    def files(self, src_root: str) -> List[SourceFile]:
        """Return the file; raises FileNotFoundError if it does not exist."""
        full = os.path.join(src_root, self.path)
        if not os.path.isfile(full):
            raise FileNotFoundError(f"source file not found: {full}")
        return [SourceFile(relpath=self.path, path=full)]

    def describe(self) -> str:
        return self.path

    def dest(self, name: str, dest: str, transform: str = "copy") -> Target:
        return Target(name=name, source=self, transform=transform, dest=dest)


Source = Union[DirectorySource, FileSource]


def directory(subdir: str, pattern: str = "*") -> DirectorySource:
    return DirectorySource(subdir=subdir, pattern=pattern)


def source(path: str) -> FileSource:
    return FileSource(path=path)


# ---------------------------------------------------------------------------
# Target
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Target:
    """A named build unit.

    Attributes:
        name:      Unique target name.
        source:    DirectorySource or FileSource.
        transform: Map transform applied per file (ignored in reduce mode).
        reduce:    Reduce transform folding all sources into ``dest``.
        dest:      Output path below the destination root.  Required for
                   reduce targets and file sources; for directory maps it
                   is an optional destination directory.
        enabled:   Disabled targets only build when named explicitly.
    """

    name: str
    source: Source
    transform: str = "copy"
    reduce: Optional[str] = None
    dest: Optional[str] = None
    enabled: bool = True

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("target name must not be empty")
        if self.reduce is not None:
            get_reduce_transform(self.reduce)
            if not isinstance(self.source, DirectorySource):
                raise ValueError(f"target {self.name!r}: reduce needs a directory source")
            if not self.dest:
                raise ValueError(f"target {self.name!r}: reduce needs a dest file")
        else:
            get_map_transform(self.transform)
            if isinstance(self.source, FileSource) and not self.dest:
                raise ValueError(f"target {self.name!r}: file source needs a dest file")

    @property
    def mode(self) -> str:
        return "reduce" if self.reduce is not None else "map"

    @property
    def transform_name(self) -> str:
        return self.reduce if self.reduce is not None else self.transform

    def to_dict(self) -> Dict[str, Any]:
        """Return the target as a config record."""
        record: Dict[str, Any] = {"name": self.name}
        if isinstance(self.source, DirectorySource):
            record["dir"] = self.source.subdir
            record["match"] = self.source.pattern
        else:
            record["file"] = self.source.path
        if self.reduce is not None:
            record["reduce"] = self.reduce
        else:
            record["transform"] = self.transform
        if self.dest is not None:
            record["dest"] = self.dest
        if not self.enabled:
            record["enabled"] = False
        return record

    @classmethod
    def from_dict(cls, record: Dict[str, Any]) -> Target:
        """Build a target from a config record.

        Raises:
            ValueError: If the record is malformed.
            KeyError:   If it names an unknown transform.
        """
        name = record.get("name")
        if not isinstance(name, str) or not name:
            raise ValueError(f"target record without a name: {record!r}")
        if ("dir" in record) == ("file" in record):
            raise ValueError(f"target {name!r}: needs exactly one of 'dir' or 'file'")
        if "transform" in record and "reduce" in record:
            raise ValueError(f"target {name!r}: 'transform' and 'reduce' are exclusive")
        unknown = set(record) - {"name", "dir", "file", "match", "transform", "reduce", "dest", "enabled"}
        if unknown:
            raise ValueError(f"target {name!r}: unknown key(s) {sorted(unknown)}")

        src: Source
        if "dir" in record:
            src = DirectorySource(subdir=record["dir"], pattern=record.get("match", "*"))
        else:
            src = FileSource(path=record["file"])
        return cls(
            name=name,
            source=src,
            transform=record.get("transform", "copy"),
            reduce=record.get("reduce"),
            dest=record.get("dest"),
            enabled=bool(record.get("enabled", True)),
        )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class TargetRegistry:
    """Ordered collection of targets keyed by name."""

    def __init__(self, targets: Sequence[Target] = ()) -> None:
        self._targets: Dict[str, Target] = {}
        for target in targets:
            self.register(target)

    def register(self, target: Target) -> Target:
        if target.name in self._targets:
            raise ValueError(f"duplicate target name {target.name!r}")
        self._targets[target.name] = target
        return target

    def __iter__(self) -> Iterator[Target]:
        return iter(self._targets.values())

    def __len__(self) -> int:
        return len(self._targets)

    def __contains__(self, name: object) -> bool:
        return name in self._targets

    def __getitem__(self, name: str) -> Target:
        return self._targets[name]

    def select(self, names: Optional[Sequence[str]] = None) -> List[Target]:
        """Return the named targets in the given order, or every enabled target.

        Raises:
            KeyError: If a name is not registered.
        """
        if not names:
            return [t for t in self._targets.values() if t.enabled]
        missing = [n for n in names if n not in self._targets]
        if missing:
            raise KeyError(f"unknown target(s): {', '.join(missing)}")
        return [self._targets[n] for n in names]

    # -- registration helpers --------------------------------------------

    def flora(self, name: str, subdir: str, dest: str) -> Target:
        """Merge every .glb in *subdir* into the single model *dest*."""
        return self.register(directory(subdir, "*.glb").reduce(name, "flora-merge", dest))

    def trees(self, group: str) -> Target:
        """Flora target for one tree group: ``flora/trees-<group>`` → ``terrain/models/<group>.glb``."""
        return self.flora(f"trees-{group}", f"flora/trees-{group}/", f"terrain/models/{group}.glb")
