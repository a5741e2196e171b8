"""WorkItem: typed data packet that flows through the pipeline.

A target build starts as one WorkItem; map targets fan out into one
WorkItem per matched source file.  Items serialize to JSON so a target
can be shipped to a worker process.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class WorkItem:
    """Typed data packet that flows through a pipeline independently.

    Attributes:
        id:           Unique identifier (target name, or source path for per-file items).
        attributes:   Key-value data; steps see this as their context dict.
        input_files:  Source files this item reads.
        output_files: Files this item wrote.
        parent_id:    For fan-out provenance — ID of the item that generated this one.
        meta:         Scheduler hints, timing, etc.
    """

    id: str
    attributes: Dict[str, Any]
    input_files: List[str] = field(default_factory=list)
    output_files: List[str] = field(default_factory=list)
    parent_id: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        """Serialize the entire WorkItem to a JSON string.

        Non-serializable attribute values are converted via ``str()``.
        """
        return json.dumps(asdict(self), default=str)

    @classmethod
    def from_json(cls, data: str) -> WorkItem:
        """Deserialize a WorkItem from a JSON string."""
        d = json.loads(data)
        return cls(**d)

    @classmethod
    def for_target(
        cls,
        target_record: Dict[str, Any],
        src_root: str,
        dst_root: str,
        *,
        force: bool = False,
    ) -> WorkItem:
        """Root work item for one target build.

        ``target_record`` is the target's config record (``Target.to_dict()``)
        so the item stays JSON-serializable.
        """
        return cls(
            id=target_record["name"],
            attributes={
                "target": target_record,
                "src_root": src_root,
                "dst_root": dst_root,
                "_force": force,
            },
        )

    def child(self, id: str, input_files: List[str], **attributes: Any) -> WorkItem:
        """Fan-out item inheriting this item's attributes minus run bookkeeping."""
        inherited = {
            k: v for k, v in self.attributes.items()
            if k != "step_states"
        }
        inherited.update(attributes)
        return WorkItem(
            id=id,
            attributes=inherited,
            input_files=list(input_files),
            parent_id=self.id,
        )
