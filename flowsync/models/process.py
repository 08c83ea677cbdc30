"""Process-level models: steps (nodes), sub-steps and the parsed diagram."""

import re
from typing import Self

from pydantic import BaseModel, Field, field_validator, model_validator

from flowsync.models.cells import Connection
from flowsync.models.shapes import ShapeKind, coerce_shape

MAIN_PARENT = "main"
_PARENT_PATTERN = re.compile(r"^subprocess-(\d+)$")


def subprocess_parent(index: int) -> str:
    """Positional parent reference to the index-th sibling sub-step."""
    return f"subprocess-{index}"


class Subprocess(BaseModel):
    """A sub-step shown under a main-flow node.

    `parent` is either "main" (hang off the owning node) or "subprocess-<k>",
    a positional reference to the k-th sibling in display order.
    """

    model_config = {"populate_by_name": True}

    name: str
    shape: ShapeKind = ShapeKind.rectangle
    parent: str = MAIN_PARENT
    is_detected: bool = Field(default=False, alias="isDetected")
    branch_id: str | None = Field(default=None, alias="branchId")
    id: str | None = None

    @field_validator("id", "branch_id", mode="before")
    @classmethod
    def stringify_ids(cls, value):
        return None if value in (None, "") else str(value)

    @field_validator("shape", mode="before")
    @classmethod
    def normalize_shape(cls, value):
        return coerce_shape(value)

    @model_validator(mode="after")
    def validate_parent(self) -> Self:
        if self.parent != MAIN_PARENT and not _PARENT_PATTERN.match(self.parent):
            raise ValueError(
                f"parent must be '{MAIN_PARENT}' or 'subprocess-<k>', got {self.parent!r}"
            )
        return self

    @property
    def parent_index(self) -> int | None:
        """Sibling index referenced by `parent`, None when attached to the node."""
        match = _PARENT_PATTERN.match(self.parent)
        return int(match.group(1)) if match else None

    @property
    def cell_id(self) -> str | None:
        """Id of the vertex backing this sub-step, if it has one."""
        return self.id or self.branch_id


class Node(BaseModel):
    """A vertex promoted to a process step."""

    model_config = {"populate_by_name": True}

    id: str
    label: str = ""
    shape: ShapeKind = ShapeKind.rectangle
    x: float = 0.0
    y: float = 0.0
    owner: str = ""
    subprocesses: list[Subprocess] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, value):
        return str(value)

    @field_validator("shape", mode="before")
    @classmethod
    def normalize_shape(cls, value):
        return coerce_shape(value)

    @field_validator("owner", mode="before")
    @classmethod
    def none_owner(cls, value):
        return value or ""

    @field_validator("subprocesses", mode="before")
    @classmethod
    def expand_plain_names(cls, value):
        # older records store sub-steps as bare names
        if not value:
            return []
        return [{"name": item} if isinstance(item, str) else item for item in value]


class ParsedDiagram(BaseModel):
    """Typed node/edge graph extracted from a diagram body."""

    model_config = {"populate_by_name": True}

    diagram_id: str = Field(default="Page-1", alias="diagramId")
    nodes: list[Node] = Field(default_factory=list)
    connections: list[Connection] = Field(default_factory=list)

    def node_ids(self) -> set[str]:
        return {node.id for node in self.nodes}
