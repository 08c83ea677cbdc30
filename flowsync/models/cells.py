"""Cell-level view of an mxGraph body: vertices, edges and their domain projection."""

from enum import Enum

from pydantic import BaseModel, Field, field_validator


class CellKind(str, Enum):
    """The two kinds of graph cells the engine cares about."""

    vertex = "vertex"
    edge = "edge"


class Cell(BaseModel):
    """One vertex or edge cell as found in the document.

    For cells wrapped in a UserObject/object element, `id` and `label` are the
    effective pair (wrapper first, inner mxCell second) and `wrapped` is set.
    """

    id: str
    kind: CellKind
    style: str = ""
    parent: str | None = None
    wrapped: bool = False

    # vertex fields
    label: str = ""
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    # edge fields
    source: str | None = None
    target: str | None = None


class Connection(BaseModel):
    """Domain projection of an edge cell (`from`/`to` on the wire)."""

    model_config = {"populate_by_name": True}

    source: str = Field(alias="from")
    target: str = Field(alias="to")
    id: str | None = None
    style: str = ""
    stroke_width: float | None = Field(default=None, alias="strokeWidth")
    stroke_color: str | None = Field(default=None, alias="strokeColor")
    end_arrow: str | None = Field(default=None, alias="endArrow")
    start_arrow: str | None = Field(default=None, alias="startArrow")
    dashed: bool = False
    dash_pattern: str | None = Field(default=None, alias="dashPattern")

    @field_validator("source", "target", "id", mode="before")
    @classmethod
    def stringify_ids(cls, value):
        # ids are compared as strings; numeric ids from JSON clients are not coerced otherwise
        return value if value is None else str(value)

    @property
    def key(self) -> tuple[str, str]:
        return (self.source, self.target)
