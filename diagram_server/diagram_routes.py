"""API routes for diagram documents and their form view."""

import logging

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from diagram_server.diagram_db import (
    DiagramRecord,
    DiagramSummary,
    delete_diagram as db_delete_diagram,
    get_diagram as db_get_diagram,
    list_diagrams as db_list_diagrams,
    upsert_diagram as db_upsert_diagram,
)
from flowsync.analysis.flow_analyzer import analyze_flow
from flowsync.analysis.subprocess_merge import build_display_nodes, prune_connections
from flowsync.config import load_settings
from flowsync.errors import DecompressionFailure, IdentifierExhaustion
from flowsync.models.cells import Connection
from flowsync.models.process import Node, ParsedDiagram
from flowsync.parsing.graph_extractor import extract_document
from flowsync.patching.builder import build_graph, wrap_document
from flowsync.patching.patch_engine import patch_document
from flowsync.utils.identifiers import generate_diagram_id, utc_timestamp

logger = logging.getLogger(__name__)

router = APIRouter()


class CreateDiagramRequest(BaseModel):
    """request body for storing a new diagram."""

    model_config = {"populate_by_name": True}

    name: str = ""
    xml: str = ""
    source_file_name: str | None = Field(default=None, alias="sourceFileName")


class ReplaceXmlRequest(BaseModel):
    """request body for a document exported by the visual editor."""

    xml: str = ""


class PatchDiagramRequest(BaseModel):
    """request body for form edits."""

    model_config = {"populate_by_name": True}

    process_owner: str | None = Field(default=None, alias="processOwner")
    nodes: list[Node] | None = None
    baseline: list[Node] | None = None


class RebuildDiagramRequest(BaseModel):
    """request body for regenerating a document from scratch."""

    nodes: list[Node]
    connections: list[Connection] = Field(default_factory=list)


class PatchDiagramResponse(DiagramRecord):
    """the stored record plus what the patch did."""

    applied: bool = True
    changed: bool = False


class FlowResponse(BaseModel):
    """the form view of a diagram."""

    model_config = {"populate_by_name": True}

    diagram_id: str = Field(alias="diagramId")
    main_flow: list[str] = Field(alias="mainFlow")
    branches_by_main_node: dict[str, list[str]] = Field(alias="branchesByMainNode")
    orphans: list[str] = Field(default_factory=list)
    nodes: list[Node]
    connections: list[Connection]


def _require(diagram_id: str) -> DiagramRecord:
    record = db_get_diagram(diagram_id)
    if not record:
        raise HTTPException(status_code=404, detail=f"Diagram not found: {diagram_id}")
    return record


def _extract(xml: str) -> ParsedDiagram:
    try:
        return extract_document(xml)
    except DecompressionFailure as exc:
        raise HTTPException(status_code=422, detail=f"Diagram could not be decompressed: {exc}") from exc


def _with_form_data(parsed: ParsedDiagram, nodes: list[Node]) -> ParsedDiagram:
    """carry owners and sub-steps over to freshly extracted nodes by id."""
    by_id = {node.id: node for node in nodes}
    merged = []
    for node in parsed.nodes:
        previous = by_id.get(node.id)
        if previous is None:
            merged.append(node)
        else:
            merged.append(node.model_copy(update={
                "owner": previous.owner,
                "subprocesses": previous.subprocesses,
            }))
    return parsed.model_copy(update={"nodes": merged})


@router.post("/diagrams")
def create_diagram(request: CreateDiagramRequest) -> DiagramRecord:
    """store a new diagram and its extracted structure."""
    if not request.name or not request.xml:
        raise HTTPException(status_code=400, detail="Both name and xml are required")

    now = utc_timestamp()
    record = DiagramRecord(
        id=generate_diagram_id(),
        name=request.name,
        xml=request.xml,
        source_file_name=request.source_file_name,
        parsed_data=_extract(request.xml),
        created_at=now,
        updated_at=now,
    )
    db_upsert_diagram(record)
    logger.info("stored diagram %s (%d steps)", record.id, len(record.parsed_data.nodes))
    return record


@router.get("/diagrams")
def list_diagrams() -> list[DiagramSummary]:
    """list the most recent diagrams."""
    return db_list_diagrams()


@router.get("/diagrams/{diagram_id}")
def get_diagram(diagram_id: str) -> DiagramRecord:
    """get a stored diagram."""
    return _require(diagram_id)


@router.get("/diagrams/{diagram_id}/parsed")
def get_parsed(diagram_id: str) -> ParsedDiagram:
    """get the extracted structure of a diagram."""
    return _require(diagram_id).parsed_data


@router.get("/diagrams/{diagram_id}/flow")
def get_flow(diagram_id: str) -> FlowResponse:
    """get the main flow with merged sub-steps for the form."""
    record = _require(diagram_id)
    settings = load_settings()
    parsed = _extract(record.xml)
    analysis = analyze_flow(parsed.nodes, parsed.connections, settings)
    nodes = build_display_nodes(parsed, analysis, record.parsed_data.nodes, settings=settings)
    return FlowResponse(
        diagram_id=parsed.diagram_id,
        main_flow=analysis.main_flow_ids,
        branches_by_main_node={
            main_id: [node.id for node in branch] for main_id, branch in analysis.branches.items()
        },
        orphans=analysis.orphans,
        nodes=nodes,
        connections=parsed.connections,
    )


@router.put("/diagrams/{diagram_id}/xml")
def replace_xml(diagram_id: str, request: ReplaceXmlRequest) -> DiagramRecord:
    """store a document exported by the visual editor as the new original."""
    record = _require(diagram_id)
    if not request.xml:
        raise HTTPException(status_code=400, detail="xml is required")

    parsed = _with_form_data(_extract(request.xml), record.parsed_data.nodes)
    updated = record.model_copy(update={
        "xml": request.xml,
        "parsed_data": parsed,
        "updated_at": utc_timestamp(),
    })
    db_upsert_diagram(updated)
    return updated


@router.patch("/diagrams/{diagram_id}")
def patch_diagram(diagram_id: str, request: PatchDiagramRequest) -> PatchDiagramResponse:
    """apply form edits to the latest stored document.

    The document is re-read here, right before patching, so a structural
    edit saved from the visual editor in the meantime is not lost.
    """
    latest = _require(diagram_id)
    update: dict = {"updated_at": utc_timestamp()}
    applied, changed = True, False

    if request.process_owner is not None:
        update["process_owner"] = request.process_owner

    if request.nodes is not None:
        try:
            result = patch_document(latest.xml, request.nodes, request.baseline, load_settings())
        except DecompressionFailure as exc:
            raise HTTPException(status_code=422, detail=f"Diagram could not be decompressed: {exc}") from exc
        except IdentifierExhaustion as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc

        applied, changed = result.applied, result.changed
        update["xml"] = result.document
        update["parsed_data"] = _with_form_data(_extract(result.document), result.nodes)

    updated = latest.model_copy(update=update)
    db_upsert_diagram(updated)
    return PatchDiagramResponse(**updated.model_dump(), applied=applied, changed=changed)


@router.post("/diagrams/{diagram_id}/rebuild")
def rebuild_diagram(diagram_id: str, request: RebuildDiagramRequest) -> DiagramRecord:
    """regenerate the document from nodes and connections."""
    record = _require(diagram_id)
    try:
        result = build_graph(
            request.nodes,
            prune_connections(request.nodes, request.connections),
            load_settings(),
        )
    except IdentifierExhaustion as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    xml = wrap_document(result.body, name=record.name)
    updated = record.model_copy(update={
        "xml": xml,
        "parsed_data": _with_form_data(_extract(xml), result.nodes),
        "updated_at": utc_timestamp(),
    })
    db_upsert_diagram(updated)
    return updated


@router.delete("/diagrams/{diagram_id}")
def delete_diagram(diagram_id: str) -> dict:
    """delete a diagram."""
    _require(diagram_id)
    db_delete_diagram(diagram_id)
    return {"deleted": diagram_id}
