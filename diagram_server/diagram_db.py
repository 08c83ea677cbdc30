"""SQLite storage for diagram documents and their form data."""

import os
import sqlite3
from pathlib import Path

from pydantic import BaseModel, Field

from flowsync.models.process import ParsedDiagram

DEFAULT_DB_PATH = Path(__file__).parent / "data" / "flowsync.db"
DIAGRAM_DB_PATH = Path(os.getenv("FLOWSYNC_DB_PATH", str(DEFAULT_DB_PATH)))

LIST_LIMIT = 100


class DiagramSummary(BaseModel):
    """One row of the diagram list."""

    model_config = {"populate_by_name": True}

    id: str
    name: str
    source_file_name: str | None = Field(default=None, alias="sourceFileName")
    process_owner: str | None = Field(default=None, alias="processOwner")
    created_at: str = Field(alias="createdAt")
    updated_at: str = Field(alias="updatedAt")


class DiagramRecord(DiagramSummary):
    """A stored document together with its extracted graph and form data."""

    xml: str
    parsed_data: ParsedDiagram = Field(default_factory=ParsedDiagram, alias="parsedData")


def _connect() -> sqlite3.Connection:
    DIAGRAM_DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(DIAGRAM_DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    with _connect() as conn:
        conn.execute(
            """
            create table if not exists diagrams (
                id text primary key,
                name text not null,
                xml text not null,
                source_file_name text,
                process_owner text,
                parsed_json text not null,
                created_at text not null,
                updated_at text not null
            )
            """
        )
        conn.execute(
            "create index if not exists idx_diagrams_created_at on diagrams(created_at)"
        )
        conn.commit()


def _record(row: sqlite3.Row) -> DiagramRecord:
    return DiagramRecord(
        id=row["id"],
        name=row["name"],
        xml=row["xml"],
        source_file_name=row["source_file_name"],
        process_owner=row["process_owner"],
        parsed_data=ParsedDiagram.model_validate_json(row["parsed_json"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def upsert_diagram(record: DiagramRecord) -> None:
    """insert or update a diagram."""
    with _connect() as conn:
        conn.execute(
            """
            insert into diagrams (id, name, xml, source_file_name, process_owner, parsed_json, created_at, updated_at)
            values (?, ?, ?, ?, ?, ?, ?, ?)
            on conflict(id) do update set
                name = excluded.name,
                xml = excluded.xml,
                source_file_name = excluded.source_file_name,
                process_owner = excluded.process_owner,
                parsed_json = excluded.parsed_json,
                updated_at = excluded.updated_at
            """,
            (
                record.id,
                record.name,
                record.xml,
                record.source_file_name,
                record.process_owner,
                record.parsed_data.model_dump_json(by_alias=True),
                record.created_at,
                record.updated_at,
            ),
        )
        conn.commit()


def get_diagram(diagram_id: str) -> DiagramRecord | None:
    with _connect() as conn:
        row = conn.execute(
            "select * from diagrams where id = ?",
            (diagram_id,),
        ).fetchone()
    if not row:
        return None
    return _record(row)


def list_diagrams(limit: int = LIST_LIMIT) -> list[DiagramSummary]:
    """most recently created diagrams first."""
    with _connect() as conn:
        rows = conn.execute(
            """
            select id, name, source_file_name, process_owner, created_at, updated_at
            from diagrams
            order by created_at desc, rowid desc
            limit ?
            """,
            (limit,),
        ).fetchall()
    return [
        DiagramSummary(
            id=row["id"],
            name=row["name"],
            source_file_name=row["source_file_name"],
            process_owner=row["process_owner"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
        for row in rows
    ]


def delete_diagram(diagram_id: str) -> None:
    with _connect() as conn:
        conn.execute("delete from diagrams where id = ?", (diagram_id,))
        conn.commit()
