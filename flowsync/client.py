"""HTTP client for the diagram server.

Scripts can push a diagram and read back its form view in two lines:
client.upload("Order handling", xml); client.flow(record["id"])
"""

from __future__ import annotations

import httpx

from flowsync.errors import FlowSyncError
from flowsync.models.process import Node


class DiagramClientError(FlowSyncError):
    """Exception raised when a request to the diagram server fails."""
    pass


class DiagramClient:
    """Talk to the diagram server's /api/diagrams endpoints."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """
        Args:
            base_url: Base URL of the diagram server
            timeout: HTTP request timeout in seconds
            transport: optional httpx transport (tests pass a MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _request(self, method: str, path: str, json: dict | None = None) -> dict | list:
        url = f"{self.base_url}/api/diagrams{path}"
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.request(method, url, json=json)

                if response.status_code == 404:
                    raise DiagramClientError(f"Diagram not found: {path.strip('/') or url}")

                response.raise_for_status()
                return response.json()

        except httpx.HTTPStatusError as e:
            raise DiagramClientError(
                f"Server rejected {method} {url}: {e.response.status_code} {e.response.text}"
            ) from e
        except httpx.RequestError as e:
            raise DiagramClientError(
                f"Failed to connect to server at {self.base_url}: {e}"
            ) from e

    def upload(self, name: str, xml: str, source_file_name: str | None = None) -> dict:
        """Store a new diagram; returns the created record."""
        payload = {"name": name, "xml": xml}
        if source_file_name:
            payload["sourceFileName"] = source_file_name
        return self._request("POST", "", json=payload)

    def list_diagrams(self) -> list[dict]:
        """Summaries of the most recent diagrams."""
        return self._request("GET", "")

    def get(self, diagram_id: str) -> dict:
        return self._request("GET", f"/{diagram_id}")

    def flow(self, diagram_id: str) -> list[Node]:
        """The form view: main-flow steps with merged sub-steps."""
        data = self._request("GET", f"/{diagram_id}/flow")
        return [Node.model_validate(node) for node in data["nodes"]]

    def save(
        self,
        diagram_id: str,
        nodes: list[Node],
        baseline: list[Node] | None = None,
        process_owner: str | None = None,
    ) -> dict:
        """Send form edits; the server patches its latest copy of the document.

        Args:
            diagram_id: stored diagram id
            nodes: edited main steps
            baseline: the nodes as they were loaded (enables deletions)
            process_owner: optional new process owner

        Returns:
            The updated record, including `applied`.
        """
        payload: dict = {"nodes": [node.model_dump(mode="json", by_alias=True) for node in nodes]}
        if baseline is not None:
            payload["baseline"] = [node.model_dump(mode="json", by_alias=True) for node in baseline]
        if process_owner is not None:
            payload["processOwner"] = process_owner
        return self._request("PATCH", f"/{diagram_id}", json=payload)

    def replace_xml(self, diagram_id: str, xml: str) -> dict:
        """Store a document exported by the visual editor."""
        return self._request("PUT", f"/{diagram_id}/xml", json={"xml": xml})

    def delete(self, diagram_id: str) -> dict:
        return self._request("DELETE", f"/{diagram_id}")
