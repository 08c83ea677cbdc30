"""Tests for the diagram server API."""

import copy
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

import diagram_server.app as app_module
from diagram_server import diagram_db
from flowsync.parsing.graph_extractor import extract_document
from flowsync.parsing.labels import label_to_text

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture
def sample_xml() -> str:
    return (FIXTURES / "order_handling.drawio").read_text(encoding="utf-8")


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(diagram_db, "DIAGRAM_DB_PATH", tmp_path / "flowsync.db")
    monkeypatch.setattr(app_module, "configure_logging", lambda level: None)
    with TestClient(app_module.app) as test_client:
        yield test_client


def create(client, xml: str, name: str = "Order handling") -> dict:
    response = client.post(
        "/api/diagrams",
        json={"name": name, "xml": xml, "sourceFileName": "order_handling.drawio"},
    )
    assert response.status_code == 200
    return response.json()


class TestDiagramCrud:
    """Test storing, listing and deleting diagrams."""

    def test_health(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_create(self, client, sample_xml):
        record = create(client, sample_xml)

        assert record["id"]
        assert record["name"] == "Order handling"
        assert record["sourceFileName"] == "order_handling.drawio"
        assert record["createdAt"] == record["updatedAt"]
        parsed = record["parsedData"]
        assert parsed["diagramId"] == "Order handling"
        assert [node["id"] for node in parsed["nodes"]] == ["2", "3", "4", "6"]
        assert parsed["connections"][0]["from"] == "2"

    def test_create_requires_name_and_xml(self, client, sample_xml):
        assert client.post("/api/diagrams", json={"name": "x"}).status_code == 400
        assert client.post("/api/diagrams", json={"xml": sample_xml}).status_code == 400

    def test_create_rejects_undecodable_payload(self, client):
        xml = '<mxfile><diagram name="P" id="x">aGVsbG8gd29ybGQ=</diagram></mxfile>'
        response = client.post("/api/diagrams", json={"name": "Broken", "xml": xml})
        assert response.status_code == 422

    def test_list_and_get(self, client, sample_xml):
        first = create(client, sample_xml, name="First")
        second = create(client, sample_xml, name="Second")

        listed = client.get("/api/diagrams").json()
        assert [item["id"] for item in listed] == [second["id"], first["id"]]
        assert "xml" not in listed[0]

        fetched = client.get(f"/api/diagrams/{first['id']}").json()
        assert fetched["xml"] == sample_xml

    def test_unknown_diagram(self, client):
        assert client.get("/api/diagrams/missing").status_code == 404
        assert client.get("/api/diagrams/missing/flow").status_code == 404
        assert client.patch("/api/diagrams/missing", json={}).status_code == 404

    def test_parsed(self, client, sample_xml):
        record = create(client, sample_xml)
        parsed = client.get(f"/api/diagrams/{record['id']}/parsed").json()
        assert len(parsed["connections"]) == 3

    def test_delete(self, client, sample_xml):
        record = create(client, sample_xml)
        response = client.delete(f"/api/diagrams/{record['id']}")
        assert response.json() == {"deleted": record["id"]}
        assert client.get(f"/api/diagrams/{record['id']}").status_code == 404


class TestFlow:
    """Test the form view endpoint."""

    def test_flow(self, client, sample_xml):
        record = create(client, sample_xml)
        flow = client.get(f"/api/diagrams/{record['id']}/flow").json()

        assert flow["diagramId"] == "Order handling"
        assert flow["mainFlow"] == ["2", "3", "4"]
        assert flow["branchesByMainNode"] == {"3": ["6"]}
        assert flow["orphans"] == []
        review = flow["nodes"][1]
        assert review["label"] == "Review order"
        assert review["subprocesses"][0]["name"] == "Check stock"
        assert review["subprocesses"][0]["isDetected"] is True
        assert review["subprocesses"][0]["branchId"] == "6"


class TestPatch:
    """Test saving form edits."""

    def test_add_sub_step_and_owner(self, client, sample_xml):
        record = create(client, sample_xml)
        flow = client.get(f"/api/diagrams/{record['id']}/flow").json()
        baseline = copy.deepcopy(flow["nodes"])
        nodes = flow["nodes"]
        nodes[0]["owner"] = "Sales"
        nodes[1]["subprocesses"].append({"name": "Call supplier"})

        response = client.patch(
            f"/api/diagrams/{record['id']}",
            json={"nodes": nodes, "baseline": baseline, "processOwner": "Operations"},
        )
        assert response.status_code == 200
        updated = response.json()
        assert updated["applied"] is True
        assert updated["changed"] is True
        assert updated["processOwner"] == "Operations"
        assert 'etag="Qm3v8"' in updated["xml"]

        parsed = extract_document(updated["xml"])
        assert ("3", "10000") in {conn.key for conn in parsed.connections}

        flow = client.get(f"/api/diagrams/{record['id']}/flow").json()
        assert flow["nodes"][0]["owner"] == "Sales"
        assert [item["name"] for item in flow["nodes"][1]["subprocesses"]] == ["Check stock", "Call supplier"]

    def test_owner_only(self, client, sample_xml):
        record = create(client, sample_xml)
        updated = client.patch(f"/api/diagrams/{record['id']}", json={"processOwner": "Ops"}).json()
        assert updated["processOwner"] == "Ops"
        assert updated["xml"] == sample_xml
        assert updated["changed"] is False

    def test_patch_uses_latest_document(self, client, sample_xml):
        record = create(client, sample_xml)
        flow = client.get(f"/api/diagrams/{record['id']}/flow").json()

        # the visual editor adds a step after the form loaded
        edited = sample_xml.replace(
            "      </root>",
            '        <mxCell id="8" value="Invoice" style="rounded=0;whiteSpace=wrap;html=1;" vertex="1" parent="1">\n'
            '          <mxGeometry x="640" y="50" width="120" height="60" as="geometry" />\n'
            "        </mxCell>\n"
            '        <mxCell id="e8" edge="1" parent="1" source="4" target="8">\n'
            '          <mxGeometry relative="1" as="geometry" />\n'
            "        </mxCell>\n"
            "      </root>",
        )
        assert client.put(f"/api/diagrams/{record['id']}/xml", json={"xml": edited}).status_code == 200

        nodes = flow["nodes"]
        nodes[2]["label"] = "Ship order"
        updated = client.patch(
            f"/api/diagrams/{record['id']}",
            json={"nodes": nodes, "baseline": copy.deepcopy(flow["nodes"])},
        ).json()

        parsed = extract_document(updated["xml"])
        assert "8" in parsed.node_ids()
        labels = {node.id: label_to_text(node.label) for node in parsed.nodes}
        assert labels["4"] == "Ship order"


class TestReplaceAndRebuild:

    def test_replace_xml_requires_xml(self, client, sample_xml):
        record = create(client, sample_xml)
        assert client.put(f"/api/diagrams/{record['id']}/xml", json={}).status_code == 400

    def test_replace_keeps_form_data(self, client, sample_xml):
        record = create(client, sample_xml)
        flow = client.get(f"/api/diagrams/{record['id']}/flow").json()
        flow["nodes"][1]["owner"] = "Warehouse"
        client.patch(f"/api/diagrams/{record['id']}", json={"nodes": flow["nodes"]})

        replaced = client.put(
            f"/api/diagrams/{record['id']}/xml",
            json={"xml": sample_xml.replace("Review order", "Review")},
        ).json()

        owners = {node["id"]: node["owner"] for node in replaced["parsedData"]["nodes"]}
        assert owners["3"] == "Warehouse"

    def test_rebuild(self, client, sample_xml):
        record = create(client, sample_xml)
        flow = client.get(f"/api/diagrams/{record['id']}/flow").json()
        flow["nodes"][1]["subprocesses"].append({"name": "Call supplier"})

        response = client.post(
            f"/api/diagrams/{record['id']}/rebuild",
            json={"nodes": flow["nodes"], "connections": flow["connections"]},
        )
        assert response.status_code == 200
        rebuilt = response.json()

        parsed = extract_document(rebuilt["xml"])
        assert parsed.diagram_id == "Order handling"
        assert {"2", "3", "4", "6"} <= parsed.node_ids()
        assert len(parsed.nodes) == 5
