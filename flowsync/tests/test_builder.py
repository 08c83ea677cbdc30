"""Tests for regenerating diagrams from form nodes."""

from flowsync.analysis.flow_analyzer import analyze_flow
from flowsync.codec.document import split_document
from flowsync.models.cells import Connection
from flowsync.models.process import Node, Subprocess
from flowsync.parsing.graph_extractor import extract_document, extract_graph, parse_body
from flowsync.parsing.labels import label_to_text
from flowsync.patching.builder import build_document, build_graph, build_graph_body, wrap_document


def sample_nodes(subprocesses=None) -> list[Node]:
    return [
        Node(id="2", label="Start", shape="ellipse", x=40, y=40),
        Node(id="3", label="Review & sign", x=240, y=40, subprocesses=subprocesses or []),
        Node(id="4", label="Done", x=440, y=40),
    ]


def sample_connections() -> list[Connection]:
    return [
        Connection(source="2", target="3", id="c1"),
        Connection(source="3", target="4"),
        Connection(source="3", target="4"),
        Connection(source="4", target="99"),
    ]


class TestBuildGraph:
    """Test from-scratch body generation."""

    def test_steps_and_connections(self):
        body = build_graph_body(sample_nodes(), sample_connections())
        graph = extract_graph(body)

        assert [node.id for node in graph.nodes] == ["2", "3", "4"]
        assert [conn.key for conn in graph.connections] == [("2", "3"), ("3", "4")]
        assert graph.connections[0].id == "c1"
        assert label_to_text(graph.nodes[1].label) == "Review & sign"

    def test_root_cells_and_geometry(self):
        model = parse_body(build_graph_body(sample_nodes(), []))
        cells = {cell.get("id"): cell for cell in model.iter("mxCell")}

        assert cells["0"].get("parent") is None
        assert cells["1"].get("parent") == "0"
        assert cells["2"].find("mxGeometry").get("height") == "80"
        assert cells["3"].find("mxGeometry").get("height") == "60"
        assert cells["4"].find("mxGeometry").get("x") == "440"

    def test_new_sub_step_is_created(self):
        result = build_graph(sample_nodes([Subprocess(name="Check")]), sample_connections())

        sub = result.nodes[1].subprocesses[0]
        assert sub.id is not None
        graph = extract_graph(result.body)
        assert sub.id in graph.node_ids()
        assert ("3", sub.id) in {conn.key for conn in graph.connections}

        analysis = analyze_flow(graph.nodes, graph.connections)
        assert analysis.main_flow_ids == ["2", "3", "4"]
        assert [node.id for node in analysis.branches["3"]] == [sub.id]

    def test_existing_sub_step_cells_keep_their_ids(self):
        items = [
            Subprocess(name="Kept", id="500"),
            Subprocess(name="Next", id="501", parent="subprocess-0"),
        ]
        result = build_graph(sample_nodes(items), [])
        edges = {conn.key for conn in extract_graph(result.body).connections}

        assert {("3", "500"), ("500", "501")} <= edges
        assert [item.id for item in result.nodes[1].subprocesses] == ["500", "501"]

    def test_remerging_detected_branch_keeps_only_its_own_edges(self):
        items = [Subprocess(name="Rework", is_detected=True, branch_id="5")]
        connections = [
            Connection(source="2", target="3"),
            Connection(source="3", target="4"),
            Connection(source="5", target="4"),
        ]
        graph = extract_graph(build_graph_body(sample_nodes(items), connections))

        assert {conn.key for conn in graph.connections} == {("2", "3"), ("3", "4"), ("5", "4")}
        assert analyze_flow(graph.nodes, graph.connections).main_flow_ids == ["2", "3", "4"]

    def test_duplicate_step_id(self, caplog):
        nodes = sample_nodes() + [Node(id="3", label="Again")]
        graph = extract_graph(build_graph_body(nodes, []))
        assert [node.id for node in graph.nodes] == ["2", "3", "4"]
        assert "duplicate step id 3" in caplog.text

    def test_edge_id_clash_gets_fresh_id(self):
        connections = [Connection(source="2", target="3", id="4")]
        graph = extract_graph(build_graph_body(sample_nodes(), connections))
        assert graph.connections[0].id not in {"2", "3", "4"}


class TestWrapDocument:
    """Test the <mxfile> wrapper."""

    def test_compressed(self):
        body = build_graph_body(sample_nodes(), sample_connections())
        text = wrap_document(body, name="Order handling", diagram_id="pg-1")
        document = split_document(text)

        assert text.startswith("<mxfile")
        assert document.compressed
        assert document.diagram_name == "Order handling"
        assert document.diagram_id == "pg-1"
        assert document.body == body

    def test_literal(self):
        body = build_graph_body(sample_nodes(), [])
        document = split_document(wrap_document(body, compressed=False))

        assert not document.compressed
        assert document.diagram_id
        assert extract_graph(document.body).node_ids() == {"2", "3", "4"}

    def test_build_document(self):
        text = build_document(sample_nodes(), sample_connections(), name="Shipping")
        parsed = extract_document(text)
        assert parsed.diagram_id == "Shipping"
        assert len(parsed.connections) == 2
