"""Tests for the patch engine and id allocation."""

import xml.etree.ElementTree as ET
from collections import Counter

import pytest

from flowsync.codec.compression import compress_body
from flowsync.codec.document import read_body, split_document
from flowsync.config import EngineSettings
from flowsync.errors import IdentifierExhaustion, StructuralValidationFailure
from flowsync.models.process import Node, Subprocess
from flowsync.models.shapes import ShapeKind
from flowsync.parsing.graph_extractor import extract_graph, parse_body
from flowsync.parsing.labels import label_to_text
from flowsync.parsing.styles import shape_from_style
from flowsync.patching import patch_engine
from flowsync.patching.id_allocator import IdAllocator, scan_ids
from flowsync.patching.patch_engine import apply_patch, patch_document, validate_body

BODY = (
    '<mxGraphModel dx="1200" dy="800" grid="1"><root><mxCell id="0"/><mxCell id="1" parent="0"/>'
    '<mxCell id="2" value="Start" style="ellipse;whiteSpace=wrap;html=1;" vertex="1" parent="1">'
    '<mxGeometry x="40" y="40" width="120" height="80" as="geometry"/></mxCell>'
    '<mxCell id="3" value="Review" style="rounded=0;whiteSpace=wrap;html=1;fillColor=#dae8fc;" vertex="1" parent="1">'
    '<mxGeometry x="240" y="50" width="120" height="60" as="geometry"/></mxCell>'
    '<UserObject label="Approve" owner="legacy" id="4"><mxCell style="rhombus;whiteSpace=wrap;html=1;" vertex="1" parent="1">'
    '<mxGeometry x="440" y="40" width="80" height="80" as="geometry"/></mxCell></UserObject>'
    '<mxCell id="e1" style="edgeStyle=orthogonalEdgeStyle;" edge="1" parent="1" source="2" target="3">'
    '<mxGeometry relative="1" as="geometry"/></mxCell>'
    '<mxCell id="e2" style="edgeStyle=orthogonalEdgeStyle;" edge="1" parent="1" source="3" target="4">'
    '<mxGeometry relative="1" as="geometry"/></mxCell>'
    "</root></mxGraphModel>"
)

# BODY plus a detected branch 3 -> 6
BRANCH_BODY = BODY.replace(
    "</root>",
    '<mxCell id="6" value="Check stock" style="rounded=0;whiteSpace=wrap;html=1;" vertex="1" parent="1">'
    '<mxGeometry x="240" y="200" width="120" height="60" as="geometry"/></mxCell>'
    '<mxCell id="e3" edge="1" parent="1" source="3" target="6"><mxGeometry relative="1" as="geometry"/></mxCell>'
    "</root>",
)


def base_nodes(**review) -> list[Node]:
    """Main steps matching BODY; keyword arguments override step 3."""
    return [
        Node(id="2", label="Start", shape="ellipse"),
        Node(**{"id": "3", "label": "Review", **review}),
        Node(id="4", label="Approve", shape="decision"),
    ]


def edge_keys(body: str) -> set[tuple[str, str]]:
    return {conn.key for conn in extract_graph(body).connections}


def cell(body: str, cell_id: str) -> ET.Element:
    for element in parse_body(body).iter("mxCell"):
        if element.get("id") == cell_id:
            return element
    raise AssertionError(f"no cell {cell_id}")


def save(body: str, nodes: list[Node], previous: list[Node] | None = None):
    """One save cycle: patch, then hand back the body and the patched nodes."""
    result = apply_patch(body, nodes, previous)
    assert result.applied
    return result.body, result.nodes


def with_subprocesses(nodes: list[Node], items: list[Subprocess]) -> list[Node]:
    return [
        node.model_copy(update={"subprocesses": items}) if node.id == "3" else node
        for node in nodes
    ]


def detected_nodes(**check) -> list[Node]:
    """Main steps of BRANCH_BODY; keyword arguments override the detected sub-step."""
    item = Subprocess(**{"name": "Check stock", "is_detected": True, "branch_id": "6", **check})
    return base_nodes(subprocesses=[item])


class TestNoOp:
    """Unchanged input must come back untouched."""

    def test_identical_nodes_return_original_body(self):
        result = apply_patch(BODY, base_nodes())
        assert result.body is BODY
        assert result.applied
        assert not result.changed
        assert result.created_ids == []

    def test_html_label_matching_plain_text(self):
        body = BODY.replace('value="Review"', 'value="&lt;div&gt;Review&lt;/div&gt;"')
        result = apply_patch(body, base_nodes())
        assert not result.changed
        assert result.body is body

    def test_unknown_step_is_skipped(self, caplog):
        nodes = base_nodes() + [Node(id="77", label="Gone")]
        result = apply_patch(BODY, nodes)
        assert not result.changed
        assert [node.id for node in result.nodes] == ["2", "3", "4"]
        assert "step 77 is no longer in the document" in caplog.text


class TestLabelsAndShapes:
    """Test in-place edits of existing cells."""

    def test_label_update_escapes_html(self):
        result = apply_patch(BODY, base_nodes(label="Check & review"))
        assert result.changed
        node = extract_graph(result.body).nodes[1]
        assert label_to_text(node.label) == "Check & review"
        assert cell(result.body, "3").get("value") == "Check &amp; review"

    def test_label_update_leaves_everything_else(self):
        result = apply_patch(BODY, base_nodes(label="Check"))
        edited = cell(result.body, "3")
        assert edited.get("style") == "rounded=0;whiteSpace=wrap;html=1;fillColor=#dae8fc;"
        geometry = edited.find("mxGeometry")
        assert (geometry.get("x"), geometry.get("y")) == ("240", "50")
        assert edge_keys(result.body) == {("2", "3"), ("3", "4")}
        assert parse_body(result.body).get("dx") == "1200"

    def test_user_object_label(self):
        nodes = base_nodes()
        nodes[2] = Node(id="4", label="Approve order", shape="decision")
        result = apply_patch(BODY, nodes)
        wrapper = parse_body(result.body).find(".//UserObject")
        assert wrapper.get("label") == "Approve order"
        assert wrapper.get("owner") == "legacy"
        assert wrapper.find("mxCell").get("value") is None

    def test_shape_change_keeps_colors(self):
        result = apply_patch(BODY, base_nodes(shape="decision"))
        style = cell(result.body, "3").get("style")
        assert "rhombus" in style
        assert "fillColor=#dae8fc" in style
        assert extract_graph(result.body).nodes[1].shape is ShapeKind.decision


class TestAddSubprocesses:
    """Test creation of new sub-step cells."""

    def test_new_sub_step_gets_high_ids(self):
        result = apply_patch(BODY, base_nodes(subprocesses=[Subprocess(name="Check stock")]))

        assert result.created_ids == ["10000", "20000"]
        assert result.nodes[1].subprocesses[0].id == "10000"

        vertex = cell(result.body, "10000")
        assert vertex.get("vertex") == "1"
        assert vertex.get("parent") == "1"
        assert vertex.get("value") == "Check stock"
        geometry = vertex.find("mxGeometry")
        assert (geometry.get("x"), geometry.get("y")) == ("460", "50")

        edge = cell(result.body, "20000")
        assert (edge.get("source"), edge.get("target")) == ("3", "10000")
        assert "exitX=1" in edge.get("style")

    def test_rows_stack_downwards(self):
        items = [Subprocess(name="One"), Subprocess(name="Two")]
        result = apply_patch(BODY, base_nodes(subprocesses=items))
        geometry = cell(result.body, "10001").find("mxGeometry")
        assert geometry.get("y") == "130"

    def test_name_match_does_not_reuse_existing_cell(self):
        # a sub-step named like an existing step still gets its own cell
        result = apply_patch(BODY, base_nodes(subprocesses=[Subprocess(name="Approve")]))
        assert result.nodes[1].subprocesses[0].id == "10000"
        assert ("3", "10000") in edge_keys(result.body)

    def test_ids_stay_unique_over_many_saves(self):
        body, nodes = BODY, base_nodes()
        for cycle in range(6):
            target = with_subprocesses(nodes, nodes[1].subprocesses + [Subprocess(name=f"Step {cycle}")])
            body, nodes = save(body, target, previous=nodes)

            counts = Counter(scan_ids(parse_body(body)))
            assert [cell_id for cell_id, count in counts.items() if count > 1] == []

        assert len(nodes[1].subprocesses) == 6
        assert len({item.id for item in nodes[1].subprocesses}) == 6


class TestPositionalParents:
    """Test subprocess-<k> resolution across saves."""

    def _chain(self):
        body, nodes = save(BODY, base_nodes(subprocesses=[Subprocess(name="A")]))
        a = nodes[1].subprocesses[0]

        target = with_subprocesses(nodes, [a, Subprocess(name="B", parent="subprocess-0")])
        body, nodes = save(body, target, previous=nodes)
        b = nodes[1].subprocesses[1]

        target = with_subprocesses(nodes, [a, b, Subprocess(name="C", parent="subprocess-1")])
        body, nodes = save(body, target, previous=nodes)
        return body, nodes

    def test_chain_across_separate_saves(self):
        body, nodes = self._chain()
        a, b, c = (item.id for item in nodes[1].subprocesses)
        edges = edge_keys(body)

        assert {("3", a), (a, b), (b, c)} <= edges
        assert ("3", b) not in edges
        assert ("3", c) not in edges

    def test_forward_reference_is_rejected(self, caplog):
        items = [Subprocess(name="A", parent="subprocess-1"), Subprocess(name="B")]
        result = apply_patch(BODY, base_nodes(subprocesses=items))

        a, b = result.nodes[1].subprocesses
        assert a.parent == "main"
        assert ("3", a.id) in edge_keys(result.body)
        assert ("3", b.id) in edge_keys(result.body)
        assert "does not precede it" in caplog.text


class TestReparenting:
    """Moving a sub-step removes its stale edges."""

    def _pair(self):
        body, nodes = save(BODY, base_nodes(subprocesses=[Subprocess(name="A")]))
        a = nodes[1].subprocesses[0]
        target = with_subprocesses(nodes, [a, Subprocess(name="B", parent="subprocess-0")])
        return save(body, target, previous=nodes)

    @pytest.mark.parametrize("with_baseline", [True, False])
    def test_move_to_main(self, with_baseline):
        body, nodes = self._pair()
        a, b = nodes[1].subprocesses
        target = with_subprocesses(nodes, [a, b.model_copy(update={"parent": "main"})])

        body, _ = save(body, target, previous=nodes if with_baseline else None)
        edges = edge_keys(body)

        assert (a.id, b.id) not in edges
        assert ("3", b.id) in edges
        assert ("3", a.id) in edges

    def test_insert_new_parent_in_front(self):
        """[A, B<-A] becomes [C, A<-C, B]: both of A's old edges go."""
        body, nodes = self._pair()
        a, b = nodes[1].subprocesses
        target = with_subprocesses(nodes, [
            Subprocess(name="C"),
            a.model_copy(update={"parent": "subprocess-0"}),
            b.model_copy(update={"parent": "main"}),
        ])

        body, patched = save(body, target, previous=nodes)
        c = patched[1].subprocesses[0]
        edges = edge_keys(body)

        assert ("3", c.id) in edges
        assert (c.id, a.id) in edges
        assert ("3", b.id) in edges
        assert ("3", a.id) not in edges
        assert (a.id, b.id) not in edges

    def test_detected_remerge_branch_is_left_alone(self):
        # 5 feeds back into 3 and has no incoming edge; it is shown under 2
        body = BODY.replace(
            "</root>",
            '<mxCell id="5" value="Rework" style="rounded=0;html=1;" vertex="1" parent="1">'
            '<mxGeometry x="240" y="200" width="120" height="60" as="geometry"/></mxCell>'
            '<mxCell id="e3" edge="1" parent="1" source="5" target="3"><mxGeometry relative="1" as="geometry"/></mxCell>'
            "</root>",
        )
        nodes = base_nodes()
        nodes[0] = nodes[0].model_copy(update={"subprocesses": [
            Subprocess(name="Rework", is_detected=True, branch_id="5"),
        ]})
        result = apply_patch(body, nodes)
        assert not result.changed

    @pytest.mark.parametrize("with_baseline", [True, False])
    def test_move_to_another_step(self, with_baseline):
        previous = detected_nodes()
        item = previous[1].subprocesses[0]
        target = [
            previous[0].model_copy(update={"subprocesses": [item]}),
            previous[1].model_copy(update={"subprocesses": []}),
            previous[2],
        ]

        result = apply_patch(BRANCH_BODY, target, previous=previous if with_baseline else None)
        edges = edge_keys(result.body)

        assert "6" in extract_graph(result.body).node_ids()
        assert "6" not in result.removed_ids
        assert ("2", "6") in edges
        assert ("3", "6") not in edges
        moved = result.nodes[0].subprocesses[0]
        assert moved.branch_id == "6"
        assert moved.is_detected is False
        assert result.nodes[1].subprocesses == []


class TestDetectedLifecycle:
    """Editing a detected sub-step makes it user-authored."""

    def test_unedited_detected_sub_step_stays_detected(self):
        nodes = detected_nodes()
        result = apply_patch(BRANCH_BODY, nodes, previous=nodes)

        assert not result.changed
        assert result.nodes[1].subprocesses[0].is_detected

    def test_renamed_detected_sub_step(self):
        result = apply_patch(BRANCH_BODY, detected_nodes(name="Check stock level"), previous=detected_nodes())
        item = result.nodes[1].subprocesses[0]

        assert result.changed
        assert item.is_detected is False
        assert item.branch_id == "6"
        assert label_to_text(cell(result.body, "6").get("value")) == "Check stock level"
        assert result.created_ids == []
        assert ("3", "6") in edge_keys(result.body)

    def test_reshaped_detected_sub_step(self):
        result = apply_patch(BRANCH_BODY, detected_nodes(shape="decision"), previous=detected_nodes())

        assert result.nodes[1].subprocesses[0].is_detected is False
        assert shape_from_style(cell(result.body, "6").get("style")) is ShapeKind.decision


class TestDeletion:
    """Deletions are relative to the baseline."""

    def _pair(self):
        body, nodes = save(BODY, base_nodes(subprocesses=[Subprocess(name="A")]))
        a = nodes[1].subprocesses[0]
        target = with_subprocesses(nodes, [a, Subprocess(name="B", parent="subprocess-0")])
        return save(body, target, previous=nodes)

    def test_removed_sub_step_is_deleted_with_its_edges(self):
        body, nodes = self._pair()
        a, b = nodes[1].subprocesses

        result = apply_patch(body, with_subprocesses(nodes, [a]), previous=nodes)

        assert b.id in result.removed_ids
        graph = extract_graph(result.body)
        assert b.id not in graph.node_ids()
        assert all(b.id not in conn.key for conn in graph.connections)
        assert ("3", a.id) in edge_keys(result.body)

    def test_without_baseline_nothing_is_deleted(self):
        body, nodes = self._pair()
        a, b = nodes[1].subprocesses

        result = apply_patch(body, with_subprocesses(nodes, [a]))

        assert not result.changed
        assert b.id in extract_graph(result.body).node_ids()

    def test_removed_step_is_deleted(self):
        previous = base_nodes()
        result = apply_patch(BODY, previous[:2], previous=previous)

        graph = extract_graph(result.body)
        assert graph.node_ids() == {"2", "3"}
        assert edge_keys(result.body) == {("2", "3")}
        assert result.removed_ids[:2] == ["4", "e2"]

    def test_removed_step_takes_user_sub_steps_along(self):
        body, nodes = save(BODY, base_nodes(subprocesses=[Subprocess(name="A")]))
        a = nodes[1].subprocesses[0]

        result = apply_patch(body, [nodes[0], nodes[2]], previous=nodes)

        assert {"3", a.id} <= set(result.removed_ids)
        assert extract_graph(result.body).node_ids() == {"2", "4"}

    def test_removed_step_takes_edited_detected_sub_step_along(self):
        body, nodes = save(BRANCH_BODY, detected_nodes(name="Check stock level"), previous=detected_nodes())

        result = apply_patch(body, [nodes[0], nodes[2]], previous=nodes)

        assert "6" in result.removed_ids
        assert extract_graph(result.body).node_ids() == {"2", "4"}

    def test_visually_deleted_cell_is_not_recreated(self):
        body, nodes = save(BODY, base_nodes(subprocesses=[Subprocess(name="A")]))
        a = nodes[1].subprocesses[0]
        # the visual editor removed A and its edge in the meantime
        model = parse_body(body)
        root = model.find("root")
        for element in list(root):
            if element.get("id") == a.id or element.get("target") == a.id:
                root.remove(element)
        edited = ET.tostring(model, encoding="unicode")

        result = apply_patch(edited, nodes, previous=nodes)

        assert result.nodes[1].subprocesses == []
        assert a.id not in extract_graph(result.body).node_ids()


class TestSafety:
    """Failures keep the original body."""

    def test_malformed_body(self):
        result = apply_patch("<mxGraphModel><root>", base_nodes(label="New"))
        assert not result.applied
        assert result.body == "<mxGraphModel><root>"
        assert result.reason

    def test_validation_failure_returns_original(self, monkeypatch, caplog):
        def fail(*args, **kwargs):
            raise StructuralValidationFailure("boom")

        monkeypatch.setattr(patch_engine, "validate_body", fail)
        result = apply_patch(BODY, base_nodes(label="New"))

        assert not result.applied
        assert result.body is BODY
        assert result.reason == "boom"
        assert "patch discarded" in caplog.text

    def test_identifier_exhaustion_propagates(self):
        body = BODY.replace('id="e2"', 'id="10000"')
        settings = EngineSettings(subprocess_id_offset=0, max_id_attempts=1)
        with pytest.raises(IdentifierExhaustion):
            apply_patch(body, base_nodes(subprocesses=[Subprocess(name="A")]), settings=settings)


class TestValidateBody:
    """Test the post-patch sanity check."""

    def test_valid_body(self):
        validate_body(BODY, scan_ids(parse_body(BODY)))

    def test_missing_root_markers(self):
        with pytest.raises(StructuralValidationFailure):
            validate_body("<graph/>")

    def test_new_duplicate_id(self):
        body = BODY.replace('id="e2"', 'id="e1"')
        with pytest.raises(StructuralValidationFailure) as exc_info:
            validate_body(body, scan_ids(parse_body(BODY)))
        assert "e1" in exc_info.value.reason

    def test_preexisting_duplicate_is_tolerated(self):
        body = BODY.replace('id="e2"', 'id="e1"')
        validate_body(body, scan_ids(parse_body(body)))

    def test_created_edge_with_missing_endpoint(self):
        body = BODY.replace('target="4"', 'target="99"')
        with pytest.raises(StructuralValidationFailure):
            validate_body(body, created_edges=["e2"])


class TestIdAllocator:
    """Test id range selection."""

    def test_floor(self):
        allocator = IdAllocator.for_ids(["0", "1", "3", "e1"])
        assert allocator.subprocess_id() == "10000"
        assert allocator.subprocess_id() == "10001"
        assert allocator.edge_id() == "20000"

    def test_offset_above_max_id(self):
        allocator = IdAllocator.for_ids(["0", "1", "12000"])
        assert allocator.subprocess_id() == "13000"
        assert allocator.edge_id() == "23000"

    def test_skips_used_ids(self):
        allocator = IdAllocator(used={"10000", "10001"}, next_subprocess=10000)
        assert allocator.subprocess_id() == "10002"

    def test_exhaustion(self):
        allocator = IdAllocator(used={"5", "6"}, next_subprocess=5, max_attempts=2)
        with pytest.raises(IdentifierExhaustion):
            allocator.subprocess_id()

    def test_reserve(self):
        allocator = IdAllocator.for_ids(["1"])
        assert allocator.reserve("e9")
        assert not allocator.reserve("e9")
        assert not allocator.reserve("1")


class TestPatchDocument:
    """Test patching of stored, wrapped documents."""

    def _document(self) -> str:
        return (
            '<mxfile host="app.diagrams.net" etag="Zq81" version="24.2.5">'
            f'<diagram name="Order handling" id="pg-1">{compress_body(BODY)}</diagram></mxfile>'
        )

    def test_compressed_round_trip(self):
        text = self._document()
        result = patch_document(text, base_nodes(label="Check"))

        document = split_document(result.document)
        assert document.compressed
        assert document.prefix == split_document(text).prefix
        assert 'etag="Zq81"' in result.document
        assert label_to_text(extract_graph(read_body(result.document)).nodes[1].label) == "Check"

    def test_unchanged_document_is_returned_as_is(self):
        text = self._document()
        result = patch_document(text, base_nodes())
        assert result.document is text
