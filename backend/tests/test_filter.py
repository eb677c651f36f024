"""
Tests for search filtering (connected-component ghosting).
"""
import pytest

from errors import GraphValidationError
from models import SetHidden, Visibility, VisibilityQuery
from services_filter import (
    GHOST_OPACITY,
    compute_visibility,
    render_payload,
    visibility_response,
    visible_node_ids,
)

ABC = {"org::A", "person::B", "project::C"}
DE = {"org::D", "person::E"}


def _states(result):
    visible = {k for k, v in result["nodes"].items() if v is Visibility.VISIBLE}
    ghosted = {k for k, v in result["nodes"].items() if v is Visibility.GHOSTED}
    return visible, ghosted


def test_single_query_shows_whole_component(graph):
    visible, ghosted = _states(compute_visibility(graph, [("search", "A")]))
    assert visible == ABC
    assert ghosted == DE


def test_match_is_case_insensitive(graph):
    visible, _ = _states(compute_visibility(graph, [("search", "e")]))
    assert visible == DE


def test_queries_in_same_component_intersect_to_component(graph):
    visible, _ = _states(compute_visibility(graph, [("from", "A"), ("to", "C")]))
    assert visible == ABC


def test_queries_in_different_components_ghost_everything(graph):
    visible, ghosted = _states(compute_visibility(graph, [("from", "A"), ("to", "D")]))
    assert visible == set()
    assert ghosted == ABC | DE


def test_clearing_queries_restores_everything(graph):
    compute_visibility(graph, [("search", "A")])
    visible, ghosted = _states(compute_visibility(graph, [("from", ""), ("to", "   ")]))
    assert visible == ABC | DE
    assert ghosted == set()
    assert visible_node_ids(graph, []) is None


def test_query_without_matches_ghosts_everything(graph):
    visible, _ = _states(compute_visibility(graph, [("search", "zzz")]))
    assert visible == set()


def test_edges_ghosted_with_their_endpoints(graph):
    result = compute_visibility(graph, [("search", "D")])
    assert result["edges"]["org::D->person::E#employment"] is Visibility.VISIBLE
    assert result["edges"]["org::A->person::B#employment"] is Visibility.GHOSTED


def test_hidden_nodes_still_connect_components(graph):
    graph.apply_optimistic(SetHidden(node_id="person::B", hidden=True))
    visible, _ = _states(compute_visibility(graph, [("search", "A")]))
    assert visible == ABC


def test_unknown_field_is_rejected(graph):
    with pytest.raises(GraphValidationError):
        compute_visibility(graph, [("label", "A")])


def test_non_string_text_is_rejected(graph):
    with pytest.raises(GraphValidationError):
        compute_visibility(graph, [("search", 42)])


def test_filtering_is_read_only(graph, queue):
    before = graph.snapshot()
    compute_visibility(graph, [("from", "A"), ("to", "C")])
    visibility_response(graph, [VisibilityQuery(field="search", text="E")])
    assert graph.snapshot() == before
    assert queue.size() == 0


def test_visibility_response_counts(graph):
    response = visibility_response(graph, [VisibilityQuery(field="search", text="B")])
    assert response.visible_count == 3
    assert response.ghosted_count == 2


def test_render_payload_marks_ghosted_and_hidden(graph):
    graph.apply_optimistic(SetHidden(node_id="person::E", hidden=True))
    payload = render_payload(graph, compute_visibility(graph, [("search", "A")]))

    nodes = {n["id"]: n for n in payload["nodes"]}
    edges = {e["id"]: e for e in payload["edges"]}
    assert nodes["org::A"]["opacity"] == 1.0
    assert nodes["org::D"]["opacity"] == GHOST_OPACITY
    assert nodes["org::D"]["physics"] is False
    assert nodes["person::E"]["hidden"] is True
    assert nodes["person::B"]["group"] == "person"
    assert edges["org::D->person::E#employment"]["hidden"] is True
    assert edges["org::A->person::B#employment"]["hidden"] is False
    assert edges["org::A->person::B#employment"]["from"] == "org::A"
