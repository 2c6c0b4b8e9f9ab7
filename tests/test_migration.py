import pytest

from service_catalog.migration import (
    IntegrityViolationError,
    MigrationIntegrityError,
    assert_integrity,
    check_integrity,
    to_nested,
    to_normalized,
    to_wire_document,
    wire_to_normalized,
)


def test_group_and_service_are_normalized():
    tree = {"id": "root", "type": "root", "label": "Start", "children": [
        {"id": "gA", "type": "group", "label": "A", "children": [
            {"id": "S1", "type": "service", "label": "S1", "duration": 30},
        ]},
    ]}
    document = to_normalized(tree)

    assert len(document.nodes) == 3
    assert document.root_id == "root"
    assert document.nodes["root"]["childIds"] == ["gA"]
    assert document.nodes["gA"]["childIds"] == ["S1"]
    assert document.nodes["S1"]["parentId"] == "gA"
    assert document.nodes["S1"]["duration"] == 30
    assert check_integrity(document)["isValid"] is True


def test_questions_get_wrappers_with_shared_order(sample_tree, id_factory):
    sample_tree["children"][1]["additionalQuestions"] = [{"id": "q2", "name": "topic", "label": "Topic", "type": "short-text"}]
    document = to_normalized(sample_tree, id_factory=id_factory)

    assert document.nodes["s1"]["questionIds"] == ["gen1"]
    assert document.nodes["s2"]["questionIds"] == ["gen2"]
    assert document.questions["gen1"]["serviceId"] == "s1"
    assert document.questions["gen1"]["config"]["name"] == "length"
    assert [document.questions[q]["order"] for q in ("gen1", "gen2")] == [0, 1]


def test_round_trip_keeps_tree_and_question_configs(sample_tree):
    rebuilt = to_nested(to_normalized(sample_tree))
    assert rebuilt == sample_tree


def test_round_trip_does_not_share_mutable_state(sample_tree):
    document = to_normalized(sample_tree)
    document.nodes["s1"]["assignedEmployeeIds"].append("e9")
    assert sample_tree["children"][0]["children"][0]["assignedEmployeeIds"] == ["e1"]


def test_unknown_kind_becomes_group():
    tree = {"id": "r", "type": "root", "label": "Start", "children": [
        {"id": "x", "type": "mystery", "children": []},
    ]}
    document = to_normalized(tree)
    assert document.nodes["x"]["type"] == "group"
    assert document.nodes["x"]["label"] == "Unknown"


def test_duplicate_id_cannot_be_normalized(sample_tree):
    sample_tree["children"].append({"id": "s1", "type": "service", "label": "Copy"})
    with pytest.raises(MigrationIntegrityError):
        to_normalized(sample_tree)


def test_to_nested_raises_on_missing_child(sample_tree):
    document = to_normalized(sample_tree)
    del document.nodes["s2"]
    with pytest.raises(MigrationIntegrityError):
        to_nested(document)


def test_to_nested_raises_on_missing_question(sample_tree):
    document = to_normalized(sample_tree)
    question_id = document.nodes["s1"]["questionIds"][0]
    del document.questions[question_id]
    with pytest.raises(MigrationIntegrityError):
        to_nested(document)


def test_check_integrity_collects_every_violation(sample_tree):
    document = to_normalized(sample_tree)
    document.nodes["g1"]["childIds"].append("ghost")
    document.nodes["s2"]["parentId"] = "g1"
    document.questions["orphan"] = {"id": "orphan", "serviceId": "nobody", "config": {}, "order": 9}

    report = check_integrity(document)
    assert report["isValid"] is False
    assert "Child node ghost not found for parent g1" in report["errors"]
    assert "Node s2 not found in parent's children list" in report["errors"]
    assert "Service node nobody not found for question orphan" in report["errors"]

    with pytest.raises(IntegrityViolationError) as exc:
        assert_integrity(document)
    assert len(exc.value.errors) == len(report["errors"])


def test_wire_document_round_trip(sample_wire):
    document = wire_to_normalized(sample_wire)
    assert document.name == "Salon booking"
    assert document.primary_color == "#336699"

    wire = to_wire_document(document).to_wire()
    for key in ("id", "internalName", "slug", "serviceTree", "baseQuestions", "theme", "primaryColor"):
        assert wire[key] == sample_wire[key]


def test_wire_without_tree_is_rejected():
    with pytest.raises(MigrationIntegrityError):
        wire_to_normalized({"internalName": "x"})


def test_content_hash_ignores_unwatched_fields(sample_wire):
    a = to_wire_document(wire_to_normalized(sample_wire))
    b = a.model_copy(update={"id": "another-id"})
    assert a.content_hash() == b.content_hash()
    c = a.model_copy(update={"slug": "other-slug"})
    assert a.content_hash() != c.content_hash()
