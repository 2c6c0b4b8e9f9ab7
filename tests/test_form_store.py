import pytest

from service_catalog.form_store import FormStore
from service_catalog.migration import IntegrityViolationError, check_integrity
from service_catalog.node_ops import ReorderError


@pytest.fixture
def store(sample_wire, id_factory):
    return FormStore.from_wire(sample_wire, id_factory=id_factory)


def _actions(store):
    seen = []
    store.channel.subscribe("changed", lambda event: seen.append(event["action"]))
    return seen


def test_from_wire_round_trips(store, sample_wire):
    assert store.get_tree() == sample_wire["serviceTree"]
    assert store.to_wire().internal_name == "Salon booking"
    assert store.document.is_dirty is False


def test_empty_store_has_a_root():
    store = FormStore()
    tree = store.get_tree()
    assert tree["type"] == "root"
    assert tree["children"] == []


def test_update_form_and_node(store):
    actions = _actions(store)
    store.update_form(internalName="Salon", primaryColor="#000000")
    assert store.update_node("s1", {"label": "Haircut"}) is True
    assert store.update_node("ghost", {"label": "x"}) is False

    assert store.document.name == "Salon"
    assert store.document.primary_color == "#000000"
    assert store.document.nodes["s1"]["label"] == "Haircut"
    assert store.document.is_dirty is True
    assert actions == ["update_form", "update_node"]

    with pytest.raises(IntegrityViolationError):
        store.update_node("s1", {"parentId": "root"})
    with pytest.raises(KeyError):
        store.update_form(colour="red")


def test_snapshot_is_isolated(store):
    before = store.snapshot()
    store.update_node("s1", {"label": "Haircut"})
    assert before.nodes["s1"]["label"] == "Cut"


def test_add_node_with_nested_content(store):
    new_id = store.add_node("root", {
        "type": "group", "label": "Nails", "children": [
            {"id": "s9", "type": "service", "label": "Manicure",
             "additionalQuestions": [{"id": "qc", "name": "color", "label": "Color", "type": "short-text"}]},
        ],
    })
    assert store.document.nodes["root"]["childIds"][-1] == new_id
    assert store.document.nodes["s9"]["parentId"] == new_id
    assert [q["config"]["name"] for q in store.get_service_questions("s9")] == ["color"]
    assert check_integrity(store.document)["isValid"]

    with pytest.raises(IntegrityViolationError):
        store.add_node("s1", {"type": "service", "label": "Under a service"})
    with pytest.raises(IntegrityViolationError):
        store.add_node("root", {"id": "s1", "type": "service", "label": "Clash"})


def test_delete_node_is_recursive(store):
    assert store.delete_node("g1") is True
    assert "s1" not in store.document.nodes
    assert store.document.questions == {}
    assert store.document.nodes["root"]["childIds"] == ["s2"]
    assert store.delete_node("root") is False
    assert check_integrity(store.document)["isValid"]


def test_move_node(store):
    assert store.move_node("s2", "g1", index=0) is True
    assert store.document.nodes["g1"]["childIds"] == ["s2", "s1"]
    assert store.document.nodes["s2"]["parentId"] == "g1"
    assert store.move_node("g1", "s2") is False
    assert store.move_node("root", "g1") is False
    assert check_integrity(store.document)["isValid"]


def test_question_actions(store):
    q_new = store.add_question("s2", {"id": "topic", "name": "topic", "label": "Topic", "type": "short-text"})
    q_two = store.add_question("s2", {"id": "when", "name": "when", "label": "When", "type": "date"})
    assert [q["order"] for q in store.get_service_questions("s2")] == [0, 1]

    assert store.update_question(q_new, {"label": "What about?"}) is True
    assert store.document.questions[q_new]["config"]["label"] == "What about?"

    store.reorder_questions("s2", [q_two, q_new])
    assert [q["config"]["name"] for q in store.get_service_questions("s2")] == ["when", "topic"]
    with pytest.raises(ReorderError):
        store.reorder_questions("s2", [q_two])

    assert store.delete_question(q_two) is True
    assert store.document.nodes["s2"]["questionIds"] == [q_new]
    assert store.delete_question("nope") is False
    with pytest.raises(IntegrityViolationError):
        store.add_question("g1", {"name": "x"})
    assert check_integrity(store.document)["isValid"]


def test_added_question_goes_last_in_a_later_service(id_factory):
    def service(node_id, *names):
        questions = [{"id": n, "name": n, "label": n.upper(), "type": "short-text"} for n in names]
        return {"id": node_id, "type": "service", "label": node_id.upper(), "duration": 10,
                "assignedEmployeeIds": ["e1"], "additionalQuestions": questions}

    tree = {"id": "root", "type": "root", "label": "Start", "children": [service("a", "a1", "a2"), service("b", "b1", "b2")]}
    store = FormStore.from_wire({"serviceTree": tree}, id_factory=id_factory)
    store.add_question("b", {"id": "b3", "name": "b3", "label": "B3", "type": "short-text"})

    b_questions = store.get_tree()["children"][1]["additionalQuestions"]
    assert [q["name"] for q in b_questions] == ["b1", "b2", "b3"]
    assert check_integrity(store.document)["isValid"]


def test_reorder_questions_with_foreign_id(store):
    store.add_question("s2", {"id": "topic", "name": "topic", "label": "Topic", "type": "short-text"})
    own = store.document.nodes["s2"]["questionIds"]
    with pytest.raises(ReorderError):
        store.reorder_questions("s2", [None])
    with pytest.raises(ReorderError):
        store.reorder_questions("s2", own + ["elsewhere"])


def test_node_details(store):
    group = store.get_node_with_details("g1")
    assert [c["id"] for c in group["children"]] == ["s1"]
    service = store.get_node_with_details("s1")
    assert service["questions"][0]["config"]["id"] == "q-len"
    assert store.get_node_with_details("ghost") is None


def test_replace_service_tree_keeps_metadata(store, sample_tree):
    sample_tree["children"].pop()
    store.replace_service_tree(sample_tree)
    assert store.document.name == "Salon booking"
    assert "s2" not in store.document.nodes


def test_mark_saved_and_reset(store):
    store.update_node("s1", {"label": "x"})
    store.mark_saved()
    assert store.document.is_dirty is False
    assert store.document.last_saved is not None

    store.reset()
    assert len(store.document.nodes) == 1
