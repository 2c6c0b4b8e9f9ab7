import asyncio
import copy

import pytest

from service_catalog.form_store import FormStore
from service_catalog.migration import check_integrity, to_normalized, wire_to_normalized
from service_catalog.optimistic_updates import OptimisticUpdateManager, three_way_merge


@pytest.fixture
def store(sample_wire):
    return FormStore.from_wire(sample_wire)


def _new_service(node_id="n1"):
    return {"id": node_id, "type": "service", "label": "New", "duration": 45, "assignedEmployeeIds": ["e1"]}


def test_apply_records_prior_snapshot(store):
    manager = OptimisticUpdateManager(store)
    op_id = manager.apply_optimistic_update("rename", lambda s: s.update_node("s1", {"label": "Haircut"}))

    assert store.document.nodes["s1"]["label"] == "Haircut"
    assert manager.has_pending_updates
    operation = manager.pending_operations[op_id]
    assert operation.operation_kind == "rename"
    assert operation.prior_snapshot.nodes["s1"]["label"] == "Cut"


def test_rollback_restores_and_discards_later_operations(store):
    manager = OptimisticUpdateManager(store)
    first = manager.apply_optimistic_update("rename", lambda s: s.update_node("s1", {"label": "A"}))
    manager.apply_optimistic_update("rename", lambda s: s.update_node("s2", {"label": "B"}))

    assert manager.rollback(first) is True
    assert store.document.nodes["s1"]["label"] == "Cut"
    assert store.document.nodes["s2"]["label"] == "Consultation"
    assert manager.pending_operations == {}
    assert manager.rollback(first) is False


def test_confirm(store):
    manager = OptimisticUpdateManager(store)
    op_id = manager.apply_optimistic_update("rename", lambda s: s.update_node("s1", {"label": "A"}))
    assert manager.confirm(op_id) is True
    assert not manager.has_pending_updates
    assert store.document.nodes["s1"]["label"] == "A"


def test_sync_without_pending_adopts_server(store, sample_wire):
    manager = OptimisticUpdateManager(store)
    server = copy.deepcopy(sample_wire)
    server["serviceTree"]["children"][1]["label"] = "Server label"

    manager.sync_with_server(server)
    assert store.document.nodes["s2"]["label"] == "Server label"
    assert manager.last_sync is not None


def test_sync_keeps_local_additions(store, sample_wire):
    manager = OptimisticUpdateManager(store)
    manager.apply_optimistic_update("add", lambda s: s.add_node("g1", _new_service()))
    local_n1 = copy.deepcopy(store.document.nodes["n1"])

    manager.sync_with_server(copy.deepcopy(sample_wire))

    assert store.document.nodes["n1"] == local_n1
    assert "n1" in store.document.nodes["g1"]["childIds"]
    assert not manager.has_pending_updates
    assert check_integrity(store.document)["isValid"]


def test_local_addition_under_deleted_parent_is_dropped(store, sample_wire):
    manager = OptimisticUpdateManager(store)
    manager.apply_optimistic_update("add", lambda s: s.add_node("g1", _new_service()))
    server = copy.deepcopy(sample_wire)
    server["serviceTree"]["children"].pop(0)

    manager.sync_with_server(server)
    assert "n1" not in store.document.nodes
    assert check_integrity(store.document)["isValid"]


def test_local_question_addition_survives(store, sample_wire):
    manager = OptimisticUpdateManager(store)
    manager.apply_optimistic_update(
        "add_question",
        lambda s: s.add_question("s2", {"id": "topic", "name": "topic", "label": "Topic", "type": "short-text"}),
    )
    manager.sync_with_server(copy.deepcopy(sample_wire))
    assert [q["config"]["id"] for q in store.get_service_questions("s2")] == ["topic"]
    # server questions are matched by config, not duplicated
    assert [q["config"]["id"] for q in store.get_service_questions("s1")] == ["q-len"]


def test_merge_preserves_local_edit_the_server_did_not_touch(sample_wire):
    base = wire_to_normalized(sample_wire)
    local = base.model_copy(deep=True)
    local.nodes["s1"]["description"] = "Local description"
    server = base.model_copy(deep=True)
    server.nodes["s1"]["label"] = "Server label"

    merged = three_way_merge(base, local, server)
    assert merged.nodes["s1"]["description"] == "Local description"
    assert merged.nodes["s1"]["label"] == "Server label"


def test_merge_server_wins_when_all_differ(sample_wire):
    base = wire_to_normalized(sample_wire)
    local = base.model_copy(deep=True)
    local.nodes["s1"]["description"] = "Local"
    server = base.model_copy(deep=True)
    server.nodes["s1"]["description"] = "Server"

    assert three_way_merge(base, local, server).nodes["s1"]["description"] == "Server"


def test_merge_only_tracks_configured_fields(sample_wire):
    base = wire_to_normalized(sample_wire)
    local = base.model_copy(deep=True)
    local.nodes["s1"]["price"] = 99
    server = base.model_copy(deep=True)

    assert three_way_merge(base, local, server).nodes["s1"]["price"] == 25
    assert three_way_merge(base, local, server, tracked_fields=("price",)).nodes["s1"]["price"] == 99


def test_merge_settings_follow_three_way_rule(sample_wire):
    base = wire_to_normalized(sample_wire)
    local = base.model_copy(deep=True)
    local.slug = "local-slug"
    local.primary_color = "#111111"
    server = base.model_copy(deep=True)
    server.primary_color = "#222222"
    server.name = "Server name"

    merged = three_way_merge(base, local, server)
    assert merged.slug == "local-slug"
    assert merged.primary_color == "#222222"
    assert merged.name == "Server name"


def test_custom_merge_function_is_used(store, sample_wire):
    calls = []

    def keep_local(base, local, server):
        calls.append((base, local, server))
        return local

    manager = OptimisticUpdateManager(store, merge_fn=keep_local)
    manager.apply_optimistic_update("rename", lambda s: s.update_node("s1", {"label": "Mine"}))
    server = copy.deepcopy(sample_wire)
    server["serviceTree"]["children"][0]["children"][0]["label"] = "Theirs"

    manager.sync_with_server(server)
    assert len(calls) == 1
    assert store.document.nodes["s1"]["label"] == "Mine"


def test_base_advances_to_last_server_copy(store, sample_wire):
    manager = OptimisticUpdateManager(store)
    server = copy.deepcopy(sample_wire)
    server["serviceTree"]["children"][0]["children"][0]["description"] = "Server v2"
    manager.sync_with_server(server)
    assert manager.base.nodes["s1"]["description"] == "Server v2"

    # local edit after the sync survives the next, unchanged, server copy
    manager.apply_optimistic_update("describe", lambda s: s.update_node("s1", {"description": "Local v3"}))
    manager.sync_with_server(copy.deepcopy(server))
    assert store.document.nodes["s1"]["description"] == "Local v3"


def test_periodic_sync_keeps_running_after_failures(store, sample_wire):
    async def scenario():
        manager = OptimisticUpdateManager(store, sync_interval_ms=1)
        fetched = []

        async def fetch():
            fetched.append(len(fetched))
            if len(fetched) == 1:
                raise ConnectionError("offline")
            return copy.deepcopy(sample_wire)

        manager.start_periodic_sync(fetch)
        while len(fetched) < 3:
            await asyncio.sleep(0.005)
        manager.stop_periodic_sync()
        return manager, fetched

    manager, fetched = asyncio.run(scenario())
    assert len(fetched) >= 3
    assert manager.last_sync is not None


def test_merge_result_passes_integrity(sample_tree):
    base = to_normalized(sample_tree)
    local = base.model_copy(deep=True)
    local.nodes["n1"] = {"id": "n1", "type": "group", "label": "Local group", "parentId": "root", "childIds": ["n2"]}
    local.nodes["n2"] = {"id": "n2", "type": "service", "label": "Local svc", "parentId": "n1", "questionIds": []}
    local.nodes["root"]["childIds"].append("n1")
    server = base.model_copy(deep=True)

    merged = three_way_merge(base, local, server)
    assert merged.nodes["root"]["childIds"][-1] == "n1"
    assert merged.nodes["n1"]["childIds"] == ["n2"]
    assert check_integrity(merged)["isValid"]


def test_sync_guard_defers_server_copy(store, sample_wire):
    busy = ["saving"]
    deferred = []
    manager = OptimisticUpdateManager(store, sync_guard=lambda: busy[0] if busy else None)
    manager.channel.subscribe("sync.deferred", deferred.append)
    manager.apply_optimistic_update("rename", lambda s: s.update_node("s1", {"label": "Haircut"}))

    assert manager.sync_with_server(copy.deepcopy(sample_wire)) is None
    assert deferred == [{"reason": "saving"}]
    assert store.document.nodes["s1"]["label"] == "Haircut"
    assert manager.has_pending_updates
    assert manager.last_sync is None

    busy.clear()
    assert manager.sync_with_server(copy.deepcopy(sample_wire)) is not None
    assert manager.last_sync is not None
