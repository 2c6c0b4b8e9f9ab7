# service_catalog/form_editor.py
"""
One editing session over one booking form.

FormEditor owns the FormStore and wires it to the rest of the core:

  - structural edits go through the tree algebra (node_ops) and are recorded
    as optimistic operations;
  - every store change is fed to the AutosaveCoordinator as a wire document;
  - a save that succeeds confirms the operations that were pending when it
    started;
  - a live (enabled) form is only saved while it validates;
  - server syncs go through the OptimisticUpdateManager and then reset the
    autosave baseline so a sync never triggers a pointless save. A server
    copy that arrives while a save is in flight is not applied;
  - every edit is also a command in the undo/redo history, which is cleared
    whenever a sync or rollback replaces the document.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from service_catalog import node_ops
from service_catalog.autosave import AutosaveCoordinator, SaveCallback
from service_catalog.command_history import CommandHistory, SnapshotCommand
from service_catalog.config import (
    AUTOSAVE_DEBOUNCE_MS,
    AUTOSAVE_MAX_RETRIES,
    AUTOSAVE_RETRY_DELAY_MS,
    COMMAND_HISTORY_LIMIT,
    MAX_TREE_DEPTH,
    SYNC_INTERVAL_MS,
)
from service_catalog.form_store import FormStore
from service_catalog.issue_navigation import IssueNavigator
from service_catalog.migration import new_id, to_wire_document
from service_catalog.models import AutosaveDocument, NavigationTarget, ValidationIssue, ValidationResult
from service_catalog.node_ops import GROUP, SERVICE, Node, ReorderError, TreeEdit
from service_catalog.optimistic_updates import DEFAULT_TRACKED_FIELDS, FetchFn, MergeFn, OptimisticUpdateManager
from service_catalog.validation import can_save_form, get_save_blocked_message, validate_form_configuration

logger = logging.getLogger("catalog_editor")


class MaxDepthExceededError(ValueError):
    pass


def _group_offset(node: Node) -> int:
    """How many group levels a subtree adds below its own top node (0 for a lone group)."""
    deepest = 0
    for child in node.get("children") or []:
        if node_ops.node_type(child) == GROUP:
            deepest = max(deepest, 1 + _group_offset(child))
    return deepest


def extract_services(tree: Node) -> List[Dict[str, Any]]:
    """Flat summaries of every service, in tree order, for syncing services elsewhere."""
    services: List[Dict[str, Any]] = []

    def _walk(node: Node, path: List[str]) -> None:
        label = node.get("label") or ""
        if node_ops.node_type(node) == SERVICE:
            services.append({
                "id": node.get("id"),
                "name": label,
                "description": node.get("description") or "",
                "duration": node.get("duration"),
                "price": node.get("price"),
                "assignedEmployeeIds": list(node.get("assignedEmployeeIds") or []),
                "path": " > ".join(path + [label]),
            })
            return
        for child in node.get("children") or []:
            _walk(child, path + [label] if node_ops.node_type(node) == GROUP else path)

    _walk(tree, [])
    return services


class FormEditor:
    def __init__(
        self,
        store: FormStore,
        save_callback: SaveCallback,
        *,
        is_enabled: bool = False,
        max_depth: int = MAX_TREE_DEPTH,
        debounce_ms: float = AUTOSAVE_DEBOUNCE_MS,
        max_retries: int = AUTOSAVE_MAX_RETRIES,
        retry_delay_ms: float = AUTOSAVE_RETRY_DELAY_MS,
        sync_interval_ms: float = SYNC_INTERVAL_MS,
        scheduler=None,
        merge_fn: Optional[MergeFn] = None,
        tracked_fields=DEFAULT_TRACKED_FIELDS,
        navigator: Optional[IssueNavigator] = None,
        id_factory: Callable[[], str] = new_id,
        history_limit: int = COMMAND_HISTORY_LIMIT,
    ):
        self.store = store
        self.is_enabled = is_enabled
        self.max_depth = max_depth
        self.id_factory = id_factory
        self.navigator = navigator or IssueNavigator()

        self.autosave = AutosaveCoordinator(
            save_callback,
            debounce_ms=debounce_ms,
            max_retries=max_retries,
            retry_delay_ms=retry_delay_ms,
            scheduler=scheduler,
            save_guard=self._save_guard,
        )
        self.updates = OptimisticUpdateManager(
            store,
            merge_fn=merge_fn,
            tracked_fields=tracked_fields,
            sync_interval_ms=sync_interval_ms,
            sync_guard=self._sync_guard,
            before_sync=self.autosave.wait_for_pending_save,
        )
        self.history = CommandHistory(store, max_size=history_limit)
        self._ops_by_generation: Dict[int, List[str]] = {}
        self._subscriptions = [
            store.channel.subscribe("changed", self._on_store_changed),
            self.autosave.channel.subscribe("save.started", self._on_save_started),
            self.autosave.channel.subscribe("save.succeeded", self._on_save_succeeded),
            self.autosave.channel.subscribe("save.failed", self._on_save_failed),
            self.updates.channel.subscribe("synced", self._on_synced),
            self.updates.channel.subscribe("rolled_back", self._on_rolled_back),
        ]
        # first observation is the baseline, not a change
        self.autosave.observe(store.to_wire())

    # ---- wiring ----

    def _on_store_changed(self, event: Dict[str, Any]) -> None:
        if event.get("action") == "sync":
            return
        self.autosave.observe(self.store.to_wire())

    def _on_save_started(self, event: Dict[str, Any]) -> None:
        # older generations are stale now and will never report back
        for generation in [g for g in self._ops_by_generation if g < event["generation"]]:
            del self._ops_by_generation[generation]
        self._ops_by_generation[event["generation"]] = list(self.updates.pending_operations)

    def _on_save_succeeded(self, event: Dict[str, Any]) -> None:
        self.updates.confirm_all(self._ops_by_generation.pop(event["generation"], []))
        if not self.autosave.has_unsaved_changes:
            self.store.mark_saved(self.autosave.state.last_saved)

    def _on_save_failed(self, event: Dict[str, Any]) -> None:
        self._ops_by_generation.pop(event.get("generation"), None)

    def _on_synced(self, event: Dict[str, Any]) -> None:
        # recorded snapshots predate the server copy
        self.history.clear()
        wire = self.store.to_wire()
        server_hash = to_wire_document(self.updates.base).content_hash()
        if wire.content_hash() == server_hash:
            self.autosave.mark_clean(wire)
            self.store.set_dirty(False)
        else:
            self.autosave.observe(wire)

    def _on_rolled_back(self, event: Dict[str, Any]) -> None:
        self.history.clear()

    def _sync_guard(self) -> Optional[str]:
        if self.autosave.state.is_saving or self._ops_by_generation:
            return "a save is in flight"
        return None

    def _save_guard(self, document: AutosaveDocument) -> Optional[str]:
        result = validate_form_configuration(document)
        if can_save_form(self.is_enabled, result):
            return None
        return get_save_blocked_message(result)

    # ---- tree edits ----

    def _record(self, kind: str, mutation: Callable[[FormStore], Any]) -> bool:
        command = SnapshotCommand(kind, lambda store: self.updates.apply_optimistic_update(kind, mutation))
        return self.history.execute(command)

    def _apply_tree_edit(self, kind: str, edit: TreeEdit) -> bool:
        if not edit.applied:
            return False
        self._record(kind, lambda store: store.replace_service_tree(edit.tree))
        return True

    def _check_group_depth(self, tree: Node, parent_id: str, subtree: Node) -> None:
        parent_depth = node_ops.get_node_depth(tree, parent_id)
        if parent_depth is None or node_ops.node_type(subtree) != GROUP:
            return
        depth = parent_depth + 1 + _group_offset(subtree)
        if depth > self.max_depth:
            raise MaxDepthExceededError(
                f"Groups can be nested at most {self.max_depth} level(s) deep, this would be {depth}"
            )

    def _is_container(self, tree: Node, node_id: str) -> bool:
        node = node_ops.find_by_id(tree, node_id)
        return node is not None and node_ops.node_type(node) != SERVICE

    def add_group(self, parent_id: str, label: str, **fields) -> Optional[str]:
        tree = self.store.get_tree()
        if not self._is_container(tree, parent_id):
            return None
        group = {"id": self.id_factory(), "type": GROUP, "label": label, "children": [], **fields}
        self._check_group_depth(tree, parent_id, group)
        if self._apply_tree_edit("add_group", node_ops.try_add_child(tree, parent_id, group)):
            return group["id"]
        return None

    def add_service(self, parent_id: str, label: str, **fields) -> Optional[str]:
        tree = self.store.get_tree()
        if not self._is_container(tree, parent_id):
            return None
        service = {"id": self.id_factory(), "type": SERVICE, "label": label, "additionalQuestions": [], **fields}
        if self._apply_tree_edit("add_service", node_ops.try_add_child(tree, parent_id, service)):
            return service["id"]
        return None

    def update_node(self, node_id: str, updates: Dict[str, Any]) -> bool:
        blocked = [k for k in updates if k in ("id", "type", "children")]
        if blocked:
            raise ValueError(f"Use the structural edits to change {blocked}")
        return self._apply_tree_edit("update_node", node_ops.try_update_node(self.store.get_tree(), node_id, updates))

    def remove_node(self, node_id: str) -> bool:
        return self._apply_tree_edit("remove_node", node_ops.try_remove_node(self.store.get_tree(), node_id))

    def move_node(self, node_id: str, new_parent_id: str) -> bool:
        tree = self.store.get_tree()
        node = node_ops.find_by_id(tree, node_id)
        if node is None or not self._is_container(tree, new_parent_id):
            return False
        self._check_group_depth(tree, new_parent_id, node)
        return self._apply_tree_edit("move_node", node_ops.try_move_node(tree, node_id, new_parent_id))

    def reorder_children(self, parent_id: str, ordered_ids: List[str]) -> bool:
        tree = self.store.get_tree()
        parent = node_ops.find_by_id(tree, parent_id)
        if parent is None:
            return False
        by_id = {child.get("id"): child for child in parent.get("children") or []}
        unknown = [i for i in ordered_ids if i not in by_id]
        if unknown:
            raise ReorderError(f"Not children of {parent_id}: {unknown}")
        new_order = [by_id[i] for i in ordered_ids]
        return self._apply_tree_edit("reorder_children", node_ops.try_reorder_children(tree, parent_id, new_order))

    # ---- questions and settings ----

    def add_question(self, service_id: str, config: Dict[str, Any]) -> str:
        config = {"id": self.id_factory(), **config}
        self._record("add_question", lambda store: store.add_question(service_id, config))
        return config["id"]

    def _question_id_for(self, service_id: str, config_id: str) -> Optional[str]:
        for question in self.store.get_service_questions(service_id):
            if question["config"].get("id") == config_id:
                return question["id"]
        return None

    def update_question(self, service_id: str, config_id: str, updates: Dict[str, Any]) -> bool:
        question_id = self._question_id_for(service_id, config_id)
        if question_id is None:
            return False
        self._record(
            "update_question", lambda store: store.update_question(question_id, updates)
        )
        return True

    def delete_question(self, service_id: str, config_id: str) -> bool:
        question_id = self._question_id_for(service_id, config_id)
        if question_id is None:
            return False
        self._record("delete_question", lambda store: store.delete_question(question_id))
        return True

    def reorder_questions(self, service_id: str, config_ids: List[str]) -> None:
        question_ids = [self._question_id_for(service_id, c) for c in config_ids]
        unknown = [c for c, q in zip(config_ids, question_ids) if q is None]
        if unknown:
            raise ReorderError(f"Not questions of {service_id}: {unknown}")
        self._record(
            "reorder_questions", lambda store: store.reorder_questions(service_id, question_ids)
        )

    def set_base_questions(self, questions: List[Dict[str, Any]]) -> None:
        self._record(
            "update_base_questions", lambda store: store.update_base_questions(questions)
        )

    def update_settings(self, **fields) -> None:
        self._record("update_form", lambda store: store.update_form(**fields))

    def set_enabled(self, is_enabled: bool) -> None:
        self.is_enabled = is_enabled

    # ---- validation ----

    def validate(self) -> ValidationResult:
        return validate_form_configuration(self.store.to_wire())

    def can_save(self) -> bool:
        return can_save_form(self.is_enabled, self.validate())

    def navigation_for(self, issue: ValidationIssue) -> NavigationTarget:
        return self.navigator.target_for(issue)

    def extract_services(self) -> List[Dict[str, Any]]:
        return extract_services(self.store.get_tree())

    # ---- saving and syncing ----

    async def save_now(self) -> bool:
        return await self.autosave.save_now()

    def undo(self) -> bool:
        return self.history.undo()

    def redo(self) -> bool:
        return self.history.redo()

    @property
    def can_undo(self) -> bool:
        return self.history.can_undo

    @property
    def can_redo(self) -> bool:
        return self.history.can_redo

    def rollback(self, op_id: str) -> bool:
        return self.updates.rollback(op_id)

    def sync_with_server(self, server):
        """Apply a server copy now. Returns None while a save is in flight."""
        return self.updates.sync_with_server(server)

    async def sync_once(self, fetch: FetchFn):
        """Wait for any save in flight, then fetch and apply the server copy."""
        return await self.updates.sync_once(fetch)

    def start_periodic_sync(self, fetch: FetchFn):
        return self.updates.start_periodic_sync(fetch)

    def stop_periodic_sync(self) -> None:
        self.updates.stop_periodic_sync()

    def close(self) -> None:
        self.stop_periodic_sync()
        self.autosave.dispose()
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []
