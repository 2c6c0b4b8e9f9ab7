# service_catalog/form_store.py
"""
The single in-memory document store of an editing session.

Holds one NormalizedDocument and exposes the editor's actions over it. Node
and question entries are replaced, never edited in place, so a snapshot()
taken before an action is not affected by it. Every action publishes a
"changed" event on the store's own channel.
"""
import copy
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from service_catalog.event_channel import EventChannel
from service_catalog.migration import (
    IntegrityViolationError,
    new_id,
    to_nested,
    to_normalized,
    to_wire_document,
    wire_to_normalized,
)
from service_catalog.models import AutosaveDocument, NormalizedDocument
from service_catalog.node_ops import GROUP, ROOT, SERVICE, Node, ReorderError

logger = logging.getLogger("catalog_editor")

# keys only the store itself may write
STRUCTURAL_KEYS = ("id", "type", "parentId", "childIds", "questionIds")

FORM_FIELDS = {
    "name": "name",
    "internalName": "name",
    "slug": "slug",
    "theme": "theme",
    "primaryColor": "primary_color",
    "primary_color": "primary_color",
}


def empty_document(id_factory: Callable[[], str] = new_id) -> NormalizedDocument:
    root_id = id_factory()
    return NormalizedDocument(
        nodes={root_id: {"id": root_id, "type": ROOT, "label": "Start", "parentId": None, "childIds": []}},
        rootId=root_id,
    )


class FormStore:
    def __init__(self, document: Optional[NormalizedDocument] = None, id_factory: Callable[[], str] = new_id):
        self.id_factory = id_factory
        self.channel = EventChannel("form_store")
        self._document = document if document is not None else empty_document(id_factory)

    @classmethod
    def from_wire(cls, wire: Dict[str, Any], id_factory: Callable[[], str] = new_id) -> "FormStore":
        return cls(wire_to_normalized(wire, id_factory=id_factory), id_factory=id_factory)

    @property
    def document(self) -> NormalizedDocument:
        return self._document

    def snapshot(self) -> NormalizedDocument:
        return self._document.model_copy(deep=True)

    def _changed(self, action: str, dirty: bool = True, **details) -> None:
        if dirty:
            self._document.is_dirty = True
        self.channel.publish("changed", {"action": action, **details})

    def _node(self, node_id: str) -> Optional[Dict[str, Any]]:
        return self._document.nodes.get(node_id)

    # ---- whole document ----

    def load(self, document: NormalizedDocument, action: str = "load", dirty: bool = False) -> None:
        """Replace the whole document (rollback, server sync, undo/redo)."""
        self._document = document.model_copy(deep=True)
        self._changed(action, dirty=dirty)

    def reset(self, document: Optional[NormalizedDocument] = None) -> None:
        self._document = document.model_copy(deep=True) if document is not None else empty_document(self.id_factory)
        self._changed("reset", dirty=False)

    def set_dirty(self, is_dirty: bool = True) -> None:
        self._document.is_dirty = is_dirty

    def mark_saved(self, when: Optional[datetime] = None) -> None:
        self._document.is_dirty = False
        self._document.last_saved = when or datetime.now(timezone.utc)

    def update_form(self, **updates) -> None:
        for key, value in updates.items():
            attr = FORM_FIELDS.get(key)
            if attr is None:
                raise KeyError(f"Unknown form field: {key}")
            setattr(self._document, attr, value)
        self._changed("update_form", fields=sorted(updates))

    def update_base_questions(self, questions: List[Dict[str, Any]]) -> None:
        self._document.base_questions = copy.deepcopy(list(questions))
        self._changed("update_base_questions")

    # ---- nested views ----

    def get_tree(self) -> Node:
        return to_nested(self._document)

    def to_wire(self) -> AutosaveDocument:
        return to_wire_document(self._document)

    def replace_service_tree(self, tree: Node) -> None:
        """Re-normalize after an edit made on the nested tree. Form metadata is kept."""
        doc = self._document
        replacement = to_normalized(
            tree,
            doc.base_questions,
            {"id": doc.id, "name": doc.name, "slug": doc.slug, "theme": doc.theme, "primaryColor": doc.primary_color},
            id_factory=self.id_factory,
        )
        replacement.last_saved = doc.last_saved
        self._document = replacement
        self._changed("replace_service_tree")

    # ---- nodes ----

    def update_node(self, node_id: str, updates: Dict[str, Any]) -> bool:
        node = self._node(node_id)
        if node is None:
            return False
        blocked = [k for k in updates if k in STRUCTURAL_KEYS]
        if blocked:
            raise IntegrityViolationError([f"Cannot update structural field(s) {blocked} of node {node_id}"])
        self._document.nodes[node_id] = {**node, **copy.deepcopy(updates)}
        self._changed("update_node", nodeId=node_id)
        return True

    def add_node(self, parent_id: str, node: Node, index: Optional[int] = None) -> str:
        """
        Add a nested node (with its own children / additionalQuestions, if any)
        under a root or group. Returns the new node's id.
        """
        parent = self._node(parent_id)
        if parent is None:
            raise IntegrityViolationError([f"Parent node {parent_id} not found"])
        if parent.get("type") == SERVICE:
            raise IntegrityViolationError([f"Service {parent_id} cannot have children"])
        if node.get("type") not in (GROUP, SERVICE):
            raise IntegrityViolationError([f"Only group or service nodes can be added, got {node.get('type')}"])

        node = dict(node)
        node.setdefault("id", self.id_factory())
        subtree = to_normalized(node, id_factory=self.id_factory)
        clashes = [nid for nid in subtree.nodes if nid in self._document.nodes]
        clashes += [qid for qid in subtree.questions if qid in self._document.questions]
        if clashes:
            raise IntegrityViolationError([f"Id(s) already in use: {clashes}"])

        subtree.nodes[subtree.root_id]["parentId"] = parent_id
        self._document.nodes.update(subtree.nodes)
        self._document.questions.update(subtree.questions)
        child_ids = list(parent.get("childIds") or [])
        child_ids.insert(len(child_ids) if index is None else index, subtree.root_id)
        self._document.nodes[parent_id] = {**parent, "childIds": child_ids}
        self._changed("add_node", nodeId=subtree.root_id, parentId=parent_id)
        return subtree.root_id

    def _collect_subtree(self, node_id: str) -> List[str]:
        collected = [node_id]
        for child_id in self._document.nodes[node_id].get("childIds") or []:
            collected.extend(self._collect_subtree(child_id))
        return collected

    def delete_node(self, node_id: str) -> bool:
        node = self._node(node_id)
        if node is None or node_id == self._document.root_id:
            return False

        for doomed in self._collect_subtree(node_id):
            removed = self._document.nodes.pop(doomed)
            for question_id in removed.get("questionIds") or []:
                self._document.questions.pop(question_id, None)

        parent_id = node.get("parentId")
        parent = self._node(parent_id)
        if parent is not None:
            self._document.nodes[parent_id] = {
                **parent, "childIds": [c for c in parent.get("childIds") or [] if c != node_id]
            }
        self._changed("delete_node", nodeId=node_id)
        return True

    def move_node(self, node_id: str, new_parent_id: str, index: Optional[int] = None) -> bool:
        node = self._node(node_id)
        new_parent = self._node(new_parent_id)
        if node is None or new_parent is None or node_id == self._document.root_id:
            return False
        if new_parent.get("type") == SERVICE or new_parent_id in self._collect_subtree(node_id):
            return False

        old_parent_id = node.get("parentId")
        old_parent = self._node(old_parent_id)
        self._document.nodes[old_parent_id] = {
            **old_parent, "childIds": [c for c in old_parent.get("childIds") or [] if c != node_id]
        }
        new_parent = self._node(new_parent_id)
        child_ids = list(new_parent.get("childIds") or [])
        child_ids.insert(len(child_ids) if index is None else index, node_id)
        self._document.nodes[new_parent_id] = {**new_parent, "childIds": child_ids}
        self._document.nodes[node_id] = {**node, "parentId": new_parent_id}
        self._changed("move_node", nodeId=node_id, parentId=new_parent_id)
        return True

    def get_node_with_details(self, node_id: str) -> Optional[Dict[str, Any]]:
        node = self._node(node_id)
        if node is None:
            return None
        details = copy.deepcopy(node)
        if node.get("type") == SERVICE:
            details["questions"] = self.get_service_questions(node_id)
        else:
            details["children"] = [
                copy.deepcopy(self._document.nodes[c]) for c in node.get("childIds") or [] if c in self._document.nodes
            ]
        return details

    # ---- questions ----

    def get_service_questions(self, service_id: str) -> List[Dict[str, Any]]:
        owned = [q for q in self._document.questions.values() if q.get("serviceId") == service_id]
        return copy.deepcopy(sorted(owned, key=lambda q: q.get("order", 0)))

    def _service(self, service_id: str) -> Dict[str, Any]:
        service = self._node(service_id)
        if service is None or service.get("type") != SERVICE:
            raise IntegrityViolationError([f"Service node {service_id} not found"])
        return service

    def add_question(self, service_id: str, config: Dict[str, Any]) -> str:
        service = self._service(service_id)
        question_id = self.id_factory()
        owned = [self._document.questions[q] for q in service.get("questionIds") or [] if q in self._document.questions]
        # orders come from one counter shared by every service, so append after the highest
        order = max((q.get("order", 0) for q in owned), default=-1) + 1
        self._document.questions[question_id] = {
            "id": question_id,
            "serviceId": service_id,
            "config": copy.deepcopy(config),
            "order": order,
        }
        self._document.nodes[service_id] = {**service, "questionIds": [*(service.get("questionIds") or []), question_id]}
        self._changed("add_question", questionId=question_id, nodeId=service_id)
        return question_id

    def update_question(self, question_id: str, updates: Dict[str, Any]) -> bool:
        question = self._document.questions.get(question_id)
        if question is None:
            return False
        self._document.questions[question_id] = {**question, "config": {**question["config"], **copy.deepcopy(updates)}}
        self._changed("update_question", questionId=question_id)
        return True

    def delete_question(self, question_id: str) -> bool:
        question = self._document.questions.pop(question_id, None)
        if question is None:
            return False
        service_id = question.get("serviceId")
        service = self._node(service_id)
        if service is not None:
            self._document.nodes[service_id] = {
                **service, "questionIds": [q for q in service.get("questionIds") or [] if q != question_id]
            }
        self._changed("delete_question", questionId=question_id)
        return True

    def reorder_questions(self, service_id: str, question_ids: List[str]) -> None:
        service = self._service(service_id)
        current = list(service.get("questionIds") or [])
        if set(current) != set(question_ids) or len(question_ids) != len(current):
            raise ReorderError(f"Question order must be a permutation of {current}, got {question_ids}")
        for order, question_id in enumerate(question_ids):
            self._document.questions[question_id] = {**self._document.questions[question_id], "order": order}
        self._document.nodes[service_id] = {**service, "questionIds": list(question_ids)}
        self._changed("reorder_questions", nodeId=service_id)

