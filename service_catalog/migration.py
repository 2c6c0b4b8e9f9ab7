# service_catalog/migration.py
"""
Two-way mapping between the nested service tree (editor / wire format) and
the normalized, id-keyed document (alternate consumer).

    to_normalized(tree, base_questions, metadata) -> NormalizedDocument
    to_nested(document)                           -> nested tree dict
    to_wire_document(document)                    -> AutosaveDocument
    check_integrity(document)                     -> {"isValid", "errors"}
"""
import copy
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from service_catalog.models import AutosaveDocument, NormalizedDocument
from service_catalog.node_ops import GROUP, NODE_TYPES, SERVICE, Node, node_type

logger = logging.getLogger("catalog_editor")

BASE_FIELDS = ("id", "type", "label", "description")

SERVICE_FIELDS = BASE_FIELDS + (
    "price",
    "duration",
    "bufferTime",
    "interval",
    # scheduling window
    "dateRangeType",
    "rollingDays",
    "rollingUnit",
    "fixedStartDate",
    "fixedEndDate",
    "minimumNotice",
    "minimumNoticeUnit",
    "bookingInterval",
    # availability
    "availabilityRules",
    "blockedTimes",
    "unavailableDates",
    # staff
    "assignedEmployeeIds",
    "defaultEmployeeId",
)

# keys that only exist in one of the two shapes
NESTED_ONLY_KEYS = ("children", "additionalQuestions")
NORMALIZED_ONLY_KEYS = ("parentId", "childIds", "questionIds")


class MigrationIntegrityError(LookupError):
    pass


class IntegrityViolationError(ValueError):
    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "integrity violation")


def new_id() -> str:
    return uuid4().hex


def fields_for_type(kind: str) -> tuple:
    return SERVICE_FIELDS if kind == SERVICE else BASE_FIELDS


def _metadata_value(metadata: Dict[str, Any], *keys, default=None):
    for key in keys:
        if key in metadata and metadata[key] is not None:
            return metadata[key]
    return default


# -----------------------
# nested -> normalized
# -----------------------

def to_normalized(
    tree: Node,
    base_questions: Optional[List[Dict[str, Any]]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    id_factory: Callable[[], str] = new_id,
) -> NormalizedDocument:
    """
    Walk the nested tree once (depth first). Each node gets a parentId and,
    for root/group, the ordered childIds of its children. Each service's
    additionalQuestions become question records with fresh ids and an
    `order` drawn from one counter shared by the whole walk.
    """
    metadata = metadata or {}
    nodes: Dict[str, Dict[str, Any]] = {}
    questions: Dict[str, Dict[str, Any]] = {}
    question_order = 0

    def process_node(flow_node: Node, parent_id: Optional[str]) -> str:
        nonlocal question_order

        kind = node_type(flow_node)
        unknown_kind = kind not in NODE_TYPES
        if unknown_kind:
            kind = GROUP

        node_id = flow_node.get("id")
        if node_id in nodes:
            raise MigrationIntegrityError(f"Duplicate node id {node_id} cannot be normalized")

        entry = {
            key: copy.deepcopy(flow_node[key])
            for key in fields_for_type(kind)
            if key in flow_node
        }
        entry["type"] = kind
        entry["parentId"] = parent_id
        if unknown_kind and not flow_node.get("label"):
            entry["label"] = "Unknown"
        nodes[node_id] = entry

        if kind == SERVICE:
            entry["questionIds"] = []
            for question_config in flow_node.get("additionalQuestions") or []:
                question_id = id_factory()
                questions[question_id] = {
                    "id": question_id,
                    "serviceId": node_id,
                    "config": copy.deepcopy(question_config),
                    "order": question_order,
                }
                question_order += 1
                entry["questionIds"].append(question_id)
            if flow_node.get("children"):
                logger.warning("to_normalized: dropping %d children of service %s",
                               len(flow_node["children"]), node_id)
        else:
            entry["childIds"] = [
                process_node(child, node_id) for child in flow_node.get("children") or []
            ]
        return node_id

    root_id = process_node(tree, None)

    return NormalizedDocument(
        id=_metadata_value(metadata, "id"),
        name=_metadata_value(metadata, "internalName", "name", default=""),
        slug=_metadata_value(metadata, "slug", default=""),
        theme=_metadata_value(metadata, "theme"),
        primaryColor=_metadata_value(metadata, "primaryColor", "primary_color"),
        nodes=nodes,
        questions=questions,
        baseQuestions=copy.deepcopy(list(base_questions or [])),
        rootId=root_id,
        isDirty=False,
        lastSaved=datetime.now(timezone.utc),
    )


def wire_to_normalized(wire: Dict[str, Any], id_factory: Callable[[], str] = new_id) -> NormalizedDocument:
    """Normalize a full wire document ({internalName, slug, serviceTree, ...})."""
    tree = wire.get("serviceTree")
    if not tree:
        raise MigrationIntegrityError("Wire document has no serviceTree")
    return to_normalized(tree, wire.get("baseQuestions") or [], wire, id_factory=id_factory)


# -----------------------
# normalized -> nested
# -----------------------

def _questions_by_service(document: NormalizedDocument) -> Dict[str, List[Dict[str, Any]]]:
    index: Dict[str, List[Dict[str, Any]]] = {}
    for question in document.questions.values():
        index.setdefault(question.get("serviceId"), []).append(question)
    for owned in index.values():
        owned.sort(key=lambda q: q.get("order", 0))
    return index


def to_nested(document: NormalizedDocument) -> Node:
    """
    Rebuild the nested tree from rootId. A missing root, child or question id
    raises MigrationIntegrityError: the maps are corrupt and nothing is patched.
    """
    nodes = document.nodes
    questions_by_service = _questions_by_service(document)

    def build_tree_node(node_id: str) -> Node:
        node = nodes.get(node_id)
        if node is None:
            raise MigrationIntegrityError(f"Node with id {node_id} not found")

        kind = node.get("type")
        flow_node = {
            key: copy.deepcopy(node[key])
            for key in fields_for_type(kind)
            if key in node
        }
        flow_node["type"] = kind

        if kind == SERVICE:
            for question_id in node.get("questionIds") or []:
                if question_id not in document.questions:
                    raise MigrationIntegrityError(
                        f"Question with id {question_id} not found for service {node_id}"
                    )
            flow_node["additionalQuestions"] = [
                copy.deepcopy(q.get("config")) for q in questions_by_service.get(node_id, [])
            ]
        else:
            flow_node["children"] = [build_tree_node(child_id) for child_id in node.get("childIds") or []]
        return flow_node

    return build_tree_node(document.root_id)


def to_wire_document(document: NormalizedDocument) -> AutosaveDocument:
    return AutosaveDocument(
        id=document.id,
        internalName=document.name,
        slug=document.slug,
        serviceTree=to_nested(document),
        baseQuestions=copy.deepcopy(document.base_questions),
        theme=document.theme,
        primaryColor=document.primary_color,
    )


# -----------------------
# integrity
# -----------------------

def check_integrity(document: NormalizedDocument) -> Dict[str, Any]:
    """
    Parent/child and service/question symmetry of the normalized maps.
    Collects every violation instead of stopping at the first.
    """
    errors: List[str] = []
    nodes, questions = document.nodes, document.questions

    if document.root_id not in nodes:
        errors.append(f"Root node {document.root_id} not found")
    elif nodes[document.root_id].get("parentId"):
        errors.append(f"Root node {document.root_id} must not have a parent")

    for node_id, node in nodes.items():
        if node.get("id") != node_id:
            errors.append(f"Node key {node_id} does not match node id {node.get('id')}")

        parent_id = node.get("parentId")
        if parent_id:
            parent = nodes.get(parent_id)
            if parent is None:
                errors.append(f"Parent node {parent_id} not found for node {node_id}")
            elif node_id not in (parent.get("childIds") or []):
                errors.append(f"Node {node_id} not found in parent's children list")
        elif node_id != document.root_id:
            errors.append(f"Node {node_id} has no parent and is not the root")

        if "childIds" in node:
            for child_id in node["childIds"]:
                child = nodes.get(child_id)
                if child is None:
                    errors.append(f"Child node {child_id} not found for parent {node_id}")
                elif child.get("parentId") != node_id:
                    errors.append(f"Child node {child_id} has wrong parent reference")

        if node.get("type") == SERVICE:
            for question_id in node.get("questionIds") or []:
                question = questions.get(question_id)
                if question is None:
                    errors.append(f"Question {question_id} not found for service {node_id}")
                elif question.get("serviceId") != node_id:
                    errors.append(f"Question {question_id} has wrong service reference")

    for question_id, question in questions.items():
        service_id = question.get("serviceId")
        service = nodes.get(service_id)
        if service is None:
            errors.append(f"Service node {service_id} not found for question {question_id}")
        elif question_id not in (service.get("questionIds") or []):
            errors.append(f"Question {question_id} not found in service's questions list")

    return {"isValid": len(errors) == 0, "errors": errors}


def assert_integrity(document: NormalizedDocument) -> None:
    report = check_integrity(document)
    if not report["isValid"]:
        raise IntegrityViolationError(report["errors"])
