# service_catalog/node_ops.py
"""
Pure operations over the nested service tree.

A node is a plain dict in wire format:

    {"id": "root", "type": "root", "label": "Start", "children": [...]}
    {"id": "g1", "type": "group", "label": "Hair", "children": [...]}
    {"id": "s1", "type": "service", "label": "Cut", "duration": 30, ...}

Nothing here mutates its input. Mutators rebuild only the nodes on the path
to the edited node; every other subtree is shared with the input tree.

Mutators targeting an id that is not in the tree return the input tree
unchanged. The try_* variants return a TreeEdit so callers can tell
"applied" from "not found".
"""
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional

Node = Dict[str, Any]

ROOT = "root"
GROUP = "group"
SERVICE = "service"
NODE_TYPES = (ROOT, GROUP, SERVICE)

# names used by forms saved before the group/root rename
LEGACY_TYPE_ALIASES = {"start": ROOT, "split": GROUP}


class ReorderError(ValueError):
    pass


class TreeEdit(NamedTuple):
    tree: Node
    applied: bool


def node_type(node: Node) -> Optional[str]:
    raw = node.get("type")
    return LEGACY_TYPE_ALIASES.get(raw, raw)


def _children(node: Node) -> List[Node]:
    return node.get("children") or []


def _rebuild(
    node: Node,
    fn: Callable[[Node], Optional[Node]],
) -> Optional[Node]:
    """
    Depth-first rebuild. `fn` returns a replacement for a node it wants to
    change, or None. Returns the new node when something below (or at) `node`
    changed, otherwise None so the caller keeps the original reference.
    Stops at the first replacement.
    """
    replaced = fn(node)
    if replaced is not None:
        return replaced

    children = _children(node)
    for i, child in enumerate(children):
        new_child = _rebuild(child, fn)
        if new_child is not None:
            new_children = list(children)
            new_children[i] = new_child
            return {**node, "children": new_children}
    return None


# -----------------------
# Lookups
# -----------------------

def find_by_id(tree: Node, node_id: str) -> Optional[Node]:
    if tree.get("id") == node_id:
        return tree
    for child in _children(tree):
        found = find_by_id(child, node_id)
        if found is not None:
            return found
    return None


def find_parent(tree: Node, child_id: str) -> Optional[Node]:
    for child in _children(tree):
        if child.get("id") == child_id:
            return tree
        found = find_parent(child, child_id)
        if found is not None:
            return found
    return None


def node_exists(tree: Node, node_id: str) -> bool:
    return find_by_id(tree, node_id) is not None


def get_path(tree: Node, node_id: str, current_path: Optional[List[str]] = None) -> Optional[List[str]]:
    """Labels from the root down to `node_id`, or None when absent."""
    new_path = list(current_path or []) + [tree.get("label")]
    if tree.get("id") == node_id:
        return new_path
    for child in _children(tree):
        found = get_path(child, node_id, new_path)
        if found is not None:
            return found
    return None


def get_all_nodes(tree: Node) -> List[Node]:
    nodes = [tree]
    for child in _children(tree):
        nodes.extend(get_all_nodes(child))
    return nodes


def get_nodes_by_type(tree: Node, wanted_type: str) -> List[Node]:
    wanted_type = LEGACY_TYPE_ALIASES.get(wanted_type, wanted_type)
    return [n for n in get_all_nodes(tree) if node_type(n) == wanted_type]


def get_leaf_nodes(tree: Node) -> List[Node]:
    children = _children(tree)
    if not children:
        return [tree]
    leaves: List[Node] = []
    for child in children:
        leaves.extend(get_leaf_nodes(child))
    return leaves


def get_node_depth(tree: Node, node_id: str, current_depth: int = 0) -> Optional[int]:
    if tree.get("id") == node_id:
        return current_depth
    for child in _children(tree):
        depth = get_node_depth(child, node_id, current_depth + 1)
        if depth is not None:
            return depth
    return None


def clone_tree(tree: Node) -> Node:
    cloned = dict(tree)
    if "children" in tree:
        cloned["children"] = [clone_tree(c) for c in _children(tree)]
    return cloned


# -----------------------
# Mutators (result-typed)
# -----------------------

def try_update_node(tree: Node, node_id: str, updates: Dict[str, Any]) -> TreeEdit:
    def _patch(node: Node) -> Optional[Node]:
        if node.get("id") == node_id:
            return {**node, **updates}
        return None

    new_tree = _rebuild(tree, _patch)
    if new_tree is None:
        return TreeEdit(tree, False)
    return TreeEdit(new_tree, True)


def try_add_child(tree: Node, parent_id: str, new_node: Node) -> TreeEdit:
    def _append(node: Node) -> Optional[Node]:
        if node.get("id") == parent_id:
            return {**node, "children": [*_children(node), new_node]}
        return None

    new_tree = _rebuild(tree, _append)
    if new_tree is None:
        return TreeEdit(tree, False)
    return TreeEdit(new_tree, True)


def try_remove_node(tree: Node, node_id: str) -> TreeEdit:
    # the root is never a child of anything, so it can't be removed here
    def _drop(node: Node) -> Optional[Node]:
        children = _children(node)
        if any(c.get("id") == node_id for c in children):
            return {**node, "children": [c for c in children if c.get("id") != node_id]}
        return None

    new_tree = _rebuild(tree, _drop)
    if new_tree is None:
        return TreeEdit(tree, False)
    return TreeEdit(new_tree, True)


def _check_permutation(current: Iterable[Node], proposed: Iterable[Node]) -> None:
    current_ids = [c.get("id") for c in current]
    proposed_ids = [c.get("id") for c in proposed]
    if len(set(proposed_ids)) != len(proposed_ids):
        raise ReorderError(f"Reorder contains duplicate children: {proposed_ids}")
    if sorted(map(str, current_ids)) != sorted(map(str, proposed_ids)):
        raise ReorderError(
            f"Reorder must be a permutation of the current children {current_ids}, got {proposed_ids}"
        )


def try_reorder_children(tree: Node, parent_id: str, new_order: List[Node]) -> TreeEdit:
    """
    Replace a parent's children with `new_order`. The new list must hold
    exactly the parent's current children (by id); anything else raises
    ReorderError rather than silently dropping or duplicating nodes.
    """
    def _reorder(node: Node) -> Optional[Node]:
        if node.get("id") == parent_id:
            _check_permutation(_children(node), new_order)
            return {**node, "children": list(new_order)}
        return None

    new_tree = _rebuild(tree, _reorder)
    if new_tree is None:
        return TreeEdit(tree, False)
    return TreeEdit(new_tree, True)


def try_move_node(tree: Node, node_id: str, new_parent_id: str) -> TreeEdit:
    """
    Remove `node_id` and append it to `new_parent_id`.

    Not applied when the node is absent, is the root, or when the new parent
    is missing or sits inside the moved subtree (the node would be lost).
    """
    node_to_move = find_by_id(tree, node_id)
    if node_to_move is None or node_to_move is tree:
        return TreeEdit(tree, False)
    if find_by_id(node_to_move, new_parent_id) is not None:
        return TreeEdit(tree, False)
    if find_by_id(tree, new_parent_id) is None:
        return TreeEdit(tree, False)

    without = try_remove_node(tree, node_id).tree
    return try_add_child(without, new_parent_id, node_to_move)


# -----------------------
# Mutators (soft no-op)
# -----------------------

def update_node(tree: Node, node_id: str, updates: Dict[str, Any]) -> Node:
    return try_update_node(tree, node_id, updates).tree


def add_child(tree: Node, parent_id: str, new_node: Node) -> Node:
    return try_add_child(tree, parent_id, new_node).tree


def remove_node(tree: Node, node_id: str) -> Node:
    return try_remove_node(tree, node_id).tree


def reorder_children(tree: Node, parent_id: str, new_order: List[Node]) -> Node:
    return try_reorder_children(tree, parent_id, new_order).tree


def move_node(tree: Node, node_id: str, new_parent_id: str) -> Node:
    return try_move_node(tree, node_id, new_parent_id).tree


# -----------------------
# Structural check
# -----------------------

def validate_tree(tree: Node) -> Dict[str, Any]:
    """
    Structural check only: duplicate ids and missing id/label/type.
    Business rules live in validation.py.
    """
    errors: List[str] = []
    seen_ids = set()

    def _walk(node: Node, path: List[str]) -> None:
        current_path = path + [str(node.get("label") or "")]
        where = " > ".join(current_path)
        node_id = node.get("id")

        if node_id and node_id in seen_ids:
            errors.append(f"Duplicate ID found: {node_id} at {where}")
        elif node_id:
            seen_ids.add(node_id)

        if not node_id:
            errors.append(f"Missing ID at {where}")
        if not node.get("label"):
            errors.append(f"Missing label at {where}")
        if not node.get("type"):
            errors.append(f"Missing type at {where}")

        for child in _children(node):
            _walk(child, current_path)

    _walk(tree, [])
    return {"isValid": len(errors) == 0, "errors": errors}
