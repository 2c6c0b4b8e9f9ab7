# service_catalog/optimistic_updates.py
"""
Optimistic local edits, rollback, and reconciliation with the server copy.

Each edit runs against the FormStore immediately and leaves a PendingOperation
holding the document as it was before the edit. sync_with_server() either
adopts the server copy outright (nothing pending) or three-way merges it with
the local document, using as base the last server copy this manager adopted.
"""
import asyncio
import copy
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from service_catalog.config import SYNC_INTERVAL_MS
from service_catalog.event_channel import EventChannel
from service_catalog.form_store import FormStore
from service_catalog.migration import assert_integrity, new_id, wire_to_normalized
from service_catalog.models import AutosaveDocument, NormalizedDocument, PendingOperation
from service_catalog.node_ops import SERVICE

logger = logging.getLogger("catalog_editor")

DEFAULT_TRACKED_FIELDS = ("description",)

MergeFn = Callable[[NormalizedDocument, NormalizedDocument, NormalizedDocument], NormalizedDocument]
Mutation = Callable[[FormStore], Any]
FetchFn = Callable[[], Awaitable[Union[Dict[str, Any], AutosaveDocument]]]
# returns None when a server copy may be applied now, otherwise why not
SyncGuard = Callable[[], Optional[str]]

_MISSING = object()


# -----------------------
# Default three-way merge
# -----------------------

def question_key(question: Dict[str, Any]) -> Tuple[Any, Any]:
    """Wrapper ids change on every normalization; the config's own id/name does not."""
    config = question.get("config") or {}
    return question.get("serviceId"), config.get("id") or config.get("name")


def _pick(base: Any, local: Any, server: Any) -> Any:
    # local only wins where the server left the base value alone
    if base == server and local != server:
        return local
    return server


def _tree_order(document: NormalizedDocument) -> List[str]:
    order: List[str] = []
    stack = [document.root_id]
    while stack:
        node_id = stack.pop()
        node = document.nodes.get(node_id)
        if node is None:
            continue
        order.append(node_id)
        stack.extend(reversed(node.get("childIds") or []))
    return order


def _merge_nodes(base, local, server, merged_nodes, tracked_fields) -> None:
    for node_id, server_node in server.nodes.items():
        local_node = local.nodes.get(node_id)
        base_node = base.nodes.get(node_id)
        if local_node is None or base_node is None or server_node.get("type") != SERVICE:
            continue
        for field in tracked_fields:
            value = _pick(
                base_node.get(field, _MISSING),
                local_node.get(field, _MISSING),
                server_node.get(field, _MISSING),
            )
            if value is _MISSING:
                merged_nodes[node_id].pop(field, None)
            else:
                merged_nodes[node_id][field] = copy.deepcopy(value)

    # pure local additions, parents first so a kept child finds its kept parent
    for node_id in _tree_order(local):
        if node_id in base.nodes or node_id in server.nodes:
            continue
        local_node = local.nodes[node_id]
        parent = merged_nodes.get(local_node.get("parentId"))
        if parent is None or "childIds" not in parent:
            logger.info("merge: dropping local node %s, its parent is gone", node_id)
            continue
        kept = copy.deepcopy(local_node)
        if "childIds" in kept:
            kept["childIds"] = []
        if "questionIds" in kept:
            kept["questionIds"] = []
        merged_nodes[node_id] = kept

        siblings = local.nodes[local_node["parentId"]].get("childIds") or []
        position = siblings.index(node_id) if node_id in siblings else len(parent["childIds"])
        parent["childIds"].insert(min(position, len(parent["childIds"])), node_id)


def _merge_questions(base, local, server, merged) -> None:
    base_keys = {question_key(q) for q in base.questions.values()}
    server_keys = {question_key(q) for q in server.questions.values()}

    local_questions = sorted(local.questions.values(), key=lambda q: q.get("order", 0))
    for question in local_questions:
        key = question_key(question)
        if key in base_keys or key in server_keys:
            continue
        owner = merged.nodes.get(question.get("serviceId"))
        if owner is None or owner.get("type") != SERVICE:
            logger.info("merge: dropping local question %s, its service is gone", question.get("id"))
            continue
        question_id = question["id"]
        if question_id in merged.questions:
            question_id = new_id()
        owned_orders = [merged.questions[q]["order"] for q in owner.get("questionIds") or [] if q in merged.questions]
        merged.questions[question_id] = {
            **copy.deepcopy(question),
            "id": question_id,
            "order": max(owned_orders, default=-1) + 1,
        }
        owner["questionIds"] = [*(owner.get("questionIds") or []), question_id]


def three_way_merge(
    base: NormalizedDocument,
    local: NormalizedDocument,
    server: NormalizedDocument,
    tracked_fields: Tuple[str, ...] = DEFAULT_TRACKED_FIELDS,
) -> NormalizedDocument:
    """
    Server wins, except that:
      - nodes and questions that exist only locally are kept (re-attached to
        their parent / owning service, dropped when that is gone);
      - on service nodes, a tracked field the server did not change since the
        base keeps the local value;
      - form settings follow the same rule as the tracked fields.
    """
    merged = server.model_copy(deep=True)

    _merge_nodes(base, local, server, merged.nodes, tracked_fields)
    _merge_questions(base, local, server, merged)

    merged.name = _pick(base.name, local.name, server.name)
    merged.slug = _pick(base.slug, local.slug, server.slug)
    merged.theme = _pick(base.theme, local.theme, server.theme)
    merged.primary_color = _pick(base.primary_color, local.primary_color, server.primary_color)
    merged.base_questions = copy.deepcopy(_pick(base.base_questions, local.base_questions, server.base_questions))

    assert_integrity(merged)
    return merged


# -----------------------
# Manager
# -----------------------

class OptimisticUpdateManager:
    def __init__(
        self,
        store: FormStore,
        *,
        merge_fn: Optional[MergeFn] = None,
        tracked_fields: Tuple[str, ...] = DEFAULT_TRACKED_FIELDS,
        sync_interval_ms: float = SYNC_INTERVAL_MS,
        clock: Callable[[], float] = time.time,
        sync_guard: Optional[SyncGuard] = None,
        before_sync: Optional[Callable[[], Awaitable[Any]]] = None,
    ):
        self.store = store
        self.merge_fn = merge_fn
        self.tracked_fields = tuple(tracked_fields)
        self.sync_interval_ms = sync_interval_ms
        self.clock = clock
        self.sync_guard = sync_guard
        self.before_sync = before_sync
        self.channel = EventChannel("optimistic_updates")

        self.pending_operations: Dict[str, PendingOperation] = {}
        self.last_sync: Optional[datetime] = None
        self._base = store.snapshot()
        self._sync_task: Optional[asyncio.Task] = None

    @property
    def has_pending_updates(self) -> bool:
        return len(self.pending_operations) > 0

    @property
    def base(self) -> NormalizedDocument:
        return self._base

    def apply_optimistic_update(self, operation_kind: str, mutation: Mutation, op_id: Optional[str] = None) -> str:
        """Run `mutation(store)` now and remember how to undo it. Returns the operation id."""
        op_id = op_id or new_id()
        prior = self.store.snapshot()
        mutation(self.store)
        self.pending_operations[op_id] = PendingOperation(
            id=op_id,
            timestamp=self.clock(),
            operationKind=operation_kind,
            priorSnapshot=prior,
        )
        logger.debug("optimistic: applied %s (%s)", operation_kind, op_id)
        return op_id

    def confirm(self, op_id: str) -> bool:
        return self.pending_operations.pop(op_id, None) is not None

    def confirm_all(self, op_ids=None) -> None:
        for op_id in list(self.pending_operations if op_ids is None else op_ids):
            self.pending_operations.pop(op_id, None)

    def rollback(self, op_id: str) -> bool:
        """
        Restore the document as it was before `op_id`. Operations recorded after
        it were applied on top of the undone state, so they are discarded too.
        """
        if op_id not in self.pending_operations:
            return False
        ids = list(self.pending_operations)
        discarded = ids[ids.index(op_id):]
        operation = self.pending_operations[op_id]
        for stale_id in discarded:
            self.pending_operations.pop(stale_id)
        self.store.load(operation.prior_snapshot, action="rollback")
        logger.info("optimistic: rolled back %s (%d operation(s) discarded)", op_id, len(discarded))
        self.channel.publish("rolled_back", {"opId": op_id, "discarded": discarded})
        return True

    def sync_with_server(
        self, server: Union[Dict[str, Any], AutosaveDocument, NormalizedDocument]
    ) -> Optional[NormalizedDocument]:
        """
        Adopt or merge a server copy. Returns the resulting document, or None
        when sync_guard refuses it (the copy may predate a write still in flight;
        the next sync fetches a fresh one).
        """
        if self.sync_guard is not None:
            reason = self.sync_guard()
            if reason:
                logger.info("optimistic: server copy not applied (%s)", reason)
                self.channel.publish("sync.deferred", {"reason": reason})
                return None

        if isinstance(server, NormalizedDocument):
            server_doc = server.model_copy(deep=True)
        else:
            wire = server.to_wire() if isinstance(server, AutosaveDocument) else server
            server_doc = wire_to_normalized(wire, id_factory=self.store.id_factory)

        merged_local = self.has_pending_updates
        if not merged_local:
            result = server_doc
        else:
            local = self.store.snapshot()
            if self.merge_fn is not None:
                result = self.merge_fn(self._base, local, server_doc)
            else:
                result = three_way_merge(self._base, local, server_doc, self.tracked_fields)
            logger.info("optimistic: merged %d pending operation(s) with server copy", len(self.pending_operations))
            self.pending_operations.clear()

        self.store.load(result, action="sync")
        self._base = server_doc
        self.last_sync = datetime.now(timezone.utc)
        self.channel.publish("synced", {"merged": merged_local})
        return result

    # ---- periodic sync ----

    async def sync_once(self, fetch: FetchFn) -> Optional[NormalizedDocument]:
        if self.before_sync is not None:
            await self.before_sync()
        server = await fetch()
        return self.sync_with_server(server)

    async def _sync_loop(self, fetch: FetchFn) -> None:
        while True:
            await asyncio.sleep(self.sync_interval_ms / 1000.0)
            try:
                await self.sync_once(fetch)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("optimistic: periodic sync failed, will retry next interval")

    def start_periodic_sync(self, fetch: FetchFn) -> asyncio.Task:
        self.stop_periodic_sync()
        self._sync_task = asyncio.get_running_loop().create_task(self._sync_loop(fetch))
        logger.info("optimistic: periodic sync every %sms", self.sync_interval_ms)
        return self._sync_task

    def stop_periodic_sync(self) -> None:
        if self._sync_task is not None:
            self._sync_task.cancel()
            self._sync_task = None
