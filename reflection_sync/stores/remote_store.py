"""
Remote Record Store - document/collection contract + in-memory adapter
=======================================================================

The core consumes three capabilities of the remote store:
  read-one / merge-write-one          (async)
  subscribe to a document             (full snapshot or None on every change)
  subscribe to an ordered collection  (full ordered snapshot on every change)

Listeners are plain callables invoked on the store's delivery path; they must
return without awaiting further remote I/O.
"""

from __future__ import annotations

import abc
import copy
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from reflection_sync.data.models import coerce_timestamp
from reflection_sync.utils.exceptions import StoreUnavailable, SubscriptionError, WriteRejected
from reflection_sync.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class DocumentSnapshot:
    id: str
    data: dict[str, Any] = field(default_factory=dict)


DocumentListener = Callable[[Optional[dict[str, Any]]], None]
CollectionListener = Callable[[list[DocumentSnapshot]], None]
ErrorListener = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


def preference_document_path(app_id: str, user_id: str) -> str:
    return f"artifacts/{app_id}/users/{user_id}/preferences/main"


def journal_collection_path(app_id: str, user_id: str) -> str:
    return f"artifacts/{app_id}/users/{user_id}/journalEntries"


class RemoteRecordStore(abc.ABC):
    @abc.abstractmethod
    async def get_document(self, path: str) -> Optional[dict[str, Any]]:
        pass

    @abc.abstractmethod
    async def set_document(self, path: str, data: dict[str, Any], merge: bool = True) -> None:
        pass

    @abc.abstractmethod
    def subscribe_document(
        self,
        path: str,
        on_next: DocumentListener,
        on_error: Optional[ErrorListener] = None,
    ) -> Unsubscribe:
        pass

    @abc.abstractmethod
    def subscribe_collection(
        self,
        path: str,
        on_next: CollectionListener,
        on_error: Optional[ErrorListener] = None,
        order_by: str = "createdAt",
        descending: bool = True,
    ) -> Unsubscribe:
        pass


def _deep_merge(base: dict[str, Any], update: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


@dataclass(eq=False)
class _DocumentSubscription:
    path: str
    on_next: DocumentListener
    on_error: Optional[ErrorListener]


@dataclass(eq=False)
class _CollectionSubscription:
    path: str
    on_next: CollectionListener
    on_error: Optional[ErrorListener]
    order_by: str
    descending: bool


class InMemoryRecordStore(RemoteRecordStore):
    """
    Process-local remote store with synchronous snapshot delivery.
    Supports outage and fault injection for exercising fallback paths.
    """

    def __init__(self) -> None:
        self._documents: dict[str, dict[str, Any]] = {}
        self._doc_subs: list[_DocumentSubscription] = []
        self._coll_subs: list[_CollectionSubscription] = []
        self._available = True
        self._pending_write_failures: list[Exception] = []
        self.write_count = 0

    # ─── Fault injection ────────────────────────────────────────

    @property
    def is_available(self) -> bool:
        return self._available

    def set_available(self, available: bool) -> None:
        self._available = available
        logger.info("remote_store_availability_changed", available=available)

    def fail_next_write(self, error: Optional[Exception] = None) -> None:
        self._pending_write_failures.append(error or WriteRejected("Injected write failure"))

    def fail_subscriptions(self, path_prefix: str = "", error: Optional[Exception] = None) -> int:
        """Fault every live stream under ``path_prefix``. Faulted streams are closed."""
        failed = 0
        for sub in [s for s in self._doc_subs if s.path.startswith(path_prefix)]:
            self._doc_subs.remove(sub)
            failed += 1
            if sub.on_error:
                sub.on_error(error or SubscriptionError("Stream faulted", sub.path))
        for sub in [s for s in self._coll_subs if s.path.startswith(path_prefix)]:
            self._coll_subs.remove(sub)
            failed += 1
            if sub.on_error:
                sub.on_error(error or SubscriptionError("Stream faulted", sub.path))
        return failed

    def listener_count(self, path_prefix: str = "") -> int:
        return (
            sum(1 for s in self._doc_subs if s.path.startswith(path_prefix))
            + sum(1 for s in self._coll_subs if s.path.startswith(path_prefix))
        )

    # ─── Contract ───────────────────────────────────────────────

    def _ensure_available(self, path: str) -> None:
        if not self._available:
            raise StoreUnavailable(path=path)

    async def get_document(self, path: str) -> Optional[dict[str, Any]]:
        self._ensure_available(path)
        data = self._documents.get(path)
        return copy.deepcopy(data) if data is not None else None

    async def set_document(self, path: str, data: dict[str, Any], merge: bool = True) -> None:
        self._ensure_available(path)
        if self._pending_write_failures:
            raise self._pending_write_failures.pop(0)
        self._write(path, data, merge)

    def subscribe_document(
        self,
        path: str,
        on_next: DocumentListener,
        on_error: Optional[ErrorListener] = None,
    ) -> Unsubscribe:
        self._ensure_available(path)
        sub = _DocumentSubscription(path, on_next, on_error)
        self._doc_subs.append(sub)
        on_next(self._document_snapshot(path))
        return self._unsubscriber(self._doc_subs, sub)

    def subscribe_collection(
        self,
        path: str,
        on_next: CollectionListener,
        on_error: Optional[ErrorListener] = None,
        order_by: str = "createdAt",
        descending: bool = True,
    ) -> Unsubscribe:
        self._ensure_available(path)
        sub = _CollectionSubscription(path, on_next, on_error, order_by, descending)
        self._coll_subs.append(sub)
        on_next(self._collection_snapshot(sub))
        return self._unsubscriber(self._coll_subs, sub)

    # ─── Collaborator-side helpers (journal writes belong elsewhere) ──

    def add_document(self, collection_path: str, data: dict[str, Any], doc_id: Optional[str] = None) -> str:
        self._ensure_available(collection_path)
        doc_id = doc_id or uuid.uuid4().hex[:20]
        self._write(f"{collection_path}/{doc_id}", data, merge=False)
        return doc_id

    def delete_document(self, path: str) -> None:
        self._ensure_available(path)
        if self._documents.pop(path, None) is not None:
            self._notify(path)

    def delete_collection(self, collection_path: str) -> int:
        self._ensure_available(collection_path)
        doomed = [p for p in self._documents if self._parent(p) == collection_path]
        for p in doomed:
            del self._documents[p]
        if doomed:
            self._notify_collection(collection_path)
        return len(doomed)

    # ─── Internals ──────────────────────────────────────────────

    def _write(self, path: str, data: dict[str, Any], merge: bool) -> None:
        incoming = copy.deepcopy(data)
        existing = self._documents.get(path)
        self._documents[path] = _deep_merge(existing, incoming) if merge and existing else incoming
        self.write_count += 1
        self._notify(path)

    @staticmethod
    def _parent(path: str) -> str:
        return path.rsplit("/", 1)[0] if "/" in path else ""

    @staticmethod
    def _unsubscriber(registry: list, sub: Any) -> Unsubscribe:
        def unsubscribe() -> None:
            if sub in registry:
                registry.remove(sub)
        return unsubscribe

    def _document_snapshot(self, path: str) -> Optional[dict[str, Any]]:
        data = self._documents.get(path)
        return copy.deepcopy(data) if data is not None else None

    def _collection_snapshot(self, sub: _CollectionSubscription) -> list[DocumentSnapshot]:
        docs = [
            DocumentSnapshot(id=p.rsplit("/", 1)[1], data=copy.deepcopy(d))
            for p, d in self._documents.items()
            if self._parent(p) == sub.path
        ]

        def sort_key(doc: DocumentSnapshot) -> tuple[int, float]:
            ts = coerce_timestamp(doc.data.get(sub.order_by))
            # unresolved (pending) timestamps sort as newest
            return (1, 0.0) if ts is None else (0, ts.timestamp())

        docs.sort(key=sort_key, reverse=sub.descending)
        return docs

    def _notify(self, path: str) -> None:
        for sub in [s for s in self._doc_subs if s.path == path]:
            if sub in self._doc_subs:
                sub.on_next(self._document_snapshot(path))
        self._notify_collection(self._parent(path))

    def _notify_collection(self, collection_path: str) -> None:
        for sub in [s for s in self._coll_subs if s.path == collection_path]:
            if sub in self._coll_subs:
                sub.on_next(self._collection_snapshot(sub))
