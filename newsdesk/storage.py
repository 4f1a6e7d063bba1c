from __future__ import annotations

import copy
import operator
import threading
from typing import Any, Callable, Iterable, Optional, Tuple
from uuid import uuid4

from google.api_core.exceptions import NotFound
from google.cloud import firestore

from newsdesk.config import Settings

Document = dict[str, Any]
Filter = Tuple[str, str, Any]

# Firestore rejects write batches larger than this
BATCH_LIMIT = 500

_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
	"==": operator.eq,
	"<": operator.lt,
	"<=": operator.le,
	">": operator.gt,
	">=": operator.ge,
}


class DocumentNotFound(Exception):
	def __init__(self, collection: str, doc_id: str) -> None:
		super().__init__(f"{collection}/{doc_id} does not exist")
		self.collection = collection
		self.doc_id = doc_id


class DocumentStore:
	"""Keyed collections of JSON-like documents with simple field queries."""

	def get(self, collection: str, doc_id: str) -> Optional[Document]:
		raise NotImplementedError

	def set(self, collection: str, doc_id: str, data: Document) -> None:
		raise NotImplementedError

	def update(self, collection: str, doc_id: str, fields: Document) -> None:
		raise NotImplementedError

	def add(self, collection: str, data: Document) -> str:
		raise NotImplementedError

	def append(self, collection: str, doc_id: str, field: str, values: list[Any], fields: Optional[Document] = None) -> None:
		"""Atomically extend a list field and set any other `fields` in the same write."""
		raise NotImplementedError

	def query(
		self,
		collection: str,
		filters: Iterable[Filter] = (),
		order_by: Optional[str] = None,
		descending: bool = False,
		limit: Optional[int] = None,
	) -> list[Tuple[str, Document]]:
		raise NotImplementedError

	def delete_many(self, collection: str, doc_ids: Iterable[str]) -> int:
		raise NotImplementedError


def _check_op(op: str) -> Callable[[Any, Any], bool]:
	try:
		return _OPERATORS[op]
	except KeyError:
		raise ValueError(f"Unsupported filter operator: {op}") from None


class InMemoryDocumentStore(DocumentStore):
	"""Process-local store used for development and tests; resets on restart."""

	def __init__(self) -> None:
		self._collections: dict[str, dict[str, Document]] = {}
		# Requests are served from a threadpool
		self._lock = threading.Lock()

	def _collection(self, name: str) -> dict[str, Document]:
		return self._collections.setdefault(name, {})

	def get(self, collection: str, doc_id: str) -> Optional[Document]:
		with self._lock:
			doc = self._collection(collection).get(doc_id)
			return copy.deepcopy(doc) if doc is not None else None

	def set(self, collection: str, doc_id: str, data: Document) -> None:
		with self._lock:
			self._collection(collection)[doc_id] = copy.deepcopy(data)

	def update(self, collection: str, doc_id: str, fields: Document) -> None:
		with self._lock:
			docs = self._collection(collection)
			if doc_id not in docs:
				raise DocumentNotFound(collection, doc_id)
			docs[doc_id].update(copy.deepcopy(fields))

	def add(self, collection: str, data: Document) -> str:
		doc_id = uuid4().hex[:20]
		self.set(collection, doc_id, data)
		return doc_id

	def append(self, collection: str, doc_id: str, field: str, values: list[Any], fields: Optional[Document] = None) -> None:
		with self._lock:
			docs = self._collection(collection)
			if doc_id not in docs:
				raise DocumentNotFound(collection, doc_id)
			doc = docs[doc_id]
			current = doc.get(field)
			if not isinstance(current, list):
				current = doc[field] = []
			current.extend(copy.deepcopy(v) for v in values)
			if fields:
				doc.update(copy.deepcopy(fields))

	def query(
		self,
		collection: str,
		filters: Iterable[Filter] = (),
		order_by: Optional[str] = None,
		descending: bool = False,
		limit: Optional[int] = None,
	) -> list[Tuple[str, Document]]:
		checks = [(field, _check_op(op), value) for field, op, value in filters]
		with self._lock:
			snapshot = copy.deepcopy(self._collection(collection))
		matches: list[Tuple[str, Document]] = []
		for doc_id, doc in snapshot.items():
			ok = True
			for field, compare, value in checks:
				# Documents missing the field never match, as in Firestore
				if field not in doc or doc[field] is None or not compare(doc[field], value):
					ok = False
					break
			if ok:
				matches.append((doc_id, doc))
		if order_by:
			matches = [m for m in matches if m[1].get(order_by) is not None]
			matches.sort(key=lambda m: m[1][order_by], reverse=descending)
		if limit is not None:
			matches = matches[: max(limit, 0)]
		return matches

	def delete_many(self, collection: str, doc_ids: Iterable[str]) -> int:
		with self._lock:
			docs = self._collection(collection)
			return sum(1 for doc_id in doc_ids if docs.pop(doc_id, None) is not None)

	def clear(self) -> None:
		with self._lock:
			self._collections.clear()


class FirestoreDocumentStore(DocumentStore):
	"""Document store backed by Google Cloud Firestore."""

	def __init__(self, client: firestore.Client) -> None:
		self._db = client

	def get(self, collection: str, doc_id: str) -> Optional[Document]:
		snapshot = self._db.collection(collection).document(doc_id).get()
		if not snapshot.exists:
			return None
		return snapshot.to_dict()

	def set(self, collection: str, doc_id: str, data: Document) -> None:
		self._db.collection(collection).document(doc_id).set(data)

	def update(self, collection: str, doc_id: str, fields: Document) -> None:
		try:
			self._db.collection(collection).document(doc_id).update(fields)
		except NotFound:
			raise DocumentNotFound(collection, doc_id) from None

	def add(self, collection: str, data: Document) -> str:
		_, ref = self._db.collection(collection).add(data)
		return ref.id

	def append(self, collection: str, doc_id: str, field: str, values: list[Any], fields: Optional[Document] = None) -> None:
		# Applied server-side, so concurrent appends both land
		update: Document = {field: firestore.ArrayUnion(values), **(fields or {})}
		self.update(collection, doc_id, update)

	def query(
		self,
		collection: str,
		filters: Iterable[Filter] = (),
		order_by: Optional[str] = None,
		descending: bool = False,
		limit: Optional[int] = None,
	) -> list[Tuple[str, Document]]:
		query: Any = self._db.collection(collection)
		for field, op, value in filters:
			_check_op(op)
			query = query.where(filter=firestore.FieldFilter(field, op, value))
		if order_by:
			direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
			query = query.order_by(order_by, direction=direction)
		if limit is not None:
			query = query.limit(limit)
		return [(snap.id, snap.to_dict() or {}) for snap in query.stream()]

	def delete_many(self, collection: str, doc_ids: Iterable[str]) -> int:
		ref = self._db.collection(collection)
		batch = self._db.batch()
		pending = 0
		deleted = 0
		for doc_id in doc_ids:
			batch.delete(ref.document(doc_id))
			pending += 1
			if pending == BATCH_LIMIT:
				batch.commit()
				deleted += pending
				batch = self._db.batch()
				pending = 0
		if pending:
			batch.commit()
			deleted += pending
		return deleted


def get_document_store(settings: Settings) -> DocumentStore:
	"""Pick the configured backend; Firestore credentials come from the environment."""
	if settings.store_backend == "firestore":
		return FirestoreDocumentStore(firestore.Client(project=settings.firestore_project))
	if settings.store_backend != "memory":
		raise ValueError(f"Unknown STORE_BACKEND: {settings.store_backend}")
	return InMemoryDocumentStore()


def sessions_collection(station_id: str) -> str:
	return f"sessions_{station_id}"


def submissions_collection(station_id: str) -> str:
	return f"submissions_{station_id}"


SETTINGS_COLLECTION = "settings"
