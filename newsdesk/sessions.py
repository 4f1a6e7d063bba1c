from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Literal, Optional
from uuid import uuid4

from newsdesk.config import Settings
from newsdesk.logs import log_error, log_event, now_utc
from newsdesk.models import SessionMessage, SessionRecord
from newsdesk.storage import DocumentNotFound, DocumentStore, sessions_collection
from newsdesk.timeutils import format_current_time_central


def _epoch_ms() -> int:
	return int(time.time() * 1000)


@dataclass
class SessionLookup:
	"""Outcome of resolving a user's current session."""

	status: Literal["active", "cooldown"]
	doc_id: Optional[str] = None
	session: Optional[SessionRecord] = None
	remaining_cooldown_ms: int = 0
	created: bool = False


@dataclass
class MessageLimit:
	count: int
	has_reached_limit: bool
	warning_message: Optional[str] = None


class SessionManager:
	"""Per-station conversation records with expiry and a message-count cooldown."""

	def __init__(
		self,
		store: DocumentStore,
		settings: Settings,
		clock: Callable[[], int] = _epoch_ms,
	) -> None:
		self._store = store
		self._settings = settings
		self._clock = clock

	def _new_doc_id(self) -> str:
		stamp = format_current_time_central("session", self._settings.timezone)
		return f"{stamp} {uuid4().hex[:6]}"

	def _create(self, user_id: str, station_id: str, session_id: Optional[str], now: int) -> tuple[str, SessionRecord]:
		doc_id = self._new_doc_id()
		record = SessionRecord(
			user_id=user_id,
			session_id=session_id,
			station_id=station_id,
			thread_id=None,
			messages=[],
			last_activity=now,
			created=now,
		)
		self._store.set(sessions_collection(station_id), doc_id, record.model_dump())
		return doc_id, record

	def get_or_create_user_session(
		self,
		user_id: str,
		station_id: str,
		session_id: Optional[str] = None,
	) -> SessionLookup:
		now = self._clock()
		found = self._store.query(
			sessions_collection(station_id),
			filters=[("user_id", "==", user_id)],
			order_by="last_activity",
			descending=True,
			limit=1,
		)
		if not found:
			doc_id, record = self._create(user_id, station_id, session_id, now)
			log_event("session_created", user_id=user_id, station_id=station_id, doc_id=doc_id, reason="first_session")
			return SessionLookup(status="active", doc_id=doc_id, session=record, created=True)

		previous_id, data = found[0]
		existing = SessionRecord.model_validate(data)
		idle_ms = now - existing.last_activity

		if existing.user_message_count() >= self._settings.max_messages and idle_ms <= self._settings.cooldown_ms:
			remaining = self._settings.cooldown_ms - idle_ms
			log_event(
				"session_cooldown",
				user_id=user_id,
				station_id=station_id,
				doc_id=previous_id,
				remaining_cooldown_ms=remaining,
			)
			return SessionLookup(status="cooldown", remaining_cooldown_ms=remaining)

		if idle_ms > self._settings.session_expiry_ms:
			doc_id, record = self._create(user_id, station_id, session_id, now)
			log_event(
				"session_created",
				user_id=user_id,
				station_id=station_id,
				doc_id=doc_id,
				reason="expired",
				previous_doc_id=previous_id,
				idle_ms=idle_ms,
			)
			return SessionLookup(status="active", doc_id=doc_id, session=record, created=True)

		return SessionLookup(status="active", doc_id=previous_id, session=existing)

	def get_session(self, doc_id: str, station_id: str) -> Optional[SessionRecord]:
		data = self._store.get(sessions_collection(station_id), doc_id)
		if data is None:
			return None
		return SessionRecord.model_validate(data)

	def check_message_limit(self, session: SessionRecord) -> MessageLimit:
		count = session.user_message_count()
		limit = self._settings.max_messages
		warning: Optional[str] = None
		if count == limit - 2:
			warning = "\n\n[2 more responses remaining for the advanced AI.]"
		elif count == limit - 1:
			warning = "\n\n[1 more response remaining for the advanced AI.]"
		elif count == limit:
			warning = "\n\n[Message limit for the advanced AI reached. Reverting to the previous model.]"
		return MessageLimit(count=count, has_reached_limit=count > limit, warning_message=warning)

	def update_thread_id(self, doc_id: str, thread_id: str, station_id: str) -> bool:
		try:
			self._store.update(sessions_collection(station_id), doc_id, {"thread_id": thread_id})
		except Exception as exc:
			log_error("thread_id_update_failed", doc_id=doc_id, thread_id=thread_id, station_id=station_id, error=str(exc))
			return False
		log_event("thread_id_updated", doc_id=doc_id, thread_id=thread_id, station_id=station_id)
		return True

	def add_message(self, doc_id: str, content: str, role: str, station_id: str) -> Optional[SessionRecord]:
		collection = sessions_collection(station_id)
		message = SessionMessage(role=role, content=content, timestamp=now_utc().isoformat())
		try:
			self._store.append(
				collection,
				doc_id,
				"messages",
				[message.model_dump()],
				{"last_activity": self._clock()},
			)
			data = self._store.get(collection, doc_id)
			if data is None:
				raise DocumentNotFound(collection, doc_id)
			record = SessionRecord.model_validate(data)
		except DocumentNotFound:
			log_error("session_missing", doc_id=doc_id, station_id=station_id, role=role)
			return None
		except Exception as exc:
			log_error("session_message_failed", doc_id=doc_id, station_id=station_id, role=role, error=str(exc))
			return None
		log_event("session_message_added", doc_id=doc_id, station_id=station_id, role=role, timestamp=message.timestamp)
		return record
