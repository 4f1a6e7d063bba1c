from __future__ import annotations

import time
from typing import Any, Optional

import httpx

from newsdesk.config import Settings
from newsdesk.logs import log_error, log_event
from newsdesk.storage import DocumentStore, submissions_collection
from newsdesk.timeutils import format_current_time_central


class SubmissionError(Exception):
	pass


class SubmissionService:
	"""Relays user submissions (stories, feedback) and keeps a record of each one."""

	def __init__(
		self,
		store: DocumentStore,
		settings: Settings,
		transport: Optional[httpx.BaseTransport] = None,
	) -> None:
		self._store = store
		self._settings = settings
		self._transport = transport

	def _post(self, url: str, payload: dict[str, Any]) -> httpx.Response:
		with httpx.Client(timeout=10, transport=self._transport) as client:
			return client.post(url, json=payload)

	def handle_submission(
		self,
		submission_type: str,
		args: dict[str, Any],
		session_id: Optional[str],
		user_id: Optional[str],
		station_id: str,
	) -> dict[str, Any]:
		url = self._settings.relay_url
		if not url:
			raise SubmissionError("No submission relay URL configured")

		payload = {
			**args,
			"stationId": station_id,
			"time": format_current_time_central("submission", self._settings.timezone),
		}
		resp = self._post(url, payload)
		if not resp.is_success:
			log_error(
				"submission_relay_failed",
				status_code=resp.status_code,
				type=submission_type,
				session_id=session_id,
				station_id=station_id,
			)
			return {"success": False}

		record = {
			"type": submission_type,
			"content": args.get("description"),
			"relay_response": "Success",
			"session_id": session_id,
			"user_id": user_id,
			"created": int(time.time() * 1000),
		}
		submission_id = self._store.add(submissions_collection(station_id), record)
		log_event(
			"submission_stored",
			type=submission_type,
			station_id=station_id,
			session_id=session_id,
			submission_id=submission_id,
			content=record["content"],
		)
		return {"success": True, "submission_id": submission_id}
