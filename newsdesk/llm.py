from __future__ import annotations

import json
import time
from typing import Any, Callable, Optional

from openai import OpenAI

from newsdesk.config import Settings
from newsdesk.functions import TOOL_DEFINITIONS, FunctionContext, FunctionDispatcher
from newsdesk.logs import llm_debug_logger, log_error, log_event, now_utc
from newsdesk.sessions import SessionManager

APOLOGY_MESSAGE = (
	"I apologize, but I'm having trouble processing that request. "
	"Please try asking in a different way."
)

DONE_STATUSES = {"completed", "requires_action"}
FAILED_STATUSES = {"failed", "expired", "cancelled", "incomplete"}
PENDING_STATUSES = {"queued", "in_progress", "cancelling"}


class RunFailedError(Exception):
	def __init__(self, status: str, thread_id: str, run_id: str) -> None:
		super().__init__(f"Run failed with status: {status}")
		self.status = status
		self.thread_id = thread_id
		self.run_id = run_id


class RunTimeoutError(Exception):
	pass


class FunctionExecutionTerminated(Exception):
	"""A requested function failed; the run was cancelled and must not be retried."""


class SessionNotFound(Exception):
	pass


class AssistantResponseError(Exception):
	pass


class AssistantNotConfigured(Exception):
	pass


def build_openai_client(settings: Settings) -> Optional[OpenAI]:
	if not settings.openai_api_key:
		return None
	return OpenAI(api_key=settings.openai_api_key)


def llm_env_status(settings: Settings) -> dict[str, Any]:
	"""Return a small diagnostic snapshot about assistant readiness without leaking secrets."""
	return {
		"library_available": True,
		"has_api_key": bool(settings.openai_api_key),
		"assistants_configured": sorted(s for s in settings.stations if settings.assistant_ids.get(s)),
		"doc_assistant_configured": bool(settings.doc_assistant_id),
	}


def configure_station_assistants(client: OpenAI, settings: Settings) -> list[str]:
	"""Install the function tool definitions on every configured station assistant."""
	updated: list[str] = []
	for station_id in settings.stations:
		assistant_id = settings.assistant_ids.get(station_id)
		if not assistant_id:
			log_error("assistant_not_configured", station_id=station_id)
			continue
		client.beta.assistants.update(assistant_id, tools=TOOL_DEFINITIONS)
		updated.append(station_id)
	log_event("assistants_configured", stations=updated, tool_count=len(TOOL_DEFINITIONS))
	return updated


def extract_reply(raw: str) -> str:
	"""
	Pull the user-facing message out of the assistant's answer.
	Assistants are instructed to answer {"response": {"message": ...}} or {"message": ...};
	answers that are not JSON objects are used verbatim.
	"""
	try:
		parsed = json.loads(raw)
	except ValueError:
		return raw.strip()
	if isinstance(parsed, str):
		return parsed.strip()
	if not isinstance(parsed, dict):
		return raw.strip()
	inner = parsed.get("response")
	if isinstance(inner, dict) and "message" in inner:
		message = inner["message"]
	elif "message" in parsed:
		message = parsed["message"]
	else:
		raise AssistantResponseError("Unexpected response format from assistant")
	if not isinstance(message, str):
		raise AssistantResponseError("Assistant message must be a string")
	return message


def _latest_assistant_text(messages: Any) -> Optional[str]:
	for message in getattr(messages, "data", None) or []:
		if getattr(message, "role", "assistant") != "assistant":
			continue
		for item in getattr(message, "content", None) or []:
			if getattr(item, "type", "") == "text":
				value = item.text.value
				if value and value.strip():
					return value
		return None
	return None


class AssistantOrchestrator:
	"""Drives one assistant turn: thread, message, run, polling and function calls."""

	def __init__(
		self,
		client: OpenAI,
		sessions: SessionManager,
		dispatcher: FunctionDispatcher,
		settings: Settings,
		sleep: Callable[[float], None] = time.sleep,
		clock: Callable[[], float] = time.monotonic,
	) -> None:
		self._client = client
		self._sessions = sessions
		self._dispatcher = dispatcher
		self._settings = settings
		self._sleep = sleep
		self._clock = clock
		dispatcher.register("document_search", self._document_search)

	def poll_run(self, thread_id: str, run_id: str) -> Any:
		started = self._clock()
		while True:
			run = self._client.beta.threads.runs.retrieve(run_id=run_id, thread_id=thread_id)
			if run.status in DONE_STATUSES:
				return run
			if run.status in FAILED_STATUSES:
				log_error("run_failed", status=run.status, thread_id=thread_id, run_id=run_id)
				raise RunFailedError(run.status, thread_id, run_id)
			if run.status not in PENDING_STATUSES:
				raise RunFailedError(f"unexpected:{run.status}", thread_id, run_id)
			if self._clock() - started > self._settings.poll_timeout:
				log_error("run_timed_out", thread_id=thread_id, run_id=run_id, timeout=self._settings.poll_timeout)
				raise RunTimeoutError(f"Run {run_id} timed out after {self._settings.poll_timeout}s")
			self._sleep(self._settings.poll_interval)

	def handle_function_calls(self, run: Any, thread_id: str, context: FunctionContext) -> Any:
		tool_calls = run.required_action.submit_tool_outputs.tool_calls
		tool_outputs: list[dict[str, str]] = []
		for call in tool_calls:
			name = call.function.name
			try:
				args = json.loads(call.function.arguments or "{}")
				if name.startswith("submit_"):
					args["stationId"] = context.station_id
				log_event("function_requested", function=name, args=args, session_id=context.session_id, station_id=context.station_id)
				result = self._dispatcher.execute(name, args, context)
			except Exception as exc:
				log_error("function_call_terminated", function=name, session_id=context.session_id, error=str(exc))
				# Cancel right away so the assistant does not retry the call
				self._client.beta.threads.runs.cancel(run_id=run.id, thread_id=thread_id)
				raise FunctionExecutionTerminated(name) from exc
			tool_outputs.append({"tool_call_id": call.id, "output": json.dumps(result, default=str)})
		return self._client.beta.threads.runs.submit_tool_outputs(
			run_id=run.id,
			thread_id=thread_id,
			tool_outputs=tool_outputs,
		)

	def _assistant_id(self, station_id: str) -> str:
		assistant_id = self._settings.assistant_ids.get(station_id)
		if not assistant_id:
			raise AssistantNotConfigured(f"No assistant configured for station {station_id}")
		return assistant_id

	def get_response(
		self,
		station_id: str,
		doc_id: str,
		session_id: Optional[str],
		user_id: Optional[str],
		text: str,
	) -> str:
		session = self._sessions.get_session(doc_id, station_id)
		if session is None:
			raise SessionNotFound(f"Session {doc_id} not found for station {station_id}")
		assistant_id = self._assistant_id(station_id)

		thread_id = session.thread_id
		if not thread_id:
			thread_id = self._client.beta.threads.create().id
			self._sessions.update_thread_id(doc_id, thread_id, station_id)

		self._client.beta.threads.messages.create(thread_id=thread_id, role="user", content=text)
		run = self._client.beta.threads.runs.create(thread_id=thread_id, assistant_id=assistant_id)
		run = self.poll_run(thread_id, run.id)

		context = FunctionContext(session_id=doc_id, user_id=user_id, station_id=station_id)
		function_calls = 0
		while run.status == "requires_action":
			try:
				run = self.handle_function_calls(run, thread_id, context)
			except FunctionExecutionTerminated:
				self._log_roundtrip(station_id, doc_id, thread_id, run.id, text, APOLOGY_MESSAGE, function_calls)
				return APOLOGY_MESSAGE
			function_calls += 1
			run = self.poll_run(thread_id, run.id)

		messages = self._client.beta.threads.messages.list(thread_id=thread_id, order="desc", limit=10)
		raw = _latest_assistant_text(messages)
		if raw is None:
			log_error("assistant_response_empty", thread_id=thread_id, session_id=session_id, station_id=station_id)
			raise AssistantResponseError("Invalid response format from assistant")
		reply = extract_reply(raw)
		self._log_roundtrip(station_id, doc_id, thread_id, run.id, text, reply, function_calls, raw=raw)
		return reply

	def ask_once(self, assistant_id: str, text: str) -> str:
		"""Ask an assistant a single question in a throwaway thread."""
		thread_id = self._client.beta.threads.create().id
		self._client.beta.threads.messages.create(thread_id=thread_id, role="user", content=text)
		run = self._client.beta.threads.runs.create(thread_id=thread_id, assistant_id=assistant_id)
		run = self.poll_run(thread_id, run.id)
		if run.status != "completed":
			# Helper assistants have no functions to call
			self._client.beta.threads.runs.cancel(run_id=run.id, thread_id=thread_id)
			raise RunFailedError(run.status, thread_id, run.id)
		messages = self._client.beta.threads.messages.list(thread_id=thread_id, order="desc", limit=10)
		answer = _latest_assistant_text(messages)
		if answer is None:
			raise AssistantResponseError("Invalid response from document assistant")
		return answer

	def _document_search(self, args: dict[str, Any], context: FunctionContext) -> dict[str, str]:
		if not self._settings.doc_assistant_id:
			raise AssistantNotConfigured("DOC_ASSISTANT_ID is not configured")
		query = str(args.get("query", "")).strip()
		if not query:
			raise ValueError("document_search requires a query")
		answer = self.ask_once(self._settings.doc_assistant_id, query)
		log_event("document_search_completed", query=query, session_id=context.session_id)
		return {"answer": answer}

	def _log_roundtrip(
		self,
		station_id: str,
		doc_id: str,
		thread_id: str,
		run_id: str,
		user_text: str,
		reply: str,
		function_calls: int,
		raw: Optional[str] = None,
	) -> None:
		if not self._settings.llm_debug:
			return
		record = {
			"timestamp": now_utc().isoformat(),
			"type": "assistant_roundtrip",
			"station_id": station_id,
			"doc_id": doc_id,
			"thread_id": thread_id,
			"run_id": run_id,
			"user_input": user_text,
			"function_calls": function_calls,
			"assistant_response": {"raw": raw, "text": reply},
		}
		llm_debug_logger.info(json.dumps(record, ensure_ascii=False, default=str))
