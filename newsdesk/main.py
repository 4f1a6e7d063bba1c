from __future__ import annotations

import hmac
import math
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse
from openai import OpenAI
from starlette.middleware.base import BaseHTTPMiddleware

from newsdesk.cleanup import cleanup_stations
from newsdesk.config import get_settings
from newsdesk.functions import TOOL_DEFINITIONS, FunctionDispatcher
from newsdesk.llm import (
	AssistantNotConfigured,
	AssistantOrchestrator,
	SessionNotFound,
	build_openai_client,
	configure_station_assistants,
	llm_env_status,
)
from newsdesk.logs import log_error, log_event, recent_lines
from newsdesk.models import (
	AssistantsConfigResponse,
	CleanupResponse,
	LLMDiagnostics,
	SessionResponse,
	StatusResponse,
	VectorStoreResponse,
	WebhookRequest,
	WebhookResponse,
)
from newsdesk.sessions import SessionManager
from newsdesk.storage import get_document_store
from newsdesk.submissions import SubmissionService
from newsdesk.vector_store import VectorStoreError, VectorStoreMaintainer

WEBHOOK_RETURN_HEADER = "X-Watson-Assistant-Webhook-Return"

settings = get_settings()
document_store = get_document_store(settings)
session_manager = SessionManager(document_store, settings)
submission_service = SubmissionService(document_store, settings)

_orchestrator: Optional[AssistantOrchestrator] = None

router = APIRouter()


class Unauthorized(Exception):
	pass


class UnknownStation(Exception):
	pass


class _RequestLoggerMiddleware(BaseHTTPMiddleware):
	async def dispatch(self, request: Request, call_next):
		# Capture headers with sensitive fields filtered
		safe_headers: dict[str, Any] = {}
		for k, v in request.headers.items():
			if k.lower() in {"authorization", "proxy-authorization"}:
				safe_headers[k] = "***redacted***"
			else:
				safe_headers[k] = v if len(v) <= 256 else (v[:256] + "...[truncated]")
		raw_body = await request.body()
		display_body = raw_body.decode("utf-8", errors="replace")
		if len(display_body) > 2048:
			display_body = display_body[:2048] + "...[truncated]"
		log_event(
			"incoming_request",
			method=request.method,
			path=request.url.path,
			query=str(request.url.query or ""),
			headers=safe_headers,
			body=display_body,
		)

		# Rebuild the receive stream so downstream can read the body again
		async def _receive():
			return {"type": "http.request", "body": raw_body, "more_body": False}

		request._receive = _receive  # type: ignore[attr-defined]
		return await call_next(request)


def get_session_manager() -> SessionManager:
	return session_manager


def get_orchestrator() -> Optional[AssistantOrchestrator]:
	"""Build the assistant orchestrator once an API key is configured."""
	global _orchestrator
	if _orchestrator is None:
		client = build_openai_client(settings)
		if client is None:
			return None
		dispatcher = FunctionDispatcher(settings, submission_service)
		_orchestrator = AssistantOrchestrator(client, session_manager, dispatcher, settings)
	return _orchestrator


def get_openai_client() -> Optional[OpenAI]:
	return build_openai_client(settings)


def get_vector_maintainer(client: Optional[OpenAI] = Depends(get_openai_client)) -> Optional[VectorStoreMaintainer]:
	if client is None:
		return None
	return VectorStoreMaintainer(client, document_store, settings)


def verify_webhook_secret(authorization: Optional[str] = Header(default=None)) -> None:
	if not authorization:
		log_error("auth_missing_header")
		raise Unauthorized()
	# An unset secret rejects every caller
	if not settings.webhook_secret:
		log_error("auth_secret_not_configured")
		raise Unauthorized()
	expected = f"Basic {settings.webhook_secret}"
	if not hmac.compare_digest(authorization.encode(), expected.encode()):
		log_error("auth_invalid_header")
		raise Unauthorized()


def _check_station(station_id: str) -> str:
	station = station_id.lower()
	if station not in settings.stations:
		raise UnknownStation(station_id)
	return station


def _reply(text: str) -> JSONResponse:
	body = WebhookResponse.from_text(text)
	return JSONResponse(content=body.model_dump(), headers={WEBHOOK_RETURN_HEADER: "true"})


def _welcome_message(station_id: str) -> str:
	name = settings.station_name(station_id)
	return f"Hi! I'm Newsy, your {name} chatbot assistant. How can I help you today?"


def _cooldown_message(remaining_ms: int) -> str:
	minutes = max(1, math.ceil(remaining_ms / 60000))
	unit = "minute" if minutes == 1 else "minutes"
	return (
		"You've reached the message limit for the advanced AI. "
		f"Please try again in {minutes} {unit}."
	)


@router.post("/webhook/{station_id}", response_model=WebhookResponse, dependencies=[Depends(verify_webhook_secret)])
def webhook(
	station_id: str,
	body: WebhookRequest,
	sessions: SessionManager = Depends(get_session_manager),
	orchestrator: Optional[AssistantOrchestrator] = Depends(get_orchestrator),
) -> JSONResponse:
	station = _check_station(station_id)
	user_id = body.user_id or body.session_id
	if not user_id:
		log_error("webhook_missing_identifiers", station_id=station)
		return JSONResponse(status_code=400, content={"error": "Missing session or user identifier"})

	try:
		lookup = sessions.get_or_create_user_session(user_id, station, body.session_id)
		if lookup.status == "cooldown":
			return _reply(_cooldown_message(lookup.remaining_cooldown_ms))
		doc_id = lookup.doc_id
		if doc_id is None:
			raise SessionNotFound(f"No active session for user {user_id}")

		text = body.text
		if not text:
			welcome = _welcome_message(station)
			sessions.add_message(doc_id, welcome, "assistant", station)
			log_event("webhook_welcome", station_id=station, doc_id=doc_id)
			return _reply(welcome)

		updated = sessions.add_message(doc_id, text, "user", station)
		if updated is None:
			raise SessionNotFound(f"Could not store message in session {doc_id}")
		limit = sessions.check_message_limit(updated)
		if orchestrator is None:
			raise AssistantNotConfigured("OPENAI_API_KEY is not configured")
		answer = orchestrator.get_response(station, doc_id, body.session_id, user_id, text)
		if limit.warning_message:
			answer = f"{answer}{limit.warning_message}"
		sessions.add_message(doc_id, answer, "assistant", station)
		log_event("webhook_replied", station_id=station, doc_id=doc_id, user_messages=limit.count)
		return _reply(answer)
	except Exception as exc:
		log_error("webhook_error", station_id=station, session_id=body.session_id, error=str(exc), error_type=type(exc).__name__)
		return JSONResponse(status_code=500, content={"error": "Internal Server Error"})


@router.get("/status", response_model=StatusResponse)
def status() -> StatusResponse:
	return StatusResponse(env=settings.env, stations=list(settings.stations), store_backend=settings.store_backend)


@router.get(
	"/sessions/{station_id}/{doc_id}",
	response_model=SessionResponse,
	dependencies=[Depends(verify_webhook_secret)],
)
def get_session(station_id: str, doc_id: str, sessions: SessionManager = Depends(get_session_manager)) -> Any:
	station = _check_station(station_id)
	record = sessions.get_session(doc_id, station)
	if record is None:
		return JSONResponse(status_code=404, content={"error": "Session not found"})
	return SessionResponse(doc_id=doc_id, session=record)


@router.get("/llm/status", response_model=LLMDiagnostics)
def llm_status() -> LLMDiagnostics:
	return LLMDiagnostics(**llm_env_status(settings))


@router.get("/logs")
def get_logs(limit: int = Query(default=100, ge=1, le=1000)) -> dict[str, Any]:
	return {"lines": recent_lines(limit)}


@router.post("/jobs/cleanup", response_model=CleanupResponse, dependencies=[Depends(verify_webhook_secret)])
def run_cleanup() -> CleanupResponse:
	return cleanup_stations(document_store, settings.stations, settings.timezone)


@router.post("/jobs/vector-store", response_model=VectorStoreResponse, dependencies=[Depends(verify_webhook_secret)])
def run_vector_store_job(maintainer: Optional[VectorStoreMaintainer] = Depends(get_vector_maintainer)) -> Any:
	if maintainer is None:
		return JSONResponse(status_code=503, content={"error": "OPENAI_API_KEY is not configured"})
	return maintainer.optimize()


@router.post("/jobs/documents", response_model=VectorStoreResponse, dependencies=[Depends(verify_webhook_secret)])
def run_document_sync(maintainer: Optional[VectorStoreMaintainer] = Depends(get_vector_maintainer)) -> Any:
	if maintainer is None:
		return JSONResponse(status_code=503, content={"error": "OPENAI_API_KEY is not configured"})
	try:
		return maintainer.sync_documents(settings.documents_dir)
	except VectorStoreError as exc:
		log_error("document_sync_failed", error=str(exc), documents_dir=settings.documents_dir)
		return JSONResponse(status_code=422, content={"error": str(exc)})


@router.post("/jobs/assistants", response_model=AssistantsConfigResponse, dependencies=[Depends(verify_webhook_secret)])
def run_assistant_config(client: Optional[OpenAI] = Depends(get_openai_client)) -> Any:
	if client is None:
		return JSONResponse(status_code=503, content={"error": "OPENAI_API_KEY is not configured"})
	updated = configure_station_assistants(client, settings)
	return AssistantsConfigResponse(updated=updated, tools=[t["function"]["name"] for t in TOOL_DEFINITIONS])


app = FastAPI(title="Newsdesk Assistant Webhook", version="1.0.0")
app.add_middleware(_RequestLoggerMiddleware)
app.include_router(router)


@app.exception_handler(Unauthorized)
async def _unauthorized(request: Request, exc: Unauthorized) -> JSONResponse:
	return JSONResponse(status_code=401, content={"error": "Unauthorized"})


@app.exception_handler(UnknownStation)
async def _unknown_station(request: Request, exc: UnknownStation) -> JSONResponse:
	log_error("unknown_station", station_id=str(exc), path=request.url.path)
	return JSONResponse(status_code=404, content={"error": f"Unknown station: {exc}"})
