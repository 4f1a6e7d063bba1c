from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class SystemContext(BaseModel):
	user_id: Optional[str] = None


class GlobalContext(BaseModel):
	session_id: Optional[str] = None
	system: SystemContext = Field(default_factory=SystemContext)


class WebhookContext(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	global_: GlobalContext = Field(default_factory=GlobalContext, alias="global")


class WebhookInput(BaseModel):
	text: Optional[str] = None


class WebhookPayload(BaseModel):
	context: WebhookContext = Field(default_factory=WebhookContext)
	input: WebhookInput = Field(default_factory=WebhookInput)


class WebhookRequest(BaseModel):
	"""Push notification sent by the assistant platform for each user turn."""

	payload: WebhookPayload = Field(default_factory=WebhookPayload)

	@property
	def session_id(self) -> Optional[str]:
		return self.payload.context.global_.session_id

	@property
	def user_id(self) -> Optional[str]:
		return self.payload.context.global_.system.user_id

	@property
	def text(self) -> str:
		return (self.payload.input.text or "").strip()


class GenericResponse(BaseModel):
	response_type: Literal["text"] = "text"
	text: str


class WebhookOutput(BaseModel):
	generic: list[GenericResponse]


class WebhookResponse(BaseModel):
	"""Reply body understood by the assistant platform."""

	output: WebhookOutput

	@classmethod
	def from_text(cls, text: str) -> "WebhookResponse":
		return cls(output=WebhookOutput(generic=[GenericResponse(text=text)]))


class SessionMessage(BaseModel):
	"""A single conversation message stored for a session."""

	role: Literal["user", "assistant"]
	content: str
	timestamp: Optional[str] = None


class SessionRecord(BaseModel):
	"""Conversation record as persisted in the sessions collection."""

	user_id: str
	session_id: Optional[str] = None
	station_id: str
	thread_id: Optional[str] = None
	messages: list[SessionMessage] = Field(default_factory=list)
	last_activity: int = Field(..., description="Epoch milliseconds of the last message")
	created: Optional[int] = None

	def user_message_count(self) -> int:
		return sum(1 for m in self.messages if m.role == "user")


class SessionResponse(BaseModel):
	doc_id: str
	session: SessionRecord


class StatusResponse(BaseModel):
	"""Response model for GET /status."""

	service: Literal["newsdesk-assistant-webhook"] = "newsdesk-assistant-webhook"
	status: Literal["healthy"] = "healthy"
	env: str
	stations: list[str]
	store_backend: str


class LLMDiagnostics(BaseModel):
	library_available: bool
	has_api_key: bool
	assistants_configured: list[str]
	doc_assistant_configured: bool


class StationCleanup(BaseModel):
	station_id: str
	sessions_deleted: int
	submissions_deleted: int


class CleanupResponse(BaseModel):
	week_start: str
	week_end: str
	results: list[StationCleanup]


class VectorStoreResponse(BaseModel):
	status: Literal["skipped", "optimized", "synced"]
	reason: Optional[str] = None
	vector_store_id: Optional[str] = None
	previous_vector_store_id: Optional[str] = None
	file_count: int = 0


class AssistantsConfigResponse(BaseModel):
	"""Response model for POST /jobs/assistants."""

	updated: list[str]
	tools: list[str]


class ErrorResponse(BaseModel):
	error: str
