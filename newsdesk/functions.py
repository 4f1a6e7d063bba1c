from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional
from urllib.parse import quote_plus

import httpx

from newsdesk.config import Settings
from newsdesk.logs import log_error, log_event
from newsdesk.submissions import SubmissionService
from newsdesk.timeutils import format_current_time_central
from newsdesk.weather import get_weather

GOOGLE_SEARCH_URL = "https://www.google.com/search"

# Function name -> submission type recorded and relayed
SUBMISSION_TYPES: dict[str, str] = {
	"submit_story": "story",
	"submit_digital_feedback": "digital feedback",
	"submit_broadcast_feedback": "broadcast feedback",
	"submit_digital_technical": "digital technical",
	"submit_broadcast_technical": "broadcast technical",
	"submit_advertising": "advertising",
}


class UnknownFunctionError(Exception):
	def __init__(self, name: str) -> None:
		super().__init__(f"Unknown function: {name}")
		self.name = name


@dataclass(frozen=True)
class FunctionContext:
	"""Who asked for a function call: the conversation and station it belongs to."""

	session_id: Optional[str]
	user_id: Optional[str]
	station_id: str


Handler = Callable[[dict[str, Any], FunctionContext], Any]


def format_google_search(args: dict[str, Any]) -> dict[str, str]:
	keywords = args.get("keywords") or []
	if isinstance(keywords, str):
		keywords = keywords.split()
	terms = [quote_plus(str(k)) for k in keywords if str(k).strip()]
	site = args.get("siteUrl") or args.get("site_url")
	if site:
		terms.append(quote_plus(str(site), safe=":/"))
	return {"google_url": f"{GOOGLE_SEARCH_URL}?q={'+'.join(terms)}"}


class FunctionDispatcher:
	"""Maps function names requested by the assistant to local handlers."""

	def __init__(
		self,
		settings: Settings,
		submissions: SubmissionService,
		weather_transport: Optional[httpx.BaseTransport] = None,
	) -> None:
		self._settings = settings
		self._submissions = submissions
		self._weather_transport = weather_transport
		self._handlers: dict[str, Handler] = {
			"get_weather": self._get_weather,
			"format_google_search": lambda args, ctx: format_google_search(args),
			"get_current_time": self._get_current_time,
		}
		for name, submission_type in SUBMISSION_TYPES.items():
			self._handlers[name] = self._submission_handler(submission_type)

	def register(self, name: str, handler: Handler) -> None:
		self._handlers[name] = handler

	def names(self) -> list[str]:
		return sorted(self._handlers)

	def execute(self, name: str, args: dict[str, Any], context: FunctionContext) -> Any:
		log_event("function_executing", function=name, session_id=context.session_id, station_id=context.station_id)
		handler = self._handlers.get(name)
		if handler is None:
			log_error("function_unknown", function=name, session_id=context.session_id)
			raise UnknownFunctionError(name)
		try:
			return handler(args, context)
		except Exception as exc:
			log_error("function_failed", function=name, session_id=context.session_id, error=str(exc))
			raise

	def _get_weather(self, args: dict[str, Any], context: FunctionContext) -> dict[str, Any]:
		return get_weather(str(args.get("location", "")), self._settings.weather_api_key, self._weather_transport)

	def _get_current_time(self, args: dict[str, Any], context: FunctionContext) -> dict[str, str]:
		kind = str(args.get("format", "")) if isinstance(args, dict) else ""
		return {"time": format_current_time_central(kind, self._settings.timezone)}

	def _submission_handler(self, submission_type: str) -> Handler:
		def handle(args: dict[str, Any], context: FunctionContext) -> dict[str, Any]:
			station_id = args.get("stationId") or context.station_id
			return self._submissions.handle_submission(
				submission_type,
				args,
				context.session_id,
				context.user_id,
				station_id,
			)

		return handle


def _submission_tool(name: str, description: str) -> dict[str, Any]:
	return {
		"type": "function",
		"function": {
			"name": name,
			"description": description,
			"parameters": {
				"type": "object",
				"properties": {
					"description": {
						"type": "string",
						"description": "Full details provided by the user, including contact information and location if given",
					},
				},
				"required": ["description"],
			},
		},
	}


TOOL_DEFINITIONS: list[dict[str, Any]] = [
	{
		"type": "function",
		"function": {
			"name": "get_weather",
			"description": "Current conditions and a three day forecast for a location",
			"parameters": {
				"type": "object",
				"properties": {"location": {"type": "string", "description": "City, zip code or place name"}},
				"required": ["location"],
			},
		},
	},
	{
		"type": "function",
		"function": {
			"name": "format_google_search",
			"description": "Build a Google search link restricted to a site",
			"parameters": {
				"type": "object",
				"properties": {
					"keywords": {"type": "array", "items": {"type": "string"}},
					"siteUrl": {"type": "string", "description": "Site to search, e.g. newson6.com"},
				},
				"required": ["keywords", "siteUrl"],
			},
		},
	},
	{
		"type": "function",
		"function": {
			"name": "get_current_time",
			"description": "The current date and time in Central time",
			"parameters": {"type": "object", "properties": {}},
		},
	},
	{
		"type": "function",
		"function": {
			"name": "document_search",
			"description": "Ask the station document assistant a question about station policies and documents",
			"parameters": {
				"type": "object",
				"properties": {"query": {"type": "string"}},
				"required": ["query"],
			},
		},
	},
	_submission_tool("submit_story", "Submit a story idea or news tip to the news team"),
	_submission_tool("submit_digital_feedback", "Submit feedback about the website or apps"),
	_submission_tool("submit_broadcast_feedback", "Submit feedback about on-air programming"),
	_submission_tool("submit_digital_technical", "Report a technical problem with the website or apps"),
	_submission_tool("submit_broadcast_technical", "Report a technical problem with the broadcast signal"),
	_submission_tool("submit_advertising", "Submit an advertising inquiry"),
]
