from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
	"""Runtime configuration derived from environment variables."""

	port: int = 8000
	env: str = "dev"
	webhook_secret: str | None = None
	stations: tuple[str, ...] = ("n6", "n9")
	station_names: dict[str, str] = field(default_factory=dict)
	openai_api_key: str | None = None
	assistant_ids: dict[str, str] = field(default_factory=dict)
	doc_assistant_id: str | None = None
	vector_store_id: str | None = None
	documents_dir: str = "data/documents"
	weather_api_key: str | None = None
	relay_url: str | None = None
	store_backend: str = "memory"
	firestore_project: str | None = None
	poll_interval: float = 0.5
	poll_timeout: float = 20.0
	session_expiry_ms: int = 10 * 60 * 1000
	cooldown_ms: int = 180 * 60 * 1000
	max_messages: int = 20
	timezone: str = "America/Chicago"
	llm_debug: bool = True

	def station_name(self, station_id: str) -> str:
		return self.station_names.get(station_id) or station_id.upper()


def _int_env(name: str, default: int) -> int:
	raw = os.getenv(name)
	if raw is None or not raw.strip():
		return default
	try:
		return int(raw)
	except ValueError:
		return default


def _float_env(name: str, default: float) -> float:
	raw = os.getenv(name)
	if raw is None or not raw.strip():
		return default
	try:
		return float(raw)
	except ValueError:
		return default


def _parse_stations(raw: str) -> tuple[str, ...]:
	stations = [s.strip().lower() for s in raw.split(",") if s.strip()]
	return tuple(dict.fromkeys(stations))


def get_settings() -> Settings:
	"""Load settings from environment with sensible defaults."""
	stations = _parse_stations(os.getenv("STATIONS", "n6,n9"))
	assistant_ids: dict[str, str] = {}
	station_names: dict[str, str] = {}
	for station in stations:
		assistant_id = os.getenv(f"ASSISTANT_ID_{station.upper()}")
		if assistant_id:
			assistant_ids[station] = assistant_id
		name = os.getenv(f"STATION_NAME_{station.upper()}")
		if name:
			station_names[station] = name
	return Settings(
		port=_int_env("PORT", 8000),
		env=os.getenv("ENV", "dev"),
		webhook_secret=os.getenv("WEBHOOK_SECRET") or None,
		stations=stations,
		station_names=station_names,
		openai_api_key=os.getenv("OPENAI_API_KEY") or None,
		assistant_ids=assistant_ids,
		doc_assistant_id=os.getenv("DOC_ASSISTANT_ID") or None,
		vector_store_id=os.getenv("VECTOR_STORE_ID") or None,
		documents_dir=os.getenv("DOCUMENTS_DIR", "data/documents"),
		weather_api_key=os.getenv("WEATHER_API_KEY") or None,
		relay_url=os.getenv("ZAPIER_WEBHOOK_URL") or os.getenv("FORWARD_URL") or None,
		store_backend=os.getenv("STORE_BACKEND", "memory").lower().strip(),
		firestore_project=os.getenv("FIRESTORE_PROJECT") or None,
		poll_interval=_float_env("RUN_POLL_INTERVAL", 0.5),
		poll_timeout=_float_env("RUN_POLL_TIMEOUT", 20.0),
		session_expiry_ms=_int_env("SESSION_EXPIRY_MINUTES", 10) * 60 * 1000,
		cooldown_ms=_int_env("COOLDOWN_MINUTES", 180) * 60 * 1000,
		max_messages=_int_env("MAX_MESSAGES", 20),
		timezone=os.getenv("TIMEZONE", "America/Chicago"),
		llm_debug=os.getenv("LLM_DEBUG_LOG", "true").lower().strip() in _TRUTHY,
	)
