from __future__ import annotations

import os

# Settings are read once at import time, so pin them before the app loads
os.environ["WEBHOOK_SECRET"] = "test-secret"
os.environ["STORE_BACKEND"] = "memory"
os.environ["STATIONS"] = "n6,n9"
os.environ["ASSISTANT_ID_N6"] = "asst_n6"
os.environ["ASSISTANT_ID_N9"] = "asst_n9"
os.environ["STATION_NAME_N6"] = "News On 6"
os.environ["ZAPIER_WEBHOOK_URL"] = "https://relay.test/hook"
os.environ["LLM_DEBUG_LOG"] = "false"

import json
from types import SimpleNamespace
from typing import Any, Generator, Optional

import pytest

from newsdesk.config import Settings


def make_run(status: str, run_id: str = "run_1", tool_calls: Optional[list[Any]] = None) -> SimpleNamespace:
	required_action = None
	if tool_calls is not None:
		required_action = SimpleNamespace(submit_tool_outputs=SimpleNamespace(tool_calls=tool_calls))
	return SimpleNamespace(id=run_id, status=status, required_action=required_action)


def make_tool_call(call_id: str, name: str, args: dict[str, Any]) -> SimpleNamespace:
	return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=json.dumps(args)))


def text_message(value: str, role: str = "assistant") -> SimpleNamespace:
	return SimpleNamespace(role=role, content=[SimpleNamespace(type="text", text=SimpleNamespace(value=value))])


class FakeMessages:
	def __init__(self) -> None:
		self.posted: list[tuple[str, str, str]] = []
		self.replies: list[str] = []

	def create(self, thread_id: str, role: str, content: str) -> SimpleNamespace:
		self.posted.append((thread_id, role, content))
		return SimpleNamespace(id=f"msg_{len(self.posted)}")

	def list(self, thread_id: str, order: str = "desc", limit: int = 20) -> SimpleNamespace:
		data = [text_message(v) for v in reversed(self.replies)]
		return SimpleNamespace(data=data[:limit])


class FakeRuns:
	def __init__(self) -> None:
		# Runs handed back by retrieve(), in order
		self.script: list[SimpleNamespace] = []
		self.created: list[tuple[str, str]] = []
		self.cancelled: list[str] = []
		self.submitted: list[list[dict[str, str]]] = []

	def create(self, thread_id: str, assistant_id: str) -> SimpleNamespace:
		self.created.append((thread_id, assistant_id))
		return make_run("queued")

	def retrieve(self, run_id: str, thread_id: str) -> SimpleNamespace:
		return self.script.pop(0)

	def cancel(self, run_id: str, thread_id: str) -> SimpleNamespace:
		self.cancelled.append(run_id)
		return make_run("cancelling", run_id)

	def submit_tool_outputs(self, run_id: str, thread_id: str, tool_outputs: list[dict[str, str]]) -> SimpleNamespace:
		self.submitted.append(tool_outputs)
		return make_run("queued", run_id)


class FakeThreads:
	def __init__(self) -> None:
		self.created: list[str] = []
		self.messages = FakeMessages()
		self.runs = FakeRuns()

	def create(self) -> SimpleNamespace:
		thread_id = f"thread_{len(self.created) + 1}"
		self.created.append(thread_id)
		return SimpleNamespace(id=thread_id)


class FakeOpenAI:
	"""Stands in for openai.OpenAI with just the Assistants calls the app makes."""

	def __init__(self) -> None:
		self.beta = SimpleNamespace(threads=FakeThreads())

	@property
	def threads(self) -> FakeThreads:
		return self.beta.threads


@pytest.fixture
def settings() -> Settings:
	return Settings(
		webhook_secret="test-secret",
		stations=("n6", "n9"),
		assistant_ids={"n6": "asst_n6", "n9": "asst_n9"},
		doc_assistant_id="asst_docs",
		weather_api_key="weather-key",
		relay_url="https://relay.test/hook",
		poll_interval=0.5,
		poll_timeout=20.0,
		llm_debug=False,
	)


@pytest.fixture
def fake_openai() -> FakeOpenAI:
	return FakeOpenAI()


@pytest.fixture(autouse=True)
def _clear_app_store() -> Generator[None, None, None]:
	from newsdesk import main

	main.document_store.clear()
	yield
	main.document_store.clear()
	main.app.dependency_overrides.clear()
