from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Callable, Optional

from openai import OpenAI

from newsdesk.config import Settings
from newsdesk.logs import log_error, log_event, log_warning
from newsdesk.models import VectorStoreResponse
from newsdesk.storage import SETTINGS_COLLECTION, DocumentStore

VECTOR_STORE_DOC = "vector_store"
VECTOR_STORE_NAME = "Newsdesk Doc Assistant Store"

CHUNK_SIZE_TOKENS = 400
CHUNK_OVERLAP_TOKENS = 100
MAX_NUM_RESULTS = 5
SCORE_THRESHOLD = 0.7
RANKER = "default_2024_08_21"

BATCH_POLL_INTERVAL = 1.0
BATCH_TIMEOUT = 600.0


class VectorStoreError(Exception):
	pass


def current_vector_store_id(store: DocumentStore, settings: Settings) -> Optional[str]:
	doc = store.get(SETTINGS_COLLECTION, VECTOR_STORE_DOC)
	if doc and doc.get("vector_store_id"):
		return doc["vector_store_id"]
	return settings.vector_store_id


def _file_search_tool(assistant: Any) -> Any:
	for tool in getattr(assistant, "tools", None) or []:
		if getattr(tool, "type", None) == "file_search":
			return tool
	return None


class VectorStoreMaintainer:
	"""Builds the document assistant's vector store from local files and rebuilds it with the intended chunking."""

	def __init__(
		self,
		client: OpenAI,
		store: DocumentStore,
		settings: Settings,
		sleep: Callable[[float], None] = time.sleep,
		clock: Callable[[], float] = time.monotonic,
	) -> None:
		self._client = client
		self._store = store
		self._settings = settings
		self._sleep = sleep
		self._clock = clock

	def needs_optimization(self, vector_store_id: str) -> bool:
		try:
			files = self._client.vector_stores.files.list(vector_store_id=vector_store_id, limit=1)
			if not files.data:
				log_warning("vector_store_empty", vector_store_id=vector_store_id)
				return False
			strategy = files.data[0].chunking_strategy
			static = getattr(strategy, "static", None)
			chunking_ok = (
				getattr(strategy, "type", None) == "static"
				and static is not None
				and static.max_chunk_size_tokens == CHUNK_SIZE_TOKENS
				and static.chunk_overlap_tokens == CHUNK_OVERLAP_TOKENS
			)

			assistant = self._client.beta.assistants.retrieve(self._settings.doc_assistant_id)
			tool = _file_search_tool(assistant)
			file_search = getattr(tool, "file_search", None)
			ranking = getattr(file_search, "ranking_options", None)
			tool_ok = (
				file_search is not None
				and file_search.max_num_results == MAX_NUM_RESULTS
				and ranking is not None
				and ranking.score_threshold == SCORE_THRESHOLD
			)
		except Exception as exc:
			# An unreadable store is rebuilt rather than left alone
			log_error("vector_store_check_failed", vector_store_id=vector_store_id, error=str(exc))
			return True

		if chunking_ok and tool_ok:
			log_event("vector_store_already_optimized", vector_store_id=vector_store_id)
			return False
		log_event(
			"vector_store_optimization_needed",
			vector_store_id=vector_store_id,
			chunking_ok=chunking_ok,
			tool_ok=tool_ok,
		)
		return True

	def existing_file_ids(self, vector_store_id: str) -> list[str]:
		return [f.id for f in self._client.vector_stores.files.list(vector_store_id=vector_store_id, limit=100)]

	def _wait_for_batch(self, vector_store_id: str, batch: Any) -> None:
		started = self._clock()
		while batch.status == "in_progress":
			if self._clock() - started > BATCH_TIMEOUT:
				raise VectorStoreError(f"File batch {batch.id} did not finish within {BATCH_TIMEOUT}s")
			self._sleep(BATCH_POLL_INTERVAL)
			batch = self._client.vector_stores.file_batches.retrieve(batch_id=batch.id, vector_store_id=vector_store_id)
		if batch.status != "completed":
			raise VectorStoreError(f"File batch {batch.id} ended with status {batch.status}")

	def _build_store(self, file_ids: list[str]) -> str:
		new_store = self._client.vector_stores.create(name=VECTOR_STORE_NAME)
		batch = self._client.vector_stores.file_batches.create(
			vector_store_id=new_store.id,
			file_ids=file_ids,
			chunking_strategy={
				"type": "static",
				"static": {
					"max_chunk_size_tokens": CHUNK_SIZE_TOKENS,
					"chunk_overlap_tokens": CHUNK_OVERLAP_TOKENS,
				},
			},
		)
		self._wait_for_batch(new_store.id, batch)
		return new_store.id

	def _attach_to_doc_assistant(self, vector_store_id: str) -> None:
		self._client.beta.assistants.update(
			self._settings.doc_assistant_id,
			tools=[
				{
					"type": "file_search",
					"file_search": {
						"max_num_results": MAX_NUM_RESULTS,
						"ranking_options": {"ranker": RANKER, "score_threshold": SCORE_THRESHOLD},
					},
				}
			],
			tool_resources={"file_search": {"vector_store_ids": [vector_store_id]}},
		)

	def _record_store(self, vector_store_id: str, file_ids: list[str]) -> None:
		self._store.set(
			SETTINGS_COLLECTION,
			VECTOR_STORE_DOC,
			{"vector_store_id": vector_store_id, "file_ids": file_ids, "updated": int(time.time() * 1000)},
		)

	def optimize(self) -> VectorStoreResponse:
		if not self._settings.doc_assistant_id:
			return VectorStoreResponse(status="skipped", reason="no_doc_assistant")
		old_id = current_vector_store_id(self._store, self._settings)
		if not old_id:
			log_warning("vector_store_id_missing")
			return VectorStoreResponse(status="skipped", reason="no_vector_store")
		if not self.needs_optimization(old_id):
			return VectorStoreResponse(status="skipped", reason="already_optimized", vector_store_id=old_id)

		file_ids = self.existing_file_ids(old_id)
		if not file_ids:
			log_warning("vector_store_has_no_files", vector_store_id=old_id)
			return VectorStoreResponse(status="skipped", reason="no_files", vector_store_id=old_id)

		new_id = self._build_store(file_ids)
		self._attach_to_doc_assistant(new_id)
		# Record the new id before the old store goes away
		self._record_store(new_id, file_ids)
		self._client.vector_stores.delete(old_id)

		log_event(
			"vector_store_optimized",
			vector_store_id=new_id,
			previous_vector_store_id=old_id,
			file_count=len(file_ids),
		)
		return VectorStoreResponse(
			status="optimized",
			vector_store_id=new_id,
			previous_vector_store_id=old_id,
			file_count=len(file_ids),
		)

	def sync_documents(self, documents_dir: str | Path) -> VectorStoreResponse:
		"""
		Upload every .txt file in `documents_dir` and point the document assistant at a fresh store built from them.
		The previous store is not deleted.
		"""
		if not self._settings.doc_assistant_id:
			return VectorStoreResponse(status="skipped", reason="no_doc_assistant")
		folder = Path(documents_dir)
		paths = sorted(p for p in folder.glob("*.txt") if p.is_file()) if folder.is_dir() else []
		if not paths:
			raise VectorStoreError(f"No .txt files found in {folder}")

		previous_id = current_vector_store_id(self._store, self._settings)
		file_ids: list[str] = []
		for path in paths:
			with path.open("rb") as fh:
				uploaded = self._client.files.create(file=fh, purpose="assistants")
			file_ids.append(uploaded.id)
		log_event("documents_uploaded", count=len(file_ids), documents_dir=str(folder))

		new_id = self._build_store(file_ids)
		self._attach_to_doc_assistant(new_id)
		self._record_store(new_id, file_ids)

		log_event(
			"documents_synced",
			vector_store_id=new_id,
			previous_vector_store_id=previous_id,
			file_count=len(file_ids),
		)
		return VectorStoreResponse(
			status="synced",
			vector_store_id=new_id,
			previous_vector_store_id=previous_id,
			file_count=len(file_ids),
		)
