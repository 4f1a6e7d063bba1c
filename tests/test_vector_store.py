from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

from newsdesk.storage import SETTINGS_COLLECTION, InMemoryDocumentStore
from newsdesk.vector_store import VECTOR_STORE_DOC, VectorStoreError, VectorStoreMaintainer


def _file(file_id: str, size: int, overlap: int) -> SimpleNamespace:
	strategy = SimpleNamespace(
		type="static",
		static=SimpleNamespace(max_chunk_size_tokens=size, chunk_overlap_tokens=overlap),
	)
	return SimpleNamespace(id=file_id, chunking_strategy=strategy)


def _assistant(max_results: int, threshold: float) -> SimpleNamespace:
	tool = SimpleNamespace(
		type="file_search",
		file_search=SimpleNamespace(
			max_num_results=max_results,
			ranking_options=SimpleNamespace(score_threshold=threshold),
		),
	)
	return SimpleNamespace(id="asst_docs", tools=[tool])


class _Page(list):
	@property
	def data(self) -> list:
		return list(self)


class _FakeVectorClient:
	def __init__(self, files: list[SimpleNamespace], assistant: SimpleNamespace, batch_statuses: list[str]) -> None:
		self.calls: list[tuple[str, Any]] = []
		self.uploads: list[tuple[str, str]] = []
		self._files = files
		self._assistant = assistant
		self._batch_statuses = batch_statuses
		outer = self

		class Files:
			def list(self, vector_store_id: str, limit: int = 20) -> _Page:
				return _Page(outer._files[:limit])

		class FileBatches:
			def create(self, vector_store_id: str, file_ids: list[str], chunking_strategy: dict) -> SimpleNamespace:
				outer.calls.append(("batch_create", (vector_store_id, file_ids, chunking_strategy)))
				return SimpleNamespace(id="batch_1", status="in_progress")

			def retrieve(self, batch_id: str, vector_store_id: str) -> SimpleNamespace:
				return SimpleNamespace(id=batch_id, status=outer._batch_statuses.pop(0))

		class VectorStores:
			files = Files()
			file_batches = FileBatches()

			def create(self, name: str) -> SimpleNamespace:
				outer.calls.append(("create", name))
				return SimpleNamespace(id="vs_new")

			def delete(self, vector_store_id: str) -> None:
				outer.calls.append(("delete", vector_store_id))

		class Uploads:
			def create(self, file, purpose: str) -> SimpleNamespace:
				outer.uploads.append((Path(file.name).name, purpose))
				return SimpleNamespace(id=f"file_up{len(outer.uploads)}")

		class Assistants:
			def retrieve(self, assistant_id: str) -> SimpleNamespace:
				return outer._assistant

			def update(self, assistant_id: str, **kwargs: Any) -> SimpleNamespace:
				outer.calls.append(("assistant_update", (assistant_id, kwargs)))
				return outer._assistant

		self.files = Uploads()
		self.vector_stores = VectorStores()
		self.beta = SimpleNamespace(assistants=Assistants())


@pytest.fixture
def job_settings(settings):
	return replace(settings, vector_store_id="vs_old")


def _maintainer(client, store, settings) -> VectorStoreMaintainer:
	return VectorStoreMaintainer(client, store, settings, sleep=lambda s: None)


def test_skips_when_already_optimized(job_settings) -> None:
	client = _FakeVectorClient([_file("file_1", 400, 100)], _assistant(5, 0.7), [])
	result = _maintainer(client, InMemoryDocumentStore(), job_settings).optimize()
	assert result.status == "skipped"
	assert result.reason == "already_optimized"
	assert client.calls == []


def test_skips_without_vector_store(settings) -> None:
	client = _FakeVectorClient([], _assistant(5, 0.7), [])
	result = _maintainer(client, InMemoryDocumentStore(), settings).optimize()
	assert result.reason == "no_vector_store"


def test_rebuilds_store_with_new_chunking(job_settings) -> None:
	store = InMemoryDocumentStore()
	files = [_file("file_1", 800, 400), _file("file_2", 800, 400)]
	client = _FakeVectorClient(files, _assistant(20, 0.0), ["in_progress", "completed"])

	result = _maintainer(client, store, job_settings).optimize()

	assert result.status == "optimized"
	assert result.vector_store_id == "vs_new"
	assert result.previous_vector_store_id == "vs_old"
	assert result.file_count == 2
	names = [name for name, _ in client.calls]
	assert names == ["create", "batch_create", "assistant_update", "delete"]
	_, (vs_id, file_ids, strategy) = client.calls[1]
	assert (vs_id, file_ids) == ("vs_new", ["file_1", "file_2"])
	assert strategy["static"] == {"max_chunk_size_tokens": 400, "chunk_overlap_tokens": 100}
	_, (assistant_id, update) = client.calls[2]
	assert assistant_id == "asst_docs"
	assert update["tool_resources"] == {"file_search": {"vector_store_ids": ["vs_new"]}}
	assert update["tools"][0]["file_search"]["max_num_results"] == 5
	assert client.calls[3] == ("delete", "vs_old")
	assert store.get(SETTINGS_COLLECTION, VECTOR_STORE_DOC)["vector_store_id"] == "vs_new"


def test_stored_vector_store_id_wins_over_environment(job_settings) -> None:
	store = InMemoryDocumentStore()
	store.set(SETTINGS_COLLECTION, VECTOR_STORE_DOC, {"vector_store_id": "vs_saved"})
	client = _FakeVectorClient([_file("file_1", 800, 400)], _assistant(5, 0.7), ["completed"])
	result = _maintainer(client, store, job_settings).optimize()
	assert result.previous_vector_store_id == "vs_saved"
	assert client.calls[-1] == ("delete", "vs_saved")


def test_failed_batch_keeps_old_store(job_settings) -> None:
	store = InMemoryDocumentStore()
	client = _FakeVectorClient([_file("file_1", 800, 400)], _assistant(5, 0.7), ["failed"])
	with pytest.raises(VectorStoreError):
		_maintainer(client, store, job_settings).optimize()
	assert ("delete", "vs_old") not in client.calls
	assert store.get(SETTINGS_COLLECTION, VECTOR_STORE_DOC) is None


def test_sync_uploads_documents_and_builds_store(job_settings, tmp_path) -> None:
	(tmp_path / "b_policies.txt").write_text("Comment policy")
	(tmp_path / "a_contacts.txt").write_text("Newsroom contacts")
	(tmp_path / "notes.md").write_text("ignored")
	store = InMemoryDocumentStore()
	client = _FakeVectorClient([], _assistant(5, 0.7), ["completed"])

	result = _maintainer(client, store, job_settings).sync_documents(tmp_path)

	assert result.status == "synced"
	assert result.vector_store_id == "vs_new"
	assert result.previous_vector_store_id == "vs_old"
	assert result.file_count == 2
	assert client.uploads == [("a_contacts.txt", "assistants"), ("b_policies.txt", "assistants")]
	names = [name for name, _ in client.calls]
	assert names == ["create", "batch_create", "assistant_update"]
	_, (_, file_ids, strategy) = client.calls[1]
	assert file_ids == ["file_up1", "file_up2"]
	assert strategy["static"]["max_chunk_size_tokens"] == 400
	_, (_, update) = client.calls[2]
	assert update["tool_resources"] == {"file_search": {"vector_store_ids": ["vs_new"]}}
	saved = store.get(SETTINGS_COLLECTION, VECTOR_STORE_DOC)
	assert saved["vector_store_id"] == "vs_new"
	assert saved["file_ids"] == ["file_up1", "file_up2"]


def test_sync_requires_text_documents(job_settings, tmp_path) -> None:
	client = _FakeVectorClient([], _assistant(5, 0.7), [])
	with pytest.raises(VectorStoreError):
		_maintainer(client, InMemoryDocumentStore(), job_settings).sync_documents(tmp_path)
	with pytest.raises(VectorStoreError):
		_maintainer(client, InMemoryDocumentStore(), job_settings).sync_documents(tmp_path / "missing")
	assert client.calls == []


def test_sync_skips_without_doc_assistant(job_settings, tmp_path) -> None:
	(tmp_path / "a.txt").write_text("x")
	client = _FakeVectorClient([], _assistant(5, 0.7), [])
	result = _maintainer(client, InMemoryDocumentStore(), replace(job_settings, doc_assistant_id=None)).sync_documents(tmp_path)
	assert result.reason == "no_doc_assistant"
	assert client.uploads == []
