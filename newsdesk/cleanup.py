from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from newsdesk.logs import log_error, log_event
from newsdesk.models import CleanupResponse, StationCleanup
from newsdesk.storage import DocumentStore, sessions_collection, submissions_collection
from newsdesk.timeutils import DEFAULT_TIMEZONE, to_epoch_ms, week_window


def _delete_range(store: DocumentStore, collection: str, field: str, start_ms: int, end_ms: int) -> int:
	found = store.query(collection, filters=[(field, ">=", start_ms), (field, "<", end_ms)])
	if not found:
		return 0
	return store.delete_many(collection, [doc_id for doc_id, _ in found])


def cleanup_stations(
	store: DocumentStore,
	stations: Iterable[str],
	tz_name: str = DEFAULT_TIMEZONE,
	now: Optional[datetime] = None,
) -> CleanupResponse:
	"""Delete last week's sessions and submissions (previous Sunday to this Sunday) for every station."""
	week_start, week_end = week_window(tz_name, now)
	start_ms, end_ms = to_epoch_ms(week_start), to_epoch_ms(week_end)
	results: list[StationCleanup] = []
	try:
		for station_id in stations:
			results.append(
				StationCleanup(
					station_id=station_id,
					sessions_deleted=_delete_range(store, sessions_collection(station_id), "last_activity", start_ms, end_ms),
					submissions_deleted=_delete_range(store, submissions_collection(station_id), "created", start_ms, end_ms),
				)
			)
	except Exception as exc:
		log_error("cleanup_failed", error=str(exc), completed=[r.model_dump() for r in results])
		raise
	summary = CleanupResponse(
		week_start=week_start.isoformat(),
		week_end=week_end.isoformat(),
		results=results,
	)
	log_event("cleanup_completed", **summary.model_dump())
	return summary
