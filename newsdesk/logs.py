from __future__ import annotations

import json
import logging
import sys
from collections import deque
from datetime import datetime, timezone
from typing import Any

_LOG_BUFFER: "deque[str]" = deque(maxlen=1000)


class _InProcessLogHandler(logging.Handler):
	def emit(self, record: logging.LogRecord) -> None:
		try:
			_LOG_BUFFER.append(self.format(record))
		except Exception:
			self.handleError(record)


def _setup_logger() -> logging.Logger:
	logger = logging.getLogger("newsdesk")
	logger.setLevel(logging.INFO)
	if not logger.handlers:
		# Output raw JSON strings; keep formatter minimal
		handler = logging.StreamHandler(sys.stdout)
		handler.setFormatter(logging.Formatter("%(message)s"))
		logger.addHandler(handler)
		file_handler = logging.FileHandler("output.log", encoding="utf-8")
		file_handler.setFormatter(logging.Formatter("%(message)s"))
		logger.addHandler(file_handler)
		# Small in-memory buffer for the /logs endpoint
		buffer_handler = _InProcessLogHandler()
		buffer_handler.setFormatter(logging.Formatter("%(message)s"))
		logger.addHandler(buffer_handler)
	return logger


def _setup_llm_debug_logger() -> logging.Logger:
	logger = logging.getLogger("newsdesk.llm_debug")
	logger.setLevel(logging.INFO)
	logger.propagate = False
	if not logger.handlers:
		# Compact JSON lines, one per assistant roundtrip
		file_handler = logging.FileHandler("llm_output.log", encoding="utf-8")
		file_handler.setFormatter(logging.Formatter("%(message)s"))
		logger.addHandler(file_handler)
	return logger


logger = _setup_logger()
llm_debug_logger = _setup_llm_debug_logger()


def now_utc() -> datetime:
	return datetime.now(timezone.utc)


def _emit(level: int, message: str, fields: dict[str, Any]) -> None:
	record = {
		"timestamp": now_utc().isoformat(),
		"level": logging.getLevelName(level),
		"message": message,
		**fields,
	}
	logger.log(level, json.dumps(record, ensure_ascii=False, default=str))


def log_event(message: str, **fields: Any) -> None:
	_emit(logging.INFO, message, fields)


def log_warning(message: str, **fields: Any) -> None:
	_emit(logging.WARNING, message, fields)


def log_error(message: str, **fields: Any) -> None:
	_emit(logging.ERROR, message, fields)


def recent_lines(limit: int) -> list[str]:
	return list(_LOG_BUFFER)[-limit:]


def clear_buffer() -> None:
	_LOG_BUFFER.clear()
