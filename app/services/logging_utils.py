"""
Structured logging for compliance runs.

Emits one JSON object per event on the "compliance_events" logger:
- classification results (keyword fast path or AI)
- COA ingestion results
- eligibility lookups
- audit and bulk runs

Usage:
    from app.services.logging_utils import log_compliance_event, ComplianceRunLogger

    log_compliance_event("eligibility_checked", {"zip": "73301", "state": "TX"})

    with ComplianceRunLogger("bulk_classify", total=25) as run:
        ...
        run.log_item("classified", {"product_id": pid})
"""

import json
import logging
import time
import uuid
from datetime import datetime
from typing import Optional, Dict, Any, List


logger = logging.getLogger("compliance_events")


class JSONFormatter(logging.Formatter):
    def format(self, record):
        if isinstance(record.msg, dict):
            return json.dumps(record.msg, default=str)
        return super().format(record)


if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    logger.addHandler(handler)
    logger.propagate = False


def log_compliance_event(event_type: str, payload: Dict[str, Any]) -> None:
    """
    Log a compliance event with structured data.

    Args:
        event_type: e.g. "product_classified", "coa_ingested", "eligibility_checked"
        payload: Event data (ids, counts, results)
    """
    event = {
        "timestamp": datetime.utcnow().isoformat(),
        "event_type": event_type,
        **_truncate_dict(payload),
    }
    logger.info(event)


class ComplianceRunLogger:
    """
    Context manager for logging a multi-item run (bulk classify, audit all).

    Logs run_start / run_end with duration and the number of item events.
    """

    def __init__(self, run_type: str, run_id: Optional[str] = None, **context):
        self.run_type = run_type
        self.run_id = run_id or str(uuid.uuid4())
        self.context = context
        self.start_time = None
        self.events: List[Dict[str, Any]] = []

    def __enter__(self):
        self.start_time = time.time()
        log_compliance_event("run_start", {
            "run_type": self.run_type,
            "run_id": self.run_id,
            **self.context,
        })
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration_ms = (time.time() - self.start_time) * 1000
        log_compliance_event("run_end", {
            "run_type": self.run_type,
            "run_id": self.run_id,
            "duration_ms": round(duration_ms, 2),
            "error": str(exc_val) if exc_val else None,
            "num_events": len(self.events),
        })

    def log_item(self, event_type: str, data: Optional[Dict[str, Any]] = None) -> None:
        event = {"event": event_type, "data": data}
        self.events.append(event)
        log_compliance_event(event_type, {"run_id": self.run_id, **(data or {})})


def _truncate_dict(d: Dict, max_str_len: int = 200) -> Dict:
    """Truncate string values in dict for logging."""
    if not d:
        return d

    result = {}
    for key, value in d.items():
        if isinstance(value, str) and len(value) > max_str_len:
            result[key] = value[:max_str_len] + "..."
        elif isinstance(value, list) and len(value) > 10:
            result[key] = value[:10]
        elif isinstance(value, dict):
            result[key] = _truncate_dict(value, max_str_len)
        else:
            result[key] = value
    return result
