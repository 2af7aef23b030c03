"""
Request Ledger

In-memory, insertion-ordered record of every job submitted through this
server. ComfyUI is the source of truth for job outcome; reconcile() asks it
about each unfinished record and applies a 15 minute timeout so jobs that
never finish are eventually marked failed.

Records live for the process lifetime only.
"""

import asyncio
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .errors import DuplicateJobError, RequestTimeout
from .mcp_utils import log_structured
from .types import JobStatus, RequestStatus

GENERATION_TIMEOUT = timedelta(minutes=15)

TERMINAL_STATUSES = ("completed", "failed")

HistoryLookup = Callable[[str], Awaitable[JobStatus]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RequestRecord:
    """A submitted job and its last known status."""

    prompt_id: str
    prompt: str
    width: int
    height: int
    workflow_name: str
    negative_prompt: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)
    status: RequestStatus = "queued"
    queue_position: Optional[int] = None
    image_path: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready dict; unset optional fields are omitted."""
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return {k: v for k, v in data.items() if v is not None}


def apply_job_status(record: RequestRecord, job: JobStatus) -> None:
    """
    Move a non-terminal record to the state ComfyUI reports.

    Error wins over completed (ComfyUI can report both). Unknown jobs are
    left alone: still queued, or ComfyUI restarted and forgot them.
    """
    if record.is_terminal or not job.get("found"):
        return

    if job.get("errored"):
        record.status = "failed"
        messages = [m for m in job.get("messages") or [] if m]
        if messages:
            record.error_message = "; ".join(messages)
    elif job.get("completed"):
        record.status = "completed"
    else:
        record.status = "executing"


def _expire(record: RequestRecord, now: datetime, timeout: timedelta) -> bool:
    """Fail the record if it has been running longer than timeout."""
    elapsed = now - record.timestamp
    if elapsed <= timeout:
        return False

    error = RequestTimeout(int(elapsed.total_seconds() // 60), int(timeout.total_seconds() // 60))
    record.status = "failed"
    record.error_message = error.message
    log_structured("warning", "request_timed_out", prompt_id=record.prompt_id, **error.details)
    return True


async def _reconcile_one(
    record: RequestRecord,
    history_lookup: HistoryLookup,
    now: datetime,
    timeout: timedelta,
) -> RequestRecord:
    if record.is_terminal or _expire(record, now, timeout):
        return record

    try:
        job = await history_lookup(record.prompt_id)
    except Exception as e:
        # Unreachable ComfyUI must not fail the request or block the others
        log_structured("warning", "history_lookup_failed", prompt_id=record.prompt_id, error=str(e))
        return record

    apply_job_status(record, job)
    return record


async def reconcile_records(
    records: List[RequestRecord],
    history_lookup: HistoryLookup,
    now: Optional[datetime] = None,
    timeout: timedelta = GENERATION_TIMEOUT,
) -> List[RequestRecord]:
    """
    Refresh every unfinished record against ComfyUI, concurrently.

    Args:
        records: Records to update in place.
        history_lookup: async prompt_id -> JobStatus.
        now: Reference time for the timeout check (defaults to current UTC time).
        timeout: Age after which an unfinished record is failed.

    Returns:
        The same records, in the same order.
    """
    now = now or _utcnow()
    return list(
        await asyncio.gather(*(_reconcile_one(record, history_lookup, now, timeout) for record in records))
    )


class RequestLedger:
    """Append-only collection of RequestRecords keyed by prompt_id."""

    def __init__(self, timeout: timedelta = GENERATION_TIMEOUT):
        self.timeout = timeout
        self._records: Dict[str, RequestRecord] = {}

    def record(self, entry: RequestRecord) -> RequestRecord:
        """Append a new record in queued state."""
        if entry.prompt_id in self._records:
            raise DuplicateJobError(f"prompt_id already recorded: {entry.prompt_id}")
        entry.status = "queued"
        self._records[entry.prompt_id] = entry
        return entry

    def get(self, prompt_id: str) -> Optional[RequestRecord]:
        return self._records.get(prompt_id)

    def entries(self) -> List[RequestRecord]:
        return list(self._records.values())

    def __contains__(self, prompt_id: str) -> bool:
        return prompt_id in self._records

    async def reconcile(self, history_lookup: HistoryLookup, now: Optional[datetime] = None) -> List[RequestRecord]:
        """Reconcile all records and return them in submission order."""
        return await reconcile_records(self.entries(), history_lookup, now=now, timeout=self.timeout)
