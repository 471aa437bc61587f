"""In-memory store of the last known state of each generation request."""

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .providers.base import JobStatus, StatusReport

logger = logging.getLogger("bfl-mcp.registry")

# Parameters longer than this (base64 images) are shortened in listings
MAX_PARAMETER_PREVIEW = 100


@dataclass
class GenerationJob:
    """One provider-side generation request."""
    id: str
    model: Optional[str] = None
    parameters: Dict[str, Any] = field(default_factory=dict)
    polling_url: Optional[str] = None

    status: JobStatus = JobStatus.PENDING
    result_url: Optional[str] = None
    error: Optional[str] = None

    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def apply(self, report: StatusReport) -> bool:
        """Advance the job from a status observation.

        Terminal jobs never change. Returns True if the job changed.
        """
        if self.status.terminal or report.status is JobStatus.PENDING:
            return False

        self.status = report.status
        if report.status is JobStatus.READY:
            self.result_url = report.result_url
        else:
            self.error = report.error
        self.updated_at = datetime.now()
        return True

    def details(self) -> Dict[str, Any]:
        """Status view served for a single request."""
        return {
            "id": self.id,
            "status": self.status.value,
            "result": self.result_url,
            "error": self.error,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = self.details()
        data.update({
            "model": self.model,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "parameters": {
                key: value[:MAX_PARAMETER_PREVIEW] + "..."
                if isinstance(value, str) and len(value) > MAX_PARAMETER_PREVIEW else value
                for key, value in self.parameters.items()
            },
        })
        return data


class RequestRegistry:
    """Keyed store of GenerationJob entries, oldest first.

    Bounded by ``max_entries`` (oldest evicted first) and optionally by
    ``ttl_seconds`` measured from when an entry was recorded. Not locked:
    all access happens on one event loop.
    """

    def __init__(
        self,
        max_entries: int = 500,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._jobs: "OrderedDict[str, GenerationJob]" = OrderedDict()
        self._recorded_at: Dict[str, float] = {}

    def record(self, job: GenerationJob) -> GenerationJob:
        """Store a newly submitted job."""
        self._expire()
        self._jobs.pop(job.id, None)
        self._jobs[job.id] = job
        self._recorded_at[job.id] = self._clock()

        while len(self._jobs) > self.max_entries:
            evicted, _ = self._jobs.popitem(last=False)
            self._recorded_at.pop(evicted, None)
            logger.debug(f"Evicted request {evicted} (capacity {self.max_entries})")
        return job

    def get(self, request_id: str) -> Optional[GenerationJob]:
        self._expire()
        return self._jobs.get(request_id)

    def update(self, request_id: str, report: StatusReport) -> Optional[GenerationJob]:
        """Apply a status observation to a known job. Unknown ids are ignored."""
        job = self.get(request_id)
        if job is None:
            return None
        if job.apply(report):
            logger.info(f"Request {request_id} is now {job.status.value}")
        return job

    def snapshot(self) -> List[GenerationJob]:
        """All known jobs, oldest first."""
        self._expire()
        return list(self._jobs.values())

    def __len__(self) -> int:
        self._expire()
        return len(self._jobs)

    def __contains__(self, request_id: object) -> bool:
        self._expire()
        return request_id in self._jobs

    def _expire(self):
        if self.ttl_seconds is None:
            return
        cutoff = self._clock() - self.ttl_seconds
        expired = [rid for rid, ts in self._recorded_at.items() if ts <= cutoff]
        for rid in expired:
            self._jobs.pop(rid, None)
            del self._recorded_at[rid]
        if expired:
            logger.debug(f"Expired {len(expired)} request(s)")
