"""
Job Orchestrator
================

Turns a tool invocation into a submitted (and optionally completed)
generation request, keeps the registry current, and retrieves the
generated image.

Request lifecycle:
    Pending --(Ready observed)--> Ready   [terminal]
    Pending --(Error observed)--> Error   [terminal]

A polling timeout leaves the request Pending; a later status query can
still resolve it.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .errors import (
    GenerationFailed,
    InvalidModel,
    MissingArtifact,
    NotReady,
    PollingTimeout,
)
from .poller import Poller
from .providers.base import ImageFormat, JobStatus, detect_image_format
from .providers.bfl import BFLClient
from .registry import GenerationJob, RequestRegistry

logger = logging.getLogger("bfl-mcp.orchestrator")

# Fields consumed here rather than forwarded to the provider
ORCHESTRATION_FIELDS = ("model", "wait")

DEFAULT_IMAGE_MIME_TYPE = ImageFormat.PNG.mime_type


class OutcomeKind(Enum):
    SUBMITTED = "submitted"
    READY = "ready"
    FAILED = "failed"
    TIMEOUT = "timeout"


@dataclass
class GenerationOutcome:
    """Result of a generate_image invocation."""
    kind: OutcomeKind
    request_id: str
    model: str
    image_url: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0

    @property
    def success(self) -> bool:
        return self.kind in (OutcomeKind.SUBMITTED, OutcomeKind.READY)


def resolve_endpoint(model: str) -> str:
    """Map a model variant to its provider endpoint path."""
    model_info = BFLClient.MODELS.get(model)
    if model_info is None:
        raise InvalidModel(model, BFLClient.MODELS)
    return model_info.endpoint


def build_payload(parameters: Dict[str, Any]) -> Dict[str, Any]:
    """Provider request body: every given parameter except orchestration fields."""
    return {
        key: value
        for key, value in parameters.items()
        if key not in ORCHESTRATION_FIELDS and value is not None
    }


class JobOrchestrator:
    """Owns job creation and status transitions."""

    def __init__(
        self,
        client: BFLClient,
        poller: Poller,
        registry: RequestRegistry,
        output_dir: Optional[Path] = None,
    ):
        self.client = client
        self.poller = poller
        self.registry = registry
        self.output_dir = Path(output_dir) if output_dir else Path.cwd()

    async def generate_image(
        self,
        model: str,
        parameters: Dict[str, Any],
        wait: bool = True,
    ) -> GenerationOutcome:
        """Submit a generation request and, if ``wait``, poll it to completion.

        Raises:
            InvalidModel: before any network call.
            ProviderError, SchemaError: from submission or polling.
        """
        endpoint = resolve_endpoint(model)
        payload = build_payload(parameters)

        prompt = str(payload.get("prompt", ""))
        logger.info(f"Generating image: '{prompt[:50]}...' (model={model}, wait={wait})")

        submitted = await self.client.submit(endpoint, payload)
        job = self.registry.record(GenerationJob(
            id=submitted.id,
            model=model,
            parameters=payload,
            polling_url=submitted.polling_url,
        ))

        if not wait:
            return GenerationOutcome(kind=OutcomeKind.SUBMITTED, request_id=job.id, model=model)

        try:
            report = await self.poller.poll_until_terminal(job.polling_url, job.id)
        except PollingTimeout as e:
            return GenerationOutcome(
                kind=OutcomeKind.TIMEOUT,
                request_id=job.id,
                model=model,
                error=str(e),
                attempts=e.attempts,
            )

        self.registry.update(job.id, report)

        if report.status is JobStatus.ERROR:
            logger.warning(f"Request {job.id} failed: {report.error}")
            return GenerationOutcome(
                kind=OutcomeKind.FAILED,
                request_id=job.id,
                model=model,
                error=report.error,
            )

        logger.info(f"Request {job.id} ready")
        return GenerationOutcome(
            kind=OutcomeKind.READY,
            request_id=job.id,
            model=model,
            image_url=report.result_url,
        )

    async def get_status(self, request_id: str) -> GenerationJob:
        """Current state of a request, re-fetched from the provider.

        Known jobs are queried at the polling URL handed out on submission,
        which may be regional. A job the registry does not know goes through
        get_result and is still returned; the provider is the source of
        truth. Raises UnknownJob only when the provider says so.
        """
        known = self.registry.get(request_id)
        if known is not None and known.polling_url:
            report = await self.client.fetch_status(known.polling_url, request_id)
        else:
            report = await self.client.get_result(request_id)

        job = self.registry.update(request_id, report)
        if job is None:
            job = GenerationJob(id=report.id)
            job.apply(report)
        return job

    async def download_artifact(self, request_id: str, destination) -> Tuple[Path, int]:
        """Save the generated image to ``destination``.

        Relative paths are resolved against the output directory.
        Returns the written path and byte count.
        """
        url = await self._artifact_url(request_id)

        path = Path(destination).expanduser()
        if not path.is_absolute():
            path = self.output_dir / path

        written = await self.client.download(url, path, request_id)
        return path, written

    async def fetch_artifact_inline(self, request_id: str) -> Tuple[bytes, str]:
        """Fetch the generated image into memory with its MIME type."""
        url = await self._artifact_url(request_id)
        data, content_type = await self.client.fetch_artifact(url, request_id)

        mime_type = (content_type or "").split(";")[0].strip().lower()
        if not mime_type.startswith("image/"):
            detected = detect_image_format(data)
            mime_type = detected.mime_type if detected is not ImageFormat.UNKNOWN else DEFAULT_IMAGE_MIME_TYPE
        return data, mime_type

    def list_jobs(self) -> List[GenerationJob]:
        return self.registry.snapshot()

    async def _artifact_url(self, request_id: str) -> str:
        job = await self.get_status(request_id)

        if job.status is JobStatus.PENDING:
            raise NotReady(request_id)
        if job.status is JobStatus.ERROR:
            raise GenerationFailed(request_id, job.error)
        if not job.result_url:
            raise MissingArtifact(request_id)
        return job.result_url
