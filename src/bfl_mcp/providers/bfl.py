"""
Black Forest Labs Provider
==========================

Asynchronous FLUX image generation.

A submission returns a request id and a polling URL. The polling URL is
queried until the request is Ready (result.sample holds a signed image
URL, valid for 10 minutes) or Error.

API: https://api.bfl.ai/v1/{model}
     https://api.bfl.ai/v1/get_result?id={id}
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional, Dict, Any, Tuple
from urllib.parse import quote

import aiohttp

from ..errors import (
    ProviderError,
    ProviderConnectionError,
    SchemaError,
    TransferFailed,
    UnknownJob,
)
from .base import JobStatus, ProviderModel, StatusReport, SubmittedJob


logger = logging.getLogger("bfl-mcp.client")

COMMON_PARAMETERS = ("prompt", "seed", "prompt_upsampling", "safety_tolerance", "output_format")
KONTEXT_PARAMETERS = COMMON_PARAMETERS + (
    "aspect_ratio", "input_image", "input_image_2", "input_image_3", "input_image_4",
)

# Provider status strings that end a request unsuccessfully
ERROR_STATUSES = ("Error", "Failed", "Request Moderated", "Content Moderated")
NOT_FOUND_STATUS = "Task not found"

CHUNK_SIZE = 64 * 1024


class BFLClient:
    """Stateless client for the BFL API. No retries at this layer."""

    name = "bfl"

    BASE_URL = "https://api.bfl.ai"

    MODELS = {
        "flux-dev": ProviderModel(
            id="flux-dev",
            name="FLUX.1 [dev]",
            description="Open-weight FLUX model for text-to-image",
            endpoint="/v1/flux-dev",
            parameters=COMMON_PARAMETERS + ("width", "height"),
        ),
        "flux-pro": ProviderModel(
            id="flux-pro",
            name="FLUX 1.1 [pro]",
            description="Fast, high-fidelity text-to-image with optional Redux image prompt",
            endpoint="/v1/flux-pro-1.1",
            parameters=COMMON_PARAMETERS + ("width", "height", "image_prompt"),
        ),
        "flux-pro-ultra": ProviderModel(
            id="flux-pro-ultra",
            name="FLUX 1.1 [pro] Ultra",
            description="Up to 4MP output, raw mode and image remixing",
            endpoint="/v1/flux-pro-1.1-ultra",
            parameters=COMMON_PARAMETERS + ("aspect_ratio", "image_prompt", "raw", "image_prompt_strength"),
        ),
        "flux-kontext-pro": ProviderModel(
            id="flux-kontext-pro",
            name="FLUX Kontext Pro",
            description="Image editing and generation conditioned on reference images",
            endpoint="/v1/flux-kontext-pro",
            parameters=KONTEXT_PARAMETERS,
            default_output_format="png",
        ),
        "flux-kontext-max": ProviderModel(
            id="flux-kontext-max",
            name="FLUX Kontext Max",
            description="Highest quality Kontext model with improved typography",
            endpoint="/v1/flux-kontext-max",
            parameters=KONTEXT_PARAMETERS,
            default_output_format="png",
        ),
    }

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        timeout_seconds: float = 60,
    ):
        self.api_key = api_key
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "accept": "application/json",
            "x-key": self.api_key,
        }

    def result_url(self, request_id: str) -> str:
        """Build the get_result URL for a request id."""
        return f"{self.base_url}/v1/get_result?id={quote(request_id, safe='')}"

    async def submit(self, endpoint: str, payload: Dict[str, Any]) -> SubmittedJob:
        """Submit a generation request to a model endpoint."""
        url = f"{self.base_url}{endpoint}"
        headers = dict(self._headers, **{"Content-Type": "application/json"})

        logger.debug(f"POST {url} ({', '.join(sorted(payload))})")
        data = await self._request_json("POST", url, headers=headers, json=payload)

        request_id = data.get("id")
        if not isinstance(request_id, str) or not request_id:
            raise SchemaError(f"Submission response has no request id: {data}")

        polling_url = data.get("polling_url")
        if not isinstance(polling_url, str) or not polling_url:
            polling_url = self.result_url(request_id)

        logger.info(f"Submitted request {request_id} to {endpoint}")
        return SubmittedJob(id=request_id, polling_url=polling_url)

    async def fetch_status(self, polling_url: str, request_id: Optional[str] = None) -> StatusReport:
        """Fetch the current state of a request from its polling URL."""
        try:
            data = await self._request_json("GET", polling_url, headers=self._headers)
        except ProviderError as e:
            if e.http_status == 404:
                raise UnknownJob(request_id) from e
            raise
        return self.parse_status(data, request_id)

    async def get_result(self, request_id: str) -> StatusReport:
        """Fetch the current state of a request by id."""
        return await self.fetch_status(self.result_url(request_id), request_id)

    @staticmethod
    def parse_status(data: Dict[str, Any], request_id: Optional[str] = None) -> StatusReport:
        """Map a get_result response body onto a StatusReport."""
        report_id = data.get("id") or request_id
        if not isinstance(report_id, str) or not report_id:
            raise SchemaError(f"Status response has no request id: {data}")

        raw_status = data.get("status")
        if raw_status == NOT_FOUND_STATUS:
            raise UnknownJob(report_id)

        if raw_status == JobStatus.PENDING.value:
            return StatusReport(id=report_id, status=JobStatus.PENDING)

        if raw_status == JobStatus.READY.value:
            result = data.get("result")
            sample = result.get("sample") if isinstance(result, dict) else None
            return StatusReport(
                id=report_id,
                status=JobStatus.READY,
                result_url=sample if isinstance(sample, str) and sample else None,
            )

        if raw_status in ERROR_STATUSES:
            error = data.get("error") or data.get("details") or raw_status
            return StatusReport(
                id=report_id,
                status=JobStatus.ERROR,
                error=str(error),
            )

        raise SchemaError(f"Unexpected status {raw_status!r} for request {report_id}")

    async def download(self, url: str, destination: Path, request_id: str = "") -> int:
        """Stream a signed image URL to a file. Returns the number of bytes written."""
        destination = Path(destination)
        partial = destination.with_name(destination.name + ".part")
        written = 0

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(url) as response:
                    if response.status != 200:
                        raise TransferFailed(request_id, f"HTTP {response.status}")
                    with open(partial, "wb") as fh:
                        async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                            fh.write(chunk)
                            written += len(chunk)
            os.replace(partial, destination)
        except TransferFailed:
            partial.unlink(missing_ok=True)
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            partial.unlink(missing_ok=True)
            raise TransferFailed(request_id, str(e) or type(e).__name__) from e

        logger.info(f"Saved {written} bytes to {destination}")
        return written

    async def fetch_artifact(self, url: str, request_id: str = "") -> Tuple[bytes, Optional[str]]:
        """Fetch a signed image URL into memory. Returns the bytes and the Content-Type header."""
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(url) as response:
                    if response.status != 200:
                        raise TransferFailed(request_id, f"HTTP {response.status}")
                    data = await response.read()
                    return data, response.headers.get("Content-Type")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransferFailed(request_id, str(e) or type(e).__name__) from e

    async def _request_json(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(method, url, **kwargs) as response:
                    if not 200 <= response.status < 300:
                        body = await response.text()
                        logger.warning(f"{method} {url} returned HTTP {response.status}")
                        raise ProviderError(response.status, body)
                    try:
                        data = await response.json(content_type=None)
                    except ValueError as e:
                        raise SchemaError(f"Response from {url} is not valid JSON") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderConnectionError(str(e) or type(e).__name__) from e

        if not isinstance(data, dict):
            raise SchemaError(f"Response from {url} is not a JSON object")
        return data
