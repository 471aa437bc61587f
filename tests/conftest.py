"""Pytest configuration and fixtures for bfl-mcp tests."""

import base64
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from bfl_mcp.errors import UnknownJob
from bfl_mcp.orchestrator import JobOrchestrator
from bfl_mcp.poller import Poller
from bfl_mcp.providers.base import JobStatus, StatusReport, SubmittedJob
from bfl_mcp.registry import RequestRegistry

# Sample base64-encoded 1x1 PNG image (valid PNG)
SAMPLE_PNG_BASE64 = "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk+M9QDwADhgGAWjR9awAAAABJRU5ErkJggg=="

# JPEG magic bytes followed by padding
SAMPLE_JPEG_BYTES = b'\xff\xd8\xff\xe0' + b'\x00' * 16


@pytest.fixture
def sample_png_bytes():
    """Return valid PNG image bytes."""
    return base64.b64decode(SAMPLE_PNG_BASE64)


@pytest.fixture
def sample_jpeg_bytes():
    """Return bytes that sniff as JPEG."""
    return SAMPLE_JPEG_BYTES


class StubBFLClient:
    """Scripted stand-in for BFLClient.

    Status scripts are per request id; the last scripted item repeats.
    Exceptions in a script are raised instead of returned.
    """

    def __init__(self):
        self.submitted = []
        self.statuses = {}
        self.status_calls = []
        self.artifacts = {}
        self.transfers = []
        self._counter = 0

    @staticmethod
    def pending(request_id):
        return StatusReport(id=request_id, status=JobStatus.PENDING)

    @staticmethod
    def ready(request_id, url="https://delivery.test/img.png"):
        return StatusReport(id=request_id, status=JobStatus.READY, result_url=url)

    @staticmethod
    def failed(request_id, error="Generation failed"):
        return StatusReport(id=request_id, status=JobStatus.ERROR, error=error)

    def script(self, request_id, *items):
        self.statuses[request_id] = list(items)

    def result_url(self, request_id):
        return f"https://api.test/v1/get_result?id={request_id}"

    async def submit(self, endpoint, payload):
        self._counter += 1
        request_id = f"req-{self._counter}"
        self.submitted.append((endpoint, payload))
        return SubmittedJob(id=request_id, polling_url=f"https://poll.test/{request_id}")

    async def fetch_status(self, polling_url, request_id=None):
        self.status_calls.append(polling_url)
        request_id = request_id or polling_url.rsplit("/", 1)[-1]
        queue = self.statuses.get(request_id)
        if not queue:
            raise UnknownJob(request_id)
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def get_result(self, request_id):
        return await self.fetch_status(self.result_url(request_id), request_id)

    async def download(self, url, destination, request_id=""):
        data, _ = self.artifacts[url]
        self.transfers.append(url)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(data)
        return len(data)

    async def fetch_artifact(self, url, request_id=""):
        self.transfers.append(url)
        return self.artifacts[url]


@pytest.fixture
def stub_client():
    return StubBFLClient()


@pytest.fixture
def sleeps():
    """Delays requested by the poller, in seconds."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(seconds):
        sleeps.append(seconds)
    return _sleep


@pytest.fixture
def registry():
    return RequestRegistry()


@pytest.fixture
def orchestrator(stub_client, registry, fake_sleep, tmp_path):
    poller = Poller(stub_client, max_attempts=5, interval_ms=2000, sleep=fake_sleep)
    return JobOrchestrator(stub_client, poller, registry, output_dir=tmp_path)


# Sentinel for mock_response(json_data=...) to make .json() fail to decode
INVALID_JSON = object()


class AsyncContextManager:
    """Async context manager yielding a fixed value."""

    def __init__(self, value):
        self.value = value

    async def __aenter__(self):
        return self.value

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None


def mock_response(status=200, json_data=None, text="", body=b"", headers=None, chunks=None):
    """Create mock aiohttp response."""
    response = AsyncMock()
    response.status = status
    response.headers = headers or {}
    if json_data is INVALID_JSON:
        response.json = AsyncMock(side_effect=ValueError("Expecting value"))
    else:
        response.json = AsyncMock(return_value=json_data)
    response.text = AsyncMock(return_value=text)
    response.read = AsyncMock(return_value=body)

    async def _iter_chunked(size):
        for chunk in chunks if chunks is not None else [body]:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk

    response.content = MagicMock()
    response.content.iter_chunked = MagicMock(side_effect=_iter_chunked)
    return response


@pytest.fixture
def mock_session():
    """Patch aiohttp.ClientSession for the BFL client.

    Call the fixture with the responses (or exceptions) to hand out, in
    order, across session.request and session.get.
    """
    with patch("bfl_mcp.providers.bfl.aiohttp.ClientSession") as session_cls:
        def _install(*responses):
            queue = list(responses)

            def _next(*args, **kwargs):
                item = queue.pop(0)
                if isinstance(item, Exception):
                    raise item
                return AsyncContextManager(item)

            session = MagicMock()
            session.request = MagicMock(side_effect=_next)
            session.get = MagicMock(side_effect=_next)
            session_cls.return_value = AsyncContextManager(session)
            return session
        yield _install
