"""Tests for MCP server tools and resources."""

import json

import pytest
from unittest.mock import patch

import mcp.types as types
from mcp.shared.exceptions import McpError

from bfl_mcp.config import Settings
from bfl_mcp.errors import ProviderError
from bfl_mcp.orchestrator import JobOrchestrator
from bfl_mcp.server import (
    download_image,
    generate_image,
    handle_call_tool,
    handle_list_resource_templates,
    handle_list_resources,
    handle_list_tools,
    handle_read_resource,
    init_orchestrator,
    main,
    list_models,
    parse_resource_uri,
)


@pytest.fixture
def installed(orchestrator):
    """Make the test orchestrator the server's orchestrator."""
    with patch("bfl_mcp.server.ORCHESTRATOR", orchestrator):
        yield orchestrator


class TestInitOrchestrator:
    """Test wiring from settings."""

    def test_init_from_settings(self, tmp_path):
        settings = Settings.from_env({
            "BFL_API_KEY": "secret",
            "BFL_POLL_MAX_ATTEMPTS": "7",
            "BFL_REGISTRY_MAX_ENTRIES": "3",
            "BFL_OUTPUT_DIR": str(tmp_path),
        })
        with patch("bfl_mcp.server.ORCHESTRATOR", None):
            orchestrator = init_orchestrator(settings)

        assert isinstance(orchestrator, JobOrchestrator)
        assert orchestrator.client.api_key == "secret"
        assert orchestrator.poller.max_attempts == 7
        assert orchestrator.registry.max_entries == 3
        assert orchestrator.output_dir == tmp_path


class TestListTools:
    """Test tool listing."""

    @pytest.mark.asyncio
    async def test_tools(self):
        tools = await handle_list_tools()
        names = [tool.name for tool in tools]
        assert names == ["generate_image", "download_image", "list_models"]

        generate = tools[0]
        assert "model" in generate.inputSchema["properties"]
        assert generate.inputSchema["required"] == ["model", "prompt"]

    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        with pytest.raises(ValueError):
            await handle_call_tool("paint", {})


class TestGenerateImage:
    """Test generate_image tool."""

    @pytest.mark.asyncio
    async def test_success_with_wait(self, installed, stub_client):
        stub_client.script("req-1", stub_client.pending("req-1"), stub_client.ready("req-1", "https://example/img.png"))

        result = await generate_image({"model": "flux-dev", "prompt": "a red cube", "wait": True})

        assert len(result) == 1
        assert isinstance(result[0], types.TextContent)
        text = result[0].text
        assert "Image generated successfully!" in text
        assert "Request ID: req-1" in text
        assert "Model: flux-dev" in text
        assert "https://example/img.png" in text
        assert "10 minutes" in text

    @pytest.mark.asyncio
    async def test_wait_defaults_to_true(self, installed, stub_client):
        stub_client.script("req-1", stub_client.ready("req-1", "https://example/img.png"))

        result = await generate_image({"model": "flux-dev", "prompt": "a red cube"})

        assert "https://example/img.png" in result[0].text

    @pytest.mark.asyncio
    async def test_submitted_without_wait(self, installed, stub_client):
        result = await generate_image({"model": "flux-kontext-pro", "prompt": "x", "wait": False})

        text = result[0].text
        assert "submitted" in text
        assert "Request ID: req-1" in text
        assert "bfl://requests/req-1" in text
        assert stub_client.status_calls == []

    @pytest.mark.asyncio
    async def test_generation_failed(self, installed, stub_client):
        stub_client.script("req-1", stub_client.failed("req-1", "Content Moderated"))

        result = await generate_image({"model": "flux-dev", "prompt": "x"})

        assert result[0].text == "Image generation failed: Content Moderated"

    @pytest.mark.asyncio
    async def test_timeout_tells_caller_to_check_later(self, installed, stub_client):
        stub_client.script("req-1", stub_client.pending("req-1"))

        result = await generate_image({"model": "flux-dev", "prompt": "x"})

        text = result[0].text
        assert "still in progress" in text
        assert "bfl://requests/req-1" in text
        assert "failed" not in text.lower()

    @pytest.mark.asyncio
    async def test_invalid_model_rendered_as_text(self, installed, stub_client):
        result = await generate_image({"model": "dall-e", "prompt": "x"})

        assert result[0].text.startswith("Failed to generate image: Invalid model: dall-e")
        assert stub_client.submitted == []

    @pytest.mark.asyncio
    async def test_invalid_parameters_rendered_as_text(self, installed, stub_client):
        result = await generate_image({"model": "flux-dev", "prompt": ""})

        assert "prompt is required" in result[0].text
        assert stub_client.submitted == []

    @pytest.mark.asyncio
    async def test_provider_error_rendered_as_text(self, installed, stub_client):
        async def failing_submit(endpoint, payload):
            raise ProviderError(402, "Insufficient credits")
        stub_client.submit = failing_submit

        result = await generate_image({"model": "flux-dev", "prompt": "x"})

        assert "402" in result[0].text
        assert "Insufficient credits" in result[0].text

    @pytest.mark.asyncio
    async def test_unexpected_error_rendered_as_text(self, installed, stub_client):
        async def broken_submit(endpoint, payload):
            raise RuntimeError("boom")
        stub_client.submit = broken_submit

        result = await generate_image({"model": "flux-dev", "prompt": "x"})

        assert result[0].text == "Failed to generate image: boom"

    @pytest.mark.asyncio
    async def test_dispatch_through_call_tool(self, installed, stub_client):
        result = await handle_call_tool("generate_image", {"model": "flux-dev", "prompt": "x", "wait": False})

        assert "Request ID: req-1" in result[0].text


class TestDownloadImage:
    """Test download_image tool."""

    @pytest.mark.asyncio
    async def test_download_success(self, installed, stub_client, tmp_path, sample_png_bytes):
        stub_client.script("abc", stub_client.ready("abc", "https://example/img.png"))
        stub_client.artifacts["https://example/img.png"] = (sample_png_bytes, "image/png")
        destination = tmp_path / "cube.png"

        result = await download_image({"request_id": "abc", "file_path": str(destination)})

        assert f"Image saved to {destination}" in result[0].text
        assert f"({len(sample_png_bytes)} bytes)" in result[0].text
        assert destination.read_bytes() == sample_png_bytes

    @pytest.mark.asyncio
    async def test_download_not_ready(self, installed, stub_client, tmp_path):
        stub_client.script("abc", stub_client.pending("abc"))

        result = await download_image({"request_id": "abc", "file_path": str(tmp_path / "x.png")})

        assert result[0].text.startswith("Failed to download image:")
        assert "not ready" in result[0].text

    @pytest.mark.asyncio
    async def test_download_unknown_request(self, installed, tmp_path):
        result = await download_image({"request_id": "nope", "file_path": str(tmp_path / "x.png")})

        assert "Request not found: nope" in result[0].text

    @pytest.mark.asyncio
    async def test_download_missing_arguments(self, installed):
        result = await download_image({"request_id": "abc"})

        assert "required" in result[0].text


class TestListModels:
    """Test list_models tool."""

    @pytest.mark.asyncio
    async def test_list_models(self):
        result = await list_models({})

        data = json.loads(result[0].text)
        assert data["provider"] == "bfl"
        ids = [model["id"] for model in data["models"]]
        assert ids == ["flux-dev", "flux-pro", "flux-pro-ultra", "flux-kontext-pro", "flux-kontext-max"]
        for model in data["models"]:
            assert model["endpoint"].startswith("/v1/")
            assert "prompt" in model["parameters"]


class TestParseResourceUri:
    """Test bfl:// URI parsing."""

    @pytest.mark.parametrize("uri,expected", [
        ("bfl://requests/", ("requests", None)),
        ("bfl://requests", ("requests", None)),
        ("bfl://requests/abc-123", ("requests", "abc-123")),
        ("bfl://images/abc-123", ("images", "abc-123")),
        ("bfl://requests/a%20b", ("requests", "a b")),
    ])
    def test_valid(self, uri, expected):
        assert parse_resource_uri(uri) == expected

    def test_unknown_scheme(self):
        with pytest.raises(McpError):
            parse_resource_uri("file:///etc/passwd")


class TestResources:
    """Test resource listing and reads."""

    @pytest.mark.asyncio
    async def test_templates(self):
        templates = await handle_list_resource_templates()
        uris = [template.uriTemplate for template in templates]
        assert uris == ["bfl://requests/{requestId}", "bfl://images/{requestId}"]

    @pytest.mark.asyncio
    async def test_list_resources(self, installed):
        await installed.generate_image("flux-dev", {"prompt": "x"}, wait=False)

        resources = await handle_list_resources()

        uris = [str(resource.uri) for resource in resources]
        assert "bfl://requests/" in uris
        assert "bfl://requests/req-1" in uris

    @pytest.mark.asyncio
    async def test_read_request_details(self, installed, stub_client):
        stub_client.script("abc", stub_client.ready("abc", "https://example/img.png"))

        contents = await handle_read_resource("bfl://requests/abc")

        assert contents[0].mime_type == "application/json"
        assert json.loads(contents[0].content) == {
            "id": "abc",
            "status": "Ready",
            "result": "https://example/img.png",
            "error": None,
        }

    @pytest.mark.asyncio
    async def test_read_unknown_request_raises(self, installed):
        with pytest.raises(McpError) as exc_info:
            await handle_read_resource("bfl://requests/nonexistent-id")

        assert exc_info.value.error.code == types.INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_read_provider_error_raises(self, installed, stub_client):
        stub_client.script("abc", ProviderError(500, "internal"))

        with pytest.raises(McpError) as exc_info:
            await handle_read_resource("bfl://requests/abc")

        assert exc_info.value.error.code == types.INTERNAL_ERROR

    @pytest.mark.asyncio
    async def test_read_request_list(self, installed, stub_client):
        await installed.generate_image("flux-dev", {"prompt": "cat"}, wait=False)
        await installed.generate_image("flux-pro", {"prompt": "dog"}, wait=False)

        contents = await handle_read_resource("bfl://requests/")

        data = json.loads(contents[0].content)
        assert [entry["id"] for entry in data] == ["req-1", "req-2"]
        assert data[0]["status"] == "Pending"
        assert data[1]["model"] == "flux-pro"

    @pytest.mark.asyncio
    async def test_read_image(self, installed, stub_client, sample_png_bytes):
        stub_client.script("abc", stub_client.ready("abc", "https://example/img.png"))
        stub_client.artifacts["https://example/img.png"] = (sample_png_bytes, None)

        contents = await handle_read_resource("bfl://images/abc")

        assert contents[0].content == sample_png_bytes
        assert contents[0].mime_type == "image/png"

    @pytest.mark.asyncio
    async def test_read_image_not_ready_raises(self, installed, stub_client):
        stub_client.script("abc", stub_client.pending("abc"))

        with pytest.raises(McpError):
            await handle_read_resource("bfl://images/abc")

    @pytest.mark.asyncio
    async def test_read_image_without_id_raises(self, installed):
        with pytest.raises(McpError):
            await handle_read_resource("bfl://images/")


class TestMain:
    """Test server startup."""

    @pytest.mark.asyncio
    async def test_missing_api_key_exits_before_serving(self, monkeypatch):
        monkeypatch.delenv("BFL_API_KEY", raising=False)

        with patch("bfl_mcp.config.load_dotenv"), \
                patch("bfl_mcp.server.mcp.server.stdio.stdio_server") as stdio_server, \
                patch("bfl_mcp.server.ORCHESTRATOR", None):
            with pytest.raises(SystemExit) as exc_info:
                await main()

            stdio_server.assert_not_called()

        assert exc_info.value.code == 1
