#!/usr/bin/env python3
"""
BFL Image Generation MCP Server
===============================

Exposes Black Forest Labs FLUX image generation over MCP.

MCP Tools:
- generate_image: Submit a generation request, optionally waiting for the result
- download_image: Save a finished image to disk
- list_models: List model variants and the parameters each accepts

MCP Resources:
- bfl://requests/            All requests seen by this server
- bfl://requests/{requestId} Status of one request
- bfl://images/{requestId}   The generated image itself

Tools never raise: failures are returned as text so the assistant can
react to them. Resource reads raise protocol errors instead.
"""

import asyncio
import json
import logging
import sys
from typing import Dict, List, Optional, Tuple
from urllib.parse import unquote

from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.models import InitializationOptions
from mcp.server import NotificationOptions, Server
from mcp.shared.exceptions import McpError
import mcp.server.stdio
import mcp.types as types

from . import __version__
from .config import Settings
from .errors import ArtifactError, BFLError, ConfigError, UnknownJob
from .orchestrator import JobOrchestrator, OutcomeKind
from .poller import Poller
from .providers import BFLClient
from .registry import RequestRegistry
from .schemas import tool_input_schema, validate_arguments


# Configure logging (stderr; stdout carries the MCP stream)
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("bfl-mcp")

REQUESTS_URI = "bfl://requests/"
IMAGES_URI = "bfl://images/"

# Create MCP server
server = Server("bfl-mcp")

ORCHESTRATOR: Optional[JobOrchestrator] = None


def init_orchestrator(settings: Settings) -> JobOrchestrator:
    """Wire client, poller and registry from settings."""
    global ORCHESTRATOR
    client = BFLClient(
        api_key=settings.api_key,
        base_url=settings.base_url,
        timeout_seconds=settings.request_timeout,
    )
    poller = Poller(
        client,
        max_attempts=settings.poll_max_attempts,
        interval_ms=settings.poll_interval_ms,
        transient_retries=settings.poll_transient_retries,
    )
    registry = RequestRegistry(
        max_entries=settings.registry_max_entries,
        ttl_seconds=settings.registry_ttl_seconds,
    )
    ORCHESTRATOR = JobOrchestrator(client, poller, registry, output_dir=settings.output_dir)
    return ORCHESTRATOR


def _orchestrator() -> JobOrchestrator:
    if ORCHESTRATOR is None:
        raise RuntimeError("Server not initialized: call init_orchestrator() first")
    return ORCHESTRATOR


def _text(text: str) -> List[types.TextContent]:
    return [types.TextContent(type="text", text=text)]


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """List available image generation tools."""
    return [
        types.Tool(
            name="generate_image",
            description="""Generate an image using a FLUX model.

By default waits for completion and returns the image URL (valid for 10 minutes).
Set wait=false to return immediately with the request ID, then read
bfl://requests/{id} to check status.""",
            inputSchema=tool_input_schema(),
        ),
        types.Tool(
            name="download_image",
            description="Download the image of a finished request to a local file.",
            inputSchema={
                "type": "object",
                "properties": {
                    "request_id": {
                        "type": "string",
                        "description": "ID returned by generate_image"
                    },
                    "file_path": {
                        "type": "string",
                        "description": "Destination file (relative paths go under the output directory)"
                    }
                },
                "required": ["request_id", "file_path"]
            }
        ),
        types.Tool(
            name="list_models",
            description="List the FLUX model variants and the parameters each one accepts.",
            inputSchema={
                "type": "object",
                "properties": {},
            }
        ),
    ]


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict | None
) -> list[types.TextContent]:
    """Handle tool execution requests."""

    if name == "generate_image":
        return await generate_image(arguments or {})
    elif name == "download_image":
        return await download_image(arguments or {})
    elif name == "list_models":
        return await list_models(arguments or {})
    else:
        raise ValueError(f"Unknown tool: {name}")


async def generate_image(args: Dict) -> List[types.TextContent]:
    """Generate an image, or submit the request and return its ID."""
    try:
        model, wait, parameters = validate_arguments(args)
        outcome = await _orchestrator().generate_image(model, parameters, wait=wait)
    except BFLError as e:
        return _text(f"Failed to generate image: {e}")
    except Exception as e:
        logger.exception("Unexpected error in generate_image")
        return _text(f"Failed to generate image: {e}")

    if outcome.kind is OutcomeKind.SUBMITTED:
        return _text(
            f"Image generation request submitted.\n\n"
            f"Request ID: {outcome.request_id}\n"
            f"Model: {outcome.model}\n\n"
            f"Use the {REQUESTS_URI}{outcome.request_id} resource to check status."
        )

    if outcome.kind is OutcomeKind.TIMEOUT:
        return _text(
            f"Image generation is still in progress ({outcome.error}).\n\n"
            f"Request ID: {outcome.request_id}\n"
            f"Model: {outcome.model}\n\n"
            f"The request was not cancelled. Use the {REQUESTS_URI}{outcome.request_id} "
            f"resource to check status later."
        )

    if outcome.kind is OutcomeKind.FAILED:
        return _text(f"Image generation failed: {outcome.error}")

    return _text(
        f"Image generated successfully!\n\n"
        f"Request ID: {outcome.request_id}\n"
        f"Model: {outcome.model}\n"
        f"Image URL: {outcome.image_url or '(not provided)'}\n\n"
        f"Note: URL is valid for 10 minutes."
    )


async def download_image(args: Dict) -> List[types.TextContent]:
    """Save the image of a finished request to a file."""
    request_id = args.get("request_id")
    file_path = args.get("file_path")

    if not request_id or not file_path:
        return _text("Failed to download image: request_id and file_path are required")

    try:
        path, size = await _orchestrator().download_artifact(request_id, file_path)
    except BFLError as e:
        return _text(f"Failed to download image: {e}")
    except Exception as e:
        logger.exception("Unexpected error in download_image")
        return _text(f"Failed to download image: {e}")

    return _text(f"Image saved to {path} ({size} bytes).\n\nRequest ID: {request_id}")


async def list_models(args: Dict) -> List[types.TextContent]:
    """List model variants."""
    models_info = [
        {
            "id": m.id,
            "name": m.name,
            "description": m.description,
            "endpoint": m.endpoint,
            "parameters": list(m.parameters),
            "default_output_format": m.default_output_format,
        }
        for m in BFLClient.MODELS.values()
    ]

    return _text(json.dumps({"provider": BFLClient.name, "models": models_info}, indent=2))


@server.list_resources()
async def handle_list_resources() -> list[types.Resource]:
    """The request listing plus one entry per known request."""
    resources = [
        types.Resource(
            uri=REQUESTS_URI,
            name="requests",
            description="All image generation requests made through this server",
            mimeType="application/json",
        )
    ]
    for job in _orchestrator().list_jobs():
        resources.append(types.Resource(
            uri=f"{REQUESTS_URI}{job.id}",
            name=f"request {job.id}",
            description=f"{job.model} request ({job.status.value})",
            mimeType="application/json",
        ))
    return resources


@server.list_resource_templates()
async def handle_list_resource_templates() -> list[types.ResourceTemplate]:
    return [
        types.ResourceTemplate(
            uriTemplate=REQUESTS_URI + "{requestId}",
            name="request_details",
            description="Get details for a specific image generation request",
            mimeType="application/json",
        ),
        types.ResourceTemplate(
            uriTemplate=IMAGES_URI + "{requestId}",
            name="request_image",
            description="The generated image of a finished request",
        ),
    ]


def parse_resource_uri(uri: str) -> Tuple[str, Optional[str]]:
    """Split a bfl:// URI into (kind, request_id)."""
    for kind, prefix in (("requests", REQUESTS_URI), ("images", IMAGES_URI)):
        if uri == prefix.rstrip("/"):
            return kind, None
        if uri.startswith(prefix):
            request_id = unquote(uri[len(prefix):]).strip("/")
            return kind, request_id or None
    raise McpError(types.ErrorData(code=types.INVALID_PARAMS, message=f"Unknown resource: {uri}"))


@server.read_resource()
async def handle_read_resource(uri) -> list[ReadResourceContents]:
    """Serve request details, the request listing, or an image."""
    kind, request_id = parse_resource_uri(str(uri))

    try:
        if kind == "requests" and request_id is None:
            return [ReadResourceContents(content=await read_request_list(), mime_type="application/json")]
        if kind == "requests":
            return [ReadResourceContents(content=await read_request_details(request_id), mime_type="application/json")]
        if request_id is None:
            raise McpError(types.ErrorData(code=types.INVALID_PARAMS, message="Image URI needs a request ID"))
        return [await read_image(request_id)]
    except (UnknownJob, ArtifactError) as e:
        raise McpError(types.ErrorData(code=types.INVALID_PARAMS, message=str(e))) from e
    except BFLError as e:
        logger.warning(f"Failed to read {uri}: {e}")
        raise McpError(types.ErrorData(
            code=types.INTERNAL_ERROR,
            message=f"Failed to fetch request details: {e}",
        )) from e


async def read_request_list() -> str:
    return json.dumps([job.to_dict() for job in _orchestrator().list_jobs()], indent=2)


async def read_request_details(request_id: str) -> str:
    job = await _orchestrator().get_status(request_id)
    return json.dumps(job.details(), indent=2)


async def read_image(request_id: str) -> ReadResourceContents:
    data, mime_type = await _orchestrator().fetch_artifact_inline(request_id)
    logger.info(f"Serving image for {request_id} ({len(data)} bytes, {mime_type})")
    return ReadResourceContents(content=data, mime_type=mime_type)


async def main():
    """Run the MCP server."""
    try:
        settings = Settings.from_env()
    except ConfigError as e:
        logger.error(f"Error: {e}")
        sys.exit(1)

    logging.getLogger().setLevel(settings.log_level)
    init_orchestrator(settings)

    async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
        logger.info("BFL Image Generation MCP Server starting...")
        logger.info(f"API: {settings.base_url}")
        logger.info(f"Output directory: {settings.output_dir}")

        await server.run(
            read_stream,
            write_stream,
            InitializationOptions(
                server_name="bfl-mcp",
                server_version=__version__,
                capabilities=server.get_capabilities(
                    notification_options=NotificationOptions(),
                    experimental_capabilities={},
                ),
            ),
        )


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
