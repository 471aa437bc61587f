"""
BFL Image Generation MCP Server
===============================

Black Forest Labs FLUX image generation for MCP hosts.

Supported models:
- flux-dev (FLUX.1 [dev])
- flux-pro (FLUX 1.1 [pro])
- flux-pro-ultra (FLUX 1.1 [pro] Ultra)
- flux-kontext-pro, flux-kontext-max (FLUX Kontext)
"""

__version__ = "0.1.0"
