"""ecoroute MCP Server - Ecosystem-aware routing for documentation retrieval."""

from importlib.metadata import version

from ecoroute_mcp.__main__ import _cli as main
from ecoroute_mcp.server import mcp

__version__ = version("ecoroute-mcp")
__all__ = ["mcp", "main", "__version__"]
