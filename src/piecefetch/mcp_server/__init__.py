"""
MCP Server package for the BitTorrent client.

Exposes torrent inspection and piece download via the Model Context Protocol.
"""

from .server import mcp

__all__ = ["mcp"]
