"""
Main MCP server setup and entry point.

This module initializes the FastMCP server and registers all tools.
"""

from fastmcp import FastMCP

from .tools import register_tools

# Initialize FastMCP server
mcp = FastMCP(
    "piecefetch",
    instructions="Inspect .torrent files, list tracker peers, handshake with a peer and "
    "download verified pieces from a single peer.",
)

register_tools(mcp)


def main() -> None:
    """Run the MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
