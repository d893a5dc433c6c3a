"""Pydantic models for the MCP server."""

from pydantic import BaseModel


class TorrentMetadata(BaseModel):
    """Metadata extracted from a torrent file."""

    name: str
    announce: str
    info_hash: str
    length: int
    piece_length: int
    piece_count: int
    piece_hashes: list[str]
    created_by: str | None = None


class HandshakeResult(BaseModel):
    """Outcome of a handshake with one peer."""

    peer: str
    peer_id: str


class PieceDownload(BaseModel):
    """A piece written to disk."""

    piece_index: int
    size_bytes: int
    sha1: str
    output_path: str
