"""MCP tools for inspecting torrents and downloading pieces."""

from pathlib import Path

from ..bencode import BencodeError
from ..client import TorrentClient, decode_value
from ..config import ClientConfig
from ..metainfo import SchemaError, load_metainfo
from ..tracker import PeerAddress
from .models import HandshakeResult, PieceDownload, TorrentMetadata


def register_tools(mcp) -> None:
    """Register all MCP tools with the server."""

    @mcp.tool()
    def decode_bencode(value: str) -> str:
        """
        Decode a bencoded string and render it as text.

        Args:
            value: Bencoded input, e.g. "l5:helloi42ee".

        Returns:
            The decoded value, e.g. ["hello",42].
        """
        try:
            return decode_value(value)
        except BencodeError as e:
            raise ValueError(f"Invalid bencode: {e}") from e

    @mcp.tool()
    def parse_torrent(torrent_path: str) -> TorrentMetadata:
        """
        Parse a .torrent file and extract its metadata.

        Args:
            torrent_path: Path to the .torrent file to parse.

        Returns:
            Tracker URL, info hash, sizes and every piece hash.
        """
        try:
            metainfo = load_metainfo(torrent_path)
        except (BencodeError, SchemaError) as e:
            raise ValueError(f"Failed to parse torrent file: {e}") from e

        return TorrentMetadata(
            name=metainfo.info.name,
            announce=metainfo.announce,
            info_hash=metainfo.info_hash_hex,
            length=metainfo.info.length,
            piece_length=metainfo.info.piece_length,
            piece_count=metainfo.info.piece_count,
            piece_hashes=[h.hex() for h in metainfo.info.piece_hashes()],
            created_by=metainfo.created_by,
        )

    @mcp.tool()
    async def get_peers(torrent_path: str) -> list[str]:
        """
        Ask the torrent's tracker for peers.

        Args:
            torrent_path: Path to the .torrent file.

        Returns:
            Peer addresses as "ip:port".
        """
        client = TorrentClient.from_file(torrent_path, ClientConfig())
        return [str(peer) for peer in await client.peers()]

    @mcp.tool()
    async def handshake_peer(torrent_path: str, peer: str) -> HandshakeResult:
        """
        Perform the protocol handshake with one peer.

        Args:
            torrent_path: Path to the .torrent file.
            peer: Peer address as "ip:port".

        Returns:
            The peer's ID in hex.
        """
        client = TorrentClient.from_file(torrent_path, ClientConfig())
        address = PeerAddress.parse(peer)
        remote_peer_id = await client.handshake(address)
        return HandshakeResult(peer=str(address), peer_id=remote_peer_id.hex())

    @mcp.tool()
    async def download_piece(
        torrent_path: str,
        piece_index: int,
        output_path: str,
        peer: str | None = None,
    ) -> PieceDownload:
        """
        Download one piece, verify its hash and write it to a file.

        Args:
            torrent_path: Path to the .torrent file.
            piece_index: Zero-based piece index.
            output_path: File to write the piece to.
            peer: Optional "ip:port"; the tracker's peers are tried otherwise.

        Returns:
            Size and hash of the written piece.
        """
        client = TorrentClient.from_file(torrent_path, ClientConfig())
        address = PeerAddress.parse(peer) if peer else None
        result = await client.download_piece(piece_index, Path(output_path), address=address)
        return PieceDownload(
            piece_index=piece_index,
            size_bytes=len(result.data),
            sha1=result.actual_hash.hex(),
            output_path=str(Path(output_path).absolute()),
        )
