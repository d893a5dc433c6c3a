"""
Client operations: inspect a torrent, find peers and download pieces.
"""

import logging
from pathlib import Path

from .bencode import decode, render
from .config import ClientConfig
from .file_manager import FileManager, write_bytes
from .metainfo import Metainfo, load_metainfo
from .peer import PeerError, PeerSession
from .piece import IntegrityError, PieceResult
from .tracker import PeerAddress, get_peers

logger = logging.getLogger(__name__)


def decode_value(text: str) -> str:
    """Decode a bencoded string and render it for display."""
    return render(decode(text))


class TorrentClient:
    """Downloads pieces of one torrent, one peer at a time."""

    def __init__(self, metainfo: Metainfo, config: ClientConfig | None = None) -> None:
        """
        Initialize torrent client.

        Args:
            metainfo: Parsed torrent
            config: Client identity and timeouts (a fresh peer ID if omitted)
        """
        self.metainfo = metainfo
        self.config = config or ClientConfig()

    @classmethod
    def from_file(cls, torrent_path: str | Path, config: ClientConfig | None = None) -> "TorrentClient":
        return cls(load_metainfo(torrent_path), config)

    async def peers(self) -> list[PeerAddress]:
        """Ask the tracker for peers."""
        return await get_peers(self.metainfo, self.config)

    def _session(self, address: PeerAddress) -> PeerSession:
        return PeerSession(address, self.metainfo.info_hash, self.config)

    async def handshake(self, address: PeerAddress) -> bytes:
        """
        Handshake with a peer.

        Returns:
            The remote peer ID
        """
        async with self._session(address) as session:
            return await session.handshake()

    async def _candidates(self, address: PeerAddress | None) -> list[PeerAddress]:
        if address is not None:
            return [address]
        peers = await self.peers()
        if not peers:
            raise PeerError("Tracker returned no peers")
        return peers

    async def fetch_piece(self, piece_index: int, address: PeerAddress) -> PieceResult:
        """Download one piece from one peer over a fresh connection."""
        info = self.metainfo.info
        piece_length = info.piece_size(piece_index)
        expected_hash = info.piece_hash(piece_index)

        async with self._session(address) as session:
            await session.handshake()
            await session.negotiate()
            return await session.download_piece(piece_index, piece_length, expected_hash)

    async def download_piece(
        self, piece_index: int, output_path: Path, address: PeerAddress | None = None
    ) -> PieceResult:
        """
        Download a piece and write it to ``output_path`` once verified.

        Peers are tried in tracker order until one delivers a piece that
        matches its hash.

        Args:
            piece_index: Index of the piece
            output_path: Destination file for the piece bytes
            address: Peer to use instead of asking the tracker
        """
        # Fail on a bad index before touching the network
        self.metainfo.info.piece_size(piece_index)

        last_error: Exception | None = None
        for peer in await self._candidates(address):
            try:
                result = await self.fetch_piece(piece_index, peer)
                result.raise_for_integrity()
            except (PeerError, IntegrityError) as e:
                logger.warning(f"Piece {piece_index} from {peer} failed: {e}")
                last_error = e
                continue

            write_bytes(output_path, result.data)
            logger.info(f"Piece {piece_index} ({len(result.data)} bytes) written to {output_path}")
            return result

        raise last_error

    async def download(self, output_path: Path, address: PeerAddress | None = None) -> None:
        """
        Download the whole file, piece by piece, over one connection at a time.

        A peer that fails is dropped and the remaining pieces are requested
        from the next one.

        Args:
            output_path: Destination file
            address: Peer to use instead of asking the tracker
        """
        info = self.metainfo.info
        remaining = list(range(info.piece_count))
        last_error: Exception | None = None

        with FileManager(output_path, info.piece_length, info.length) as file_manager:
            for peer in await self._candidates(address):
                if not remaining:
                    break
                try:
                    async with self._session(peer) as session:
                        await session.handshake()
                        await session.negotiate()
                        while remaining:
                            piece_index = remaining[0]
                            result = await session.download_piece(
                                piece_index, info.piece_size(piece_index), info.piece_hash(piece_index)
                            )
                            result.raise_for_integrity()
                            file_manager.write_piece(piece_index, result.data)
                            remaining.pop(0)
                            logger.info(f"Piece {piece_index + 1}/{info.piece_count} complete")
                except (PeerError, IntegrityError) as e:
                    logger.warning(f"Peer {peer} dropped: {e}")
                    last_error = e

        if remaining:
            raise PeerError(f"{len(remaining)} pieces could not be downloaded: {last_error}")
        logger.info(f"Downloaded {info.name} to {output_path}")
