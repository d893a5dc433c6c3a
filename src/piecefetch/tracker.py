"""
Tracker communication module.
Announces to an HTTP tracker and decodes its compact peer list.
"""

from __future__ import annotations

import logging
import socket
import struct
import urllib.parse
from typing import TYPE_CHECKING, Any

import aiohttp
from pydantic import BaseModel, Field
from yarl import URL

from .bencode import BencodeError, decode

if TYPE_CHECKING:
    from .config import ClientConfig
    from .metainfo import Metainfo

logger = logging.getLogger(__name__)

COMPACT_PEER_LENGTH = 6


class TrackerError(Exception):
    """Exception raised for tracker communication errors."""

    pass


class PeerAddress(BaseModel):
    """IPv4 address and port of a peer."""

    ip: str
    port: int = Field(ge=0, le=65535)

    model_config = {"frozen": True}

    def __str__(self) -> str:
        return f"{self.ip}:{self.port}"

    @classmethod
    def parse(cls, address: str) -> PeerAddress:
        """Parse an ``ip:port`` string."""
        ip, sep, port = address.rpartition(":")
        if not sep or not ip or not port.isdigit():
            raise ValueError(f"Invalid peer address: {address!r}")
        return cls(ip=ip, port=int(port))


class TrackerResponse(BaseModel):
    """Decoded announce response."""

    interval: int
    peers: list[PeerAddress]


def percent_encode(data: bytes) -> str:
    """Percent-encode every byte, printable or not."""
    return "".join(f"%{byte:02X}" for byte in data)


def parse_compact_peers(peers_data: bytes) -> list[PeerAddress]:
    """
    Decode a compact peer list: 4 bytes IPv4 then 2 bytes port, big-endian.

    Args:
        peers_data: Concatenated 6-byte peer records

    Returns:
        List of peer addresses in tracker order
    """
    if len(peers_data) % COMPACT_PEER_LENGTH:
        raise TrackerError(f"Compact peer list length {len(peers_data)} is not a multiple of {COMPACT_PEER_LENGTH}")

    peers = []
    for i in range(0, len(peers_data), COMPACT_PEER_LENGTH):
        ip_bytes, port = struct.unpack(">4sH", peers_data[i : i + COMPACT_PEER_LENGTH])
        peers.append(PeerAddress(ip=socket.inet_ntoa(ip_bytes), port=port))
    return peers


def parse_tracker_response(data: bytes) -> TrackerResponse:
    """
    Parse a bencoded tracker response.

    Args:
        data: Bencoded response body

    Returns:
        Parsed tracker response
    """
    try:
        response = decode(data)
    except BencodeError as e:
        raise TrackerError(f"Invalid tracker response: {e}") from e

    if not isinstance(response, dict):
        raise TrackerError("Invalid tracker response format")

    failure = response.get(b"failure reason")
    if failure is not None:
        reason = failure.decode("utf-8", errors="replace") if isinstance(failure, bytes) else str(failure)
        raise TrackerError(f"Tracker failure: {reason}")

    interval = response.get(b"interval")
    if not isinstance(interval, int):
        raise TrackerError("Tracker response missing integer 'interval'")

    peers_data = response.get(b"peers")
    if not isinstance(peers_data, bytes):
        raise TrackerError("Tracker response missing compact 'peers' string")

    return TrackerResponse(interval=interval, peers=parse_compact_peers(peers_data))


class Tracker:
    """Handles communication with an HTTP tracker."""

    def __init__(
        self,
        announce_url: str,
        info_hash: bytes,
        peer_id: bytes,
        port: int = 6881,
        uploaded: int = 0,
        downloaded: int = 0,
        left: int = 0,
        timeout: float = 30.0,
    ) -> None:
        """
        Initialize tracker connection.

        Args:
            announce_url: Tracker announce URL
            info_hash: SHA-1 hash of the info dictionary (20 bytes)
            peer_id: Unique peer ID (20 bytes)
            port: Port number for incoming connections
            uploaded: Bytes uploaded so far
            downloaded: Bytes downloaded so far
            left: Bytes remaining to download
            timeout: Total request timeout in seconds
        """
        self.announce_url = announce_url
        self.info_hash = info_hash
        self.peer_id = peer_id
        self.port = port
        self.uploaded = uploaded
        self.downloaded = downloaded
        self.left = left
        self.timeout = timeout

    def build_announce_url(self) -> str:
        """Build the announce URL with its query string already percent-encoded."""
        if len(self.info_hash) != 20:
            raise TrackerError(f"Info hash must be 20 bytes, got {len(self.info_hash)}")

        params: dict[str, Any] = {
            "port": self.port,
            "uploaded": self.uploaded,
            "downloaded": self.downloaded,
            "left": self.left,
            "compact": 1,  # Request compact peer list
        }
        query = (
            f"info_hash={percent_encode(self.info_hash)}"
            f"&peer_id={percent_encode(self.peer_id)}"
            f"&{urllib.parse.urlencode(params)}"
        )
        separator = "&" if "?" in self.announce_url else "?"
        return f"{self.announce_url}{separator}{query}"

    async def announce(self) -> TrackerResponse:
        """
        Announce to tracker and get peer list.

        Returns:
            Tracker response with the compact peer list decoded
        """
        if not self.announce_url.startswith(("http://", "https://")):
            raise TrackerError(f"Unsupported tracker protocol: {self.announce_url}")

        # encoded=True keeps yarl from re-quoting the binary info_hash
        url = URL(self.build_announce_url(), encoded=True)
        logger.info(f"Announcing to {self.announce_url}")

        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(url, timeout=aiohttp.ClientTimeout(total=self.timeout)) as response:
                    if not 200 <= response.status < 300:
                        raise TrackerError(f"Tracker returned status {response.status}")
                    data = await response.read()
        except TrackerError:
            raise
        except TimeoutError as e:
            raise TrackerError("Tracker request timed out") from e
        except aiohttp.ClientError as e:
            raise TrackerError(f"HTTP tracker error: {e}") from e

        result = parse_tracker_response(data)
        logger.info(f"Tracker returned {len(result.peers)} peers (interval {result.interval}s)")
        return result


async def get_peers(metainfo: Metainfo, config: ClientConfig) -> list[PeerAddress]:
    """
    Fetch the peer list for a torrent.

    Args:
        metainfo: Parsed torrent
        config: Client identity (peer ID, port) and timeouts

    Returns:
        Peer addresses returned by the tracker
    """
    tracker = Tracker(
        metainfo.announce,
        metainfo.info_hash,
        config.peer_id,
        port=config.port,
        left=metainfo.info.length,
        timeout=config.tracker_timeout,
    )
    response = await tracker.announce()
    return response.peers
