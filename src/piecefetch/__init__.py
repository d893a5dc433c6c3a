"""
Single-peer BitTorrent piece fetcher.

Bencode codec, metainfo model, HTTP tracker client and the peer wire
protocol needed to download and verify pieces from one peer.
"""

from .bencode import BencodeError, decode, encode, render
from .client import TorrentClient, decode_value
from .config import ClientConfig
from .metainfo import InfoDict, Metainfo, SchemaError, load_metainfo, parse_metainfo
from .peer import HandshakeError, PeerConnectionError, PeerError, PeerSession, ProtocolError, SessionState
from .piece import IntegrityError, PieceResult
from .tracker import PeerAddress, Tracker, TrackerError

__all__ = [
    "BencodeError",
    "ClientConfig",
    "HandshakeError",
    "InfoDict",
    "IntegrityError",
    "Metainfo",
    "PeerAddress",
    "PeerConnectionError",
    "PeerError",
    "PeerSession",
    "PieceResult",
    "ProtocolError",
    "SchemaError",
    "SessionState",
    "TorrentClient",
    "Tracker",
    "TrackerError",
    "decode",
    "decode_value",
    "encode",
    "load_metainfo",
    "parse_metainfo",
    "render",
]
