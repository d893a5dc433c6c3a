"""
BitTorrent peer wire protocol.
Handles the handshake, message framing and the single-piece download
state machine for one peer connection.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import struct
from enum import Enum, IntEnum
from typing import TYPE_CHECKING

from .piece import PieceResult, plan_blocks, verify_piece

if TYPE_CHECKING:
    from .config import ClientConfig
    from .tracker import PeerAddress

logger = logging.getLogger(__name__)

PROTOCOL_STRING = b"BitTorrent protocol"
HANDSHAKE_LENGTH = 1 + len(PROTOCOL_STRING) + 8 + 20 + 20  # 68

# Longest frame accepted unless a configured block needs more room
MAX_MESSAGE_LENGTH = 1 << 17


class MessageType(IntEnum):
    """BitTorrent protocol message types."""

    CHOKE = 0
    UNCHOKE = 1
    INTERESTED = 2
    NOT_INTERESTED = 3
    HAVE = 4
    BITFIELD = 5
    REQUEST = 6
    PIECE = 7
    CANCEL = 8
    KEEP_ALIVE = -1  # Special case: no message ID, length = 0


class SessionState(Enum):
    """Progress of a peer session."""

    IDLE = "idle"
    CONNECTED = "connected"
    HANDSHAKE_SENT = "handshake_sent"
    HANDSHAKE_VERIFIED = "handshake_verified"
    AWAITING_BITFIELD = "awaiting_bitfield"
    INTERESTED = "interested"
    AWAITING_UNCHOKE = "awaiting_unchoke"
    REQUESTING = "requesting"
    PIECE_COMPLETE = "piece_complete"
    ABORTED = "aborted"


class PeerError(Exception):
    """Exception raised for peer communication errors."""

    pass


class PeerConnectionError(PeerError):
    """Connection failure, reset or timeout."""

    pass


class HandshakeError(PeerError):
    """Short, failed or mismatched handshake."""

    pass


class ProtocolError(PeerError):
    """Peer sent something the session did not expect."""

    pass


def build_handshake(info_hash: bytes, peer_id: bytes) -> bytes:
    """Build the 68-byte handshake: <pstrlen><pstr><reserved><info_hash><peer_id>."""
    return struct.pack(">B19s8s20s20s", len(PROTOCOL_STRING), PROTOCOL_STRING, bytes(8), info_hash, peer_id)


def build_message(message_type: MessageType, payload: bytes = b"") -> bytes:
    """Frame a message as <length><message_id><payload>."""
    if message_type == MessageType.KEEP_ALIVE:
        return struct.pack(">I", 0)
    return struct.pack(">IB", 1 + len(payload), message_type) + payload


def _aborts_session(method):
    """Move the session to ABORTED when a peer error escapes ``method``."""

    @functools.wraps(method)
    async def wrapper(self: PeerSession, *args, **kwargs):
        try:
            return await method(self, *args, **kwargs)
        except PeerError as e:
            self._abort(str(e))
            raise

    return wrapper


class PeerSession:
    """One connection to one peer, driven from handshake to verified piece."""

    def __init__(
        self,
        address: PeerAddress,
        info_hash: bytes,
        config: ClientConfig,
        reader: asyncio.StreamReader | None = None,
        writer: asyncio.StreamWriter | None = None,
    ) -> None:
        """
        Initialize a peer session.

        Args:
            address: Peer IP and port
            info_hash: SHA-1 hash of the info dictionary
            config: Our peer ID, block size and timeouts
            reader: Already-open stream to use instead of connecting
            writer: Already-open stream to use instead of connecting
        """
        self.address = address
        self.info_hash = info_hash
        self.config = config
        self.reader = reader
        self.writer = writer
        self.remote_peer_id: bytes | None = None
        self.abort_reason: str | None = None
        self.state = SessionState.CONNECTED if reader is not None and writer is not None else SessionState.IDLE

    def __repr__(self) -> str:
        return f"PeerSession({self.address}, state={self.state.value})"

    async def __aenter__(self) -> PeerSession:
        if self.state == SessionState.IDLE:
            await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _transition(self, state: SessionState) -> None:
        logger.debug(f"{self.address}: {self.state.value} -> {state.value}")
        self.state = state

    def _abort(self, reason: str) -> None:
        if self.state != SessionState.ABORTED:
            logger.warning(f"{self.address}: session aborted: {reason}")
            self.abort_reason = reason
            self.state = SessionState.ABORTED

    def _require(self, *states: SessionState) -> None:
        if self.state == SessionState.ABORTED:
            raise ProtocolError(f"Session aborted: {self.abort_reason}")
        if self.state not in states:
            raise ProtocolError(f"Invalid session state: {self.state.value}")

    @_aborts_session
    async def connect(self) -> None:
        """Open the TCP connection to the peer."""
        self._require(SessionState.IDLE)
        try:
            self.reader, self.writer = await asyncio.wait_for(
                asyncio.open_connection(self.address.ip, self.address.port), timeout=self.config.connect_timeout
            )
        except TimeoutError as e:
            raise PeerConnectionError(f"Connection to {self.address} timed out") from e
        except OSError as e:
            raise PeerConnectionError(f"Connection to {self.address} failed: {e}") from e
        self._transition(SessionState.CONNECTED)

    async def close(self) -> None:
        """Close the connection; the session cannot be reused."""
        if self.writer:
            self.writer.close()
            try:
                await self.writer.wait_closed()
            except OSError:
                pass
        self.reader = None
        self.writer = None

    async def _read_exactly(self, count: int) -> bytes:
        try:
            return await asyncio.wait_for(self.reader.readexactly(count), timeout=self.config.message_timeout)
        except asyncio.IncompleteReadError as e:
            raise PeerConnectionError(f"Connection closed after {len(e.partial)} of {count} bytes") from e
        except TimeoutError as e:
            raise PeerConnectionError("Message receive timeout") from e
        except OSError as e:
            raise PeerConnectionError(f"Error receiving data: {e}") from e

    async def _write(self, data: bytes) -> None:
        try:
            self.writer.write(data)
            await asyncio.wait_for(self.writer.drain(), timeout=self.config.message_timeout)
        except TimeoutError as e:
            raise PeerConnectionError("Send timeout") from e
        except OSError as e:
            raise PeerConnectionError(f"Error sending data: {e}") from e

    @_aborts_session
    async def handshake(self) -> bytes:
        """
        Exchange handshakes with the peer.

        Returns:
            The remote peer ID (20 bytes)
        """
        self._require(SessionState.CONNECTED)

        try:
            await self._write(build_handshake(self.info_hash, self.config.peer_id))
            self._transition(SessionState.HANDSHAKE_SENT)
            response = await self._read_exactly(HANDSHAKE_LENGTH)
        except PeerConnectionError as e:
            raise HandshakeError(f"Handshake failed: {e}") from e

        pstrlen, pstr, _reserved, remote_info_hash, remote_peer_id = struct.unpack(">B19s8s20s20s", response)
        if pstrlen != len(PROTOCOL_STRING) or pstr != PROTOCOL_STRING:
            raise HandshakeError(f"Invalid protocol string: {response[: 1 + len(PROTOCOL_STRING)]!r}")
        if remote_info_hash != self.info_hash:
            raise HandshakeError("Info hash mismatch in handshake")

        self.remote_peer_id = remote_peer_id
        self._transition(SessionState.HANDSHAKE_VERIFIED)
        return remote_peer_id

    async def send_message(self, message_type: MessageType, payload: bytes = b"") -> None:
        """
        Send a message to the peer.

        Args:
            message_type: Type of message to send
            payload: Message payload (if any)
        """
        if not self.writer:
            raise PeerConnectionError("Not connected to peer")
        await self._write(build_message(message_type, payload))

    async def receive_message(self) -> tuple[MessageType, bytes]:
        """
        Receive one framed message.

        Returns:
            Tuple of (message_type, payload); keep-alives are returned as
            (KEEP_ALIVE, b"")
        """
        if not self.reader:
            raise PeerConnectionError("Not connected to peer")

        (length,) = struct.unpack(">I", await self._read_exactly(4))
        if length == 0:
            return (MessageType.KEEP_ALIVE, b"")
        limit = max(MAX_MESSAGE_LENGTH, self.config.block_size + 9)
        if length > limit:
            raise ProtocolError(f"Message length {length} exceeds limit of {limit} bytes")

        message_data = await self._read_exactly(length)
        message_id = message_data[0]
        try:
            message_type = MessageType(message_id)
        except ValueError as e:
            raise ProtocolError(f"Unknown message id {message_id}") from e
        return (message_type, message_data[1:])

    async def _expect(self, expected: MessageType) -> bytes:
        """Wait for a message of the given type, skipping keep-alives."""
        while True:
            message_type, payload = await self.receive_message()
            if message_type == MessageType.KEEP_ALIVE:
                logger.debug(f"{self.address}: keep-alive")
                continue
            if message_type != expected:
                raise ProtocolError(f"Expected {expected.name}, got {message_type.name}")
            return payload

    @_aborts_session
    async def negotiate(self) -> None:
        """Wait for the bitfield, declare interest and wait to be unchoked."""
        self._require(SessionState.HANDSHAKE_VERIFIED)

        self._transition(SessionState.AWAITING_BITFIELD)
        # Which pieces the peer has is not used: it is assumed to have them all
        await self._expect(MessageType.BITFIELD)

        await self.send_message(MessageType.INTERESTED)
        self._transition(SessionState.INTERESTED)

        self._transition(SessionState.AWAITING_UNCHOKE)
        await self._expect(MessageType.UNCHOKE)
        self._transition(SessionState.REQUESTING)

    @_aborts_session
    async def download_piece(self, piece_index: int, piece_length: int, expected_hash: bytes) -> PieceResult:
        """
        Download one piece block by block and verify it.

        Each request waits for its block before the next one is sent.

        Args:
            piece_index: Index of the piece
            piece_length: Size of this piece in bytes
            expected_hash: SHA-1 hash from the metainfo

        Returns:
            The assembled piece and its verification outcome; a hash mismatch
            does not raise here (see PieceResult.raise_for_integrity)
        """
        self._require(SessionState.REQUESTING, SessionState.PIECE_COMPLETE)
        self._transition(SessionState.REQUESTING)

        buffer = bytearray(piece_length)
        for block in plan_blocks(piece_index, piece_length, self.config.block_size):
            payload = struct.pack(">III", block.piece_index, block.offset, block.length)
            await self.send_message(MessageType.REQUEST, payload)

            response = await self._expect(MessageType.PIECE)
            if len(response) < 8:
                raise ProtocolError(f"Piece message too short: {len(response)} bytes")
            index, begin = struct.unpack(">II", response[:8])
            if (index, begin) != (block.piece_index, block.offset):
                raise ProtocolError(
                    f"Unexpected block: requested piece {block.piece_index} offset {block.offset}, "
                    f"got piece {index} offset {begin}"
                )

            data = response[8:]
            if len(data) != block.length:
                raise ProtocolError(f"Block at offset {block.offset} has {len(data)} bytes, expected {block.length}")
            buffer[block.offset : block.offset + block.length] = data
            logger.debug(f"{self.address}: piece {piece_index} block {block.offset}+{block.length}")

        self._transition(SessionState.PIECE_COMPLETE)
        result = verify_piece(piece_index, bytes(buffer), expected_hash)
        if not result.verified:
            logger.warning(f"{self.address}: piece {piece_index} failed hash check")
        return result
