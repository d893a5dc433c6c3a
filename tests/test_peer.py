"""Tests for the peer wire protocol session."""

import asyncio
import hashlib
import struct

import pytest

from piecefetch.config import ClientConfig
from piecefetch.peer import (
    HANDSHAKE_LENGTH,
    HandshakeError,
    MessageType,
    PeerConnectionError,
    PeerSession,
    ProtocolError,
    SessionState,
    build_handshake,
    build_message,
)
from piecefetch.piece import IntegrityError
from piecefetch.tracker import PeerAddress

INFO_HASH = hashlib.sha1(b"info dictionary").digest()
ADDRESS = PeerAddress(ip="10.0.0.2", port=6881)
REMOTE_PEER_ID = b"-FP0001-remotepeer01"


def run(config: ClientConfig, writer, script: bytes, steps) -> PeerSession:
    """Run ``steps(session)`` against a peer that sends ``script``."""

    async def scenario() -> PeerSession:
        reader = asyncio.StreamReader()
        reader.feed_data(script)
        reader.feed_eof()
        session = PeerSession(ADDRESS, INFO_HASH, config, reader=reader, writer=writer)
        await steps(session)
        return session

    return asyncio.run(scenario())


def negotiation_script() -> bytes:
    return (
        build_handshake(INFO_HASH, REMOTE_PEER_ID)
        + build_message(MessageType.BITFIELD, b"\xff")
        + build_message(MessageType.UNCHOKE)
    )


class TestFraming:
    """Tests for message construction."""

    def test_handshake_layout(self) -> None:
        handshake = build_handshake(INFO_HASH, b"-PF0001-localpeer001")

        assert len(handshake) == HANDSHAKE_LENGTH == 68
        assert handshake[0] == 19
        assert handshake[1:20] == b"BitTorrent protocol"
        assert handshake[20:28] == bytes(8)
        assert handshake[28:48] == INFO_HASH
        assert handshake[48:] == b"-PF0001-localpeer001"

    def test_message_layout(self) -> None:
        assert build_message(MessageType.INTERESTED) == b"\x00\x00\x00\x01\x02"
        assert build_message(MessageType.HAVE, b"\x00\x00\x00\x07") == b"\x00\x00\x00\x05\x04\x00\x00\x00\x07"
        assert build_message(MessageType.KEEP_ALIVE) == b"\x00\x00\x00\x00"


class TestHandshake:
    """Tests for the handshake exchange."""

    def test_handshake_returns_remote_peer_id(self, config, recording_writer) -> None:
        writer = recording_writer()
        result = {}

        async def steps(session: PeerSession) -> None:
            result["peer_id"] = await session.handshake()

        session = run(config, writer, build_handshake(INFO_HASH, REMOTE_PEER_ID), steps)

        assert result["peer_id"] == REMOTE_PEER_ID
        assert session.remote_peer_id == REMOTE_PEER_ID
        assert session.state == SessionState.HANDSHAKE_VERIFIED
        assert bytes(writer.data) == build_handshake(INFO_HASH, config.peer_id)

    def test_short_handshake(self, config, recording_writer) -> None:
        async def steps(session: PeerSession) -> None:
            with pytest.raises(HandshakeError, match="Handshake failed"):
                await session.handshake()

        session = run(config, recording_writer(), build_handshake(INFO_HASH, REMOTE_PEER_ID)[:30], steps)
        assert session.state == SessionState.ABORTED

    def test_info_hash_mismatch(self, config, recording_writer) -> None:
        async def steps(session: PeerSession) -> None:
            with pytest.raises(HandshakeError, match="Info hash mismatch"):
                await session.handshake()

        other_hash = hashlib.sha1(b"other").digest()
        session = run(config, recording_writer(), build_handshake(other_hash, REMOTE_PEER_ID), steps)

        assert session.state == SessionState.ABORTED
        assert "Info hash mismatch" in session.abort_reason

    def test_wrong_protocol_string(self, config, recording_writer) -> None:
        async def steps(session: PeerSession) -> None:
            with pytest.raises(HandshakeError, match="protocol string"):
                await session.handshake()

        response = b"\x13" + b"NotTorrent protocol" + build_handshake(INFO_HASH, REMOTE_PEER_ID)[20:]
        run(config, recording_writer(), response, steps)


class TestNegotiation:
    """Tests for bitfield / interested / unchoke."""

    def test_negotiate(self, config, recording_writer) -> None:
        writer = recording_writer()

        async def steps(session: PeerSession) -> None:
            await session.handshake()
            await session.negotiate()

        session = run(config, writer, negotiation_script(), steps)

        assert session.state == SessionState.REQUESTING
        assert writer.frames() == [(MessageType.INTERESTED, b"")]

    def test_keep_alives_are_skipped(self, config, recording_writer) -> None:
        keep_alive = build_message(MessageType.KEEP_ALIVE)
        script = (
            build_handshake(INFO_HASH, REMOTE_PEER_ID)
            + keep_alive
            + build_message(MessageType.BITFIELD, b"\xff")
            + keep_alive
            + build_message(MessageType.UNCHOKE)
        )

        async def steps(session: PeerSession) -> None:
            await session.handshake()
            await session.negotiate()

        assert run(config, recording_writer(), script, steps).state == SessionState.REQUESTING

    def test_bitfield_required_first(self, config, recording_writer) -> None:
        writer = recording_writer()
        script = build_handshake(INFO_HASH, REMOTE_PEER_ID) + build_message(MessageType.UNCHOKE)

        async def steps(session: PeerSession) -> None:
            await session.handshake()
            with pytest.raises(ProtocolError, match="Expected BITFIELD, got UNCHOKE"):
                await session.negotiate()

        session = run(config, writer, script, steps)

        assert session.state == SessionState.ABORTED
        assert writer.frames() == []

    def test_unchoke_required(self, config, recording_writer) -> None:
        script = (
            build_handshake(INFO_HASH, REMOTE_PEER_ID)
            + build_message(MessageType.BITFIELD, b"\xff")
            + build_message(MessageType.CHOKE)
        )

        async def steps(session: PeerSession) -> None:
            await session.handshake()
            with pytest.raises(ProtocolError, match="Expected UNCHOKE, got CHOKE"):
                await session.negotiate()

        run(config, recording_writer(), script, steps)

    def test_unknown_message_id(self, config, recording_writer) -> None:
        script = build_handshake(INFO_HASH, REMOTE_PEER_ID) + struct.pack(">IB", 1, 20)

        async def steps(session: PeerSession) -> None:
            await session.handshake()
            with pytest.raises(ProtocolError, match="Unknown message id 20"):
                await session.negotiate()

        run(config, recording_writer(), script, steps)

    def test_oversized_message(self, config, recording_writer) -> None:
        """A huge declared length is refused before any payload is read."""
        script = build_handshake(INFO_HASH, REMOTE_PEER_ID) + struct.pack(">IB", 0xFFFFFFFF, MessageType.BITFIELD)

        async def steps(session: PeerSession) -> None:
            await session.handshake()
            with pytest.raises(ProtocolError, match="exceeds limit"):
                await session.negotiate()

        session = run(config, recording_writer(), script, steps)
        assert session.state == SessionState.ABORTED

    def test_connection_closed(self, config, recording_writer) -> None:
        async def steps(session: PeerSession) -> None:
            await session.handshake()
            with pytest.raises(PeerConnectionError, match="Connection closed"):
                await session.negotiate()

        session = run(config, recording_writer(), build_handshake(INFO_HASH, REMOTE_PEER_ID), steps)
        assert session.state == SessionState.ABORTED

    def test_negotiate_before_handshake(self, config, recording_writer) -> None:
        async def steps(session: PeerSession) -> None:
            with pytest.raises(ProtocolError, match="Invalid session state"):
                await session.negotiate()

        run(config, recording_writer(), b"", steps)


class TestDownloadPiece:
    """Tests for the block request loop."""

    def _download(self, config, writer, script: bytes, piece_length: int, expected_hash: bytes):
        results = []

        async def steps(session: PeerSession) -> None:
            await session.handshake()
            await session.negotiate()
            results.append(await session.download_piece(0, piece_length, expected_hash))

        session = run(config, writer, script, steps)
        return session, results[0]

    def test_two_blocks(self, config, recording_writer, peer_script, make_content) -> None:
        writer = recording_writer()
        piece = make_content(32768)

        session, result = self._download(
            config, writer, peer_script(INFO_HASH, 0, piece), 32768, hashlib.sha1(piece).digest()
        )

        assert writer.requests() == [(0, 0, 16384), (0, 16384, 16384)]
        assert result.data == piece
        assert result.verified
        assert session.state == SessionState.PIECE_COMPLETE

    def test_last_block_is_shorter(self, config, recording_writer, peer_script, make_content) -> None:
        writer = recording_writer()
        piece = make_content(26527)

        _, result = self._download(
            config, writer, peer_script(INFO_HASH, 0, piece), 26527, hashlib.sha1(piece).digest()
        )

        assert writer.requests() == [(0, 0, 16384), (0, 16384, 10143)]
        assert result.verified

    def test_block_size_from_config(self, recording_writer, peer_script, make_content) -> None:
        config = ClientConfig(peer_id=b"-PF0001-localpeer001", block_size=4096)
        writer = recording_writer()
        piece = make_content(10000)

        _, result = self._download(
            config, writer, peer_script(INFO_HASH, 0, piece, block_size=4096), 10000, hashlib.sha1(piece).digest()
        )

        assert [length for _, _, length in writer.requests()] == [4096, 4096, 1808]
        assert result.verified

    def test_hash_mismatch_keeps_data(self, config, recording_writer, peer_script, make_content) -> None:
        piece = make_content(20000)
        wrong_hash = hashlib.sha1(b"something else").digest()

        script = peer_script(INFO_HASH, 0, piece)
        session, result = self._download(config, recording_writer(), script, 20000, wrong_hash)

        assert not result.verified
        assert result.data == piece
        assert result.actual_hash == hashlib.sha1(piece).digest()
        with pytest.raises(IntegrityError) as excinfo:
            result.raise_for_integrity()
        assert excinfo.value.result.data == piece
        assert session.state == SessionState.PIECE_COMPLETE

    def test_unexpected_offset_stops_requests(
        self, config, recording_writer, make_piece_message, make_content
    ) -> None:
        writer = recording_writer()
        piece = make_content(32768)
        script = negotiation_script() + make_piece_message(0, 100, piece[:16384])

        async def steps(session: PeerSession) -> None:
            await session.handshake()
            await session.negotiate()
            with pytest.raises(ProtocolError, match="Unexpected block"):
                await session.download_piece(0, 32768, hashlib.sha1(piece).digest())
            with pytest.raises(ProtocolError, match="Session aborted"):
                await session.download_piece(0, 32768, hashlib.sha1(piece).digest())

        session = run(config, writer, script, steps)

        assert writer.requests() == [(0, 0, 16384)]
        assert session.state == SessionState.ABORTED

    def test_unexpected_piece_index(self, config, recording_writer, make_piece_message, make_content) -> None:
        piece = make_content(16384)
        script = negotiation_script() + make_piece_message(1, 0, piece)

        async def steps(session: PeerSession) -> None:
            await session.handshake()
            await session.negotiate()
            with pytest.raises(ProtocolError, match="got piece 1 offset 0"):
                await session.download_piece(0, 16384, hashlib.sha1(piece).digest())

        run(config, recording_writer(), script, steps)

    def test_short_block(self, config, recording_writer, make_piece_message, make_content) -> None:
        piece = make_content(16384)
        script = negotiation_script() + make_piece_message(0, 0, piece[:1000])

        async def steps(session: PeerSession) -> None:
            await session.handshake()
            await session.negotiate()
            with pytest.raises(ProtocolError, match="has 1000 bytes, expected 16384"):
                await session.download_piece(0, 16384, hashlib.sha1(piece).digest())

        run(config, recording_writer(), script, steps)

    def test_choke_while_requesting(self, config, recording_writer) -> None:
        script = negotiation_script() + build_message(MessageType.CHOKE)

        async def steps(session: PeerSession) -> None:
            await session.handshake()
            await session.negotiate()
            with pytest.raises(ProtocolError, match="Expected PIECE, got CHOKE"):
                await session.download_piece(0, 16384, bytes(20))

        run(config, recording_writer(), script, steps)

    def test_sequential_pieces_on_one_session(
        self, config, recording_writer, make_piece_message, make_content
    ) -> None:
        writer = recording_writer()
        first, second = make_content(16384), make_content(5000)[::-1]
        script = negotiation_script() + make_piece_message(0, 0, first) + make_piece_message(1, 0, second)
        results = []

        async def steps(session: PeerSession) -> None:
            await session.handshake()
            await session.negotiate()
            results.append(await session.download_piece(0, 16384, hashlib.sha1(first).digest()))
            results.append(await session.download_piece(1, 5000, hashlib.sha1(second).digest()))

        run(config, writer, script, steps)

        assert [r.verified for r in results] == [True, True]
        assert writer.requests() == [(0, 0, 16384), (1, 0, 5000)]

    def test_download_before_negotiation(self, config, recording_writer) -> None:
        async def steps(session: PeerSession) -> None:
            await session.handshake()
            with pytest.raises(ProtocolError, match="Invalid session state"):
                await session.download_piece(0, 16384, bytes(20))

        run(config, recording_writer(), build_handshake(INFO_HASH, REMOTE_PEER_ID), steps)


class TestConnect:
    """Tests for opening connections."""

    def test_connection_refused(self, config) -> None:
        async def scenario() -> PeerSession:
            session = PeerSession(PeerAddress(ip="127.0.0.1", port=1), INFO_HASH, config)
            with pytest.raises(PeerConnectionError, match="failed"):
                await session.connect()
            return session

        session = asyncio.run(scenario())
        assert session.state == SessionState.ABORTED

    def test_context_manager_closes(self, config, recording_writer) -> None:
        writer = recording_writer()

        async def scenario() -> None:
            reader = asyncio.StreamReader()
            async with PeerSession(ADDRESS, INFO_HASH, config, reader=reader, writer=writer) as session:
                assert session.state == SessionState.CONNECTED

        asyncio.run(scenario())
        assert writer.closed
