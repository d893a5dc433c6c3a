"""Shared fixtures: torrent builders, an in-memory writer and a fake peer."""

import asyncio
import hashlib
import struct
from collections.abc import Callable

import pytest

from piecefetch.bencode import encode
from piecefetch.config import ClientConfig
from piecefetch.peer import MessageType, build_handshake, build_message

REMOTE_PEER_ID = b"-FP0001-remotepeer01"


def _pattern(length: int) -> bytes:
    return bytes(i * 7 % 251 for i in range(length))


def _make_torrent(content: bytes, piece_length: int, announce: str = "http://tracker.test/announce") -> bytes:
    pieces = b"".join(
        hashlib.sha1(content[i : i + piece_length]).digest() for i in range(0, len(content), piece_length)
    )
    return encode(
        {
            b"announce": announce.encode(),
            b"created by": b"piecefetch tests",
            b"info": {
                b"length": len(content),
                b"name": b"sample.txt",
                b"piece length": piece_length,
                b"pieces": pieces,
            },
        }
    )


@pytest.fixture
def make_content() -> Callable[[int], bytes]:
    """Deterministic file content of the requested length."""
    return _pattern


@pytest.fixture
def make_torrent() -> Callable[..., bytes]:
    """Build single-file metainfo bytes whose piece hashes match the content."""
    return _make_torrent


@pytest.fixture
def config() -> ClientConfig:
    return ClientConfig(peer_id=b"-PF0001-localpeer001", message_timeout=5.0, connect_timeout=5.0)


class RecordingWriter:
    """Stands in for asyncio.StreamWriter and keeps everything written."""

    def __init__(self) -> None:
        self.data = bytearray()
        self.closed = False

    def write(self, data: bytes) -> None:
        self.data.extend(data)

    async def drain(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        pass

    def frames(self) -> list[tuple[int, bytes]]:
        """Messages written after the 68-byte handshake as (id, payload)."""
        frames = []
        index = 68
        while index < len(self.data):
            (length,) = struct.unpack(">I", self.data[index : index + 4])
            body = bytes(self.data[index + 4 : index + 4 + length])
            frames.append((body[0], body[1:]))
            index += 4 + length
        return frames

    def requests(self) -> list[tuple[int, int, int]]:
        return [struct.unpack(">III", payload) for msg_id, payload in self.frames() if msg_id == MessageType.REQUEST]


@pytest.fixture
def recording_writer() -> type[RecordingWriter]:
    return RecordingWriter


def piece_message(piece_index: int, offset: int, data: bytes) -> bytes:
    return build_message(MessageType.PIECE, struct.pack(">II", piece_index, offset) + data)


@pytest.fixture
def peer_script() -> Callable[..., bytes]:
    """
    Bytes a well-behaved peer sends for one piece: handshake, bitfield,
    unchoke, then one PIECE frame per block.
    """

    def build(info_hash: bytes, piece_index: int, piece: bytes, block_size: int = 16384) -> bytes:
        script = build_handshake(info_hash, REMOTE_PEER_ID)
        script += build_message(MessageType.BITFIELD, b"\xff")
        script += build_message(MessageType.UNCHOKE)
        for offset in range(0, len(piece), block_size):
            script += piece_message(piece_index, offset, piece[offset : offset + block_size])
        return script

    return build


@pytest.fixture
def make_piece_message() -> Callable[[int, int, bytes], bytes]:
    return piece_message


class FakePeer:
    """A TCP peer that serves blocks of ``content`` on request."""

    def __init__(self, info_hash: bytes, content: bytes, piece_length: int, corrupt: bool = False) -> None:
        self.info_hash = info_hash
        self.content = content
        self.piece_length = piece_length
        self.corrupt = corrupt
        self.requests: list[tuple[int, int, int]] = []

    async def _read_message(self, reader: asyncio.StreamReader) -> bytes:
        (length,) = struct.unpack(">I", await reader.readexactly(4))
        return await reader.readexactly(length)

    async def handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            await reader.readexactly(68)
            writer.write(build_handshake(self.info_hash, REMOTE_PEER_ID))
            writer.write(build_message(MessageType.BITFIELD, b"\xff"))
            await writer.drain()

            message = await self._read_message(reader)
            assert message[0] == MessageType.INTERESTED
            writer.write(build_message(MessageType.UNCHOKE))
            await writer.drain()

            while True:
                message = await self._read_message(reader)
                if message[0] != MessageType.REQUEST:
                    continue
                index, begin, length = struct.unpack(">III", message[1:13])
                self.requests.append((index, begin, length))
                start = index * self.piece_length + begin
                block = self.content[start : start + length]
                if self.corrupt:
                    block = bytes(len(block))
                writer.write(piece_message(index, begin, block))
                await writer.drain()
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            writer.close()


@pytest.fixture
def fake_peer() -> type[FakePeer]:
    return FakePeer
