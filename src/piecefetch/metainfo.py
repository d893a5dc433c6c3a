"""
Metainfo (.torrent) model.

Projects a decoded bencode dictionary onto Pydantic models and derives the
info hash from the raw bytes of the ``info`` entry.
"""

from __future__ import annotations

import hashlib
import math
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, PrivateAttr, StrictBytes, StrictInt, ValidationError, model_validator

from .bencode import decode, decode_dict_spans, encode

HASH_LENGTH = 20


class SchemaError(ValueError):
    """Exception raised when well-formed bencode does not match the metainfo schema."""

    pass


def _decode_text(data: dict[str, Any], *keys: str) -> None:
    for key in keys:
        if isinstance(data.get(key), bytes):
            data[key] = data[key].decode("utf-8", errors="replace")


def _str_keys(value: Any) -> Any:
    """Turn the bytes keys of a decoded dictionary into text keys."""
    if not isinstance(value, dict):
        return value
    return {
        (key.decode("utf-8", errors="replace") if isinstance(key, bytes) else key): item for key, item in value.items()
    }


class InfoDict(BaseModel):
    """The 'info' dictionary of a single-file torrent."""

    length: StrictInt = Field(ge=0, description="Total file size in bytes")
    name: str = Field(description="Suggested file name")
    piece_length: StrictInt = Field(alias="piece length", ge=1, description="Size of each piece in bytes")
    pieces: StrictBytes = Field(description="Concatenated SHA-1 hashes of all pieces")

    model_config = {"populate_by_name": True, "frozen": True}

    @model_validator(mode="before")
    @classmethod
    def decode_bytes_fields(cls, data: Any) -> Any:
        """Decode bytes fields to strings where appropriate."""
        data = _str_keys(data)
        if isinstance(data, dict):
            _decode_text(data, "name")
        return data

    @model_validator(mode="after")
    def check_piece_geometry(self) -> InfoDict:
        """Ensure there is exactly one hash per piece."""
        if len(self.pieces) % HASH_LENGTH:
            raise ValueError(f"pieces length {len(self.pieces)} is not a multiple of {HASH_LENGTH}")
        expected = math.ceil(self.length / self.piece_length)
        if expected != self.piece_count:
            raise ValueError(f"{self.piece_count} piece hashes for {expected} pieces")
        return self

    @property
    def piece_count(self) -> int:
        """Get the number of pieces (each SHA-1 hash is 20 bytes)."""
        return len(self.pieces) // HASH_LENGTH

    def _check_index(self, piece_index: int) -> None:
        if piece_index < 0 or piece_index >= self.piece_count:
            raise IndexError(f"Piece index {piece_index} out of range (0-{self.piece_count - 1})")

    def piece_hash(self, piece_index: int) -> bytes:
        """Get the SHA-1 hash for a specific piece."""
        self._check_index(piece_index)
        start = piece_index * HASH_LENGTH
        return self.pieces[start : start + HASH_LENGTH]

    def piece_hashes(self) -> list[bytes]:
        """Get every piece hash in order."""
        return [self.piece_hash(i) for i in range(self.piece_count)]

    def piece_size(self, piece_index: int) -> int:
        """
        Get the size of a piece; only the last one may be shorter.

        Args:
            piece_index: Index of the piece

        Returns:
            Piece size in bytes
        """
        self._check_index(piece_index)
        if piece_index == self.piece_count - 1:
            return self.length - self.piece_length * (self.piece_count - 1)
        return self.piece_length

    def to_bencode(self) -> dict[bytes, Any]:
        """Get the dictionary as bencode values."""
        return {
            b"length": self.length,
            b"name": self.name.encode("utf-8"),
            b"piece length": self.piece_length,
            b"pieces": self.pieces,
        }


class Metainfo(BaseModel):
    """Complete torrent metadata."""

    announce: str = Field(description="Tracker announce URL")
    created_by: str | None = Field(default=None, alias="created by", description="Creator software")
    info: InfoDict = Field(description="The info dictionary")

    # Exact source bytes of the info dictionary, hashed for the info hash
    _raw_info: bytes | None = PrivateAttr(default=None)

    model_config = {"populate_by_name": True, "frozen": True}

    @model_validator(mode="before")
    @classmethod
    def decode_bytes_fields(cls, data: Any) -> Any:
        """Decode bytes fields to strings where appropriate."""
        data = _str_keys(data)
        if isinstance(data, dict):
            _decode_text(data, "announce", "created by")
        return data

    @property
    def info_hash(self) -> bytes:
        """
        SHA-1 of the bencoded info dictionary.

        Uses the bytes exactly as they appeared in the source file when
        available; re-encoding could reorder keys and change the hash.
        """
        info_bytes = self._raw_info if self._raw_info is not None else encode(self.info.to_bencode())
        return hashlib.sha1(info_bytes).digest()

    @property
    def info_hash_hex(self) -> str:
        return self.info_hash.hex()

    def summary(self) -> str:
        """Get a human-readable report of the torrent."""
        lines = [
            f"Tracker URL: {self.announce}",
            f"Length: {self.info.length}",
            f"Info Hash: {self.info_hash_hex}",
            f"Piece Length: {self.info.piece_length}",
        ]
        # The first hash shares the "Piece Hashes:" line
        hashes = "\n".join(piece_hash.hex() for piece_hash in self.info.piece_hashes())
        lines.append(f"Piece Hashes:{hashes}")
        return "\n".join(lines)


def _describe(error: ValidationError) -> str:
    details = error.errors()[0]
    field = ".".join(str(part) for part in details["loc"]) or "info"
    return f"Invalid field '{field}': {details['msg']}"


def parse_metainfo(data: bytes) -> Metainfo:
    """
    Parse metainfo bytes into a Metainfo model.

    Args:
        data: Raw contents of a .torrent file

    Returns:
        Metainfo model with its info hash bound to the source bytes

    Raises:
        BencodeError: If the data is not valid bencode
        SchemaError: If required fields are missing or of the wrong type
    """
    if data[:1] != b"d":
        decode(data)
        raise SchemaError("Torrent file must start with a dictionary")

    spans = decode_dict_spans(data)
    raw = {key: value for key, (value, _, _) in spans.items()}

    try:
        metainfo = Metainfo.model_validate(raw)
    except ValidationError as e:
        raise SchemaError(_describe(e)) from e

    _, start, end = spans[b"info"]
    metainfo._raw_info = data[start:end]
    return metainfo


def load_metainfo(torrent_path: str | Path) -> Metainfo:
    """
    Read and parse a .torrent file.

    Args:
        torrent_path: Path to the .torrent file
    """
    path = Path(torrent_path)
    if not path.exists():
        raise FileNotFoundError(f"Torrent file not found: {torrent_path}")
    return parse_metainfo(path.read_bytes())
