"""
Piece geometry and verification.
"""

import hashlib
from dataclasses import dataclass


class IntegrityError(Exception):
    """Raised when a downloaded piece does not match its expected hash."""

    def __init__(self, result: "PieceResult") -> None:
        super().__init__(
            f"Piece {result.index} hash mismatch: expected {result.expected_hash.hex()}, got {result.actual_hash.hex()}"
        )
        self.result = result


@dataclass(frozen=True)
class Block:
    """Represents a block within a piece."""

    piece_index: int
    offset: int
    length: int


def plan_blocks(piece_index: int, piece_length: int, block_size: int = 16 * 1024) -> list[Block]:
    """
    Split a piece into contiguous blocks of at most ``block_size`` bytes.

    Args:
        piece_index: Index of the piece
        piece_length: Size of the piece in bytes
        block_size: Maximum block length

    Returns:
        Blocks in offset order
    """
    blocks = []
    offset = 0
    while offset < piece_length:
        block_length = min(block_size, piece_length - offset)
        blocks.append(Block(piece_index=piece_index, offset=offset, length=block_length))
        offset += block_length
    return blocks


@dataclass(frozen=True)
class PieceResult:
    """A reassembled piece together with its verification outcome."""

    index: int
    data: bytes
    expected_hash: bytes
    actual_hash: bytes

    @property
    def verified(self) -> bool:
        return self.actual_hash == self.expected_hash

    def raise_for_integrity(self) -> None:
        """Raise IntegrityError if the piece failed verification."""
        if not self.verified:
            raise IntegrityError(self)


def verify_piece(piece_index: int, data: bytes, expected_hash: bytes) -> PieceResult:
    """Hash assembled piece data and compare it with the expected SHA-1."""
    return PieceResult(
        index=piece_index,
        data=data,
        expected_hash=expected_hash,
        actual_hash=hashlib.sha1(data).digest(),
    )
