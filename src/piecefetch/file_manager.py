"""
File manager for writing downloaded pieces to disk.
"""

from pathlib import Path
from typing import BinaryIO


class FileManager:
    """Writes verified pieces of a single-file torrent at their file offsets."""

    def __init__(self, output_path: Path, piece_length: int, total_length: int) -> None:
        """
        Initialize file manager.

        Args:
            output_path: File to write
            piece_length: Length of each piece in bytes
            total_length: Final size of the file in bytes
        """
        self.output_path = Path(output_path)
        self.piece_length = piece_length
        self.total_length = total_length
        self._handle: BinaryIO | None = None

    def __enter__(self) -> "FileManager":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _get_file_handle(self) -> BinaryIO:
        """Get or create the file handle for writing."""
        if self._handle is None:
            self.output_path.parent.mkdir(parents=True, exist_ok=True)
            # Open file for random access (create if missing)
            mode = "r+b" if self.output_path.exists() else "w+b"
            self._handle = open(self.output_path, mode)
            self._handle.truncate(self.total_length)
        return self._handle

    def write_piece(self, piece_index: int, piece_data: bytes) -> None:
        """
        Write a piece at its offset in the file.

        Args:
            piece_index: Index of the piece
            piece_data: Piece data to write
        """
        offset = piece_index * self.piece_length
        if offset + len(piece_data) > self.total_length:
            raise ValueError(f"Piece {piece_index} extends past end of file")
        f = self._get_file_handle()
        f.seek(offset)
        f.write(piece_data)

    def close(self) -> None:
        """Close the open file handle."""
        if self._handle is not None:
            self._handle.close()
            self._handle = None


def write_bytes(output_path: Path, data: bytes) -> None:
    """Write a single downloaded piece to its own file."""
    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
