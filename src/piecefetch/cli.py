"""
Command-line interface for the BitTorrent client.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from .bencode import BencodeError
from .client import TorrentClient, decode_value
from .config import ClientConfig
from .metainfo import SchemaError
from .peer import PeerError
from .piece import IntegrityError
from .tracker import PeerAddress, TrackerError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="piecefetch", description="Fetch torrent pieces from a single peer")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("--peer-id", type=str, default=None, help="20-character peer ID (default: random)")
    parser.add_argument("--port", type=int, default=6881, help="Port reported to the tracker (default: 6881)")

    commands = parser.add_subparsers(dest="command", required=True)

    decode = commands.add_parser("decode", help="Decode a bencoded value")
    decode.add_argument("value", type=str)

    info = commands.add_parser("info", help="Show torrent metadata")
    info.add_argument("torrent", type=str, help="Path to .torrent file")

    peers = commands.add_parser("peers", help="List peers from the tracker")
    peers.add_argument("torrent", type=str, help="Path to .torrent file")

    handshake = commands.add_parser("handshake", help="Handshake with a peer")
    handshake.add_argument("torrent", type=str, help="Path to .torrent file")
    handshake.add_argument("peer", type=PeerAddress.parse, help="Peer address as ip:port")

    download_piece = commands.add_parser("download_piece", help="Download and verify one piece")
    download_piece.add_argument("-o", "--output", type=Path, required=True, help="Output file")
    download_piece.add_argument("torrent", type=str, help="Path to .torrent file")
    download_piece.add_argument("piece", type=int, help="Piece index")
    download_piece.add_argument("--peer", type=PeerAddress.parse, default=None, help="Peer to use (ip:port)")

    download = commands.add_parser("download", help="Download the whole file")
    download.add_argument("-o", "--output", type=Path, required=True, help="Output file")
    download.add_argument("torrent", type=str, help="Path to .torrent file")
    download.add_argument("--peer", type=PeerAddress.parse, default=None, help="Peer to use (ip:port)")

    return parser


async def run_command(args: argparse.Namespace) -> None:
    """Run one parsed command, printing its result to stdout."""
    if args.command == "decode":
        print(decode_value(args.value))
        return

    if args.peer_id is not None:
        config = ClientConfig(peer_id=args.peer_id, port=args.port)
    else:
        config = ClientConfig(port=args.port)
    client = TorrentClient.from_file(args.torrent, config)

    if args.command == "info":
        print(client.metainfo.summary())
    elif args.command == "peers":
        for peer in await client.peers():
            print(peer)
    elif args.command == "handshake":
        remote_peer_id = await client.handshake(args.peer)
        print(f"Peer ID: {remote_peer_id.hex()}")
    elif args.command == "download_piece":
        await client.download_piece(args.piece, args.output, address=args.peer)
        print(f"Piece {args.piece} downloaded to {args.output}.")
    elif args.command == "download":
        await client.download(args.output, address=args.peer)
        print(f"Downloaded {args.torrent} to {args.output}.")


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    # Logs go to stderr so stdout only carries command output
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(message)s",
    )

    try:
        asyncio.run(run_command(args))
    except KeyboardInterrupt:
        print("\nStopping client...", file=sys.stderr)
        return 130
    except (
        BencodeError,
        SchemaError,
        TrackerError,
        PeerError,
        IntegrityError,
        IndexError,
        ValidationError,
        OSError,
    ) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
