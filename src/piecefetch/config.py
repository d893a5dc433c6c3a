"""
Client configuration shared by the tracker client and peer sessions.
"""

import random

from pydantic import BaseModel, Field, field_validator

PEER_ID_PREFIX = b"-PF0001-"
DEFAULT_PORT = 6881
DEFAULT_BLOCK_SIZE = 16 * 1024  # 16KB


def generate_peer_id() -> bytes:
    """
    Generate a random peer ID.

    Returns:
        20-byte peer ID
    """
    # Azureus-style: -<client_id><version>-<random>
    random_bytes = bytes([random.randint(0, 255) for _ in range(20 - len(PEER_ID_PREFIX))])
    return PEER_ID_PREFIX + random_bytes


class ClientConfig(BaseModel):
    """Identity and tuning values for one client."""

    peer_id: bytes = Field(default_factory=generate_peer_id, description="Our 20-byte peer ID")
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535, description="Port we claim to listen on")
    block_size: int = Field(default=DEFAULT_BLOCK_SIZE, ge=1, description="Maximum bytes per block request")
    connect_timeout: float = Field(default=10.0, gt=0, description="Peer connection timeout in seconds")
    message_timeout: float = Field(default=30.0, gt=0, description="Per-message read timeout in seconds")
    tracker_timeout: float = Field(default=30.0, gt=0, description="Tracker request timeout in seconds")

    model_config = {"frozen": True}

    @field_validator("peer_id", mode="before")
    @classmethod
    def encode_peer_id(cls, value: object) -> object:
        """Accept a text peer ID such as ``00112233445566778899``."""
        if isinstance(value, str):
            return value.encode("utf-8")
        return value

    @field_validator("peer_id")
    @classmethod
    def check_peer_id_length(cls, value: bytes) -> bytes:
        if len(value) != 20:
            raise ValueError(f"Peer ID must be 20 bytes, got {len(value)}")
        return value
