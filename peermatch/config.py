"""Peer client configuration."""
from __future__ import annotations

import logging
import pathlib
import sys
from typing import List
from typing import Optional

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    from typing import Self
else:  # pragma: <3.11 cover
    from typing_extensions import Self

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator

from peermatch.profile import Profile
from peermatch.transport.rtc import DEFAULT_ICE_SERVERS
from peermatch.utils.config import dump
from peermatch.utils.config import load

DEFAULT_RELAY_ADDRESS = 'ws://localhost:8700'


class PeerConfig(BaseModel):
    """Peer client configuration.

    Attributes:
        relay_address: Address of the relay server to register with.
        verify_certificate: Validate the relay server's SSL certificate.
            This should only be disabled when testing with local relay
            servers using self-signed certificates.
        ice_servers: STUN/TURN server URLs used to find reachability
            candidates.
        handshake_timeout: Seconds a session may take to open its message
            channel before it is closed. `None` waits forever.
        stats_interval: Seconds between connection stats polls. `None`
            disables polling.
        profile: Local profile announced to peers.
        log_level: Logging level of the client.
        aioice_level: Log level for the `aioice` logger which is very
            verbose at the `INFO` level.
    """

    model_config = ConfigDict(extra='forbid')

    relay_address: str = DEFAULT_RELAY_ADDRESS
    verify_certificate: bool = True
    ice_servers: List[str] = Field(  # noqa: UP006
        default_factory=lambda: list(DEFAULT_ICE_SERVERS),
    )
    handshake_timeout: Optional[float] = 30  # noqa: UP007
    stats_interval: Optional[float] = 3  # noqa: UP007
    profile: Profile = Field(default_factory=Profile)
    log_level: str = 'INFO'
    aioice_level: str = 'WARNING'

    @field_validator('relay_address')
    @classmethod
    def _address_validator(cls, v: str) -> str:
        if not (v.startswith('ws://') or v.startswith('wss://')):
            raise ValueError('Relay address must start with ws:// or wss://.')
        return v

    @field_validator('handshake_timeout', 'stats_interval')
    @classmethod
    def _positive_validator(cls, v: float | None) -> float | None:
        if v is not None and v <= 0:
            raise ValueError('Intervals must be None or greater than zero.')
        return v

    @field_validator('log_level', 'aioice_level')
    @classmethod
    def _level_validator(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f'Unknown logging level: {v}.')
        return level

    @classmethod
    def from_toml(cls, filepath: str | pathlib.Path) -> Self:
        """Parse an TOML config file.

        Example:
            ```toml title="peer.toml"
            relay_address = "wss://relay.example.com"
            ice_servers = ["stun:stun.l.google.com:19302"]
            handshake_timeout = 30

            [profile]
            name = "Alice"
            about = "Climbing and coffee."

            [profile.location]
            latitude = 52.52
            longitude = 13.40
            ```
        """
        with open(filepath, 'rb') as f:
            return load(cls, f)

    def write_toml(self, filepath: str | pathlib.Path) -> None:
        """Write the config to a TOML file.

        The profile picture is not written because TOML has no binary type.
        """
        config = self.model_copy(
            update={
                'profile': self.profile.model_copy(update={'picture': None}),
            },
        )
        with open(filepath, 'wb') as f:
            dump(config, f)
