"""Helper classes for managing clients connected to a relay server."""
from __future__ import annotations

import dataclasses
import datetime

from websockets.asyncio.server import ServerConnection


def _utc_current_time() -> datetime.datetime:
    # dataclasses.field's default_factory requires a zero argument callable
    return datetime.datetime.now(tz=datetime.timezone.utc)


@dataclasses.dataclass(frozen=True, eq=False)
class Client:
    """Representation of a participant connected to the relay.

    Attributes:
        participant_id: Identifier assigned to the client by the relay.
        websocket: WebSocket connection to the client.
        created: Time the client was created at.
    """

    participant_id: str
    websocket: ServerConnection
    created: datetime.datetime = dataclasses.field(
        default_factory=_utc_current_time,
    )

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Client):
            return self.participant_id == other.participant_id
        else:
            return False

    def __hash__(self) -> int:
        return hash(self.participant_id)

    def __repr__(self) -> str:
        created = self.created.strftime('%Y-%m-%d %H:%M:%S %Z')
        address = str(self.websocket.remote_address)
        return (
            f'{self.__class__.__name__}(participant_id={self.participant_id}, '
            f'address={address}, created={created})'
        )


class ClientManager:
    """Manages active client connections.

    All methods are synchronous so each mutation completes without yielding
    to the event loop. A lookup therefore observes a client either fully
    registered or fully removed.

    Warning:
        This class is intended for internal use by the
        [`RelayServer`][peermatch.relay.server.RelayServer].
    """

    def __init__(self) -> None:
        self._clients_by_id: dict[str, Client] = {}
        self._clients_by_websocket: dict[ServerConnection, Client] = {}

    def add_client(self, client: Client) -> None:
        """Add a new client."""
        self._clients_by_id[client.participant_id] = client
        self._clients_by_websocket[client.websocket] = client

    def get_clients(self) -> list[Client]:
        """Get a list of all clients in the order they joined."""
        return list(self._clients_by_id.values())

    def get_client_by_id(self, participant_id: str) -> Client | None:
        """Get a client by the client's participant identifier."""
        return self._clients_by_id.get(participant_id, None)

    def get_client_by_websocket(
        self,
        websocket: ServerConnection,
    ) -> Client | None:
        """Get a client by the current websocket connection."""
        return self._clients_by_websocket.get(websocket, None)

    def remove_client(self, client: Client) -> None:
        """Remove a client."""
        self._clients_by_id.pop(client.participant_id, None)
        self._clients_by_websocket.pop(client.websocket, None)
