"""
CoopLink
Copyright (C) 2024 thiccaxe

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU Affero General Public License as published
by the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU Affero General Public License for more details.

You should have received a copy of the GNU Affero General Public License
along with this program.  If not, see <https://www.gnu.org/licenses/>.
"""

import dataclasses
import enum
import itertools
import logging
import time
from typing import Callable, Optional

from websockets.protocol import State as WebsocketState


class ConnectionRole(enum.Enum):
    UNASSIGNED = "unassigned"
    DEVICE = "device"
    MONITOR = "monitor"


@dataclasses.dataclass(eq=False)
class Connection:
    connection_id: int
    transport: object  # websockets ServerConnection, or anything with async send() and .state
    role: ConnectionRole = ConnectionRole.UNASSIGNED
    alive: bool = True
    remote_address: Optional[str] = None
    connected_at: float = dataclasses.field(default_factory=time.time)

    def is_open(self) -> bool:
        if not self.alive:
            return False
        return getattr(self.transport, "state", WebsocketState.OPEN) == WebsocketState.OPEN

    def __str__(self):
        return f"#{self.connection_id} ({self.remote_address or 'unknown'}, {self.role.value})"


class ConnectionRegistry:

    def __init__(self):
        self._connections: dict[int, Connection] = dict()
        self._ids = itertools.count(1)
        self._arbiter = None

    def set_arbiter(self, arbiter):
        self._arbiter = arbiter

    def next_connection_id(self) -> int:
        return next(self._ids)

    def connect(self, transport, remote_address: Optional[str] = None) -> Connection:
        connection = Connection(self.next_connection_id(), transport, remote_address=remote_address)
        self.register(connection)
        return connection

    def register(self, connection: Connection) -> None:
        if connection.connection_id in self._connections:
            logging.debug(f"Connection {connection} already registered")
            return
        self._connections[connection.connection_id] = connection
        logging.info(f"Connection {connection} registered. Total connections: {len(self._connections)}")

    def unregister(self, connection_id: int) -> None:
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return
        connection.alive = False
        if self._arbiter is not None and self._arbiter.is_bound_connection(connection_id):
            self._arbiter.unbind(connection_id)
            logging.info(f"Device connection {connection} removed")
        logging.info(f"Connection {connection} unregistered. Total connections: {len(self._connections)}")

    def get(self, connection_id: int) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def open_connections(self) -> list[Connection]:
        """
        snapshot of the open connections; closed ones found on the way are dropped
        """
        result = []
        for connection in list(self._connections.values()):
            if connection.is_open():
                result.append(connection)
            else:
                logging.debug(f"Pruning closed connection {connection}")
                self.unregister(connection.connection_id)
        return result

    def for_each_open(self, fn: Callable[[Connection], None]) -> int:
        connections = self.open_connections()
        for connection in connections:
            fn(connection)
        return len(connections)

    def count(self) -> int:
        return len(self._connections)

    def stats(self) -> dict:
        device_connected = self._arbiter is not None and self._arbiter.is_device_connected()
        monitors = sum(
            1 for connection in self._connections.values()
            if self._arbiter is None or not self._arbiter.is_bound_connection(connection.connection_id)
        )
        return {
            "totalClients": len(self._connections),
            "monitorClients": monitors,
            "deviceConnected": device_connected,
            "deviceId": self._arbiter.current_device_id() if self._arbiter is not None else None,
        }
