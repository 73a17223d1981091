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

import asyncio
import logging
from typing import Iterable, Optional

import websockets

from connection_registry import Connection
from errors import TransportError
from gateway_data import GatewayData
from messages import Message, now_ms


class BroadcastEngine:
    """
    Best effort fan-out. A connection that is closed, fails a send or does not
    take a frame within ``send_timeout`` is dropped from the registry; the rest
    of the audience still gets the message.
    """

    def __init__(self, config, data: GatewayData):
        self._config = config
        self._data = data
        self._send_timeout = float(self._config["server"]["send_timeout"])

    async def _send(self, connection: Connection, message: Message) -> None:
        if not connection.is_open():
            raise TransportError(connection.connection_id, f"Connection {connection} is closed")
        frame = message.encode(delivered_at=now_ms())
        try:
            await asyncio.wait_for(connection.transport.send(frame), timeout=self._send_timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(connection.connection_id, f"Send to {connection} timed out") from e
        except (websockets.exceptions.ConnectionClosed, OSError) as e:
            raise TransportError(connection.connection_id, f"Send to {connection} failed: {e}") from e

    async def _deliver(self, connection: Connection, message: Message) -> bool:
        try:
            await self._send(connection, message)
            return True
        except TransportError as e:
            logging.warning(f"{e}; dropping connection")
            self._data.registry.unregister(connection.connection_id)
            return False

    async def _fan_out(self, connections: Iterable[Connection], message: Message) -> int:
        results = await asyncio.gather(*(self._deliver(connection, message) for connection in connections))
        return sum(1 for delivered in results if delivered)

    async def to_monitors(self, message: Message) -> int:
        arbiter = self._data.arbiter
        audience = [
            connection for connection in self._data.registry.open_connections()
            if not arbiter.is_bound_connection(connection.connection_id)
        ]
        delivered = await self._fan_out(audience, message)
        logging.debug(f"Broadcasted {message.type} to {delivered}/{len(audience)} monitors")
        return delivered

    async def to_all(self, message: Message) -> int:
        audience = self._data.registry.open_connections()
        delivered = await self._fan_out(audience, message)
        logging.debug(f"Broadcasted {message.type} to {delivered}/{len(audience)} connections")
        return delivered

    async def to_device(self, message: Message) -> bool:
        connection = self._data.arbiter.bound_connection()
        if connection is None:
            logging.warning(f"Device not connected. Message not sent: {message.type}")
            return False
        delivered = await self._deliver(connection, message)
        if delivered:
            logging.debug(f"Message sent to device ({self._data.arbiter.current_device_id()}): {message.type}")
        return delivered

    async def to_one(self, connection_id: int, message: Message) -> bool:
        connection: Optional[Connection] = self._data.registry.get(connection_id)
        if connection is None:
            logging.debug(f"Wanted to send {message.type} to #{connection_id} which is not connected")
            return False
        return await self._deliver(connection, message)
