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
from urllib.parse import urlsplit

import websockets
from websockets.asyncio.server import ServerConnection, serve

from broadcast import BroadcastEngine
from gateway_data import GatewayData
from message_router import MessageRouter
from messages import SENSOR_DATA, Message


class WebsocketServer:

    def __init__(self, config, data: GatewayData, router: MessageRouter, broadcast: BroadcastEngine):
        self._config = config
        self._data = data
        self._router = router
        self._broadcast = broadcast
        server_config = self._config["server"]
        self._path = server_config["path"]
        self._websocket_server = serve(
            self.handler,
            server_config["host"],
            int(server_config["port"]),
            ping_interval=float(server_config["ping_interval"]),
            ping_timeout=float(server_config["ping_timeout"]),
        )

    async def handler(self, websocket: ServerConnection):
        request_path = urlsplit(websocket.request.path).path if websocket.request is not None else self._path
        if request_path != self._path:
            logging.warning(f"Rejecting websocket on unknown path {request_path!r} from {websocket.remote_address}")
            await websocket.close(code=1008, reason="Unknown path")
            return

        remote_address = None
        if websocket.remote_address:
            remote_address = ":".join(str(part) for part in websocket.remote_address[:2])
        async with self._data.state_lock:
            connection = self._data.registry.connect(websocket, remote_address=remote_address)
            await self._broadcast.to_one(connection.connection_id,
                                         Message(SENSOR_DATA, self._data.store.read().to_dict()))

        shutdown_wait_task = asyncio.create_task(self._data.shutdown_event.wait())
        recv_task = None
        try:
            while True:
                recv_task = asyncio.create_task(websocket.recv())
                await asyncio.wait([recv_task, shutdown_wait_task], return_when=asyncio.FIRST_COMPLETED)

                # shutdown case
                if self._data.shutdown_event.is_set():
                    recv_task.cancel()
                    await websocket.close()
                    return

                frame = recv_task.result()
                try:
                    await self._router.handle_frame(connection.connection_id, frame)
                except Exception as e:
                    logging.exception(e)
                    logging.error(f"Could not handle message from {connection}")
        except websockets.exceptions.ConnectionClosed:
            logging.debug(f"Websocket connection {connection} closed")
        finally:
            shutdown_wait_task.cancel()
            if recv_task is not None and not recv_task.done():
                recv_task.cancel()
            async with self._data.state_lock:
                self._data.registry.unregister(connection.connection_id)

    async def __aenter__(self):
        logging.debug(f"Starting websocket server")
        return await self._websocket_server.__aenter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        logging.debug(f"Stopping websocket server")
        self._data.shutdown_event.set()
        return await self._websocket_server.__aexit__(exc_type, exc_val, exc_tb)
