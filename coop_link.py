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
import os

from broadcast import BroadcastEngine
from config import Config, ConfigurationLoadError
from gateway_commands import GatewayCommands
from gateway_data import GatewayData
from liveness_monitor import LivenessMonitor
from logger import apply_logging_config, print, setup_logging
from message_router import MessageRouter
from websocket_server import WebsocketServer


class CoopLink:

    def __init__(self, config):
        self._config = config
        self._data = GatewayData(self._config)
        self._broadcast = BroadcastEngine(self._config, self._data)
        self._router = MessageRouter(self._config, self._data, self._broadcast)
        self._liveness_monitor = LivenessMonitor(self._config, self._data, self._broadcast)
        self._websocket_server = WebsocketServer(self._config, self._data, self._router, self._broadcast)
        self.commands = GatewayCommands(self._data, self._router)

    def _banner(self):
        server = self._config["server"]
        print("[bold]=================================[/bold]")
        print("[bold]        CoopLink Gateway         [/bold]")
        print("[bold]=================================[/bold]")
        print(f"WebSocket: ws://{server['host']}:{server['port']}{server['path']}")
        device = self._config["device"]
        print(f"Device offline after {device['offline_timeout']}s, "
              f"checked every {device['status_check_interval']}s")

    async def begin(self):
        logging.info("Starting CoopLink Gateway")
        async with self._websocket_server:
            logging.info("Starting Liveness Monitor")
            async with self._liveness_monitor:
                self._banner()
                try:
                    logging.info("Ctrl^C to quit")
                    await self._data.shutdown_event.wait()
                except asyncio.CancelledError:
                    logging.info("Cancelled ...")
                except KeyboardInterrupt:
                    logging.info("Cancelled ...")
                finally:
                    logging.info("Stopping Server ...")


async def main():
    logging.info("Starting coop link ...")

    config = Config(os.environ.get("COOP_LINK_CONFIG", "./config.toml"))

    try:
        await config.initialize()
        apply_logging_config(config.config["logging"])

        coop_link = CoopLink(config.config)
        await coop_link.begin()
    except ConfigurationLoadError:
        logging.error("Could not load configuration. Exiting")
        return


if __name__ == "__main__":
    setup_logging()
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logging.info("Stopped.")
