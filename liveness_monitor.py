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
from typing import Optional

from broadcast import BroadcastEngine
from gateway_data import GatewayData
from messages import DEVICE_STATUS, Message
from state_store import DeviceStatus


class LivenessMonitor:

    def __init__(self, config, data: GatewayData, broadcast: BroadcastEngine):
        self._config = config
        self._data = data
        self._broadcast = broadcast
        self._interval = float(self._config["device"]["status_check_interval"])
        self._task: Optional[asyncio.Task] = None

    async def check(self) -> bool:
        """
        One liveness tick. Returns True if the device was declared offline by this tick.
        """
        async with self._data.state_lock:
            state = self._data.store.read()
            if state.device_status is DeviceStatus.OFFLINE or not self._data.store.is_stale():
                return False

            self._data.store.set_status(DeviceStatus.OFFLINE)
            self._data.arbiter.clear()
            logging.warning(f"Device {state.device_id} marked as offline, last seen {state.last_update_iso()}")

            await self._broadcast.to_monitors(Message(DEVICE_STATUS, {
                "status": DeviceStatus.OFFLINE.value,
                "deviceId": state.device_id,
                "lastSeen": state.last_update_iso(),
            }))
            return True

    async def run(self):
        while not self._data.shutdown_event.is_set():
            try:
                await asyncio.wait_for(self._data.shutdown_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                try:
                    await self.check()
                except Exception as e:
                    logging.exception(e)

    async def __aenter__(self):
        logging.debug(f"Starting liveness monitor, checking every {self._interval:g}s")
        self._task = asyncio.create_task(self.run())
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logging.debug("Stopped liveness monitor")
