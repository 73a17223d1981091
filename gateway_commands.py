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

import logging
from typing import Optional

from gateway_data import GatewayData
from message_router import MessageRouter


class GatewayCommands:
    """
    Method-call surface for a request/response front end.

    Each command goes through the same validation and fan-out as the matching
    monitor message and raises ``errors.ValidationError`` on bad input.
    """

    def __init__(self, data: GatewayData, router: MessageRouter):
        self._data = data
        self._router = router

    def current_data(self) -> dict:
        return self._data.store.read().to_dict()

    async def control_fan(self, state: bool, mode: Optional[str] = None) -> dict:
        async with self._data.state_lock:
            updated = await self._router.fan_control({"state": state, "mode": mode})
        return {
            "fanState": updated.actuator_on,
            "mode": updated.control_mode.value,
            "pending": updated.actuator_pending,
        }

    async def update_threshold(self, threshold: float) -> dict:
        async with self._data.state_lock:
            updated = await self._router.threshold_update({"threshold": threshold})
        return {"temperatureThreshold": updated.threshold}

    async def change_mode(self, auto_mode: bool, manual_mode: bool) -> dict:
        async with self._data.state_lock:
            updated = await self._router.mode_change({"autoMode": auto_mode, "manualMode": manual_mode})
        return {"autoMode": updated.auto_mode, "manualMode": updated.manual_mode}

    def health_check(self) -> dict:
        stats = self._data.registry.stats()
        health = {
            "status": "OK",
            "connections": stats["totalClients"],
            "deviceConnected": stats["deviceConnected"],
            "deviceOnline": self._data.store.is_device_online(),
        }
        logging.debug(f"Health check: {health}")
        return health
