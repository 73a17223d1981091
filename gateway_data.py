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
import time
from typing import Callable

from connection_registry import ConnectionRegistry
from device_arbiter import DeviceArbiter
from state_store import StateStore


class GatewayData:
    """
    The shared state every part of the gateway works on.

    Message handling and liveness ticks must hold ``state_lock`` while they
    read or change the store, the registry or the device slot and while they
    send the resulting broadcasts.
    """

    def __init__(self, config, clock: Callable[[], float] = time.time):
        self.store = StateStore(config, clock=clock)
        self.registry = ConnectionRegistry()
        self.arbiter = DeviceArbiter(self.store, self.registry)

        self.state_lock = asyncio.Lock()
        self.shutdown_event = asyncio.Event()
