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
import logging
from typing import Optional

from connection_registry import Connection, ConnectionRegistry, ConnectionRole
from state_store import DeviceStatus, StateStore


@dataclasses.dataclass(frozen=True)
class DeviceBinding:
    connection_id: int
    device_id: str
    device_name: Optional[str] = None


class DeviceArbiter:
    """
    Holds the device slot: at most one connection is the device at any time.

    A newer claim wins. The previous holder is demoted to unassigned but its
    transport is left open, it may be a stale socket the server has not reaped yet.
    """

    def __init__(self, store: StateStore, registry: ConnectionRegistry):
        self._store = store
        self._registry = registry
        self._binding: Optional[DeviceBinding] = None
        self._registry.set_arbiter(self)

    def bind(self, connection_id: int, device_id: str, device_name: Optional[str] = None) -> bool:
        """
        returns True when the slot changed hands, False on a rebind of the same connection
        """
        connection = self._registry.get(connection_id)
        if connection is None:
            logging.warning(f"Attempted to bind device {device_id=} to unknown connection #{connection_id}")
            return False

        previous = self._binding
        if previous is not None and previous.connection_id == connection_id:
            if previous.device_id != device_id:
                logging.info(f"Device on connection #{connection_id} re-identified {previous.device_id} -> {device_id}")
            self._binding = DeviceBinding(connection_id, device_id, device_name)
            self._store.set_status(DeviceStatus.ONLINE)
            return False

        if previous is not None:
            self._demote(previous.connection_id)
            logging.info(f"Device {device_id=} on #{connection_id} replaces {previous.device_id} on "
                         f"#{previous.connection_id}")

        self._binding = DeviceBinding(connection_id, device_id, device_name)
        connection.role = ConnectionRole.DEVICE
        self._store.set_status(DeviceStatus.ONLINE)
        logging.info(f"Device connection established for {device_id=} on {connection}")
        return True

    def unbind(self, connection_id: int) -> bool:
        if not self.is_bound_connection(connection_id):
            return False
        self.clear()
        return True

    def clear(self) -> Optional[int]:
        if self._binding is None:
            return None
        connection_id = self._binding.connection_id
        self._binding = None
        self._demote(connection_id)
        logging.info(f"Device slot cleared (was #{connection_id})")
        return connection_id

    def _demote(self, connection_id: int):
        connection = self._registry.get(connection_id)
        if connection is not None:
            connection.role = ConnectionRole.UNASSIGNED

    def assign_monitor(self, connection_id: int) -> None:
        connection = self._registry.get(connection_id)
        if connection is None or self.is_bound_connection(connection_id):
            return
        connection.role = ConnectionRole.MONITOR

    def is_bound_connection(self, connection_id: int) -> bool:
        return self._binding is not None and self._binding.connection_id == connection_id

    def current_device_id(self) -> Optional[str]:
        return self._binding.device_id if self._binding is not None else None

    def current_device_name(self) -> Optional[str]:
        return self._binding.device_name if self._binding is not None else None

    def bound_connection(self) -> Optional[Connection]:
        if self._binding is None:
            return None
        return self._registry.get(self._binding.connection_id)

    def is_device_connected(self) -> bool:
        connection = self.bound_connection()
        return connection is not None and connection.is_open()
