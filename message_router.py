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
from typing import Optional, Union

from broadcast import BroadcastEngine
from connection_registry import ConnectionRole
from errors import DeserializationError, GatewayError, MessageNotPermitted, UnknownMessageType
from gateway_data import GatewayData
from messages import (
    CLIENT_CONNECTED,
    CLIENT_CONNECTED_SCHEMA,
    DEVICE_INFO,
    DEVICE_INFO_SCHEMA,
    DEVICE_STATUS,
    FAN_CONTROL,
    FAN_CONTROL_SCHEMA,
    FAN_STATUS,
    INBOUND_TYPES,
    MODE_CHANGE,
    MODE_CHANGE_SCHEMA,
    MODE_UPDATED,
    REQUEST_STATUS,
    SENSOR_DATA,
    SENSOR_DATA_SCHEMA,
    STATUS_RESPONSE,
    THRESHOLD_UPDATE,
    THRESHOLD_UPDATE_SCHEMA,
    THRESHOLD_UPDATED,
    WELCOME,
    Message,
    error_message,
    validate_payload,
)
from state_store import SensorState

WELCOME_TEXT = "Connected to CoopLink gateway"


class MessageRouter:
    """
    Dispatches inbound messages on (type, sender role).

    The sender role is looked up from the device arbiter for every message,
    a connection can gain or lose the device slot between two frames.
    """

    def __init__(self, config, data: GatewayData, broadcast: BroadcastEngine):
        self._config = config
        self._data = data
        self._broadcast = broadcast
        self._handlers = {
            (SENSOR_DATA, ConnectionRole.DEVICE): self._device_sensor_data,
            (DEVICE_INFO, ConnectionRole.DEVICE): self._device_info,
            (DEVICE_INFO, ConnectionRole.MONITOR): self._device_info,
            (FAN_CONTROL, ConnectionRole.DEVICE): self._device_fan_control,
            (FAN_CONTROL, ConnectionRole.MONITOR): self._monitor_fan_control,
            (THRESHOLD_UPDATE, ConnectionRole.DEVICE): self._device_threshold_update,
            (THRESHOLD_UPDATE, ConnectionRole.MONITOR): self._monitor_threshold_update,
            (MODE_CHANGE, ConnectionRole.DEVICE): self._device_mode_change,
            (MODE_CHANGE, ConnectionRole.MONITOR): self._monitor_mode_change,
            (REQUEST_STATUS, ConnectionRole.MONITOR): self._request_status,
            (CLIENT_CONNECTED, ConnectionRole.MONITOR): self._client_connected,
        }

    def sender_role(self, connection_id: Optional[int]) -> ConnectionRole:
        if connection_id is not None and self._data.arbiter.is_bound_connection(connection_id):
            return ConnectionRole.DEVICE
        return ConnectionRole.MONITOR

    async def handle_frame(self, connection_id: int, frame: Union[str, bytes]) -> None:
        try:
            message = Message.from_frame(frame, connection_id)
        except DeserializationError as e:
            logging.warning(f"Connection #{connection_id} sent a malformed message: {e}")
            await self._broadcast.to_one(connection_id, error_message(e))
            return
        await self.route(message)

    async def route(self, message: Message) -> None:
        async with self._data.state_lock:
            try:
                await self._dispatch(message)
            except GatewayError as e:
                logging.warning(f"Rejected {message.type!r} from #{message.origin_connection_id}: {e}")
                await self._broadcast.to_one(message.origin_connection_id, error_message(e, message.type))

    async def _dispatch(self, message: Message) -> None:
        if message.type not in INBOUND_TYPES:
            raise UnknownMessageType(message.type)

        role = self.sender_role(message.origin_connection_id)
        handler = self._handlers.get((message.type, role))
        if handler is None:
            raise MessageNotPermitted(message.type, role)

        logging.debug(f"Message {message.type} from #{message.origin_connection_id} ({role.value}): {message.data}")
        if role is ConnectionRole.MONITOR and message.origin_connection_id is not None:
            self._data.arbiter.assign_monitor(message.origin_connection_id)
        await handler(message)

    # device originated

    async def _device_sensor_data(self, message: Message) -> None:
        payload = validate_payload(SENSOR_DATA_SCHEMA, message.data)
        state = self._data.store.apply_device_update(payload)
        if "deviceId" in payload or "deviceName" in payload:
            # keep the slot identity in step with the reported one
            device_id = payload.get("deviceId", self._data.arbiter.current_device_id())
            self._data.arbiter.bind(message.origin_connection_id, device_id, state.device_name)
        await self._broadcast.to_monitors(Message(SENSOR_DATA, state.to_dict()))

    async def _device_info(self, message: Message) -> None:
        payload = validate_payload(DEVICE_INFO_SCHEMA, message.data)
        # store validation runs before the bind so a bad frame cannot take the slot
        state = self._data.store.apply_device_update(payload)
        self._data.arbiter.bind(message.origin_connection_id, state.device_id, state.device_name)
        state = self._data.store.read()
        logging.info(f"Device info received from {payload['deviceId']}")

        await self._broadcast.to_monitors(Message(DEVICE_STATUS, {
            "status": state.device_status.value,
            "deviceId": state.device_id,
            "deviceName": state.device_name,
        }))
        await self._broadcast.to_one(message.origin_connection_id, Message(WELCOME, {
            "message": WELCOME_TEXT,
            "deviceId": state.device_id,
            "settings": self._settings(state),
        }))

    async def _device_fan_control(self, message: Message) -> None:
        payload = validate_payload(FAN_CONTROL_SCHEMA, message.data)
        state = self._data.store.set_actuator(payload["state"], payload.get("mode"), pending=False)
        logging.info(f"Device confirmed fan {'ON' if state.actuator_on else 'OFF'}")
        await self._broadcast.to_monitors(self._fan_status(state))

    async def _device_threshold_update(self, message: Message) -> None:
        payload = validate_payload(THRESHOLD_UPDATE_SCHEMA, message.data)
        state = self._data.store.set_threshold(payload["threshold"])
        await self._broadcast.to_monitors(Message(THRESHOLD_UPDATED, {"threshold": state.threshold}))

    async def _device_mode_change(self, message: Message) -> None:
        payload = validate_payload(MODE_CHANGE_SCHEMA, message.data)
        state = self._data.store.set_mode(payload["autoMode"], payload["manualMode"])
        await self._broadcast.to_monitors(self._mode_updated(state))

    # monitor originated

    async def _monitor_fan_control(self, message: Message) -> None:
        await self.fan_control(message.data)

    async def _monitor_threshold_update(self, message: Message) -> None:
        await self.threshold_update(message.data)

    async def _monitor_mode_change(self, message: Message) -> None:
        await self.mode_change(message.data)

    async def _request_status(self, message: Message) -> None:
        await self._broadcast.to_one(message.origin_connection_id, Message(STATUS_RESPONSE, self.status()))

    async def _client_connected(self, message: Message) -> None:
        payload = validate_payload(CLIENT_CONNECTED_SCHEMA, message.data)
        logging.info(f"Client connected: {payload.get('clientType')}, ID: {payload.get('connectionId')}")
        state = self._data.store.read()
        await self._broadcast.to_one(message.origin_connection_id, Message(WELCOME, {
            "message": WELCOME_TEXT,
            "currentData": state.to_dict(),
            "deviceConnected": self._data.arbiter.is_device_connected(),
            "connections": self._data.registry.stats(),
        }))

    # monitor commands, also used by GatewayCommands; callers hold state_lock

    async def fan_control(self, data) -> SensorState:
        payload = validate_payload(FAN_CONTROL_SCHEMA, data)
        mode = payload.get("mode") or "manual"
        state = self._data.store.set_actuator(payload["state"], mode, pending=True)
        logging.info(f"Fan control: {'ON' if state.actuator_on else 'OFF'} ({mode}), awaiting device")

        await self._broadcast.to_device(Message(FAN_CONTROL, {"state": state.actuator_on, "mode": mode}))
        await self._broadcast.to_monitors(self._fan_status(state))
        return state

    async def threshold_update(self, data) -> SensorState:
        payload = validate_payload(THRESHOLD_UPDATE_SCHEMA, data)
        state = self._data.store.set_threshold(payload["threshold"])
        logging.info(f"Threshold updated: {state.threshold}")

        await self._broadcast.to_device(Message(THRESHOLD_UPDATE, {"threshold": state.threshold}))
        await self._broadcast.to_monitors(Message(THRESHOLD_UPDATED, {"threshold": state.threshold}))
        return state

    async def mode_change(self, data) -> SensorState:
        payload = validate_payload(MODE_CHANGE_SCHEMA, data)
        state = self._data.store.set_mode(payload["autoMode"], payload["manualMode"])
        logging.info(f"Mode changed - Auto: {state.auto_mode}, Manual: {state.manual_mode}")

        await self._broadcast.to_device(Message(MODE_CHANGE, {
            "autoMode": state.auto_mode, "manualMode": state.manual_mode,
        }))
        await self._broadcast.to_monitors(self._mode_updated(state))
        return state

    def status(self) -> dict:
        return {
            "sensorData": self._data.store.read().to_dict(),
            "deviceConnected": self._data.arbiter.is_device_connected(),
            "deviceOnline": self._data.store.is_device_online(),
            "connections": self._data.registry.stats(),
        }

    @staticmethod
    def _settings(state: SensorState) -> dict:
        return {
            "fanState": state.actuator_on,
            "autoMode": state.auto_mode,
            "manualMode": state.manual_mode,
            "temperatureThreshold": state.threshold,
        }

    @staticmethod
    def _fan_status(state: SensorState) -> Message:
        return Message(FAN_STATUS, {
            "fanState": state.actuator_on,
            "mode": state.control_mode.value,
            "pending": state.actuator_pending,
        })

    @staticmethod
    def _mode_updated(state: SensorState) -> Message:
        return Message(MODE_UPDATED, {"autoMode": state.auto_mode, "manualMode": state.manual_mode})
