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
import json
import math
import time
from typing import Any, Optional, Union

import voluptuous.error
from voluptuous import ALLOW_EXTRA, All, Any as AnyOf, Length, Optional as OptionalKey, Required, Schema

from errors import DeserializationError, ValidationError

# inbound
SENSOR_DATA = "sensor_data"
DEVICE_INFO = "device_info"
FAN_CONTROL = "fan_control"
THRESHOLD_UPDATE = "threshold_update"
MODE_CHANGE = "mode_change"
REQUEST_STATUS = "request_status"
CLIENT_CONNECTED = "client_connected"

# outbound only
DEVICE_STATUS = "device_status"
WELCOME = "welcome"
FAN_STATUS = "fan_status"
THRESHOLD_UPDATED = "threshold_updated"
MODE_UPDATED = "mode_updated"
STATUS_RESPONSE = "status_response"
ERROR = "error"

INBOUND_TYPES = frozenset({
    SENSOR_DATA, DEVICE_INFO, FAN_CONTROL, THRESHOLD_UPDATE, MODE_CHANGE, REQUEST_STATUS, CLIENT_CONNECTED,
})


def now_ms() -> int:
    return int(time.time() * 1000)


def is_finite_number(value) -> bool:
    if isinstance(value, bool):
        return False
    # long JSON integers overflow a float conversion
    return isinstance(value, int) or (isinstance(value, float) and math.isfinite(value))


def number(value):
    if not is_finite_number(value):
        raise voluptuous.error.Invalid("expected a finite number")
    return value


SENSOR_DATA_SCHEMA = Schema({
    Required("temperature"): number,
    Required("humidity"): number,
    OptionalKey("fanState"): bool,
    OptionalKey("autoMode"): bool,
    OptionalKey("manualMode"): bool,
    OptionalKey("temperatureThreshold"): number,
    OptionalKey("deviceId"): All(str, Length(min=1)),
    OptionalKey("deviceName"): AnyOf(None, str),
    OptionalKey("wifiRSSI"): AnyOf(None, number),
    OptionalKey("uptime"): AnyOf(None, number),
}, extra=ALLOW_EXTRA)

DEVICE_INFO_SCHEMA = Schema({
    Required("deviceId"): All(str, Length(min=1)),
    OptionalKey("deviceName"): AnyOf(None, str),
    OptionalKey("temperature"): number,
    OptionalKey("humidity"): number,
    OptionalKey("fanState"): bool,
    OptionalKey("autoMode"): bool,
    OptionalKey("manualMode"): bool,
    OptionalKey("temperatureThreshold"): number,
    OptionalKey("wifiRSSI"): AnyOf(None, number),
    OptionalKey("uptime"): AnyOf(None, number),
}, extra=ALLOW_EXTRA)

FAN_CONTROL_SCHEMA = Schema({
    Required("state"): bool,
    OptionalKey("mode"): AnyOf(None, "auto", "manual"),
}, extra=ALLOW_EXTRA)

THRESHOLD_UPDATE_SCHEMA = Schema({
    Required("threshold"): number,
}, extra=ALLOW_EXTRA)

MODE_CHANGE_SCHEMA = Schema({
    Required("autoMode"): bool,
    Required("manualMode"): bool,
}, extra=ALLOW_EXTRA)

CLIENT_CONNECTED_SCHEMA = Schema({
    OptionalKey("clientType"): str,
    OptionalKey("connectionId"): AnyOf(str, int),
}, extra=ALLOW_EXTRA)


def validate_payload(schema: Schema, data) -> dict:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("data", "data must be an object")
    try:
        return schema(data)
    except voluptuous.error.MultipleInvalid as e:
        error = e.errors[0]
        field = ".".join(str(part) for part in error.path) or "data"
        raise ValidationError(field, f"{field}: {error.error_message}") from e


@dataclasses.dataclass(frozen=True)
class Message:
    type: str
    data: Any = None
    timestamp: int = dataclasses.field(default_factory=now_ms)
    origin_connection_id: Optional[int] = None

    @staticmethod
    def from_frame(frame: Union[str, bytes], origin_connection_id: Optional[int] = None) -> "Message":
        if isinstance(frame, (bytes, bytearray)):
            try:
                frame = frame.decode("utf-8")
            except UnicodeDecodeError as e:
                raise DeserializationError("Frame is not valid UTF-8") from e
        try:
            packet = json.loads(frame)
        except json.JSONDecodeError as e:
            raise DeserializationError() from e

        if not isinstance(packet, dict):
            raise DeserializationError("Message must be a JSON object")
        if not isinstance(packet.get("type"), str):
            raise DeserializationError("Message has no type")

        timestamp = packet.get("timestamp")
        if not is_finite_number(timestamp):
            timestamp = now_ms()

        return Message(packet["type"], packet.get("data"), int(timestamp), origin_connection_id)

    def encode(self, delivered_at: Optional[int] = None) -> str:
        return json.dumps({
            "type": self.type,
            "data": self.data,
            "timestamp": now_ms() if delivered_at is None else delivered_at,
        })


def error_message(error, request_type: Optional[str] = None) -> Message:
    data = error.to_error_data()
    if request_type is not None:
        data["requestType"] = request_type
    return Message(ERROR, data)
