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
import datetime
import enum
import logging
import time
from typing import Callable, Optional

from errors import ValidationError
from messages import is_finite_number


class ControlMode(enum.Enum):
    AUTO = "auto"
    MANUAL = "manual"


class DeviceStatus(enum.Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    ERROR = "error"


@dataclasses.dataclass
class SensorState:
    temperature: float
    humidity: float
    actuator_on: bool
    actuator_pending: bool
    control_mode: ControlMode
    threshold: float
    last_update: float  # epoch seconds
    device_status: DeviceStatus
    device_id: Optional[str] = None
    device_name: Optional[str] = None
    wifi_rssi: Optional[int] = None
    uptime: Optional[int] = None

    @property
    def auto_mode(self) -> bool:
        return self.control_mode is ControlMode.AUTO

    @property
    def manual_mode(self) -> bool:
        return self.control_mode is ControlMode.MANUAL

    def last_update_iso(self) -> str:
        return datetime.datetime.fromtimestamp(self.last_update, tz=datetime.timezone.utc).isoformat()

    def to_dict(self) -> dict:
        return {
            "temperature": self.temperature,
            "humidity": self.humidity,
            "fanState": self.actuator_on,
            "fanPending": self.actuator_pending,
            "autoMode": self.auto_mode,
            "manualMode": self.manual_mode,
            "temperatureThreshold": self.threshold,
            "lastUpdate": self.last_update_iso(),
            "deviceStatus": self.device_status.value,
            "deviceId": self.device_id,
            "deviceName": self.device_name,
            "wifiRSSI": self.wifi_rssi,
            "uptime": self.uptime,
        }


def control_mode_from_flags(auto_mode, manual_mode) -> ControlMode:
    if not isinstance(auto_mode, bool):
        raise ValidationError("autoMode", "autoMode must be a boolean")
    if not isinstance(manual_mode, bool):
        raise ValidationError("manualMode", "manualMode must be a boolean")
    if auto_mode == manual_mode:
        raise ValidationError("autoMode", "Exactly one of autoMode and manualMode must be true")
    return ControlMode.AUTO if auto_mode else ControlMode.MANUAL


class StateStore:
    """
    Owns the one SensorState of the gateway.

    Mutators validate first and only then write, so a rejected call leaves the state untouched.
    None of them await, so on the event loop each call is indivisible.
    Every mutator returns a copy of the state as it is after the mutation.
    """

    def __init__(self, config, clock: Callable[[], float] = time.time):
        self._config = config
        self._clock = clock
        limits = self._config["limits"]
        self._threshold_bounds = (float(limits["threshold_min"]), float(limits["threshold_max"]))
        self._temperature_bounds = (float(limits["temperature_min"]), float(limits["temperature_max"]))
        self._humidity_bounds = (float(limits["humidity_min"]), float(limits["humidity_max"]))
        self._offline_timeout = float(self._config["device"]["offline_timeout"])

        defaults = self._config["defaults"]
        self._state = SensorState(
            temperature=float(defaults["temperature"]),
            humidity=float(defaults["humidity"]),
            actuator_on=False,
            actuator_pending=False,
            control_mode=ControlMode.AUTO,
            threshold=float(defaults["threshold"]),
            last_update=self._clock(),
            device_status=DeviceStatus.OFFLINE,
        )

    @property
    def threshold_bounds(self) -> tuple[float, float]:
        return self._threshold_bounds

    def read(self) -> SensorState:
        return dataclasses.replace(self._state)

    @staticmethod
    def _bounded(field: str, value, bounds: tuple[float, float]) -> float:
        if not is_finite_number(value):
            raise ValidationError(field, f"{field} must be a number")
        low, high = bounds
        if not (low <= value <= high):
            raise ValidationError(field, f"{field} must be between {low:g} and {high:g}")
        return float(value)

    def apply_device_update(self, fields: dict) -> SensorState:
        changes = {}

        if "temperature" in fields:
            changes["temperature"] = self._bounded("temperature", fields["temperature"], self._temperature_bounds)
        if "humidity" in fields:
            changes["humidity"] = self._bounded("humidity", fields["humidity"], self._humidity_bounds)
        if "temperatureThreshold" in fields:
            changes["threshold"] = self._bounded("temperatureThreshold", fields["temperatureThreshold"],
                                                 self._threshold_bounds)

        if "fanState" in fields:
            if not isinstance(fields["fanState"], bool):
                raise ValidationError("fanState", "fanState must be a boolean")
            changes["actuator_on"] = fields["fanState"]
            changes["actuator_pending"] = False

        if "autoMode" in fields or "manualMode" in fields:
            current = self._state
            auto_mode = fields.get("autoMode", not fields.get("manualMode", current.manual_mode))
            manual_mode = fields.get("manualMode", not auto_mode)
            changes["control_mode"] = control_mode_from_flags(auto_mode, manual_mode)

        for key, attr in (("deviceId", "device_id"), ("deviceName", "device_name")):
            if key in fields:
                if fields[key] is not None and not isinstance(fields[key], str):
                    raise ValidationError(key, f"{key} must be a string")
                changes[attr] = fields[key]

        for key, attr in (("wifiRSSI", "wifi_rssi"), ("uptime", "uptime")):
            if key in fields:
                if fields[key] is not None and not is_finite_number(fields[key]):
                    raise ValidationError(key, f"{key} must be a number")
                changes[attr] = None if fields[key] is None else int(fields[key])

        changes["last_update"] = self._clock()
        changes["device_status"] = DeviceStatus.ONLINE
        self._state = dataclasses.replace(self._state, **changes)
        return self.read()

    def set_actuator(self, state, mode: Optional[str] = None, pending: bool = False) -> SensorState:
        if not isinstance(state, bool):
            raise ValidationError("state", "state must be a boolean")
        changes = {"actuator_on": state, "actuator_pending": bool(pending)}
        if mode is not None:
            try:
                changes["control_mode"] = ControlMode(mode)
            except ValueError as e:
                raise ValidationError("mode", "mode must be 'auto' or 'manual'") from e
        self._state = dataclasses.replace(self._state, **changes)
        return self.read()

    def set_threshold(self, value) -> SensorState:
        threshold = self._bounded("threshold", value, self._threshold_bounds)
        self._state = dataclasses.replace(self._state, threshold=threshold)
        return self.read()

    def set_mode(self, auto_mode, manual_mode) -> SensorState:
        control_mode = control_mode_from_flags(auto_mode, manual_mode)
        self._state = dataclasses.replace(self._state, control_mode=control_mode)
        return self.read()

    def set_status(self, status: DeviceStatus) -> SensorState:
        if not isinstance(status, DeviceStatus):
            raise ValidationError("deviceStatus", "Unknown device status")
        if status is not self._state.device_status:
            logging.debug(f"Device status {self._state.device_status.value} -> {status.value}")
        self._state = dataclasses.replace(self._state, device_status=status)
        return self.read()

    def is_stale(self, now: Optional[float] = None) -> bool:
        if now is None:
            now = self._clock()
        return now - self._state.last_update > self._offline_timeout

    def is_device_online(self, now: Optional[float] = None) -> bool:
        return not self.is_stale(now)
