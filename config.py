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
from pathlib import Path
from typing import Union

import aiofiles
import tomlkit
import tomlkit.exceptions
import voluptuous.error
from voluptuous import All, Any, In, Length, Range, Required, Schema, Upper


class ConfigurationLoadError(Exception): pass


def liveness_timing_validator(device: dict) -> dict:
    # offline_timeout >= 2 * status_check_interval
    if device["offline_timeout"] < 2 * device["status_check_interval"]:
        raise voluptuous.error.Invalid(
            "offline_timeout must be at least twice status_check_interval", path=["offline_timeout"]
        )
    return device


def bounds_validator(limits: dict) -> dict:
    for name in ("threshold", "temperature", "humidity"):
        if limits[f"{name}_min"] > limits[f"{name}_max"]:
            raise voluptuous.error.Invalid(f"{name}_min is larger than {name}_max", path=[f"{name}_min"])
    return limits


Number = Any(int, float)

LogLevel = All(str, Upper, In(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]))

CONFIG_SCHEMA = Schema({
    Required('server', default={}): {
        Required('host', default="0.0.0.0"): str,
        Required('port', default=3001): All(int, Range(min=0, max=65535)),
        Required('path', default="/ws"): All(str, Length(min=1)),
        Required('ping_interval', default=30): All(Number, Range(min=1)),
        Required('ping_timeout', default=60): All(Number, Range(min=1)),
        Required('send_timeout', default=5): All(Number, Range(min=0.1)),
    },
    Required('device', default={}): All({
        Required('offline_timeout', default=30): All(Number, Range(min=1)),
        Required('status_check_interval', default=10): All(Number, Range(min=0.1)),
    }, liveness_timing_validator),
    Required('limits', default={}): All({
        Required('threshold_min', default=0): Number,
        Required('threshold_max', default=100): Number,
        Required('temperature_min', default=-50): Number,
        Required('temperature_max', default=100): Number,
        Required('humidity_min', default=0): Number,
        Required('humidity_max', default=100): Number,
    }, bounds_validator),
    Required('defaults', default={}): {
        Required('temperature', default=25.0): Number,
        Required('humidity', default=60.0): Number,
        Required('threshold', default=30.0): Number,
    },
    Required('logging', default={}): {
        Required('level', default="INFO"): LogLevel,
        Required('websockets_level', default="WARNING"): LogLevel,
    },
})


def default_config() -> dict:
    return CONFIG_SCHEMA({})


class Config:
    config: dict
    document: tomlkit.TOMLDocument

    def __init__(self, config_location: Union[str, Path]):
        self.config_location = config_location

    async def initialize(self):
        try:
            async with aiofiles.open(self.config_location, 'r') as config_file:
                file_data = await config_file.read()
                self.document = tomlkit.parse(file_data)
                logging.debug("Loaded Configuration without toml format error")
                logging.debug("Validating against Schema.")
                self.config = CONFIG_SCHEMA(self.document.unwrap())
                logging.debug("Validated against Schema.")
        except FileNotFoundError as e:
            logging.exception(e)
            logging.warning(
                f"Could not find {self.config_location}. Copy from .example/config.toml to {self.config_location}")
            raise ConfigurationLoadError() from e
        except IOError as e:
            logging.exception(e)
            logging.warning(f"Could not open file {self.config_location}")
            raise ConfigurationLoadError() from e
        except tomlkit.exceptions.ParseError as e:
            logging.exception(e)
            logging.warning(f"Configuration in {self.config_location} is invalid")
            raise ConfigurationLoadError() from e
        except voluptuous.error.MultipleInvalid as e:
            logging.exception(e)
            logging.warning(f"Configuration in {self.config_location} does not match expected format")
            logging.warning(f"Issue configuration item: {e.path}")
            raise ConfigurationLoadError() from e

        logging.info(f"Configuration loaded.")
