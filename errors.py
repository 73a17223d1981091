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

from typing import Optional


class GatewayError(Exception):
    """
    every failure here is scoped to one message or one connection
    """
    code = "gateway_error"

    def to_error_data(self) -> dict:
        return {
            "code": self.code,
            "message": str(self),
        }


class ValidationError(GatewayError):
    code = "validation_error"

    def __init__(self, field: str, message: Optional[str] = None):
        self.field = field
        super().__init__(message or f"Invalid value for {field}")

    def to_error_data(self) -> dict:
        data = super().to_error_data()
        data["field"] = self.field
        return data


class UnknownMessageType(GatewayError):
    code = "unknown_message_type"

    def __init__(self, message_type):
        self.message_type = message_type
        super().__init__(f"Unknown message type: {message_type}")


class DeserializationError(GatewayError):
    code = "invalid_message"

    def __init__(self, message: str = "Invalid message format"):
        super().__init__(message)


class MessageNotPermitted(GatewayError):
    code = "not_permitted"

    def __init__(self, message_type: str, role):
        self.message_type = message_type
        self.role = role
        super().__init__(f"Message type {message_type} is not permitted from a {role.value} connection")


class TransportError(GatewayError):
    code = "transport_error"

    def __init__(self, connection_id: int, message: Optional[str] = None):
        self.connection_id = connection_id
        super().__init__(message or f"Could not deliver to connection {connection_id}")
