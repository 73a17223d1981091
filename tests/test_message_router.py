import json

import pytest

from connection_registry import ConnectionRole
from state_store import ControlMode, DeviceStatus


@pytest.mark.asyncio
async def test_device_info_binds_and_announces(gateway) -> None:
    _, monitor = gateway.connect()
    device, device_transport = gateway.connect()

    await gateway.send(device, "device_info", {"deviceId": "coop-1", "deviceName": "Coop"})

    assert gateway.arbiter.is_bound_connection(device.connection_id)
    assert device.role is ConnectionRole.DEVICE
    state = gateway.store.read()
    assert state.device_status is DeviceStatus.ONLINE
    assert state.device_name == "Coop"

    status, = monitor.of_type("device_status")
    assert status["data"] == {"status": "online", "deviceId": "coop-1", "deviceName": "Coop"}

    welcome, = device_transport.of_type("welcome")
    assert welcome["data"]["deviceId"] == "coop-1"
    assert welcome["data"]["settings"] == {
        "fanState": False, "autoMode": True, "manualMode": False, "temperatureThreshold": 30.0,
    }
    assert device_transport.of_type("device_status") == []


@pytest.mark.asyncio
async def test_new_device_connection_replaces_old(gateway) -> None:
    _, monitor = gateway.connect()
    first, first_transport = gateway.connect()
    second, _ = gateway.connect()

    await gateway.send(first, "device_info", {"deviceId": "A"})
    monitor.clear()
    first_transport.clear()
    await gateway.send(second, "device_info", {"deviceId": "B"})

    assert gateway.arbiter.is_bound_connection(second.connection_id)
    assert first.role is ConnectionRole.UNASSIGNED
    online_for_b = [frame for frame in monitor.of_type("device_status") if frame["data"]["deviceId"] == "B"]
    assert len(online_for_b) == 1
    assert online_for_b[0]["data"]["status"] == "online"
    # the demoted socket is an ordinary peer now
    assert first_transport.of_type("device_status")[0]["data"]["deviceId"] == "B"


@pytest.mark.asyncio
async def test_invalid_device_info_does_not_take_the_slot(gateway) -> None:
    connection, transport = gateway.connect()
    await gateway.send(connection, "device_info", {"deviceId": "coop-1", "temperature": 500})
    assert gateway.arbiter.current_device_id() is None
    error, = transport.of_type("error")
    assert error["data"]["code"] == "validation_error"
    assert error["data"]["field"] == "temperature"


@pytest.mark.asyncio
async def test_sensor_data_from_device_is_broadcast_to_monitors(gateway, clock) -> None:
    device, device_transport = await gateway.connect_device()
    _, monitor = gateway.connect()
    clock.advance(3)

    await gateway.send(device, "sensor_data", {"temperature": 27.25, "humidity": 55, "wifiRSSI": -70})

    state = gateway.store.read()
    assert state.temperature == 27.25
    assert state.last_update == clock.now
    frame, = monitor.of_type("sensor_data")
    assert frame["data"]["temperature"] == 27.25
    assert frame["data"]["wifiRSSI"] == -70
    assert device_transport.sent == []


@pytest.mark.asyncio
async def test_sensor_data_from_monitor_is_rejected(gateway) -> None:
    _, device_transport = await gateway.connect_device()
    monitor, monitor_transport = gateway.connect()
    _, other_monitor = gateway.connect()
    before = gateway.store.read()

    await gateway.send(monitor, "sensor_data", {"temperature": 40, "humidity": 40})

    assert gateway.store.read() == before
    error, = monitor_transport.sent
    assert error["type"] == "error"
    assert error["data"]["code"] == "not_permitted"
    assert error["data"]["requestType"] == "sensor_data"
    assert other_monitor.sent == []
    assert device_transport.sent == []


@pytest.mark.asyncio
async def test_sensor_data_missing_fields_is_rejected(gateway) -> None:
    device, device_transport = await gateway.connect_device()
    _, monitor = gateway.connect()
    await gateway.send(device, "sensor_data", {"temperature": 20})
    error, = device_transport.of_type("error")
    assert error["data"]["field"] == "humidity"
    assert monitor.sent == []


@pytest.mark.asyncio
async def test_monitor_fan_control_is_pending_and_forwarded(gateway) -> None:
    _, device_transport = await gateway.connect_device()
    monitor, monitor_transport = gateway.connect()

    await gateway.send(monitor, "fan_control", {"state": True})

    state = gateway.store.read()
    assert state.actuator_on is True
    assert state.actuator_pending is True
    assert state.control_mode is ControlMode.MANUAL

    command, = device_transport.sent
    assert command["type"] == "fan_control"
    assert command["data"] == {"state": True, "mode": "manual"}

    status, = monitor_transport.of_type("fan_status")
    assert status["data"] == {"fanState": True, "mode": "manual", "pending": True}


@pytest.mark.asyncio
async def test_device_fan_control_confirms(gateway) -> None:
    device, device_transport = await gateway.connect_device()
    monitor, monitor_transport = gateway.connect()
    await gateway.send(monitor, "fan_control", {"state": True})
    monitor_transport.clear()

    await gateway.send(device, "fan_control", {"state": True, "mode": "manual"})

    assert gateway.store.read().actuator_pending is False
    status, = monitor_transport.of_type("fan_status")
    assert status["data"]["pending"] is False
    assert device_transport.of_type("fan_status") == []


@pytest.mark.asyncio
async def test_fan_control_without_device_still_updates_monitors(gateway, caplog) -> None:
    monitor, monitor_transport = gateway.connect()
    _, other_transport = gateway.connect()

    await gateway.send(monitor, "fan_control", {"state": True})

    assert gateway.store.read().actuator_pending is True
    for transport in (monitor_transport, other_transport):
        status, = transport.sent
        assert status["type"] == "fan_status"
        assert status["data"]["pending"] is True
    assert "Device not connected" in caplog.text


@pytest.mark.asyncio
async def test_monitor_threshold_update(gateway) -> None:
    _, device_transport = await gateway.connect_device()
    monitor, monitor_transport = gateway.connect()

    await gateway.send(monitor, "threshold_update", {"threshold": 22.5})

    assert gateway.store.read().threshold == 22.5
    forwarded, = device_transport.sent
    assert forwarded["type"] == "threshold_update"
    assert forwarded["data"] == {"threshold": 22.5}
    updated, = monitor_transport.of_type("threshold_updated")
    assert updated["data"] == {"threshold": 22.5}


@pytest.mark.asyncio
async def test_threshold_out_of_bounds_is_rejected(gateway) -> None:
    _, device_transport = await gateway.connect_device()
    monitor, monitor_transport = gateway.connect()
    _, other_transport = gateway.connect()

    await gateway.send(monitor, "threshold_update", {"threshold": 150})

    assert gateway.store.read().threshold == 30.0
    assert monitor_transport.types() == ["error"]
    assert monitor_transport.sent[0]["data"]["field"] == "threshold"
    assert other_transport.sent == []
    assert device_transport.sent == []


@pytest.mark.asyncio
async def test_device_threshold_update_is_not_echoed(gateway) -> None:
    device, device_transport = await gateway.connect_device()
    _, monitor = gateway.connect()
    await gateway.send(device, "threshold_update", {"threshold": 35})
    assert gateway.store.read().threshold == 35.0
    assert monitor.types() == ["threshold_updated"]
    assert device_transport.sent == []


@pytest.mark.asyncio
async def test_monitor_mode_change(gateway) -> None:
    _, device_transport = await gateway.connect_device()
    monitor, monitor_transport = gateway.connect()

    await gateway.send(monitor, "mode_change", {"autoMode": False, "manualMode": True})

    assert gateway.store.read().control_mode is ControlMode.MANUAL
    assert device_transport.of_type("mode_change")[0]["data"] == {"autoMode": False, "manualMode": True}
    assert monitor_transport.of_type("mode_updated")[0]["data"] == {"autoMode": False, "manualMode": True}


@pytest.mark.asyncio
@pytest.mark.parametrize("auto_mode, manual_mode", [(True, True), (False, False)])
async def test_mode_change_must_be_complementary(gateway, auto_mode, manual_mode) -> None:
    _, device_transport = await gateway.connect_device()
    monitor, monitor_transport = gateway.connect()

    await gateway.send(monitor, "mode_change", {"autoMode": auto_mode, "manualMode": manual_mode})

    assert gateway.store.read().control_mode is ControlMode.AUTO
    error, = monitor_transport.sent
    assert error["type"] == "error"
    assert error["data"]["code"] == "validation_error"
    assert device_transport.sent == []


@pytest.mark.asyncio
async def test_device_mode_change(gateway) -> None:
    device, device_transport = await gateway.connect_device()
    _, monitor = gateway.connect()
    await gateway.send(device, "mode_change", {"autoMode": False, "manualMode": True})
    assert monitor.types() == ["mode_updated"]
    assert device_transport.sent == []


@pytest.mark.asyncio
async def test_request_status(gateway) -> None:
    await gateway.connect_device()
    monitor, monitor_transport = gateway.connect()

    await gateway.send(monitor, "request_status")

    response, = monitor_transport.sent
    assert response["type"] == "status_response"
    assert response["data"]["deviceConnected"] is True
    assert response["data"]["deviceOnline"] is True
    assert response["data"]["sensorData"]["deviceId"] == "coop-1"
    assert response["data"]["connections"]["totalClients"] == 2
    assert monitor.role is ConnectionRole.MONITOR


@pytest.mark.asyncio
async def test_client_connected_gets_welcome(gateway) -> None:
    monitor, monitor_transport = gateway.connect()

    await gateway.send(monitor, "client_connected", {"clientType": "dashboard", "connectionId": "abc"})

    welcome, = monitor_transport.sent
    assert welcome["type"] == "welcome"
    assert welcome["data"]["deviceConnected"] is False
    assert welcome["data"]["currentData"]["temperatureThreshold"] == 30.0
    assert welcome["data"]["connections"]["totalClients"] == 1


@pytest.mark.asyncio
async def test_request_status_from_device_is_not_permitted(gateway) -> None:
    device, device_transport = await gateway.connect_device()
    await gateway.send(device, "request_status")
    error, = device_transport.sent
    assert error["data"]["code"] == "not_permitted"


@pytest.mark.asyncio
async def test_unknown_type_is_rejected(gateway) -> None:
    monitor, monitor_transport = gateway.connect()
    _, other = gateway.connect()
    before = gateway.store.read()

    await gateway.send(monitor, "reboot_everything", {"now": True})

    error, = monitor_transport.sent
    assert error["type"] == "error"
    assert error["data"]["code"] == "unknown_message_type"
    assert gateway.store.read() == before
    assert other.sent == []


@pytest.mark.asyncio
@pytest.mark.parametrize("frame", ["{not json", "[1, 2]", '{"data": {}}', '{"type": 7}', b"\xff\xfe"])
async def test_malformed_frame_gets_error(gateway, frame) -> None:
    monitor, monitor_transport = gateway.connect()
    _, other = gateway.connect()

    await gateway.router.handle_frame(monitor.connection_id, frame)

    error, = monitor_transport.sent
    assert error["type"] == "error"
    assert error["data"]["code"] == "invalid_message"
    assert other.sent == []


@pytest.mark.asyncio
async def test_role_is_rechecked_per_message(gateway) -> None:
    device, device_transport = await gateway.connect_device()
    await gateway.connect_device("coop-2")

    await gateway.send(device, "sensor_data", {"temperature": 20, "humidity": 50})

    assert device_transport.of_type("error")[0]["data"]["code"] == "not_permitted"


@pytest.mark.asyncio
@pytest.mark.parametrize("field", ["uptime", "wifiRSSI", "temperature"])
async def test_overflowing_number_gets_validation_error(gateway, field) -> None:
    device, device_transport = await gateway.connect_device()
    _, monitor = gateway.connect()
    before = gateway.store.read()
    payload = {"temperature": 20, "humidity": 50, field: "OVERFLOW"}
    frame = json.dumps({"type": "sensor_data", "data": payload}).replace('"OVERFLOW"', "1e400")

    await gateway.router.handle_frame(device.connection_id, frame)

    error, = device_transport.sent
    assert error["type"] == "error"
    assert error["data"]["code"] == "validation_error"
    assert error["data"]["field"] == field
    assert gateway.store.read() == before
    assert monitor.sent == []


@pytest.mark.asyncio
async def test_overflowing_timestamp_is_restamped(gateway) -> None:
    monitor, monitor_transport = gateway.connect()
    await gateway.router.handle_frame(monitor.connection_id, '{"type": "request_status", "timestamp": 1e400}')
    response, = monitor_transport.sent
    assert response["type"] == "status_response"


@pytest.mark.asyncio
async def test_device_info_records_device_name_in_binding(gateway) -> None:
    device, _ = await gateway.connect_device("coop-1", deviceName="Coop")
    assert gateway.arbiter.current_device_name() == "Coop"
    assert gateway.arbiter.is_bound_connection(device.connection_id)


@pytest.mark.asyncio
async def test_sensor_data_device_id_refreshes_binding(gateway) -> None:
    device, _ = await gateway.connect_device("coop-1")
    monitor, monitor_transport = gateway.connect()

    await gateway.send(device, "sensor_data", {
        "temperature": 20, "humidity": 50, "deviceId": "coop-1b", "deviceName": "Back coop",
    })

    assert gateway.arbiter.is_bound_connection(device.connection_id)
    assert gateway.arbiter.current_device_id() == "coop-1b"
    assert gateway.arbiter.current_device_name() == "Back coop"
    assert gateway.registry.stats()["deviceId"] == "coop-1b"

    await gateway.send(monitor, "request_status")
    response, = monitor_transport.of_type("status_response")
    assert response["data"]["sensorData"]["deviceId"] == response["data"]["connections"]["deviceId"]
