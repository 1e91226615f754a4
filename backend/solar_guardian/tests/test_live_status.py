from datetime import datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from solar_guardian.core.device_map import get_device_map
from solar_guardian.core.errors import InvalidReading
from solar_guardian.main import app
from solar_guardian.models.device import Device
from solar_guardian.models.panel import Panel
from solar_guardian.models.reading import Reading
from solar_guardian.schemas.common import SensorReadingIn
from solar_guardian.services.live_status import build_live_status, overlay_panels
from solar_guardian.services.sensor_ingest import ingest_sensor_reading

T0 = datetime(2026, 1, 1, 12, 0, 0)


def _push(db, device_id, seconds, power, voltage=19.5, current=50.0, timestamp=None):
    reading = SensorReadingIn(
        device_id=device_id, voltage=voltage, current=current, power=power, timestamp=timestamp,
    )
    return ingest_sensor_reading(db, get_device_map(), reading, received_at=T0 + timedelta(seconds=seconds))


def _device(status, device_id):
    return next(d for d in status["devices"] if d["deviceId"] == device_id)


def test_end_to_end_three_readings(db):
    for seconds, power in ((0, 300.0), (10, 310.0), (35, 290.0)):
        _push(db, "ESP_01", seconds, power)

    status = build_live_status(db, get_device_map(), T0 + timedelta(seconds=36))

    esp1 = _device(status, "ESP_01")
    assert esp1["online"] is True
    assert esp1["staleSeconds"] == 1
    assert esp1["status"] == "healthy"
    assert esp1["label"] == "esp01"
    assert esp1["powerMw"] == 290.0
    assert esp1["lastSeenAt"] == (T0 + timedelta(seconds=35)).isoformat()

    history = status["powerHistory30s"]
    assert [h["timestamp"] for h in history] == [T0.isoformat(), (T0 + timedelta(seconds=30)).isoformat()]
    assert history[0]["totalPowerKw"] == pytest.approx(310.0 / 1_000_000)
    assert history[1]["totalPowerKw"] == pytest.approx(290.0 / 1_000_000)
    assert [h["deviceCount"] for h in history] == [1, 1]

    assert status["currentGenerationKw"] == pytest.approx(290.0 / 1_000_000)
    assert status["onlineDevices"] == 1
    assert status["reportingDevices"] == 1
    assert status["mappedDevices"] == 3
    assert status["avgEfficiency"] == round(min(100.0, 0.29 / 1200 * 100), 1)


def test_never_seen_devices_are_offline_with_zero_readings(db):
    _push(db, "ESP_01", 0, 300.0)
    status = build_live_status(db, get_device_map(), T0 + timedelta(seconds=5))
    esp2 = _device(status, "ESP_02")
    assert esp2 == {
        "deviceId": "ESP_02",
        "label": "esp02",
        "online": False,
        "status": "offline",
        "lastSeenAt": None,
        "staleSeconds": None,
        "voltage": 0.0,
        "currentMa": 0.0,
        "powerMw": 0.0,
    }


def test_stale_device_goes_offline_and_stops_counting(db):
    _push(db, "ESP_01", 0, 975.0)
    status = build_live_status(db, get_device_map(), T0 + timedelta(seconds=31))
    esp1 = _device(status, "ESP_01")
    assert esp1["online"] is False
    assert esp1["status"] == "offline"
    assert esp1["staleSeconds"] == 31
    assert esp1["voltage"] == 0.0 and esp1["powerMw"] == 0.0
    assert status["currentGenerationKw"] == 0.0
    assert status["avgEfficiency"] == 0.0
    # history still shows what was measured while the device was live
    assert len(status["powerHistory30s"]) == 1


def test_fault_voltage_is_reported(db):
    _push(db, "ESP_03", 0, 300.0, voltage=12.0)
    status = build_live_status(db, get_device_map(), T0 + timedelta(seconds=2))
    assert _device(status, "ESP_03")["status"] == "fault"
    assert status["faultPanels"] == 3


def test_fleet_counts_come_from_panel_table(db):
    _push(db, "ESP_01", 0, 975.0)
    status = build_live_status(db, get_device_map(), T0 + timedelta(hours=2))
    # device is long offline but the panel rows keep their last ingested status
    assert status["totalPanels"] == 18
    assert status["healthyPanels"] == 3
    assert status["offlinePanels"] == 15
    assert status["powerHistory30s"] == []


def test_compositor_does_not_mutate_rows(db):
    _push(db, "ESP_01", 0, 975.0)
    before = sorted((p.panel_id, p.status, p.current_output, p.efficiency) for p in db.query(Panel).all())
    device_before = db.query(Device).one().last_seen_at
    build_live_status(db, get_device_map(), T0 + timedelta(minutes=10))
    db.expire_all()
    after = sorted((p.panel_id, p.status, p.current_output, p.efficiency) for p in db.query(Panel).all())
    assert after == before
    assert db.query(Device).one().last_seen_at == device_before


def test_panel_overlay_marks_offline_device_panels(db):
    _push(db, "ESP_01", 0, 975.0)
    panels = db.query(Panel).filter(Panel.panel_id.in_(["PNL-A0101", "PNL-B0101"])).order_by(Panel.panel_id).all()

    live = overlay_panels(db, get_device_map(), panels, T0 + timedelta(seconds=10))
    assert live[0]["status"] == "healthy"
    assert live[0]["sensorDeviceId"] == "ESP_01"
    assert live[0]["sensorPowerMw"] == 975.0
    assert live[1]["sensorDeviceId"] is None
    assert live[1]["status"] == "offline"

    stale = overlay_panels(db, get_device_map(), panels, T0 + timedelta(minutes=5))
    assert stale[0]["status"] == "offline"
    assert stale[0]["sensorPowerMw"] == 0.0


@pytest.mark.asyncio
async def test_live_status_endpoint():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        r = await ac.post("/api/panels/sensor-update", json={"device_id": "ESP_02", "voltage": 19.5, "current": 50, "power": 975})
        assert r.status_code == 200
        status = await ac.get("/api/panels/live-status")
        panels = await ac.get("/api/panels/", params={"zone": "A"})
        stats = await ac.get("/api/panels/stats")
        debug = await ac.get("/api/panels/debug/devices")
        single = await ac.get("/api/panels/PNL-A0201")
        missing = await ac.get("/api/panels/PNL-Z9999")

    assert status.status_code == 200
    body = status.json()
    assert _device(body, "ESP_02")["online"] is True
    assert body["healthyPanels"] == 3
    assert len(body["powerHistory30s"]) == 1
    assert len(panels.json()) == 9
    assert stats.json()["totalPanels"] == 18
    assert stats.json()["maxCapacity"] == pytest.approx(7.2)
    assert debug.json()["devices"][0]["readingCount"] == 1
    assert single.json()["sensorDeviceId"] == "ESP_02"
    assert missing.status_code == 404


def test_device_clock_does_not_drive_liveness(db):
    _push(db, "ESP_01", 0, 975.0, timestamp=T0 + timedelta(seconds=25))
    reading = db.query(Reading).one()
    assert reading.recorded_at == T0 + timedelta(seconds=25)
    assert db.query(Device).one().last_seen_at == T0

    esp1 = _device(build_live_status(db, get_device_map(), T0 + timedelta(seconds=31)), "ESP_01")
    assert esp1["online"] is False
    assert esp1["staleSeconds"] == 31
    assert esp1["powerMw"] == 0.0


def test_far_future_reading_is_rejected(db):
    with pytest.raises(InvalidReading):
        _push(db, "ESP_01", 0, 975.0, timestamp=T0 + timedelta(days=1))
    db.rollback()
    assert db.query(Device).count() == 0
    assert db.query(Reading).count() == 0
    status = build_live_status(db, get_device_map(), T0 + timedelta(hours=12))
    assert _device(status, "ESP_01")["online"] is False
    assert status["currentGenerationKw"] == 0.0


def test_overlay_only_demotes_healthy_to_warning(db):
    _push(db, "ESP_01", 0, 975.0)
    device = db.query(Device).one()
    # live voltage now far below fault level while the stored rows still say healthy
    device.latest_voltage = 12.0
    db.commit()
    panels = db.query(Panel).filter(Panel.panel_id == "PNL-A0101").all()

    [live] = overlay_panels(db, get_device_map(), panels, T0 + timedelta(seconds=5))
    assert live["status"] == "warning"
    assert live["sensorVoltage"] == 12.0


def test_overlay_keeps_stored_fault_for_online_device(db):
    _push(db, "ESP_03", 0, 300.0, voltage=12.0)
    panels = db.query(Panel).filter(Panel.panel_id == "PNL-A0301").all()
    [live] = overlay_panels(db, get_device_map(), panels, T0 + timedelta(seconds=5))
    assert live["status"] == "fault"
