import threading
from datetime import datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from solar_guardian.api import panels
from solar_guardian.main import app
from solar_guardian.models.device import Device
from solar_guardian.models.panel import Panel
from solar_guardian.models.power_generation import PowerGeneration
from solar_guardian.models.reading import Reading


def _client():
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


def _snapshot(db):
    db.expire_all()
    return (
        db.query(Device).count(),
        db.query(Reading).count(),
        db.query(PowerGeneration).count(),
        sorted((p.panel_id, p.status, p.current_output) for p in db.query(Panel).all()),
    )


@pytest.mark.asyncio
async def test_reading_updates_mapped_panels(db):
    payload = {"device_id": "ESP_01", "voltage": 19.5, "current": 50, "power": 975}
    async with _client() as ac:
        r = await ac.post("/api/panels/sensor-update", json=payload)
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["device"] == "ESP_01"
    assert body["panelCount"] == 3
    assert body["totalInput"] == {"voltage": 19.5, "currentMa": 50.0, "powerMw": 975.0}
    assert body["perPanel"]["voltage"] == pytest.approx(6.5)
    assert body["perPanel"]["currentMa"] == 50.0
    assert body["perPanel"]["powerW"] == pytest.approx(0.325)
    assert [p["panelId"] for p in body["panels"]] == ["PNL-A0101", "PNL-A0102", "PNL-A0103"]
    for p in body["panels"]:
        assert p["status"] == "healthy"
        assert p["efficiency"] == pytest.approx(0.325 / 400 * 100)

    device = db.query(Device).filter(Device.device_id == "ESP_01").one()
    assert device.latest_power_mw == 975.0
    assert db.query(Reading).count() == 1
    untouched = db.query(Panel).filter(Panel.panel_id == "PNL-A0201").one()
    assert untouched.status == "offline"
    generation = db.query(PowerGeneration).one()
    assert generation.value == pytest.approx(0.975 / 1000)


@pytest.mark.asyncio
@pytest.mark.parametrize("voltage,power,expected", [(12.0, 300, "fault"), (15.0, 300, "warning"), (19.5, 0, "warning")])
async def test_panel_status_follows_thresholds(voltage, power, expected):
    async with _client() as ac:
        r = await ac.post("/api/panels/sensor-update", json={"device_id": "ESP_02", "voltage": voltage, "current": 10, "power": power})
    assert r.status_code == 200
    assert {p["status"] for p in r.json()["panels"]} == {expected}


@pytest.mark.asyncio
async def test_unmapped_device_leaves_tables_unchanged(db):
    before = _snapshot(db)
    async with _client() as ac:
        r = await ac.post("/api/panels/sensor-update", json={"device_id": "ESP_99", "voltage": 19.5, "current": 50, "power": 975})
    assert r.status_code == 404
    assert r.json() == {"success": False, "error": "Device ESP_99 not found in mapping"}
    assert _snapshot(db) == before


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"device_id": "ESP_01", "voltage": "abc", "current": 10, "power": 10},
        {"device_id": "ESP_01", "voltage": 19.5, "current": 10},
        {"voltage": 19.5, "current": 10, "power": 10},
        {"device_id": "ESP_01", "voltage": True, "current": 10, "power": 10},
        {"device_id": "ESP_01", "voltage": "nan", "current": 10, "power": 10},
    ],
)
async def test_invalid_payload_is_rejected_before_persistence(db, payload):
    before = _snapshot(db)
    async with _client() as ac:
        r = await ac.post("/api/panels/sensor-update", json=payload)
    assert r.status_code == 400
    assert r.json()["success"] is False
    assert "device_id, voltage, current, power" in r.json()["error"]
    assert _snapshot(db) == before


@pytest.mark.asyncio
async def test_numeric_strings_are_accepted(db):
    async with _client() as ac:
        r = await ac.post("/api/panels/sensor-update", json={"device_id": "ESP_03", "voltage": "20.1", "current": "40", "power": "804"})
    assert r.status_code == 200
    assert r.json()["totalInput"]["powerMw"] == 804.0


@pytest.mark.asyncio
async def test_repeated_readings_upsert_one_device(db):
    async with _client() as ac:
        for power in (900, 950, 1000):
            r = await ac.post("/api/panels/sensor-update", json={"device_id": "ESP_01", "voltage": 19.5, "current": 50, "power": power})
            assert r.status_code == 200
        history = await ac.get("/api/devices/ESP_01/readings?limit=2")
        devices = await ac.get("/api/devices/")
    assert db.query(Device).count() == 1
    assert db.query(Reading).count() == 3
    assert db.query(Device).one().latest_power_mw == 1000.0
    assert [r["power_mw"] for r in history.json()] == [950.0, 1000.0]
    assert [d["device_id"] for d in devices.json()] == ["ESP_01"]


@pytest.mark.asyncio
async def test_generation_point_is_overwritten_on_timestamp_collision(db):
    ts = "2026-01-01T12:00:00Z"
    async with _client() as ac:
        await ac.post("/api/panels/sensor-update", json={"device_id": "ESP_01", "voltage": 19.5, "current": 50, "power": 900, "timestamp": ts})
        await ac.post("/api/panels/sensor-update", json={"device_id": "ESP_02", "voltage": 19.5, "current": 50, "power": 600, "timestamp": ts})
    rows = db.query(PowerGeneration).all()
    assert len(rows) == 1
    assert rows[0].value == pytest.approx(1.5 / 1000)


@pytest.mark.asyncio
async def test_unknown_device_readings_404():
    async with _client() as ac:
        r = await ac.get("/api/devices/ESP_42/readings")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_reading_dated_a_day_ahead_is_rejected(db):
    ahead = (datetime.utcnow() + timedelta(days=1)).isoformat() + "Z"
    before = _snapshot(db)
    async with _client() as ac:
        r = await ac.post("/api/panels/sensor-update", json={"device_id": "ESP_01", "voltage": 19.5, "current": 50, "power": 975, "timestamp": ahead})
    assert r.status_code == 400
    assert r.json()["success"] is False
    assert _snapshot(db) == before


@pytest.mark.asyncio
async def test_sensor_update_runs_off_the_event_loop(monkeypatch):
    loop_thread = threading.get_ident()
    ingest_threads = []
    real_ingest = panels.ingest_sensor_reading

    def tracking_ingest(*args, **kwargs):
        ingest_threads.append(threading.get_ident())
        return real_ingest(*args, **kwargs)

    monkeypatch.setattr(panels, "ingest_sensor_reading", tracking_ingest)
    async with _client() as ac:
        r = await ac.post("/api/panels/sensor-update", json={"device_id": "ESP_01", "voltage": 19.5, "current": 50, "power": 975})
    assert r.status_code == 200
    assert ingest_threads and loop_thread not in ingest_threads
