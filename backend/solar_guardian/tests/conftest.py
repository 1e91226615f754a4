import os
import tempfile

_TMP = tempfile.mkdtemp(prefix="solar_guardian_tests_")
os.environ["DB_URI"] = f"sqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ["PI_SAVE_DIR"] = os.path.join(_TMP, "received_from_pi")
os.environ["SEED_PANELS"] = "false"

import pytest

from solar_guardian.core.config import settings
from solar_guardian.db.seed import seed_panels
from solar_guardian.db.session import SessionLocal, init_db
from solar_guardian.main import app
from solar_guardian.models.device import Device
from solar_guardian.models.panel import Panel
from solar_guardian.models.power_generation import PowerGeneration
from solar_guardian.models.reading import Reading
from solar_guardian.models.scan import PanelDetection, Scan
from solar_guardian.services.broadcast import Broadcaster


def _reset_tables():
    db = SessionLocal()
    try:
        for model in (PanelDetection, Scan, Reading, Device, PowerGeneration, Panel):
            db.query(model).delete()
        db.commit()
        seed_panels(db)
    finally:
        db.close()


@pytest.fixture(autouse=True)
def clean_state():
    init_db()
    _reset_tables()
    app.state.broadcaster = Broadcaster(settings.PI_RESULTS_BACKLOG)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


class FakeSocket:
    """Stands in for a connected dashboard."""

    def __init__(self, fail=False):
        self.fail = fail
        self.accepted = False
        self.messages = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("socket closed")
        self.messages.append(message)


@pytest.fixture
def fake_socket_cls():
    return FakeSocket
