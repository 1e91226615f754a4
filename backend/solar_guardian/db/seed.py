from datetime import datetime

from sqlalchemy.orm import Session

from ..core.config import settings
from ..models.panel import Panel


def seed_panels(db: Session, zones=("A", "B"), rows: int = 3, columns: int = 3) -> int:
    """Create the zone/row/column panel grid; existing panel ids are left untouched."""
    existing = {pid for (pid,) in db.query(Panel.panel_id).all()}
    added = 0
    for zone in zones:
        for row in range(1, rows + 1):
            for col in range(1, columns + 1):
                panel_id = f"PNL-{zone}{row:02d}{col:02d}"
                if panel_id in existing:
                    continue
                db.add(Panel(
                    panel_id=panel_id,
                    zone=zone,
                    row=row,
                    column=col,
                    max_output=settings.DEFAULT_PANEL_MAX_OUTPUT,
                    current_output=0.0,
                    efficiency=0.0,
                    status="offline",
                    install_date=datetime(2023, 1, 15),
                    inverter_group=f"INV-{zone}1",
                    string_id=f"STR-{zone}{row}",
                    last_checked=None,
                ))
                added += 1
    if added:
        db.commit()
    return added
