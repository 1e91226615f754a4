from typing import Iterable, Mapping

import pandas as pd


def bucket_power_history(readings: Iterable[Mapping], bucket_seconds: int) -> list[dict]:
    """Downsample raw readings into a sparse, chartable power series.

    ``readings`` are mappings with ``device_id``, ``recorded_at`` and
    ``power_mw``. Each reading lands in the window starting at
    ``floor(epoch / bucket_seconds) * bucket_seconds``; inside a window only
    the latest reading of each device counts. Windows without readings are
    omitted rather than zero-filled.
    """
    rows = [
        {"device_id": r["device_id"], "recorded_at": r["recorded_at"], "power_mw": r["power_mw"]}
        for r in readings
    ]
    if not rows:
        return []

    df = pd.DataFrame(rows)
    ts = pd.to_datetime(df["recorded_at"], utc=True)
    df = df.assign(recorded_at=ts, bucket=ts.dt.floor(pd.Timedelta(seconds=bucket_seconds)))

    # idxmax keeps the first row on ties, so equal timestamps resolve in arrival order
    latest_idx = df.groupby(["bucket", "device_id"], sort=False)["recorded_at"].idxmax()
    latest = df.loc[latest_idx]

    summary = (
        latest.groupby("bucket")
        .agg(total_power_mw=("power_mw", "sum"), device_count=("device_id", "nunique"))
        .sort_index()
    )
    return [
        {
            "timestamp": bucket.tz_convert(None).to_pydatetime().isoformat(),
            "totalPowerKw": float(row.total_power_mw) / 1_000_000,
            "deviceCount": int(row.device_count),
        }
        for bucket, row in summary.iterrows()
    ]
