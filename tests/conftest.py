from __future__ import annotations

from pathlib import Path
from typing import Sequence

import matplotlib

matplotlib.use("Agg")

import pandas as pd
import pytest


def write_export(
    path: Path,
    times: Sequence[object],
    ods: Sequence[float],
    temps: Sequence[float] | None = None,
) -> Path:
    """Write a vendor-style kinetic export with a few header rows."""
    temps = temps if temps is not None else [30.0] * len(times)
    lines = [
        "Software Version\t3.1",
        "Reader Type:\tLP600",
        "Procedure\tKinetic OD600",
        "Time\tOD600\tTemperature(C)",
    ]
    lines += [f"{t}\t{od}\t{temp}" for t, od, temp in zip(times, ods, temps)]
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def baselined_rows(rows: Sequence[tuple]) -> pd.DataFrame:
    """Build a baselined table from (uniqID, day, Time, baselinedOD, richness, heatDay, recDay)."""
    frame = pd.DataFrame(
        rows,
        columns=["uniqID", "day", "Time", "baselinedOD", "richness", "heatDay", "recDay"],
    )
    frame["uniqCurve"] = frame["uniqID"] + "-" + frame["day"].astype(str)
    return frame


@pytest.fixture
def export_writer():
    return write_export


@pytest.fixture
def make_baselined():
    return baselined_rows
