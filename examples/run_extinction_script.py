"""
Configured extinction pipeline for the coculture heat-recovery experiment.

Edit the values in the parameter block below when new batches are added or
the thresholds need re-validation, then run the script with
``python run_extinction_script.py``.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Parameters
# ---------------------------------------------------------------------------

# One entry per plate-reader batch: (export folder, incubator, heat duration, date).
# Folders are relative to this script unless absolute.
BATCHES = [
    ("raw/230605_incA", "incA", "6h", "230605"),
    ("raw/230605_incB", "incB", "6h", "230605"),
    ("raw/230612_incA", "incA", "12h", "230612"),
    ("raw/230612_incB", "incB", "12h", "230612"),
    ("raw/230619_incA", "incA", "24h", "230619"),
    ("raw/230619_incB", "incB", "24h", "230619"),
]

# Manually curated well annotation (species flags, richness, heatDay, recDay).
ANNOTATION_CSV = "annotation.csv"

# Contamination-free density table from the flow-cytometry analysis.
DENSITY_CSV = "finalized_density.csv"

# Output folders for tables and PDFs (relative to this script unless absolute).
OUTPUT_DIR = "output"
PLOTS_DIR = "plots"

# Batches whose column-8 wells were all mis-inoculated; those wells are dropped.
MISINOCULATED_DATES = ["230612", "230619"]
MISINOCULATED_COLUMN = 8

# Single well-day left unannotated during collection; set to None to disable.
ANNOTATION_REPAIR = ("230605_incB_D4", 4)

# Blank curves with any raw OD above this are left out of the blank median.
OD_SANITY_MAX = 1.0

# Heat day used for the stressed-population candidate threshold.
STRESS_HEAT_DAY = 3

# Recovery day and window start (hours) of the extinction test.
RECOVERY_DAY = 2
EXTINCTION_WINDOW_HR = 22.0

# Window start (hours) for the per-curve late-density summary.
LATE_WINDOW_HR = 20.0

# Render one 8x12 PDF per plate (slow for many batches).
RENDER_PLATE_PLOTS = True

# ---------------------------------------------------------------------------
# Imports and setup
# ---------------------------------------------------------------------------

import os
from pathlib import Path

# Ensure Matplotlib and fontconfig use writable cache directories even if HOME is read-only.
_MPL_CACHE = Path(".matplotlib_cache")
_XDG_CACHE = Path(".cache")
os.environ.setdefault("MPLCONFIGDIR", str(_MPL_CACHE.resolve()))
os.environ.setdefault("XDG_CACHE_HOME", str(_XDG_CACHE.resolve()))
(_XDG_CACHE / "fontconfig").mkdir(parents=True, exist_ok=True)
_MPL_CACHE.mkdir(parents=True, exist_ok=True)

from recoveryreader.pipeline import (
    AnnotationRepair,
    BatchSpec,
    PipelineConfig,
    run_pipeline,
)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

_SCRIPT_DIR = Path(__file__).resolve().parent


def _resolve(path: str) -> Path:
    candidate = Path(path)
    return candidate if candidate.is_absolute() else _SCRIPT_DIR / candidate


CONFIG = PipelineConfig(
    batches=[
        BatchSpec(_resolve(folder), incubator, heat, date)
        for folder, incubator, heat, date in BATCHES
    ],
    annotation_csv=_resolve(ANNOTATION_CSV),
    density_csv=_resolve(DENSITY_CSV),
    output_dir=_resolve(OUTPUT_DIR),
    plots_dir=_resolve(PLOTS_DIR),
    misinoculated_dates=MISINOCULATED_DATES,
    misinoculated_column=MISINOCULATED_COLUMN,
    annotation_repair=(
        AnnotationRepair(*ANNOTATION_REPAIR) if ANNOTATION_REPAIR is not None else None
    ),
    od_sanity_max=OD_SANITY_MAX,
    stress_heat_day=STRESS_HEAT_DAY,
    recovery_day=RECOVERY_DAY,
    extinction_window_hr=EXTINCTION_WINDOW_HR,
    late_window_hr=LATE_WINDOW_HR,
    render_plate_plots=RENDER_PLATE_PLOTS,
)


def main() -> None:
    """Execute the configured extinction pipeline."""
    run_pipeline(CONFIG)


if __name__ == "__main__":
    main()
