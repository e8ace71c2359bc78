#!/usr/bin/env python3
"""Helpers for loading per-well OD exports, baselining them and plotting."""

from __future__ import annotations

import io
import re
from datetime import datetime, time
from pathlib import Path
from typing import Iterable, Mapping, Sequence

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

EXPORT_SUFFIX = ".txt"
EXPORT_SEP = "\t"
EXPORT_NAME_RE = re.compile(r"day[_-]?(?P<day>\d+)[_-](?P<well>[A-H]\d{1,2})", re.I)
BUCKET_COLUMNS = ["date", "day", "incubator", "Time"]
DEFAULT_OD_SANITY_MAX = 1.0


def _read_table_lines(export_path: Path, sep: str) -> list[str]:
    """Return the export's lines from the ``Time`` header row onward."""
    with export_path.open("r", encoding="utf-8-sig", errors="replace") as handle:
        lines = handle.readlines()
    for idx, line in enumerate(lines):
        first_field = line.split(sep, 1)[0].strip().lower()
        if first_field == "time":
            return lines[idx:]
    raise ValueError(
        f"No 'Time' header row found in {export_path.name}; "
        "is this a plate-reader kinetic export?"
    )


def _pick_column(columns: Sequence[str], keyword: str, export_path: Path) -> str:
    for col in columns:
        if keyword in str(col).lower():
            return col
    raise ValueError(
        f"Export {export_path.name} has no column containing '{keyword}' "
        f"(columns: {', '.join(map(str, columns))})"
    )


def compute_time_in_hours(time_series: Sequence[object]) -> np.ndarray:
    """Convert elapsed-time readings to a monotonic array measured in hours.

    Accepts numeric hours, ``HH:MM:SS`` strings, timedeltas and clock times.
    A clock-style reading that steps back past midnight is shifted forward by
    24 h; numeric hours are taken as given.
    """
    hours_list = []
    clock_like = []
    for value in time_series:
        if isinstance(value, (int, float, np.integer, np.floating)):
            hours_list.append(float(value))
            clock_like.append(False)
            continue
        clock_like.append(True)
        if isinstance(value, pd.Timedelta):
            delta = value
        elif isinstance(value, np.timedelta64):
            delta = pd.to_timedelta(value)
        elif isinstance(value, (pd.Timestamp, datetime)):
            delta = pd.to_timedelta(value.time().isoformat())
        elif isinstance(value, time):
            delta = pd.to_timedelta(value.isoformat())
        else:
            delta = pd.to_timedelta(str(value).strip())
        hours_list.append(delta.total_seconds() / 3600)

    hours = np.asarray(hours_list, dtype=float)
    offset = 0.0
    for idx in range(1, hours.size):
        wraps = clock_like[idx] and clock_like[idx - 1]
        if wraps and hours[idx] + offset < hours[idx - 1]:
            offset += 24
        if clock_like[idx]:
            hours[idx] += offset
    return hours


def load_well_export(export_path: Path, sep: str = EXPORT_SEP) -> pd.DataFrame:
    """Read one vendor export and return columns ``Time`` (hours), ``OD``, ``Temp``."""
    export_path = Path(export_path)
    if not export_path.exists():
        raise FileNotFoundError(f"No such export: {export_path}")

    table_lines = _read_table_lines(export_path, sep)
    frame = pd.read_csv(io.StringIO("".join(table_lines)), sep=sep)
    frame = frame.dropna(axis=1, how="all")
    frame.columns = [str(col).strip() for col in frame.columns]

    od_col = _pick_column(frame.columns[1:], "od", export_path)
    temp_col = _pick_column(frame.columns[1:], "temp", export_path)

    frame = frame.dropna(subset=[frame.columns[0]])
    if frame.empty:
        raise ValueError(f"Export {export_path.name} contains no readings")

    od_values = pd.to_numeric(frame[od_col], errors="coerce")
    raw_od = frame[od_col].astype(str).str.strip()
    unparsed = od_values.isna() & frame[od_col].notna() & (raw_od != "")
    if unparsed.any():
        bad = ", ".join(
            f"row {idx + 1}: {value!r}"
            for idx, value in raw_od[unparsed].head(5).items()
        )
        raise ValueError(
            f"Export {export_path.name} has {int(unparsed.sum())} non-numeric "
            f"OD values ({bad})"
        )

    output = pd.DataFrame(
        {
            "Time": compute_time_in_hours(frame.iloc[:, 0].tolist()),
            "OD": od_values.to_numpy(),
            "Temp": pd.to_numeric(frame[temp_col], errors="coerce").to_numpy(),
        }
    )
    if output["OD"].isna().all():
        raise ValueError(f"Export {export_path.name} has no numeric OD values")
    return output


def parse_export_name(export_path: Path) -> tuple[int, str] | None:
    """Return ``(day, well)`` encoded in an export filename, or None."""
    match = EXPORT_NAME_RE.search(Path(export_path).stem)
    if match is None:
        return None
    well = match.group("well").upper()
    return int(match.group("day")), f"{well[0]}{int(well[1:])}"


def load_batch_folder(
    folder: Path,
    batch_label: str,
    suffix: str = EXPORT_SUFFIX,
    sep: str = EXPORT_SEP,
) -> pd.DataFrame:
    """Load every well export in ``folder`` into one long table.

    Returned columns are ``day``, ``well``, ``Time``, ``OD`` and ``Temp``.
    """
    folder = Path(folder)
    if not folder.is_dir():
        raise FileNotFoundError(f"Batch {batch_label}: no such folder {folder}")

    frames = []
    for export_path in sorted(folder.glob(f"*{suffix}")):
        parsed = parse_export_name(export_path)
        if parsed is None:
            print(f"Skipping {export_path.name} (no day/well in filename)")
            continue
        day, well = parsed
        try:
            frame = load_well_export(export_path, sep=sep)
        except ValueError as exc:
            raise ValueError(f"Batch {batch_label}: {exc}") from exc
        frame.insert(0, "well", well)
        frame.insert(0, "day", day)
        frames.append(frame)

    if not frames:
        raise ValueError(
            f"Batch {batch_label}: no exports matching 'day<N>_<well>{suffix}' in {folder}"
        )
    return pd.concat(frames, ignore_index=True)


def split_contaminated_blanks(
    annotated: pd.DataFrame,
    od_max: float = DEFAULT_OD_SANITY_MAX,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Separate blank curves whose raw OD ever exceeds ``od_max``.

    Returns ``(kept, contaminated_blanks)``. Inoculated curves are always kept.
    """
    is_blank = annotated["richness"] == 0
    over = is_blank & (annotated["OD"] > od_max)
    flagged_curves = set(annotated.loc[over, "uniqCurve"])
    flagged_mask = annotated["uniqCurve"].isin(flagged_curves)
    kept = annotated.loc[~flagged_mask].copy()
    contaminated = annotated.loc[flagged_mask].copy()
    print(
        f"Flagged {len(flagged_curves)} blank curves with OD > {od_max} "
        f"({len(contaminated)} readings)"
    )
    return kept, contaminated


def compute_blank_medians(frame: pd.DataFrame) -> pd.DataFrame:
    """Median raw OD of blank rows for every (date, day, incubator, Time) bucket."""
    blanks = frame.loc[frame["richness"] == 0]
    if blanks.empty:
        raise ValueError("No blank (richness 0) readings available for the baseline")
    medians = (
        blanks.groupby(BUCKET_COLUMNS, as_index=False)["OD"]
        .median()
        .rename(columns={"OD": "medianOD"})
    )
    return medians


def apply_blank_baseline(frame: pd.DataFrame, medians: pd.DataFrame) -> pd.DataFrame:
    """Subtract the bucket median from every reading sharing the bucket key.

    Rows with no matching bucket are dropped; their count is kept in
    ``attrs["dropped_without_baseline"]``.
    """
    baselined = frame.merge(medians, on=BUCKET_COLUMNS, how="inner")
    baselined["baselinedOD"] = baselined["OD"] - baselined["medianOD"]
    dropped = len(frame) - len(baselined)
    baselined.attrs["dropped_without_baseline"] = dropped
    if dropped:
        print(f"Dropped {dropped} readings with no blank-median bucket")
    return baselined


def _well_to_indices(well: str) -> tuple[int, int]:
    """Convert a well label like 'B7' into zero-based (row, column) indices."""
    well = well.strip().upper()
    if len(well) < 2:
        raise ValueError(f"Invalid well label: '{well}'")
    row_char = well[0]
    col_part = well[1:]
    if not row_char.isalpha() or not col_part.isdigit():
        raise ValueError(f"Invalid well label: '{well}'")

    row_idx = ord(row_char) - ord("A")
    if row_idx < 0 or row_idx >= 8:
        raise ValueError(f"Row '{row_char}' is outside the 96-well range (A-H).")

    col_idx = int(col_part) - 1
    if col_idx < 0 or col_idx >= 12:
        raise ValueError(f"Column '{col_part}' is outside the 96-well range (1-12).")

    return row_idx, col_idx


def _resolve_linear_limits(values: np.ndarray) -> tuple[float, float] | None:
    """Return padded (min, max) bounds for linear axes or None if empty."""
    finite_vals = values[np.isfinite(values)]
    if finite_vals.size == 0:
        return None
    vmin = float(finite_vals.min())
    vmax = float(finite_vals.max())
    if vmin == vmax:
        delta = abs(vmin) * 0.1 if vmin != 0 else 1e-3
        vmin -= delta
        vmax += delta
    lower = vmin * 1.2 if vmin < 0 else vmin * 0.8
    upper = vmax * 0.8 if vmax < 0 else vmax * 1.2
    if lower >= upper:
        upper = lower + abs(lower) * 0.1 + 1e-6
    return lower, upper


def _save_pdf(fig: plt.Figure, output_path: Path) -> None:
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_path, format="pdf", bbox_inches="tight")
    plt.close(fig)


def plot_blank_medians(
    medians: pd.DataFrame,
    output_path: Path = Path("plots/blank_medians.pdf"),
    figsize_per_day: tuple[float, float] = (4.0, 3.0),
) -> None:
    """Plot the blank-median drift against elapsed time, one panel per day."""
    days = sorted(medians["day"].unique())
    if not days:
        return
    fig, axes = plt.subplots(
        1,
        len(days),
        figsize=(figsize_per_day[0] * len(days), figsize_per_day[1]),
        sharey=True,
        squeeze=False,
    )
    for ax, day in zip(axes[0], days):
        day_frame = medians.loc[medians["day"] == day]
        for (date, incubator), group in day_frame.groupby(["date", "incubator"]):
            group = group.sort_values("Time")
            ax.plot(group["Time"], group["medianOD"], label=f"{date} {incubator}")
        ax.set_title(f"Day {day}", fontsize=9)
        ax.set_xlabel("Time (h)")
        ax.tick_params(labelsize=7)
    axes[0][0].set_ylabel("Blank median OD")
    axes[0][-1].legend(fontsize=6, loc="best")
    fig.tight_layout()
    _save_pdf(fig, output_path)


def plot_threshold_diagnostics(
    clean_blanks: pd.DataFrame,
    heat_day_rows: pd.DataFrame,
    candidates: Mapping[str, float],
    growth_cutoff: float,
    output_path: Path = Path("plots/threshold_diagnostics.pdf"),
    bins: int = 60,
) -> None:
    """Histogram of baselined OD for true negatives and stressed wells."""
    fig, ax = plt.subplots(figsize=(6.0, 4.0))
    ax.hist(
        clean_blanks["baselinedOD"].dropna(),
        bins=bins,
        alpha=0.6,
        color="grey",
        label="Uncontaminated blanks",
    )
    ax.hist(
        heat_day_rows["baselinedOD"].dropna(),
        bins=bins,
        alpha=0.6,
        color="tab:orange",
        label="Heat-stress day",
    )
    for name, value in candidates.items():
        ax.axvline(value, linestyle="--", linewidth=1, label=f"{name} = {value:.3f}")
    ax.axvline(growth_cutoff, color="red", linewidth=1.5, label="growth_cutoff")
    ax.set_yscale("log")
    ax.set_xlabel("Baselined OD")
    ax.set_ylabel("Readings")
    ax.legend(fontsize=7)
    fig.tight_layout()
    _save_pdf(fig, output_path)


def plot_plate_recovery_curves(
    plate_frame: pd.DataFrame,
    growth_cutoff: float,
    extinct_ids: Iterable[str] = (),
    output_path: Path = Path("plots/plate_recovery_curves.pdf"),
    plate_title: str | None = None,
    figsize: tuple[float, float] = (20.0, 12.0),
    y_limits: tuple[float, float] | None = None,
) -> None:
    """
    Plot baselined OD for every well of one plate on an 8×12 grid.

    Each day is drawn as its own trace; extinct wells are drawn in red and the
    growth cutoff is shown as a dashed line.
    """
    extinct_ids = set(extinct_ids)
    if y_limits is None:
        y_limits = _resolve_linear_limits(
            np.asarray(plate_frame["baselinedOD"], dtype=float)
        )

    fig, axes = plt.subplots(8, 12, figsize=figsize, sharex=True, sharey=False)
    used = np.zeros((8, 12), dtype=bool)

    for (well, uniq_id), well_frame in plate_frame.groupby(["well", "uniqID"]):
        row_idx, col_idx = _well_to_indices(well)
        ax = axes[row_idx, col_idx]
        used[row_idx, col_idx] = True
        color = "red" if uniq_id in extinct_ids else "black"
        for _day, curve in well_frame.groupby("day"):
            curve = curve.sort_values("Time")
            ax.plot(curve["Time"], curve["baselinedOD"], color=color, linewidth=0.6)
        ax.axhline(growth_cutoff, color="tab:blue", linestyle="--", linewidth=0.5)
        if y_limits is not None:
            ax.set_ylim(*y_limits)
        richness = well_frame["richness"].iloc[0]
        ax.set_title(f"{well} (S={richness:g})", fontsize=6)
        ax.tick_params(labelsize=6)

    for row_idx in range(8):
        for col_idx in range(12):
            if not used[row_idx, col_idx]:
                fig.delaxes(axes[row_idx, col_idx])

    if plate_title:
        fig.suptitle(plate_title, fontsize=14)
        fig.tight_layout(rect=[0, 0, 1, 0.96])
    else:
        fig.tight_layout()
    _save_pdf(fig, output_path)


def plot_late_density_trajectories(
    late_density: pd.DataFrame,
    growth_cutoff: float,
    output_path: Path = Path("plots/late_density_trajectories.pdf"),
) -> None:
    """Plot per-curve late-window density across days, coloured by richness."""
    fig, ax = plt.subplots(figsize=(7.0, 4.5))
    richness_levels = sorted(late_density["richness"].unique())
    cmap = plt.get_cmap("viridis", max(len(richness_levels), 1))
    colors = {level: cmap(idx) for idx, level in enumerate(richness_levels)}
    for _uniq_id, group in late_density.groupby("uniqID"):
        group = group.sort_values("day")
        ax.plot(
            group["day"],
            group["lateOD"],
            color=colors[group["richness"].iloc[0]],
            linewidth=0.5,
            alpha=0.6,
        )
    for level in richness_levels:
        ax.plot([], [], color=colors[level], label=f"richness {level:g}")
    ax.axhline(growth_cutoff, color="red", linestyle="--", linewidth=1)
    ax.set_xlabel("Day")
    ax.set_ylabel("Mean baselined OD (late window)")
    ax.legend(fontsize=7)
    fig.tight_layout()
    _save_pdf(fig, output_path)


def plot_extinction_probability(
    summary: pd.DataFrame,
    output_path: Path = Path("plots/extinction_probability.pdf"),
) -> None:
    """Extinction probability with its confidence interval per richness."""
    fig, ax = plt.subplots(figsize=(5.0, 4.0))
    lower_err = summary["probability"] - summary["ci_low"]
    upper_err = summary["ci_high"] - summary["probability"]
    ax.errorbar(
        summary["richness"],
        summary["probability"],
        yerr=[lower_err, upper_err],
        fmt="o",
        color="black",
        capsize=3,
    )
    for _, row in summary.iterrows():
        ax.annotate(
            f"n={int(row['n_tested'])}",
            (row["richness"], row["probability"]),
            textcoords="offset points",
            xytext=(4, 4),
            fontsize=7,
        )
    ax.set_ylim(-0.05, 1.05)
    ax.set_xlabel("Inoculated richness")
    ax.set_ylabel("P(extinct)")
    fig.tight_layout()
    _save_pdf(fig, output_path)


__all__ = [
    "BUCKET_COLUMNS",
    "DEFAULT_OD_SANITY_MAX",
    "EXPORT_SUFFIX",
    "apply_blank_baseline",
    "compute_blank_medians",
    "compute_time_in_hours",
    "load_batch_folder",
    "load_well_export",
    "parse_export_name",
    "plot_blank_medians",
    "plot_extinction_probability",
    "plot_late_density_trajectories",
    "plot_plate_recovery_curves",
    "plot_threshold_diagnostics",
    "split_contaminated_blanks",
]
