"""Utilities shared by the recovery pipeline: labels, joins, filters, writers."""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterable, Sequence

import pandas as pd

CURVE_SEPARATOR = "-"
JOIN_KEYS = ["uniqID", "well", "date", "day", "incubator", "heat"]
SCHEDULE_COLUMNS = ["heatDay", "recDay"]
ANNOTATION_COLUMNS = JOIN_KEYS + ["richness"] + SCHEDULE_COLUMNS
FLOW_COLUMN_PREFIX = "fc_"


def split_well(well: str) -> tuple[str, int]:
    well = str(well).strip().upper()
    if not well:
        raise ValueError("Empty well label")
    row = well[0]
    col_part = well[1:]
    if not col_part.isdigit():
        raise ValueError(f"Invalid well label: {well}")
    return row, int(col_part)


def canonical_well(well: str) -> str:
    row, col = split_well(well)
    return f"{row}{col}"


def well_column(well: str) -> int:
    return split_well(well)[1]


def make_uniq_id(date: str, incubator: str, well: str) -> str:
    """Identity of one physical well across the whole experiment."""
    return f"{date}_{incubator}_{canonical_well(well)}"


def make_uniq_curve(uniq_id: str, day: int) -> str:
    """Identity of one well's time series on one day."""
    return f"{uniq_id}{CURVE_SEPARATOR}{int(day)}"


def add_identities(readings: pd.DataFrame) -> pd.DataFrame:
    """Return a copy of ``readings`` with ``uniqID`` and ``uniqCurve`` columns."""
    output = readings.copy()
    output["uniqID"] = [
        make_uniq_id(date, incubator, well)
        for date, incubator, well in zip(
            output["date"], output["incubator"], output["well"]
        )
    ]
    output["uniqCurve"] = [
        make_uniq_curve(uniq_id, day)
        for uniq_id, day in zip(output["uniqID"], output["day"])
    ]
    return output


def exclude_misinoculated(
    readings: pd.DataFrame,
    dates: Iterable[str],
    column: int = 8,
) -> pd.DataFrame:
    """Drop wells in ``column`` on the given batch dates.

    Both conditions must hold; column-``column`` wells on other dates and other
    wells on these dates are kept.
    """
    dates = {str(date) for date in dates}
    if not dates:
        return readings.copy()
    in_column = readings["well"].map(well_column) == column
    on_date = readings["date"].astype(str).isin(dates)
    mask = in_column & on_date
    if mask.any():
        print(
            f"Excluding {readings.loc[mask, 'uniqID'].nunique()} mis-inoculated "
            f"column-{column} wells ({int(mask.sum())} readings)"
        )
    return readings.loc[~mask].copy()


def required_columns() -> set[str]:
    return set(ANNOTATION_COLUMNS)


def species_columns(annotation: pd.DataFrame) -> list[str]:
    """Columns carrying per-species inoculation flags."""
    return [col for col in annotation.columns if col not in required_columns()]


def _normalize_keys(frame: pd.DataFrame) -> pd.DataFrame:
    frame["date"] = frame["date"].astype(str)
    frame["incubator"] = frame["incubator"].astype(str)
    frame["heat"] = frame["heat"].astype(str)
    frame["well"] = frame["well"].apply(canonical_well)
    frame["day"] = frame["day"].astype(int)
    return frame


def load_annotation(
    csv_path: Path,
    flow_prefix: str = FLOW_COLUMN_PREFIX,
) -> pd.DataFrame:
    """Read the annotation table, drop flow-cytometry columns and deduplicate.

    Raises ``ValueError`` if required columns are missing or if a join key is
    still duplicated after exact duplicates have been collapsed.
    """
    csv_path = Path(csv_path)
    if not csv_path.exists():
        raise FileNotFoundError(f"No such annotation file: {csv_path}")

    header = pd.read_csv(csv_path, nrows=0).columns
    text_cols = {col: str for col in ("date", "incubator", "heat") if col in header}
    annotation = pd.read_csv(csv_path, dtype=text_cols)
    missing = required_columns() - set(annotation.columns)
    if missing:
        raise ValueError(
            f"{csv_path} is missing annotation columns: {', '.join(sorted(missing))}"
        )

    flow_cols = [col for col in annotation.columns if col.startswith(flow_prefix)]
    annotation = annotation.drop(columns=flow_cols)
    annotation = _normalize_keys(annotation)

    before = len(annotation)
    annotation = annotation.drop_duplicates().reset_index(drop=True)
    if before != len(annotation):
        print(f"Collapsed {before - len(annotation)} duplicate annotation rows")

    duplicated = annotation.duplicated(subset=JOIN_KEYS, keep=False)
    if duplicated.any():
        keys = annotation.loc[duplicated, JOIN_KEYS].drop_duplicates()
        raise ValueError(
            f"Annotation keys remain duplicated after deduplication:\n{keys.to_string(index=False)}"
        )
    return annotation


def join_annotation(readings: pd.DataFrame, annotation: pd.DataFrame) -> pd.DataFrame:
    """Left-join annotation onto readings by the composite well-day key."""
    joined = readings.merge(annotation, on=JOIN_KEYS, how="left")
    if len(joined) != len(readings):
        raise ValueError(
            f"Annotation join changed the row count ({len(readings)} -> {len(joined)})"
        )
    unannotated = joined["richness"].isna()
    if unannotated.any():
        curves = sorted(joined.loc[unannotated, "uniqCurve"].unique())
        print(
            f"{int(unannotated.sum())} readings ({len(curves)} curves) have no annotation: "
            f"{', '.join(curves[:10])}{' ...' if len(curves) > 10 else ''}"
        )
    return joined


def repair_missing_annotation(
    joined: pd.DataFrame,
    annotation: pd.DataFrame,
    uniq_id: str,
    day: int,
) -> pd.DataFrame:
    """One-off fix for a single well-day that was never annotated.

    Species and richness come from the earliest later day of the same well.
    ``heatDay``/``recDay`` come from other wells on the same date and day that
    share the well's richness category (blank or inoculated). The rebuilt rows
    replace the unannotated ones.
    """
    target = (joined["uniqID"] == uniq_id) & (joined["day"] == day)
    if not target.any():
        raise ValueError(f"No readings for {uniq_id} day {day}; nothing to repair")
    if joined.loc[target, "richness"].notna().all():
        raise ValueError(f"{uniq_id} day {day} is already annotated")

    later = annotation.loc[(annotation["uniqID"] == uniq_id) & (annotation["day"] > day)]
    if later.empty:
        raise ValueError(f"No later-day annotation for {uniq_id} to copy from")
    source = later.loc[later["day"].idxmin()]
    richness = source["richness"]

    date = joined.loc[target, "date"].iloc[0]
    peers = annotation.loc[
        (annotation["date"] == date)
        & (annotation["day"] == day)
        & (annotation["uniqID"] != uniq_id)
        & ((annotation["richness"] == 0) == (richness == 0))
    ]
    schedule = peers[SCHEDULE_COLUMNS].drop_duplicates()
    if len(schedule) != 1:
        raise ValueError(
            f"Expected one heat schedule among peers of {uniq_id} day {day}, "
            f"found {len(schedule)}"
        )

    repaired = joined.loc[target].copy()
    for col in species_columns(annotation) + ["richness"]:
        repaired[col] = source[col]
    for col in SCHEDULE_COLUMNS:
        repaired[col] = schedule[col].iloc[0]
    print(
        f"Repaired annotation for {uniq_id} day {day} "
        f"(richness {richness:g}, {len(repaired)} readings)"
    )
    return pd.concat([joined.loc[~target], repaired], ignore_index=True)


def drop_unannotated(joined: pd.DataFrame) -> pd.DataFrame:
    mask = joined["richness"].isna()
    if mask.any():
        print(
            f"Dropping {int(mask.sum())} unannotated readings "
            f"({joined.loc[mask, 'uniqCurve'].nunique()} curves)"
        )
    return joined.loc[~mask].copy()


def filter_contaminated_wells(
    baselined: pd.DataFrame,
    contamination: pd.DataFrame,
    contaminated_blanks: pd.DataFrame,
) -> pd.DataFrame:
    """Drop wells flagged as contaminated by the OD-based blank checks."""
    flagged = set(contamination["uniqID"]) | set(contaminated_blanks["uniqID"])
    mask = baselined["uniqID"].isin(flagged)
    print(f"OD-based contamination filter removed {baselined.loc[mask, 'uniqID'].nunique()} wells")
    return baselined.loc[~mask].copy()


def load_density_ids(density_path: Path) -> set[str]:
    density_path = Path(density_path)
    if not density_path.exists():
        raise FileNotFoundError(f"No such density table: {density_path}")
    density = pd.read_csv(density_path)
    if "uniqID" not in density.columns:
        raise ValueError(f"{density_path} must contain a 'uniqID' column")
    return set(density["uniqID"].astype(str))


def filter_to_density_table(baselined: pd.DataFrame, density_path: Path) -> pd.DataFrame:
    """Keep only wells present in the finalized contamination-free density table."""
    keep_ids = load_density_ids(density_path)
    mask = baselined["uniqID"].isin(keep_ids)
    print(
        f"Density-table filter removed {baselined.loc[~mask, 'uniqID'].nunique()} wells"
    )
    return baselined.loc[mask].copy()


def _write_flat_table(frame: pd.DataFrame, columns: Sequence[str], path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    frame[list(columns)].to_csv(path, index=False, quoting=csv.QUOTE_NONE)


def write_extinction_table(extinct: pd.DataFrame, path: Path) -> None:
    """Write ``uniqID,day`` records; wells with no live day get an empty day."""
    _write_flat_table(extinct, ["uniqID", "day"], path)


def write_contamination_table(contamination: pd.DataFrame, path: Path) -> None:
    _write_flat_table(contamination, ["uniqID", "day", "detectHr"], path)


def safe_label(label: str) -> str:
    cleaned = "".join(ch if ch.isalnum() else "_" for ch in str(label))
    while "__" in cleaned:
        cleaned = cleaned.replace("__", "_")
    return cleaned.strip("_") or "plate"


__all__ = [
    "ANNOTATION_COLUMNS",
    "CURVE_SEPARATOR",
    "JOIN_KEYS",
    "add_identities",
    "canonical_well",
    "drop_unannotated",
    "exclude_misinoculated",
    "filter_contaminated_wells",
    "filter_to_density_table",
    "join_annotation",
    "load_annotation",
    "load_density_ids",
    "make_uniq_curve",
    "make_uniq_id",
    "repair_missing_annotation",
    "safe_label",
    "species_columns",
    "split_well",
    "well_column",
    "write_contamination_table",
    "write_extinction_table",
]
