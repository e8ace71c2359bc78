from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from recoveryreader import (
    add_identities,
    compute_time_in_hours,
    exclude_misinoculated,
    join_annotation,
    load_annotation,
    load_batch_folder,
    load_well_export,
    parse_export_name,
    repair_missing_annotation,
)


def test_load_well_export_skips_vendor_header(tmp_path, export_writer) -> None:
    path = export_writer(
        tmp_path / "day1_A1.txt",
        ["00:00:00", "00:30:00", "01:00:00"],
        [0.10, 0.11, 0.12],
        [30.0, 30.1, 30.2],
    )
    frame = load_well_export(path)
    assert list(frame.columns) == ["Time", "OD", "Temp"]
    np.testing.assert_allclose(frame["Time"], [0.0, 0.5, 1.0])
    np.testing.assert_allclose(frame["OD"], [0.10, 0.11, 0.12])
    np.testing.assert_allclose(frame["Temp"], [30.0, 30.1, 30.2])


def test_load_well_export_without_header_names_file(tmp_path) -> None:
    path = tmp_path / "day1_A1.txt"
    path.write_text("garbage\n1\t2\n", encoding="utf-8")
    with pytest.raises(ValueError, match="day1_A1.txt"):
        load_well_export(path)


def test_load_well_export_missing_od_column(tmp_path) -> None:
    path = tmp_path / "day1_A1.txt"
    path.write_text("Time\tTemperature\n0\t30\n", encoding="utf-8")
    with pytest.raises(ValueError, match="'od'"):
        load_well_export(path)


def test_load_well_export_rejects_non_numeric_od(tmp_path, export_writer) -> None:
    path = export_writer(
        tmp_path / "day1_A1.txt",
        ["00:00:00", "00:30:00", "01:00:00"],
        ["0.1", "OVRFLW", "0.2"],
    )
    with pytest.raises(ValueError, match=r"day1_A1\.txt.*OVRFLW"):
        load_well_export(path)


def test_load_well_export_allows_blank_od_cells(tmp_path, export_writer) -> None:
    path = export_writer(
        tmp_path / "day1_A1.txt",
        ["00:00:00", "00:30:00", "01:00:00"],
        ["0.1", "", "0.2"],
    )
    frame = load_well_export(path)
    assert frame["OD"].isna().tolist() == [False, True, False]


def test_compute_time_in_hours_handles_numbers_and_wraps() -> None:
    np.testing.assert_allclose(compute_time_in_hours([0, 1.5, 22.25]), [0.0, 1.5, 22.25])
    np.testing.assert_allclose(
        compute_time_in_hours(["23:30:00", "00:30:00", "01:00:00"]), [23.5, 24.5, 25.0]
    )


def test_compute_time_in_hours_never_wraps_numeric_hours() -> None:
    np.testing.assert_allclose(
        compute_time_in_hours([0.0, 10.0, 9.99, 12.0]), [0.0, 10.0, 9.99, 12.0]
    )


def test_parse_export_name() -> None:
    assert parse_export_name("day2_B07.txt") == (2, "B7")
    assert parse_export_name("plate_Day12-H12.txt") == (12, "H12")
    assert parse_export_name("notes.txt") is None


def test_load_batch_folder_tags_day_and_well(tmp_path, export_writer) -> None:
    export_writer(tmp_path / "day1_A1.txt", [0.0, 1.0], [0.1, 0.2])
    export_writer(tmp_path / "day2_B12.txt", [0.0, 1.0], [0.3, 0.4])
    (tmp_path / "readme.txt").write_text("not an export\n", encoding="utf-8")

    frame = load_batch_folder(tmp_path, "230605/incA/6h")
    assert sorted(frame["well"].unique()) == ["A1", "B12"]
    assert frame.loc[frame["well"] == "B12", "day"].unique().tolist() == [2]
    assert len(frame) == 4


def test_load_batch_folder_errors_name_the_batch(tmp_path) -> None:
    with pytest.raises(FileNotFoundError, match="230605/incA"):
        load_batch_folder(tmp_path / "missing", "230605/incA")
    with pytest.raises(ValueError, match="230605/incA"):
        load_batch_folder(tmp_path, "230605/incA")


def _readings(rows):
    frame = pd.DataFrame(rows, columns=["date", "incubator", "heat", "well", "day", "Time", "OD"])
    return add_identities(frame)


def test_identities_are_stable_across_days() -> None:
    frame = _readings(
        [
            ("230605", "incA", "6h", "B7", 1, 0.0, 0.1),
            ("230605", "incA", "6h", "B7", 2, 0.0, 0.1),
        ]
    )
    assert frame["uniqID"].nunique() == 1
    assert frame["uniqID"].iloc[0] == "230605_incA_B7"
    assert frame["uniqCurve"].tolist() == ["230605_incA_B7-1", "230605_incA_B7-2"]


def test_column8_exclusion_is_date_scoped() -> None:
    frame = _readings(
        [
            ("230605", "incA", "6h", "C8", 1, 0.0, 0.1),
            ("230605", "incA", "6h", "C7", 1, 0.0, 0.1),
            ("230612", "incA", "12h", "C8", 1, 0.0, 0.1),
        ]
    )
    kept = exclude_misinoculated(frame, ["230605"], column=8)
    assert sorted(kept["uniqID"]) == ["230605_incA_C7", "230612_incA_C8"]
    assert len(frame) == 3


def _write_annotation(path, rows, extra_cols=("sp1", "sp2")):
    columns = ["uniqID", "well", "date", "day", "incubator", "heat", *extra_cols,
               "richness", "heatDay", "recDay", "fc_events"]
    pd.DataFrame(rows, columns=columns).to_csv(path, index=False)
    return path


def test_load_annotation_collapses_duplicates_and_drops_flow_columns(tmp_path) -> None:
    row = ("230605_incA_B7", "B7", "230605", 1, "incA", "6h", 1, 0, 1, 3, 0, 1200)
    path = _write_annotation(tmp_path / "annotation.csv", [row, row])
    annotation = load_annotation(path)
    assert len(annotation) == 1
    assert "fc_events" not in annotation.columns
    assert annotation["date"].iloc[0] == "230605"


def test_load_annotation_rejects_conflicting_keys(tmp_path) -> None:
    rows = [
        ("230605_incA_B7", "B7", "230605", 1, "incA", "6h", 1, 0, 1, 3, 0, 10),
        ("230605_incA_B7", "B7", "230605", 1, "incA", "6h", 0, 1, 1, 3, 0, 10),
    ]
    path = _write_annotation(tmp_path / "annotation.csv", rows)
    with pytest.raises(ValueError, match="duplicated"):
        load_annotation(path)


def test_load_annotation_requires_columns(tmp_path) -> None:
    path = tmp_path / "annotation.csv"
    pd.DataFrame({"uniqID": ["x"], "well": ["A1"]}).to_csv(path, index=False)
    with pytest.raises(ValueError, match="richness"):
        load_annotation(path)


def test_join_and_repair_missing_annotation(tmp_path) -> None:
    readings = _readings(
        [
            ("230605", "incA", "6h", "B4", 2, 0.0, 0.1),
            ("230605", "incA", "6h", "B4", 2, 1.0, 0.1),
            ("230605", "incA", "6h", "B4", 3, 0.0, 0.1),
            ("230605", "incA", "6h", "B5", 2, 0.0, 0.1),
        ]
    )
    rows = [
        ("230605_incA_B4", "B4", "230605", 3, "incA", "6h", 1, 1, 2, 0, 2, 0),
        ("230605_incA_B4", "B4", "230605", 4, "incA", "6h", 0, 0, 0, 0, 3, 0),
        ("230605_incA_B5", "B5", "230605", 2, "incA", "6h", 1, 0, 1, 0, 1, 0),
        ("230605_incA_A1", "A1", "230605", 2, "incA", "6h", 0, 0, 0, 9, 9, 0),
    ]
    annotation = load_annotation(_write_annotation(tmp_path / "annotation.csv", rows))

    joined = join_annotation(readings, annotation)
    assert len(joined) == len(readings)
    assert joined["richness"].isna().sum() == 2

    repaired = repair_missing_annotation(joined, annotation, "230605_incA_B4", 2)
    assert len(repaired) == len(readings)
    assert repaired["richness"].notna().all()
    day2 = repaired.loc[(repaired["uniqID"] == "230605_incA_B4") & (repaired["day"] == 2)]
    assert day2["richness"].unique().tolist() == [2]
    assert day2["sp1"].unique().tolist() == [1]
    assert day2["sp2"].unique().tolist() == [1]
    # schedule from the inoculated peer B5, not the blank A1
    assert day2["heatDay"].unique().tolist() == [0]
    assert day2["recDay"].unique().tolist() == [1]
    assert joined["richness"].isna().sum() == 2


def test_repair_requires_an_unannotated_target(tmp_path) -> None:
    readings = _readings([("230605", "incA", "6h", "B5", 2, 0.0, 0.1)])
    rows = [("230605_incA_B5", "B5", "230605", 2, "incA", "6h", 1, 0, 1, 0, 1, 0)]
    annotation = load_annotation(_write_annotation(tmp_path / "annotation.csv", rows))
    joined = join_annotation(readings, annotation)
    with pytest.raises(ValueError, match="already annotated"):
        repair_missing_annotation(joined, annotation, "230605_incA_B5", 2)
