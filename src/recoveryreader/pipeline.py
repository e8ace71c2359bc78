"""High-level pipeline for the coculture heat-recovery extinction analysis."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

import pandas as pd

from .od_curves_module import (
    DEFAULT_OD_SANITY_MAX,
    apply_blank_baseline,
    compute_blank_medians,
    load_batch_folder,
    plot_blank_medians,
    plot_extinction_probability,
    plot_late_density_trajectories,
    plot_plate_recovery_curves,
    plot_threshold_diagnostics,
    split_contaminated_blanks,
)
from .pipeline_utils import (
    add_identities,
    drop_unannotated,
    exclude_misinoculated,
    filter_contaminated_wells,
    filter_to_density_table,
    join_annotation,
    load_annotation,
    repair_missing_annotation,
    safe_label,
    write_contamination_table,
    write_extinction_table,
)
from .thresholds import (
    DEFAULT_EXTINCTION_WINDOW_HR,
    DEFAULT_LATE_WINDOW_HR,
    DEFAULT_RECOVERY_DAY,
    DEFAULT_STRESS_HEAT_DAY,
    ThresholdSelection,
    detect_contamination_onset,
    extinction_probability_by_richness,
    select_growth_cutoff,
    summarize_late_density,
)


@dataclass(frozen=True)
class BatchSpec:
    """One folder of per-well exports and the metadata shared by its wells."""

    folder: Path
    incubator: str
    heat: str
    date: str

    @property
    def label(self) -> str:
        return f"{self.date}/{self.incubator}/{self.heat}"


def _coerce_batch(batch: BatchSpec | Sequence[object]) -> BatchSpec:
    if not isinstance(batch, BatchSpec):
        batch = BatchSpec(*batch)
    return BatchSpec(Path(batch.folder), str(batch.incubator), str(batch.heat), str(batch.date))


@dataclass(frozen=True)
class AnnotationRepair:
    """A single well-day whose missing annotation is rebuilt from its neighbours."""

    uniq_id: str
    day: int


@dataclass
class PipelineConfig:
    """Fixed constants for one run of the extinction pipeline."""

    batches: Sequence[BatchSpec]
    annotation_csv: Path
    density_csv: Path
    output_dir: Path = Path("output")
    plots_dir: Path = Path("plots")
    misinoculated_dates: Sequence[str] = ()
    misinoculated_column: int = 8
    annotation_repair: AnnotationRepair | None = None
    od_sanity_max: float = DEFAULT_OD_SANITY_MAX
    stress_heat_day: int = DEFAULT_STRESS_HEAT_DAY
    recovery_day: int = DEFAULT_RECOVERY_DAY
    extinction_window_hr: float = DEFAULT_EXTINCTION_WINDOW_HR
    late_window_hr: float = DEFAULT_LATE_WINDOW_HR
    render_plate_plots: bool = True
    flow_column_prefix: str = "fc_"
    extinction_csv_name: str = "extinct_wells.csv"

    def __post_init__(self) -> None:
        # Accept (folder, incubator, heat, date) tuples as well as BatchSpec.
        self.batches = [_coerce_batch(batch) for batch in self.batches]
        if not self.batches:
            raise ValueError("At least one batch is required")
        if self.annotation_repair is not None and not isinstance(
            self.annotation_repair, AnnotationRepair
        ):
            self.annotation_repair = AnnotationRepair(*self.annotation_repair)
        self.annotation_csv = Path(self.annotation_csv)
        self.density_csv = Path(self.density_csv)
        self.output_dir = Path(self.output_dir)
        self.plots_dir = Path(self.plots_dir)
        self.misinoculated_dates = [str(date) for date in self.misinoculated_dates]


@dataclass
class PipelineResult:
    """Every table produced by ``run_pipeline``."""

    readings: pd.DataFrame
    medians: pd.DataFrame
    baselined: pd.DataFrame
    contaminated_blanks: pd.DataFrame
    selection: ThresholdSelection
    extinct: pd.DataFrame
    contamination: pd.DataFrame
    late_density: pd.DataFrame
    extinction_summary: pd.DataFrame
    final: pd.DataFrame
    outputs: dict[str, Path] = field(default_factory=dict)

    @property
    def growth_cutoff(self) -> float:
        return self.selection.growth_cutoff


def load_batches(batches: Sequence[BatchSpec]) -> pd.DataFrame:
    """Load every batch folder and tag its rows with the batch metadata."""
    frames = []
    for batch in batches:
        print(f"Loading batch {batch.label} from {batch.folder} ...")
        frame = load_batch_folder(batch.folder, batch.label)
        frame.insert(0, "heat", batch.heat)
        frame.insert(0, "incubator", batch.incubator)
        frame.insert(0, "date", batch.date)
        frames.append(frame)
    readings = pd.concat(frames, ignore_index=True)
    return add_identities(readings)


def load_annotated_readings(config: PipelineConfig) -> pd.DataFrame:
    """Loader/Joiner stage: readings with corrections and annotation applied."""
    readings = load_batches(config.batches)
    readings = exclude_misinoculated(
        readings, config.misinoculated_dates, config.misinoculated_column
    )
    annotation = load_annotation(config.annotation_csv, config.flow_column_prefix)
    joined = join_annotation(readings, annotation)
    if config.annotation_repair is not None:
        joined = repair_missing_annotation(
            joined,
            annotation,
            config.annotation_repair.uniq_id,
            config.annotation_repair.day,
        )
    return drop_unannotated(joined)


def baseline_readings(
    annotated: pd.DataFrame,
    od_sanity_max: float = DEFAULT_OD_SANITY_MAX,
) -> tuple[pd.DataFrame, pd.DataFrame, pd.DataFrame]:
    """Baseline Estimator stage.

    Returns ``(medians, baselined, baselined_contaminated_blanks)``.
    """
    kept, contaminated = split_contaminated_blanks(annotated, od_sanity_max)
    medians = compute_blank_medians(kept)
    baselined = apply_blank_baseline(kept, medians)
    contaminated_baselined = apply_blank_baseline(contaminated, medians)
    return medians, baselined, contaminated_baselined


def render_plate_plots(
    plots_dir: Path,
    final: pd.DataFrame,
    growth_cutoff: float,
    extinct_ids: set[str],
) -> None:
    """Write one 8×12 recovery-curve PDF per date and incubator."""
    for (date, incubator), plate_frame in final.groupby(["date", "incubator"]):
        plot_plate_recovery_curves(
            plate_frame,
            growth_cutoff,
            extinct_ids=extinct_ids,
            output_path=plots_dir / f"{safe_label(f'{date}_{incubator}')}_recovery_curves.pdf",
            plate_title=f"{date} {incubator}",
        )


def run_pipeline(config: PipelineConfig) -> PipelineResult:
    """
    Execute the configured pipeline and return every derived table.

    The extinction table is written to ``output_dir`` along with the
    contamination records and summaries; plots go to ``plots_dir``.
    """
    annotated = load_annotated_readings(config)
    medians, baselined, contaminated_blanks = baseline_readings(
        annotated, config.od_sanity_max
    )

    selection = select_growth_cutoff(
        baselined,
        heat_day=config.stress_heat_day,
        recovery_day=config.recovery_day,
        window_start=config.extinction_window_hr,
    )
    cutoff = selection.growth_cutoff
    print(f"Using growth_cutoff = {cutoff:.4f}")

    extinct = selection.extinct
    contamination = detect_contamination_onset(
        pd.concat([baselined, contaminated_blanks], ignore_index=True), cutoff
    )
    late_density = summarize_late_density(baselined, config.late_window_hr)
    extinction_summary = extinction_probability_by_richness(
        baselined,
        extinct,
        recovery_day=config.recovery_day,
        window_start=config.extinction_window_hr,
    )

    config.output_dir.mkdir(parents=True, exist_ok=True)
    outputs = {
        "extinct": config.output_dir / config.extinction_csv_name,
        "contamination": config.output_dir / "contaminated_blanks.csv",
        "late_density": config.output_dir / "late_density.csv",
        "extinction_summary": config.output_dir / "extinction_by_richness.csv",
    }
    write_extinction_table(extinct, outputs["extinct"])
    write_contamination_table(contamination, outputs["contamination"])
    late_density.to_csv(outputs["late_density"], index=False)
    extinction_summary.to_csv(outputs["extinction_summary"], index=False)
    print(f"Wrote {len(extinct)} extinction records to {outputs['extinct']}")

    final = filter_contaminated_wells(baselined, contamination, contaminated_blanks)
    final = filter_to_density_table(final, config.density_csv)

    config.plots_dir.mkdir(parents=True, exist_ok=True)
    plot_blank_medians(medians, config.plots_dir / "blank_medians.pdf")
    plot_threshold_diagnostics(
        baselined.loc[baselined["richness"] == 0],
        baselined.loc[baselined["heatDay"] == config.stress_heat_day],
        selection.candidates(),
        cutoff,
        config.plots_dir / "threshold_diagnostics.pdf",
    )
    if not late_density.empty:
        plot_late_density_trajectories(
            late_density.loc[late_density["uniqID"].isin(set(final["uniqID"]))],
            cutoff,
            config.plots_dir / "late_density_trajectories.pdf",
        )
    if not extinction_summary.empty:
        plot_extinction_probability(
            extinction_summary, config.plots_dir / "extinction_probability.pdf"
        )
    if config.render_plate_plots:
        render_plate_plots(config.plots_dir, final, cutoff, set(extinct["uniqID"]))
    print(f"Wrote plots to {config.plots_dir}")

    print("Done.")
    return PipelineResult(
        readings=annotated,
        medians=medians,
        baselined=baselined,
        contaminated_blanks=contaminated_blanks,
        selection=selection,
        extinct=extinct,
        contamination=contamination,
        late_density=late_density,
        extinction_summary=extinction_summary,
        final=final,
        outputs=outputs,
    )
