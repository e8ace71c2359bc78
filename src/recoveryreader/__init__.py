"""Recoveryreader package: OD baselining and extinction calls for heat-recovery plates."""

from .od_curves_module import (
    apply_blank_baseline,
    compute_blank_medians,
    compute_time_in_hours,
    load_batch_folder,
    load_well_export,
    parse_export_name,
    plot_blank_medians,
    plot_extinction_probability,
    plot_late_density_trajectories,
    plot_plate_recovery_curves,
    plot_threshold_diagnostics,
    split_contaminated_blanks,
)
from .pipeline import (
    AnnotationRepair,
    BatchSpec,
    PipelineConfig,
    PipelineResult,
    baseline_readings,
    load_annotated_readings,
    load_batches,
    run_pipeline,
)
from .pipeline_utils import (
    add_identities,
    canonical_well,
    exclude_misinoculated,
    filter_contaminated_wells,
    filter_to_density_table,
    join_annotation,
    load_annotation,
    make_uniq_curve,
    make_uniq_id,
    repair_missing_annotation,
    write_contamination_table,
    write_extinction_table,
)
from .thresholds import (
    ThresholdSelection,
    call_extinctions,
    detect_contamination_onset,
    extinction_probability_by_richness,
    pick_extremum_per_group,
    select_growth_cutoff,
    summarize_late_density,
)

__all__ = [
    "add_identities",
    "AnnotationRepair",
    "apply_blank_baseline",
    "baseline_readings",
    "BatchSpec",
    "call_extinctions",
    "canonical_well",
    "compute_blank_medians",
    "compute_time_in_hours",
    "detect_contamination_onset",
    "exclude_misinoculated",
    "extinction_probability_by_richness",
    "filter_contaminated_wells",
    "filter_to_density_table",
    "join_annotation",
    "load_annotated_readings",
    "load_annotation",
    "load_batch_folder",
    "load_batches",
    "load_well_export",
    "make_uniq_curve",
    "make_uniq_id",
    "parse_export_name",
    "pick_extremum_per_group",
    "PipelineConfig",
    "PipelineResult",
    "plot_blank_medians",
    "plot_extinction_probability",
    "plot_late_density_trajectories",
    "plot_plate_recovery_curves",
    "plot_threshold_diagnostics",
    "repair_missing_annotation",
    "run_pipeline",
    "select_growth_cutoff",
    "split_contaminated_blanks",
    "summarize_late_density",
    "ThresholdSelection",
    "write_contamination_table",
    "write_extinction_table",
]
