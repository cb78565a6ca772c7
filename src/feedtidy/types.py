"""Core data types and configuration for feedtidy."""

from dataclasses import dataclass, field, fields
from typing import Any, Dict, Literal

# Type aliases for cleaner signatures
IdBase = Literal[10, 36]


@dataclass
class TidyConfig:
    """Configuration for the feedtidy pipeline.

    Processor toggles select which transformations run; the pipeline always
    applies them in a fixed order. Distances are in meters of the metric CRS.
    """

    # Processor selection
    delete_orphans: bool = False
    remeasure_shapes: bool = False
    minimize_shapes: bool = False
    remove_shape_duplicates: bool = False
    remove_route_duplicates: bool = False
    remove_service_duplicates: bool = False
    minimize_services: bool = False
    minimize_stop_times: bool = False
    minimize_ids_num: bool = False
    minimize_ids_char: bool = False

    # Tolerances
    metric_crs: Literal["auto"] | str = "auto"
    shape_simplify_tolerance: float = 1.0
    max_shape_eq_distance: float = 10.0
    shape_similarity_samples: int = 100
    frequency_start_tolerance: int = 0  # seconds
    min_frequency_trips: int = 3

    # Parsing leniency
    default_on_errors: bool = False
    drop_errors: bool = False

    # Processing options
    n_workers: int = 0
    progress_bar: bool = True
    verbose: int = 0

    # Metadata
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if self.shape_simplify_tolerance < 0:
            raise ValueError("shape_simplify_tolerance must be non-negative")
        if self.max_shape_eq_distance < 0:
            raise ValueError("max_shape_eq_distance must be non-negative")
        if self.shape_similarity_samples < 2:
            raise ValueError("shape_similarity_samples must be at least 2")
        if self.frequency_start_tolerance < 0:
            raise ValueError("frequency_start_tolerance must be non-negative")
        if self.min_frequency_trips < 3:
            raise ValueError("min_frequency_trips must be at least 3")
        if self.n_workers < 0:
            raise ValueError("n_workers must be non-negative")

    @property
    def id_base(self) -> IdBase | None:
        """Base used by the ID minimizer; numeric wins when both are set."""
        if self.minimize_ids_num:
            return 10
        if self.minimize_ids_char:
            return 36
        return None

    @property
    def needs_remeasure(self) -> bool:
        """Shape simplification and dedup both require measured points."""
        return self.remeasure_shapes or self.minimize_shapes or self.remove_shape_duplicates

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if f.name != "metadata"}


@dataclass
class ProcessingStats:
    """Statistics collected during processing."""

    # Input statistics
    input_counts: Dict[str, int] = field(default_factory=dict)
    recovered_fields: int = 0
    dropped_rows: int = 0

    # Orphan removal
    orphans_removed: Dict[str, int] = field(default_factory=dict)

    # Shape statistics
    shapes_remeasured: int = 0
    points_remeasured: int = 0
    points_before_simplify: int = 0
    points_after_simplify: int = 0
    shape_duplicates_removed: int = 0

    # Route / service statistics
    route_duplicates_removed: int = 0
    fare_attributes_removed: int = 0
    service_duplicates_removed: int = 0
    services_minimized: int = 0
    service_entries_before: int = 0
    service_entries_after: int = 0

    # Frequency statistics
    trips_collapsed: int = 0
    frequencies_created: int = 0

    # ID statistics
    ids_renamed: int = 0

    # Output statistics
    output_counts: Dict[str, int] = field(default_factory=dict)

    # Performance metrics
    processing_time: float = 0.0
    processor_times: Dict[str, float] = field(default_factory=dict)
