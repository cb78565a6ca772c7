"""Main pipeline orchestration for feedtidy."""

import logging
import time
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Tuple

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TimeElapsedColumn

from .errors import FeedInvariantError
from .graph import Feed
from .modules import (
    remove_orphans,
    remeasure_shapes,
    minimize_shapes,
    remove_shape_duplicates,
    remove_route_duplicates,
    remove_service_duplicates,
    minimize_services,
    minimize_frequencies,
    minimize_ids,
)
from .reader import read_feed
from .types import TidyConfig, ProcessingStats
from .writer import write_feed

logger = logging.getLogger(__name__)
console = Console()

Processor = Callable[[Feed, TidyConfig, ProcessingStats], Feed]


def setup_logging(verbose: int) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose >= 2 else
              logging.INFO if verbose >= 1 else
              logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def build_processors(config: TidyConfig) -> List[Tuple[str, Processor]]:
    """Ordered list of (description, processor) selected by the config.

    Fixed order: orphans → remeasure → simplify shapes → shape duplicates →
    route duplicates → service duplicates → minimize services → minimize
    stop times → minimize ids. Remeasuring is added whenever a shape
    processor runs.
    """
    processors: List[Tuple[str, Processor]] = []
    if config.delete_orphans:
        processors.append(("Removing orphans", remove_orphans))
    if config.needs_remeasure:
        processors.append(("Remeasuring shapes", remeasure_shapes))
    if config.minimize_shapes:
        processors.append(("Minimizing shapes", minimize_shapes))
    if config.remove_shape_duplicates:
        processors.append(("Removing duplicate shapes", remove_shape_duplicates))
    if config.remove_route_duplicates:
        processors.append(("Removing duplicate routes", remove_route_duplicates))
    if config.remove_service_duplicates:
        processors.append(("Removing duplicate services", remove_service_duplicates))
    if config.minimize_services:
        processors.append(("Minimizing services", minimize_services))
    if config.minimize_stop_times:
        processors.append(("Minimizing stop times", minimize_frequencies))
    if config.id_base is not None:
        processors.append(("Minimizing ids", minimize_ids))
    return processors


def check_references(feed: Feed) -> None:
    problems = feed.dangling_references()
    if problems:
        raise FeedInvariantError(f"{len(problems)} dangling reference(s), first: {problems[0]}")


def run_processors(
    feed: Feed,
    config: TidyConfig,
    stats: ProcessingStats,
    progress: Optional[Progress] = None,
) -> Feed:
    """Apply the configured processors in order, checking references after each."""
    for description, processor in build_processors(config):
        task = progress.add_task(f"{description}...", total=None) if progress else None
        started = time.time()

        feed = processor(feed, config, stats)
        check_references(feed)

        duration = time.time() - started
        stats.processor_times[processor.__name__] = duration
        if progress:
            progress.update(task, total=1, completed=1,
                            description=f"[green]OK[/green] {description} ({duration:.1f}s)")
    return feed


def _progress(config: TidyConfig) -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TimeElapsedColumn(),
        console=console,
        disable=not config.progress_bar
    )


def tidy_feed(
    input_path: str,
    output_path: str,
    config: Optional[TidyConfig] = None
) -> Tuple[Feed, Dict[str, Any]]:
    """Run the complete feedtidy pipeline.

    Args:
        input_path: Feed directory or zip archive
        output_path: Output directory, or zip archive if it ends in .zip
        config: Processor selection and parameters

    Returns:
        Tuple of (processed Feed, report dict)

    Raises:
        FeedParseError: If the input cannot be parsed under the leniency settings
        FeedWriteError: If the output cannot be written
        FeedInvariantError: If a processor leaves a dangling reference
        FileNotFoundError: If the input doesn't exist
    """
    config = config or TidyConfig()
    start_time = time.time()
    stats = ProcessingStats()

    setup_logging(config.verbose)
    logger.info(f"Starting feedtidy pipeline: {input_path} → {output_path}")

    try:
        with _progress(config) as progress:
            task = progress.add_task("Reading feed...", total=None)
            feed = read_feed(input_path, config, stats)
            progress.update(task, total=1, completed=1, description="[green]OK[/green] Feed read")

            feed = run_processors(feed, config, stats, progress)

            task = progress.add_task("Writing feed...", total=None)
            stats.output_counts = write_feed(feed, output_path)
            progress.update(task, total=1, completed=1, description="[green]OK[/green] Feed written")

    except Exception as e:
        logger.error(f"Pipeline failed: {e}")
        raise

    stats.processing_time = time.time() - start_time
    report = _generate_report(stats, config, input_path, output_path)

    logger.info(f"Pipeline completed in {stats.processing_time:.2f}s")
    return feed, report


def validate_feed(input_path: str, config: Optional[TidyConfig] = None) -> Tuple[Feed, Dict[str, Any]]:
    """Parse the feed and report on it; nothing is transformed or written.

    Validation always parses strictly: malformed fields and broken rows fail
    instead of being defaulted or dropped.
    """
    config = replace(config or TidyConfig(), default_on_errors=False, drop_errors=False)
    start_time = time.time()
    stats = ProcessingStats()

    setup_logging(config.verbose)
    try:
        feed = read_feed(input_path, config, stats)
        check_references(feed)
    except Exception as e:
        logger.error(f"Validation failed: {e}")
        raise

    stats.processing_time = time.time() - start_time
    return feed, _generate_report(stats, config, input_path, None)


def _generate_report(
    stats: ProcessingStats,
    config: TidyConfig,
    input_path: str,
    output_path: Optional[str],
) -> Dict[str, Any]:
    """Generate processing report."""
    return {
        'input_path': str(input_path),
        'output_path': str(output_path) if output_path is not None else None,

        # Entity counts
        'input_counts': dict(stats.input_counts),
        'output_table_rows': dict(stats.output_counts),

        # Parsing leniency
        'recovered_fields': stats.recovered_fields,
        'dropped_rows': stats.dropped_rows,

        # Processor statistics
        'orphans_removed': dict(stats.orphans_removed),
        'shapes_remeasured': stats.shapes_remeasured,
        'points_remeasured': stats.points_remeasured,
        'points_before_simplify': stats.points_before_simplify,
        'points_after_simplify': stats.points_after_simplify,
        'point_reduction_percent': (
            (stats.points_before_simplify - stats.points_after_simplify) / stats.points_before_simplify * 100
            if stats.points_before_simplify > 0 else 0
        ),
        'shape_duplicates_removed': stats.shape_duplicates_removed,
        'route_duplicates_removed': stats.route_duplicates_removed,
        'fare_attributes_removed': stats.fare_attributes_removed,
        'service_duplicates_removed': stats.service_duplicates_removed,
        'services_minimized': stats.services_minimized,
        'service_entries_before': stats.service_entries_before,
        'service_entries_after': stats.service_entries_after,
        'trips_collapsed': stats.trips_collapsed,
        'frequencies_created': stats.frequencies_created,
        'ids_renamed': stats.ids_renamed,

        # Performance metrics
        'processing_time': stats.processing_time,
        'processor_times': dict(stats.processor_times),

        'processors': [name for name, _ in build_processors(config)],
        'config': config.to_dict(),

        # Pipeline metadata
        'pipeline_version': '0.1.0',
        'timestamp': time.strftime('%Y-%m-%d %H:%M:%S UTC', time.gmtime()),
    }
