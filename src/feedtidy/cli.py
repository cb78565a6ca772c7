"""Command-line interface for feedtidy."""

import json
import sys
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from .pipeline import tidy_feed, validate_feed, build_processors
from .types import TidyConfig

app = typer.Typer(
    name="feedtidy",
    help="Feed tidier - shrink and deduplicate GTFS-style transit feeds",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)


@app.command()
def tidy(
    input_path: str = typer.Argument(..., help="Input feed directory or zip archive"),
    output_path: str = typer.Option("gtfs-out", "--output", "-o", help="Output directory, or zip archive if it ends in .zip"),

    # Parsing leniency
    default_on_errs: bool = typer.Option(False, "--default-on-errs", "-e", help="Use default values for malformed optional fields"),
    drop_errs: bool = typer.Option(False, "--drop-errs", "-D", help="Drop rows with missing required fields or broken references"),

    # Processors
    delete_orphans: bool = typer.Option(False, "--delete-orphans", "-O", help="Remove entities nothing references"),
    remeasure_shapes: bool = typer.Option(False, "--remeasure-shapes", "-m", help="Fill in missing shape distances"),
    min_shapes: bool = typer.Option(False, "--min-shapes", "-s", help="Simplify shapes with Douglas-Peucker"),
    remove_red_shapes: bool = typer.Option(False, "--remove-red-shapes", "-S", help="Merge geometrically equal shapes"),
    remove_red_routes: bool = typer.Option(False, "--remove-red-routes", "-R", help="Merge identical routes"),
    remove_red_services: bool = typer.Option(False, "--remove-red-services", "-C", help="Merge services with the same active dates"),
    minimize_services: bool = typer.Option(False, "--minimize-services", "-c", help="Minimize calendar and calendar_dates entries"),
    minimize_stoptimes: bool = typer.Option(False, "--minimize-stoptimes", "-T", help="Collapse regular trips into frequencies"),
    minimize_ids_num: bool = typer.Option(False, "--minimize-ids-num", "-i", help="Replace ids by short base-10 numbers"),
    minimize_ids_char: bool = typer.Option(False, "--minimize-ids-char", "-d", help="Replace ids by short base-36 strings"),

    validation_mode: bool = typer.Option(False, "--validation-mode", help="Only parse and report, do not transform or write"),

    # Runtime options
    workers: Optional[int] = typer.Option(None, "--workers", min=0, help="Worker threads for parallel scans (0 = CPU count)"),
    progress: bool = typer.Option(True, "--progress/--no-progress", help="Show progress bars"),
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="Increase verbosity (use -v, -vv)"),

    # Configuration file
    config_file: Optional[str] = typer.Option(None, "--config", help="Load configuration from YAML or JSON file"),

    # Report output
    report_path: Optional[str] = typer.Option(None, "--report", help="Save processing report to JSON file"),
) -> None:
    """Tidy a transit feed.

    Selected processors always run in a fixed order: orphans, remeasure,
    shape simplification, shape/route/service duplicates, service
    minimization, stop time minimization, id minimization.

    Examples:

        # Remove orphans and duplicate routes, write a zip
        feedtidy tidy feed.zip -o tidy.zip -O -R

        # Everything, lenient parsing
        feedtidy tidy feed/ -o out/ -e -D -O -s -S -R -C -c -T -i

        # Use configuration file
        feedtidy tidy feed.zip --config config.yaml --report report.json
    """
    try:
        # Load configuration from file if provided
        if config_file:
            config = load_config_file(config_file)
            console.print(f"Loaded configuration from {config_file}")
        else:
            config = TidyConfig()

        # Command-line flags only switch things on
        flags = {
            'default_on_errors': default_on_errs,
            'drop_errors': drop_errs,
            'delete_orphans': delete_orphans,
            'remeasure_shapes': remeasure_shapes,
            'minimize_shapes': min_shapes,
            'remove_shape_duplicates': remove_red_shapes,
            'remove_route_duplicates': remove_red_routes,
            'remove_service_duplicates': remove_red_services,
            'minimize_services': minimize_services,
            'minimize_stop_times': minimize_stoptimes,
            'minimize_ids_num': minimize_ids_num,
            'minimize_ids_char': minimize_ids_char,
        }
        for name, enabled in flags.items():
            if enabled:
                setattr(config, name, True)
        if workers is not None:
            config.n_workers = workers
        config.progress_bar = progress
        config.verbose = verbose

        if verbose >= 1:
            display_config(config)

        if validation_mode:
            _run_validation(input_path, config, report_path)
            return

        console.print("Starting feedtidy pipeline...")
        feed, report = tidy_feed(input_path, output_path, config)

        display_results(report, verbose)

        if report_path:
            save_report(report, report_path)
            console.print(f"Report saved to {report_path}")

        console.print(f"Feed written to {output_path}")

    except Exception as e:
        err_console.print(f"Error: {e}", style="bold red")
        if verbose >= 2:
            err_console.print_exception()
        sys.exit(1)


@app.command()
def validate(
    input_path: str = typer.Argument(..., help="Input feed directory or zip archive"),
    config_file: Optional[str] = typer.Option(None, "--config", help="Configuration file to validate with"),
    report_path: Optional[str] = typer.Option(None, "--report", help="Save validation report to JSON file"),
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="Increase verbosity"),
) -> None:
    """Parse a feed strictly and report on it without transforming or writing anything."""
    try:
        config = load_config_file(config_file) if config_file else TidyConfig()
        config.verbose = verbose
        _run_validation(input_path, config, report_path)
    except Exception as e:
        err_console.print(f"Validation failed: {e}", style="bold red")
        sys.exit(1)


def _run_validation(input_path: str, config: TidyConfig, report_path: Optional[str]) -> None:
    console.print(f"Validating {input_path}")
    feed, report = validate_feed(input_path, config)

    table = Table(title="Feed Contents")
    table.add_column("Collection", style="cyan")
    table.add_column("Count", style="magenta")
    for name, count in report['input_counts'].items():
        table.add_row(name.replace('_', ' ').capitalize(), str(count))
    console.print(table)

    console.print("Validation passed", style="bold green")

    if report_path:
        save_report(report, report_path)
        console.print(f"Report saved to {report_path}")


@app.command()
def config(
    output_path: str = typer.Argument(..., help="Output path for configuration file"),
    format: str = typer.Option("yaml", "--format", help="Output format: yaml or json"),
) -> None:
    """Generate a default configuration file."""
    try:
        config_dict = TidyConfig().to_dict()
        output_file = Path(output_path)

        if format.lower() == 'yaml':
            with open(output_file, 'w') as f:
                yaml.dump(config_dict, f, default_flow_style=False, indent=2, sort_keys=False)
        elif format.lower() == 'json':
            with open(output_file, 'w') as f:
                json.dump(config_dict, f, indent=2)
        else:
            raise ValueError(f"Unsupported format: {format}")

        console.print(f"Default configuration saved to {output_path}")

    except Exception as e:
        err_console.print(f"Failed to create config file: {e}", style="bold red")
        sys.exit(1)


def load_config_file(config_path: str) -> TidyConfig:
    """Load configuration from YAML or JSON file."""
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(path) as f:
        if path.suffix.lower() in ['.yml', '.yaml']:
            config_dict = yaml.safe_load(f) or {}
        elif path.suffix.lower() == '.json':
            config_dict = json.load(f)
        else:
            raise ValueError(f"Unsupported config file format: {path.suffix}")

    return TidyConfig(**config_dict)


def display_config(config: TidyConfig) -> None:
    """Display current configuration in a formatted table."""
    table = Table(title="Configuration", show_header=True, header_style="bold blue")
    table.add_column("Parameter", style="cyan")
    table.add_column("Value", style="magenta")

    processors = [name for name, _ in build_processors(config)]
    table.add_row("Processors", ", ".join(processors) or "none")
    table.add_row("Metric CRS", str(config.metric_crs))
    table.add_row("Simplify tolerance", f"{config.shape_simplify_tolerance}m")
    table.add_row("Shape equality distance", f"{config.max_shape_eq_distance}m")
    table.add_row("Frequency start tolerance", f"{config.frequency_start_tolerance}s")
    table.add_row("Default on errors", str(config.default_on_errors))
    table.add_row("Drop errors", str(config.drop_errors))
    table.add_row("Workers", str(config.n_workers or "auto"))

    console.print(table)


def display_results(report: dict, verbose: int) -> None:
    """Display processing results."""
    input_counts = report['input_counts']
    output_rows = report['output_table_rows']
    summary_text = (
        f"Input:  {input_counts.get('routes', 0)} routes, {input_counts.get('trips', 0)} trips, "
        f"{input_counts.get('services', 0)} services, {input_counts.get('shapes', 0)} shapes\n"
        f"Output: {output_rows.get('routes', 0)} routes, {output_rows.get('trips', 0)} trips, "
        f"{output_rows.get('stop_times', 0)} stop times, {output_rows.get('shapes', 0)} shape points\n"
        f"Processing time: {report['processing_time']:.2f}s"
    )

    console.print(Panel(summary_text, title="Processing Summary", expand=False))

    if verbose >= 1:
        table = Table(title="Detailed Statistics", show_header=True)
        table.add_column("Operation", style="cyan")
        table.add_column("Count", style="magenta")

        table.add_row("Fields recovered", str(report['recovered_fields']))
        table.add_row("Rows dropped", str(report['dropped_rows']))
        table.add_row("Orphans removed", str(sum(report['orphans_removed'].values())))
        table.add_row("Shapes remeasured", str(report['shapes_remeasured']))
        table.add_row("Shape points before simplify", str(report['points_before_simplify']))
        table.add_row("Shape points after simplify", str(report['points_after_simplify']))
        table.add_row("Duplicate shapes removed", str(report['shape_duplicates_removed']))
        table.add_row("Duplicate routes removed", str(report['route_duplicates_removed']))
        table.add_row("Fare attributes removed", str(report['fare_attributes_removed']))
        table.add_row("Duplicate services removed", str(report['service_duplicates_removed']))
        table.add_row("Services minimized", str(report['services_minimized']))
        table.add_row("Trips collapsed", str(report['trips_collapsed']))
        table.add_row("Frequencies created", str(report['frequencies_created']))
        table.add_row("Ids renamed", str(report['ids_renamed']))

        console.print(table)

    if verbose >= 2 and report.get('processor_times'):
        for name, duration in report['processor_times'].items():
            console.print(f"  {name}: {duration:.2f}s")


def save_report(report: dict, report_path: str) -> None:
    """Save processing report to JSON file."""
    with open(report_path, 'w') as f:
        json.dump(report, f, indent=2, default=str)
