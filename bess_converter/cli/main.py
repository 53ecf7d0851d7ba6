"""
Main CLI application for converting battery CSV exports.
"""

import functools
import json
import re
import sys
import time
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.panel import Panel
from rich.table import Table

from bess_converter import __version__
from bess_converter.core.config import (
    ErrorHandlingStrategy, FileNotFoundPolicy, ParseErrorPolicy, ValidationErrorPolicy, reload_config
)
from bess_converter.core.exceptions import BaseCustomException
from bess_converter.core.logging import setup_logging
from bess_converter.conversion import (
    ConversionPipeline, ConversionResult, DataType, FileEventType, FileParser, FileScanner,
    PipelineAbortedError, ProjectType, StandardBatteryData
)
from .utils import console, create_spinner, display_table, format_file_size, validate_directory_path

LOG_LEVELS = ['TRACE', 'DEBUG', 'INFO', 'SUCCESS', 'WARNING', 'ERROR', 'CRITICAL']
PROJECT_CHOICES = [p.value for p in ProjectType]


class CLIContext:
    """Context object to hold CLI state and configuration."""

    def __init__(self, debug=False, verbose=False, log_level=None, config_env=None):
        self.debug = debug
        self.verbose = verbose
        self.log_level = log_level
        self.config_env = config_env
        self.config = None
        self._load_config()

    def _load_config(self):
        """Load configuration, optionally from an extra .env file."""
        try:
            if self.config_env:
                load_dotenv(self.config_env, override=True)
            self.config = reload_config()

            if self.debug:
                self.config.logging.level = "DEBUG"
            elif self.log_level:
                self.config.logging.level = self.log_level.upper()

            setup_logging(self.config.logging)

        except Exception as e:
            console.print(f"[red]Error loading configuration: {e}[/red]")
            if self.debug:
                import traceback
                console.print(traceback.format_exc())
            sys.exit(1)

    def log(self, message, level="info"):
        """Log a message based on verbosity settings."""
        if level == "debug" and not self.debug:
            return
        if level == "verbose" and not self.verbose:
            return

        if level == "error":
            console.print(f"[red]{message}[/red]")
        elif level == "warning":
            console.print(f"[yellow]{message}[/yellow]")
        elif level == "success":
            console.print(f"[green]{message}[/green]")
        elif level == "debug":
            console.print(f"[dim]{message}[/dim]")
        else:
            console.print(message)


pass_cli_context = click.make_pass_decorator(CLIContext, ensure=True)


def handle_exceptions(f):
    """Decorator to handle common CLI exceptions."""
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except click.ClickException:
            raise
        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user[/yellow]")
            sys.exit(1)
        except BaseCustomException as e:
            console.print(f"[red]Error: {e.message}[/red]")
            if e.details:
                console.print(f"[dim]{e.details}[/dim]")
            sys.exit(1)
        except Exception as e:
            console.print(f"[red]Unexpected error: {e}[/red]")
            ctx = click.get_current_context(silent=True)
            if ctx and hasattr(ctx.obj, 'debug') and ctx.obj.debug:
                import traceback
                console.print(traceback.format_exc())
            sys.exit(1)
    return wrapper


@click.group(context_settings={
    'help_option_names': ['-h', '--help'],
    'auto_envvar_prefix': 'BESS_CLI'
})
@click.option('--debug/--no-debug', default=False, envvar='BESS_CLI_DEBUG',
              help='Enable debug logging and error traces.')
@click.option('--verbose/--no-verbose', default=False, envvar='BESS_CLI_VERBOSE',
              help='Enable verbose output.')
@click.option('--log-level', type=click.Choice(LOG_LEVELS, case_sensitive=False), default=None,
              help='Override the configured log level.')
@click.option('--config-env', type=click.Path(exists=True, dir_okay=False), envvar='BESS_CLI_CONFIG_ENV',
              help='Path to a .env file with BESS_* settings.')
@click.version_option(version=__version__, prog_name="BESS Converter CLI")
@click.pass_context
def cli(ctx, debug, verbose, log_level, config_env):
    """BESS Converter CLI - convert battery energy-storage CSV exports.

    Scans Project1 (system/BankNN) and Project2 (group/data type) export
    trees, validates CSV headers, converts whole trees into standardized
    time-series JSON with a conversion report, and watches directories for
    new exports.

    Environment Variables:
        BESS_CLI_DEBUG: Enable debug mode (true/false)
        BESS_CLI_VERBOSE: Enable verbose output (true/false)
        BESS_CLI_CONFIG_ENV: Path to a .env file
        BESS_*: Converter settings (see README)

    Examples:
        bess-convert scan project1 ./exports/project1
        bess-convert convert project2 ./exports/project2 --output ./out
        bess-convert validate "./exports/project1/2#/Bank01_20240105.csv"
        bess-convert watch ./exports/project1 ./exports/project2
    """
    ctx.obj = CLIContext(debug=debug, verbose=verbose, log_level=log_level, config_env=config_env)

    if debug:
        console.print("[dim]Debug mode enabled[/dim]")
    if config_env:
        console.print(f"[dim]Using settings from: {config_env}[/dim]")


@click.command()
@click.argument('project', type=click.Choice(PROJECT_CHOICES))
@click.argument('path', type=click.Path(file_okay=False))
@click.option('--json', 'as_json', is_flag=True, help='Print the discovered structure as JSON.')
@pass_cli_context
@handle_exceptions
def scan(ctx, project, path, as_json):
    """Scan an export tree and list the CSV files it contains.

    A missing or unreadable directory yields an empty result.
    """
    ctx.log(f"Scanning {project} export in {path}", "verbose")
    scanner = FileScanner()

    if project == ProjectType.PROJECT1.value:
        structure = scanner.scan_project_one_structure(path)
        rows = [
            {
                "system": system_id.value,
                "bank": bank_id,
                "file": record.file_path.name,
                "size": format_file_size(record.file_size),
                "modified": record.last_modified.strftime("%Y-%m-%d %H:%M")
            }
            for system_id, bank_id, record in structure.iter_files()
        ]
    else:
        structure = scanner.scan_project_two_structure(path)
        rows = [
            {
                "group": group_id.value,
                "data_type": data_type.value,
                "date": date_key,
                "file": record.file_path.name,
                "size": format_file_size(record.file_size)
            }
            for group_id, data_type, date_key, record in structure.iter_files()
        ]

    if as_json:
        click.echo(json.dumps(structure.to_dict(), ensure_ascii=False, indent=2))
        return

    display_table(rows, title=f"{project} files in {path}")
    console.print(f"[green]{structure.file_count()} file(s) found[/green]")


@click.command()
@click.argument('project', type=click.Choice(PROJECT_CHOICES))
@click.argument('path', type=click.Path(exists=True, file_okay=False))
@click.option('--output', '-o', type=click.Path(file_okay=False), default=None,
              help='Directory for dataset JSON files and the conversion report.')
@click.option('--workers', type=click.IntRange(min=1), default=None,
              help='Number of files converted in parallel.')
@click.option('--on-parse-error', type=click.Choice([p.value for p in ParseErrorPolicy]), default=None,
              help='What to do with rows that cannot be parsed.')
@click.option('--on-validation-error', type=click.Choice([p.value for p in ValidationErrorPolicy]), default=None,
              help='What to do with values outside their validation range.')
@click.option('--on-file-not-found', type=click.Choice([p.value for p in FileNotFoundPolicy]), default=None,
              help='What to do when a scanned file has disappeared.')
@click.option('--max-retries', type=click.IntRange(min=0), default=None,
              help='Retries for transient file errors.')
@pass_cli_context
@handle_exceptions
def convert(ctx, project, path, output, workers, on_parse_error, on_validation_error,
            on_file_not_found, max_retries):
    """Convert an export tree into standardized time series.

    Project1 yields one dataset per system, Project2 one dataset per group.
    Exits non-zero when the error handling strategy stopped the run.
    """
    config = ctx.config.model_copy(deep=True)
    if workers:
        config.pipeline.max_workers = workers

    overrides = {
        key: value for key, value in {
            'on_parse_error': on_parse_error,
            'on_validation_error': on_validation_error,
            'on_file_not_found': on_file_not_found,
            'max_retries': max_retries
        }.items() if value is not None
    }
    if overrides:
        config.error_handling = ErrorHandlingStrategy.model_validate(
            {**config.error_handling.model_dump(), **overrides}
        )
        ctx.log(f"Error handling overrides: {overrides}", "verbose")

    pipeline = ConversionPipeline(config)
    with create_spinner() as progress:
        progress.add_task(f"Converting {project} export in {path}...", total=None)
        if project == ProjectType.PROJECT1.value:
            result = pipeline.convert_project_one(path)
        else:
            result = pipeline.convert_project_two(path)

    _print_conversion_result(result)

    if output:
        out_dir = validate_directory_path(output, must_exist=False, create_if_missing=True)
        for data in result.datasets:
            dataset_path = out_dir / _dataset_filename(data)
            with open(dataset_path, "w", encoding="utf-8") as f:
                json.dump(data.to_dict(), f, ensure_ascii=False, indent=2)
            ctx.log(f"Wrote {dataset_path}", "verbose")
        report_path = pipeline.reporter.save_report_to_file(
            result.report, out_dir / f"conversion_report_{result.report.report_id}.json"
        )
        console.print(f"[green]Wrote {len(result.datasets)} dataset(s) and report to {out_dir}[/green]")
        ctx.log(f"Report: {report_path}", "verbose")

    if ctx.verbose:
        console.print(pipeline.reporter.generate_report_summary(result.report))

    if result.stopped:
        raise PipelineAbortedError(
            "Conversion was stopped by the error handling strategy",
            {"report_id": result.report.report_id, "failed_files": result.report.summary.total_files_failed}
        )


@click.command()
@click.argument('file', type=click.Path(exists=True, dir_okay=False))
@click.option('--project', type=click.Choice(PROJECT_CHOICES), default=None,
              help='Export convention; inferred from the path when omitted.')
@click.option('--data-type', type=click.Choice([d.value for d in DataType]), default=None,
              help='Project2 data type; inferred from the path when omitted.')
@pass_cli_context
@handle_exceptions
def validate(ctx, file, project, data_type):
    """Validate the header line of a single CSV file."""
    parser = FileParser(ctx.config)
    project_type = ProjectType(project) if project else parser.detect_project_type(file)
    if project_type is None:
        raise click.ClickException("Cannot infer the project type from the path; pass --project")

    if project_type == ProjectType.PROJECT1:
        valid = parser.project1.validate_csv_format(file)
    else:
        resolved_type = DataType(data_type) if data_type else parser.detect_data_type(file)
        if resolved_type is None:
            raise click.ClickException("Cannot infer the data type from the path; pass --data-type")
        valid = parser.project2.validate_csv_format(file, resolved_type)

    if valid:
        console.print(f"[green]✓ {file} is a valid {project_type.value} file[/green]")
    else:
        console.print(f"[red]✗ {file} is not a valid {project_type.value} file[/red]")
        sys.exit(1)


@click.command()
@click.argument('paths', nargs=-1, required=True, type=click.Path(exists=True, file_okay=False))
@click.option('--validate/--no-validate', 'validate_files', default=False,
              help='Validate the header of added or changed CSV files.')
@pass_cli_context
@handle_exceptions
def watch(ctx, paths, validate_files):
    """Watch directories and print add/change/unlink events.

    Files present when the watch starts are not reported. Press Ctrl+C to stop.
    """
    scanner = FileScanner()
    parser = FileParser(ctx.config) if validate_files else None

    def on_event(event_type: FileEventType, path: Path) -> None:
        console.print(f"[cyan]{event_type.value:<7}[/cyan] {path}")
        if parser is None or event_type == FileEventType.UNLINK or path.suffix.lower() != ".csv":
            return
        if parser.validate_csv_format(path):
            console.print("        [green]✓ valid header[/green]")
        else:
            console.print("        [red]✗ invalid header[/red]")

    scanner.watch_paths(paths, on_event)
    console.print(f"[green]Watching {len(paths)} path(s). Press Ctrl+C to stop.[/green]")
    try:
        while scanner.is_watching:
            time.sleep(0.5)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopping watch[/yellow]")
    finally:
        scanner.stop_watching()


@click.command(name='show-config')
@pass_cli_context
@handle_exceptions
def show_config(ctx):
    """Show the effective converter configuration."""
    config = ctx.config
    strategy = config.error_handling
    validation = config.validation

    config_text = "[bold]Configuration[/bold]\n"
    config_text += f"Environment: {config.environment}\n"
    config_text += f"Project1: {config.project1.cell_count} cells, '{config.project1.time_format}', {config.project1.encoding}\n"
    config_text += f"Project2: {config.project2.cell_count} cells, '{config.project2.time_format}', {config.project2.encoding}\n"
    config_text += (
        f"Ranges: voltage {validation.voltage_range}, temperature {validation.temperature_range}, "
        f"soc {validation.soc_range}, soh {validation.soh_range}\n"
    )
    config_text += (
        f"Errors: file-not-found={strategy.on_file_not_found.value}, "
        f"parse={strategy.on_parse_error.value}, validation={strategy.on_validation_error.value}, "
        f"max/file={strategy.max_errors_per_file}, retries={strategy.max_retries} x {strategy.retry_delay}s\n"
    )
    config_text += f"Workers: {config.pipeline.max_workers}\n"
    config_text += f"Log level: {config.logging.level}"

    console.print(Panel.fit(config_text, title="BESS Converter Configuration"))


_UNSAFE_FILENAME_CHARS = re.compile(r"[^\w.-]+")


def _dataset_filename(data: StandardBatteryData) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", data.project_id) + ".json"


def _print_conversion_result(result: ConversionResult) -> None:
    summary = result.report.summary
    quality = result.report.data_quality

    table = Table(title=f"Conversion {result.report.report_id}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Files scanned", str(summary.total_files_scanned))
    table.add_row("Files processed", str(summary.total_files_processed))
    table.add_row("Files skipped", str(summary.total_files_skipped))
    table.add_row("Files failed", str(summary.total_files_failed))
    table.add_row("Records valid / processed", f"{summary.total_records_valid} / {summary.total_records_processed}")
    table.add_row("Overall quality", f"{quality.overall_quality_score:.2f}")
    table.add_row("Errors / warnings", f"{len(result.report.errors)} / {len(result.report.warnings)}")
    table.add_row("Stopped", "yes" if result.stopped else "no")
    console.print(table)

    display_table(
        [
            {
                "project_id": data.project_id,
                "banks": len(data.banks),
                "points": sum(len(bank.data_points) for bank in data.banks),
                "completeness": f"{data.summary.completeness_score:.4f}",
                "accuracy": f"{data.summary.accuracy_score:.4f}",
                "consistency": f"{data.summary.consistency_score:.4f}"
            }
            for data in result.datasets
        ],
        title="Datasets"
    )


cli.add_command(scan)
cli.add_command(convert)
cli.add_command(validate)
cli.add_command(watch)
cli.add_command(show_config)


def main():
    """Console script entry point."""
    cli()


if __name__ == "__main__":
    main()
