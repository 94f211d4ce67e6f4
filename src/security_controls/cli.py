"""Command-line interface for security-controls."""

import csv
import functools
import io
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from security_controls import __version__
from security_controls.catalog.scaffold import (
    VALID_CATEGORIES,
    VALID_CLOUDS,
    VALID_DOMAINS,
    ControlScaffolder,
    ScaffoldRequest,
    parse_framework_mappings,
)
from security_controls.catalog.store import SORT_KEYS, CatalogStore, ControlFilter, filter_controls
from security_controls.compliance.exporter import (
    build_compliance_export,
    build_export_metadata,
    collect_historical_exports,
    export_base_name,
    filter_catalog_for_export,
    render_compliance_csv,
)
from security_controls.compliance.report import build_scan_report, load_violations
from security_controls.config import ProjectConfig, find_config_file, load_config, write_default_config
from security_controls.evaluation import (
    EVALUATORS,
    EvaluationOrchestrator,
    EvaluationRun,
    GroupStatus,
    create_evaluator,
    resolve_policy_groups,
)
from security_controls.exceptions import ConfigError, SecurityControlsError
from security_controls.metadata import build_scan_metadata, get_commit_hash, get_tool_version, utc_timestamp
from security_controls.models import Control, ControlStatus, ScanReport, Severity
from security_controls.policy.consistency import validate_catalog
from security_controls.policy.toggle import ToggleEngine
from security_controls.reporter import TableReporter, create_reporter, report_base_name, write_report

console = Console()
logger = logging.getLogger(__name__)

SEVERITY_CHOICES = ["critical", "high", "medium", "low"]

STATUS_STYLES = {
    ControlStatus.ENABLED: "green",
    ControlStatus.DISABLED: "yellow",
}


def _configure_logging(level: str) -> None:
    """Route log records to stderr through rich."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _get_severity_threshold(severity: Optional[str]) -> Optional[Severity]:
    """Convert severity option to Severity enum, None for no filter."""
    if not severity or severity.lower() == "all":
        return None
    return Severity.parse(severity)


def _exit_on_error(func):
    """Report expected errors on stderr and exit with status 2."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (SecurityControlsError, ValueError) as e:
            click.echo(f"ERROR: {e}", err=True)
            sys.exit(2)

    return wrapper


def _store(config: ProjectConfig) -> CatalogStore:
    return CatalogStore(config.catalog_path)


def _split_dirs(values: tuple[str, ...]) -> list[str]:
    """Accept repeated options as well as comma-separated lists."""
    return [part.strip() for value in values for part in value.split(",") if part.strip()]


@click.group()
@click.version_option(version=__version__, prog_name="security-controls")
@click.option(
    "--project-root",
    "-C",
    type=click.Path(file_okay=False),
    default=".",
    help="Project root holding the policies directory",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, project_root: str, verbose: bool) -> None:
    """security-controls - Security control registry and compliance reporting."""
    try:
        config = load_config(project_root)
    except ConfigError as e:
        click.echo(f"ERROR: {e}", err=True)
        sys.exit(2)
    _configure_logging("DEBUG" if verbose else config.log_level)
    ctx.obj = config


@main.command()
def version() -> None:
    """Show version information."""
    click.echo(f"security-controls version {__version__}")


@main.command()
@click.option("--force", is_flag=True, help="Overwrite an existing config file")
@click.pass_obj
def init(config: ProjectConfig, force: bool) -> None:
    """Write a default .security-controls.yaml to the project root."""
    existing = find_config_file(config.root)
    if existing and not force:
        console.print(f"[yellow]Config already exists: {existing}[/yellow]")
        return
    path = write_default_config(config.root)
    console.print(f"[green]Wrote {path}[/green]")


# =============================================================================
# Control Listing
# =============================================================================


def _frameworks_text(control: Control) -> str:
    return ";".join(f"{key}:{ref}" for key, refs in control.frameworks.items() for ref in refs)


def _status_value(status: Optional[ControlStatus]) -> str:
    return status.value if status else "UNKNOWN"


def _render_controls_table(controls: list[Control], statuses: dict) -> None:
    table = Table(title="Security Controls", show_header=True, header_style="bold cyan")
    table.add_column("Control ID", width=20)
    table.add_column("Title", width=40)
    table.add_column("Status", width=10)
    table.add_column("Severity", width=10)
    table.add_column("Cloud", width=7)
    table.add_column("Domain", width=12)
    table.add_column("Frameworks", width=10)

    for control in controls:
        status = statuses.get(control.control_id)
        table.add_row(
            control.control_id,
            control.title,
            Text(_status_value(status), style=STATUS_STYLES.get(status, "dim")),
            Text(control.severity.value, style=TableReporter.SEVERITY_COLORS[control.severity]),
            control.cloud_provider,
            control.domain,
            str(control.framework_count),
        )
    console.print(table)


def _controls_csv(controls: list[Control], statuses: dict) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(
        ["control_id", "title", "status", "severity", "cloud_provider", "domain", "policy_file", "frameworks"]
    )
    for control in controls:
        writer.writerow(
            [
                control.control_id,
                control.title,
                _status_value(statuses.get(control.control_id)),
                control.severity.value,
                control.cloud_provider,
                control.domain,
                control.policy_file,
                _frameworks_text(control),
            ]
        )
    return buffer.getvalue()


def _render_controls_summary(controls: list[Control], statuses: dict) -> None:
    text = Text()
    text.append(f"Total Controls: {len(controls)}\n")
    for status in (ControlStatus.ENABLED, ControlStatus.DISABLED):
        count = sum(1 for c in controls if statuses.get(c.control_id) == status)
        text.append(f"  {status.value}: ", style=STATUS_STYLES[status])
        text.append(f"{count}\n")
    unknown = sum(1 for c in controls if statuses.get(c.control_id) is None)
    if unknown:
        text.append("  UNKNOWN: ", style="dim")
        text.append(f"{unknown}\n")

    text.append("\nBy Severity:\n", style="bold")
    for severity in Severity.ordered():
        count = sum(1 for c in controls if c.severity == severity)
        text.append(f"  {severity.value}: ", style=TableReporter.SEVERITY_COLORS[severity])
        text.append(f"{count}\n")

    text.append("\nBy Cloud Provider:\n", style="bold")
    for cloud in sorted({c.cloud_provider for c in controls}):
        text.append(f"  {cloud}: {sum(1 for c in controls if c.cloud_provider == cloud)}\n")

    console.print(Panel(text, title="Control Summary", border_style="blue"))


@main.command("list-controls")
@click.option("--status", type=click.Choice(["enabled", "disabled"]), help="Filter by status")
@click.option("--cloud", type=click.Choice(list(VALID_CLOUDS)), help="Filter by cloud provider")
@click.option("--domain", help="Filter by security domain")
@click.option("--severity", type=click.Choice(SEVERITY_CHOICES), help="Filter by exact severity")
@click.option("--framework", help="Filter by framework (nist, cis, iso) or reference")
@click.option("--search", help="Search in control id, title and description")
@click.option("--sort", "sort_by", type=click.Choice(list(SORT_KEYS)), default="id", help="Sort order")
@click.option(
    "--format",
    "-f",
    type=click.Choice(["table", "json", "csv"]),
    default="table",
    help="Output format",
)
@click.option("--summary", is_flag=True, help="Show summary statistics")
@click.pass_obj
@_exit_on_error
def list_controls(
    config: ProjectConfig,
    status: Optional[str],
    cloud: Optional[str],
    domain: Optional[str],
    severity: Optional[str],
    framework: Optional[str],
    search: Optional[str],
    sort_by: str,
    format: str,
    summary: bool,
) -> None:
    """List catalog controls with their current status."""
    store = _store(config)
    catalog = store.load()
    engine = ToggleEngine(store, config.root)
    resolve = engine.status_resolver()
    statuses = {c.control_id: resolve(c) for c in catalog}

    control_filter = ControlFilter(
        cloud=cloud,
        domain=domain,
        severity=Severity.parse(severity) if severity else None,
        framework=framework,
        status=ControlStatus(status.upper()) if status else None,
        text=search,
    )
    controls = filter_controls(catalog, control_filter, lambda c: statuses.get(c.control_id), sort_by)

    if format == "json":
        data = [
            {"control_id": c.control_id, "status": _status_value(statuses.get(c.control_id)), **c.to_dict()}
            for c in controls
        ]
        click.echo(json.dumps(data, indent=2))
    elif format == "csv":
        click.echo(_controls_csv(controls, statuses), nl=False)
    else:
        if controls:
            _render_controls_table(controls, statuses)
        else:
            console.print("[yellow]No controls match the given filters[/yellow]")

    if summary and format == "table":
        _render_controls_summary(controls, statuses)


# =============================================================================
# Control Management
# =============================================================================


@main.group()
def control() -> None:
    """Enable, disable, inspect and create controls."""
    pass


def _toggle(config: ProjectConfig, control_ids: tuple[str, ...], action: str, dry_run: bool) -> None:
    engine = ToggleEngine(_store(config), config.root)
    for control_id in control_ids:
        result = getattr(engine, action)(control_id, dry_run=dry_run)
        if not result.changed:
            console.print(f"[yellow]{result.message}[/yellow]")
        elif dry_run:
            console.print(f"[blue]{result.message}[/blue]")
        else:
            console.print(f"[green]{result.message}[/green]")


@control.command("enable")
@click.argument("control_ids", nargs=-1, required=True)
@click.option("--dry-run", is_flag=True, help="Show what would change without writing")
@click.pass_obj
@_exit_on_error
def control_enable(config: ProjectConfig, control_ids: tuple[str, ...], dry_run: bool) -> None:
    """Enable one or more controls by uncommenting their rule logic."""
    _toggle(config, control_ids, "enable", dry_run)


@control.command("disable")
@click.argument("control_ids", nargs=-1, required=True)
@click.option("--dry-run", is_flag=True, help="Show what would change without writing")
@click.pass_obj
@_exit_on_error
def control_disable(config: ProjectConfig, control_ids: tuple[str, ...], dry_run: bool) -> None:
    """Disable one or more controls by commenting out their rule logic."""
    _toggle(config, control_ids, "disable", dry_run)


@control.command("status")
@click.argument("control_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_obj
@_exit_on_error
def control_status(config: ProjectConfig, control_id: str, as_json: bool) -> None:
    """Show a control's metadata and current status."""
    store = _store(config)
    control_obj = store.get(control_id)
    status = ToggleEngine(store, config.root).status(control_id)

    if as_json:
        click.echo(json.dumps({"control_id": control_id, "status": status.value, **control_obj.to_dict()}, indent=2))
        return

    text = Text()
    text.append("Status: ", style="bold")
    text.append(f"{status.value}\n", style=STATUS_STYLES[status])
    text.append(f"Title: {control_obj.title}\n")
    text.append("Severity: ")
    text.append(f"{control_obj.severity.value}\n", style=TableReporter.SEVERITY_COLORS[control_obj.severity])
    text.append(f"Cloud Provider: {control_obj.cloud_provider}\n")
    text.append(f"Domain: {control_obj.domain}\n")
    text.append(f"Policy File: {control_obj.policy_file}\n")
    if control_obj.frameworks:
        text.append(f"Frameworks: {_frameworks_text(control_obj)}\n")
    console.print(Panel(text, title=f"Control {control_id}", border_style="blue"))


@control.command("new")
@click.option("--cloud", type=click.Choice(list(VALID_CLOUDS)), required=True, help="Cloud provider")
@click.option("--domain", type=click.Choice(list(VALID_DOMAINS)), required=True, help="Security domain")
@click.option("--title", required=True, help="Control title")
@click.option("--severity", type=click.Choice(SEVERITY_CHOICES, case_sensitive=False), required=True)
@click.option("--frameworks", default="", help="Mappings, e.g. nist:AC-2,cis-aws:1.1,iso:A.9.2.1")
@click.option("--description", required=True, help="Control description")
@click.option("--remediation", required=True, help="Remediation guidance")
@click.option("--number", help="Three-digit control number (default: next free)")
@click.option("--optional", "is_optional", is_flag=True, help="Create as an optional control")
@click.option("--category", type=click.Choice(list(VALID_CATEGORIES)), help="Optional control category")
@click.option("--prerequisites", help="Optional control prerequisites")
@click.option("--impact", help="Optional control impact")
@click.option("--dry-run", is_flag=True, help="Show the generated block without writing")
@click.pass_obj
@_exit_on_error
def control_new(
    config: ProjectConfig,
    cloud: str,
    domain: str,
    title: str,
    severity: str,
    frameworks: str,
    description: str,
    remediation: str,
    number: Optional[str],
    is_optional: bool,
    category: Optional[str],
    prerequisites: Optional[str],
    impact: Optional[str],
    dry_run: bool,
) -> None:
    """Scaffold a new control in the catalog and policy tree."""
    scaffolder = ControlScaffolder(
        _store(config), config.root, config.policies_path, config.optional_dir_name
    )
    request = ScaffoldRequest(
        cloud=cloud,
        domain=domain,
        title=title,
        severity=severity.upper(),
        description=description,
        remediation=remediation,
        frameworks=parse_framework_mappings(frameworks),
        optional=is_optional,
        number=number,
        category=category,
        prerequisites=prerequisites,
        impact=impact,
    )
    result = scaffolder.create(request, dry_run=dry_run)

    if dry_run:
        console.print(f"[blue]Would create {result.control.control_id} in {result.policy_path}[/blue]")
        click.echo(result.content)
        return

    verb = "Created" if result.created_file else "Appended to"
    console.print(f"[green]Control {result.control.control_id} created[/green]")
    console.print(f"  {verb} policy file: {result.policy_path}")
    console.print(f"  Package: {result.package_name}")
    console.print("  Next: replace the placeholder resource type and requirement check")


@control.command("validate")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_obj
@_exit_on_error
def control_validate(config: ProjectConfig, as_json: bool) -> None:
    """Check the catalog and policy files agree.

    Exits with status 1 when errors are found.
    """
    catalog = _store(config).load()
    report = validate_catalog(
        catalog, config.root, config.policies_path, config.policy_extensions
    )

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        if report.issues:
            table = Table(title="Consistency Issues", show_header=True, header_style="bold cyan")
            table.add_column("Level", width=8)
            table.add_column("Check", width=22)
            table.add_column("Message")
            for issue in report.issues:
                style = "red" if issue.level == "error" else "yellow"
                table.add_row(Text(issue.level.upper(), style=style), issue.code, issue.message)
            console.print(table)
        console.print(
            f"Checked {report.checked_controls} control(s) and {report.checked_files} file(s): "
            f"{len(report.errors)} error(s), {len(report.warnings)} warning(s)"
        )
        if report.ok:
            console.print("[green]Catalog and policy files are consistent[/green]")

    if not report.ok:
        sys.exit(1)


# =============================================================================
# Evaluation
# =============================================================================


def _evaluation_options(func):
    """Options shared by evaluate and scan."""
    options = [
        click.option(
            "--severity",
            "-s",
            type=click.Choice(SEVERITY_CHOICES),
            help="Minimum severity to report",
        ),
        click.option(
            "--policy-dirs",
            "-p",
            multiple=True,
            help="Policy directories to evaluate (repeatable or comma-separated)",
        ),
        click.option("--include-optional", is_flag=True, help="Also evaluate optional controls"),
        click.option(
            "--evaluator",
            type=click.Choice(list(EVALUATORS)),
            help="Evaluation engine (default from config)",
        ),
        click.option("--workers", type=click.IntRange(min=1), help="Concurrent policy groups"),
        click.option("--timeout", type=click.FloatRange(min=0, min_open=True), help="Per-group timeout in seconds"),
        click.option("--deadline", type=click.FloatRange(min=0, min_open=True), help="Overall timeout in seconds"),
        click.option("--fail-on-warn", "-w", is_flag=True, help="Treat policy warnings as violations"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _run_evaluation(
    config: ProjectConfig,
    document: str,
    severity: Optional[str],
    policy_dirs: tuple[str, ...],
    include_optional: bool,
    evaluator_name: Optional[str],
    workers: Optional[int],
    timeout: Optional[float],
    deadline: Optional[float],
    fail_on_warn: bool,
) -> tuple[EvaluationRun, str]:
    groups = resolve_policy_groups(
        config.policies_path,
        _split_dirs(policy_dirs),
        config.policy_extensions,
        config.optional_dir_name,
        include_optional,
    )
    evaluator = create_evaluator(
        evaluator_name or config.evaluator, config.engine_binary, fail_on_warn=fail_on_warn
    )
    orchestrator = EvaluationOrchestrator(
        evaluator,
        max_workers=workers or config.max_workers,
        group_timeout=timeout or config.group_timeout,
        deadline=deadline,
    )
    run = orchestrator.run(Path(document), groups, _get_severity_threshold(severity))
    return run, evaluator.version()


def _render_groups(run: EvaluationRun) -> None:
    table = Table(title="Policy Groups", show_header=True, header_style="bold cyan")
    table.add_column("Group", width=30)
    table.add_column("Status", width=12)
    table.add_column("Violations", width=10)
    table.add_column("Error")
    styles = {GroupStatus.CLEAN: "green", GroupStatus.VIOLATIONS: "yellow", GroupStatus.FAILED: "red"}
    for outcome in run.outcomes:
        table.add_row(
            outcome.group.name,
            Text(outcome.status.value, style=styles[outcome.status]),
            str(len(outcome.violations)),
            outcome.error or "",
        )
    console.print(table)


def _print_run_result(run: EvaluationRun) -> None:
    if run.has_failures:
        console.print(f"\n[red]{len(run.failed)} policy group(s) failed to evaluate[/red]")
    if run.violations:
        console.print(f"\n[red]Found {len(run.violations)} violation(s)[/red]")
    elif not run.has_failures:
        console.print("\n[green]No policy violations found[/green]")


@main.command()
@click.argument("document", type=click.Path(exists=True, dir_okay=False))
@_evaluation_options
@click.option("--output", "-o", type=click.Path(), help="Write violations JSON to file")
@click.option(
    "--format",
    "-f",
    type=click.Choice(["json", "table"]),
    default="json",
    help="Output format",
)
@click.pass_obj
@_exit_on_error
def evaluate(
    config: ProjectConfig,
    document: str,
    severity: Optional[str],
    policy_dirs: tuple[str, ...],
    include_optional: bool,
    evaluator: Optional[str],
    workers: Optional[int],
    timeout: Optional[float],
    deadline: Optional[float],
    fail_on_warn: bool,
    output: Optional[str],
    format: str,
) -> None:
    """Evaluate a Terraform plan JSON document against the policy groups.

    Exit codes:
      - Exit 0: No violations at or above the severity threshold
      - Exit 1: Violations found
      - Exit 2: Evaluation error (including any failed policy group)
    """
    run, engine_version = _run_evaluation(
        config,
        document,
        severity,
        policy_dirs,
        include_optional,
        evaluator,
        workers,
        timeout,
        deadline,
        fail_on_warn,
    )
    data = {
        "scan_metadata": build_scan_metadata(
            environment=config.environment,
            input_file=document,
            severity_filter=severity,
            engine_version=engine_version,
            cwd=config.root,
        ),
        **run.to_dict(),
    }

    if output:
        write_report(output, json.dumps(data, indent=2) + "\n")
        console.print(f"[green]Violations written to {output}[/green]", highlight=False)

    if format == "json":
        if not output:
            click.echo(json.dumps(data, indent=2))
    else:
        _render_groups(run)
        _print_run_result(run)

    sys.exit(run.exit_code)


# =============================================================================
# Reporting
# =============================================================================


def _write_reports(
    report: ScanReport,
    format: str,
    output_dir: Path,
    environment: str,
    severity: Optional[str],
    include_metadata: bool,
) -> list[Path]:
    base = report_base_name(environment, severity)
    formats = ["json", "markdown"] if format == "both" else [format]
    written = []
    for fmt in formats:
        suffix = "md" if fmt == "markdown" else fmt
        content = create_reporter(fmt, include_metadata=include_metadata).generate(report)
        written.append(write_report(output_dir / f"{base}.{suffix}", content))
    return written


@main.group()
def report() -> None:
    """Generate scan reports."""
    pass


@report.command("generate")
@click.option(
    "--input",
    "-i",
    "input_file",
    type=click.Path(exists=True, dir_okay=False),
    required=True,
    help="Violations JSON file (list, or object with a 'violations' list)",
)
@click.option(
    "--format",
    "-f",
    type=click.Choice(["json", "markdown", "sarif", "both"]),
    default="both",
    help="Report format",
)
@click.option("--severity", "-s", type=click.Choice(SEVERITY_CHOICES), help="Minimum severity to include")
@click.option("--environment", "-e", help="Environment label (default from config)")
@click.option("--output-dir", "-o", type=click.Path(file_okay=False), help="Output directory")
@click.option("--no-metadata", is_flag=True, help="Omit scan metadata")
@click.pass_obj
@_exit_on_error
def report_generate(
    config: ProjectConfig,
    input_file: str,
    format: str,
    severity: Optional[str],
    environment: Optional[str],
    output_dir: Optional[str],
    no_metadata: bool,
) -> None:
    """Enrich violations with catalog metadata and write reports."""
    catalog = _store(config).load()
    violations = load_violations(input_file)
    environment = environment or config.environment

    metadata = build_scan_metadata(
        environment=environment,
        input_file=input_file,
        severity_filter=severity,
        engine_version=get_tool_version(config.engine_binary or config.evaluator),
        terraform_version=get_tool_version("terraform", ("version",)),
        cwd=config.root,
    )
    scan_report = build_scan_report(catalog, violations, metadata, _get_severity_threshold(severity))

    target = Path(output_dir) if output_dir else config.reports_path
    for path in _write_reports(scan_report, format, target, environment, severity, not no_metadata):
        console.print(f"[green]Report written to {path}[/green]", highlight=False)

    total = scan_report.summary.total_violations
    if total:
        console.print(f"[yellow]{total} violation(s) in report[/yellow]")
    else:
        console.print("[green]No policy violations found[/green]")


@main.command()
@click.argument("document", type=click.Path(exists=True, dir_okay=False))
@_evaluation_options
@click.option(
    "--format",
    "-f",
    type=click.Choice(["table", "json", "markdown", "sarif", "both"]),
    default="table",
    help="Report format; everything except table is written to the output directory",
)
@click.option("--environment", "-e", help="Environment label (default from config)")
@click.option("--output-dir", "-o", type=click.Path(file_okay=False), help="Output directory")
@click.option("--no-metadata", is_flag=True, help="Omit scan metadata")
@click.pass_obj
@_exit_on_error
def scan(
    config: ProjectConfig,
    document: str,
    severity: Optional[str],
    policy_dirs: tuple[str, ...],
    include_optional: bool,
    evaluator: Optional[str],
    workers: Optional[int],
    timeout: Optional[float],
    deadline: Optional[float],
    fail_on_warn: bool,
    format: str,
    environment: Optional[str],
    output_dir: Optional[str],
    no_metadata: bool,
) -> None:
    """Evaluate a plan document and report the enriched violations.

    Exit codes match the evaluate command.
    """
    catalog = _store(config).load()
    run, engine_version = _run_evaluation(
        config,
        document,
        severity,
        policy_dirs,
        include_optional,
        evaluator,
        workers,
        timeout,
        deadline,
        fail_on_warn,
    )
    environment = environment or config.environment
    metadata = build_scan_metadata(
        environment=environment,
        input_file=document,
        severity_filter=severity,
        engine_version=engine_version,
        cwd=config.root,
    )
    metadata["policy_directories"] = [o.group.name for o in run.outcomes]
    scan_report = build_scan_report(catalog, run.violations, metadata)

    if format == "table":
        click.echo(TableReporter().generate(scan_report))
    else:
        target = Path(output_dir) if output_dir else config.reports_path
        for path in _write_reports(scan_report, format, target, environment, severity, not no_metadata):
            console.print(f"[green]Report written to {path}[/green]", highlight=False)

    if run.has_failures:
        _render_groups(run)
    _print_run_result(run)
    sys.exit(run.exit_code)


# =============================================================================
# Compliance Export
# =============================================================================


@main.group()
def compliance() -> None:
    """Compliance framework exports."""
    pass


@compliance.command("export")
@click.option(
    "--framework",
    type=click.Choice(["nist", "cis", "iso", "all"]),
    default="all",
    help="Framework filter",
)
@click.option(
    "--cloud",
    type=click.Choice(["aws", "azure", "all"]),
    default="all",
    help="Cloud provider filter",
)
@click.option(
    "--format",
    "-f",
    type=click.Choice(["csv", "json", "both"]),
    default="both",
    help="Export format",
)
@click.option("--output-dir", "-o", type=click.Path(file_okay=False), help="Output directory")
@click.option(
    "--severity",
    "-s",
    type=click.Choice(SEVERITY_CHOICES),
    help="Minimum control severity to export",
)
@click.option("--no-historical", is_flag=True, help="Do not include earlier export metadata")
@click.pass_obj
@_exit_on_error
def compliance_export(
    config: ProjectConfig,
    framework: str,
    cloud: str,
    format: str,
    output_dir: Optional[str],
    severity: Optional[str],
    no_historical: bool,
) -> None:
    """Export the compliance matrix for the catalog."""
    catalog = filter_catalog_for_export(
        _store(config).load(), framework, cloud, _get_severity_threshold(severity)
    )
    target = Path(output_dir) if output_dir else config.reports_path
    base = export_base_name(framework, cloud, severity=severity)
    formats = ["csv", "json"] if format == "both" else [format]

    if "json" in formats:
        include_historical = not no_historical
        historical = collect_historical_exports(config.reports_path) if include_historical else []
        export_metadata = build_export_metadata(
            timestamp=utc_timestamp(),
            commit_hash=get_commit_hash(config.root),
            output_format=format,
            framework=framework,
            cloud=cloud,
            include_historical=include_historical,
            source_file=str(config.catalog_file),
            severity=severity,
        )
        document = build_compliance_export(catalog, export_metadata, historical)
        path = write_report(target / f"{base}.json", json.dumps(document, indent=2) + "\n")
        console.print(f"[green]JSON export written to {path}[/green]", highlight=False)

    if "csv" in formats:
        path = write_report(target / f"{base}.csv", render_compliance_csv(catalog))
        console.print(f"[green]CSV export written to {path}[/green]", highlight=False)

    console.print(f"Exported {len(catalog)} control(s)")


if __name__ == "__main__":
    main()
