import asyncio
import json
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from raiz.__version__ import __version__
from raiz.errors import RaizError, SuppressionError

app = typer.Typer(
    name="raiz",
    help="Dependency vulnerability and risk analysis for Maven and Gradle projects.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()

RISK_STYLES = [(70, "bold red"), (40, "yellow"), (0, "green")]


def version_callback(value: bool) -> None:
    if value:
        console.print(f"raiz v{__version__}")
        raise typer.Exit()


def load_suppressions(path: Optional[Path]):
    from raiz.core.suppression import SuppressionLog

    if path is None or not path.exists():
        return SuppressionLog()
    with open(path, "r", encoding="utf-8") as f:
        try:
            records = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise SuppressionError(f"{path} is not a valid suppression log: {e}") from e
    if not isinstance(records, list):
        raise SuppressionError(f"{path} must hold a JSON list of suppression events")
    return SuppressionLog.from_records(records)


def save_suppressions(path: Path, log) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(log.to_records(), f, indent=2)


def _risk_style(score: float) -> str:
    return next(style for floor, style in RISK_STYLES if score >= floor)


def print_report(report, suppressions, show_all: bool) -> None:
    findings = report.audit_view(suppressions) if show_all else report.active_findings(suppressions)

    table = Table(title=f"Findings ({report.resolution.resolver_used})", show_lines=False)
    table.add_column("Risk", justify="right")
    table.add_column("Dependency")
    table.add_column("Scope")
    table.add_column("Depth", justify="right")
    table.add_column("Advisory")
    table.add_column("Severity")
    table.add_column("Confidence")
    table.add_column("FP")
    table.add_column("Finding id", style="dim")

    for f in findings:
        advisory = f.vulnerability.id + (" [dim](suppressed)[/]" if f.suppressed else "")
        table.add_row(
            f"[{_risk_style(f.risk_score)}]{f.risk_score:.2f}[/]",
            str(f.coordinate),
            f.dependency_node.scope.value,
            str(f.dependency_node.depth),
            advisory,
            f.vulnerability.severity.value,
            f"{f.confidence_score} {f.confidence_level.value}",
            f.false_positive_likelihood.value,
            f.finding_id,
        )

    console.print(table)
    console.print(f"{len(report.resolution.nodes)} dependencies, {len(findings)} findings shown.")
    for diagnostic in report.diagnostics:
        console.print(f"[yellow]![/] {diagnostic}")


@app.callback()
def callback(
    version: Annotated[
        Optional[bool],
        typer.Option("--version", "-V", help="Show version and exit.", callback=version_callback),
    ] = None,
) -> None:
    """Raiz: resolve a JVM project's dependency tree and rank its known vulnerabilities."""


@app.command()
def scan(
    path: Annotated[Path, typer.Argument(help="Project directory or build file.")] = Path("."),
    mode: Annotated[
        Optional[str],
        typer.Option("--mode", "-m", help="Resolution mode: safe (parse only) or full (run Gradle in a sandbox)."),
    ] = None,
    config: Annotated[Optional[Path], typer.Option("--config", "-c", help="Path to raiz.toml.")] = None,
    suppressions: Annotated[
        Path, typer.Option("--suppressions", "-s", help="Suppression log (JSON).")
    ] = Path(".raiz-suppressions.json"),
    plain: Annotated[bool, typer.Option("--plain", help="Print a table instead of the interactive tree.")] = False,
    show_all: Annotated[bool, typer.Option("--all", help="Include suppressed findings (audit view).")] = False,
    deadline: Annotated[
        Optional[float], typer.Option("--deadline", help="Abort the analysis after this many seconds.")
    ] = None,
) -> None:
    """Analyze a project."""
    from raiz.config import Settings
    from raiz.core.analyzer import Analyzer, parse_mode
    from raiz.logs import configure_logging

    try:
        settings = Settings.load(config)
        configure_logging(settings.log_file, settings.log_level)
        resolution_mode = parse_mode(mode or settings.mode)
        log = load_suppressions(suppressions)

        if not plain:
            from raiz.app import RaizApp

            RaizApp(path, settings, resolution_mode, log).run()
            return

        analyzer = Analyzer.from_settings(settings)
        with console.status("Analyzing..."):
            report = asyncio.run(analyzer.analyze(path, resolution_mode, deadline=deadline))
    except RaizError as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise typer.Exit(code=2)
    except asyncio.TimeoutError:
        console.print(f"[bold red]Error:[/] analysis exceeded the {deadline}s deadline")
        raise typer.Exit(code=3)

    print_report(report, log, show_all)


@app.command()
def suppress(
    finding_id: Annotated[str, typer.Argument(help="Finding id, as shown by 'scan'.")],
    reason: Annotated[str, typer.Option("--reason", "-r", help="Short reason, e.g. 'not reachable'.")],
    justification: Annotated[str, typer.Option("--justification", "-j", help="Why this finding is safe to hide.")],
    actor: Annotated[str, typer.Option("--actor", help="Who is suppressing.")] = "",
    suppressions: Annotated[
        Path, typer.Option("--suppressions", "-s", help="Suppression log (JSON).")
    ] = Path(".raiz-suppressions.json"),
) -> None:
    """Hide a finding from the active view."""
    try:
        log = load_suppressions(suppressions)
        log.suppress(finding_id, reason, justification, actor)
    except RaizError as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise typer.Exit(code=2)
    save_suppressions(suppressions, log)
    console.print(f"[green]Suppressed[/] {finding_id}")


@app.command()
def unsuppress(
    finding_id: Annotated[str, typer.Argument(help="Finding id.")],
    reason: Annotated[str, typer.Option("--reason", "-r")] = "",
    actor: Annotated[str, typer.Option("--actor")] = "",
    suppressions: Annotated[
        Path, typer.Option("--suppressions", "-s", help="Suppression log (JSON).")
    ] = Path(".raiz-suppressions.json"),
) -> None:
    """Bring a suppressed finding back into the active view."""
    try:
        log = load_suppressions(suppressions)
        log.unsuppress(finding_id, reason, actor)
    except RaizError as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise typer.Exit(code=2)
    save_suppressions(suppressions, log)
    console.print(f"[yellow]Unsuppressed[/] {finding_id}")


@app.command()
def history(
    finding_id: Annotated[str, typer.Argument(help="Finding id.")],
    suppressions: Annotated[
        Path, typer.Option("--suppressions", "-s", help="Suppression log (JSON).")
    ] = Path(".raiz-suppressions.json"),
) -> None:
    """Show the suppression history of a finding."""
    try:
        log = load_suppressions(suppressions)
    except RaizError as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise typer.Exit(code=2)
    events = log.history(finding_id)
    if not events:
        console.print(f"No suppression events for {finding_id} (state: ACTIVE)")
        return
    for e in events:
        console.print(f"{e.at.isoformat()}  {e.state.value:<12} {e.actor or '-':<12} {e.reason} {e.justification}")


def main():
    """ Entrypoint when is installed via pip """
    app()


# Development mode
if __name__ == "__main__":
    main()
