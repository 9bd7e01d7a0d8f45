import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from dexscript.__version__ import __version__
from dexscript.command_tools import CommandToolSurface, load_tools_from_directory
from dexscript.config import EngineConfig, ScriptExecutionConfig, load_config
from dexscript.errors import ScriptParseError
from dexscript.logger import remove_file_logging, set_verbosity, setup_file_logging
from dexscript.models import TestScript
from dexscript.results import ExecutionStatus, ScriptExecutionResult
from dexscript.runner import ScriptRunner
from dexscript.script_parser import ScriptParser

STATUS_STYLES = {
    ExecutionStatus.SUCCESS: "green",
    ExecutionStatus.FAILED: "red",
    ExecutionStatus.TIMED_OUT: "yellow",
    ExecutionStatus.CANCELLED: "magenta",
    ExecutionStatus.RUNNING: "blue",
}


def version_callback(value: bool):
    if value:
        console.print(f"dexscript version {__version__}")
        raise typer.Exit()


app = typer.Typer(
    help="dexscript - run Markdown test scripts against a DEX",
    context_settings={"help_option_names": ["-h", "--help"]}
)
console = Console()


@app.callback()
def main_callback(
    version: Optional[bool] = typer.Option(None, "--version", callback=version_callback, is_eager=True,
                                           help="Show the version and exit.")
):
    """dexscript - run Markdown test scripts against a DEX"""
    pass


def _load_engine_config(config_file: Optional[Path]) -> EngineConfig:
    try:
        return load_config(config_file)
    except (OSError, yaml.YAMLError) as e:
        console.print(f"[red]Failed to read config file {config_file}: {escape(str(e))}[/red]")
        raise typer.Exit(code=2)
    except ValidationError as ve:
        console.print(f"[red]Invalid config file {config_file}:[/red]")
        for err in ve.errors():
            loc = '.'.join(map(str, err.get('loc', [])))
            console.print(f"  - [cyan]{loc}[/cyan]: {err.get('msg', '')}")
        raise typer.Exit(code=2)


def _parse_or_exit(parser: ScriptParser, script_file: Path) -> TestScript:
    try:
        return parser.parse_file(script_file)
    except ScriptParseError as e:
        console.print(f"[red]❌ {escape(str(e))}[/red]")
        raise typer.Exit(code=2)


def _action_summary(action_data: Dict[str, Any]) -> str:
    return ", ".join(f"{k}={v}" for k, v in action_data.items() if k != "kind" and v not in (None, [], {}))


def print_result(result: ScriptExecutionResult):
    """Prints the per-step table and the summary panel of a run."""
    table = Table(title=f"Script: {escape(result.script_name)}", show_header=True, header_style="bold magenta")
    table.add_column("#", style="cyan", no_wrap=True)
    table.add_column("Step", style="white")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Error", style="red")
    for step in result.step_results:
        style = STATUS_STYLES.get(step.status, "white")
        table.add_row(
            str(step.step_number),
            escape(step.description),
            f"[{style}]{step.status.value}[/{style}]",
            f"{step.duration_ms} ms",
            escape(step.error or ""),
        )
    console.print(table)

    summary = result.summary
    style = STATUS_STYLES.get(result.status, "white")
    lines = [
        f"[bold]Status[/bold]: [{style}]{result.status.value}[/{style}]",
        f"[bold]Steps[/bold]: {summary.successful_steps} passed, {summary.failed_steps} failed, "
        f"{summary.skipped_steps} timed out or cancelled (of {summary.total_steps} run)",
        f"[bold]Pass rate[/bold]: {summary.pass_rate:.1f}%",
        f"[bold]Duration[/bold]: {result.duration_ms} ms",
    ]
    if result.error:
        lines.append(f"[bold]Error[/bold]: [red]{escape(result.error)}[/red]")
    console.print(Panel.fit("\n".join(lines), title="Summary", border_style=style))


@app.command()
def run(
    script_file: Path = typer.Argument(..., help="Markdown test script to run"),
    tools_dir: Path = typer.Option(Path("tools"), "--tools", help="Directory with *.tool.yml definitions"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML configuration file"),
    continue_on_failure: bool = typer.Option(False, "--continue-on-failure", help="Keep going after a failed step"),
    no_validate: bool = typer.Option(False, "--no-validate", help="Do not check expected outcomes"),
    script_timeout: Optional[int] = typer.Option(None, "--script-timeout", help="Seconds for the whole script"),
    step_timeout: Optional[int] = typer.Option(None, "--step-timeout", help="Default seconds per step"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the JSON report to this file"),
    strict: bool = typer.Option(False, "--strict", help="Run pre-execution checks before running"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Also write debug logs to this file"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose output"),
    debug: bool = typer.Option(False, "--debug", help="Debug output"),
):
    """Parse a test script and run it with the configured command tools."""
    set_verbosity(verbose=verbose, debug=debug)
    engine_config = _load_engine_config(config_file)

    overrides: Dict[str, Any] = {}
    if continue_on_failure:
        overrides["continue_on_failure"] = True
    if no_validate:
        overrides["validate_outcomes"] = False
    if script_timeout is not None:
        overrides["max_script_timeout"] = script_timeout
    if step_timeout is not None:
        overrides["default_step_timeout"] = step_timeout
    try:
        exec_config = ScriptExecutionConfig(**{**engine_config.execution.model_dump(), **overrides})
    except ValidationError as ve:
        console.print(f"[red]Invalid execution options: {ve.errors()[0].get('msg', ve)}[/red]")
        raise typer.Exit(code=2)

    parser = ScriptParser(engine_config.parser)
    script = _parse_or_exit(parser, script_file)
    if strict:
        try:
            parser.validate_script_for_execution(script)
        except ScriptParseError as e:
            console.print(f"[red]❌ {escape(str(e))}[/red]")
            raise typer.Exit(code=2)

    try:
        tools = load_tools_from_directory(str(tools_dir))
    except (OSError, yaml.YAMLError, ValidationError) as e:
        console.print(f"[red]Failed to load tools: {escape(str(e))}[/red]")
        raise typer.Exit(code=2)
    if not tools:
        console.print(f"[yellow]No tools found in {tools_dir}; every step will fail.[/yellow]")
    context: Dict[str, Any] = {"network": script.setup.network, "wallet_type": script.setup.wallet.wallet_type}
    if script.setup.wallet.identifier:
        context["wallet"] = script.setup.wallet.identifier
    context.update(script.setup.parameters)
    surface = CommandToolSurface(tools, work_dir=script_file.parent.resolve(), context=context)

    file_handler = setup_file_logging(log_file) if log_file else None
    try:
        result = asyncio.run(ScriptRunner(surface, exec_config).execute_script(script))
    finally:
        remove_file_logging(file_handler)

    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(result.model_dump_json(indent=2), encoding="utf-8")
    print_result(result)
    if output:
        console.print(f"Report written to [cyan]{output}[/cyan]")

    all_passed = all(step.status is ExecutionStatus.SUCCESS for step in result.step_results)
    sys.exit(0 if result.succeeded and all_passed else 1)


@app.command()
def parse(
    script_file: Path = typer.Argument(..., help="Markdown test script"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML configuration file"),
    as_json: bool = typer.Option(False, "--json", help="Print the parsed script as JSON"),
):
    """Show how a script is understood: setup, steps and their actions."""
    engine_config = _load_engine_config(config_file)
    script = _parse_or_exit(ScriptParser(engine_config.parser), script_file)

    if as_json:
        typer.echo(script.model_dump_json(indent=2))
        return

    console.print(Panel(
        f"[bold blue]{script.name}[/bold blue]\n{script.description or 'No description'}\n\n"
        f"[bold]Network[/bold]: {script.setup.network}\n"
        f"[bold]Wallet[/bold]: {script.setup.wallet.wallet_type}"
        + (f" ({script.setup.wallet.identifier})" if script.setup.wallet.identifier else ""),
        title="Script",
        border_style="blue"
    ))

    table = Table(title="Steps", show_header=True, header_style="bold magenta")
    table.add_column("#", style="cyan", no_wrap=True)
    table.add_column("Description", style="white")
    table.add_column("Action", style="green")
    table.add_column("Arguments", style="yellow")
    table.add_column("Expected", style="blue")
    table.add_column("Timeout", justify="right")
    for step in script.steps:
        table.add_row(
            str(step.step_number),
            step.description,
            step.action.kind,
            _action_summary(step.action.model_dump()),
            step.expected_outcome or "",
            str(step.timeout) if step.timeout is not None else "",
        )
    console.print(table)

    if script.expected_results:
        console.print("\n[bold]Expected results:[/bold]")
        for item in script.expected_results:
            console.print(f"  - {item}")


@app.command()
def validate(
    script_file: Path = typer.Argument(..., help="Markdown test script"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML configuration file"),
):
    """Check a script's structure and run the pre-execution checks."""
    engine_config = _load_engine_config(config_file)
    parser = ScriptParser(engine_config.parser)

    console.print(f"[bold blue]🔍 Validating[/bold blue]: {script_file}")
    console.print("  📝 [bold]Step 1: structure[/bold]")
    script = _parse_or_exit(parser, script_file)
    console.print(f"     ✅ {len(script.steps)} steps parsed")

    console.print("  📋 [bold]Step 2: pre-execution checks[/bold]")
    try:
        parser.validate_script_for_execution(script)
    except ScriptParseError as e:
        console.print(f"[red]❌ {escape(str(e))}[/red]")
        raise typer.Exit(code=2)
    console.print("     ✅ Checks passed")

    custom_steps = [s for s in script.steps if s.action.kind == "custom"]
    if custom_steps:
        console.print(f"[yellow]⚠️  {len(custom_steps)} step(s) were not recognised and run as custom tools: "
                      f"{', '.join(str(s.step_number) for s in custom_steps)}[/yellow]")

    console.print(f"\n[bold green]✅ Validation passed[/bold green]: {script.name}")


@app.command()
def list_tools(
    tools_dir: Path = typer.Option(Path("tools"), "--tools", help="Directory with *.tool.yml definitions"),
):
    """List the command tools available to scripts."""
    try:
        tools = load_tools_from_directory(str(tools_dir))
    except (OSError, yaml.YAMLError, ValidationError) as e:
        console.print(f"[red]Failed to load tools: {escape(str(e))}[/red]")
        raise typer.Exit(code=2)

    if not tools:
        console.print(f"[yellow]No tools found in {tools_dir}.[/yellow]")
        return

    table = Table(title="Configured tools", show_header=True, header_style="bold magenta")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Description", style="yellow")
    table.add_column("Parameters", style="green")
    table.add_column("Timeout", justify="right")
    for tool in tools.values():
        table.add_row(
            tool.name,
            tool.description or "No description",
            ", ".join(f"{name}*" if spec.required else name for name, spec in tool.parameters.items()),
            f"{tool.timeout}s" if tool.timeout else "",
        )
    console.print(table)


def main():
    app()


if __name__ == "__main__":
    main()
