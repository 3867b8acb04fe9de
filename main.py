#!/usr/bin/env python3
"""
hdisplay Black-Box Template Capture - CLI

Captures screenshots and videos of hdisplay templates by observing the
running display from outside: apply -> detect readiness -> capture -> reset.
"""
import asyncio
import json
import shutil
import sys
from pathlib import Path
from typing import Optional

import click
import yaml
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from config.settings import (
    SERVER_URL, OUTPUT_DIR, PROFILES_DIR, CLEAR_COMMAND, FFMPEG_BIN,
)

console = Console()


def load_data_option(data: Optional[str], data_file: Optional[str]) -> Optional[dict]:
    """Parse --data / --data-file into a template payload."""
    if data and data_file:
        raise click.UsageError("Use either --data or --data-file, not both")

    if data:
        try:
            payload = json.loads(data)
        except json.JSONDecodeError as e:
            raise click.BadParameter(f"Invalid JSON: {e}", param_hint="--data")
    elif data_file:
        path = Path(data_file)
        with open(path) as f:
            payload = yaml.safe_load(f) if path.suffix in [".yaml", ".yml"] else json.load(f)
    else:
        return None

    if not isinstance(payload, dict):
        raise click.BadParameter("Template data must be a JSON object")
    return payload


def build_orchestrator(obj: dict):
    from capture import get_orchestrator

    CaptureOrchestrator = get_orchestrator()
    return CaptureOrchestrator(
        server_url=obj["server"],
        output_dir=obj["output_dir"],
        profiles_dir=obj["profiles_dir"],
        headless=not obj["debug"],
        verify_reset=obj["verify_reset"],
    )


@click.group()
@click.version_option(version="1.0.0")
@click.option("--server", default=SERVER_URL, show_default=True, help="hdisplay server URL")
@click.option("--output-dir", default=str(OUTPUT_DIR), show_default=True, help="Capture output directory")
@click.option("--profiles-dir", default=str(PROFILES_DIR), show_default=True, help="Directory of capture profile YAML files")
@click.option("--debug", is_flag=True, help="Debug logging and a headed browser")
@click.option("--verify-reset", is_flag=True, help="Query display status after each reset")
@click.pass_context
def cli(ctx, server: str, output_dir: str, profiles_dir: str, debug: bool, verify_reset: bool):
    """hdisplay Black-Box Template Capture System."""
    from capture.log import set_level

    if debug:
        set_level("DEBUG")
    ctx.ensure_object(dict)
    ctx.obj.update(
        server=server,
        output_dir=Path(output_dir),
        profiles_dir=Path(profiles_dir),
        debug=debug,
        verify_reset=verify_reset,
    )


@cli.command(name="all")
@click.pass_obj
def capture_all(obj: dict):
    """Capture all templates listed by the server."""
    console.print(Panel(f"[bold blue]Capturing All Templates[/bold blue]\nServer: {obj['server']}"))

    try:
        summary = asyncio.run(build_orchestrator(obj).capture_all())
    except Exception as e:
        console.print(f"[bold red]Capture failed:[/bold red] {e}")
        sys.exit(1)

    table = Table(title="Capture Summary")
    table.add_column("Template", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Details", style="yellow")

    for template_id in summary.successful:
        table.add_row(template_id, "[green]OK[/green]", "")
    for failure in summary.failed:
        table.add_row(failure["id"], "[red]Failed[/red]", failure["error"])

    console.print(table)
    console.print(
        f"\n[bold green]Successful:[/bold green] {len(summary.successful)}  "
        f"[bold red]Failed:[/bold red] {len(summary.failed)}"
    )

    if summary.failed:
        sys.exit(1)


@cli.command()
@click.argument("template_id")
@click.option("--data", default=None, help="Template data as a JSON object")
@click.option("--data-file", default=None, type=click.Path(exists=True, dir_okay=False), help="JSON or YAML file with template data")
@click.pass_obj
def template(obj: dict, template_id: str, data: Optional[str], data_file: Optional[str]):
    """Capture a single template."""
    payload = load_data_option(data, data_file)

    console.print(Panel(f"[bold blue]Capturing Template[/bold blue]\nTemplate: {template_id}\nServer: {obj['server']}"))

    try:
        result = asyncio.run(build_orchestrator(obj).capture_template(template_id, payload))
    except Exception as e:
        console.print(f"[bold red]Capture failed:[/bold red] {e}")
        sys.exit(1)

    table = Table(title="Capture Complete")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Template", result.template_id)
    table.add_row("Screenshot", result.screenshot_path or "-")
    table.add_row("Videos", "\n".join(result.video_paths) or "-")

    console.print(table)


@cli.command()
@click.pass_obj
def gallery(obj: dict):
    """Generate an HTML gallery from captured output."""
    from capture.errors import GalleryError
    from capture.gallery import generate_gallery

    try:
        path = generate_gallery(obj["output_dir"])
    except GalleryError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)

    console.print(f"[bold green]Gallery generated:[/bold green] {path}")


@cli.command()
@click.pass_obj
def profiles(obj: dict):
    """List loaded capture profiles."""
    from capture.profiles import load_profiles, describe_plan

    loaded = load_profiles(obj["profiles_dir"])
    if not loaded:
        console.print("[yellow]No capture profiles found; heuristics will be used.[/yellow]")
        return

    table = Table(title="Capture Profiles")
    table.add_column("Template", style="cyan")
    table.add_column("Detection", style="green")
    table.add_column("Screenshot Delay", style="yellow")
    table.add_column("Video", style="yellow")

    for template_id, profile in sorted(loaded.items()):
        table.add_row(
            template_id,
            describe_plan(profile.plan),
            f"{profile.screenshot_delay_ms}ms",
            f"{profile.video_duration_ms}ms" if profile.records_video else "-",
        )

    console.print(table)


@cli.command()
def check():
    """Check system requirements."""
    import shlex
    from importlib.metadata import version, PackageNotFoundError

    table = Table(title="System Check")
    table.add_column("Component", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Details", style="yellow")

    # Check FFmpeg
    ffmpeg = shutil.which(FFMPEG_BIN)
    table.add_row(
        "FFmpeg",
        "[green]OK[/green]" if ffmpeg else "[yellow]Optional[/yellow]",
        ffmpeg or "MP4 output skipped. Install: apt install ffmpeg"
    )

    # Check hdisplay CLI used for reset
    clear_bin = shlex.split(CLEAR_COMMAND)[0]
    clear_path = shutil.which(clear_bin)
    table.add_row(
        "hdisplay CLI",
        "[green]OK[/green]" if clear_path else "[yellow]Fallback[/yellow]",
        clear_path or "Reset will use POST /api/clear"
    )

    # Playwright package; browsers are installed separately
    try:
        table.add_row("Playwright", "[green]OK[/green]", f"v{version('playwright')}, run: playwright install chromium")
    except PackageNotFoundError:
        table.add_row("Playwright", "[red]Missing[/red]", "Run: pip install playwright")

    console.print(table)


if __name__ == "__main__":
    cli()
