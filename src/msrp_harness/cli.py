"""Command-line interface for the MSRP harness."""

import asyncio
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import click

from msrp_harness.errors import HarnessError
from msrp_harness.log_collector import LogCollector
from msrp_harness.observability import (
    MetricsCollector,
    bind_run_context,
    clear_run_context,
    generate_run_id,
    get_logger,
    setup_logging,
)
from msrp_harness.scenarios import HarnessScenario, MsrpScenarios, ScenarioManager
from msrp_harness.settings import HarnessSettings, get_settings
from msrp_harness.supervisor import EndpointSupervisor

logger = get_logger("msrp_harness.cli")


@click.group()
def cli():
    """MSRP harness - drive endpoint processes through test scenarios."""
    pass


@cli.command()
@click.option('--scenario', default='negotiation', help='Scenario to run')
@click.option('--sessions', default=5, help='Session count for the load scenario')
@click.option('--output', default='./harness_output', help='Output directory for results')
@click.option('--log-level', default='info', type=click.Choice(['debug', 'info', 'warning', 'error']), help='Log level')
@click.option('--spawn-timeout', default=None, type=float, help='Seconds to wait for endpoint readiness')
@click.option('--wait-timeout', default=None, type=float, help='Seconds to wait for each event')
@click.option('--reserve-ports', is_flag=True, help='Hand endpoints reserved ports instead of port 0')
def run(scenario: str, sessions: int, output: str, log_level: str, spawn_timeout: Optional[float],
        wait_timeout: Optional[float], reserve_ports: bool):
    """Run one scenario against freshly spawned endpoints."""
    settings = get_settings()

    # Override settings with CLI arguments
    if spawn_timeout is not None:
        settings.spawn_timeout_seconds = spawn_timeout
    if wait_timeout is not None:
        settings.wait_timeout_seconds = wait_timeout
    if reserve_ports:
        settings.reserve_ports = True
    settings.log_level = log_level.upper()

    output_path = Path(output)
    output_path.mkdir(parents=True, exist_ok=True)
    setup_logging(settings.log_level, output_path / "logs")

    manager = ScenarioManager()
    try:
        selected = manager.get_scenario(scenario)
    except ValueError as e:
        click.echo(f"Error: {e}")
        sys.exit(1)

    click.echo(f"Scenario: {selected.name} - {selected.description}")
    click.echo(f"Output: {output_path}")

    ok = asyncio.run(_run_scenario(selected, settings, sessions, output_path))
    if ok:
        click.echo("Scenario completed successfully!")
    else:
        click.echo("Scenario failed!")
        sys.exit(1)


@cli.command()
def scenarios():
    """List the available scenarios."""
    manager = ScenarioManager()
    for name in manager.list_scenarios():
        click.echo(f"{name}: {manager.get_scenario(name).description}")


async def _run_scenario(scenario: HarnessScenario, settings: HarnessSettings, sessions: int,
                        output_path: Path) -> bool:
    """Run ``scenario`` and write the report; always tears the endpoints down."""
    run_id = generate_run_id()
    bind_run_context(run_id, scenario.name)
    log_collector = LogCollector()
    metrics = MetricsCollector()
    harness = EndpointSupervisor(settings=settings, log_collector=log_collector, metrics=metrics)
    composer = MsrpScenarios(harness)
    report: Dict[str, Any] = {
        "run_id": run_id,
        "scenario": scenario.name,
        "started": datetime.now().isoformat(),
    }
    ok = False
    log_collector.add_log("harness", "info", f"Starting scenario: {scenario.name}")
    try:
        coro = scenario.runner(composer, sessions)
        if scenario.timeout is not None:
            report["result"] = await asyncio.wait_for(coro, timeout=scenario.timeout)
        else:
            report["result"] = await coro
        report["histories"] = {
            role: [event.to_dict() for event in harness.get_messages(role)] for role in harness.roles()
        }
        ok = True
    except (HarnessError, asyncio.TimeoutError) as e:
        logger.error("Scenario failed", scenario=scenario.name, error=str(e))
        log_collector.add_log("harness", "error", f"Scenario failed: {e}")
        report["error"] = str(e) or type(e).__name__
    finally:
        await composer.cleanup()
        clear_run_context()

    report["status"] = "success" if ok else "failed"
    report["finished"] = datetime.now().isoformat()
    report["log_summary"] = log_collector.get_summary()
    report["metrics"] = metrics.snapshot()

    with open(output_path / "harness_report.json", 'w') as f:
        json.dump(report, f, indent=2)
    log_collector.export_logs(output_path / "logs" / "harness_logs.json")
    return ok


def main():
    """Main CLI entry point."""
    cli()


if __name__ == "__main__":
    main()
