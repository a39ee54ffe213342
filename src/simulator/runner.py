"""
CLI Runner for the Flow Simulator

Provides command-line interface for running simulations.
"""

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from src.models.network import (
    Alarm,
    Anomaly,
    EventKind,
    NodeStatus,
    ScenarioKind,
    Severity,
    SimulationEvent,
)
from src.simulator.config import SimulationConfig
from src.simulator.engine import SimulationEngine
from src.simulator.errors import SimulationError
from src.simulator.scenario import SCENARIO_PROFILES


console = Console()

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

SEVERITY_STYLES = {
    Severity.LOW: "green",
    Severity.MEDIUM: "yellow",
    Severity.HIGH: "red",
    Severity.CRITICAL: "red bold",
}

STATUS_STYLES = {
    NodeStatus.NORMAL: "green",
    NodeStatus.WARNING: "yellow",
    NodeStatus.CRITICAL: "red",
}


def get_engine(seed: Optional[int] = None, config: Optional[SimulationConfig] = None) -> SimulationEngine:
    """Build a simulation engine, aborting on bad configuration."""
    try:
        return SimulationEngine(config=config, seed=seed)
    except SimulationError as e:
        console.print(f"[red]✗ Invalid configuration: {e}[/red]")
        raise click.Abort()


def styled_severity(severity: Severity) -> str:
    style = SEVERITY_STYLES.get(severity, "white")
    return f"[{style}]{severity.value}[/{style}]"


def anomaly_table(anomalies: list[Anomaly], title: str) -> Table:
    """Render anomalies as a table."""
    table = Table(title=title)
    table.add_column("Time", style="dim")
    table.add_column("ID", style="cyan")
    table.add_column("Type", style="yellow")
    table.add_column("Severity")
    table.add_column("Confidence", style="green")
    table.add_column("Destination", style="blue")
    table.add_column("Description", style="white", max_width=50)

    for anomaly in anomalies:
        table.add_row(
            anomaly.detected_at.strftime("%H:%M:%S.%f")[:-3],
            anomaly.id,
            anomaly.anomaly_type.value,
            styled_severity(anomaly.severity),
            f"{anomaly.confidence:.2%}",
            anomaly.destination_ip,
            anomaly.description,
        )
    return table


@click.group()
@click.version_option(version="0.1.0")
@click.option("--log-level", default=None, help="Logging level (defaults to SIM_LOG_LEVEL)")
def cli(log_level: Optional[str]):
    """Flow Anomaly Simulator CLI

    Generate synthetic network flows, anomalies, alarms and attack scenarios.
    """
    level = (log_level or SimulationConfig().log_level).upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)


@cli.command()
@click.option("--format", "output_format", type=click.Choice(["table", "json"]), default="table")
@click.option("--default/--generated", "use_default", default=True, help="Use the fixed enterprise layout")
@click.option("--firewalls", default=1, help="Firewalls in a generated topology")
@click.option("--routers", default=2, help="Routers in a generated topology")
@click.option("--switches", default=3, help="Switches in a generated topology")
@click.option("--servers", default=4, help="Servers in a generated topology")
@click.option("--others", default=6, help="Other hosts in a generated topology")
@click.option("--seed", type=int, default=None, help="Random seed")
def show_topology(
    output_format: str,
    use_default: bool,
    firewalls: int,
    routers: int,
    switches: int,
    servers: int,
    others: int,
    seed: Optional[int],
):
    """Display the network topology."""
    engine = get_engine(seed)
    network_sim = engine.network

    if use_default:
        network_sim.create_default_topology()
    else:
        try:
            network_sim.generate_topology(
                num_firewalls=firewalls,
                num_routers=routers,
                num_switches=switches,
                num_servers=servers,
                num_others=others,
            )
        except SimulationError as e:
            console.print(f"[red]✗ {e}[/red]")
            raise click.Abort()

    topology = network_sim.topology

    if output_format == "json":
        console.print_json(topology.model_dump_json(indent=2))
        return

    summary = network_sim.get_topology_summary()
    console.print(Panel(
        f"[bold]Topology:[/bold] {summary['name']}\n"
        f"[bold]Total Nodes:[/bold] {summary['total_nodes']}\n"
        f"[bold]Total Edges:[/bold] {summary['total_edges']}\n"
        f"[bold]By Type:[/bold] {', '.join(f'{k}={v}' for k, v in summary['nodes_by_type'].items())}",
        title="Network Topology Summary"
    ))

    table = Table(title="Network Nodes")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Type", style="yellow")
    table.add_column("IP Address", style="blue")
    table.add_column("Status", style="magenta")
    table.add_column("Role", style="white")

    for node in network_sim.get_all_nodes():
        status_style = STATUS_STYLES.get(node.status, "white")
        table.add_row(
            node.id,
            node.name,
            node.type.value,
            node.ip_address,
            f"[{status_style}]{node.status.value}[/{status_style}]",
            node.role or "-",
        )

    console.print(table)

    edges_table = Table(title="Network Edges")
    edges_table.add_column("Source", style="cyan")
    edges_table.add_column("Target", style="cyan")
    edges_table.add_column("Type", style="white")
    edges_table.add_column("Bandwidth", style="green")
    edges_table.add_column("Utilization", style="yellow")
    edges_table.add_column("Status", style="magenta")

    for edge in topology.edges:
        edges_table.add_row(
            edge.source_node_id,
            edge.target_node_id,
            edge.edge_type.value,
            f"{edge.bandwidth_mbps} Mbps",
            f"{edge.utilization:.1f}%",
            edge.status.value,
        )

    console.print(edges_table)


@cli.command()
@click.option("--count", default=100, help="Number of flows to generate")
@click.option("--anomalous-rate", default=0.1, help="Fraction of anomalous flows")
@click.option("--seed", type=int, default=None, help="Random seed")
@click.option("--output", "-o", type=click.Path(), help="Output file (JSON)")
def generate_flows(count: int, anomalous_rate: float, seed: Optional[int], output: Optional[str]):
    """Generate a batch of network flows."""
    engine = get_engine(seed)

    console.print(f"[bold]Generating {count} flows...[/bold]")
    flows = engine.flow_generator.generate_batch(count, anomalous_rate=anomalous_rate)

    if output:
        output_path = Path(output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w") as f:
            json.dump([flow.model_dump(mode="json") for flow in flows], f, indent=2)
        console.print(f"[green]✓ Saved {len(flows)} flows to {output}[/green]")
        return

    table = Table(title=f"Generated Flows ({len(flows)} entries)")
    table.add_column("Source", style="cyan")
    table.add_column("Destination", style="blue")
    table.add_column("Proto", style="yellow")
    table.add_column("Bytes", style="green", justify="right")
    table.add_column("Ports", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Anomalous")

    # Show last 20 flows
    for flow in flows[-20:]:
        table.add_row(
            f"{flow.source_ip}:{flow.source_port}",
            f"{flow.destination_ip}:{flow.destination_port}",
            flow.protocol.value,
            f"{flow.bytes:,}",
            str(flow.distinct_ports),
            f"{flow.duration_ms} ms",
            "[red]yes[/red]" if flow.is_anomalous else "[dim]no[/dim]",
        )

    console.print(table)
    if len(flows) > 20:
        console.print(f"[dim](Showing last 20 of {len(flows)} flows)[/dim]")


@cli.command()
@click.option("--count", default=20, help="Number of flows to classify")
@click.option("--anomalous-rate", default=0.5, help="Fraction of anomalous flows")
@click.option("--seed", type=int, default=None, help="Random seed")
def classify(count: int, anomalous_rate: float, seed: Optional[int]):
    """Generate flows and classify each one."""
    engine = get_engine(seed)
    flows = engine.flow_generator.generate_batch(count, anomalous_rate=anomalous_rate)

    table = Table(title="Classification Results")
    table.add_column("Flow", style="cyan")
    table.add_column("Forced", style="dim")
    table.add_column("Type", style="yellow")
    table.add_column("Severity")
    table.add_column("Score", justify="right")
    table.add_column("Confidence", style="green")
    table.add_column("Reportable")

    for flow in flows:
        anomaly = engine.generate_anomaly(flow)
        table.add_row(
            flow.id,
            flow.metadata.get("forced_dimension", "-"),
            anomaly.anomaly_type.value,
            styled_severity(anomaly.severity),
            f"{anomaly.metrics.deviation:.2f}",
            f"{anomaly.confidence:.2%}",
            "✓" if engine.classifier.is_reportable(anomaly) else "-",
        )

    console.print(table)


def print_event(event: SimulationEvent):
    """Print a simulation event as one console line."""
    stamp = f"[dim][{datetime.now().strftime('%H:%M:%S')}][/dim]"
    data = event.data

    if event.kind == EventKind.ANOMALY:
        console.print(f"{stamp} [yellow]⚠ {data.anomaly_type.value}[/yellow] {styled_severity(data.severity)} {data.description}")
    elif event.kind == EventKind.ALARM:
        console.print(f"{stamp} [red]🔔 {data.title}[/red] ({data.id})")
    elif event.kind == EventKind.SCENARIO:
        console.print(f"{stamp} [blue]Scenario {data.id}: {data.status.value} ({data.emitted}/{data.unit_count})[/blue]")
    elif event.kind == EventKind.METRICS:
        console.print(
            f"{stamp} flows={data.total_flows} anomalies={data.anomalies_detected} "
            f"alarms={data.active_alarms} health={data.network_health} "
            f"throughput={data.throughput.current:.1f} latency={data.latency.current:.1f}ms"
        )


@cli.command()
@click.option("--interval", default=2.0, help="Seconds between ticks")
@click.option("--duration", default=30, help="Total duration in seconds")
@click.option("--anomaly-probability", default=None, type=float, help="Per-tick anomaly probability")
@click.option("--seed", type=int, default=None, help="Random seed")
@click.option("--output-dir", type=click.Path(), default=None, help="Write events as JSON lines")
def run(interval: float, duration: int, anomaly_probability: Optional[float], seed: Optional[int], output_dir: Optional[str]):
    """Run continuous simulation."""
    config = SimulationConfig()
    config.clock.tick_interval_seconds = interval
    if anomaly_probability is not None:
        config.clock.anomaly_probability = anomaly_probability
    engine = get_engine(seed, config)

    events_file = None
    if output_dir:
        output_path = Path(output_dir)
        output_path.mkdir(parents=True, exist_ok=True)
        events_file = output_path / "events.jsonl"

    def record(event: SimulationEvent):
        print_event(event)
        if events_file is not None:
            with open(events_file, "a") as f:
                f.write(event.model_dump_json() + "\n")

    console.print(Panel(
        f"[bold]Interval:[/bold] {interval}s\n"
        f"[bold]Duration:[/bold] {duration}s\n"
        f"[bold]Anomaly Probability:[/bold] {config.clock.anomaly_probability:.0%}\n"
        f"[bold]Seed:[/bold] {engine.seed if engine.seed is not None else 'random'}",
        title="[bold blue]Starting Continuous Simulation[/bold blue]",
        border_style="blue"
    ))

    async def simulate():
        unsubscribe = engine.subscribe(record)
        engine.start()
        try:
            await asyncio.sleep(duration)
        finally:
            engine.stop()
            unsubscribe()

    try:
        asyncio.run(simulate())
    except KeyboardInterrupt:
        console.print("\n[yellow]Simulation stopped by user[/yellow]")

    alarms: list[Alarm] = list(engine.alarms)
    metrics = engine.metrics
    console.print(Panel(
        f"[bold]Flows:[/bold] {metrics.total_flows}\n"
        f"[bold]Anomalies:[/bold] {metrics.anomalies_detected}\n"
        f"[bold]Active Alarms:[/bold] {sum(1 for a in alarms if a.is_active)}\n"
        f"[bold]Network Health:[/bold] {metrics.network_health}",
        title="[green]✓ Simulation complete[/green]",
        border_style="green"
    ))


@cli.command()
@click.option("--target", default="192.168.1.100", help="Target IP address")
@click.option("--count", default=None, type=int, help="Number of attack units")
@click.option("--stagger-ms", default=None, type=int, help="Milliseconds between units")
@click.option("--kind", default=ScenarioKind.DDOS.value,
              type=click.Choice([k.value for k in ScenarioKind]),
              help="Scenario kind")
@click.option("--seed", type=int, default=None, help="Random seed")
def ddos(target: str, count: Optional[int], stagger_ms: Optional[int], kind: str, seed: Optional[int]):
    """Launch a staggered attack scenario and show the anomalies it produces."""
    engine = get_engine(seed)

    async def launch():
        scenario = engine.generate_attack_scenario(target, count=count, kind=kind, stagger_ms=stagger_ms)
        console.print(Panel(
            f"[bold]Scenario:[/bold] {scenario.name}\n"
            f"[bold]Target:[/bold] {scenario.target_ip}\n"
            f"[bold]Units:[/bold] {scenario.unit_count} every {scenario.stagger_ms}ms\n"
            f"[bold]Description:[/bold] {scenario.description}",
            title=f"[red]{scenario.id}[/red]",
            border_style="red"
        ))
        return await engine.scenarios.wait(scenario.id)

    try:
        scenario = asyncio.run(launch())
    except SimulationError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise click.Abort()

    anomalies = sorted(
        (a for a in engine.anomalies if a.id in scenario.anomaly_ids),
        key=lambda a: a.detected_at,
    )
    console.print(anomaly_table(anomalies, f"{SCENARIO_PROFILES[scenario.kind]['name']} ({scenario.status.value})"))
    if len(anomalies) < scenario.emitted:
        console.print(f"[dim](Showing {len(anomalies)} of {scenario.emitted} anomalies still in history)[/dim]")


@cli.command()
def list_scenarios():
    """List available attack scenarios."""
    console.print(Panel("[bold]Available Attack Scenarios[/bold]", border_style="blue"))

    for kind, profile in SCENARIO_PROFILES.items():
        console.print(f"\n  [cyan bold]{kind.value}[/cyan bold] ({profile['dimension'].value}/{profile['severity'].value})")
        console.print(f"  {profile['name']}")


@cli.command()
@click.option("--flows", "flow_count", default=1000, help="Number of flows to analyze")
@click.option("--seed", type=int, default=None, help="Random seed")
def analytics(flow_count: int, seed: Optional[int]):
    """Generate flow analytics for a batch of flows."""
    engine = get_engine(seed)
    try:
        report = engine.generate_flow_analytics(flow_count)
    except SimulationError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise click.Abort()

    bw = report.bandwidth
    console.print(Panel(
        f"[bold]Flows:[/bold] {report.total_flows}\n"
        f"[bold]Bytes:[/bold] {report.total_bytes:,}\n"
        f"[bold]Packets:[/bold] {report.total_packets:,}\n"
        f"[bold]Avg Duration:[/bold] {report.average_flow_duration:.0f} ms\n"
        f"[bold]Bandwidth:[/bold] {bw.current:,.0f} B/flow now, {bw.average:,.0f} avg, trend {bw.trend.value}",
        title="Flow Analytics"
    ))

    protocols = Table(title="Protocols")
    protocols.add_column("Protocol", style="yellow")
    protocols.add_column("Flows", justify="right")
    protocols.add_column("Bytes", justify="right", style="green")
    protocols.add_column("Share", justify="right")
    for stats in report.top_protocols:
        protocols.add_row(stats.protocol.value, str(stats.flows), f"{stats.bytes:,}", f"{stats.percentage:.1f}%")
    console.print(protocols)

    ports = Table(title="Top Ports")
    ports.add_column("Port", style="cyan")
    ports.add_column("Service", style="yellow")
    ports.add_column("Flows", justify="right")
    ports.add_column("Share", justify="right")
    for stats in report.top_ports:
        ports.add_row(str(stats.port), stats.service, str(stats.flows), f"{stats.percentage:.1f}%")
    console.print(ports)

    talkers = Table(title="Top Talkers")
    talkers.add_column("IP", style="cyan")
    talkers.add_column("Hostname", style="green")
    talkers.add_column("Location", style="blue")
    talkers.add_column("In", justify="right")
    talkers.add_column("Out", justify="right")
    for talker in report.top_talkers[:10]:
        talkers.add_row(talker.ip, talker.hostname, talker.location, f"{talker.inbound_bytes:,}", f"{talker.outbound_bytes:,}")
    console.print(talkers)

    geography = Table(title="Geography")
    geography.add_column("Country", style="cyan")
    geography.add_column("Region", style="blue")
    geography.add_column("Flows", justify="right")
    geography.add_column("Bytes", justify="right", style="green")
    geography.add_column("Share", justify="right")
    for stats in report.geographic_distribution:
        geography.add_row(stats.country, stats.region, str(stats.flows), f"{stats.bytes:,}", f"{stats.percentage:.1f}%")
    console.print(geography)


if __name__ == "__main__":
    cli()
