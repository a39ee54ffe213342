"""
Flow Analytics

Aggregates batches of flows into dashboard-style breakdowns.
"""

import ipaddress
import logging
import random
from collections import defaultdict
from datetime import timedelta
from typing import Iterable, Optional

from src.models.network import (
    BandwidthUtilization,
    DashboardMetrics,
    Flow,
    FlowAnalytics,
    GeographicStats,
    LatencyStats,
    PortStats,
    ProtocolStats,
    TalkerStats,
    ThroughputStats,
    TopTalker,
    TrendDirection,
    TrendPoint,
    utcnow,
)

logger = logging.getLogger(__name__)


SERVICE_NAMES = {
    80: "HTTP",
    443: "HTTPS",
    22: "SSH",
    21: "FTP",
    25: "SMTP",
    53: "DNS",
    110: "POP3",
    143: "IMAP",
    993: "IMAPS",
    995: "POP3S",
    3389: "RDP",
    1433: "SQL Server",
    3306: "MySQL",
    5432: "PostgreSQL",
    6379: "Redis",
    27017: "MongoDB",
    9200: "Elasticsearch",
}

HOSTNAME_PREFIXES = ["web-server", "db-server", "app-server", "mail-server", "dns-server", "file-server"]

LOCATIONS = ["New York, US", "London, UK", "Tokyo, JP", "Sydney, AU", "Frankfurt, DE", "Singapore, SG"]

# Country code suffix of each location -> (country, region, (lat, lon))
COUNTRIES = {
    "US": ("United States", "North America", (39.8283, -98.5795)),
    "UK": ("United Kingdom", "Europe", (55.3781, -3.4360)),
    "JP": ("Japan", "Asia", (36.2048, 138.2529)),
    "AU": ("Australia", "Oceania", (-25.2744, 133.7751)),
    "DE": ("Germany", "Europe", (51.1657, 10.4515)),
    "SG": ("Singapore", "Asia", (1.3521, 103.8198)),
}

TOP_PORTS = 10
TOP_TALKERS = 15
BANDWIDTH_WINDOW = 10
TREND_HOURS = 24


def get_service_name(port: int) -> str:
    """Well-known service name for a port, or ``Unknown``."""
    return SERVICE_NAMES.get(port, "Unknown")


def _octet_sum(ip: str) -> int:
    return sum(int(octet) for octet in ip.split("."))


def hostname_for(ip: str) -> str:
    """Stable pseudo-hostname derived from the address."""
    digest = _octet_sum(ip)
    return f"{HOSTNAME_PREFIXES[digest % len(HOSTNAME_PREFIXES)]}-{digest % 100}"


def location_for(ip: str) -> str:
    """Stable pseudo-location derived from the address."""
    return LOCATIONS[_octet_sum(ip) % len(LOCATIONS)]


def _percentage(part: float, total: float) -> float:
    return round(part / total * 100, 2) if total else 0.0


class FlowAnalyzer:
    """
    Computes protocol, port, talker and bandwidth breakdowns for a batch
    of flows.

    Example:
        >>> analyzer = FlowAnalyzer()
        >>> report = analyzer.analyze(flow_gen.generate_batch(1000))
        >>> report.bandwidth.trend
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def analyze(self, flows: Iterable[Flow]) -> FlowAnalytics:
        """
        Build the full analytics report.

        Args:
            flows: Flows in any order; they are processed oldest first

        Returns:
            FlowAnalytics object
        """
        ordered = sorted(flows, key=lambda f: f.timestamp)
        total_flows = len(ordered)
        total_bytes = sum(f.bytes for f in ordered)
        total_packets = sum(f.packets for f in ordered)
        average_duration = (
            sum(f.duration_ms for f in ordered) / total_flows if total_flows else 0.0
        )

        report = FlowAnalytics(
            total_flows=total_flows,
            total_bytes=total_bytes,
            total_packets=total_packets,
            average_flow_duration=round(average_duration, 2),
            top_protocols=self.protocol_breakdown(ordered, total_bytes),
            top_ports=self.port_breakdown(ordered, total_bytes),
            top_talkers=self.top_talkers(ordered, total_bytes),
            bandwidth=self.bandwidth_utilization(ordered),
            flow_trends=self.flow_trends(ordered),
            geographic_distribution=self.geographic_distribution(ordered),
        )
        logger.debug(f"Analyzed {total_flows} flows ({total_bytes} bytes)")
        return report

    def protocol_breakdown(self, flows: list[Flow], total_bytes: int) -> list[ProtocolStats]:
        """Per-protocol totals, largest byte count first."""
        buckets: dict = defaultdict(lambda: {"flows": 0, "bytes": 0, "packets": 0})
        for flow in flows:
            bucket = buckets[flow.protocol]
            bucket["flows"] += 1
            bucket["bytes"] += flow.bytes
            bucket["packets"] += flow.packets

        stats = [
            ProtocolStats(protocol=protocol, percentage=_percentage(b["bytes"], total_bytes), **b)
            for protocol, b in buckets.items()
        ]
        return sorted(stats, key=lambda s: s.bytes, reverse=True)

    def port_breakdown(self, flows: list[Flow], total_bytes: int) -> list[PortStats]:
        """Top destination ports by bytes."""
        buckets: dict = defaultdict(lambda: {"flows": 0, "bytes": 0})
        for flow in flows:
            bucket = buckets[flow.destination_port]
            bucket["flows"] += 1
            bucket["bytes"] += flow.bytes

        stats = [
            PortStats(
                port=port,
                service=get_service_name(port),
                percentage=_percentage(b["bytes"], total_bytes),
                **b,
            )
            for port, b in buckets.items()
        ]
        return sorted(stats, key=lambda s: s.bytes, reverse=True)[:TOP_PORTS]

    def top_talkers(self, flows: list[Flow], total_bytes: int) -> list[TalkerStats]:
        """
        Busiest addresses by combined inbound and outbound bytes.

        Flows are counted against the source address only.
        """
        talkers: dict[str, TalkerStats] = {}

        def talker(ip: str) -> TalkerStats:
            if ip not in talkers:
                talkers[ip] = TalkerStats(ip=ip, hostname=hostname_for(ip), location=location_for(ip))
            return talkers[ip]

        for flow in flows:
            source = talker(flow.source_ip)
            source.outbound_bytes += flow.bytes
            source.flows += 1
            talker(flow.destination_ip).inbound_bytes += flow.bytes

        for stats in talkers.values():
            stats.percentage = _percentage(stats.total_bytes, total_bytes)

        return sorted(talkers.values(), key=lambda t: t.total_bytes, reverse=True)[:TOP_TALKERS]

    def bandwidth_utilization(self, flows: list[Flow]) -> BandwidthUtilization:
        """Recent vs. average bytes per flow, with a coarse trend."""
        if not flows:
            return BandwidthUtilization(
                current=0.0, average=0.0, peak=0.0, utilization=0.0, capacity=0.0,
                trend=TrendDirection.STABLE,
            )

        window = flows[-BANDWIDTH_WINDOW:]
        current = sum(f.bytes for f in window) / len(window)
        average = sum(f.bytes for f in flows) / len(flows)
        peak = max(f.bytes for f in flows)

        if current > average:
            trend = TrendDirection.INCREASING
        elif current < average * 0.8:
            trend = TrendDirection.DECREASING
        else:
            trend = TrendDirection.STABLE

        return BandwidthUtilization(
            current=round(current, 2),
            average=round(average, 2),
            peak=float(peak),
            utilization=round(min(current / peak * 100, 100.0), 2),
            capacity=round(peak * 1.2, 2),
            trend=trend,
        )

    def flow_trends(self, flows: list[Flow]) -> list[TrendPoint]:
        """Bytes per hour over the last day, ending at the newest flow."""
        end = flows[-1].timestamp if flows else utcnow()
        end = end.replace(minute=0, second=0, microsecond=0)

        hourly: dict = defaultdict(int)
        for flow in flows:
            hourly[flow.timestamp.replace(minute=0, second=0, microsecond=0)] += flow.bytes

        points = []
        for offset in range(TREND_HOURS - 1, -1, -1):
            hour = end - timedelta(hours=offset)
            points.append(TrendPoint(timestamp=hour, value=hourly.get(hour, 0), label=hour.strftime("%H:%M")))
        return points

    def geographic_distribution(self, flows: list[Flow]) -> list[GeographicStats]:
        """
        Traffic per country of the remote end, largest byte count first.

        The remote end is the first public address among destination and
        source. Flows between two private addresses are not geolocated.
        """
        buckets: dict = defaultdict(lambda: {"flows": 0, "bytes": 0})
        for flow in flows:
            remote = next(
                (ip for ip in (flow.destination_ip, flow.source_ip) if not ipaddress.ip_address(ip).is_private),
                None,
            )
            if remote is None:
                continue
            bucket = buckets[location_for(remote).rsplit(", ", 1)[-1]]
            bucket["flows"] += 1
            bucket["bytes"] += flow.bytes

        geolocated_bytes = sum(b["bytes"] for b in buckets.values())
        stats = []
        for code, b in buckets.items():
            country, region, coordinates = COUNTRIES[code]
            stats.append(GeographicStats(
                country=country,
                region=region,
                coordinates=coordinates,
                percentage=_percentage(b["bytes"], geolocated_bytes),
                **b,
            ))
        return sorted(stats, key=lambda s: s.bytes, reverse=True)

    def dashboard_metrics(
        self,
        flows: list[Flow],
        total_flows: Optional[int] = None,
        anomalies_detected: int = 0,
        active_alarms: int = 0,
        network_health: Optional[int] = None,
    ) -> DashboardMetrics:
        """
        Initial dashboard snapshot: counters from the arguments, throughput
        and latency drawn from plausible ranges, top talkers from ``flows``.

        Without a session behind it, ``total_flows`` defaults to the batch
        size and ``network_health`` is drawn from 80-99.
        """
        rng = self.rng
        talkers = self.top_talkers(sorted(flows, key=lambda f: f.timestamp), sum(f.bytes for f in flows))

        return DashboardMetrics(
            total_flows=len(flows) if total_flows is None else total_flows,
            anomalies_detected=anomalies_detected,
            active_alarms=active_alarms,
            network_health=rng.randint(80, 99) if network_health is None else network_health,
            throughput=ThroughputStats(
                current=round(rng.uniform(500, 1500), 2),
                average=round(rng.uniform(400, 1200), 2),
                peak=round(rng.uniform(1000, 2500), 2),
            ),
            latency=LatencyStats(
                current=round(rng.uniform(10, 60), 2),
                average=round(rng.uniform(15, 55), 2),
                p95=round(rng.uniform(50, 150), 2),
            ),
            top_talkers=[
                TopTalker(ip=t.ip, bytes=t.outbound_bytes, flows=t.flows)
                for t in talkers if t.flows > 0
            ][:5],
        )
