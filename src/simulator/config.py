"""
Simulator Configuration

Centralized configuration for every generator in a simulation session.
Operational knobs can be overridden from the environment (or a .env file).
"""

import math
import os
from dataclasses import dataclass, field
from typing import Optional
from dotenv import load_dotenv

from src.models.network import AnomalyType, NodeStatus, Protocol
from src.simulator.errors import InvalidConfiguration

load_dotenv()


def _optional_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else None


@dataclass
class TopologyConfig:
    """Attribute distributions for generated topologies."""

    status_weights: dict[NodeStatus, float] = field(default_factory=lambda: {
        NodeStatus.NORMAL: 0.85,
        NodeStatus.WARNING: 0.10,
        NodeStatus.CRITICAL: 0.05,
    })
    degraded_utilization: float = 85.0
    edge_down_probability: float = 0.02


@dataclass
class FlowConfig:
    """Normal and anomalous envelopes for each flow dimension."""

    normal_bytes: tuple[int, int] = (100, 100_100)
    anomalous_bytes: tuple[int, int] = (1_000_000, 11_000_000)

    normal_fanout: tuple[int, int] = (1, 5)
    anomalous_fanout: tuple[int, int] = (50, 1_000)

    normal_duration_ms: tuple[int, int] = (100, 30_100)
    anomalous_duration_ms: tuple[int, int] = (300_000, 3_600_000)

    normal_protocols: dict[Protocol, float] = field(default_factory=lambda: {
        Protocol.TCP: 0.7,
        Protocol.UDP: 0.3,
    })
    anomalous_protocols: dict[Protocol, float] = field(default_factory=lambda: {
        Protocol.ICMP: 0.7,
        Protocol.GRE: 0.3,
    })

    packet_size: tuple[int, int] = (64, 1500)
    internal_destination_ratio: float = 0.7

    # Which dimension an anomalous flow is forced into
    forced_dimension_weights: dict[AnomalyType, float] = field(default_factory=lambda: {
        AnomalyType.VOLUME: 0.4,
        AnomalyType.PATTERN: 0.3,
        AnomalyType.PROTOCOL: 0.15,
        AnomalyType.BEHAVIORAL: 0.15,
    })


@dataclass
class ClassifierConfig:
    """Thresholds and scoring parameters for the anomaly classifier."""

    volume_threshold_bytes: float = 1_000_000
    pattern_threshold_ports: float = 25
    protocol_threshold_bits: float = 4.0
    behavioral_threshold_ms: float = 120_000

    # Baseline share of traffic per protocol, used for surprisal
    protocol_frequencies: dict[Protocol, float] = field(default_factory=lambda: {
        Protocol.TCP: 0.70,
        Protocol.UDP: 0.25,
        Protocol.ICMP: 0.04,
        Protocol.GRE: 0.01,
    })

    # Score boundaries for medium, high, critical
    severity_bands: tuple[float, float, float] = (1.0, 2.0, 5.0)

    confidence_gain: float = 1.5
    max_noise: float = 0.1
    min_confidence: float = field(default_factory=lambda: float(os.getenv("SIM_MIN_CONFIDENCE", "0.5")))

    def threshold_for(self, anomaly_type: AnomalyType) -> float:
        """Threshold for a dimension, in that dimension's unit."""
        return {
            AnomalyType.VOLUME: self.volume_threshold_bytes,
            AnomalyType.PATTERN: self.pattern_threshold_ports,
            AnomalyType.PROTOCOL: self.protocol_threshold_bits,
            AnomalyType.BEHAVIORAL: self.behavioral_threshold_ms,
        }[anomaly_type]

    def surprisal(self, protocol: Protocol) -> float:
        """Protocol rarity in bits (-log2 of its baseline frequency)."""
        frequency = self.protocol_frequencies.get(protocol, 0.001)
        return -math.log2(frequency)


@dataclass
class ClockConfig:
    """Simulation clock and history settings."""

    tick_interval_seconds: float = field(default_factory=lambda: float(os.getenv("SIM_TICK_INTERVAL_SECONDS", "2.0")))
    anomaly_probability: float = field(default_factory=lambda: float(os.getenv("SIM_ANOMALY_PROBABILITY", "0.1")))
    history_capacity: int = field(default_factory=lambda: int(os.getenv("SIM_HISTORY_CAPACITY", "20")))

    throughput_bounds: tuple[float, float] = (100.0, 250.0)
    throughput_delta: float = 10.0
    latency_bounds: tuple[float, float] = (5.0, 60.0)
    latency_delta: float = 2.0


@dataclass
class ScenarioConfig:
    """Scripted attack scenario settings."""

    stagger_ms: int = field(default_factory=lambda: int(os.getenv("SIM_STAGGER_MS", "500")))
    unit_count: int = field(default_factory=lambda: int(os.getenv("SIM_SCENARIO_UNITS", "10")))
    max_units: int = 500
    # Finished scenarios kept for lookup; older ones are forgotten
    retention: int = field(default_factory=lambda: int(os.getenv("SIM_SCENARIO_RETENTION", "50")))
    confidence_band: tuple[float, float] = (0.95, 1.0)
    ddos_bytes: tuple[int, int] = (5_000_000, 10_000_000)


@dataclass
class SimulationConfig:
    """Main configuration container for a simulation session."""

    seed: Optional[int] = field(default_factory=lambda: _optional_int("SIM_SEED"))
    topology: TopologyConfig = field(default_factory=TopologyConfig)
    flow: FlowConfig = field(default_factory=FlowConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    clock: ClockConfig = field(default_factory=ClockConfig)
    scenario: ScenarioConfig = field(default_factory=ScenarioConfig)

    log_level: str = field(default_factory=lambda: os.getenv("SIM_LOG_LEVEL", "INFO"))

    def validate(self) -> "SimulationConfig":
        """
        Check that the envelopes and thresholds are mutually consistent.

        Normal envelopes must stay strictly below their thresholds and
        anomalous envelopes must start at or above them, otherwise an
        anomalous flow could classify as low severity.

        Raises:
            InvalidConfiguration: On the first inconsistency found
        """
        flow = self.flow
        cls = self.classifier

        ranges = {
            "normal_bytes": flow.normal_bytes,
            "anomalous_bytes": flow.anomalous_bytes,
            "normal_fanout": flow.normal_fanout,
            "anomalous_fanout": flow.anomalous_fanout,
            "normal_duration_ms": flow.normal_duration_ms,
            "anomalous_duration_ms": flow.anomalous_duration_ms,
            "packet_size": flow.packet_size,
            "ddos_bytes": self.scenario.ddos_bytes,
        }
        for name, (low, high) in ranges.items():
            if low <= 0 or high < low:
                raise InvalidConfiguration(f"{name} must be a positive (min, max) range, got {(low, high)}")

        pairs = [
            ("bytes", flow.normal_bytes, flow.anomalous_bytes, cls.volume_threshold_bytes),
            ("fanout", flow.normal_fanout, flow.anomalous_fanout, cls.pattern_threshold_ports),
            ("duration_ms", flow.normal_duration_ms, flow.anomalous_duration_ms, cls.behavioral_threshold_ms),
        ]
        for name, normal, anomalous, threshold in pairs:
            if normal[1] >= threshold:
                raise InvalidConfiguration(f"normal {name} envelope reaches threshold {threshold}")
            if anomalous[0] < threshold:
                raise InvalidConfiguration(f"anomalous {name} envelope starts below threshold {threshold}")

        if self.scenario.ddos_bytes[0] < cls.volume_threshold_bytes:
            raise InvalidConfiguration("ddos_bytes must start at or above the volume threshold")

        for protocol, frequency in cls.protocol_frequencies.items():
            if not 0.0 < frequency <= 1.0:
                raise InvalidConfiguration(
                    f"protocol frequency for {protocol.value} must be within (0, 1], got {frequency}"
                )

        for protocol in flow.normal_protocols:
            if cls.surprisal(protocol) >= cls.protocol_threshold_bits:
                raise InvalidConfiguration(f"normal protocol {protocol.value} is rarer than the threshold")
        for protocol in flow.anomalous_protocols:
            if cls.surprisal(protocol) < cls.protocol_threshold_bits:
                raise InvalidConfiguration(f"anomalous protocol {protocol.value} is not rare enough")

        for name, weights in (
            ("normal_protocols", flow.normal_protocols),
            ("anomalous_protocols", flow.anomalous_protocols),
            ("forced_dimension_weights", flow.forced_dimension_weights),
            ("status_weights", self.topology.status_weights),
        ):
            if not weights or any(w < 0 for w in weights.values()) or sum(weights.values()) <= 0:
                raise InvalidConfiguration(f"{name} must contain non-negative weights with a positive sum")

        medium, high, critical = cls.severity_bands
        if not 0 < medium <= 1.0 or not medium < high < critical:
            raise InvalidConfiguration(f"severity_bands must be increasing with medium <= 1.0, got {cls.severity_bands}")
        if not 0.0 <= cls.min_confidence <= 1.0:
            raise InvalidConfiguration("min_confidence must be within [0, 1]")
        if not 0.0 <= cls.max_noise < 1.0:
            raise InvalidConfiguration("max_noise must be within [0, 1)")
        if cls.confidence_gain <= 0:
            raise InvalidConfiguration("confidence_gain must be positive")

        clock = self.clock
        if clock.tick_interval_seconds <= 0:
            raise InvalidConfiguration("tick_interval_seconds must be positive")
        if not 0.0 <= clock.anomaly_probability <= 1.0:
            raise InvalidConfiguration("anomaly_probability must be within [0, 1]")
        if clock.history_capacity < 1:
            raise InvalidConfiguration("history_capacity must be at least 1")

        scenario = self.scenario
        if scenario.stagger_ms <= 0:
            raise InvalidConfiguration("stagger_ms must be positive")
        if not 0 < scenario.unit_count <= scenario.max_units:
            raise InvalidConfiguration(f"unit_count must be within 1..{scenario.max_units}")
        if scenario.retention < 0:
            raise InvalidConfiguration("retention must not be negative")
        low, high = scenario.confidence_band
        if not 0.0 <= low <= high <= 1.0:
            raise InvalidConfiguration("confidence_band must lie within [0, 1]")

        return self
