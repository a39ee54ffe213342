"""
Flow Generator

Synthesizes network flow records from normal and anomalous envelopes.
"""

import ipaddress
import logging
import random
from datetime import datetime
from typing import Optional
from faker import Faker

from src.models.network import AnomalyType, Flow, Protocol, utcnow
from src.simulator.config import FlowConfig
from src.simulator.errors import OutOfRange

logger = logging.getLogger(__name__)


# Predefined address space for realistic traffic
INTERNAL_SUBNETS = [
    "192.168.1.",
    "192.168.2.",
    "10.0.1.",
    "10.0.2.",
    "172.16.1.",
]

EXTERNAL_IPS = [
    "8.8.8.8",
    "1.1.1.1",
    "208.67.222.222",
    "185.228.168.9",
    "76.76.19.19",
]

COMMON_PORTS = [80, 443, 22, 21, 25, 53, 110, 143, 993, 995, 3389, 5432, 3306]
SUSPICIOUS_PORTS = [4444, 6666, 31337, 12345, 54321]

TCP_FLAGS = ("SYN", "ACK")


class FlowGenerator:
    """
    Generates flow records. Anomalous flows are forced into exactly one
    dimension (volume, pattern, protocol or behavioral) whose value lies at
    or above the classifier threshold.

    Example:
        >>> gen = FlowGenerator(rng=random.Random(1))
        >>> flow = gen.generate_flow(anomalous=True, forced_dimension=AnomalyType.PATTERN)
        >>> flow.metadata["forced_dimension"]
        'pattern'
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        fake: Optional[Faker] = None,
        config: Optional[FlowConfig] = None,
    ):
        self.rng = rng or random.Random()
        self.fake = fake or Faker()
        self.config = config or FlowConfig()

    def _internal_ip(self) -> str:
        return f"{self.rng.choice(INTERNAL_SUBNETS)}{self.rng.randint(1, 254)}"

    def _uniform_int(self, bounds: tuple[int, int]) -> int:
        return self.rng.randint(bounds[0], bounds[1])

    def _weighted(self, weights: dict):
        return self.rng.choices(list(weights), weights=list(weights.values()))[0]

    def pick_forced_dimension(self) -> AnomalyType:
        """Choose which dimension an anomalous flow deviates in."""
        return self._weighted(self.config.forced_dimension_weights)

    def generate_flow(
        self,
        anomalous: bool = False,
        timestamp: Optional[datetime] = None,
        destination_ip: Optional[str] = None,
        forced_dimension: Optional[AnomalyType] = None,
        byte_range: Optional[tuple[int, int]] = None,
    ) -> Flow:
        """
        Generate a single flow record.

        Args:
            anomalous: Draw one dimension from its anomalous envelope
            timestamp: Flow timestamp (defaults to now)
            destination_ip: Pin the destination address
            forced_dimension: Dimension to force when anomalous (random if None)
            byte_range: Override the byte envelope, e.g. for attack bursts

        Returns:
            Flow object

        Raises:
            OutOfRange: If a generated value violates its envelope
        """
        cfg = self.config
        if timestamp is None:
            timestamp = utcnow()

        forced = None
        if anomalous:
            forced = forced_dimension or self.pick_forced_dimension()

        source_ip = self._internal_ip()

        if destination_ip is None:
            if anomalous:
                destination_ip = (
                    self.rng.choice(EXTERNAL_IPS)
                    if self.rng.random() > 0.5
                    else self.fake.ipv4_public()
                )
            elif self.rng.random() < cfg.internal_destination_ratio:
                destination_ip = self._internal_ip()
            else:
                destination_ip = self.rng.choice(EXTERNAL_IPS)

        if anomalous:
            destination_port = (
                self.rng.choice(SUSPICIOUS_PORTS)
                if self.rng.random() > 0.5
                else self.rng.randint(1024, 65535)
            )
        else:
            destination_port = self.rng.choice(COMMON_PORTS)

        bytes_envelope = cfg.anomalous_bytes if forced == AnomalyType.VOLUME else cfg.normal_bytes
        if byte_range is not None:
            bytes_envelope = byte_range
        fanout_envelope = cfg.anomalous_fanout if forced == AnomalyType.PATTERN else cfg.normal_fanout
        duration_envelope = (
            cfg.anomalous_duration_ms if forced == AnomalyType.BEHAVIORAL else cfg.normal_duration_ms
        )
        protocol_weights = cfg.anomalous_protocols if forced == AnomalyType.PROTOCOL else cfg.normal_protocols

        flow_bytes = self._uniform_int(bytes_envelope)
        packet_size = self._uniform_int(cfg.packet_size)
        packets = max(1, flow_bytes // packet_size)
        protocol = self._weighted(protocol_weights)

        flags: tuple[str, ...] = ()
        if protocol == Protocol.TCP and self.rng.random() > 0.7:
            flags = TCP_FLAGS

        envelopes = {
            "bytes": bytes_envelope,
            "distinct_ports": fanout_envelope,
            "duration_ms": duration_envelope,
        }
        values = {
            "bytes": flow_bytes,
            "distinct_ports": self._uniform_int(fanout_envelope),
            "duration_ms": self._uniform_int(duration_envelope),
        }
        self._check_envelopes(values, envelopes, packets, source_ip, destination_ip)

        metadata = {}
        if forced is not None:
            metadata["forced_dimension"] = forced.value

        return Flow(
            source_ip=source_ip,
            destination_ip=destination_ip,
            source_port=self.rng.randint(1024, 65535),
            destination_port=destination_port,
            protocol=protocol,
            bytes=values["bytes"],
            packets=packets,
            duration_ms=values["duration_ms"],
            distinct_ports=values["distinct_ports"],
            flags=flags,
            timestamp=timestamp,
            is_anomalous=anomalous,
            metadata=metadata,
        )

    def generate_batch(self, count: int, anomalous_rate: float = 0.0) -> list[Flow]:
        """Generate ``count`` flows, each anomalous with ``anomalous_rate``."""
        return [
            self.generate_flow(anomalous=self.rng.random() < anomalous_rate)
            for _ in range(count)
        ]

    def _check_envelopes(
        self,
        values: dict[str, int],
        envelopes: dict[str, tuple[int, int]],
        packets: int,
        source_ip: str,
        destination_ip: str,
    ) -> None:
        """Reject any value outside its declared envelope."""
        for name, value in values.items():
            low, high = envelopes[name]
            if value <= 0 or not low <= value <= high:
                logger.error(f"Flow {name}={value} outside envelope {low}..{high}")
                raise OutOfRange(name, value, (low, high))

        if packets <= 0:
            logger.error(f"Flow packets={packets} is not positive")
            raise OutOfRange("packets", packets)

        for name, address in (("source_ip", source_ip), ("destination_ip", destination_ip)):
            try:
                ipaddress.IPv4Address(address)
            except ValueError:
                logger.error(f"Flow {name}={address!r} is not a valid IPv4 address")
                raise OutOfRange(name, address) from None
