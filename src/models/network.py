"""
Network flow data models using Pydantic for type safety and validation.
"""

from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
import uuid


def utcnow() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def short_id(prefix: str) -> str:
    """Build a short prefixed identifier, e.g. ``flow-1a2b3c4d``."""
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


# ============================================================================
# Enums
# ============================================================================

class NodeType(str, Enum):
    """Types of network nodes."""
    SERVER = "server"
    ROUTER = "router"
    SWITCH = "switch"
    FIREWALL = "firewall"
    OTHER = "other"


class NodeStatus(str, Enum):
    """Health status of a network node."""
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


class EdgeType(str, Enum):
    """Kind of connection between two nodes."""
    PHYSICAL = "physical"
    LOGICAL = "logical"


class EdgeStatus(str, Enum):
    """Operational status of an edge."""
    ACTIVE = "active"
    DEGRADED = "degraded"
    DOWN = "down"


class Protocol(str, Enum):
    """Transport protocols carried by a flow."""
    TCP = "TCP"
    UDP = "UDP"
    ICMP = "ICMP"
    GRE = "GRE"


class AnomalyType(str, Enum):
    """Flow dimension that deviates most from expected behaviour."""
    VOLUME = "volume"
    PATTERN = "pattern"
    PROTOCOL = "protocol"
    BEHAVIORAL = "behavioral"


class Severity(str, Enum):
    """Ordered severity scale shared by anomalies and alarms."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return SEVERITY_ORDER.index(self)

    def raised(self) -> "Severity":
        """Next severity step, capped at critical."""
        return SEVERITY_ORDER[min(self.rank + 1, len(SEVERITY_ORDER) - 1)]


SEVERITY_ORDER = [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]


class AlarmStatus(str, Enum):
    """Alarm lifecycle states."""
    OPEN = "open"
    ACKNOWLEDGED = "acknowledged"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"


class ActionType(str, Enum):
    """Operator actions recorded on an alarm."""
    ACKNOWLEDGE = "acknowledge"
    INVESTIGATE = "investigate"
    ESCALATE = "escalate"
    RESOLVE = "resolve"
    COMMENT = "comment"
    ASSIGN = "assign"


class ScenarioKind(str, Enum):
    """Scripted attack scenarios."""
    DDOS = "ddos"
    PORT_SCAN = "port_scan"
    DATA_EXFILTRATION = "data_exfiltration"
    LATERAL_MOVEMENT = "lateral_movement"


class ScenarioStatus(str, Enum):
    """Progress of a scripted scenario."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class EventKind(str, Enum):
    """Kinds of events delivered to engine subscribers."""
    FLOW = "flow"
    ANOMALY = "anomaly"
    ALARM = "alarm"
    ALARM_UPDATE = "alarm_update"
    METRICS = "metrics"
    SCENARIO = "scenario"


class TrendDirection(str, Enum):
    """Direction of recent bandwidth relative to the average."""
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


# ============================================================================
# Topology Models
# ============================================================================

class NodeMetrics(BaseModel):
    """Point-in-time resource usage of a node."""

    cpu: float = Field(default=0.0, description="CPU utilization (%)")
    memory: float = Field(default=0.0, description="Memory utilization (%)")
    bandwidth: float = Field(default=0.0, description="Bandwidth (Mbps)")
    connections: int = Field(default=0, description="Open connections")


class Node(BaseModel):
    """Represents a network node (router, switch, server, etc.)."""

    id: str = Field(..., description="Unique identifier for the node")
    name: str = Field(..., description="Hostname")
    type: NodeType = Field(..., description="Type of network device")
    ip_address: str = Field(..., description="Primary IP address")
    status: NodeStatus = Field(default=NodeStatus.NORMAL, description="Current status")
    role: str = Field(default="", description="Functional role, e.g. 'dmz', 'workstation'")
    metrics: NodeMetrics = Field(default_factory=NodeMetrics)
    metadata: dict[str, Any] = Field(default_factory=dict, description="Additional metadata")
    last_seen: datetime = Field(default_factory=utcnow)

    def __hash__(self):
        return hash(self.id)


class Edge(BaseModel):
    """Represents a connection between two network nodes."""

    id: str = Field(default_factory=lambda: short_id("edge"))
    source_node_id: str = Field(..., description="Source node ID")
    target_node_id: str = Field(..., description="Target node ID")
    edge_type: EdgeType = Field(default=EdgeType.PHYSICAL)
    bandwidth_mbps: int = Field(default=1000, description="Link capacity in Mbps")
    utilization: float = Field(default=0.0, ge=0, le=100, description="Utilization (%)")
    latency_ms: float = Field(default=1.0, description="Link latency in milliseconds")
    status: EdgeStatus = Field(default=EdgeStatus.ACTIVE)


class NetworkTopology(BaseModel):
    """Represents the entire network topology."""

    id: str = Field(default_factory=lambda: short_id("topology"))
    name: str = Field(default="enterprise-network", description="Topology name")
    nodes: dict[str, Node] = Field(default_factory=dict, description="All nodes by ID")
    edges: list[Edge] = Field(default_factory=list, description="All edges")
    last_updated: datetime = Field(default_factory=utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def get_node(self, node_id: str) -> Optional[Node]:
        """Get a node by ID."""
        return self.nodes.get(node_id)

    def get_connected_nodes(self, node_id: str) -> list[Node]:
        """Get all nodes connected to the given node."""
        connected_ids = set()
        for edge in self.edges:
            if edge.source_node_id == node_id:
                connected_ids.add(edge.target_node_id)
            elif edge.target_node_id == node_id:
                connected_ids.add(edge.source_node_id)
        return [self.nodes[nid] for nid in connected_ids if nid in self.nodes]

    def get_all_nodes(self) -> list[Node]:
        """Get all nodes in the topology."""
        return list(self.nodes.values())


# ============================================================================
# Flow Models
# ============================================================================

class Flow(BaseModel):
    """A single network conversation record. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: short_id("flow"))
    source_ip: str = Field(..., description="Source IPv4 address")
    destination_ip: str = Field(..., description="Destination IPv4 address")
    source_port: int = Field(..., ge=0, le=65535)
    destination_port: int = Field(..., ge=0, le=65535)
    protocol: Protocol = Field(...)
    bytes: int = Field(..., gt=0, description="Bytes transferred")
    packets: int = Field(..., gt=0, description="Packets transferred")
    duration_ms: int = Field(..., gt=0, description="Flow duration in milliseconds")
    distinct_ports: int = Field(default=1, ge=1, description="Destination port fan-out")
    flags: tuple[str, ...] = Field(default=())
    timestamp: datetime = Field(default_factory=utcnow)
    is_anomalous: bool = Field(default=False, description="Generated from the anomalous envelope")
    metadata: Mapping[str, Any] = Field(default_factory=dict, validate_default=True)

    @field_validator("metadata", mode="after")
    @classmethod
    def _freeze_metadata(cls, value: Mapping[str, Any]) -> Mapping[str, Any]:
        return MappingProxyType(dict(value))

    @field_serializer("metadata")
    def _dump_metadata(self, value: Mapping[str, Any]) -> dict[str, Any]:
        return dict(value)


# ============================================================================
# Anomaly Models
# ============================================================================

class AnomalyMetrics(BaseModel):
    """Measurement behind an anomaly verdict."""

    expected_value: float = Field(..., description="Upper bound of the normal envelope")
    actual_value: float = Field(..., description="Measured value")
    threshold: float = Field(..., description="Anomaly threshold")
    deviation: float = Field(..., description="actual / threshold")


class Anomaly(BaseModel):
    """A verdict that a flow deviates from expected behaviour."""

    id: str = Field(default_factory=lambda: short_id("anomaly"))
    flow_id: str = Field(..., description="Originating flow ID")
    anomaly_type: AnomalyType = Field(..., description="Dimension with the largest deviation")
    severity: Severity = Field(default=Severity.LOW)
    confidence: float = Field(..., ge=0.0, le=1.0)
    description: str = Field(default="", description="Human-readable description")
    detected_at: datetime = Field(default_factory=utcnow)
    source_ip: str = Field(...)
    destination_ip: str = Field(...)
    metrics: AnomalyMetrics
    scores: dict[AnomalyType, float] = Field(default_factory=dict, description="Deviation per dimension")
    metadata: dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Alarm Models
# ============================================================================

class AlarmAction(BaseModel):
    """One entry in an alarm's audit trail."""

    id: str = Field(default_factory=lambda: short_id("action"))
    action_type: ActionType
    user: str
    timestamp: datetime = Field(default_factory=utcnow)
    comment: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class Alarm(BaseModel):
    """An operator-facing incident derived from one anomaly."""

    id: str = Field(default_factory=lambda: short_id("alarm"))
    anomaly_id: str = Field(..., description="Originating anomaly ID")
    title: str
    description: str = ""
    severity: Severity
    status: AlarmStatus = Field(default=AlarmStatus.OPEN)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    assigned_to: Optional[str] = None
    tags: set[str] = Field(default_factory=set)
    actions: list[AlarmAction] = Field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status != AlarmStatus.RESOLVED


# ============================================================================
# Scenario Models
# ============================================================================

class AttackScenario(BaseModel):
    """A scripted, time-staggered burst of anomalous flows."""

    id: str = Field(default_factory=lambda: f"attack-{uuid.uuid4().hex[:10]}")
    name: str
    kind: ScenarioKind
    target_ip: str
    unit_count: int = Field(..., gt=0)
    stagger_ms: int = Field(..., gt=0)
    intensity: int = Field(default=8, ge=1, le=10)
    description: str = ""
    started_at: datetime = Field(default_factory=utcnow)
    status: ScenarioStatus = Field(default=ScenarioStatus.PENDING)
    emitted: int = 0
    failed: int = 0
    anomaly_ids: list[str] = Field(default_factory=list)


# ============================================================================
# Dashboard Models
# ============================================================================

class ThroughputStats(BaseModel):
    current: float = 0.0
    average: float = 0.0
    peak: float = 0.0


class LatencyStats(BaseModel):
    current: float = 0.0
    average: float = 0.0
    p95: float = 0.0


class TopTalker(BaseModel):
    ip: str
    bytes: int
    flows: int


class DashboardMetrics(BaseModel):
    """Aggregate counters the dashboard header renders."""

    total_flows: int = 0
    anomalies_detected: int = 0
    active_alarms: int = 0
    network_health: int = Field(default=100, ge=0, le=100)
    throughput: ThroughputStats = Field(default_factory=ThroughputStats)
    latency: LatencyStats = Field(default_factory=LatencyStats)
    top_talkers: list[TopTalker] = Field(default_factory=list)


# ============================================================================
# Analytics Models
# ============================================================================

class ProtocolStats(BaseModel):
    protocol: Protocol
    flows: int
    bytes: int
    packets: int
    percentage: float = Field(..., description="Share of total bytes")


class PortStats(BaseModel):
    port: int
    service: str
    flows: int
    bytes: int
    percentage: float


class TalkerStats(BaseModel):
    """Per-address traffic, split by direction."""

    ip: str
    hostname: str
    location: str
    inbound_bytes: int = 0
    outbound_bytes: int = 0
    flows: int = 0
    percentage: float = 0.0

    @property
    def total_bytes(self) -> int:
        return self.inbound_bytes + self.outbound_bytes


class BandwidthUtilization(BaseModel):
    current: float
    average: float
    peak: float
    utilization: float = Field(..., ge=0.0, le=100.0)
    capacity: float
    trend: TrendDirection


class GeographicStats(BaseModel):
    """Traffic attributed to the country of the remote address."""

    country: str
    region: str
    coordinates: tuple[float, float] = Field(..., description="(latitude, longitude)")
    flows: int
    bytes: int
    percentage: float = Field(..., description="Share of geolocated bytes")


class TrendPoint(BaseModel):
    timestamp: datetime
    value: int
    label: str


class FlowAnalytics(BaseModel):
    """Aggregate view over a batch of flows."""

    total_flows: int
    total_bytes: int
    total_packets: int
    average_flow_duration: float
    top_protocols: list[ProtocolStats] = Field(default_factory=list)
    top_ports: list[PortStats] = Field(default_factory=list)
    top_talkers: list[TalkerStats] = Field(default_factory=list)
    bandwidth: BandwidthUtilization
    flow_trends: list[TrendPoint] = Field(default_factory=list)
    geographic_distribution: list[GeographicStats] = Field(default_factory=list)


class SimulationEvent(BaseModel):
    """Envelope delivered to engine subscribers."""

    kind: EventKind
    data: Any
    timestamp: datetime = Field(default_factory=utcnow)
