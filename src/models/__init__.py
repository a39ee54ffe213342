"""Data models for the flow anomaly simulator."""

from src.models.network import (
    NodeType,
    NodeStatus,
    EdgeType,
    EdgeStatus,
    Protocol,
    AnomalyType,
    Severity,
    SEVERITY_ORDER,
    AlarmStatus,
    ActionType,
    ScenarioKind,
    ScenarioStatus,
    EventKind,
    TrendDirection,
    NodeMetrics,
    Node,
    Edge,
    NetworkTopology,
    Flow,
    AnomalyMetrics,
    Anomaly,
    AlarmAction,
    Alarm,
    AttackScenario,
    ThroughputStats,
    LatencyStats,
    TopTalker,
    DashboardMetrics,
    ProtocolStats,
    PortStats,
    TalkerStats,
    BandwidthUtilization,
    GeographicStats,
    TrendPoint,
    FlowAnalytics,
    SimulationEvent,
)

__all__ = [
    # Enums
    "NodeType",
    "NodeStatus",
    "EdgeType",
    "EdgeStatus",
    "Protocol",
    "AnomalyType",
    "Severity",
    "SEVERITY_ORDER",
    "AlarmStatus",
    "ActionType",
    "ScenarioKind",
    "ScenarioStatus",
    "EventKind",
    "TrendDirection",
    # Topology
    "NodeMetrics",
    "Node",
    "Edge",
    "NetworkTopology",
    # Flows, anomalies, alarms
    "Flow",
    "AnomalyMetrics",
    "Anomaly",
    "AlarmAction",
    "Alarm",
    "AttackScenario",
    # Dashboard
    "ThroughputStats",
    "LatencyStats",
    "TopTalker",
    "DashboardMetrics",
    "SimulationEvent",
    # Analytics
    "ProtocolStats",
    "PortStats",
    "TalkerStats",
    "BandwidthUtilization",
    "GeographicStats",
    "TrendPoint",
    "FlowAnalytics",
]
