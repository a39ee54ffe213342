"""
Network Topology Simulator

Creates and manages a simulated enterprise network topology.
"""

import logging
import random
from typing import Optional

from src.models.network import (
    Node,
    NodeType,
    NodeStatus,
    NodeMetrics,
    Edge,
    EdgeType,
    EdgeStatus,
    NetworkTopology,
)
from src.simulator.config import TopologyConfig
from src.simulator.errors import InvalidConfiguration

logger = logging.getLogger(__name__)


# Resource usage ranges by node type: (min, spread)
BASE_METRICS = {
    NodeType.SERVER: {"cpu": (60, 30), "memory": (70, 25), "connections": (50, 100)},
    NodeType.ROUTER: {"cpu": (30, 20), "memory": (40, 20), "connections": (100, 150)},
    NodeType.SWITCH: {"cpu": (15, 15), "memory": (25, 20), "connections": (30, 70)},
    NodeType.FIREWALL: {"cpu": (40, 30), "memory": (50, 30), "connections": (150, 100)},
    NodeType.OTHER: {"cpu": (20, 60), "memory": (30, 50), "connections": (5, 20)},
}

# Generated topology tiers, top to bottom: (type, id prefix, hostname prefix, second octet)
TIERS = [
    (NodeType.FIREWALL, "firewall", "fw", 0),
    (NodeType.ROUTER, "router", "rtr", 1),
    (NodeType.SWITCH, "switch", "sw", 2),
    (NodeType.SERVER, "server", "srv", 3),
    (NodeType.OTHER, "host", "host", 4),
]

# Preferred uplink tiers, nearest first
PARENT_TYPES = {
    NodeType.FIREWALL: [],
    NodeType.ROUTER: [NodeType.FIREWALL],
    NodeType.SWITCH: [NodeType.ROUTER, NodeType.FIREWALL],
    NodeType.SERVER: [NodeType.SWITCH, NodeType.ROUTER, NodeType.FIREWALL],
    NodeType.OTHER: [NodeType.SWITCH, NodeType.ROUTER, NodeType.FIREWALL],
}

# Capacity in Mbps of an edge by the type of its lower endpoint
TIER_BANDWIDTH = {
    NodeType.FIREWALL: 10000,
    NodeType.ROUTER: 10000,
    NodeType.SWITCH: 1000,
    NodeType.SERVER: 1000,
    NodeType.OTHER: 100,
}

# Enterprise layout: (id, ip, hostname, type, status, role)
DEFAULT_NODES = [
    # Core infrastructure
    ("core-router-01", "10.0.0.1", "core-rtr-01.corp.local", NodeType.ROUTER, NodeStatus.NORMAL, "core"),
    ("core-switch-01", "10.0.0.10", "core-sw-01.corp.local", NodeType.SWITCH, NodeStatus.NORMAL, "core"),
    ("firewall-01", "10.0.0.254", "fw-01.corp.local", NodeType.FIREWALL, NodeStatus.NORMAL, "edge"),
    # DMZ servers
    ("web-server-01", "192.168.100.10", "web-01.dmz.local", NodeType.SERVER, NodeStatus.NORMAL, "dmz"),
    ("mail-server-01", "192.168.100.20", "mail-01.dmz.local", NodeType.SERVER, NodeStatus.WARNING, "dmz"),
    ("dns-server-01", "192.168.100.30", "dns-01.dmz.local", NodeType.SERVER, NodeStatus.NORMAL, "dmz"),
    # Internal servers
    ("db-server-01", "10.1.0.10", "db-01.internal.local", NodeType.SERVER, NodeStatus.CRITICAL, "internal"),
    ("app-server-01", "10.1.0.20", "app-01.internal.local", NodeType.SERVER, NodeStatus.NORMAL, "internal"),
    ("file-server-01", "10.1.0.30", "file-01.internal.local", NodeType.SERVER, NodeStatus.NORMAL, "internal"),
    # Department switches
    ("hr-switch-01", "10.2.1.1", "hr-sw-01.corp.local", NodeType.SWITCH, NodeStatus.NORMAL, "access"),
    ("it-switch-01", "10.2.2.1", "it-sw-01.corp.local", NodeType.SWITCH, NodeStatus.NORMAL, "access"),
    ("finance-switch-01", "10.2.3.1", "fin-sw-01.corp.local", NodeType.SWITCH, NodeStatus.WARNING, "access"),
    # Workstations
    ("hr-ws-01", "10.2.1.100", "hr-ws-01.corp.local", NodeType.OTHER, NodeStatus.NORMAL, "workstation"),
    ("hr-ws-02", "10.2.1.101", "hr-ws-02.corp.local", NodeType.OTHER, NodeStatus.NORMAL, "workstation"),
    ("it-ws-01", "10.2.2.100", "it-ws-01.corp.local", NodeType.OTHER, NodeStatus.NORMAL, "workstation"),
    ("it-ws-02", "10.2.2.101", "it-ws-02.corp.local", NodeType.OTHER, NodeStatus.WARNING, "workstation"),
    ("finance-ws-01", "10.2.3.100", "fin-ws-01.corp.local", NodeType.OTHER, NodeStatus.NORMAL, "workstation"),
    ("finance-ws-02", "10.2.3.101", "fin-ws-02.corp.local", NodeType.OTHER, NodeStatus.CRITICAL, "workstation"),
    # IoT and edge devices
    ("iot-sensor-01", "172.16.1.10", "temp-sensor-01", NodeType.OTHER, NodeStatus.NORMAL, "iot"),
    ("iot-camera-01", "172.16.1.20", "security-cam-01", NodeType.OTHER, NodeStatus.NORMAL, "iot"),
    ("printer-01", "172.16.2.10", "printer-01.corp.local", NodeType.OTHER, NodeStatus.NORMAL, "peripheral"),
    # Guest network
    ("guest-ap-01", "192.168.200.1", "guest-ap-01", NodeType.ROUTER, NodeStatus.NORMAL, "guest"),
    ("guest-device-01", "192.168.200.100", "guest-laptop-01", NodeType.OTHER, NodeStatus.NORMAL, "guest"),
    # Backup and storage
    ("backup-server-01", "10.1.1.10", "backup-01.internal.local", NodeType.SERVER, NodeStatus.NORMAL, "storage"),
    ("nas-01", "10.1.1.20", "nas-01.internal.local", NodeType.SERVER, NodeStatus.NORMAL, "storage"),
]

# (source, target, bandwidth Mbps, utilization %)
DEFAULT_EDGES = [
    ("firewall-01", "core-router-01", 10000, 45.2),
    ("core-router-01", "core-switch-01", 10000, 67.8),
    ("firewall-01", "web-server-01", 1000, 78.5),
    ("firewall-01", "mail-server-01", 1000, 89.3),
    ("firewall-01", "dns-server-01", 1000, 34.2),
    ("core-switch-01", "db-server-01", 1000, 95.7),
    ("core-switch-01", "app-server-01", 1000, 67.4),
    ("core-switch-01", "file-server-01", 1000, 45.8),
    ("core-switch-01", "hr-switch-01", 1000, 23.7),
    ("core-switch-01", "it-switch-01", 1000, 31.4),
    ("core-switch-01", "finance-switch-01", 1000, 89.6),
    ("hr-switch-01", "hr-ws-01", 100, 45.2),
    ("hr-switch-01", "hr-ws-02", 100, 32.1),
    ("it-switch-01", "it-ws-01", 100, 78.9),
    ("it-switch-01", "it-ws-02", 100, 91.7),
    ("finance-switch-01", "finance-ws-01", 100, 56.3),
    ("finance-switch-01", "finance-ws-02", 100, 98.4),
    ("core-router-01", "iot-sensor-01", 10, 5.2),
    ("core-router-01", "iot-camera-01", 100, 23.7),
    ("hr-switch-01", "printer-01", 100, 8.9),
    ("firewall-01", "guest-ap-01", 100, 34.5),
    ("guest-ap-01", "guest-device-01", 100, 67.2),
    ("core-switch-01", "backup-server-01", 1000, 23.4),
    ("core-switch-01", "nas-01", 1000, 12.8),
    ("db-server-01", "app-server-01", 1000, 45.6),
    ("app-server-01", "file-server-01", 1000, 34.7),
    ("backup-server-01", "nas-01", 1000, 67.8),
]


class NetworkSimulator:
    """
    Simulates a network topology with nodes and edges.

    Example:
        >>> sim = NetworkSimulator(rng=random.Random(7))
        >>> topology = sim.generate_topology(num_routers=2, num_switches=3)
        >>> print(f"Created {len(topology.nodes)} nodes")
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        config: Optional[TopologyConfig] = None,
    ):
        self.rng = rng or random.Random()
        self.config = config or TopologyConfig()
        self.topology: Optional[NetworkTopology] = None

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate_topology(
        self,
        num_firewalls: int = 1,
        num_routers: int = 2,
        num_switches: int = 3,
        num_servers: int = 4,
        num_others: int = 6,
    ) -> NetworkTopology:
        """
        Generate a hierarchical topology with the requested node counts.

        The shape depends only on the counts: every node links to the
        nearest non-empty tier above it (round-robin), and routers are
        chained for redundancy. Addresses, capacities, utilization and
        node health are drawn at random.

        Args:
            num_firewalls: Edge firewalls
            num_routers: Core routers
            num_switches: Distribution/access switches
            num_servers: Servers
            num_others: Workstations, IoT and other endpoints

        Returns:
            NetworkTopology object

        Raises:
            InvalidConfiguration: If a count is negative or all are zero
        """
        counts = {
            NodeType.FIREWALL: num_firewalls,
            NodeType.ROUTER: num_routers,
            NodeType.SWITCH: num_switches,
            NodeType.SERVER: num_servers,
            NodeType.OTHER: num_others,
        }
        for node_type, count in counts.items():
            if count < 0:
                raise InvalidConfiguration(f"Node count for {node_type.value} must not be negative, got {count}")
        if sum(counts.values()) == 0:
            raise InvalidConfiguration("Topology must contain at least one node")

        nodes: dict[str, Node] = {}
        tiers: list[list[Node]] = []

        for node_type, id_prefix, host_prefix, octet in TIERS:
            count = counts[node_type]
            tier = []
            for index, host in enumerate(self._allocate_hosts(count), start=1):
                node = self._create_node(
                    node_id=f"{id_prefix}-{index:02d}",
                    ip_address=f"10.{octet}.{host // 254}.{host % 254 + 1}",
                    name=f"{host_prefix}-{index:02d}.corp.local",
                    node_type=node_type,
                    status=self._draw_status(),
                )
                nodes[node.id] = node
                tier.append(node)
            tiers.append(tier)

        by_type = {tier_spec[0]: tier for tier_spec, tier in zip(TIERS, tiers)}

        edges: list[Edge] = []
        for depth, tier in enumerate(tiers):
            if not tier:
                continue
            node_type = tier[0].type
            parents = next((by_type[t] for t in PARENT_TYPES[node_type] if by_type[t]), None)
            if parents is None:
                parents = next((t for t in reversed(tiers[:depth]) if t), [])
            for index, node in enumerate(tier):
                if parents:
                    parent = parents[index % len(parents)]
                    edges.append(self._create_edge(parent, node, len(edges)))
                if node.type == NodeType.ROUTER and index > 0:
                    edges.append(self._create_edge(tier[index - 1], node, len(edges)))
                elif not parents and index > 0:
                    # Top tier without routers: chain so the graph stays connected
                    edges.append(self._create_edge(tier[index - 1], node, len(edges)))

        self.topology = NetworkTopology(
            name="generated-network",
            nodes=nodes,
            edges=edges,
            metadata={
                "node_count": len(nodes),
                "edge_count": len(edges),
                "counts": {t.value: c for t, c in counts.items()},
            },
        )
        logger.info(f"Generated topology with {len(nodes)} nodes and {len(edges)} edges")
        return self.topology

    def create_default_topology(self) -> NetworkTopology:
        """
        Create the reference enterprise topology (25 nodes, 27 edges).

        Node identities, roles and health are fixed; resource metrics and
        link latency are randomized.
        """
        nodes = {}
        for node_id, ip, hostname, node_type, status, role in DEFAULT_NODES:
            nodes[node_id] = self._create_node(node_id, ip, hostname, node_type, status, role)

        edges = []
        for index, (source, target, bandwidth, utilization) in enumerate(DEFAULT_EDGES, start=1):
            if utilization > self.config.degraded_utilization:
                status = EdgeStatus.DEGRADED
            else:
                status = EdgeStatus.ACTIVE
            edges.append(Edge(
                id=f"edge-{index}",
                source_node_id=source,
                target_node_id=target,
                edge_type=EdgeType.PHYSICAL,
                bandwidth_mbps=bandwidth,
                utilization=utilization,
                latency_ms=round(self.rng.uniform(1, 11), 2),
                status=status,
            ))

        self.topology = NetworkTopology(
            name="enterprise-network-default",
            nodes=nodes,
            edges=edges,
            metadata={
                "description": "Reference enterprise network for simulation",
                "node_count": len(nodes),
                "edge_count": len(edges),
            },
        )
        return self.topology

    def _allocate_hosts(self, count: int) -> list[int]:
        """Pick distinct host numbers within a /16."""
        if count > 254 * 254:
            raise InvalidConfiguration(f"Cannot address {count} nodes in one tier")
        return sorted(self.rng.sample(range(254 * 254), count))

    def _draw_status(self) -> NodeStatus:
        weights = self.config.status_weights
        return self.rng.choices(list(weights), weights=list(weights.values()))[0]

    def _create_node(
        self,
        node_id: str,
        ip_address: str,
        name: str,
        node_type: NodeType,
        status: NodeStatus,
        role: str = "",
    ) -> Node:
        """Create a node whose resource metrics agree with its status."""
        base = BASE_METRICS[node_type]
        cpu = base["cpu"][0] + self.rng.random() * base["cpu"][1]
        memory = base["memory"][0] + self.rng.random() * base["memory"][1]
        connections = base["connections"][0] + self.rng.random() * base["connections"][1]

        if status == NodeStatus.CRITICAL:
            cpu = min(95 + self.rng.random() * 5, 100)
            memory = min(90 + self.rng.random() * 10, 100)
        elif status == NodeStatus.WARNING:
            cpu = min(80 + self.rng.random() * 15, 95)
            memory = min(75 + self.rng.random() * 20, 90)

        return Node(
            id=node_id,
            name=name,
            type=node_type,
            ip_address=ip_address,
            status=status,
            role=role or node_type.value,
            metrics=NodeMetrics(
                cpu=round(min(cpu, 100), 2),
                memory=round(min(memory, 100), 2),
                bandwidth=round(self.rng.random() * 1000, 2),
                connections=int(connections),
            ),
        )

    def _create_edge(self, source: Node, target: Node, index: int) -> Edge:
        utilization = round(self.rng.uniform(5, 95), 1)
        if self.rng.random() < self.config.edge_down_probability:
            status = EdgeStatus.DOWN
        elif utilization > self.config.degraded_utilization:
            status = EdgeStatus.DEGRADED
        else:
            status = EdgeStatus.ACTIVE

        return Edge(
            id=f"edge-{index + 1}",
            source_node_id=source.id,
            target_node_id=target.id,
            edge_type=EdgeType.PHYSICAL,
            bandwidth_mbps=TIER_BANDWIDTH[target.type],
            utilization=utilization,
            latency_ms=round(self.rng.uniform(1, 11), 2),
            status=status,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_node(self, node_id: str) -> Optional[Node]:
        """Get a node by ID."""
        if self.topology is None:
            return None
        return self.topology.get_node(node_id)

    def get_connected_nodes(self, node_id: str) -> list[Node]:
        """Get all nodes connected to the given node."""
        if self.topology is None:
            return []
        return self.topology.get_connected_nodes(node_id)

    def get_all_nodes(self) -> list[Node]:
        """Get all nodes in the topology."""
        if self.topology is None:
            return []
        return self.topology.get_all_nodes()

    def get_nodes_by_type(self, node_type: NodeType) -> list[Node]:
        """Get all nodes of a specific type."""
        return [n for n in self.get_all_nodes() if n.type == node_type]

    def update_node_status(self, node_id: str, status: NodeStatus) -> bool:
        """Update the status of a node."""
        if self.topology is None:
            return False
        node = self.topology.get_node(node_id)
        if node:
            node.status = status
            return True
        return False

    def get_topology_summary(self) -> dict:
        """Get a summary of the topology."""
        if self.topology is None:
            return {}

        type_counts = {}
        for node in self.get_all_nodes():
            type_name = node.type.value
            type_counts[type_name] = type_counts.get(type_name, 0) + 1

        status_counts = {}
        for node in self.get_all_nodes():
            status_counts[node.status.value] = status_counts.get(node.status.value, 0) + 1

        return {
            "name": self.topology.name,
            "total_nodes": len(self.topology.nodes),
            "total_edges": len(self.topology.edges),
            "nodes_by_type": type_counts,
            "nodes_by_status": status_counts,
            "last_updated": self.topology.last_updated.isoformat(),
        }
