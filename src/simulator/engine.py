"""
Simulation Engine

Per-session owner of every generator, the bounded histories, dashboard
metrics and subscribers. All mutation goes through this class.
"""

import logging
import random
from collections import deque
from typing import Callable, Optional, Union
from faker import Faker

from src.models.network import (
    Alarm,
    Anomaly,
    AttackScenario,
    DashboardMetrics,
    EventKind,
    Flow,
    FlowAnalytics,
    NetworkTopology,
    ScenarioKind,
    Severity,
    SimulationEvent,
    TopTalker,
)
from src.simulator.alarm_correlator import AlarmCorrelator
from src.simulator.analytics import FlowAnalyzer
from src.simulator.anomaly_classifier import AnomalyClassifier
from src.simulator.clock import CancellationToken, SimulationClock
from src.simulator.config import SimulationConfig
from src.simulator.errors import InvalidConfiguration
from src.simulator.flow_generator import FlowGenerator
from src.simulator.history import BoundedHistory
from src.simulator.network_sim import NetworkSimulator
from src.simulator.scenario import ScenarioOrchestrator

logger = logging.getLogger(__name__)


# Health points deducted per active alarm
HEALTH_PENALTY = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 5,
    Severity.CRITICAL: 10,
}

LATENCY_SAMPLES = 100
TOP_TALKERS = 5

Subscriber = Callable[[SimulationEvent], None]


class SimulationEngine:
    """
    One simulation session.

    The engine is not thread-safe: call it from the event loop thread only.
    Histories are exposed as newest-first tuples.

    Example:
        >>> engine = SimulationEngine(seed=42)
        >>> unsubscribe = engine.subscribe(print)
        >>> engine.start()
        >>> engine.generate_attack_scenario("192.168.1.100", 10)
        >>> ...
        >>> engine.stop()
    """

    def __init__(self, config: Optional[SimulationConfig] = None, seed: Optional[int] = None):
        """
        Initialize the engine.

        Args:
            config: Simulation configuration (validated here)
            seed: Seed overriding ``config.seed`` for reproducible runs

        Raises:
            InvalidConfiguration: If the configuration is inconsistent
        """
        self.config = (config or SimulationConfig()).validate()
        self.seed = seed if seed is not None else self.config.seed

        self.rng = random.Random(self.seed)
        self.fake = Faker()
        if self.seed is not None:
            self.fake.seed_instance(self.seed)

        self.network = NetworkSimulator(rng=self.rng, config=self.config.topology)
        self.flow_generator = FlowGenerator(rng=self.rng, fake=self.fake, config=self.config.flow)
        self.classifier = AnomalyClassifier(rng=self.rng, config=self.config.classifier)
        self.correlator = AlarmCorrelator()
        self.analyzer = FlowAnalyzer(rng=self.rng)

        self._token = CancellationToken()
        self.clock = SimulationClock(interval_seconds=self.config.clock.tick_interval_seconds)
        self.scenarios = ScenarioOrchestrator(
            flow_generator=self.flow_generator,
            classifier=self.classifier,
            correlator=self.correlator,
            on_unit=self._record,
            on_status=self._on_scenario_update,
            rng=self.rng,
            config=self.config.scenario,
            token=self._token,
        )

        capacity = self.config.clock.history_capacity
        self._flows: BoundedHistory[Flow] = BoundedHistory(capacity)
        self._anomalies: BoundedHistory[Anomaly] = BoundedHistory(capacity)
        self._alarms: BoundedHistory[Alarm] = BoundedHistory(capacity)

        self._metrics = self._initial_metrics()
        self._latency_samples: deque = deque(maxlen=LATENCY_SAMPLES)
        self._throughput_total = 0.0
        self._throughput_samples = 0
        self._talker_bytes: dict[str, list[int]] = {}

        self._subscribers: list[Subscriber] = []

        logger.info(f"Simulation engine initialized (seed={self.seed})")

    # =========================================================================
    # Generation
    # =========================================================================

    @property
    def topology(self) -> NetworkTopology:
        """Current topology (the default enterprise layout until regenerated)."""
        if self.network.topology is None:
            self.network.create_default_topology()
        return self.network.topology

    def generate_topology(self, **counts) -> NetworkTopology:
        """Generate a fresh topology. See :meth:`NetworkSimulator.generate_topology`."""
        return self.network.generate_topology(**counts)

    def generate_flow(self, anomalous: bool = False) -> Flow:
        """Synthesize a standalone flow without recording it."""
        return self.flow_generator.generate_flow(anomalous=anomalous)

    def generate_anomaly(self, flow: Flow) -> Anomaly:
        """Classify a flow without recording the result."""
        return self.classifier.generate_anomaly(flow)

    def generate_alarm(self, anomaly: Anomaly) -> Alarm:
        """Correlate an alarm without recording it."""
        return self.correlator.generate_alarm(anomaly)

    def generate_attack_scenario(
        self,
        target_ip: str,
        count: Optional[int] = None,
        kind: Union[ScenarioKind, str] = ScenarioKind.DDOS,
        stagger_ms: Optional[int] = None,
    ) -> AttackScenario:
        """
        Launch a staggered attack scenario on the running loop.

        Returns immediately; units are recorded as they fire.
        """
        return self.scenarios.generate_attack_scenario(target_ip, count=count, kind=kind, stagger_ms=stagger_ms)

    def generate_flow_analytics(self, flow_count: int = 1000) -> FlowAnalytics:
        """Analyze a fresh batch of normal flows."""
        if flow_count <= 0:
            raise InvalidConfiguration(f"flow_count must be positive, got {flow_count}")
        return self.analyzer.analyze(self.flow_generator.generate_batch(flow_count))

    def generate_dashboard_metrics(self) -> DashboardMetrics:
        """Dashboard snapshot with session counters and talkers from a small batch."""
        flows = self.flow_generator.generate_batch(10)
        return self.analyzer.dashboard_metrics(
            flows,
            total_flows=self._metrics.total_flows,
            anomalies_detected=self._metrics.anomalies_detected,
            active_alarms=self._active_alarm_count(),
            network_health=self._network_health(),
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start ticking. Must be called from a running event loop."""
        if self.clock.is_running():
            logger.warning("Simulation already running")
            return
        self.clock.start(self.tick, token=self._token.child())
        logger.info("Simulation started")

    def stop(self) -> None:
        """Stop the clock and cancel every outstanding scenario unit."""
        self.clock.stop()
        self._token.cancel()
        cancelled = self.scenarios.cancel_all()

        # Fresh session token so the engine can be restarted
        self._token = CancellationToken()
        self.scenarios.token = self._token
        logger.info(f"Simulation stopped ({cancelled} scenarios cancelled)")

    def is_running(self) -> bool:
        return self.clock.is_running()

    def tick(self) -> Flow:
        """
        Advance the simulation by one step.

        Returns:
            The flow generated this tick
        """
        anomalous = self.rng.random() < self.config.clock.anomaly_probability
        flow = self.flow_generator.generate_flow(anomalous=anomalous)

        anomaly = alarm = None
        if anomalous:
            anomaly = self.classifier.generate_anomaly(flow)
            alarm = self.correlator.generate_alarm(anomaly)

        self._record(flow, anomaly, alarm)
        logger.debug(f"Tick produced {flow.id}" + (f" with {anomaly.anomaly_type.value} anomaly" if anomaly else ""))
        return flow

    # =========================================================================
    # Recording
    # =========================================================================

    def _record(self, flow: Flow, anomaly: Optional[Anomaly], alarm: Optional[Alarm]) -> None:
        self._flows.push(flow)
        self._publish(EventKind.FLOW, flow)

        if anomaly is not None:
            self._anomalies.push(anomaly)
            self._metrics.anomalies_detected += 1
            self._publish(EventKind.ANOMALY, anomaly.model_copy(deep=True))
        if alarm is not None:
            self._alarms.push(alarm)
            self._publish(EventKind.ALARM, alarm.model_copy(deep=True))

        self._metrics.total_flows += 1
        self._track_talker(flow)
        self._nudge_metrics()
        self._publish(EventKind.METRICS, self.metrics)

    def _on_scenario_update(self, scenario: AttackScenario) -> None:
        self._publish(EventKind.SCENARIO, scenario.model_copy(deep=True))

    # =========================================================================
    # Metrics
    # =========================================================================

    def _initial_metrics(self) -> DashboardMetrics:
        clock = self.config.clock
        metrics = DashboardMetrics()
        throughput = sum(clock.throughput_bounds) / 2
        latency = sum(clock.latency_bounds) / 2
        metrics.throughput.current = metrics.throughput.average = metrics.throughput.peak = throughput
        metrics.latency.current = metrics.latency.average = metrics.latency.p95 = latency
        return metrics

    def _nudge_metrics(self) -> None:
        clock = self.config.clock
        m = self._metrics

        low, high = clock.throughput_bounds
        delta = self.rng.uniform(-clock.throughput_delta, clock.throughput_delta)
        m.throughput.current = round(min(high, max(low, m.throughput.current + delta)), 2)
        self._throughput_total += m.throughput.current
        self._throughput_samples += 1
        m.throughput.average = round(self._throughput_total / self._throughput_samples, 2)
        m.throughput.peak = max(m.throughput.peak, m.throughput.current)

        low, high = clock.latency_bounds
        delta = self.rng.uniform(-clock.latency_delta, clock.latency_delta)
        m.latency.current = round(min(high, max(low, m.latency.current + delta)), 2)
        self._latency_samples.append(m.latency.current)
        samples = sorted(self._latency_samples)
        m.latency.average = round(sum(samples) / len(samples), 2)
        m.latency.p95 = samples[min(len(samples) - 1, int(len(samples) * 0.95))]

        m.active_alarms = self._active_alarm_count()
        m.network_health = self._network_health()

    def _active_alarm_count(self) -> int:
        return sum(1 for alarm in self._alarms if alarm.is_active)

    def _network_health(self) -> int:
        penalty = sum(HEALTH_PENALTY[a.severity] for a in self._alarms if a.is_active)
        return max(0, 100 - penalty)

    def _track_talker(self, flow: Flow) -> None:
        stats = self._talker_bytes.setdefault(flow.source_ip, [0, 0])
        stats[0] += flow.bytes
        stats[1] += 1
        ranked = sorted(self._talker_bytes.items(), key=lambda item: item[1][0], reverse=True)
        self._metrics.top_talkers = [
            TopTalker(ip=ip, bytes=total, flows=count) for ip, (total, count) in ranked[:TOP_TALKERS]
        ]

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a callback for every simulation event.

        Returns:
            Callable that removes the subscription (safe to call twice)
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self, kind: EventKind, data) -> None:
        if not self._subscribers:
            return
        event = SimulationEvent(kind=kind, data=data)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Subscriber {callback!r} failed on {kind.value} event: {e}", exc_info=True)

    # =========================================================================
    # Alarm actions
    # =========================================================================

    def _require_alarm(self, alarm_id: str) -> Alarm:
        alarm = self._alarms.find(alarm_id)
        if alarm is None:
            raise KeyError(f"Alarm not found: {alarm_id}")
        return alarm

    def _after_update(self, alarm: Alarm) -> Alarm:
        self._metrics.active_alarms = self._active_alarm_count()
        self._metrics.network_health = self._network_health()
        self._publish(EventKind.ALARM_UPDATE, alarm.model_copy(deep=True))
        return alarm.model_copy(deep=True)

    def acknowledge_alarm(self, alarm_id: str, user: str, comment: Optional[str] = None) -> Alarm:
        return self._after_update(self.correlator.acknowledge(self._require_alarm(alarm_id), user, comment))

    def investigate_alarm(self, alarm_id: str, user: str, comment: Optional[str] = None) -> Alarm:
        return self._after_update(self.correlator.investigate(self._require_alarm(alarm_id), user, comment))

    def escalate_alarm(self, alarm_id: str, user: str, comment: Optional[str] = None) -> Alarm:
        return self._after_update(self.correlator.escalate(self._require_alarm(alarm_id), user, comment))

    def resolve_alarm(self, alarm_id: str, user: str, comment: Optional[str] = None) -> Alarm:
        return self._after_update(self.correlator.resolve(self._require_alarm(alarm_id), user, comment))

    def comment_alarm(self, alarm_id: str, user: str, text: str) -> Alarm:
        return self._after_update(self.correlator.comment(self._require_alarm(alarm_id), user, text))

    def assign_alarm(self, alarm_id: str, user: str, assignee: str) -> Alarm:
        return self._after_update(self.correlator.assign(self._require_alarm(alarm_id), user, assignee))

    # =========================================================================
    # Reads
    # =========================================================================

    @property
    def flows(self) -> tuple:
        return self._flows.snapshot()

    @property
    def anomalies(self) -> tuple:
        return tuple(a.model_copy(deep=True) for a in self._anomalies)

    @property
    def alarms(self) -> tuple:
        """Copies of the stored alarms; change them through the alarm actions."""
        return tuple(a.model_copy(deep=True) for a in self._alarms)

    @property
    def metrics(self) -> DashboardMetrics:
        """Copy of the running dashboard metrics."""
        return self._metrics.model_copy(deep=True)

    def get_alarm(self, alarm_id: str) -> Optional[Alarm]:
        alarm = self._alarms.find(alarm_id)
        return alarm.model_copy(deep=True) if alarm else None

    def get_anomaly(self, anomaly_id: str) -> Optional[Anomaly]:
        anomaly = self._anomalies.find(anomaly_id)
        return anomaly.model_copy(deep=True) if anomaly else None

    def get_status(self) -> dict:
        """Session summary for display."""
        return {
            "seed": self.seed,
            "running": self.is_running(),
            "clock": self.clock.get_status(),
            "flows": len(self._flows),
            "anomalies": len(self._anomalies),
            "alarms": len(self._alarms),
            "active_scenarios": len(self.scenarios.get_active_scenarios()),
            "subscribers": len(self._subscribers),
        }
