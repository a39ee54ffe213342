"""
Scenario Orchestrator

Drives scripted, time-staggered attack bursts against a target address.
"""

import asyncio
import ipaddress
import logging
import random
from datetime import timedelta
from typing import Callable, Optional, Union

from src.models.network import (
    Alarm,
    Anomaly,
    AnomalyType,
    AttackScenario,
    Flow,
    ScenarioKind,
    ScenarioStatus,
    Severity,
    utcnow,
)
from src.simulator.alarm_correlator import AlarmCorrelator
from src.simulator.anomaly_classifier import AnomalyClassifier
from src.simulator.clock import CancellationToken
from src.simulator.config import ScenarioConfig
from src.simulator.errors import InvalidConfiguration
from src.simulator.flow_generator import FlowGenerator

logger = logging.getLogger(__name__)


# Pre-defined attack scenarios
SCENARIO_PROFILES = {
    ScenarioKind.DDOS: {
        "name": "DDoS Attack Simulation",
        "dimension": AnomalyType.VOLUME,
        "severity": Severity.CRITICAL,
        "intensity": 8,
        "description": "Simulated DDoS attack targeting {target} with high volume traffic from multiple sources",
        "anomaly_description": "DDoS attack detected: Massive traffic volume to {target}",
        "alarm_title": "CRITICAL: DDoS Attack Detected",
    },
    ScenarioKind.PORT_SCAN: {
        "name": "Port Scan Detection",
        "dimension": AnomalyType.PATTERN,
        "severity": Severity.HIGH,
        "intensity": 6,
        "description": "Port scanning activity detected against {target}",
        "anomaly_description": "Port scan detected: service sweep against {target}",
        "alarm_title": "HIGH: Port Scan Detected",
    },
    ScenarioKind.DATA_EXFILTRATION: {
        "name": "Data Exfiltration Simulation",
        "dimension": AnomalyType.BEHAVIORAL,
        "severity": Severity.CRITICAL,
        "intensity": 7,
        "description": "Simulated long-lived outbound transfers to {target}",
        "anomaly_description": "Data exfiltration detected: sustained transfer to {target}",
        "alarm_title": "CRITICAL: Data Exfiltration Detected",
    },
    ScenarioKind.LATERAL_MOVEMENT: {
        "name": "Lateral Movement Simulation",
        "dimension": AnomalyType.PROTOCOL,
        "severity": Severity.HIGH,
        "intensity": 5,
        "description": "Simulated tunnelled east-west traffic toward {target}",
        "anomaly_description": "Lateral movement detected: tunnelled traffic to {target}",
        "alarm_title": "HIGH: Lateral Movement Detected",
    },
}


UnitCallback = Callable[[Flow, Anomaly, Alarm], None]
StatusCallback = Callable[[AttackScenario], None]


class ScenarioOrchestrator:
    """
    Launches attack scenarios as independently cancellable, staggered units.

    Unit ``i`` fires ``i * stagger_ms`` after launch. Each unit checks its
    scenario's cancellation token before emitting, so a cancelled scenario
    never emits again.

    Example:
        >>> orchestrator = ScenarioOrchestrator(flow_gen, classifier, correlator, on_unit=engine.record)
        >>> scenario = orchestrator.generate_attack_scenario("192.168.1.100", 10)
        >>> await orchestrator.wait(scenario.id)
    """

    def __init__(
        self,
        flow_generator: FlowGenerator,
        classifier: AnomalyClassifier,
        correlator: AlarmCorrelator,
        on_unit: UnitCallback,
        on_status: Optional[StatusCallback] = None,
        rng: Optional[random.Random] = None,
        config: Optional[ScenarioConfig] = None,
        token: Optional[CancellationToken] = None,
    ):
        self.flow_generator = flow_generator
        self.classifier = classifier
        self.correlator = correlator
        self.on_unit = on_unit
        self.on_status = on_status
        self.rng = rng or random.Random()
        self.config = config or ScenarioConfig()
        self.token = token or CancellationToken()

        self._scenarios: dict[str, AttackScenario] = {}
        self._tokens: dict[str, CancellationToken] = {}
        self._tasks: dict[str, set[asyncio.Task]] = {}

    def generate_attack_scenario(
        self,
        target_ip: str,
        count: Optional[int] = None,
        kind: Union[ScenarioKind, str] = ScenarioKind.DDOS,
        stagger_ms: Optional[int] = None,
    ) -> AttackScenario:
        """
        Launch a scenario on the running event loop and return immediately.

        Args:
            target_ip: Address every unit is aimed at
            count: Number of units (defaults to config)
            kind: Scenario kind
            stagger_ms: Spacing between units (defaults to config)

        Returns:
            AttackScenario tracking progress

        Raises:
            InvalidConfiguration: On an unknown kind, bad count/stagger or target
            RuntimeError: If no event loop is running
        """
        try:
            kind = ScenarioKind(kind)
        except ValueError:
            raise InvalidConfiguration(f"Unknown scenario kind: {kind}") from None

        try:
            ipaddress.IPv4Address(target_ip)
        except ValueError:
            raise InvalidConfiguration(f"Invalid target IP: {target_ip!r}") from None

        count = self.config.unit_count if count is None else count
        if not 0 < count <= self.config.max_units:
            raise InvalidConfiguration(f"Unit count must be within 1..{self.config.max_units}, got {count}")

        stagger_ms = self.config.stagger_ms if stagger_ms is None else stagger_ms
        if stagger_ms <= 0:
            raise InvalidConfiguration(f"Stagger must be positive, got {stagger_ms}")

        if self.token.cancelled:
            raise InvalidConfiguration("Session has been stopped")

        loop = asyncio.get_running_loop()
        profile = SCENARIO_PROFILES[kind]

        scenario = AttackScenario(
            name=profile["name"],
            kind=kind,
            target_ip=target_ip,
            unit_count=count,
            stagger_ms=stagger_ms,
            intensity=profile["intensity"],
            description=profile["description"].format(target=target_ip),
            started_at=utcnow(),
            status=ScenarioStatus.RUNNING,
        )
        token = self.token.child()
        self._scenarios[scenario.id] = scenario
        self._tokens[scenario.id] = token

        start = loop.time()
        tasks = set()
        for index in range(count):
            fire_at = start + index * stagger_ms / 1000
            task = loop.create_task(self._run_unit(scenario, index, fire_at, token))
            tasks.add(task)
        self._tasks[scenario.id] = tasks

        logger.info(
            f"Scenario {scenario.id} ({kind.value}) launched against {target_ip}: "
            f"{count} units every {stagger_ms}ms"
        )
        self._notify(scenario)
        return scenario

    async def _run_unit(
        self,
        scenario: AttackScenario,
        index: int,
        fire_at: float,
        token: CancellationToken,
    ) -> None:
        loop = asyncio.get_running_loop()
        delay = fire_at - loop.time()
        if delay > 0:
            await asyncio.sleep(delay)

        if token.cancelled:
            self.cancel(scenario.id)
            return

        timestamp = scenario.started_at + timedelta(milliseconds=index * scenario.stagger_ms)
        try:
            flow, anomaly, alarm = self.build_unit(scenario, timestamp)
            self.on_unit(flow, anomaly, alarm)
        except Exception as e:
            logger.error(f"Scenario {scenario.id} unit {index} failed: {e}", exc_info=True)
            scenario.failed += 1
        else:
            scenario.emitted += 1
            scenario.anomaly_ids.append(anomaly.id)

        if scenario.emitted + scenario.failed == scenario.unit_count:
            scenario.status = ScenarioStatus.COMPLETED
            logger.info(
                f"Scenario {scenario.id} completed ({scenario.emitted} emitted, {scenario.failed} failed)"
            )
            self._retire(scenario.id)
            self._notify(scenario)

    def build_unit(self, scenario: AttackScenario, timestamp) -> tuple[Flow, Anomaly, Alarm]:
        """Synthesize one flow/anomaly/alarm triple with the scenario's overrides."""
        profile = SCENARIO_PROFILES[scenario.kind]
        dimension = profile["dimension"]

        flow = self.flow_generator.generate_flow(
            anomalous=True,
            timestamp=timestamp,
            destination_ip=scenario.target_ip,
            forced_dimension=dimension,
            byte_range=self.config.ddos_bytes if scenario.kind == ScenarioKind.DDOS else None,
        )

        low, high = self.config.confidence_band
        classified = self.classifier.generate_anomaly(flow, timestamp=timestamp)
        anomaly = classified.model_copy(update={
            "anomaly_type": dimension,
            "severity": profile["severity"],
            "confidence": round(self.rng.uniform(low, high), 4),
            "description": profile["anomaly_description"].format(target=scenario.target_ip),
            "metadata": {**classified.metadata, "scenario_id": scenario.id, "scenario": scenario.kind.value},
        })

        alarm = self.correlator.generate_alarm(anomaly, timestamp=timestamp)
        alarm.title = profile["alarm_title"]
        alarm.tags.update({"scenario", scenario.kind.value})
        return flow, anomaly, alarm

    def _retire(self, scenario_id: str) -> None:
        """Release a finished scenario's tasks and token, then trim old scenarios."""
        self._tokens.pop(scenario_id, None)
        self._tasks.pop(scenario_id, None)

        finished = [sid for sid, s in self._scenarios.items() if s.status != ScenarioStatus.RUNNING]
        for sid in finished[:max(0, len(finished) - self.config.retention)]:
            del self._scenarios[sid]

    def _notify(self, scenario: AttackScenario) -> None:
        if self.on_status:
            self.on_status(scenario)

    def cancel(self, scenario_id: str) -> bool:
        """
        Cancel a scenario's outstanding units.

        Returns:
            True if the scenario was running and is now cancelled
        """
        scenario = self._scenarios.get(scenario_id)
        if scenario is None:
            return False

        if scenario.status != ScenarioStatus.RUNNING:
            return False

        self._tokens[scenario_id].cancel()
        for task in self._tasks[scenario_id]:
            task.cancel()

        scenario.status = ScenarioStatus.CANCELLED
        self._retire(scenario_id)
        logger.warning(f"Scenario {scenario_id} cancelled after {scenario.emitted}/{scenario.unit_count} units")
        self._notify(scenario)
        return True

    def cancel_all(self) -> int:
        """Cancel every running scenario. Returns the number cancelled."""
        return sum(1 for scenario_id in list(self._scenarios) if self.cancel(scenario_id))

    async def wait(self, scenario_id: str) -> Optional[AttackScenario]:
        """Wait until all units of a scenario have fired or been cancelled."""
        scenario = self._scenarios.get(scenario_id)
        tasks = self._tasks.get(scenario_id, set())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return scenario

    def get_scenario(self, scenario_id: str) -> Optional[AttackScenario]:
        """Get a scenario by ID."""
        return self._scenarios.get(scenario_id)

    def get_active_scenarios(self) -> list[AttackScenario]:
        """Scenarios that still have units to fire."""
        return [s for s in self._scenarios.values() if s.status == ScenarioStatus.RUNNING]

    def get_available_scenarios(self) -> dict[str, str]:
        """Available scenario kinds with their names."""
        return {kind.value: profile["name"] for kind, profile in SCENARIO_PROFILES.items()}
