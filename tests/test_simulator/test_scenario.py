"""Tests for the scenario orchestrator."""

import asyncio
from datetime import timedelta

import pytest

from src.simulator.clock import CancellationToken
from src.simulator.config import ScenarioConfig
from src.simulator.errors import InvalidConfiguration
from src.simulator.scenario import ScenarioOrchestrator, SCENARIO_PROFILES
from src.models.network import AnomalyType, ScenarioKind, ScenarioStatus, Severity

TARGET = "192.168.1.100"


@pytest.fixture
def emitted():
    """Units recorded by the orchestrator."""
    return []


@pytest.fixture
def statuses():
    """Scenario status notifications."""
    return []


@pytest.fixture
def orchestrator(flow_generator, classifier, correlator, rng, emitted, statuses):
    """Create an orchestrator with a short stagger."""
    return ScenarioOrchestrator(
        flow_generator=flow_generator,
        classifier=classifier,
        correlator=correlator,
        on_unit=lambda flow, anomaly, alarm: emitted.append((flow, anomaly, alarm)),
        on_status=lambda scenario: statuses.append(scenario.status),
        rng=rng,
        config=ScenarioConfig(stagger_ms=10, unit_count=10),
    )


class TestScenarioValidation:
    """Test cases for scenario parameter validation."""

    def test_unknown_kind(self, orchestrator):
        """Test an unknown scenario kind is rejected."""
        with pytest.raises(InvalidConfiguration):
            orchestrator.generate_attack_scenario(TARGET, 5, kind="smurf")

    @pytest.mark.parametrize("count", [0, -3, 10_000])
    def test_bad_count(self, orchestrator, count):
        """Test unit counts outside the allowed range are rejected."""
        with pytest.raises(InvalidConfiguration):
            orchestrator.generate_attack_scenario(TARGET, count)

    @pytest.mark.parametrize("target", ["999.1.1.1", "example.com", ""])
    def test_bad_target(self, orchestrator, target):
        """Test invalid target addresses are rejected."""
        with pytest.raises(InvalidConfiguration):
            orchestrator.generate_attack_scenario(target, 5)

    def test_bad_stagger(self, orchestrator):
        """Test a non-positive stagger is rejected."""
        with pytest.raises(InvalidConfiguration):
            orchestrator.generate_attack_scenario(TARGET, 5, stagger_ms=0)

    def test_requires_running_loop(self, orchestrator):
        """Test launching outside an event loop fails before scheduling."""
        with pytest.raises(RuntimeError):
            orchestrator.generate_attack_scenario(TARGET, 5)

        assert orchestrator.get_active_scenarios() == []

    def test_available_scenarios(self, orchestrator):
        """Test every kind has a profile."""
        available = orchestrator.get_available_scenarios()

        assert set(available) == {k.value for k in ScenarioKind}
        assert set(SCENARIO_PROFILES) == set(ScenarioKind)


class TestDdosScenario:
    """Test cases for the DDoS scenario."""

    @pytest.mark.asyncio
    async def test_ddos_emits_all_units(self, orchestrator, emitted):
        """Test a DDoS burst produces exactly the requested anomalies."""
        scenario = orchestrator.generate_attack_scenario(TARGET, 10)
        assert scenario.status == ScenarioStatus.RUNNING

        await orchestrator.wait(scenario.id)

        assert len(emitted) == 10
        assert scenario.emitted == 10
        assert scenario.status == ScenarioStatus.COMPLETED
        assert scenario.anomaly_ids == [anomaly.id for _, anomaly, _ in emitted]

    @pytest.mark.asyncio
    async def test_ddos_overrides(self, orchestrator, emitted):
        """Test DDoS anomalies and alarms carry the scenario overrides."""
        scenario = orchestrator.generate_attack_scenario(TARGET, 10)
        await orchestrator.wait(scenario.id)

        for flow, anomaly, alarm in emitted:
            assert flow.destination_ip == TARGET
            assert 5_000_000 <= flow.bytes <= 10_000_000
            assert anomaly.anomaly_type == AnomalyType.VOLUME
            assert anomaly.severity == Severity.CRITICAL
            assert 0.95 <= anomaly.confidence <= 1.0
            assert anomaly.description == f"DDoS attack detected: Massive traffic volume to {TARGET}"
            assert anomaly.metadata["scenario_id"] == scenario.id
            assert alarm.title == "CRITICAL: DDoS Attack Detected"
            assert alarm.severity == Severity.CRITICAL
            assert alarm.anomaly_id == anomaly.id

    @pytest.mark.asyncio
    async def test_timestamps_spaced_by_stagger(self, orchestrator, emitted):
        """Test emissions are strictly increasing and evenly spaced."""
        scenario = orchestrator.generate_attack_scenario(TARGET, 10)
        await orchestrator.wait(scenario.id)

        stamps = [anomaly.detected_at for _, anomaly, _ in emitted]
        gaps = [later - earlier for earlier, later in zip(stamps, stamps[1:])]

        assert all(gap == timedelta(milliseconds=10) for gap in gaps)
        assert stamps[0] == scenario.started_at
        assert all(flow.timestamp == anomaly.detected_at for flow, anomaly, _ in emitted)

    @pytest.mark.asyncio
    async def test_status_notifications(self, orchestrator, statuses):
        """Test the status callback sees launch and completion."""
        scenario = orchestrator.generate_attack_scenario(TARGET, 3)
        await orchestrator.wait(scenario.id)

        assert statuses == [ScenarioStatus.RUNNING, ScenarioStatus.COMPLETED]


class TestOtherScenarios:
    """Test cases for the non-DDoS scenario kinds."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind, dimension, severity", [
        (ScenarioKind.PORT_SCAN, AnomalyType.PATTERN, Severity.HIGH),
        (ScenarioKind.DATA_EXFILTRATION, AnomalyType.BEHAVIORAL, Severity.CRITICAL),
        (ScenarioKind.LATERAL_MOVEMENT, AnomalyType.PROTOCOL, Severity.HIGH),
    ])
    async def test_kind_profile(self, orchestrator, emitted, kind, dimension, severity):
        """Test each kind pins its dimension and severity."""
        scenario = orchestrator.generate_attack_scenario(TARGET, 3, kind=kind)
        await orchestrator.wait(scenario.id)

        assert len(emitted) == 3
        for flow, anomaly, alarm in emitted:
            assert flow.metadata["forced_dimension"] == dimension.value
            assert anomaly.anomaly_type == dimension
            assert anomaly.severity == severity
            assert TARGET in anomaly.description
            assert alarm.title == SCENARIO_PROFILES[kind]["alarm_title"]
            assert kind.value in alarm.tags


class TestScenarioCancellation:
    """Test cases for cancelling scenarios."""

    @pytest.mark.asyncio
    async def test_cancel_stops_emission(self, orchestrator, emitted):
        """Test a cancelled scenario never emits again."""
        scenario = orchestrator.generate_attack_scenario(TARGET, 10, stagger_ms=50)
        await asyncio.sleep(0.075)

        assert orchestrator.cancel(scenario.id) is True
        count = len(emitted)
        await asyncio.sleep(0.2)

        assert 1 <= count < 10
        assert len(emitted) == count
        assert scenario.status == ScenarioStatus.CANCELLED
        assert scenario.emitted == count

    @pytest.mark.asyncio
    async def test_cancel_completed_scenario(self, orchestrator):
        """Test cancelling a finished scenario reports False."""
        scenario = orchestrator.generate_attack_scenario(TARGET, 2)
        await orchestrator.wait(scenario.id)

        assert orchestrator.cancel(scenario.id) is False
        assert orchestrator.cancel("attack-missing") is False
        assert scenario.status == ScenarioStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_cancel_all(self, orchestrator, emitted):
        """Test cancelling every running scenario."""
        first = orchestrator.generate_attack_scenario(TARGET, 10, stagger_ms=50)
        second = orchestrator.generate_attack_scenario("10.0.1.20", 10, stagger_ms=50)

        assert orchestrator.cancel_all() == 2
        await asyncio.sleep(0.1)

        assert first.status == second.status == ScenarioStatus.CANCELLED
        assert orchestrator.get_active_scenarios() == []
        assert len(emitted) == 0

    @pytest.mark.asyncio
    async def test_session_token_cancels_units(self, flow_generator, classifier, correlator, emitted):
        """Test cancelling the session token silences outstanding units."""
        token = CancellationToken()
        orchestrator = ScenarioOrchestrator(
            flow_generator, classifier, correlator,
            on_unit=lambda *unit: emitted.append(unit),
            config=ScenarioConfig(stagger_ms=20, unit_count=5),
            token=token,
        )
        orchestrator.generate_attack_scenario(TARGET)
        await asyncio.sleep(0.03)

        token.cancel()
        count = len(emitted)
        await asyncio.sleep(0.1)

        assert len(emitted) == count < 5
        with pytest.raises(InvalidConfiguration):
            orchestrator.generate_attack_scenario(TARGET)

    @pytest.mark.asyncio
    async def test_failing_unit_does_not_stop_siblings(self, flow_generator, classifier, correlator):
        """Test one failing unit is dropped and the rest still emit."""
        received = []

        def on_unit(flow, anomaly, alarm):
            if not received:
                received.append(None)
                raise RuntimeError("sink unavailable")
            received.append(anomaly)

        orchestrator = ScenarioOrchestrator(
            flow_generator, classifier, correlator,
            on_unit=on_unit,
            config=ScenarioConfig(stagger_ms=5, unit_count=4),
        )
        scenario = orchestrator.generate_attack_scenario(TARGET)
        await orchestrator.wait(scenario.id)

        assert scenario.emitted == 3
        assert scenario.failed == 1
        assert scenario.status == ScenarioStatus.COMPLETED
        assert len(received) == 4

    @pytest.mark.asyncio
    async def test_session_token_marks_scenario_cancelled(self, flow_generator, classifier, correlator):
        """Test units silenced by the session token leave the scenario cancelled."""
        token = CancellationToken()
        orchestrator = ScenarioOrchestrator(
            flow_generator, classifier, correlator,
            on_unit=lambda *unit: None,
            config=ScenarioConfig(stagger_ms=20, unit_count=5),
            token=token,
        )
        scenario = orchestrator.generate_attack_scenario(TARGET)
        await asyncio.sleep(0.03)

        token.cancel()
        await orchestrator.wait(scenario.id)

        assert scenario.status == ScenarioStatus.CANCELLED
        assert orchestrator.get_active_scenarios() == []


class TestScenarioRetention:
    """Test cases for releasing finished scenarios."""

    @pytest.fixture
    def short_lived(self, flow_generator, classifier, correlator):
        """Orchestrator that keeps only a handful of finished scenarios."""
        return ScenarioOrchestrator(
            flow_generator, classifier, correlator,
            on_unit=lambda *unit: None,
            config=ScenarioConfig(stagger_ms=5, unit_count=1, retention=5),
        )

    @pytest.mark.asyncio
    async def test_finished_scenarios_are_bounded(self, short_lived):
        """Test sequential launches keep at most `retention` finished scenarios."""
        launched = []
        for _ in range(30):
            scenario = short_lived.generate_attack_scenario(TARGET)
            assert await short_lived.wait(scenario.id) is scenario
            launched.append(scenario)

        assert len(short_lived._scenarios) == 5
        assert short_lived._tasks == {}
        assert short_lived._tokens == {}
        assert short_lived.get_scenario(launched[-1].id) is launched[-1]
        assert short_lived.get_scenario(launched[0].id) is None

    @pytest.mark.asyncio
    async def test_cancelled_scenario_released(self, short_lived):
        """Test cancelling drops the scenario's tasks and token."""
        scenario = short_lived.generate_attack_scenario(TARGET, 10, stagger_ms=50)

        assert short_lived.cancel(scenario.id) is True
        assert scenario.id not in short_lived._tasks
        assert scenario.id not in short_lived._tokens
        assert short_lived.get_scenario(scenario.id) is scenario

    @pytest.mark.asyncio
    async def test_running_scenarios_never_trimmed(self, short_lived):
        """Test retention only applies to finished scenarios."""
        running = [short_lived.generate_attack_scenario(TARGET, 10, stagger_ms=50) for _ in range(8)]

        assert len(short_lived.get_active_scenarios()) == 8
        short_lived.cancel_all()
        assert len(short_lived._scenarios) == 5
        assert all(s.status == ScenarioStatus.CANCELLED for s in running)
