"""Tests for the simulation engine."""

import asyncio

import pytest

from src.simulator.config import SimulationConfig
from src.simulator.engine import SimulationEngine
from src.simulator.errors import InvalidConfiguration, InvalidTransition
from src.models.network import (
    ActionType,
    AlarmStatus,
    AnomalyType,
    EventKind,
    ScenarioStatus,
    Severity,
)

TARGET = "192.168.1.100"


def flow_signature(flow):
    return (flow.source_ip, flow.destination_ip, flow.destination_port, flow.protocol, flow.bytes, flow.duration_ms)


class TestEngineTick:
    """Test cases for synchronous ticking."""

    def test_tick_records_flow(self, engine):
        """Test a tick pushes a flow and counts it."""
        flow = engine.tick()

        assert engine.flows[0] is flow
        assert engine.metrics.total_flows == 1

    def test_anomalous_tick_records_anomaly_and_alarm(self, engine):
        """Test an anomalous tick derives an anomaly and an alarm."""
        engine.config.clock.anomaly_probability = 1.0
        flow = engine.tick()

        anomaly = engine.anomalies[0]
        alarm = engine.alarms[0]
        assert flow.is_anomalous
        assert anomaly.flow_id == flow.id
        assert alarm.anomaly_id == anomaly.id
        assert alarm.severity == anomaly.severity
        assert anomaly.severity != Severity.LOW
        assert engine.metrics.anomalies_detected == 1
        assert engine.metrics.active_alarms == 1

    def test_normal_tick_has_no_anomaly(self, engine):
        """Test normal ticks never produce anomalies."""
        engine.config.clock.anomaly_probability = 0.0
        for _ in range(30):
            engine.tick()

        assert engine.anomalies == ()
        assert engine.alarms == ()
        assert engine.metrics.total_flows == 30

    def test_histories_bounded(self, engine):
        """Test histories never exceed capacity and keep the newest."""
        flows = [engine.tick() for _ in range(25)]

        assert len(engine.flows) == 20
        assert engine.flows[0] is flows[-1]
        assert engine.flows[-1] is flows[5]
        assert len(engine.anomalies) <= 20
        assert engine.metrics.total_flows == 25

    def test_metrics_stay_in_bounds(self, engine):
        """Test throughput and latency drift within configured bounds."""
        for _ in range(200):
            engine.tick()

        metrics = engine.metrics
        assert 100.0 <= metrics.throughput.current <= 250.0
        assert metrics.throughput.peak <= 250.0
        assert 5.0 <= metrics.latency.current <= 60.0
        assert 5.0 <= metrics.latency.p95 <= 60.0
        assert 0 <= metrics.network_health <= 100
        assert len(metrics.top_talkers) <= 5

    def test_metrics_snapshot_is_copy(self, engine):
        """Test callers cannot mutate engine metrics through a read."""
        engine.tick()
        snapshot = engine.metrics
        snapshot.total_flows = 999

        assert engine.metrics.total_flows == 1

    def test_seed_reproducible(self, fast_config):
        """Test identical seeds produce identical flow sequences."""
        first = SimulationEngine(config=fast_config, seed=7)
        second = SimulationEngine(config=SimulationConfig(seed=99), seed=7)
        second.config.clock.anomaly_probability = fast_config.clock.anomaly_probability

        assert [flow_signature(first.tick()) for _ in range(20)] == [
            flow_signature(second.tick()) for _ in range(20)
        ]

    def test_invalid_config_rejected(self):
        """Test an inconsistent configuration is rejected up front."""
        config = SimulationConfig()
        config.clock.anomaly_probability = 2.0

        with pytest.raises(InvalidConfiguration):
            SimulationEngine(config=config)


class TestEngineSubscriptions:
    """Test cases for event subscriptions."""

    def test_subscriber_receives_events(self, engine):
        """Test subscribers see flow, anomaly, alarm and metrics events."""
        events = []
        engine.subscribe(events.append)
        engine.config.clock.anomaly_probability = 1.0
        engine.tick()

        kinds = [e.kind for e in events]
        assert kinds == [EventKind.FLOW, EventKind.ANOMALY, EventKind.ALARM, EventKind.METRICS]

    def test_unsubscribe(self, engine):
        """Test unsubscribed callbacks receive nothing further."""
        events = []
        unsubscribe = engine.subscribe(events.append)
        engine.tick()
        count = len(events)

        unsubscribe()
        unsubscribe()
        engine.tick()

        assert len(events) == count

    def test_event_payloads_are_detached(self, engine):
        """Test subscribers cannot change engine state through event data."""
        events = []
        engine.subscribe(events.append)
        engine.config.clock.anomaly_probability = 1.0
        engine.tick()

        alarm_event = next(e for e in events if e.kind == EventKind.ALARM)
        alarm_event.data.status = AlarmStatus.RESOLVED

        assert engine.alarms[0].status == AlarmStatus.OPEN
        assert engine.metrics.active_alarms == 1

    def test_failing_subscriber_isolated(self, engine):
        """Test a raising subscriber does not break the engine or others."""
        events = []

        def broken(event):
            raise RuntimeError("display crashed")

        engine.subscribe(broken)
        engine.subscribe(events.append)
        engine.tick()

        assert events
        assert len(engine.flows) == 1


class TestEngineAlarmActions:
    """Test cases for alarm actions routed through the engine."""

    @pytest.fixture
    def alarm_id(self, engine):
        engine.config.clock.anomaly_probability = 1.0
        engine.tick()
        return engine.alarms[0].id

    def test_acknowledge_and_resolve(self, engine, alarm_id):
        """Test lifecycle actions by id update the stored alarm."""
        events = []
        engine.subscribe(events.append)

        engine.acknowledge_alarm(alarm_id, "alice")
        engine.resolve_alarm(alarm_id, "alice", comment="done")

        alarm = engine.get_alarm(alarm_id)
        assert alarm.status == AlarmStatus.RESOLVED
        assert len(alarm.actions) == 2
        assert [e.kind for e in events] == [EventKind.ALARM_UPDATE, EventKind.ALARM_UPDATE]
        assert engine.metrics.active_alarms == 0
        assert engine.metrics.network_health == 100

    def test_resolved_alarm_rejects_actions(self, engine, alarm_id):
        """Test actions on a resolved alarm raise InvalidTransition."""
        engine.resolve_alarm(alarm_id, "alice")

        with pytest.raises(InvalidTransition):
            engine.comment_alarm(alarm_id, "alice", "too late")

        assert len(engine.get_alarm(alarm_id).actions) == 1

    def test_other_actions(self, engine, alarm_id):
        """Test investigate, escalate, comment and assign by id."""
        engine.investigate_alarm(alarm_id, "alice")
        engine.escalate_alarm(alarm_id, "alice")
        engine.comment_alarm(alarm_id, "alice", "tracing")
        engine.assign_alarm(alarm_id, "alice", "bob")

        alarm = engine.get_alarm(alarm_id)
        assert alarm.status == AlarmStatus.INVESTIGATING
        assert alarm.assigned_to == "bob"
        assert len(alarm.actions) == 4

    def test_unknown_alarm(self, engine):
        """Test acting on an unknown alarm raises KeyError."""
        with pytest.raises(KeyError):
            engine.acknowledge_alarm("alarm-missing", "alice")

    def test_returned_alarm_is_detached(self, engine, alarm_id):
        """Test writes to a returned alarm never reach the stored alarm."""
        engine.resolve_alarm(alarm_id, "alice")

        returned = engine.alarms[0]
        returned.status = AlarmStatus.OPEN
        returned.severity = "bogus"
        engine.get_alarm(alarm_id).actions.clear()

        with pytest.raises(InvalidTransition):
            engine.acknowledge_alarm(alarm_id, "alice")

        stored = engine.get_alarm(alarm_id)
        assert stored.status == AlarmStatus.RESOLVED
        assert [a.action_type for a in stored.actions] == [ActionType.RESOLVE]
        assert engine.metrics.network_health == 100

    def test_action_result_is_detached(self, engine, alarm_id):
        """Test the alarm returned by an action is a copy."""
        acknowledged = engine.acknowledge_alarm(alarm_id, "alice")
        acknowledged.status = AlarmStatus.RESOLVED

        assert engine.get_alarm(alarm_id).status == AlarmStatus.ACKNOWLEDGED
        assert engine.metrics.active_alarms == 1

    def test_returned_anomaly_is_detached(self, engine, alarm_id):
        """Test writes to a returned anomaly never reach the history."""
        anomaly_id = engine.get_alarm(alarm_id).anomaly_id
        engine.get_anomaly(anomaly_id).description = "rewritten"
        engine.anomalies[0].confidence = 0.0

        stored = engine.get_anomaly(anomaly_id)
        assert stored.description != "rewritten"
        assert stored.confidence > 0.0

    def test_get_anomaly(self, engine, alarm_id):
        """Test anomaly lookup by id."""
        anomaly_id = engine.get_alarm(alarm_id).anomaly_id

        assert engine.get_anomaly(anomaly_id).id == anomaly_id
        assert engine.get_anomaly("anomaly-missing") is None


class TestEngineLifecycle:
    """Test cases for clock-driven running."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, engine):
        """Test the engine ticks while running and not after stop."""
        engine.start()
        assert engine.is_running()
        await asyncio.sleep(0.1)

        engine.stop()
        count = engine.metrics.total_flows
        await asyncio.sleep(0.1)

        assert count > 0
        assert not engine.is_running()
        assert engine.metrics.total_flows == count

    @pytest.mark.asyncio
    async def test_restart(self, engine):
        """Test a stopped engine can be started again."""
        engine.start()
        await asyncio.sleep(0.05)
        engine.stop()
        count = engine.metrics.total_flows

        engine.start()
        await asyncio.sleep(0.05)
        engine.stop()

        assert engine.metrics.total_flows > count


class TestEngineScenarios:
    """Test cases for attack scenarios routed through the engine."""

    @pytest.mark.asyncio
    async def test_ddos_scenario(self, engine):
        """Test a DDoS burst lands ten volume/critical anomalies in history."""
        events = []
        engine.subscribe(events.append)

        scenario = engine.generate_attack_scenario(TARGET, 10)
        await engine.scenarios.wait(scenario.id)

        anomalies = engine.anomalies
        assert len(anomalies) == 10
        assert all(a.anomaly_type == AnomalyType.VOLUME for a in anomalies)
        assert all(a.severity == Severity.CRITICAL for a in anomalies)
        assert all(a.confidence >= 0.95 for a in anomalies)
        assert all(TARGET in a.description for a in anomalies)
        stamps = [a.detected_at for a in reversed(anomalies)]
        assert stamps == sorted(stamps)
        assert len(set(stamps)) == 10
        assert engine.metrics.anomalies_detected == 10

        scenario_events = [e.data.status for e in events if e.kind == EventKind.SCENARIO]
        assert scenario_events == [ScenarioStatus.RUNNING, ScenarioStatus.COMPLETED]

    @pytest.mark.asyncio
    async def test_stop_cancels_scenarios(self, engine):
        """Test stop() silences outstanding scenario units."""
        scenario = engine.generate_attack_scenario(TARGET, 10, stagger_ms=50)
        await asyncio.sleep(0.06)

        engine.stop()
        count = len(engine.anomalies)
        await asyncio.sleep(0.2)

        assert scenario.status == ScenarioStatus.CANCELLED
        assert len(engine.anomalies) == count < 10

        # Engine accepts new scenarios after stop
        again = engine.generate_attack_scenario(TARGET, 2)
        await engine.scenarios.wait(again.id)
        assert again.status == ScenarioStatus.COMPLETED


class TestEngineGeneration:
    """Test cases for standalone generation helpers."""

    def test_default_topology(self, engine):
        """Test the default topology is created on first access."""
        assert len(engine.topology.nodes) == 25

    def test_generate_topology(self, engine):
        """Test generating a topology replaces the current one."""
        topology = engine.generate_topology(num_servers=2, num_others=2)

        assert engine.topology is topology

    def test_standalone_generation_not_recorded(self, engine):
        """Test generate_* helpers do not touch histories."""
        flow = engine.generate_flow(anomalous=True)
        anomaly = engine.generate_anomaly(flow)
        alarm = engine.generate_alarm(anomaly)

        assert alarm.anomaly_id == anomaly.id
        assert engine.flows == ()
        assert engine.anomalies == ()

    def test_flow_analytics(self, engine):
        """Test analytics over a fresh batch."""
        report = engine.generate_flow_analytics(200)

        assert report.total_flows == 200
        with pytest.raises(InvalidConfiguration):
            engine.generate_flow_analytics(0)

    def test_dashboard_metrics(self, engine):
        """Test the dashboard snapshot reports the session counters."""
        engine.config.clock.anomaly_probability = 1.0
        for _ in range(3):
            engine.tick()
        engine.resolve_alarm(engine.alarms[0].id, "alice")

        metrics = engine.generate_dashboard_metrics()

        assert metrics.total_flows == 3
        assert metrics.anomalies_detected == 3
        assert metrics.active_alarms == 2
        assert metrics.network_health == engine.metrics.network_health < 100
        assert len(metrics.top_talkers) <= 5

    def test_dashboard_metrics_fresh_session(self, engine):
        """Test a fresh session reports a healthy, empty network."""
        metrics = engine.generate_dashboard_metrics()

        assert metrics.total_flows == 0
        assert metrics.anomalies_detected == 0
        assert metrics.network_health == 100
