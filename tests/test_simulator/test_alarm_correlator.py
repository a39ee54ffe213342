"""Tests for the alarm correlator."""

import pytest

from src.simulator.alarm_correlator import AUTO_TAG
from src.simulator.errors import InvalidTransition
from src.models.network import ActionType, AlarmStatus, Severity


class TestAlarmCreation:
    """Test cases for alarm generation."""

    def test_alarm_mirrors_anomaly(self, anomaly, alarm):
        """Test a new alarm carries the anomaly's severity and identity."""
        assert alarm.anomaly_id == anomaly.id
        assert alarm.severity == anomaly.severity
        assert alarm.status == AlarmStatus.OPEN
        assert alarm.actions == []
        assert alarm.is_active

    def test_alarm_title_and_description(self, anomaly, alarm):
        """Test alarm title and description format."""
        assert alarm.title == (
            f"{anomaly.severity.value.upper()}: "
            f"{anomaly.anomaly_type.value.capitalize()} Anomaly Detected"
        )
        assert alarm.description.startswith(anomaly.description)
        assert "Confidence:" in alarm.description

    def test_alarm_tags(self, anomaly, alarm):
        """Test alarms are tagged with type, severity and origin."""
        assert alarm.tags == {anomaly.anomaly_type.value, anomaly.severity.value, AUTO_TAG}

    def test_alarm_created_not_before_anomaly(self, anomaly, alarm):
        """Test alarm creation never precedes detection."""
        assert alarm.created_at >= anomaly.detected_at
        assert alarm.updated_at == alarm.created_at


class TestAlarmLifecycle:
    """Test cases for alarm transitions."""

    def test_acknowledge(self, correlator, alarm):
        """Test acknowledging an open alarm."""
        correlator.acknowledge(alarm, "noc-operator", comment="Looking")

        assert alarm.status == AlarmStatus.ACKNOWLEDGED
        assert len(alarm.actions) == 1
        action = alarm.actions[0]
        assert action.action_type == ActionType.ACKNOWLEDGE
        assert action.user == "noc-operator"
        assert action.comment == "Looking"
        assert action.metadata == {"from": "open", "to": "acknowledged"}
        assert alarm.updated_at == action.timestamp

    def test_full_lifecycle(self, correlator, alarm):
        """Test open -> acknowledged -> investigating -> resolved."""
        correlator.acknowledge(alarm, "alice")
        correlator.investigate(alarm, "alice")
        correlator.resolve(alarm, "alice", comment="Blocked at firewall")

        assert alarm.status == AlarmStatus.RESOLVED
        assert not alarm.is_active
        assert [a.action_type for a in alarm.actions] == [
            ActionType.ACKNOWLEDGE,
            ActionType.INVESTIGATE,
            ActionType.RESOLVE,
        ]

    def test_open_can_skip_to_resolved(self, correlator, alarm):
        """Test an open alarm may be resolved directly."""
        correlator.resolve(alarm, "bob")

        assert alarm.status == AlarmStatus.RESOLVED

    def test_open_can_skip_to_investigating(self, correlator, alarm):
        """Test an open alarm may go straight to investigating."""
        correlator.investigate(alarm, "bob")

        assert alarm.status == AlarmStatus.INVESTIGATING

    def test_cannot_acknowledge_twice(self, correlator, alarm):
        """Test re-acknowledging is rejected without mutation."""
        correlator.acknowledge(alarm, "alice")

        with pytest.raises(InvalidTransition):
            correlator.acknowledge(alarm, "alice")

        assert len(alarm.actions) == 1

    def test_cannot_move_backwards(self, correlator, alarm):
        """Test investigating cannot return to acknowledged."""
        correlator.investigate(alarm, "alice")

        with pytest.raises(InvalidTransition) as exc_info:
            correlator.acknowledge(alarm, "alice")

        assert exc_info.value.alarm_id == alarm.id
        assert exc_info.value.status == "investigating"
        assert exc_info.value.action == "acknowledge"
        assert alarm.status == AlarmStatus.INVESTIGATING

    @pytest.mark.parametrize("action, kwargs", [
        (ActionType.ACKNOWLEDGE, {}),
        (ActionType.INVESTIGATE, {}),
        (ActionType.RESOLVE, {}),
        (ActionType.ESCALATE, {}),
        (ActionType.COMMENT, {"text": "late note"}),
        (ActionType.ASSIGN, {"assignee": "carol"}),
    ])
    def test_resolved_is_terminal(self, correlator, alarm, action, kwargs):
        """Test every action on a resolved alarm raises."""
        correlator.resolve(alarm, "alice")
        snapshot = alarm.model_copy(deep=True)

        with pytest.raises(InvalidTransition):
            correlator.apply(alarm, action, "alice", **kwargs)

        assert alarm == snapshot

    def test_escalate_raises_severity(self, correlator, alarm):
        """Test escalation raises severity one step without changing status."""
        alarm.severity = Severity.MEDIUM
        correlator.escalate(alarm, "alice")

        assert alarm.severity == Severity.HIGH
        assert alarm.status == AlarmStatus.OPEN
        assert "escalated" in alarm.tags
        assert alarm.actions[-1].metadata == {"from": "medium", "to": "high"}

    def test_escalate_caps_at_critical(self, correlator, alarm):
        """Test escalating a critical alarm keeps it critical."""
        alarm.severity = Severity.CRITICAL
        correlator.escalate(alarm, "alice")

        assert alarm.severity == Severity.CRITICAL
        assert len(alarm.actions) == 1

    def test_comment_and_assign(self, correlator, alarm):
        """Test comments and assignments append to the audit trail."""
        correlator.comment(alarm, "alice", "Checking upstream")
        correlator.assign(alarm, "alice", "bob")

        assert alarm.assigned_to == "bob"
        assert alarm.status == AlarmStatus.OPEN
        assert [a.action_type for a in alarm.actions] == [ActionType.COMMENT, ActionType.ASSIGN]
        assert alarm.actions[0].comment == "Checking upstream"

    def test_every_action_recorded_once(self, correlator, alarm):
        """Test each successful action appends exactly one entry."""
        steps = [
            lambda: correlator.comment(alarm, "a", "x"),
            lambda: correlator.escalate(alarm, "a"),
            lambda: correlator.acknowledge(alarm, "a"),
            lambda: correlator.assign(alarm, "a", "b"),
            lambda: correlator.investigate(alarm, "a"),
            lambda: correlator.resolve(alarm, "a"),
        ]
        for count, step in enumerate(steps, start=1):
            step()
            assert len(alarm.actions) == count

    def test_can_transition(self, correlator, alarm):
        """Test the transition table lookup."""
        assert correlator.can_transition(alarm, AlarmStatus.ACKNOWLEDGED)
        assert not correlator.can_transition(alarm, AlarmStatus.OPEN)
