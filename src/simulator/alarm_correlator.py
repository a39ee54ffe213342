"""
Alarm Correlator

Turns anomalies into operator-facing alarms and drives the alarm lifecycle.
"""

import logging
from datetime import datetime
from typing import Optional

from src.models.network import (
    ActionType,
    Alarm,
    AlarmAction,
    AlarmStatus,
    Anomaly,
    utcnow,
)
from src.simulator.errors import InvalidTransition

logger = logging.getLogger(__name__)


# Legal status changes; resolved is terminal
ALLOWED_TRANSITIONS = {
    AlarmStatus.OPEN: {AlarmStatus.ACKNOWLEDGED, AlarmStatus.INVESTIGATING, AlarmStatus.RESOLVED},
    AlarmStatus.ACKNOWLEDGED: {AlarmStatus.INVESTIGATING, AlarmStatus.RESOLVED},
    AlarmStatus.INVESTIGATING: {AlarmStatus.RESOLVED},
    AlarmStatus.RESOLVED: set(),
}

# Target status of each status-changing action
ACTION_TARGETS = {
    ActionType.ACKNOWLEDGE: AlarmStatus.ACKNOWLEDGED,
    ActionType.INVESTIGATE: AlarmStatus.INVESTIGATING,
    ActionType.RESOLVE: AlarmStatus.RESOLVED,
}

AUTO_TAG = "auto-detected"


class AlarmCorrelator:
    """
    Creates alarms from anomalies and applies lifecycle actions.

    Every action appends exactly one entry to ``alarm.actions``. Actions on
    a resolved alarm, and status changes outside ``ALLOWED_TRANSITIONS``,
    raise :class:`InvalidTransition` without touching the alarm.

    Example:
        >>> correlator = AlarmCorrelator()
        >>> alarm = correlator.generate_alarm(anomaly)
        >>> correlator.acknowledge(alarm, "noc-operator")
        >>> correlator.resolve(alarm, "noc-operator", comment="False positive")
    """

    def generate_alarm(self, anomaly: Anomaly, timestamp: Optional[datetime] = None) -> Alarm:
        """
        Create an open alarm from an anomaly.

        Args:
            anomaly: The originating anomaly
            timestamp: Creation time (defaults to now, never before the anomaly)

        Returns:
            Alarm object
        """
        if timestamp is None:
            timestamp = max(utcnow(), anomaly.detected_at)

        alarm = Alarm(
            anomaly_id=anomaly.id,
            title=f"{anomaly.severity.value.upper()}: {anomaly.anomaly_type.value.capitalize()} Anomaly Detected",
            description=f"{anomaly.description} (Confidence: {anomaly.confidence * 100:.1f}%)",
            severity=anomaly.severity,
            status=AlarmStatus.OPEN,
            created_at=timestamp,
            updated_at=timestamp,
            tags={anomaly.anomaly_type.value, anomaly.severity.value, AUTO_TAG},
            actions=[],
        )
        logger.debug(f"Alarm {alarm.id} opened for anomaly {anomaly.id}")
        return alarm

    def can_transition(self, alarm: Alarm, target: AlarmStatus) -> bool:
        """Check if the alarm may move to ``target``."""
        return target in ALLOWED_TRANSITIONS[alarm.status]

    def _require_active(self, alarm: Alarm, action: ActionType) -> None:
        if alarm.status == AlarmStatus.RESOLVED:
            raise InvalidTransition(alarm.id, alarm.status.value, action.value, "alarm is resolved")

    def _record(
        self,
        alarm: Alarm,
        action: ActionType,
        user: str,
        comment: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> AlarmAction:
        entry = AlarmAction(
            action_type=action,
            user=user,
            comment=comment,
            metadata=metadata or {},
        )
        alarm.actions.append(entry)
        alarm.updated_at = entry.timestamp
        return entry

    def _transition(
        self,
        alarm: Alarm,
        action: ActionType,
        user: str,
        comment: Optional[str] = None,
    ) -> Alarm:
        self._require_active(alarm, action)
        target = ACTION_TARGETS[action]
        if not self.can_transition(alarm, target):
            raise InvalidTransition(alarm.id, alarm.status.value, action.value)

        previous = alarm.status
        alarm.status = target
        self._record(alarm, action, user, comment, {"from": previous.value, "to": target.value})
        logger.info(f"Alarm {alarm.id}: {previous.value} -> {target.value} by {user}")
        return alarm

    def acknowledge(self, alarm: Alarm, user: str, comment: Optional[str] = None) -> Alarm:
        """Move an open alarm to acknowledged."""
        return self._transition(alarm, ActionType.ACKNOWLEDGE, user, comment)

    def investigate(self, alarm: Alarm, user: str, comment: Optional[str] = None) -> Alarm:
        """Move an open or acknowledged alarm to investigating."""
        return self._transition(alarm, ActionType.INVESTIGATE, user, comment)

    def resolve(self, alarm: Alarm, user: str, comment: Optional[str] = None) -> Alarm:
        """Resolve an alarm. Resolved is terminal."""
        return self._transition(alarm, ActionType.RESOLVE, user, comment)

    def escalate(self, alarm: Alarm, user: str, comment: Optional[str] = None) -> Alarm:
        """Raise severity one step (capped at critical) without changing status."""
        self._require_active(alarm, ActionType.ESCALATE)

        previous = alarm.severity
        alarm.severity = previous.raised()
        alarm.tags.add("escalated")
        self._record(
            alarm,
            ActionType.ESCALATE,
            user,
            comment,
            {"from": previous.value, "to": alarm.severity.value},
        )
        logger.info(f"Alarm {alarm.id} escalated {previous.value} -> {alarm.severity.value} by {user}")
        return alarm

    def comment(self, alarm: Alarm, user: str, text: str) -> Alarm:
        """Append a comment to the alarm's audit trail."""
        self._require_active(alarm, ActionType.COMMENT)
        self._record(alarm, ActionType.COMMENT, user, text)
        return alarm

    def assign(self, alarm: Alarm, user: str, assignee: str) -> Alarm:
        """Assign the alarm to an operator."""
        self._require_active(alarm, ActionType.ASSIGN)
        previous = alarm.assigned_to
        alarm.assigned_to = assignee
        self._record(alarm, ActionType.ASSIGN, user, metadata={"from": previous, "to": assignee})
        return alarm

    def apply(self, alarm: Alarm, action: ActionType, user: str, **kwargs) -> Alarm:
        """Dispatch an action by type."""
        if action == ActionType.ACKNOWLEDGE:
            return self.acknowledge(alarm, user, kwargs.get("comment"))
        if action == ActionType.INVESTIGATE:
            return self.investigate(alarm, user, kwargs.get("comment"))
        if action == ActionType.RESOLVE:
            return self.resolve(alarm, user, kwargs.get("comment"))
        if action == ActionType.ESCALATE:
            return self.escalate(alarm, user, kwargs.get("comment"))
        if action == ActionType.COMMENT:
            return self.comment(alarm, user, kwargs.get("text", ""))
        if action == ActionType.ASSIGN:
            return self.assign(alarm, user, kwargs["assignee"])
        raise ValueError(f"Unhandled action type: {action}")
