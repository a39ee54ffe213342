"""
Anomaly Classifier

Scores each flow dimension against its threshold and turns the largest
deviation into an anomaly verdict.
"""

import logging
import math
import random
from datetime import datetime
from typing import Optional

from src.models.network import (
    Anomaly,
    AnomalyMetrics,
    AnomalyType,
    Flow,
    Severity,
    utcnow,
)
from src.simulator.config import ClassifierConfig
from src.simulator.errors import OutOfRange

logger = logging.getLogger(__name__)


# Evaluation order doubles as the tie-break order
DIMENSIONS = [
    AnomalyType.VOLUME,
    AnomalyType.PATTERN,
    AnomalyType.PROTOCOL,
    AnomalyType.BEHAVIORAL,
]

DESCRIPTION_TEMPLATES = {
    AnomalyType.VOLUME: "Unusual {severity} traffic volume toward {destination}",
    AnomalyType.PATTERN: "Abnormal {severity} communication pattern toward {destination}",
    AnomalyType.PROTOCOL: "Suspicious {severity} protocol usage toward {destination}",
    AnomalyType.BEHAVIORAL: "Anomalous {severity} behavioral profile toward {destination}",
}

# Typical value per dimension, reported as the expected value
EXPECTED_VALUES = {
    AnomalyType.VOLUME: 50_000,
    AnomalyType.PATTERN: 3,
    AnomalyType.PROTOCOL: 0.5,
    AnomalyType.BEHAVIORAL: 15_000,
}


class AnomalyClassifier:
    """
    Classifies flows into anomaly verdicts.

    The classifier is total: every flow yields an anomaly. Callers decide
    whether to surface it, typically via :meth:`is_reportable`.

    Example:
        >>> flow = FlowGenerator(rng=random.Random(3)).generate_flow(
        ...     anomalous=True, forced_dimension=AnomalyType.VOLUME
        ... )
        >>> classifier = AnomalyClassifier(rng=random.Random(3))
        >>> classifier.generate_anomaly(flow).anomaly_type
        <AnomalyType.VOLUME: 'volume'>
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        config: Optional[ClassifierConfig] = None,
    ):
        self.rng = rng or random.Random()
        self.config = config or ClassifierConfig()

    def measure(self, flow: Flow, anomaly_type: AnomalyType) -> float:
        """Raw measurement of a flow in one dimension."""
        if anomaly_type == AnomalyType.VOLUME:
            return float(flow.bytes)
        if anomaly_type == AnomalyType.PATTERN:
            return float(flow.distinct_ports)
        if anomaly_type == AnomalyType.PROTOCOL:
            return self.config.surprisal(flow.protocol)
        if anomaly_type == AnomalyType.BEHAVIORAL:
            return float(flow.duration_ms)
        raise ValueError(f"Unhandled anomaly type: {anomaly_type}")

    def score(self, flow: Flow) -> dict[AnomalyType, float]:
        """Deviation score per dimension (measurement / threshold)."""
        return {
            dimension: self.measure(flow, dimension) / self.config.threshold_for(dimension)
            for dimension in DIMENSIONS
        }

    def severity_for(self, score: float) -> Severity:
        """Map a deviation score onto the ordered severity scale."""
        medium, high, critical = self.config.severity_bands
        if score >= critical:
            return Severity.CRITICAL
        if score >= high:
            return Severity.HIGH
        if score >= medium:
            return Severity.MEDIUM
        return Severity.LOW

    def confidence_for(self, score: float, noise: float) -> float:
        """Confidence rises with deviation and falls with measurement noise."""
        confidence = (1.0 - math.exp(-self.config.confidence_gain * score)) * (1.0 - noise)
        return round(max(0.0, min(1.0, confidence)), 4)

    def generate_anomaly(self, flow: Flow, timestamp: Optional[datetime] = None) -> Anomaly:
        """
        Classify a flow.

        Args:
            flow: The flow to classify
            timestamp: Detection time (defaults to now, never before the flow)

        Returns:
            Anomaly object

        Raises:
            OutOfRange: If scoring produced a non-finite or negative value
        """
        scores = self.score(flow)
        for dimension, value in scores.items():
            if not math.isfinite(value) or value < 0:
                logger.error(f"Flow {flow.id} produced invalid {dimension.value} score {value}")
                raise OutOfRange(f"{dimension.value}_score", value)

        anomaly_type = max(DIMENSIONS, key=lambda d: scores[d])
        top_score = scores[anomaly_type]
        severity = self.severity_for(top_score)

        noise = self.rng.uniform(0.0, self.config.max_noise)
        confidence = self.confidence_for(top_score, noise)

        if timestamp is None:
            timestamp = max(utcnow(), flow.timestamp)

        description = DESCRIPTION_TEMPLATES[anomaly_type].format(
            severity=severity.value,
            destination=flow.destination_ip,
        )

        anomaly = Anomaly(
            flow_id=flow.id,
            anomaly_type=anomaly_type,
            severity=severity,
            confidence=confidence,
            description=description,
            detected_at=timestamp,
            source_ip=flow.source_ip,
            destination_ip=flow.destination_ip,
            metrics=AnomalyMetrics(
                expected_value=EXPECTED_VALUES[anomaly_type],
                actual_value=round(self.measure(flow, anomaly_type), 4),
                threshold=self.config.threshold_for(anomaly_type),
                deviation=round(top_score, 4),
            ),
            scores={d: round(s, 4) for d, s in scores.items()},
            metadata={"noise": round(noise, 4)},
        )
        logger.debug(
            f"Classified {flow.id} as {anomaly_type.value}/{severity.value} "
            f"(score={top_score:.2f}, confidence={confidence:.2f})"
        )
        return anomaly

    classify = generate_anomaly

    def is_reportable(self, anomaly: Anomaly) -> bool:
        """Whether an anomaly clears the configured minimum confidence."""
        return anomaly.confidence >= self.config.min_confidence
