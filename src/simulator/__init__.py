"""
Flow Simulator Package

Provides tools for simulating network topology, flows, anomalies, alarms
and attack scenarios.
"""

from src.simulator.network_sim import NetworkSimulator
from src.simulator.flow_generator import FlowGenerator
from src.simulator.anomaly_classifier import AnomalyClassifier
from src.simulator.alarm_correlator import AlarmCorrelator
from src.simulator.scenario import ScenarioOrchestrator
from src.simulator.clock import CancellationToken, SimulationClock
from src.simulator.history import BoundedHistory
from src.simulator.analytics import FlowAnalyzer
from src.simulator.engine import SimulationEngine

__all__ = [
    "NetworkSimulator",
    "FlowGenerator",
    "AnomalyClassifier",
    "AlarmCorrelator",
    "ScenarioOrchestrator",
    "CancellationToken",
    "SimulationClock",
    "BoundedHistory",
    "FlowAnalyzer",
    "SimulationEngine",
]
