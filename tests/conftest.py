"""Test configuration and fixtures."""

import random

import pytest
from faker import Faker

from src.simulator.alarm_correlator import AlarmCorrelator
from src.simulator.anomaly_classifier import AnomalyClassifier
from src.simulator.config import ScenarioConfig, SimulationConfig
from src.simulator.engine import SimulationEngine
from src.simulator.flow_generator import FlowGenerator
from src.simulator.network_sim import NetworkSimulator

SEED = 1234


@pytest.fixture
def rng():
    """Seeded random source."""
    return random.Random(SEED)


@pytest.fixture
def fake():
    """Seeded Faker instance."""
    faker = Faker()
    faker.seed_instance(SEED)
    return faker


@pytest.fixture
def network_simulator(rng):
    """Create a NetworkSimulator instance for testing."""
    return NetworkSimulator(rng=rng)


@pytest.fixture
def sample_topology(network_simulator):
    """Create a sample network topology."""
    return network_simulator.generate_topology(num_routers=2, num_switches=3, num_firewalls=1)


@pytest.fixture
def flow_generator(rng, fake):
    """Create a seeded FlowGenerator."""
    return FlowGenerator(rng=rng, fake=fake)


@pytest.fixture
def classifier(rng):
    """Create a seeded AnomalyClassifier."""
    return AnomalyClassifier(rng=rng)


@pytest.fixture
def correlator():
    """Create an AlarmCorrelator."""
    return AlarmCorrelator()


@pytest.fixture
def anomaly(flow_generator, classifier):
    """An anomaly classified from an anomalous flow."""
    return classifier.generate_anomaly(flow_generator.generate_flow(anomalous=True))


@pytest.fixture
def alarm(correlator, anomaly):
    """An open alarm."""
    return correlator.generate_alarm(anomaly)


@pytest.fixture
def fast_config():
    """Configuration with short intervals for async tests."""
    config = SimulationConfig(seed=SEED)
    config.clock.tick_interval_seconds = 0.02
    config.clock.anomaly_probability = 0.5
    config.scenario = ScenarioConfig(stagger_ms=10, unit_count=10)
    return config


@pytest.fixture
def engine(fast_config):
    """Create a seeded SimulationEngine with fast timings."""
    return SimulationEngine(config=fast_config)
