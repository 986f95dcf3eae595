"""
pytest configuration for the canopy test suite

Provides a seeded random source, an in-memory store with a few wards,
a wired system and a Flask test client.
"""

import numpy as np
import pytest

from api_server import create_app
from canopy_services import CanopyIntelligenceSystem, InMemoryWardStore


def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "integration: mark test as exercising several layers together"
    )


SAMPLE_WARDS = [
    {'ward_number': 1, 'name': 'Connaught Place', 'zone': 'New Delhi', 'area_sq_km': 4.5, 'population': 45000},
    {'ward_number': 2, 'name': 'Najafgarh', 'zone': 'South West Delhi', 'area_sq_km': 68.0, 'population': 180000},
    {'ward_number': 3, 'name': 'Okhla', 'zone': 'South East Delhi', 'area_sq_km': 16.0, 'population': 175000},
]


@pytest.fixture
def rng():
    """Seeded random source so jittered outputs are reproducible"""
    return np.random.default_rng(42)


@pytest.fixture
def store():
    """In-memory store pre-loaded with three wards"""
    store = InMemoryWardStore()
    store.insert_wards([dict(ward) for ward in SAMPLE_WARDS])
    return store


@pytest.fixture
def wards(store):
    """Stored wards keyed by name"""
    return {ward['name']: ward for ward in store.list_wards()}


@pytest.fixture
def system(store, rng):
    return CanopyIntelligenceSystem(store, rng=rng)


@pytest.fixture
def client(system):
    """Flask test client bound to the in-memory system"""
    app = create_app(system)
    app.config['TESTING'] = True
    return app.test_client()
