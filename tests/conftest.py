#!/usr/bin/env python3
"""
pytest configuration and fixtures for SIAP-SPJ
Provides a test database, Flask clients per role, and claim payload factories.
"""

import pytest
import tempfile
import os
import copy
import sys
from typing import Dict, Any

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Import application modules
from access_control import CredentialTableAuthenticator, DEMO_ACCOUNTS
from config import TestingConfig
from database_pool import ConnectionPool, SPJStore
from services import ClaimService
from spj_web_app import create_app
from validators import ClaimSubmission, COST_COMPONENT_FIELDS

TEST_ACTOR = 'bendahara_pengeluaran'

BASE_PAYLOAD: Dict[str, Any] = {
    'basicInfo': {
        'no_spt': 'SPT/015/BK3/2024',
        'no_sppd': 'SPPD/015/2024',
        'kode_mak': '2382.EBA.994.002',
        'sumber_anggaran': 'SPJ DIPA',
        'jenis_kegiatan': 'Perjalanan Dinas',
        'metode_pembayaran': 'Transfer',
        'tanggal_berangkat': '2024-03-04',
        'tanggal_pulang': '2024-03-06',
        'lama_perjalanan': 3,
        'tujuan': 'Balikpapan',
        'provinsi_tujuan': 'Kalimantan Timur',
        'unit_organisasi': 'Balai K3 Samarinda',
        'representasi': 50000,
    },
    'tim': [
        {'nama': 'Andi Pratama', 'jabatan': 'Pengawas K3', 'golongan': 'III/b', 'unit_kerja': 'Seksi Pengujian'},
    ],
    'perusahaan': [
        {'nama_perusahaan': 'PT Kaltim Prima Coal'},
    ],
    'transportDetails': [
        {'jenis': 'Pesawat', 'nomor_tiket': 'GA-564', 'maskapai': 'Garuda Indonesia', 'tarif': 500000},
        {'jenis': 'Roda 4', 'nomor_tiket': '', 'maskapai': 'Rental', 'tarif': 750000},
    ],
    'penginapanDetails': [
        {'nama_hotel': 'Hotel Gran Senyiur', 'jumlah_hari': 2, 'tarif': 300000, 'is_30_percent': False},
    ],
    'komponen': {name: 0 for name in COST_COMPONENT_FIELDS},
    'dokumen': {
        'file_spt': 'https://drive.example.com/spt-015',
        'file_rincian': 'https://drive.example.com/rincian-015',
    },
    'total_biaya': 1600000,
}


# ==================== Database Fixtures ====================

@pytest.fixture
def test_db_path():
    """Create a temporary database file path."""
    temp_dir = tempfile.mkdtemp()
    path = os.path.join(temp_dir, 'spj_test.db')
    yield path
    # Cleanup
    for suffix in ('', '-wal', '-shm'):
        try:
            os.unlink(path + suffix)
        except OSError:
            pass
    try:
        os.rmdir(temp_dir)
    except OSError:
        pass


@pytest.fixture
def pool(test_db_path):
    """Connection pool on the temporary database file."""
    pool = ConnectionPool(test_db_path, pool_size=2, max_overflow=4, timeout=10)
    yield pool
    pool.close_all()


@pytest.fixture
def store(pool):
    """Claim store with the schema created."""
    return SPJStore(pool)


@pytest.fixture
def service(store):
    return ClaimService(store)


# ==================== Flask App Fixtures ====================

@pytest.fixture(scope='session')
def authenticator():
    """Demo-account authenticator; hashing is slow so build it once."""
    return CredentialTableAuthenticator.with_demo_accounts()


@pytest.fixture
def test_config(test_db_path):
    return TestingConfig(DATABASE_PATH=test_db_path)


@pytest.fixture
def app(test_config, service, authenticator):
    """Create and configure a test Flask application."""
    flask_app = create_app(test_config, service=service, authenticator=authenticator)
    flask_app.config['TESTING'] = True

    with flask_app.app_context():
        yield flask_app


@pytest.fixture
def client(app):
    """Create an anonymous test client for the Flask application."""
    return app.test_client()


def login(app, username: str):
    """New test client logged in as one of the demo accounts."""
    client = app.test_client()
    password = DEMO_ACCOUNTS[username][2]
    response = client.post('/api/login', json={'username': username, 'password': password})
    assert response.status_code == 200, response.get_json()
    return client


@pytest.fixture
def admin_client(app):
    return login(app, 'admin')


@pytest.fixture
def bendahara_client(app):
    return login(app, 'bendahara_pengeluaran')


@pytest.fixture
def verifikator_client(app):
    return login(app, 'verifikator')


# ==================== Test Data Factory Fixtures ====================

@pytest.fixture
def payload_factory():
    """Factory for create payloads; ``basic`` entries override basicInfo fields."""
    def create_payload(basic: Dict[str, Any] = None, **overrides) -> Dict[str, Any]:
        payload = copy.deepcopy(BASE_PAYLOAD)
        if basic:
            payload['basicInfo'].update(basic)
        payload.update(copy.deepcopy(overrides))
        return payload

    return create_payload


@pytest.fixture
def claim_factory(payload_factory):
    """Factory for validated ClaimSubmission models."""
    def create_claim(basic: Dict[str, Any] = None, **overrides) -> ClaimSubmission:
        return ClaimSubmission.model_validate(payload_factory(basic, **overrides))

    return create_claim


# ==================== Test Markers ====================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "security: Security tests")
