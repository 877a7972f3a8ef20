"""Pytest configuration and shared fixtures for pipeline tests."""

import sys
from datetime import date, timedelta
from pathlib import Path

import pytest

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from permit_leads.models import LeadRecord


TODAY = date(2025, 6, 1)

# Downtown Dallas, inside the default DFW polygon.
DALLAS = (32.7767, -96.7970)
FORT_WORTH = (32.7555, -97.3308)


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as an end-to-end pipeline test"
    )


# ============================================================================
# Shared Fixtures - Lead Records
# ============================================================================


@pytest.fixture
def today():
    """Fixed reference date so recency maths is deterministic."""
    return TODAY


def build_record(**overrides):
    """Actionable, recent Dallas lead; override any field."""
    fields = {
        "id": "permit-001",
        "data_source": "dallas_permits",
        "address": "123 Main Street",
        "city": "Dallas",
        "applicant": "Acme Builders LLC",
        "description": "Tenant finish-out for restaurant",
        "permit_type": "New Construction",
        "land_use": "COMMERCIAL",
        "project_stage": "PERMIT_ISSUED",
        "valuation": 250_000,
        "applied_date": TODAY - timedelta(days=5),
        "latitude": DALLAS[0],
        "longitude": DALLAS[1],
        "ai_confidence": 80,
        "ai_category": "Restaurant",
    }
    fields.update(overrides)
    return LeadRecord(**fields)


@pytest.fixture
def make_record():
    """Factory fixture returning :func:`build_record`."""
    return build_record


@pytest.fixture
def sample_record():
    """A single actionable lead."""
    return build_record()


@pytest.fixture
def multi_source_payloads():
    """Three upstream rows describing the same Dallas site."""
    applied = (TODAY - timedelta(days=5)).isoformat()
    base = {
        "city": "Dallas",
        "applicant": "Acme Builders LLC",
        "description": "New retail shell building",
        "permitType": "New Construction",
        "landUse": "COMMERCIAL",
        "stage": "PERMIT_ISSUED",
        "appliedDate": applied,
        "latitude": DALLAS[0],
        "longitude": DALLAS[1],
        "aiAnalysis": {"confidenceScore": 70, "category": "Retail"},
    }
    return [
        {**base, "id": "dal-1", "dataSource": "dallas_permits", "address": "123 Main Street", "valuation": 80_000},
        {**base, "id": "co-7", "dataSource": "co_filings", "address": "123 Main St", "valuation": 120_000},
        {**base, "id": "util-3", "dataSource": "utility_hookups", "address": "123 Main St Suite 200", "valuation": 95_000},
    ]
