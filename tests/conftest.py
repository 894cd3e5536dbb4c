"""
Pytest configuration and fixtures for record data generator tests.

Provides sample schemas, validation rules, fixed clocks and test utilities.
"""

# CRITICAL: Mock Prometheus BEFORE any imports to prevent registry conflicts
import sys
from unittest.mock import MagicMock

# Create mock prometheus_client module
mock_prometheus = MagicMock()


def _create_mock_metric(*args, **kwargs):
    """Create a mock metric with all necessary methods."""
    mock = MagicMock()
    mock.labels = MagicMock(return_value=mock)
    mock.inc = MagicMock()
    mock.dec = MagicMock()
    mock.set = MagicMock()
    mock.observe = MagicMock()
    mock.time = MagicMock(return_value=MagicMock(__enter__=MagicMock(), __exit__=MagicMock()))
    return mock


mock_prometheus.Counter = MagicMock(side_effect=_create_mock_metric)
mock_prometheus.Gauge = MagicMock(side_effect=_create_mock_metric)
mock_prometheus.Histogram = MagicMock(side_effect=_create_mock_metric)
mock_prometheus.Summary = MagicMock(side_effect=_create_mock_metric)
mock_prometheus.REGISTRY = MagicMock()
mock_prometheus.CollectorRegistry = MagicMock

# Install mock before any other imports
sys.modules["prometheus_client"] = mock_prometheus

# Now safe to import other modules
import json
import tempfile
from datetime import datetime
from pathlib import Path

import pytest

# Ensure src/ is on sys.path for local test runs without installation
_SRC = Path(__file__).resolve().parents[1] / "src"
if _SRC.exists() and str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

from record_datagen.generators.picklist_decoder import encode_valid_for
from record_datagen.shared.models import FieldDescriptor, ObjectSchema, ValidationRule
from tests.test_utils import FIXED_NOW


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def now_clock():
    """Wall clock pinned to FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture
def country_field() -> FieldDescriptor:
    return FieldDescriptor(
        name="Country",
        type="picklist",
        picklistValues=[
            {"value": "AU", "label": "Australia"},
            {"value": "US", "label": "United States"},
            {"value": "NZ", "label": "New Zealand", "active": False},
        ],
    )


@pytest.fixture
def state_field() -> FieldDescriptor:
    """State options valid under AU (position 0) or US (position 1)."""
    au = encode_valid_for([0], 2)
    us = encode_valid_for([1], 2)
    return FieldDescriptor(
        name="State",
        type="picklist",
        controllerName="Country",
        picklistValues=[
            {"value": "NSW", "validFor": au},
            {"value": "VIC", "validFor": au},
            {"value": "CA", "validFor": us},
            {"value": "TX", "validFor": us},
        ],
    )


@pytest.fixture
def account_schema(country_field, state_field) -> ObjectSchema:
    """A small account object covering every generation path."""
    return ObjectSchema(
        name="Account",
        fields=[
            FieldDescriptor(name="Id", type="id", createable=False),
            FieldDescriptor(name="Name", type="string", required=True, length=80),
            FieldDescriptor(
                name="Type",
                type="picklist",
                picklistValues=[{"value": "Customer"}, {"value": "Partner"}, {"value": "Prospect"}],
            ),
            FieldDescriptor(name="Industry", type="string", length=40),
            country_field,
            state_field,
            FieldDescriptor(name="Email", type="email", length=80),
            FieldDescriptor(name="AnnualRevenue", type="currency", precision=18, scale=2),
            FieldDescriptor(name="NumberOfEmployees", type="int", precision=8, scale=0),
            FieldDescriptor(name="Start_Date__c", type="date"),
            FieldDescriptor(name="IsActive__c", type="checkbox"),
            FieldDescriptor(name="Score__c", type="double", calculated=True),
        ],
    )


@pytest.fixture
def account_rules() -> list[ValidationRule]:
    return [
        ValidationRule(
            fullName="Industry_Required_For_Customers",
            errorConditionFormula='IF(Type = "Customer", ISBLANK(Industry), false)',
            errorMessage="Industry is required for customers",
        ),
        ValidationRule(
            fullName="Revenue_Not_Negative",
            errorConditionFormula="AnnualRevenue < 0",
            errorMessage="Annual revenue cannot be negative",
            errorDisplayField="AnnualRevenue",
        ),
        ValidationRule(
            fullName="Name_Length",
            errorConditionFormula="LEN(Name) > 60",
            errorMessage="Name is too long",
        ),
        ValidationRule(
            fullName="Inactive_Rule",
            active=False,
            errorConditionFormula="ISBLANK(Email)",
            errorMessage="Email required",
        ),
    ]


@pytest.fixture
def unsupported_rule() -> ValidationRule:
    return ValidationRule(
        fullName="Owner_Changed",
        errorConditionFormula="ISCHANGED(OwnerId) && PRIORVALUE(OwnerId) <> null",
        errorMessage="Owner cannot change",
    )


@pytest.fixture
def sample_config_data() -> dict:
    """Sample configuration data for testing."""
    return {
        "seed": 7,
        "generation": {"max_repair_attempts": 5, "null_probability": 0.2},
        "prevalidation": {"max_records": 500, "timeout_ms": 10000},
        "cache": {"evaluation_cache_size": 2048},
        "logging": {"level": "debug"},
    }


@pytest.fixture
def temp_config_file(sample_config_data) -> str:
    """Create a temporary config file for testing."""
    with tempfile.NamedTemporaryFile(mode="w", suffix=".json", delete=False) as temp_file:
        json.dump(sample_config_data, temp_file)
        temp_path = temp_file.name

    yield temp_path

    # Cleanup
    Path(temp_path).unlink(missing_ok=True)
