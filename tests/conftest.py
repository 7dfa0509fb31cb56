"""
Pytest configuration and shared fixtures.

Registers the integration marker/option and builds request and actor
snapshots the way the procurement API returns them.
"""

import pytest
from procure_desk.models.request import Actor, PurchaseRequest


def pytest_addoption(parser):
    """Add custom command-line options"""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests against a real procurement API"
    )


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test requiring a running procurement API"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration is specified"""
    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(reason="need --run-integration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


def _build_request(**overrides) -> PurchaseRequest:
    data = {
        "id": 42,
        "title": "Laptops for onboarding",
        "description": "Three developer laptops",
        "amount": "500.00",
        "priority": "medium",
        "status": "pending",
        "vendor_name": "Contoso",
        "vendor_email": "sales@contoso.example",
        "approvals": [],
    }
    data.update(overrides)
    return PurchaseRequest.model_validate(data)


@pytest.fixture
def make_request():
    return _build_request


@pytest.fixture
def staff():
    return Actor(id=1, role="staff", username="sam")


@pytest.fixture
def approver_l1():
    return Actor(id=2, role="approver_level_1", username="ana")


@pytest.fixture
def approver_l2():
    return Actor(id=3, role="approver_level_2", username="lee")


@pytest.fixture
def admin():
    return Actor(id=4, role="admin", username="root")


@pytest.fixture
def finance():
    return Actor(id=5, role="finance", username="fin")
