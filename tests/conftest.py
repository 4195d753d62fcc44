"""
conftest.py - Shared pytest fixtures for vesting tests

Provides common fixtures used across unit, functional and conformance tests:
- Engines (empty, funded, purchase-ready, swap-ready)
- Schedule parameters at a fixed start time
- A transfer agent that can be told to fail
"""

import pytest

from vesting import ScheduleEngine, StaticAccessControl

from tests.helpers import (
    ADMIN, make_engine, make_params, configure_purchase, configure_swap,
)
from tests.fake_transfer_agent import FailingTransferAgent


# =============================================================================
# ENGINE FIXTURES
# =============================================================================

@pytest.fixture
def empty_engine():
    """Engine with an admin but no registered assets."""
    return ScheduleEngine(access_control=StaticAccessControl({ADMIN}))


@pytest.fixture
def engine():
    """Engine holding 5000 EEFI."""
    return make_engine()


@pytest.fixture
def purchase_engine(engine):
    """Engine with EEFI priced at 12 USDC, a 3000 EEFI threshold and a 2% release."""
    return configure_purchase(engine)


@pytest.fixture
def swap_engine(engine):
    """Engine with OLD authorized at a 1/4 ratio and swapping on."""
    return configure_swap(engine)


# =============================================================================
# COLLABORATOR FIXTURES
# =============================================================================

@pytest.fixture
def failing_agent():
    """Agent that succeeds until a test arms it."""
    return FailingTransferAgent()


@pytest.fixture
def failing_engine(failing_agent):
    """Funded engine wired to failing_agent, purchase and swap configured."""
    engine = make_engine(agent=failing_agent)
    configure_purchase(engine)
    configure_swap(engine)
    return engine


# =============================================================================
# PARAMETER FIXTURES
# =============================================================================

@pytest.fixture
def params():
    return make_params()


@pytest.fixture
def fixed_params():
    return make_params(is_fixed=True)
