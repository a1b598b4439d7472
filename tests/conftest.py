import pytest
import structlog

from dependify.core import config
from dependify.services.ai.markets import MarketCode
from dependify.services.ai.registry import CapabilityRegistry
from dependify.services.ai.schema import TenantContext


@pytest.fixture
def ng_context():
    return TenantContext(tenant_id="tenant-ng", user_id="user-1", market=MarketCode.NG, plan="growth")


@pytest.fixture
def us_context():
    return TenantContext(tenant_id="tenant-us", user_id="user-2", market=MarketCode.US, plan="starter")


@pytest.fixture
def registry():
    return CapabilityRegistry()


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch):
    """Each test sees a freshly loaded settings snapshot."""
    monkeypatch.setattr(config, "_settings", None)


@pytest.fixture(autouse=True)
def reset_structlog():
    """Undo configure_logging() so later tests start from structlog defaults."""
    yield
    structlog.reset_defaults()
