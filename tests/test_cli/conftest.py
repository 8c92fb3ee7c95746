import pytest
import structlog


@pytest.fixture(autouse=True)
def _reset_structlog():
    """CliRunner swaps sys.stderr; don't let configure_logging leak the closed stream."""
    yield
    structlog.reset_defaults()
