import pytest
import logging

import can

from socketcan_mon.model import OutgoingMessageSpec
from fakes import FakeClock, FakeTransport


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "performance: mark test as performance test")


@pytest.fixture(autouse=True)
def setup_logging():
    """Setup logging for tests."""
    logging.basicConfig(level=logging.DEBUG)


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def make_message():
    """Factory for python-can messages as the transport would return them."""
    def _create(arbitration_id=0x123, data=b'\x01\x02', extended=None, error=False):
        return can.Message(
            arbitration_id=arbitration_id,
            data=data,
            is_extended_id=arbitration_id > 0x7FF if extended is None else extended,
            is_error_frame=error,
        )
    return _create


@pytest.fixture
def make_spec():
    """Factory for outgoing message specs."""
    def _create(identifier=0x123, payload=b'\x01\x02\x03\x04', period=0.0):
        return OutgoingMessageSpec(identifier=identifier, payload=payload, period=period)
    return _create