"""Pytest configuration and fixtures for client tests."""

import pytest
import respx


@pytest.fixture
def respx_mock():
    """Fixture that provides a respx mock router.

    Configuration:
        - assert_all_mocked=True: Any request the client makes must hit a mocked route.
        - assert_all_called=True: Ensures every mock defined is actually used.
          Catches typos in mock URLs and dead mocks.
    """
    with respx.mock(assert_all_mocked=True, assert_all_called=True) as mock:
        yield mock
