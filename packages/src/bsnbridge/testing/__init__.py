"""Public test-support utilities for bsnbridge.

Re-exports test doubles and factories so that consumer test suites
can import everything from a single ``bsnbridge.testing`` namespace
instead of reaching into private modules.

Provided symbols:

- :class:`AggregatorHarness`: aggregator wired with the doubles below.
- :class:`MockTransport`: routing HTTP double that records calls.
- :class:`FakeClock`: deterministic clock for timing tests.
- :func:`make_settings`: factory for ``Settings`` without ``.env`` files.
"""

from bsnbridge._transport import MockTransport, TransportCall
from bsnbridge.testing._clock import FakeClock
from bsnbridge.testing._harness import (
    TEST_LOGIN,
    TEST_PASSWORD,
    TEST_TOKEN,
    AggregatorHarness,
)
from bsnbridge.testing._settings import make_settings

__all__ = [
    "TEST_LOGIN",
    "TEST_PASSWORD",
    "TEST_TOKEN",
    "AggregatorHarness",
    "FakeClock",
    "MockTransport",
    "TransportCall",
    "make_settings",
]
