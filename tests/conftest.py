import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    """Every test starts with an empty rate limiter window."""
    from hlsrelay.services.rate_limiter import rate_limiter
    rate_limiter.reset()
    yield
    rate_limiter.reset()
