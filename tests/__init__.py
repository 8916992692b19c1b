"""Test package for typing presence unit and integration tests."""

import logging

logging.getLogger("asyncio").setLevel(logging.ERROR)
