import contextlib
import logging
import os
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent

# Add project root to Python path
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


class SafeHandler(logging.StreamHandler):
    """Stream handler that ignores errors from closed streams at exit."""

    def emit(self, record):
        with contextlib.suppress(OSError, ValueError):
            super().emit(record)


logging.basicConfig(
    level=logging.DEBUG if os.environ.get("SCANFLEET_TEST_DEBUG") else logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    handlers=[SafeHandler()],
)
