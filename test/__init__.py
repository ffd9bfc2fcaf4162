"""scanfleet test package.

Unit tests live in ``test/unit``; shared doubles in ``test/mocks``.
"""

import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
