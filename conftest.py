"""Repository-wide pytest configuration.

Keeps the repository root on ``sys.path`` so ``backend``, ``orchestrator``,
``routes``, ``services`` and ``tools`` resolve regardless of the invocation
directory, and quiets request logging during test runs.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("PYTHONPATH", str(ROOT))
os.environ.setdefault("MARKETPLACE_LOG_LEVEL", "WARNING")
