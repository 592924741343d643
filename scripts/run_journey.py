#!/usr/bin/env python3
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

print(
    f"[journey] binary={os.environ.get('PERF_BROWSER_BINARY', 'auto')} | "
    f"port={os.environ.get('PERF_BROWSER_PORT', '9222')} | "
    f"headless={os.environ.get('PERF_HEADLESS', '1')} | "
    f"out={os.environ.get('PERF_OUT_DIR', 'perf-results/<timestamp>')}",
    file=sys.stderr,
)

from perf_tools.journey.main import main  # noqa: E402

if __name__ == "__main__":
    sys.exit(main())
