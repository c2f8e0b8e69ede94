from __future__ import annotations

import sys

from meeting_meter.cli import main


if __name__ == "__main__":
    # e.g. python apps/run_meter.py -rate=600 -ticks=5s --log-config configs/logging.json
    sys.exit(main())
