#!/usr/bin/env python3
"""
Rebuild points from scratch via the remote reset/ingest/recalc API.

Usage:
    POINTS_API_BASE=https://your-app.vercel.app POINTS_INGEST_TOKEN=... \
        python scripts/points_rebuild.py [--skip-reset] [--skip-ingest] [--fast]
"""

from pathlib import Path
import sys

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from pointsrebuild.app import main


if __name__ == "__main__":
    sys.exit(main(["rebuild", *sys.argv[1:]]))
