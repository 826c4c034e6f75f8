"""Report orphan, duplicate and dangling enrollment links; see ``--help``."""

from __future__ import annotations

import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
for p in (REPO_ROOT, REPO_ROOT / "src"):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))

from creche_admin.audit.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
