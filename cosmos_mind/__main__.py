from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

LOG_LEVEL_ENV = "COSMOS_MIND_LOG_LEVEL"


def _ensure_repo_root_on_path() -> None:
    """Ensure the repository root (parent of this package) is on ``sys.path``.

    If this module is executed as a script (``python cosmos_mind/__main__.py``),
    the package may not be discoverable by Python. This helper inserts the
    parent directory of the package into ``sys.path`` so that imports resolve
    correctly.
    """
    pkg_dir = Path(__file__).resolve().parent
    repo_root_str = str(pkg_dir.parent)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


try:
    # Works when executed as a module: python -m cosmos_mind
    from .app import run  # type: ignore[attr-defined]
except ImportError:
    # Works when executed as a script (IDE "Run Python File", absolute path, etc.)
    _ensure_repo_root_on_path()
    from cosmos_mind.app import run  # type: ignore[attr-defined]


def main() -> int:
    """Entry point for playing from the command line."""
    level = os.environ.get(LOG_LEVEL_ENV, "WARNING").strip().upper() or "WARNING"
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    return run()


if __name__ == "__main__":
    raise SystemExit(main())
