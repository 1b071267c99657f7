from __future__ import annotations

import logging
import os
import sys
from pathlib import Path


def _ensure_repo_root_on_path() -> None:
    """Put the repository root on ``sys.path`` when run as a plain script."""
    repo_root_str = str(Path(__file__).resolve().parent.parent)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


try:
    # python -m rhythm_captcha
    from .app import run  # type: ignore[attr-defined]
except ImportError:
    # python rhythm_captcha/__main__.py
    _ensure_repo_root_on_path()
    from rhythm_captcha.app import run  # type: ignore[attr-defined]


def main() -> int:
    logging.basicConfig(
        level=os.environ.get("RHYTHM_CAPTCHA_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return run()


if __name__ == "__main__":
    raise SystemExit(main())
