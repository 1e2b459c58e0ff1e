"""Regenerate deal fixtures by running the test suite with --output.

Usage: python tools/fill.py [OUTPUT_DIR] [-- extra pytest args]
"""

from __future__ import annotations

import os
import shutil
import subprocess
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
DEFAULT_OUT = ROOT / "fixtures"


def main(argv: list[str]) -> int:
    extra: list[str] = []
    if "--" in argv:
        split = argv.index("--")
        argv, extra = argv[:split], argv[split + 1:]
    out = Path(argv[0]).resolve() if argv else DEFAULT_OUT

    # Stale cases from removed tests must not survive a refill.
    if out.exists():
        shutil.rmtree(out)

    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join([str(ROOT / "src"), str(ROOT)])
    cmd = [sys.executable, "-m", "pytest", str(ROOT / "tests"), "-q", "--output", str(out), *extra]
    print("Running:", " ".join(cmd))
    return subprocess.call(cmd, env=env, cwd=str(ROOT))


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
