"""Stand-in for the external upgrade executor used by the CLI tests.

Usage: fake_executor.py WORKDIR [fail]
"""

import sys
import time
from pathlib import Path

workdir = Path(sys.argv[1])
fail = len(sys.argv) > 2 and sys.argv[2] == "fail"

plan = (workdir / "config.xml").read_text(encoding="utf-8")
(workdir / "progress.log").write_text("Upgrading packages...\r\n", encoding="utf-8")
time.sleep(0.05)
(workdir / "progress.log").write_text(f"Processed {plan.count('<project')} project(s)", encoding="utf-8")
time.sleep(0.05)
(workdir / "result.log").write_text("package restore failed" if fail else "success", encoding="utf-8")
