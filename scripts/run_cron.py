#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from kaapav.core.database import SessionLocal  # noqa: E402
from kaapav.core.logging_setup import configure_logging  # noqa: E402
from kaapav.runtime import build_runtime  # noqa: E402
from kaapav.scheduler.jobs import CRON_JOBS, run_cron  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the jobs registered for one cron expression.")
    parser.add_argument("expression", choices=sorted(CRON_JOBS), help='Cron expression, e.g. "*/5 * * * *"')
    return parser.parse_args()


async def _run(expression: str) -> dict:
    runtime = build_runtime(SessionLocal)
    try:
        return await run_cron(expression, runtime)
    finally:
        await runtime.aclose()


def main() -> int:
    args = parse_args()
    configure_logging()
    results = asyncio.run(_run(args.expression))
    print(json.dumps(results, default=str, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
