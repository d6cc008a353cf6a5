"""Local demo agent for CLI session integration tests."""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """Echo the session prompt back as a JSON report.

    ``--exit-code`` lets tests simulate a failing session.
    """

    parser = argparse.ArgumentParser()
    parser.add_argument("--prompt-file", required=True)
    parser.add_argument("--exit-code", type=int, default=0)
    args = parser.parse_args(argv)

    prompt = Path(args.prompt_file).read_text("utf-8")
    first_step = next(
        (line for line in prompt.splitlines() if line.startswith("Step ")),
        "",
    )
    report = {
        "backend": "echo_agent",
        "task_id": os.getenv("LEGACY_AGENCY_TASK_ID"),
        "session_id": os.getenv("LEGACY_AGENCY_SESSION_ID"),
        "mode": os.getenv("LEGACY_AGENCY_MODE"),
        "step": first_step,
        "status": "ok" if args.exit_code == 0 else "failed",
    }
    sys.stdout.write(json.dumps(report) + "\n")
    if args.exit_code != 0:
        sys.stderr.write(f"echo agent failed with exit code {args.exit_code}\n")
    return args.exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
