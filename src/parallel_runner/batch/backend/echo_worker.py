"""Local stub worker for launcher and scheduler integration tests.

The instruction may carry ``sleep=<seconds>`` and ``exit=<code>`` tokens that
control how long the stub runs and which code it exits with.
"""

from __future__ import annotations

import argparse
import re
import sys
import time

_SLEEP_PATTERN = re.compile(r"\bsleep=(\d+(?:\.\d+)?)")
_EXIT_PATTERN = re.compile(r"\bexit=(\d+)")


def main(argv: list[str] | None = None) -> int:
    """Echo the instruction and exit with the requested code."""

    parser = argparse.ArgumentParser()
    parser.add_argument("-p", "--prompt", required=True)
    args, _unknown = parser.parse_known_args(argv)

    prompt: str = args.prompt
    sleep_match = _SLEEP_PATTERN.search(prompt)
    if sleep_match is not None:
        time.sleep(float(sleep_match.group(1)))

    sys.stdout.write(f"echo: {prompt}\n")
    sys.stdout.flush()

    exit_match = _EXIT_PATTERN.search(prompt)
    exit_code = int(exit_match.group(1)) if exit_match is not None else 0
    if exit_code != 0:
        sys.stderr.write(f"echo worker failing with exit code {exit_code}\n")
    return exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
