"""Worker entrypoint started on cluster members.

Reads one serialized work item from stdin, runs it and writes the serialized
Outcome to stdout. Anything the work item prints goes to stderr so that
stdout only carries the Outcome.

    $ python -m gceops.remote < item.bin > outcome.bin
"""

from __future__ import annotations

import sys
from contextlib import redirect_stdout
from typing import IO

from gceops.core.work import execute_payload


def main(stdin: IO[bytes] | None = None, stdout: IO[bytes] | None = None) -> int:
    """Run one work item; return the process exit status."""
    stdin = stdin or sys.stdin.buffer
    stdout = stdout or sys.stdout.buffer

    payload = stdin.read()
    if not payload:
        print("gceops.remote: no work item on stdin", file=sys.stderr)
        return 2

    with redirect_stdout(sys.stderr):
        result = execute_payload(payload)

    stdout.write(result)
    stdout.flush()
    return 0


if __name__ == "__main__":
    sys.exit(main())
