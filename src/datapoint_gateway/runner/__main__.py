# Copyright (c) 2024 OpenMined
# SPDX-License-Identifier: Apache-2.0
"""Entry point for the datapoint-gateway runner.

Usage:
    python -m datapoint_gateway.runner < input.json > output.json

The runner reads JSON input from stdin, runs the request through the
configured gateway, and writes JSON output to stdout.  Logs go to stderr.

Exit codes:
    0: Success
    1: Failure (error details in JSON output)
"""

from __future__ import annotations

import asyncio
import sys

from datapoint_gateway._internal.logging import configure_logging

from .executor import Executor
from .schema import RunnerInput, RunnerOutput


def main() -> int:
    """Main entry point.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    try:
        input_data = RunnerInput.model_validate_json(sys.stdin.read())

        if input_data.config is not None:
            configure_logging(input_data.config.logging.level, json=input_data.config.logging.json_output)
        else:
            configure_logging("warning", json=True)

        output = asyncio.run(Executor().execute(input_data))
        print(output.model_dump_json())
        return 0 if output.success else 1

    except Exception as e:
        # Ensure we always output valid JSON, even on unexpected errors
        error_output = RunnerOutput(
            success=False,
            error=str(e),
            error_type=type(e).__name__,
        )
        print(error_output.model_dump_json())
        return 1


if __name__ == "__main__":
    sys.exit(main())
