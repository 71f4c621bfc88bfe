"""Command-line entry point: run the compute job and dump the result.

Usage:
  gpujob
  gpujob --no-diagnostics --output result.txt
  python -m gpujob --program my_kernel.spv -v
"""

import argparse
import logging
import sys
from typing import Optional

from .backend.errors import GpuJobError, UnknownError
from .config import JobConfig
from .job import ComputeJob
from .utils.log import RunClock, configure_logging
from .utils.output import save_array

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="gpujob", description="Run one Vulkan compute dispatch.")
    ap.add_argument(
        "--no-diagnostics",
        dest="diagnostics",
        action="store_false",
        default=None,
        help="Do not enable the validation layer",
    )
    ap.add_argument("--program", default=None, help="Path to the SPIR-V compute program")
    ap.add_argument("--output", "-o", default=None, help="Where to write the result values")
    ap.add_argument("--verbose", "-v", action="store_true", default=False, help="Debug logging")
    return ap


def main(argv: Optional[list] = None) -> int:
    args = build_parser().parse_args(argv)

    clock = RunClock()
    configure_logging(clock, verbose=args.verbose)

    config = JobConfig.from_env(
        diagnostics=args.diagnostics, program=args.program, output=args.output
    )

    def _save(view):
        if config.output:
            logger.info("Saving...")
            save_array(config.output, view.array)

    try:
        ComputeJob(config, clock=clock).run(consumer=_save)
    except GpuJobError as exc:
        logger.error("main() failed with %s: %s", exc.kind, exc)
        return 1
    except Exception as exc:
        logger.error("main() failed with %s: %s: %s", UnknownError.kind, type(exc).__name__, exc)
        return 1

    logger.info("main() done")
    return 0


if __name__ == "__main__":
    sys.exit(main())
