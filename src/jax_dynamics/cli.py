"""Command-line entry point.

    jax-dynamics-driver -u robot.urdf -c inputs.csv [-f] [-s float32] [-i DIR] [-v]

Loads the model, runs the dynamics pipeline once and exits. Results stay in
memory; the driver is a benchmarking and smoke-test harness, not a reporting
tool. The CSV path is required but not read.
"""

import argparse
import logging
import sys
from typing import List, Optional

from .core.mechanism import ScalarType
from .errors import DriverError
from .pipeline import Pipeline
from .runtime.lifecycle import RuntimeConfig

logger = logging.getLogger(__name__)

_SCALAR_TYPES = {
    "float64": ScalarType.FLOAT64,
    "float32": ScalarType.FLOAT32,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jax-dynamics-driver",
        description="Run inverse dynamics, mass matrix and forward dynamics on a URDF model.",
        allow_abbrev=False,
    )
    parser.add_argument("-u", dest="urdf", metavar="PATH", help="model description (URDF) file")
    parser.add_argument("-f", dest="floating", action="store_true",
                        help="give the mechanism a floating base")
    parser.add_argument("-c", dest="csv", metavar="PATH",
                        help="input data file (validated, not yet consumed)")
    parser.add_argument("-s", dest="scalar_type", choices=sorted(_SCALAR_TYPES), default="float64",
                        help="scalar type of all numeric buffers (default: float64)")
    parser.add_argument("-i", dest="image", metavar="DIR",
                        help="directory of precompiled kernels (persistent compilation cache)")
    parser.add_argument("-v", dest="verbose", action="store_true", help="debug logging")
    return parser


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.urdf:
        parser.error("Must pass in URDF argument (-u).")
    if not args.csv:
        parser.error("Must pass in CSV argument (-c).")

    setup_logging(args.verbose)
    scalar_type = _SCALAR_TYPES[args.scalar_type]
    print(f"Scalar type: {scalar_type.label}")

    pipeline = Pipeline(
        args.urdf,
        floating=args.floating,
        scalar_type=scalar_type,
        runtime_config=RuntimeConfig(num_threads=1, image=args.image),
    )
    try:
        pipeline.run()
    except DriverError as e:
        logger.critical("%s failed at stage %s: %s", args.urdf, pipeline.stage.name, e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
