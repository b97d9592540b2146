from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import NoReturn, Optional, Tuple

from .config import ConfigError, PipelineConfig, RunSettings, load_config
from .errors import PipelineError
from .pipeline import SNPhyloPipeline
from .self_check import run_self_check
from .utils import get_logger


class _ArgumentParser(argparse.ArgumentParser):
    """Shows the full help on bad arguments and exits with status 1."""

    def error(self, message: str) -> NoReturn:
        self.print_help(sys.stderr)
        self.exit(1, f"\n{self.prog}: error: {message}\n")


def _non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}") from exc
    if number < 0:
        raise argparse.ArgumentTypeError(f"must not be negative: {number}")
    return number


def _positive_int(value: str) -> int:
    number = _non_negative_int(value)
    if number == 0:
        raise argparse.ArgumentTypeError("must be greater than zero")
    return number


def _bounded_float(upper: float):
    def parse(value: str) -> float:
        try:
            number = float(value)
        except ValueError as exc:
            raise argparse.ArgumentTypeError(f"expected a number, got {value!r}") from exc
        if not 0 <= number <= upper:
            raise argparse.ArgumentTypeError(f"must be between 0 and {upper:g}: {number:g}")
        return number

    return parse


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="snphylo",
        description="Build a maximum-likelihood phylogenetic tree from SNP data (VCF, HapMap or GDS)",
    )
    inputs = parser.add_mutually_exclusive_group()
    inputs.add_argument("-v", dest="vcf", metavar="VCF", type=Path, help="VCF file")
    inputs.add_argument("-H", dest="hapmap", metavar="HAPMAP", type=Path, help="HapMap file")
    inputs.add_argument("-d", dest="gds", metavar="GDS", type=Path, help="GDS file")

    parser.add_argument(
        "-c",
        dest="min_depth",
        type=_non_negative_int,
        default=5,
        help="Minimum depth of coverage of a genotype (default: %(default)s)",
    )
    parser.add_argument(
        "-p",
        dest="max_low_percent",
        type=_bounded_float(100.0),
        default=5.0,
        help="Maximum percent of low-coverage or no-genotype samples per SNP (default: %(default)s)",
    )
    parser.add_argument(
        "-l",
        dest="ld_threshold",
        type=_bounded_float(1.0),
        default=0.1,
        help="Linkage disequilibrium threshold (default: %(default)s)",
    )
    parser.add_argument(
        "-m",
        dest="maf_threshold",
        type=_bounded_float(0.5),
        default=0.1,
        help="Minor allele frequency threshold (default: %(default)s)",
    )
    parser.add_argument(
        "-M",
        dest="missing_rate",
        type=_bounded_float(1.0),
        default=0.1,
        help="Missing rate threshold (default: %(default)s)",
    )
    parser.add_argument("-o", dest="outgroup", metavar="SAMPLE", help="Outgroup sample name")
    parser.add_argument(
        "-P",
        dest="prefix",
        default="snphylo.output",
        help="Prefix for output files (default: %(default)s)",
    )
    parser.add_argument(
        "-r",
        dest="skip_filter",
        action="store_true",
        help="Skip the step removing low-quality genotype records",
    )
    parser.add_argument(
        "-a",
        dest="num_chromosomes",
        type=_positive_int,
        default=12,
        help="Number of chromosomes passed to the sequence generator (default: %(default)s)",
    )
    parser.add_argument(
        "-A",
        dest="muscle_max_iters",
        type=_positive_int,
        default=100,
        help="Maximum number of MUSCLE iterations (default: %(default)s)",
    )
    parser.add_argument("-b", dest="bootstrap", action="store_true", help="Run bootstrap analysis")
    parser.add_argument(
        "-B",
        dest="bootstrap_replicates",
        type=_positive_int,
        default=100,
        help="Number of bootstrap replicates (default: %(default)s)",
    )
    parser.add_argument("--config", type=Path, help="Path to an optional YAML configuration file")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log the steps that would run without executing them",
    )
    parser.add_argument(
        "--check-tools",
        action="store_true",
        help="Check that the external programs and scripts can be found, then exit",
    )
    return parser


def _selected_input(args: argparse.Namespace) -> Optional[Tuple[str, Path]]:
    for input_format in ("vcf", "hapmap", "gds"):
        value = getattr(args, input_format)
        if value is not None:
            return input_format, value
    return None


def _fail(parser: argparse.ArgumentParser, logger: logging.Logger, exc: Exception) -> int:
    parser.print_help(sys.stderr)
    logger.error(str(exc))
    return 1


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = get_logger()

    try:
        config = load_config(args.config) if args.config else PipelineConfig.empty()
    except ConfigError as exc:
        return _fail(parser, logger, exc)

    if args.check_tools:
        return run_self_check(config)

    selected = _selected_input(args)
    if selected is None:
        parser.error("one of the arguments -v -H -d is required")
    input_format, input_path = selected

    settings = RunSettings(
        input_format=input_format,
        input_path=input_path,
        min_depth=args.min_depth,
        max_low_percent=args.max_low_percent,
        ld_threshold=args.ld_threshold,
        maf_threshold=args.maf_threshold,
        missing_rate=args.missing_rate,
        outgroup=args.outgroup,
        prefix=args.prefix,
        skip_filter=args.skip_filter,
        num_chromosomes=args.num_chromosomes,
        muscle_max_iters=args.muscle_max_iters,
        bootstrap=args.bootstrap,
        bootstrap_replicates=args.bootstrap_replicates,
    )

    try:
        SNPhyloPipeline(settings, config).run(dry_run=args.dry_run)
    except PipelineError as exc:
        return _fail(parser, logger, exc)

    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
