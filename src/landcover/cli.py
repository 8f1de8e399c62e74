"""Command-line interface for the land-cover classification pipeline."""

import argparse
import sys
from argparse import ArgumentParser
from typing import List, Optional

from .config import RunContext
from .exceptions import LandCoverError
from .pipeline import run_pipeline
from .training import describe_tree, load_model


def _run(args: argparse.Namespace) -> int:
    try:
        context = RunContext.from_json(args.config)
        if args.output_dir:
            context.output_dir = args.output_dir
        if args.no_parallel:
            context.parallel = False
        result = run_pipeline(context, verbose=not args.quiet)
    except (LandCoverError, FileNotFoundError) as exc:
        print(f"landcover: error: {exc}", file=sys.stderr)
        return 1

    if args.quiet:
        return 0

    accuracy = result.report['accuracy']['accuracy']
    print(f"Classification written to {result.outputs['classification']} "
          f"(training accuracy {100 * accuracy:.1f}%)")
    return 0


def _describe(args: argparse.Namespace) -> int:
    try:
        model = load_model(args.model)
    except (LandCoverError, FileNotFoundError) as exc:
        print(f"landcover: error: {exc}", file=sys.stderr)
        return 1

    print(f"Bands: {', '.join(model.band_names)}")
    print(f"Classes: {', '.join(model.legend.labels)}")
    print(f"Leaves: {model.n_leaves}, depth: {model.depth}")
    print(describe_tree(model))
    return 0


def _configure_cli() -> ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="landcover-classify",
        description="Supervised decision-tree land-cover classification",
    )
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Run the full classification pipeline")
    run_parser.add_argument("--config", required=True, help="Path to run configuration JSON")
    run_parser.add_argument("--output-dir", help="Override the configured output directory")
    run_parser.add_argument(
        "--no-parallel", action="store_true", help="Classify blocks sequentially"
    )
    run_parser.add_argument("--quiet", action="store_true", help="Print errors only")
    run_parser.set_defaults(func=_run)

    describe_parser = subparsers.add_parser("describe", help="Print a saved decision tree")
    describe_parser.add_argument("--model", required=True, help="Path to decision_tree.joblib")
    describe_parser.set_defaults(func=_describe)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = _configure_cli()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
