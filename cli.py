# cli.py

import argparse
import json
import logging
import sys

from config import SystemConfig
from core.exceptions import InputValidationError, RetrievalError
from core.metrics import Metric
from core.retrieval import RetrievalService
from utils.logging_config import CustomLogger, setup_logging

logger = logging.getLogger(__name__)


def _model_argument(args, config: SystemConfig) -> str:
    """Model from -m, else the first configured one"""
    if args.model:
        return args.model
    if not config.feature_store.models:
        raise InputValidationError("No model given with -m and none configured under feature_store.models")
    return config.feature_store.models[0]


def _report_timings(args, service: RetrievalService):
    if args.timings:
        print("\n" + service.perf_logger.format_summary())
    if args.timings_output:
        service.perf_logger.save_metrics(args.timings_output)
        print(f"Timings saved to: {args.timings_output}")


def search_command(args, config: SystemConfig) -> int:
    """Execute similarity search from command line"""
    service = RetrievalService(config)
    result = service.search(
        args.query,
        model=_model_argument(args, config),
        metric=args.metric,
        k=args.top_k,
        evaluation_window=args.window
    )

    print(f"Top {len(result.neighbors)} neighbors of {result.query} "
          f"({result.model}, {result.metric.label}):")
    for i, (image, score) in enumerate(result.neighbors, 1):
        print(f"{i}. {image} (score: {score:.4f})")

    series = result.recall_precision
    if len(series):
        print(f"\nOver {len(series)} candidates: recall {series.recall[-1]:.2f}, "
              f"precision {series.precision[-1]:.2f}")

    audit = CustomLogger("retrieval", log_dir=config.log_dir, console=False)
    audit.log_operation(
        'search',
        query=result.query,
        model=result.model,
        metric=result.metric.label,
        k=len(result.neighbors),
        evaluation_window=result.evaluation_window,
        timings=service.perf_logger.summary()
    )
    audit.close()

    # Save results to JSON if requested
    if args.output:
        with open(args.output, 'w') as f:
            json.dump(result.to_dict(), f, indent=2)
        print(f"\nResults saved to: {args.output}")
    _report_timings(args, service)
    return 0


def evaluate_command(args, config: SystemConfig) -> int:
    """Evaluate a model/metric pair with every stored image as query"""
    service = RetrievalService(config)
    summary = service.evaluate_model(
        model=_model_argument(args, config),
        metric=args.metric,
        k=args.top_k,
        show_progress=True
    )

    print(f"{summary.model} / {summary.metric.label}, k={summary.k}")
    print(f"  Queries:        {summary.n_queries}")
    print(f"  Mean precision: {summary.mean_precision:.4f}")
    print(f"  Mean recall:    {summary.mean_recall:.4f}")

    if args.output:
        with open(args.output, 'w') as f:
            json.dump(summary.to_dict(), f, indent=2)
        print(f"\nSummary saved to: {args.output}")
    _report_timings(args, service)
    return 0


def models_command(args, config: SystemConfig) -> int:
    """List models that have feature records on disk"""
    service = RetrievalService(config)
    available = service.feature_store.available_models()
    if not available:
        print(f"No models found under {config.feature_store.index_root}")
        return 1

    for name in available:
        marker = "" if name in config.feature_store.models else "  (not enabled)"
        print(f"{name}{marker}")
    return 0


def init_config_command(args, config: SystemConfig) -> int:
    """Write the current configuration to a YAML file"""
    config.save(args.path)
    print(f"Configuration written to: {args.path}")
    return 0


def _add_timing_arguments(parser: argparse.ArgumentParser):
    parser.add_argument('--timings', action='store_true',
                        help='Print per-stage timings (load, rank, evaluate)')
    parser.add_argument('--timings-output', help='JSON file for per-stage timings')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Content-based image retrieval - evaluation command line"
    )
    parser.add_argument('-c', '--config', default='config.yaml',
                        help='Path to YAML configuration')
    subparsers = parser.add_subparsers(dest='command', help='Commands')

    metric_names = [m.label for m in Metric]

    # Similarity search command
    search_parser = subparsers.add_parser('search', help='Find the nearest neighbors of a stored image')
    search_parser.add_argument('query', help='Query image name, e.g. 512.jpg')
    search_parser.add_argument('-m', '--model', help='Feature-extraction model')
    search_parser.add_argument('-d', '--metric', help=f"One of {', '.join(metric_names)}")
    search_parser.add_argument('-k', '--top-k', type=int, help='Number of results to return')
    search_parser.add_argument('-w', '--window', type=int,
                               help='Candidates used for the recall-precision curve')
    search_parser.add_argument('-o', '--output', help='Output JSON file for results')
    _add_timing_arguments(search_parser)
    search_parser.set_defaults(func=search_command)

    # Evaluation command
    evaluate_parser = subparsers.add_parser('evaluate', help='Mean precision/recall over all stored images')
    evaluate_parser.add_argument('-m', '--model', help='Feature-extraction model')
    evaluate_parser.add_argument('-d', '--metric', help=f"One of {', '.join(metric_names)}")
    evaluate_parser.add_argument('-k', '--top-k', type=int, help='Neighbors per query')
    evaluate_parser.add_argument('-o', '--output', help='Output JSON file for the summary')
    _add_timing_arguments(evaluate_parser)
    evaluate_parser.set_defaults(func=evaluate_command)

    # Model listing
    models_parser = subparsers.add_parser('models', help='List models with feature records')
    models_parser.set_defaults(func=models_command)

    # Default configuration
    init_parser = subparsers.add_parser('init-config', help='Write a configuration file')
    init_parser.add_argument('path', nargs='?', default='config.yaml')
    init_parser.set_defaults(func=init_config_command)

    return parser


def main_cli(argv=None) -> int:
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    config = SystemConfig.load(args.config)
    setup_logging(config.log_level, config.log_dir)

    try:
        return args.func(args, config)
    except RetrievalError as e:
        logger.error(f"{type(e).__name__}: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main_cli())
