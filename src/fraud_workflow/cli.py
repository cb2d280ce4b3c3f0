"""
Command line entry point.

Usage:
    fraud-workflow run --config config/workflow.yaml
    fraud-workflow predict --model output/fraud_workflow.joblib --input rows.csv
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import pandas as pd

from fraud_workflow.config import WorkflowConfig, configure_logging
from fraud_workflow.data_loading import DEFAULT_DROP_COLUMNS
from fraud_workflow.export import load_workflow
from fraud_workflow.metrics import POSITIVE_LABEL
from fraud_workflow.pipeline import run_workflow

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fraud-workflow",
        description="Fraud detection modeling workflow",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (overrides the configuration file)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run the full experiment")
    run_parser.add_argument(
        "--config",
        required=True,
        help="Path to configuration file (YAML)",
    )

    predict_parser = subparsers.add_parser(
        "predict", help="Predict classes for raw transaction rows"
    )
    predict_parser.add_argument("--model", required=True, help="Exported workflow path or s3:// URI")
    predict_parser.add_argument("--input", required=True, help="CSV file of raw rows")
    predict_parser.add_argument(
        "--output",
        default=None,
        help="Write predictions to this CSV instead of standard output",
    )
    return parser


def _run(args: argparse.Namespace) -> int:
    config_path = Path(args.config)
    if not config_path.exists():
        logger.error(f"Configuration file not found: {args.config}")
        return 1

    config = WorkflowConfig.from_yaml(config_path).apply_env_overrides()
    if args.log_level is None:
        logging.getLogger().setLevel(config.log_level.upper())
    report = run_workflow(config)

    print(f"Best parameters: {report.best_params}")
    for name, value in report.final.metrics.items():
        print(f"test_{name}: {value:.4f}")
    print(f"Model: {report.model_path}")
    print(f"Metrics: {report.metrics_path}")
    return 0


def _predict(args: argparse.Namespace) -> int:
    workflow = load_workflow(args.model)
    rows = pd.read_csv(args.input)
    rows = rows.drop(columns=[col for col in DEFAULT_DROP_COLUMNS if col in rows.columns])

    classes = workflow.fitted_model.classes
    positive = POSITIVE_LABEL if POSITIVE_LABEL in classes else classes[-1]
    predictions = pd.DataFrame(
        {
            "pred_class": workflow.predict_class(rows).to_numpy(),
            "pred_prob": workflow.predict_prob(rows)[f"prob_{positive}"].to_numpy(),
        }
    )
    if args.output:
        predictions.to_csv(args.output, index=False)
        logger.info(f"Wrote {len(predictions)} predictions to {args.output}")
    else:
        predictions.to_csv(sys.stdout, index=False)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level or "INFO")
    handlers = {"run": _run, "predict": _predict}
    try:
        return handlers[args.command](args)
    except Exception as e:
        logger.error(f"{args.command} failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
