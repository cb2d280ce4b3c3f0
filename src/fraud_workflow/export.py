"""
Model export module for the fraud detection workflow.

Persists fitted workflows and metric tables so a serving process can load
them without access to the training data. Destinations are local paths or
``s3://bucket/key`` URIs; S3 transfers go through boto3.

Example:
    from fraud_workflow.export import export_workflow, load_workflow

    export_workflow(final_workflow, "output/fraud_workflow.joblib", reduce=True)
    workflow = load_workflow("output/fraud_workflow.joblib")
    workflow.predict_class({"step": 1, "type": "TRANSFER", "amount": 181.0, ...})

    export_workflow(final_workflow, "s3://fraud-detection-models/tree/workflow.joblib")
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Mapping, Tuple, Union

import boto3
import joblib
import pandas as pd

from fraud_workflow.workflow import Workflow, WorkflowError

logger = logging.getLogger(__name__)

S3_PREFIX = "s3://"
METRIC_COLUMNS = ("metric", "value")

PathLike = Union[str, Path]


class S3AccessError(Exception):
    """Raised when an artifact cannot be transferred to or from S3.

    The message names the S3 URI and the IAM permission the caller needs.
    """


def _is_s3(path: PathLike) -> bool:
    return str(path).startswith(S3_PREFIX)


def _parse_s3_uri(uri: str) -> Tuple[str, str]:
    """Split ``s3://bucket/key`` into ``(bucket, key)``."""
    bucket, _, key = uri[len(S3_PREFIX):].partition("/")
    if not bucket or not key:
        raise ValueError(f"Invalid S3 URI {uri!r}; expected s3://bucket/key")
    return bucket, key


def _upload(local_path: str, uri: str, s3_client: Any = None) -> None:
    bucket, key = _parse_s3_uri(uri)
    client = s3_client or boto3.client("s3")
    try:
        client.upload_file(local_path, bucket, key)
    except Exception as e:
        raise S3AccessError(
            f"Failed to upload artifact to {uri}. "
            f"Ensure your IAM role has s3:PutObject permission for bucket {bucket}. "
            f"Error: {e}"
        )
    logger.info(f"Uploaded artifact to {uri}")


def _download(uri: str, local_path: str, s3_client: Any = None) -> None:
    bucket, key = _parse_s3_uri(uri)
    client = s3_client or boto3.client("s3")
    try:
        client.download_file(bucket, key, local_path)
    except Exception as e:
        raise S3AccessError(
            f"Failed to download artifact from {uri}. "
            f"Ensure your IAM role has s3:GetObject permission for bucket {bucket}. "
            f"Error: {e}"
        )
    logger.info(f"Downloaded artifact from {uri}")


def _prepare_local(path: PathLike) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def reduce_workflow(workflow: Workflow) -> Workflow:
    """
    Strip training-time artifacts from a fitted workflow.

    The reduced workflow keeps everything prediction needs (recipe
    parameters, the fitted estimator, feature names) and drops the retained
    processed training data and fit diagnostics. Predictions are identical.
    """
    return workflow.reduce()


def export_workflow(
    workflow: Workflow,
    path: PathLike,
    reduce: bool = False,
    s3_client: Any = None,
) -> str:
    """
    Serialize a fitted workflow with joblib.

    Args:
        workflow: Fitted workflow.
        path: Local file path or ``s3://bucket/key``.
        reduce: Apply ``reduce_workflow`` before writing.
        s3_client: Optional boto3 S3 client (a default client is created).

    Returns:
        The destination the artifact was written to.

    Raises:
        WorkflowError: If the workflow is not fitted.
        S3AccessError: If the S3 upload fails.
    """
    if not workflow.is_fitted:
        raise WorkflowError("Only fitted workflows can be exported")
    if reduce:
        workflow = reduce_workflow(workflow)

    if _is_s3(path):
        with tempfile.TemporaryDirectory() as tmp_dir:
            local_path = os.path.join(tmp_dir, "workflow.joblib")
            joblib.dump(workflow, local_path)
            _upload(local_path, str(path), s3_client)
    else:
        joblib.dump(workflow, _prepare_local(path))
        logger.info(f"Exported workflow to {path} (reduced={reduce})")
    return str(path)


def load_workflow(path: PathLike, s3_client: Any = None) -> Workflow:
    """
    Load a workflow written by ``export_workflow``.

    Raises:
        TypeError: If the file does not contain a Workflow.
        S3AccessError: If the S3 download fails.
    """
    if _is_s3(path):
        with tempfile.TemporaryDirectory() as tmp_dir:
            local_path = os.path.join(tmp_dir, "workflow.joblib")
            _download(str(path), local_path, s3_client)
            workflow = joblib.load(local_path)
    else:
        workflow = joblib.load(path)

    if not isinstance(workflow, Workflow):
        raise TypeError(
            f"Expected a Workflow in {path}, found {type(workflow).__name__}"
        )
    logger.info(f"Loaded {workflow.model.family} workflow from {path}")
    return workflow


def _metrics_frame(metrics: Union[pd.DataFrame, Mapping[str, float]]) -> pd.DataFrame:
    if isinstance(metrics, pd.DataFrame):
        missing = [col for col in METRIC_COLUMNS if col not in metrics.columns]
        if missing:
            raise ValueError(f"Metrics table is missing columns {missing}")
        return metrics[list(METRIC_COLUMNS)]
    return pd.DataFrame(
        {"metric": list(metrics.keys()), "value": list(metrics.values())},
        columns=list(METRIC_COLUMNS),
    )


def export_metrics(
    metrics: Union[pd.DataFrame, Mapping[str, float]],
    path: PathLike,
    s3_client: Any = None,
) -> str:
    """
    Write a metrics table as CSV with columns ``metric`` and ``value``.

    Args:
        metrics: DataFrame with those columns, or a mapping of name to value.
        path: Local file path or ``s3://bucket/key``.
        s3_client: Optional boto3 S3 client.
    """
    frame = _metrics_frame(metrics)
    if _is_s3(path):
        with tempfile.TemporaryDirectory() as tmp_dir:
            local_path = os.path.join(tmp_dir, "metrics.csv")
            frame.to_csv(local_path, index=False)
            _upload(local_path, str(path), s3_client)
    else:
        frame.to_csv(_prepare_local(path), index=False)
        logger.info(f"Exported {len(frame)} metrics to {path}")
    return str(path)


def load_metrics(path: PathLike, s3_client: Any = None) -> pd.DataFrame:
    """Read a metrics table written by ``export_metrics``."""
    if _is_s3(path):
        with tempfile.TemporaryDirectory() as tmp_dir:
            local_path = os.path.join(tmp_dir, "metrics.csv")
            _download(str(path), local_path, s3_client)
            frame = pd.read_csv(local_path)
    else:
        frame = pd.read_csv(path)
    return _metrics_frame(frame)


def metrics_as_dict(metrics: pd.DataFrame) -> Dict[str, float]:
    frame = _metrics_frame(metrics)
    return dict(zip(frame["metric"], frame["value"].astype(float)))
