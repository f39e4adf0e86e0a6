"""Model evaluation with bootstrap confidence intervals."""

import argparse
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import joblib
import numpy as np
import pandas as pd
from sklearn.metrics import confusion_matrix, roc_auc_score, roc_curve

from diabetes_risk.config.constants import (
    DEFAULT_BOOTSTRAP_RESAMPLES,
    DEFAULT_RANDOM_SEED,
    MIN_BOOTSTRAP_RESAMPLES,
    TEST_MATRIX_FILENAME,
)
from diabetes_risk.exceptions import InvalidMetricError
from diabetes_risk.features.preprocess import EncodedMatrix, read_design_matrix

logger = logging.getLogger(__name__)

CLASS_NAMES = ["Negative", "Positive"]


def _accuracy(y_true, y_pred, y_score):
    return float(np.mean(y_true == y_pred))


def _sensitivity(y_true, y_pred, y_score):
    positives = y_true == 1
    if not positives.any():
        return float("nan")
    return float(np.mean(y_pred[positives] == 1))


def _specificity(y_true, y_pred, y_score):
    negatives = y_true == 0
    if not negatives.any():
        return float("nan")
    return float(np.mean(y_pred[negatives] == 0))


def _auc(y_true, y_pred, y_score):
    if len(np.unique(y_true)) < 2:
        return float("nan")
    return float(roc_auc_score(y_true, y_score))


METRICS: Dict[str, Callable] = {
    "accuracy": _accuracy,
    "sensitivity": _sensitivity,
    "specificity": _specificity,
    "auc": _auc,
}


@dataclass(frozen=True)
class ConfidenceInterval:
    metric: str
    point: float
    lower: float
    upper: float
    confidence: float
    n_resamples: int

    def __str__(self) -> str:
        return f"{self.point:.4f} ({self.confidence:.0%} CI {self.lower:.4f}-{self.upper:.4f})"


@dataclass
class EvaluationReport:
    """Holdout performance of one model.

    ``confusion`` has predicted classes as rows and actual classes as
    columns, both ordered Negative, Positive.
    """

    model_name: str
    n_samples: int
    confusion: np.ndarray
    accuracy: float
    sensitivity: float
    specificity: float
    roc_curve: List[Tuple[float, float]]
    auc: float
    intervals: Dict[str, ConfidenceInterval] = field(default_factory=dict)

    def metrics(self) -> Dict[str, float]:
        """Flat metric dictionary for experiment tracking and JSON summaries."""
        flat = {
            "accuracy": self.accuracy,
            "sensitivity": self.sensitivity,
            "specificity": self.specificity,
            "auc": self.auc,
        }
        for name, interval in self.intervals.items():
            flat[f"{name}_ci_lower"] = interval.lower
            flat[f"{name}_ci_upper"] = interval.upper
        return flat


def predicted_by_actual_confusion(y_true, y_pred) -> np.ndarray:
    """2x2 confusion matrix with rows = predicted and columns = actual."""
    return confusion_matrix(np.asarray(y_true), np.asarray(y_pred), labels=[0, 1]).T


def format_confusion_matrix(confusion: np.ndarray) -> str:
    frame = pd.DataFrame(
        confusion,
        index=[f"Predicted {c}" for c in CLASS_NAMES],
        columns=[f"Actual {c}" for c in CLASS_NAMES],
    )
    return frame.to_string()


def bootstrap_ci(
    y_true,
    y_pred=None,
    metric: str = "accuracy",
    n_resamples: int = DEFAULT_BOOTSTRAP_RESAMPLES,
    seed: int = DEFAULT_RANDOM_SEED,
    confidence: float = 0.95,
    y_score=None,
) -> ConfidenceInterval:
    """Percentile bootstrap confidence interval of a classification metric.

    Resamples the N observations with replacement ``n_resamples`` times and
    takes the central percentiles of the metric over the resamples. Resamples
    on which the metric is undefined (e.g. sensitivity without positives) are
    skipped. The interval is widened where needed to contain the point
    estimate.

    Args:
        y_true: True 0/1 labels
        y_pred: Predicted 0/1 labels (not needed for auc)
        metric: One of accuracy, sensitivity, specificity, auc
        n_resamples: Number of bootstrap resamples
        seed: Random seed
        confidence: Interval coverage
        y_score: Positive-class scores (required for auc)

    Returns:
        ConfidenceInterval

    Raises:
        InvalidMetricError: If the metric name is not recognized
    """
    if metric not in METRICS:
        raise InvalidMetricError(f"Unknown metric '{metric}'; expected one of {sorted(METRICS)}")
    if n_resamples < MIN_BOOTSTRAP_RESAMPLES:
        raise ValueError(f"n_resamples must be >= {MIN_BOOTSTRAP_RESAMPLES}, got {n_resamples}")
    if not 0 < confidence < 1:
        raise ValueError(f"confidence must be in (0, 1), got {confidence}")
    if metric == "auc" and y_score is None:
        raise ValueError("y_score is required for metric 'auc'")
    if metric != "auc" and y_pred is None:
        raise ValueError(f"y_pred is required for metric '{metric}'")

    fn = METRICS[metric]
    y_true = np.asarray(y_true).astype(int)
    y_pred = None if y_pred is None else np.asarray(y_pred).astype(int)
    y_score = None if y_score is None else np.asarray(y_score, dtype=float)

    point = fn(y_true, y_pred, y_score)
    if np.isnan(point):
        raise ValueError(f"Metric '{metric}' is undefined on the given labels")

    rng = np.random.default_rng(seed)
    n = len(y_true)
    stats = np.empty(n_resamples)
    for b in range(n_resamples):
        idx = rng.integers(0, n, size=n)
        stats[b] = fn(
            y_true[idx],
            None if y_pred is None else y_pred[idx],
            None if y_score is None else y_score[idx],
        )
    stats = stats[~np.isnan(stats)]

    alpha = (1 - confidence) / 2
    lower, upper = np.percentile(stats, [100 * alpha, 100 * (1 - alpha)])

    return ConfidenceInterval(
        metric=metric,
        point=point,
        lower=float(min(lower, point)),
        upper=float(max(upper, point)),
        confidence=confidence,
        n_resamples=n_resamples,
    )


def evaluate(
    model,
    holdout_set: EncodedMatrix,
    n_resamples: int = DEFAULT_BOOTSTRAP_RESAMPLES,
    seed: int = DEFAULT_RANDOM_SEED,
    confidence: float = 0.95,
) -> EvaluationReport:
    """Evaluate a trained model on a holdout subset.

    Args:
        model: TrainedModel
        holdout_set: Encoded validation or test subset
        n_resamples: Bootstrap resamples per interval
        seed: Bootstrap random seed
        confidence: Interval coverage

    Returns:
        EvaluationReport; metrics undefined on the holdout (sensitivity
        without positives, specificity without negatives, ROC/AUC with a
        single class) are NaN and have no interval
    """
    y_true = holdout_set.y.to_numpy().astype(int)
    y_pred, y_score = model.predict(holdout_set)

    points = {name: fn(y_true, y_pred, y_score) for name, fn in METRICS.items()}

    if len(np.unique(y_true)) < 2:
        curve = []
    else:
        fpr, tpr, _ = roc_curve(y_true, y_score)
        curve = [(float(f), float(t)) for f, t in zip(fpr, tpr)]

    intervals = {}
    for metric, point in points.items():
        if np.isnan(point):
            logger.warning(f"{model.name}: {metric} undefined on holdout of {len(y_true)} rows")
            continue
        intervals[metric] = bootstrap_ci(
            y_true,
            y_pred,
            metric=metric,
            n_resamples=n_resamples,
            seed=seed,
            confidence=confidence,
            y_score=y_score,
        )

    report = EvaluationReport(
        model_name=model.name,
        n_samples=len(y_true),
        confusion=predicted_by_actual_confusion(y_true, y_pred),
        accuracy=points["accuracy"],
        sensitivity=points["sensitivity"],
        specificity=points["specificity"],
        roc_curve=curve,
        auc=points["auc"],
        intervals=intervals,
    )
    logger.info(f"{model.name}: accuracy={report.accuracy:.4f}, AUC={intervals.get('auc', report.auc)}")
    return report


def format_report(report: EvaluationReport) -> str:
    """Console text for an evaluation report."""
    lines = [
        f"Model: {report.model_name} (n={report.n_samples})",
        "",
        format_confusion_matrix(report.confusion),
        "",
    ]
    for name in ("accuracy", "sensitivity", "specificity", "auc"):
        interval = report.intervals.get(name)
        value = str(interval) if interval is not None else f"{getattr(report, name):.4f}"
        lines.append(f"  {name:<12} {value}")
    return "\n".join(lines)


def load_model_artifacts(model_path: Path):
    """Load trained model artifacts.

    Args:
        model_path: Path to model artifacts file

    Returns:
        Dictionary containing models, feature columns, reference levels and config
    """
    return joblib.load(model_path)


def generate_evaluation_report(
    model_path: Path,
    test_data_path: Path,
    output_dir: Path,
    n_resamples: int = DEFAULT_BOOTSTRAP_RESAMPLES,
    seed: int = DEFAULT_RANDOM_SEED,
    model_names: Optional[List[str]] = None,
) -> Dict[str, EvaluationReport]:
    """Evaluate saved models on a design-matrix file and write a JSON summary.

    Args:
        model_path: Path to model artifacts
        test_data_path: Path to an encoded design-matrix CSV
        output_dir: Directory to save evaluation outputs
        n_resamples: Bootstrap resamples per interval
        seed: Bootstrap random seed
        model_names: Models to evaluate (all when None)

    Returns:
        Dictionary of model name to EvaluationReport
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    artifacts = load_model_artifacts(model_path)
    holdout = read_design_matrix(test_data_path, reference_levels=artifacts.get("reference_levels"))

    reports = {}
    for name, model in artifacts["models"].items():
        if model_names and name not in model_names:
            continue
        reports[name] = evaluate(model, holdout, n_resamples=n_resamples, seed=seed)
        print(f"\n{'=' * 60}\n{name.upper()}\n{'=' * 60}")
        print(format_report(reports[name]))

    summary = {
        "model_path": str(model_path),
        "test_data_path": str(test_data_path),
        "test_samples": len(holdout),
        "positive_rate": float(holdout.y.mean()),
        "metrics": {name: report.metrics() for name, report in reports.items()},
        "confusion_matrices": {name: report.confusion.tolist() for name, report in reports.items()},
        "evaluation_date": pd.Timestamp.now().isoformat(),
    }

    with open(output_dir / "evaluation_summary.json", "w") as f:
        json.dump(summary, f, indent=2)

    print(f"\nEvaluation complete. Results saved to: {output_dir}")
    return reports


def main():
    """CLI entry point for model evaluation."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    parser = argparse.ArgumentParser(description="Evaluate diabetes prediction models")
    parser.add_argument(
        "--model-path",
        type=Path,
        required=True,
        help="Path to model artifacts file (model_artifacts.pkl)",
    )
    parser.add_argument(
        "--test-data",
        type=Path,
        default=None,
        help=f"Path to encoded test matrix (default: {TEST_MATRIX_FILENAME} next to the model artifacts)",
    )
    parser.add_argument(
        "--output-dir", type=Path, default=Path("reports/model_evaluation"), help="Output directory"
    )
    parser.add_argument("--resamples", type=int, default=DEFAULT_BOOTSTRAP_RESAMPLES)
    parser.add_argument("--seed", type=int, default=DEFAULT_RANDOM_SEED)
    parser.add_argument("--model", action="append", dest="models", help="Model name (repeatable)")
    args = parser.parse_args()

    test_data = args.test_data or args.model_path.parent / TEST_MATRIX_FILENAME

    generate_evaluation_report(
        args.model_path,
        test_data,
        args.output_dir,
        n_resamples=args.resamples,
        seed=args.seed,
        model_names=args.models,
    )


if __name__ == "__main__":
    main()
