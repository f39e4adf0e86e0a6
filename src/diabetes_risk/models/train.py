"""Training of random forest and RBF support-vector classifiers for diabetes prediction."""

import argparse
import json
import logging
import warnings
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import joblib
import mlflow
import numpy as np
import pandas as pd
import yaml
from sklearn.calibration import CalibratedClassifierCV
from sklearn.ensemble import RandomForestClassifier
from sklearn.exceptions import ConvergenceWarning
from sklearn.metrics import accuracy_score, roc_auc_score
from sklearn.model_selection import StratifiedKFold
from sklearn.svm import SVC

from diabetes_risk.config.constants import (
    DEFAULT_BOOTSTRAP_RESAMPLES,
    DEFAULT_N_WORKERS,
    DEFAULT_RANDOM_SEED,
    DEFAULT_SPLIT_RATIOS,
    TEST_MATRIX_FILENAME,
)
from diabetes_risk.data.load_clean import load_and_clean
from diabetes_risk.data.split import split
from diabetes_risk.exceptions import ConvergenceError
from diabetes_risk.features.preprocess import EncodedMatrix, transform, write_design_matrix
from diabetes_risk.models.evaluate import (
    evaluate,
    format_confusion_matrix,
    format_report,
    predicted_by_actual_confusion,
)
from diabetes_risk.models.task_pool import TaskPool

logger = logging.getLogger(__name__)

SWEEP_PARAMETERS = ("cost", "tolerance", "gamma")

# Folds of the Platt scaling fit behind SVM probabilities
SVM_CALIBRATION_FOLDS = 5


@dataclass(frozen=True)
class RandomForestConfig:
    """Random forest settings.

    With ``tune`` unset the forest is fit once with ``max_features``
    (None means every predictor is a split candidate, i.e. plain bagging).
    With ``tune`` set, ``max_features_grid`` is searched by k-fold
    cross-validated ROC AUC using forests of ``tune_n_estimators`` trees.
    """

    name: str = "rf_baseline"
    n_estimators: int = 500
    max_features: Optional[Union[int, float, str]] = None
    tune: bool = False
    max_features_grid: Tuple[int, ...] = (1, 2, 3, 4, 5, 6, 8)
    tune_n_estimators: int = 100
    cv_folds: int = 5
    n_workers: int = DEFAULT_N_WORKERS
    random_state: int = DEFAULT_RANDOM_SEED


@dataclass(frozen=True)
class SVMConfig:
    """RBF-kernel support-vector classifier settings."""

    name: str = "svm_baseline"
    cost: float = 1.0
    gamma: float = 1.0
    tolerance: float = 1e-3
    max_iter: int = -1
    random_state: int = DEFAULT_RANDOM_SEED


@dataclass(frozen=True, eq=False)
class TrainedModel:
    """A fitted classifier bound to the predictor columns it was trained on."""

    name: str
    estimator: object
    feature_columns: List[str]
    config: Union[RandomForestConfig, SVMConfig]
    cv_scores: Dict = field(default_factory=dict)

    def _features(self, X) -> pd.DataFrame:
        if isinstance(X, EncodedMatrix):
            X = X.frame
        return X[self.feature_columns]

    def predict_proba(self, X) -> np.ndarray:
        """Probability of the positive class per row."""
        return self.estimator.predict_proba(self._features(X))[:, 1]

    def predict(self, X) -> Tuple[np.ndarray, np.ndarray]:
        """Predicted 0/1 labels and positive-class probabilities."""
        features = self._features(X)
        labels = self.estimator.predict(features)
        proba = self.estimator.predict_proba(features)[:, 1]
        return np.asarray(labels, dtype=int), proba


@dataclass
class SweepResult:
    parameter: str
    value: float
    confusion: np.ndarray
    accuracy: float


@dataclass
class Sweep:
    """Validation results of a one-parameter SVM sweep.

    Candidates whose fit failed are listed in ``failures`` with the error text
    and have no entry in ``results``.
    """

    parameter: str
    results: List[SweepResult] = field(default_factory=list)
    failures: Dict[float, str] = field(default_factory=dict)

    def best(self) -> SweepResult:
        """Candidate with the highest validation accuracy (first one on ties)."""
        if not self.results:
            raise ValueError(f"Sweep over '{self.parameter}' has no successful candidates")
        return max(self.results, key=lambda r: r.accuracy)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {
                    self.parameter: r.value,
                    "accuracy": r.accuracy,
                    "true_negatives": int(r.confusion[0, 0]),
                    "false_negatives": int(r.confusion[0, 1]),
                    "false_positives": int(r.confusion[1, 0]),
                    "true_positives": int(r.confusion[1, 1]),
                }
                for r in self.results
            ]
        )


def load_config(config_path: Path) -> dict:
    """Load training configuration."""
    with open(config_path, "r") as f:
        return yaml.safe_load(f)


def build_model_configs(config: dict) -> Dict[str, Union[RandomForestConfig, SVMConfig]]:
    """Baseline and tuned configurations of both model families.

    Args:
        config: Training configuration (``random_forest`` and ``svm`` sections)

    Returns:
        Dictionary of model name to configuration
    """
    seed = config.get("data", {}).get("random_seed", DEFAULT_RANDOM_SEED)
    rf = config.get("random_forest", {})
    svm = config.get("svm", {})

    rf_tuned = dict(rf.get("tuned", {}))
    if "max_features_grid" in rf_tuned:
        rf_tuned["max_features_grid"] = tuple(rf_tuned["max_features_grid"])
    if "n_estimators" in rf_tuned:
        rf_tuned["tune_n_estimators"] = rf_tuned.pop("n_estimators")

    svm_common = {"max_iter": svm.get("max_iter", -1), "random_state": seed}

    return {
        "rf_baseline": RandomForestConfig(name="rf_baseline", random_state=seed, **rf.get("baseline", {})),
        "rf_tuned": RandomForestConfig(name="rf_tuned", tune=True, random_state=seed, **rf_tuned),
        "svm_baseline": SVMConfig(name="svm_baseline", **{**svm_common, **svm.get("baseline", {})}),
        "svm_tuned": SVMConfig(name="svm_tuned", **{**svm_common, **svm.get("tuned", {})}),
    }


def _fit(estimator, X, y, name: str, params: dict):
    """Fit an estimator, turning convergence warnings into ConvergenceError."""
    with warnings.catch_warnings():
        warnings.simplefilter("error", category=ConvergenceWarning)
        try:
            estimator.fit(X, y)
        except ConvergenceWarning as e:
            raise ConvergenceError(f"Model '{name}' did not converge with params {params}: {e}") from e
    return estimator


def _score_fold(task: dict) -> Tuple[int, int, float]:
    """Fit one forest on a training fold and score ROC AUC on its held-out fold."""
    model = RandomForestClassifier(
        n_estimators=task["n_estimators"],
        max_features=task["max_features"],
        random_state=task["random_state"],
        n_jobs=1,
    )
    model.fit(task["X_fit"], task["y_fit"])
    proba = model.predict_proba(task["X_score"])[:, 1]
    return task["max_features"], task["fold"], roc_auc_score(task["y_score"], proba)


def tune_random_forest(X: pd.DataFrame, y: pd.Series, config: RandomForestConfig) -> Tuple[int, Dict[int, float]]:
    """Select max_features by stratified k-fold cross-validated ROC AUC.

    Every (candidate, fold) pair is an independent task on the worker pool.

    Args:
        X: Training predictors
        y: Training labels
        config: Forest settings with the candidate grid

    Returns:
        Tuple of (best max_features, mean AUC per candidate)
    """
    n_features = X.shape[1]
    grid = sorted({m for m in config.max_features_grid if 1 <= m <= n_features}) or [n_features]

    cv = StratifiedKFold(n_splits=config.cv_folds, shuffle=True, random_state=config.random_state)
    tasks = []
    for fold, (fit_idx, score_idx) in enumerate(cv.split(X, y)):
        for max_features in grid:
            tasks.append(
                {
                    "fold": fold,
                    "max_features": max_features,
                    "n_estimators": config.tune_n_estimators,
                    "random_state": config.random_state,
                    "X_fit": X.iloc[fit_idx],
                    "y_fit": y.iloc[fit_idx],
                    "X_score": X.iloc[score_idx],
                    "y_score": y.iloc[score_idx],
                }
            )

    pool = TaskPool(n_workers=config.n_workers)
    fold_scores = pool.run(_score_fold, tasks)

    cv_scores = {}
    for max_features in grid:
        aucs = [auc for m, _, auc in fold_scores if m == max_features]
        cv_scores[max_features] = float(np.mean(aucs))
        logger.info(f"{config.name}: max_features={max_features} mean CV AUC={cv_scores[max_features]:.4f}")

    best = max(grid, key=lambda m: cv_scores[m])
    logger.info(f"{config.name}: selected max_features={best}")
    return best, cv_scores


def train(train_set: EncodedMatrix, config: Union[RandomForestConfig, SVMConfig]) -> TrainedModel:
    """Fit one model configuration on the training subset.

    Args:
        train_set: Encoded training subset
        config: Random forest or SVM configuration

    Returns:
        TrainedModel

    Raises:
        ConvergenceError: If the optimizer does not converge
    """
    X = train_set.X
    y = train_set.y
    cv_scores = {}

    if isinstance(config, RandomForestConfig):
        if config.tune:
            max_features, cv_scores = tune_random_forest(X, y, config)
            params = {"n_estimators": config.tune_n_estimators, "max_features": max_features}
        else:
            params = {"n_estimators": config.n_estimators, "max_features": config.max_features}
        estimator = RandomForestClassifier(random_state=config.random_state, n_jobs=config.n_workers, **params)
    elif isinstance(config, SVMConfig):
        params = {
            "C": config.cost,
            "gamma": config.gamma,
            "tol": config.tolerance,
            "max_iter": config.max_iter,
        }
        n_folds = max(2, min(SVM_CALIBRATION_FOLDS, int(y.value_counts().min())))
        estimator = CalibratedClassifierCV(
            SVC(kernel="rbf", random_state=config.random_state, **params),
            method="sigmoid",
            cv=StratifiedKFold(n_splits=n_folds, shuffle=True, random_state=config.random_state),
            ensemble=False,
        )
    else:
        raise TypeError(f"Unsupported model configuration: {type(config).__name__}")

    logger.info(f"Training {config.name} with {params} on {len(train_set)} rows")
    _fit(estimator, X, y, config.name, params)

    return TrainedModel(
        name=config.name,
        estimator=estimator,
        feature_columns=list(train_set.feature_columns),
        config=config,
        cv_scores=cv_scores,
    )


def sweep_svm(
    train_set: EncodedMatrix,
    validation_set: EncodedMatrix,
    parameter: str,
    values: Sequence[float],
    base_config: Optional[SVMConfig] = None,
) -> Sweep:
    """Fit one SVM per candidate value of a single hyperparameter.

    Other hyperparameters stay at ``base_config``. A candidate that fails to
    converge is logged and excluded; the remaining candidates still run.

    Args:
        train_set: Encoded training subset
        validation_set: Encoded validation subset
        parameter: One of cost, tolerance, gamma
        values: Candidate values
        base_config: Settings held fixed during the sweep

    Returns:
        Sweep with the validation confusion matrix of each candidate
    """
    if parameter not in SWEEP_PARAMETERS:
        raise ValueError(f"Cannot sweep '{parameter}'; expected one of {SWEEP_PARAMETERS}")

    base_config = base_config or SVMConfig()
    sweep = Sweep(parameter=parameter)

    for value in values:
        config = replace(base_config, name=f"svm_{parameter}_{value}", **{parameter: value})
        try:
            model = train(train_set, config)
        except ConvergenceError as e:
            logger.warning(f"Sweep {parameter}={value} failed: {e}")
            sweep.failures[value] = str(e)
            continue

        labels, _ = model.predict(validation_set)
        confusion = predicted_by_actual_confusion(validation_set.y, labels)
        accuracy = float(accuracy_score(validation_set.y, labels))
        sweep.results.append(SweepResult(parameter=parameter, value=value, confusion=confusion, accuracy=accuracy))
        logger.info(
            f"Sweep {parameter}={value}: accuracy={accuracy:.4f}\n{format_confusion_matrix(confusion)}"
        )

    return sweep


def _config_params(config) -> dict:
    return {f"{config.name}.{k}": v for k, v in asdict(config).items() if k != "name"}


def main():
    """Main training pipeline."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    parser = argparse.ArgumentParser(description="Train diabetes prediction models")
    parser.add_argument(
        "--config", type=Path, default=Path("configs/train_config.yaml"), help="Config file path"
    )
    parser.add_argument("--data", type=Path, default=None, help="Override raw data path")
    parser.add_argument("--output-dir", type=Path, default=Path("models/experiments"))
    parser.add_argument("--skip-sweeps", action="store_true", help="Skip SVM hyperparameter sweeps")
    args = parser.parse_args()

    config = load_config(args.config)
    data_config = config["data"]
    seed = data_config.get("random_seed", DEFAULT_RANDOM_SEED)
    ratios = tuple(data_config.get("split_ratios", DEFAULT_SPLIT_RATIOS))
    eval_config = config.get("evaluation", {})

    mlflow.set_tracking_uri(config["mlflow"]["tracking_uri"])
    mlflow.set_experiment(config["mlflow"]["experiment_name"])

    data_path = args.data or Path(data_config["raw_path"])
    dataset = load_and_clean(data_path)
    matrix = transform(dataset, retain_derived=config.get("features", {}).get("retain_derived", False))

    if data_config.get("design_matrix_path"):
        write_design_matrix(matrix, data_config["design_matrix_path"])

    train_set, validation_set, test_set = split(matrix, ratios=ratios, seed=seed)
    model_configs = build_model_configs(config)

    with mlflow.start_run():
        mlflow.log_params({"seed": seed, "split_ratios": str(ratios), **dataset.dropped})
        for model_config in model_configs.values():
            mlflow.log_params(_config_params(model_config))

        sweeps = {}
        if not args.skip_sweeps:
            svm_config = config.get("svm", {})
            base = replace(model_configs["svm_baseline"], name="svm_sweep")
            for parameter, values in svm_config.get("sweeps", {}).items():
                sweeps[parameter] = sweep_svm(train_set, validation_set, parameter, values, base)
                print(f"\nSVM sweep over {parameter}:")
                print(sweeps[parameter].to_frame().to_string(index=False))

        models = {}
        failed = {}
        for name, model_config in model_configs.items():
            try:
                models[name] = train(train_set, model_config)
            except ConvergenceError as e:
                logger.error(f"Training {name} failed: {e}")
                failed[name] = str(e)
        if not models:
            raise RuntimeError(f"Every model configuration failed: {failed}")

        n_resamples = eval_config.get("bootstrap_resamples", DEFAULT_BOOTSTRAP_RESAMPLES)
        eval_seed = eval_config.get("random_seed", seed)
        reports = {}
        for name, model in models.items():
            val_report = evaluate(model, validation_set, n_resamples=n_resamples, seed=eval_seed)
            reports[name] = evaluate(model, test_set, n_resamples=n_resamples, seed=eval_seed)
            mlflow.log_metrics({f"{name}.val_{k}": v for k, v in val_report.metrics().items()})
            mlflow.log_metrics({f"{name}.test_{k}": v for k, v in reports[name].metrics().items()})

            print(f"\n{'=' * 60}\n{name.upper()} (test set)\n{'=' * 60}")
            print(format_report(reports[name]))

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        model_dir = args.output_dir / f"model_{timestamp}"
        model_dir.mkdir(parents=True, exist_ok=True)
        test_matrix_path = write_design_matrix(test_set, model_dir / TEST_MATRIX_FILENAME)

        model_artifacts = {
            "models": models,
            "feature_columns": matrix.feature_columns,
            "reference_levels": matrix.reference_levels,
            "config": config,
        }
        joblib.dump(model_artifacts, model_dir / "model_artifacts.pkl")
        mlflow.log_artifact(str(model_dir / "model_artifacts.pkl"))

        metadata = {
            "version": timestamp,
            "algorithms": {name: type(m.estimator).__name__ for name, m in models.items()},
            "failed_models": failed,
            "split_sizes": {
                "train": len(train_set),
                "validation": len(validation_set),
                "test": len(test_set),
            },
            "dropped_rows": dataset.dropped,
            "test_metrics": {name: report.metrics() for name, report in reports.items()},
            "rf_cv_auc": {name: {str(k): v for k, v in m.cv_scores.items()} for name, m in models.items() if m.cv_scores},
            "svm_sweep_best": {p: s.best().value for p, s in sweeps.items() if s.results},
            "training_date": datetime.now().isoformat(),
            "data_path": str(data_path),
            "test_matrix_path": str(test_matrix_path),
        }

        with open(model_dir / "metadata.json", "w") as f:
            json.dump(metadata, f, indent=2)

        mlflow.log_artifact(str(model_dir / "metadata.json"))
        mlflow.log_artifact(str(test_matrix_path))

        print(f"\nModels saved to: {model_dir}")
        print(f"MLflow run ID: {mlflow.active_run().info.run_id}")


if __name__ == "__main__":
    main()
