"""End-to-end tests of the training and evaluation entry points."""

import json

import pandas as pd
import pytest
import yaml

from diabetes_risk.config.constants import TEST_MATRIX_FILENAME
from diabetes_risk.models import evaluate as evaluate_module
from diabetes_risk.models import train as train_module


@pytest.fixture
def training_run(make_raw_records, tmp_path, monkeypatch):
    """Run the training CLI on a small config and return its model directory."""
    raw_path = tmp_path / "data" / "raw" / "diabetes.csv"
    raw_path.parent.mkdir(parents=True)
    make_raw_records(n=300, seed=7).to_csv(raw_path, index=False)

    config = {
        "data": {
            "raw_path": str(raw_path),
            "design_matrix_path": str(tmp_path / "data" / "processed" / "design_matrix.csv"),
            "split_ratios": [0.6, 0.2, 0.2],
            "random_seed": 3,
        },
        "features": {"retain_derived": False},
        "random_forest": {
            "baseline": {"n_estimators": 10},
            "tuned": {"n_estimators": 10, "max_features_grid": [2, 3], "cv_folds": 3, "n_workers": 1},
        },
        "svm": {
            "max_iter": -1,
            "baseline": {"cost": 1.0, "gamma": 0.1},
            "tuned": {"cost": 10.0, "gamma": 0.1},
            "sweeps": {"cost": [1.0]},
        },
        "evaluation": {"bootstrap_resamples": 100, "random_seed": 3},
        "mlflow": {"tracking_uri": (tmp_path / "mlruns").as_uri(), "experiment_name": "cli-test"},
    }
    config_path = tmp_path / "train_config.yaml"
    with open(config_path, "w") as f:
        yaml.safe_dump(config, f)

    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(
        "sys.argv",
        ["diabetes-train", "--config", str(config_path), "--output-dir", str(tmp_path / "models")],
    )
    train_module.main()

    model_dirs = sorted((tmp_path / "models").glob("model_*"))
    assert len(model_dirs) == 1
    return model_dirs[0]


class TestTrainMain:
    """Test the training pipeline entry point."""

    def test_writes_artifacts(self, training_run, tmp_path):
        assert (training_run / "model_artifacts.pkl").exists()
        assert (training_run / "metadata.json").exists()
        assert (training_run / TEST_MATRIX_FILENAME).exists()
        assert (tmp_path / "data" / "processed" / "design_matrix.csv").exists()

        with open(training_run / "metadata.json") as f:
            metadata = json.load(f)
        assert set(metadata["algorithms"]) == {"rf_baseline", "rf_tuned", "svm_baseline", "svm_tuned"}
        assert metadata["failed_models"] == {}
        assert metadata["split_sizes"] == {"train": 180, "validation": 60, "test": 60}
        assert metadata["svm_sweep_best"] == {"cost": 1.0}

    def test_test_matrix_holds_only_the_test_partition(self, training_run, tmp_path):
        design = pd.read_csv(tmp_path / "data" / "processed" / "design_matrix.csv")
        test_matrix = pd.read_csv(training_run / TEST_MATRIX_FILENAME)

        assert len(design) == 300
        assert len(test_matrix) == 60
        assert list(test_matrix.columns) == list(design.columns)


class TestEvaluateMain:
    """Test the evaluation entry point against a training run."""

    def test_defaults_to_held_out_test_matrix(self, training_run, tmp_path, monkeypatch):
        output_dir = tmp_path / "eval"
        monkeypatch.setattr(
            "sys.argv",
            [
                "diabetes-evaluate",
                "--model-path",
                str(training_run / "model_artifacts.pkl"),
                "--output-dir",
                str(output_dir),
                "--resamples",
                "100",
            ],
        )

        evaluate_module.main()

        with open(output_dir / "evaluation_summary.json") as f:
            summary = json.load(f)
        with open(training_run / "metadata.json") as f:
            metadata = json.load(f)
        assert summary["test_data_path"] == str(training_run / TEST_MATRIX_FILENAME)
        assert summary["test_samples"] == metadata["split_sizes"]["test"]
        assert set(summary["metrics"]) == set(metadata["algorithms"])
