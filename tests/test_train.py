"""Tests for model training and SVM sweeps."""

import warnings

import numpy as np
import pandas as pd
import pytest

from diabetes_risk.data.split import split
from diabetes_risk.exceptions import ConvergenceError
from diabetes_risk.models import train as train_module
from diabetes_risk.models.train import (
    RandomForestConfig,
    SVMConfig,
    Sweep,
    TrainedModel,
    build_model_configs,
    sweep_svm,
    train,
    tune_random_forest,
)


@pytest.fixture
def subsets(encoded_matrix):
    return split(encoded_matrix, ratios=(0.7, 0.15, 0.15), seed=0)


class TestRandomForest:
    """Test random forest training."""

    def test_baseline_uses_all_predictors(self, subsets):
        train_set, _, test_set = subsets

        model = train(train_set, RandomForestConfig(n_estimators=30, n_workers=1))

        assert isinstance(model, TrainedModel)
        assert model.estimator.max_features is None
        assert model.estimator.n_estimators == 30
        labels, proba = model.predict(test_set)
        assert len(labels) == len(test_set)
        assert set(np.unique(labels)) <= {0, 1}
        assert ((proba >= 0) & (proba <= 1)).all()

    def test_tuned_selects_from_grid(self, subsets):
        train_set, _, _ = subsets
        config = RandomForestConfig(
            name="rf_tuned",
            tune=True,
            max_features_grid=(1, 2, 3),
            tune_n_estimators=20,
            cv_folds=3,
            n_workers=2,
        )

        model = train(train_set, config)

        assert set(model.cv_scores) == {1, 2, 3}
        assert model.estimator.max_features in (1, 2, 3)
        assert model.estimator.max_features == max(model.cv_scores, key=model.cv_scores.get)
        assert model.estimator.n_estimators == 20
        assert all(0 <= auc <= 1 for auc in model.cv_scores.values())

    def test_grid_capped_at_feature_count(self, subsets):
        train_set, _, _ = subsets
        n_features = len(train_set.feature_columns)
        config = RandomForestConfig(
            tune=True, max_features_grid=(2, n_features + 5), tune_n_estimators=10, cv_folds=3, n_workers=1
        )

        _, cv_scores = tune_random_forest(train_set.X, train_set.y, config)

        assert list(cv_scores) == [2]

    def test_deterministic_given_seed(self, subsets):
        train_set, _, test_set = subsets
        config = RandomForestConfig(n_estimators=20, n_workers=1, random_state=5)

        first = train(train_set, config).predict_proba(test_set)
        second = train(train_set, config).predict_proba(test_set)

        np.testing.assert_array_equal(first, second)

    def test_training_set_not_mutated(self, subsets):
        train_set, _, _ = subsets
        before = train_set.frame.copy()

        train(train_set, RandomForestConfig(n_estimators=10, n_workers=1))

        pd.testing.assert_frame_equal(train_set.frame, before)


class TestSVM:
    """Test RBF support-vector training."""

    def test_fits_with_requested_hyperparameters(self, subsets):
        train_set, _, test_set = subsets

        model = train(train_set, SVMConfig(name="svm_tuned", cost=10.0, gamma=0.1))

        svc = model.estimator.estimator
        assert svc.kernel == "rbf"
        assert svc.C == 10.0
        assert svc.gamma == 0.1
        proba = model.predict_proba(test_set)
        assert proba.shape == (len(test_set),)

    def test_probabilities_without_deprecated_svc_option(self, subsets):
        """Test probabilities come from a separate sigmoid calibration, not SVC(probability=True)."""
        train_set, _, test_set = subsets

        with warnings.catch_warnings():
            warnings.filterwarnings("error", message=".*probability.*", category=FutureWarning)
            model = train(train_set, SVMConfig(cost=1.0, gamma=0.1))
            proba = model.predict_proba(test_set)

        assert model.estimator.estimator.probability is False
        assert model.estimator.method == "sigmoid"
        assert ((proba >= 0) & (proba <= 1)).all()

    def test_non_convergence_surfaced(self, subsets):
        train_set, _, _ = subsets

        with pytest.raises(ConvergenceError, match="svm_capped") as excinfo:
            train(train_set, SVMConfig(name="svm_capped", max_iter=1))

        assert excinfo.value.stage == "train"

    def test_unsupported_config_rejected(self, subsets):
        with pytest.raises(TypeError):
            train(subsets[0], {"kernel": "rbf"})


class TestSweep:
    """Test one-parameter SVM sweeps."""

    def test_one_result_per_value(self, subsets):
        train_set, validation_set, _ = subsets

        sweep = sweep_svm(train_set, validation_set, "cost", [0.1, 1.0, 10.0])

        assert isinstance(sweep, Sweep)
        assert [r.value for r in sweep.results] == [0.1, 1.0, 10.0]
        for result in sweep.results:
            assert result.confusion.shape == (2, 2)
            assert result.confusion.sum() == len(validation_set)
            assert 0 <= result.accuracy <= 1
        assert sweep.best().accuracy == max(r.accuracy for r in sweep.results)
        assert len(sweep.to_frame()) == 3

    def test_other_parameters_held_at_base(self, subsets, monkeypatch):
        train_set, validation_set, _ = subsets
        seen = []
        real_train = train_module.train

        def recording_train(train_set, config):
            seen.append(config)
            return real_train(train_set, config)

        monkeypatch.setattr(train_module, "train", recording_train)
        base = SVMConfig(cost=2.0, gamma=0.5, tolerance=0.01)

        sweep_svm(train_set, validation_set, "gamma", [0.1, 1.0], base)

        assert [c.gamma for c in seen] == [0.1, 1.0]
        assert all(c.cost == 2.0 and c.tolerance == 0.01 for c in seen)

    def test_failed_candidate_excluded(self, subsets, monkeypatch):
        """Test a non-converging candidate does not abort the sweep."""
        train_set, validation_set, _ = subsets
        real_train = train_module.train

        def flaky_train(train_set, config):
            if config.tolerance == 0.01:
                raise ConvergenceError(f"Model '{config.name}' did not converge")
            return real_train(train_set, config)

        monkeypatch.setattr(train_module, "train", flaky_train)

        sweep = sweep_svm(train_set, validation_set, "tolerance", [0.001, 0.01, 0.1])

        assert [r.value for r in sweep.results] == [0.001, 0.1]
        assert list(sweep.failures) == [0.01]

    def test_unknown_parameter_rejected(self, subsets):
        with pytest.raises(ValueError, match="kernel"):
            sweep_svm(subsets[0], subsets[1], "kernel", ["linear"])

    def test_best_without_results_raises(self):
        with pytest.raises(ValueError):
            Sweep(parameter="cost").best()


class TestBuildModelConfigs:
    """Test configuration building from the YAML layout."""

    def test_four_configurations(self):
        config = {
            "data": {"random_seed": 9},
            "random_forest": {
                "baseline": {"n_estimators": 500},
                "tuned": {"n_estimators": 100, "max_features_grid": [2, 4], "cv_folds": 5, "n_workers": 4},
            },
            "svm": {
                "max_iter": 1000,
                "baseline": {"cost": 1.0, "gamma": 1.0},
                "tuned": {"cost": 10.0, "gamma": 0.1},
            },
        }

        configs = build_model_configs(config)

        assert list(configs) == ["rf_baseline", "rf_tuned", "svm_baseline", "svm_tuned"]
        assert configs["rf_baseline"].n_estimators == 500
        assert configs["rf_baseline"].max_features is None
        assert configs["rf_tuned"].tune
        assert configs["rf_tuned"].tune_n_estimators == 100
        assert configs["rf_tuned"].max_features_grid == (2, 4)
        assert configs["svm_tuned"].cost == 10.0
        assert configs["svm_tuned"].gamma == 0.1
        assert configs["svm_baseline"].max_iter == 1000
        assert all(c.random_state == 9 for c in configs.values())
