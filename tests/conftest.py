"""Test configuration and fixtures."""

import numpy as np
import pandas as pd
import pytest

from diabetes_risk.data.load_clean import clean
from diabetes_risk.features.preprocess import transform

RAW_SMOKING_VALUES = ["never", "former", "ever", "not current", "current", "No Info"]


def _make_raw_records(n=400, seed=0, n_other_gender=0):
    rng = np.random.default_rng(seed)

    hba1c = rng.normal(5.8, 0.9, n).clip(3.5, 9.0).round(1)
    glucose = rng.normal(140, 40, n).clip(80, 300).round()
    risk = (hba1c - 5.8) / 0.9 + (glucose - 140) / 40
    diabetes = (risk + rng.normal(0, 0.7, n) > 1.2).astype(int)

    df = pd.DataFrame(
        {
            "gender": rng.choice(["Female", "Male"], n),
            "age": rng.uniform(1, 80, n).round(),
            "hypertension": rng.choice([0, 1], n, p=[0.85, 0.15]),
            "heart_disease": rng.choice([0, 1], n, p=[0.9, 0.1]),
            "smoking_history": rng.choice(RAW_SMOKING_VALUES, n),
            "bmi": rng.normal(27, 5, n).clip(12, 60).round(2),
            "HbA1c_level": hba1c,
            "blood_glucose_level": glucose,
            "diabetes": diabetes,
        }
    )
    if n_other_gender:
        df.loc[df.index[:n_other_gender], "gender"] = "Other"
    return df


@pytest.fixture
def make_raw_records():
    """Factory for synthetic raw records in the input file layout."""
    return _make_raw_records


@pytest.fixture
def raw_records():
    return _make_raw_records()


@pytest.fixture
def dataset(raw_records):
    return clean(raw_records)


@pytest.fixture
def encoded_matrix(dataset):
    return transform(dataset)
