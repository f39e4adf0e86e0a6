"""Feature engineering and full-rank encoding for diabetes prediction."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd
from sklearn.base import BaseEstimator, TransformerMixin

from diabetes_risk.config.constants import (
    AGE_GROUP_BINS,
    AGE_GROUP_LABELS,
    BMI_CATEGORY_BINS,
    BMI_CATEGORY_LABELS,
    CATEGORICAL_LEVELS,
    DERIVED_COLUMNS,
    HIGH_GLUCOSE_THRESHOLD,
    HIGH_HBA1C_THRESHOLD,
    NUMERIC_COLUMNS,
    TARGET_COLUMN,
    DiabetesStatus,
    levels,
)
from diabetes_risk.data.load_clean import Dataset
from diabetes_risk.exceptions import EncodingError, MalformedInputError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class EncodedMatrix:
    """Numeric design matrix plus a 0/1 label column.

    Attributes:
        frame: Predictor columns followed by the label column
        feature_columns: Names of the predictor columns
        reference_levels: Dropped reference level per categorical variable
        label_column: Name of the label column
    """

    frame: pd.DataFrame
    feature_columns: List[str]
    reference_levels: Dict[str, str] = field(default_factory=dict)
    label_column: str = TARGET_COLUMN

    def __len__(self) -> int:
        return len(self.frame)

    @property
    def X(self) -> pd.DataFrame:
        return self.frame[self.feature_columns]

    @property
    def y(self) -> pd.Series:
        return self.frame[self.label_column]

    def subset(self, index) -> "EncodedMatrix":
        """New matrix holding the rows with the given index labels."""
        return EncodedMatrix(
            frame=self.frame.loc[index].copy(),
            feature_columns=list(self.feature_columns),
            reference_levels=dict(self.reference_levels),
            label_column=self.label_column,
        )


class ClinicalFlagger(BaseEstimator, TransformerMixin):
    """Create clinical threshold flags and ordinal bins (EDA features)."""

    def __init__(self, hba1c_threshold=HIGH_HBA1C_THRESHOLD, glucose_threshold=HIGH_GLUCOSE_THRESHOLD):
        self.hba1c_threshold = hba1c_threshold
        self.glucose_threshold = glucose_threshold

    def fit(self, X, y=None):
        """Fit flagger (stateless)."""
        return self

    def transform(self, X):
        """Return a copy of X with derived feature columns appended.

        Args:
            X: Cleaned records

        Returns:
            DataFrame with high_hba1c, high_glucose, age_group and bmi_category
        """
        X_df = X.copy()

        X_df["high_hba1c"] = X_df["HbA1c_level"] >= self.hba1c_threshold
        X_df["high_glucose"] = X_df["blood_glucose_level"] >= self.glucose_threshold

        X_df["age_group"] = pd.cut(
            X_df["age"],
            bins=AGE_GROUP_BINS,
            labels=AGE_GROUP_LABELS,
            right=False,
            ordered=True,
        )
        X_df["bmi_category"] = pd.cut(
            X_df["bmi"],
            bins=BMI_CATEGORY_BINS,
            labels=BMI_CATEGORY_LABELS,
            right=False,
            ordered=True,
        )

        return X_df


class FullRankEncoder(BaseEstimator, TransformerMixin):
    """One-hot encode categorical predictors, dropping one reference level each."""

    def __init__(self, categorical_levels=None):
        """Initialize encoder.

        Args:
            categorical_levels: Mapping of column name to level enumeration;
                the first level of each enumeration is the reference
        """
        self.categorical_levels = categorical_levels

    def _levels(self):
        return self.categorical_levels if self.categorical_levels is not None else CATEGORICAL_LEVELS

    def fit(self, X, y=None):
        """Check every categorical column can be expanded to a full-rank dummy set.

        Raises:
            EncodingError: If a column has a single observed level or any of
                its enumerated levels is never observed
        """
        self.reference_levels_ = {}
        self.feature_names_ = []

        for col, enum_cls in self._levels().items():
            col_levels = levels(enum_cls)
            observed = set(X[col].dropna().astype(str).unique())

            if len(observed) < 2:
                raise EncodingError(
                    f"Column '{col}' has zero variance (observed levels: {sorted(observed)})"
                )
            if col_levels[0] not in observed:
                raise EncodingError(
                    f"Reference level '{col_levels[0]}' of column '{col}' is not observed; "
                    "remaining indicators would be collinear"
                )
            unobserved = [level for level in col_levels[1:] if level not in observed]
            if unobserved:
                raise EncodingError(
                    f"Levels {unobserved} of column '{col}' are not observed; "
                    "their indicator columns would be all zero"
                )

            self.reference_levels_[col] = col_levels[0]
            self.feature_names_.extend(f"{col}_{level}" for level in col_levels[1:])

        return self

    def transform(self, X):
        """Replace categorical columns by their k-1 indicator columns."""
        X_df = X.copy()
        dummies = []
        for col, enum_cls in self._levels().items():
            values = pd.Categorical(X_df[col].astype(str), categories=levels(enum_cls))
            dummies.append(
                pd.get_dummies(
                    pd.Series(values, index=X_df.index),
                    prefix=col,
                    drop_first=True,
                    dtype=int,
                )
            )
        X_df = X_df.drop(columns=list(self._levels()))
        return pd.concat([X_df] + dummies, axis=1)


def derive_clinical_features(dataset: Dataset) -> pd.DataFrame:
    """Cleaned records with clinical threshold flags and bins appended."""
    return ClinicalFlagger().fit_transform(dataset.frame)


def transform(dataset: Dataset, retain_derived: bool = False) -> EncodedMatrix:
    """Build the numeric design matrix.

    Numeric predictors pass through unscaled; categorical predictors are
    expanded to indicator columns with the reference level dropped. Derived
    EDA features are only included when ``retain_derived`` is set.

    Args:
        dataset: Cleaned records
        retain_derived: Keep the derived clinical features as predictors

    Returns:
        EncodedMatrix with a 0/1 label column

    Raises:
        EncodingError: If a categorical predictor cannot be encoded at full rank
    """
    frame = dataset.frame
    encoder = FullRankEncoder()
    encoded = encoder.fit_transform(frame[NUMERIC_COLUMNS + list(CATEGORICAL_LEVELS)])

    if retain_derived:
        derived = derive_clinical_features(dataset)
        for col in ("high_hba1c", "high_glucose"):
            encoded[col] = derived[col].astype(int)
        for col in ("age_group", "bmi_category"):
            encoded[col] = derived[col].cat.codes.astype(int)

    feature_columns = encoded.columns.tolist()
    label_values = frame[TARGET_COLUMN].astype(str)
    encoded[TARGET_COLUMN] = (label_values == DiabetesStatus.POSITIVE.value).astype(int)

    logger.info(
        f"Encoded design matrix: {len(encoded)} rows, {len(feature_columns)} predictors"
        + (f" (derived retained: {DERIVED_COLUMNS})" if retain_derived else "")
    )
    return EncodedMatrix(
        frame=encoded,
        feature_columns=feature_columns,
        reference_levels=dict(encoder.reference_levels_),
    )


def decode_one_hot(frame: pd.DataFrame, variable: str, variable_levels: Sequence[str]) -> pd.Series:
    """Recover a categorical column from its indicator columns.

    Rows where every indicator is zero take the reference (first) level.

    Args:
        frame: Frame holding the ``{variable}_{level}`` indicator columns
        variable: Name of the original categorical column
        variable_levels: Ordered levels of the variable, reference first

    Returns:
        Series of level names
    """
    reference, *others = list(variable_levels)
    indicator_cols = [f"{variable}_{level}" for level in others]
    indicators = frame[indicator_cols].to_numpy()

    decoded = np.full(len(frame), reference, dtype=object)
    hot_rows, hot_cols = np.nonzero(indicators)
    decoded[hot_rows] = np.asarray(others, dtype=object)[hot_cols]

    return pd.Series(decoded, index=frame.index, name=variable)


def write_design_matrix(matrix: EncodedMatrix, path: Union[str, Path]) -> Path:
    """Save the encoded design matrix and label as CSV."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    matrix.frame.to_csv(path, index=False)
    logger.info(f"Design matrix saved to: {path}")
    return path


def read_design_matrix(
    path: Union[str, Path], label_column: str = TARGET_COLUMN, reference_levels: Optional[Dict[str, str]] = None
) -> EncodedMatrix:
    """Load a design matrix written by ``write_design_matrix``.

    Raises:
        MalformedInputError: If the label column is absent
    """
    frame = pd.read_csv(path)
    if label_column not in frame.columns:
        raise MalformedInputError(f"Design matrix {path} has no label column '{label_column}'")

    feature_columns = [col for col in frame.columns if col != label_column]
    if reference_levels is None:
        reference_levels = {col: levels(enum_cls)[0] for col, enum_cls in CATEGORICAL_LEVELS.items()}
    return EncodedMatrix(
        frame=frame,
        feature_columns=feature_columns,
        reference_levels=reference_levels,
        label_column=label_column,
    )
