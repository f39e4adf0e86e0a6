"""Loading and cleaning of raw diabetes prediction records."""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

import pandas as pd
import pandera as pa
from pandera import Column, DataFrameSchema

from diabetes_risk.config.constants import (
    BINARY_COLUMNS,
    CATEGORY_LEVELS_VERSION,
    NUMERIC_COLUMNS,
    REQUIRED_COLUMNS,
    SMOKING_HISTORY_MAP,
    DiabetesStatus,
    Gender,
    SmokingHistory,
    YesNo,
    levels,
)
from diabetes_risk.exceptions import MalformedInputError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class Dataset:
    """Cleaned records with fixed categorical level sets.

    Attributes:
        frame: Cleaned records, one row per patient observation
        dropped: Number of rows removed per cleaning rule
        levels_version: Version of the enumerated level sets used
    """

    frame: pd.DataFrame
    dropped: Dict[str, int] = field(default_factory=dict)
    levels_version: int = CATEGORY_LEVELS_VERSION

    def __len__(self) -> int:
        return len(self.frame)

    @property
    def n_dropped(self) -> int:
        return sum(self.dropped.values())


class DiabetesDataCleaner:
    """Validates raw records and repairs their categorical encodings."""

    REQUIRED_COLUMNS = REQUIRED_COLUMNS

    def __init__(self):
        """Initialize cleaner with the schema of the measured columns."""
        self.schema = DataFrameSchema(
            {
                "age": Column(float, checks=[pa.Check.in_range(0, 120)], coerce=True),
                "bmi": Column(float, checks=[pa.Check.gt(0)], coerce=True),
                "HbA1c_level": Column(float, checks=[pa.Check.gt(0)], coerce=True),
                "blood_glucose_level": Column(float, checks=[pa.Check.gt(0)], coerce=True),
                "hypertension": Column(int, checks=[pa.Check.isin([0, 1])], coerce=True),
                "heart_disease": Column(int, checks=[pa.Check.isin([0, 1])], coerce=True),
                "diabetes": Column(int, checks=[pa.Check.isin([0, 1])], coerce=True),
            },
            strict=False,
        )

    def check_columns(self, df: pd.DataFrame) -> None:
        """Raise MalformedInputError if any required column is absent."""
        missing_cols = sorted(set(self.REQUIRED_COLUMNS) - set(df.columns))
        if missing_cols:
            raise MalformedInputError(f"Missing required columns: {missing_cols}")

    def validate_measurements(self, df: pd.DataFrame) -> pd.DataFrame:
        """Validate and coerce numeric and binary columns.

        Args:
            df: Records with missing values already removed

        Returns:
            Dataframe with coerced dtypes
        """
        columns = NUMERIC_COLUMNS + BINARY_COLUMNS
        try:
            validated = self.schema.validate(df[columns], lazy=True)
        except pa.errors.SchemaErrors as e:
            errors: List[str] = []
            for _, row in e.failure_cases.iterrows():
                errors.append(
                    f"Column '{row['column']}' failed check '{row['check']}' "
                    f"at index {row['index']}"
                )
            raise MalformedInputError("; ".join(errors)) from e

        out = df.copy()
        for col in columns:
            out[col] = validated[col]
        return out

    def clean(self, df: pd.DataFrame) -> Dataset:
        """Clean raw records.

        Drops rows with missing values and rows whose gender is neither Male
        nor Female, consolidates smoking history and maps binary columns to
        named levels.

        Args:
            df: Raw records

        Returns:
            Cleaned Dataset
        """
        self.check_columns(df)
        frame = df[self.REQUIRED_COLUMNS].copy()
        dropped = {}

        missing_mask = frame.isnull().any(axis=1)
        dropped["missing_values"] = int(missing_mask.sum())
        frame = frame[~missing_mask].copy()

        frame["gender"] = frame["gender"].astype(str).str.strip()
        other_gender = ~frame["gender"].isin(levels(Gender))
        dropped["gender_other"] = int(other_gender.sum())
        frame = frame[~other_gender].copy()

        for rule, count in dropped.items():
            if count:
                logger.warning(f"Dropped {count} rows ({rule})")

        smoking = frame["smoking_history"].astype(str).str.strip()
        unknown = sorted(set(smoking) - set(SMOKING_HISTORY_MAP))
        if unknown:
            raise MalformedInputError(f"Unrecognized smoking_history values: {unknown}")

        frame = self.validate_measurements(frame)

        frame["gender"] = pd.Categorical(frame["gender"], categories=levels(Gender))
        frame["smoking_history"] = pd.Categorical(
            smoking.map(SMOKING_HISTORY_MAP), categories=levels(SmokingHistory)
        )
        yes_no = {0: YesNo.NO.value, 1: YesNo.YES.value}
        for col in ("hypertension", "heart_disease"):
            frame[col] = pd.Categorical(frame[col].map(yes_no), categories=levels(YesNo))
        frame["diabetes"] = pd.Categorical(
            frame["diabetes"].map({0: DiabetesStatus.NEGATIVE.value, 1: DiabetesStatus.POSITIVE.value}),
            categories=levels(DiabetesStatus),
        )

        frame = frame.reset_index(drop=True)
        logger.info(f"Cleaned {len(frame)} records ({sum(dropped.values())} dropped)")
        return Dataset(frame=frame, dropped=dropped)


def clean(df: pd.DataFrame) -> Dataset:
    """Clean an in-memory dataframe of raw records."""
    return DiabetesDataCleaner().clean(df)


def load_and_clean(path: Union[str, Path], sep: Optional[str] = ",") -> Dataset:
    """Read a delimited file of raw records and clean it.

    Args:
        path: Path to the input file
        sep: Field delimiter

    Returns:
        Cleaned Dataset

    Raises:
        MalformedInputError: If required columns are absent or values are invalid
    """
    df = pd.read_csv(path, sep=sep)
    logger.info(f"Loaded {len(df)} raw records from {path}")
    return clean(df)


def main():
    """CLI entry point for data cleaning."""
    import argparse

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    parser = argparse.ArgumentParser(description="Clean diabetes prediction input data")
    parser.add_argument("input_file", type=Path, help="Path to input CSV file")
    parser.add_argument("--output-dir", type=Path, default=Path("data/cleaned"))
    args = parser.parse_args()

    args.output_dir.mkdir(parents=True, exist_ok=True)

    dataset = load_and_clean(args.input_file)

    report = {
        "file": args.input_file.name,
        "clean_records": len(dataset),
        "dropped": dataset.dropped,
        "levels_version": dataset.levels_version,
    }
    print(f"Cleaning Report: {json.dumps(report, indent=2)}")

    output_path = args.output_dir / f"cleaned_{args.input_file.name}"
    dataset.frame.to_csv(output_path, index=False)
    with open(args.output_dir / f"report_{args.input_file.stem}.json", "w") as f:
        json.dump(report, f, indent=2)
    print(f"Cleaned data saved to: {output_path}")


if __name__ == "__main__":
    main()
