"""Shared constants for the diabetes risk pipeline."""

from enum import Enum

# Bump when any enumerated level set below changes
CATEGORY_LEVELS_VERSION = 1


class Gender(str, Enum):
    FEMALE = "Female"
    MALE = "Male"


class SmokingHistory(str, Enum):
    NEVER = "Never"
    FORMER = "Former"
    CURRENT = "Current"
    UNKNOWN = "Unknown"


class YesNo(str, Enum):
    NO = "No"
    YES = "Yes"


class DiabetesStatus(str, Enum):
    NEGATIVE = "Negative"
    POSITIVE = "Positive"


def levels(enum_cls) -> list:
    """Ordered level names of an enumeration; the first one is the reference level."""
    return [member.value for member in enum_cls]


# Required columns of the raw input file (order irrelevant)
REQUIRED_COLUMNS = [
    "age",
    "gender",
    "hypertension",
    "heart_disease",
    "smoking_history",
    "bmi",
    "HbA1c_level",
    "blood_glucose_level",
    "diabetes",
]

# Target column name
TARGET_COLUMN = "diabetes"

NUMERIC_COLUMNS = ["age", "bmi", "HbA1c_level", "blood_glucose_level"]

BINARY_COLUMNS = ["hypertension", "heart_disease", "diabetes"]

# Categorical predictors and their fixed level sets
CATEGORICAL_LEVELS = {
    "gender": Gender,
    "hypertension": YesNo,
    "heart_disease": YesNo,
    "smoking_history": SmokingHistory,
}

# Raw smoking_history values consolidated to four categories
SMOKING_HISTORY_MAP = {
    "never": SmokingHistory.NEVER.value,
    "former": SmokingHistory.FORMER.value,
    "ever": SmokingHistory.FORMER.value,
    "not current": SmokingHistory.FORMER.value,
    "current": SmokingHistory.CURRENT.value,
    "No Info": SmokingHistory.UNKNOWN.value,
}

# Clinical thresholds for derived EDA features
HIGH_HBA1C_THRESHOLD = 6.5
HIGH_GLUCOSE_THRESHOLD = 200.0

AGE_GROUP_BINS = [0, 18, 35, 50, 65, float("inf")]
AGE_GROUP_LABELS = ["<18", "18-34", "35-49", "50-64", "65+"]

BMI_CATEGORY_BINS = [0, 18.5, 25, 30, float("inf")]
BMI_CATEGORY_LABELS = ["Underweight", "Normal", "Overweight", "Obese"]

DERIVED_COLUMNS = ["high_hba1c", "high_glucose", "age_group", "bmi_category"]

# Pipeline defaults
DEFAULT_RANDOM_SEED = 42
DEFAULT_SPLIT_RATIOS = (0.8, 0.1, 0.1)
DEFAULT_BOOTSTRAP_RESAMPLES = 1000
MIN_BOOTSTRAP_RESAMPLES = 100
DEFAULT_N_WORKERS = 4

# Held-out test partition written next to the model artifacts
TEST_MATRIX_FILENAME = "test_matrix.csv"
