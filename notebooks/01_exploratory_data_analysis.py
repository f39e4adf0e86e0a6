"""Exploratory Data Analysis for the Diabetes Prediction Dataset.

This marimo notebook covers:
- Cleaning summary (dropped rows, consolidated categories)
- Class balance and univariate distributions
- Clinical threshold flags and age/BMI bins against diabetes status
- Correlations of the encoded design matrix
"""

import marimo

__generated_with = "0.17.7"
app = marimo.App()


@app.cell
def _():
    import marimo as mo
    import pandas as pd
    import matplotlib.pyplot as plt
    import seaborn as sns
    from pathlib import Path

    from diabetes_risk.data.load_clean import load_and_clean
    from diabetes_risk.features.preprocess import derive_clinical_features, transform

    plt.style.use('seaborn-v0_8-darkgrid')
    sns.set_palette("husl")

    mo.md(
        """
        # Exploratory Data Analysis: Diabetes Prediction Dataset

        **Objective**: Understand the cleaned records and the clinical markers that
        separate diabetic from non-diabetic patients before fitting random forest
        and SVM classifiers.
        """
    )
    return Path, derive_clinical_features, load_and_clean, mo, pd, plt, sns, transform


@app.cell
def _(Path, derive_clinical_features, load_and_clean):
    notebook_dir = Path(__file__).parent
    data_path = notebook_dir.parent / "data" / "raw" / "diabetes_prediction_dataset.csv"
    dataset = load_and_clean(data_path)
    df = derive_clinical_features(dataset)

    n_samples = len(df)
    n_positive = int((df['diabetes'].astype(str) == 'Positive').sum())
    positive_rate = n_positive / n_samples
    return dataset, df, n_positive, n_samples, positive_rate


@app.cell
def _(dataset, mo, n_positive, n_samples, positive_rate):
    mo.md(f"""
    ## 1. Dataset Overview

    **Samples after cleaning**: {n_samples}
    **Dropped rows**: {dataset.dropped}
    **Positive Rate**: {positive_rate:.1%} ({n_positive} diabetic patients)

    | Feature | Description | Clinical Significance |
    |---------|-------------|----------------------|
    | HbA1c_level | Glycated haemoglobin (%) | **Diagnostic marker** (≥6.5 = diabetes) |
    | blood_glucose_level | Blood glucose (mg/dL) | **Diagnostic marker** (≥200 random = diabetes) |
    | bmi | Body Mass Index (kg/m²) | Strong risk factor (≥30 = obese) |
    | age | Age in years | Risk increases with age |
    | hypertension, heart_disease | Comorbidities | Metabolic syndrome indicators |
    | smoking_history | Never / Former / Current / Unknown | Lifestyle risk factor |
    """)
    return


@app.cell
def _(df, pd):
    # Categorical composition after consolidation
    categorical_summary = pd.concat(
        {
            col: df[col].value_counts(normalize=True).rename('share')
            for col in ['gender', 'smoking_history', 'hypertension', 'heart_disease']
        }
    )
    print(categorical_summary.to_string())
    return


@app.cell
def _(mo):
    mo.md("""
    ## 2. Univariate Analysis: Numeric Distributions by Diabetes Status
    """)
    return


@app.cell
def _(df, plt, sns):
    _numeric = ['age', 'bmi', 'HbA1c_level', 'blood_glucose_level']
    _fig, _axes = plt.subplots(2, 2, figsize=(14, 10))

    for _ax, _feature in zip(_axes.flatten(), _numeric):
        sns.histplot(data=df, x=_feature, hue='diabetes', bins=40, stat='density', common_norm=False, ax=_ax)
        _ax.set_title(f'{_feature} by Diabetes Status')

    plt.tight_layout()
    _fig
    return


@app.cell
def _(mo):
    mo.md("""
    ## 3. Clinical Thresholds and Bins
    """)
    return


@app.cell
def _(df, pd):
    # Positive rate per flag and bin
    _positive = df['diabetes'].astype(str) == 'Positive'
    threshold_summary = pd.DataFrame(
        {
            flag: _positive.groupby(df[flag], observed=False).mean()
            for flag in ['high_hba1c', 'high_glucose']
        }
    )
    age_summary = _positive.groupby(df['age_group'], observed=False).mean().rename('positive_rate')
    bmi_summary = _positive.groupby(df['bmi_category'], observed=False).mean().rename('positive_rate')
    print(threshold_summary.to_string())
    return age_summary, bmi_summary


@app.cell
def _(age_summary, bmi_summary, plt):
    _fig, _axes = plt.subplots(1, 2, figsize=(14, 5))

    age_summary.plot.bar(ax=_axes[0])
    _axes[0].set_title('Positive Rate by Age Group')
    _axes[0].set_ylabel('Positive Rate')

    bmi_summary.plot.bar(ax=_axes[1])
    _axes[1].set_title('Positive Rate by BMI Category')

    plt.tight_layout()
    _fig
    return


@app.cell
def _(mo):
    mo.md("""
    **Observations**: patients over either diagnostic threshold are almost
    always labelled positive, so the flags are strong but leak the label
    definition. They stay out of the modeling matrix.

    ## 4. Encoded Design Matrix Correlations
    """)
    return


@app.cell
def _(dataset, plt, sns, transform):
    matrix = transform(dataset)
    corr_matrix = matrix.frame.corr()

    _fig, _ax = plt.subplots(figsize=(11, 9))
    sns.heatmap(corr_matrix, annot=True, fmt='.2f', cmap='coolwarm',
                center=0, square=True, linewidths=1, ax=_ax,
                vmin=-1, vmax=1)
    _ax.set_title('Design Matrix Correlation (reference levels dropped)', fontsize=14, fontweight='bold')
    plt.tight_layout()
    _fig
    return


if __name__ == "__main__":
    app.run()
