"""
Model Comparison Reports
========================

Cleans tabular datasets, fits regression and classification models and
compares their predictive performance.

Modules:
    - data_loader: CSV/Excel ingestion, configuration and validation
    - cleaning: Row filters, string parsing and feature engineering
    - eda: Exploratory Data Analysis
    - preprocessing: Feature encoding and train/test split
    - model: OLS, LASSO, Random Forest, XGBoost, CART and logit models
    - cross_validation: k-fold scoring and threshold selection
    - evaluation: Metrics, expected loss and plots
    - comparison: Side-by-side model comparison
    - prediction: Scoring new rows
    - report: Markdown report rendering
"""

__version__ = "1.0.0"
__author__ = "Predictive Analytics Team"
