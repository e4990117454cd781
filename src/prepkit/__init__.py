"""prepkit: Variable treatment and feature pruning for binary classification datasets."""

from loguru import logger

from prepkit.dataset import Dataset
from prepkit.logging import PACKAGE_NAME, enable_logging
from prepkit.models import CategoricalTreatment, NumericTreatment, RelevanceScore, TreatmentPlan
from prepkit.partition import partition
from prepkit.persistence import load_plan, save_plan
from prepkit.pipeline import PipelineResult, PipelineSettings, run_pipeline
from prepkit.redundancy import correlation_matrix, find_redundant
from prepkit.relevance import ExcludedPredictor, score_predictors, screen_predictors, select_relevant
from prepkit.treatment import apply_plan, fit_plan

logger.disable(PACKAGE_NAME)  # noqa: RUF067 - Disable logging for the prepkit module by default

__all__ = [
    "CategoricalTreatment",
    "Dataset",
    "ExcludedPredictor",
    "NumericTreatment",
    "PipelineResult",
    "PipelineSettings",
    "RelevanceScore",
    "TreatmentPlan",
    "apply_plan",
    "correlation_matrix",
    "enable_logging",
    "find_redundant",
    "fit_plan",
    "load_plan",
    "partition",
    "run_pipeline",
    "save_plan",
    "score_predictors",
    "screen_predictors",
    "select_relevant",
]
