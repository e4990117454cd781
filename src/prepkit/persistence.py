"""Saving and loading treatment plans.

A plan is stored as its pydantic JSON. Loading re-validates every treatment,
so a file edited by hand into an inconsistent plan (unordered collar bounds,
coding tables that miss a level, colliding output names) is rejected.
"""

from __future__ import annotations

from pathlib import Path
from typing import Final

from loguru import logger

from prepkit.models import TreatmentPlan

__all__ = ["PLAN_JSON_INDENT", "load_plan", "plan_from_json", "plan_to_json", "save_plan"]

PLAN_JSON_INDENT: Final[int] = 2


def plan_to_json(plan: TreatmentPlan) -> str:
    """Serialize a plan to JSON.

    Args:
        plan (TreatmentPlan): The plan to serialize.

    Returns:
        str: Indented JSON text.
    """
    return plan.model_dump_json(indent=PLAN_JSON_INDENT)


def plan_from_json(text: str | bytes) -> TreatmentPlan:
    """Validate JSON text into a plan.

    Args:
        text (str | bytes): Output of `plan_to_json`.

    Returns:
        TreatmentPlan: The restored plan.

    Raises:
        pydantic.ValidationError: If the text is not a valid plan.
    """
    return TreatmentPlan.model_validate_json(text)


def save_plan(plan: TreatmentPlan, path: str | Path) -> Path:
    """Write a plan to a JSON file, replacing any existing file.

    Args:
        plan (TreatmentPlan): The plan to save.
        path (str | Path): Destination file.

    Returns:
        Path: The path written.

    Examples:
        >>> save_plan(plan, "churn_plan.json")  # doctest: +SKIP
        PosixPath('churn_plan.json')
    """
    destination = Path(path)
    destination.write_text(plan_to_json(plan), encoding="utf-8")
    logger.debug("Plan saved", path=str(destination), treatments=len(plan.treatments))
    return destination


def load_plan(path: str | Path) -> TreatmentPlan:
    """Read and validate a plan written by `save_plan`.

    Args:
        path (str | Path): Source file.

    Returns:
        TreatmentPlan: The restored plan. Applying it gives the same output
            as applying the plan that was saved.

    Raises:
        FileNotFoundError: If `path` does not exist.
        pydantic.ValidationError: If the file is not a valid plan.
    """
    source = Path(path)
    plan = plan_from_json(source.read_text(encoding="utf-8"))
    logger.debug("Plan loaded", path=str(source), treatments=len(plan.treatments))
    return plan
