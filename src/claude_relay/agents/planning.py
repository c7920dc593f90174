"""Turn the orchestrator's planning output into a validated ExecutionPlan."""

import dataclasses
import logging
from typing import Any

from ..errors import JSONExtractionError, PlanParseError
from ..parsing import extract_json
from .models import ExecutionPlan, UnitTask

logger = logging.getLogger(__name__)

RAW_EXCERPT_LENGTH = 200


def _unit_from_dict(data: Any, index: int) -> UnitTask:
	if not isinstance(data, dict):
		raise ValueError(f"worker {index} is not an object")
	unit_id = data.get("id")
	prompt = data.get("prompt")
	if not isinstance(unit_id, str) or not unit_id.strip():
		raise ValueError(f"worker {index} has no id")
	if not isinstance(prompt, str) or not prompt.strip():
		raise ValueError(f"worker {unit_id} has no prompt")

	depends_on = data.get("dependsOn", data.get("depends_on")) or []
	if not isinstance(depends_on, list):
		raise ValueError(f"worker {unit_id} has a non-list dependsOn")

	description = data.get("description")
	if not isinstance(description, str) or not description.strip():
		description = prompt.strip()[:80]

	return UnitTask(
		id=unit_id,
		description=description,
		prompt=prompt,
		depends_on=[str(dep) for dep in depends_on],
	)


def plan_from_dict(data: Any) -> ExecutionPlan:
	"""
	Validate a decoded planning object.

	Raises:
		ValueError: Anything that does not look like a plan
	"""
	if not isinstance(data, dict) or data.get("type") != "plan":
		raise ValueError("not a plan object")
	workers = data.get("workers")
	if not isinstance(workers, list):
		raise ValueError("plan has no workers list")

	units = [_unit_from_dict(item, index) for index, item in enumerate(workers, 1)]
	seen: set[str] = set()
	for unit in units:
		if unit.id in seen:
			raise ValueError(f"duplicate worker id: {unit.id}")
		seen.add(unit.id)

	return ExecutionPlan(
		summary=str(data.get("summary") or ""),
		workers=units,
		sequential=bool(data.get("sequential", False)),
	)


def parse_plan(raw: str) -> ExecutionPlan:
	"""
	Extract a plan from free-form model output.

	Raises:
		PlanParseError: No candidate in the text is a valid plan
	"""
	try:
		return extract_json(raw, convert=plan_from_dict)
	except JSONExtractionError as e:
		excerpt = raw.strip()[:RAW_EXCERPT_LENGTH]
		raise PlanParseError(
			f"Could not extract a valid plan from orchestrator output: {e}",
			raw_excerpt=excerpt,
		) from e


def truncate_plan(plan: ExecutionPlan, max_units: int) -> ExecutionPlan:
	"""Keep at most max_units units, dropping from the end."""
	if len(plan.workers) <= max_units:
		return plan
	logger.warning(f"Plan has {len(plan.workers)} workers, truncating to {max_units}")
	return dataclasses.replace(plan, workers=plan.workers[:max_units])
