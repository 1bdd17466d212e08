from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from intent_use.schema.views import ExecutionPath, FallbackPath

ComparisonStatus = Literal['success', 'partial', 'mismatch']

DEFAULT_TIMEOUT_MS = 30000


def _default_recordings_dir() -> Path:
	return Path(os.environ.get('INTENT_RECORDINGS_DIR', './recordings'))


# --- Configuration ---


class OrchestratorOptions(BaseModel):
	"""Recognised orchestrator settings and their defaults."""

	enable_fallback: bool = True  # master switch for trying the fallback path
	screenshot_comparison: bool = True  # compare the final state with the success screenshot
	save_screenshots: bool = True  # capture per-step and final screenshots at all
	timeout: int = Field(DEFAULT_TIMEOUT_MS, gt=0)  # per executor call, in milliseconds
	stop_on_failure: bool = False  # halt after the first step that fails for good
	recordings_dir: Path = Field(default_factory=_default_recordings_dir)

	def merged(self, overrides: Mapping[str, Any] | None = None) -> OrchestratorOptions:
		"""Return a copy with *overrides* applied field by field (shallow merge)."""
		if not overrides:
			return self.model_copy()
		unknown = set(overrides) - set(type(self).model_fields)
		if unknown:
			raise ValueError(f'Unknown orchestrator options: {", ".join(sorted(unknown))}')
		return type(self).model_validate({**self.model_dump(), **overrides})


class OverrideStrategy(BaseModel):
	"""Caller-supplied override of the per-step path preference."""

	preferred_path: Optional[ExecutionPath] = None
	override_preferences: bool = False
	fallback_policy: Optional[FallbackPath] = None


class PathDecision(BaseModel):
	model_config = ConfigDict(frozen=True)

	primary: ExecutionPath
	fallback: FallbackPath = 'none'


# --- Collaborator payloads ---


class FlowOptions(BaseModel):
	save_screenshots: bool = True
	timeout: int = DEFAULT_TIMEOUT_MS


class AIFlowResult(BaseModel):
	success: bool
	error: Optional[str] = None
	screenshots: List[str] = Field(default_factory=list)
	data: Any = None


class ScriptActionResult(BaseModel):
	success: bool
	error: Optional[str] = None


class ScreenshotDifference(BaseModel):
	type: str
	description: str = ''
	severity: Optional[Literal['low', 'medium', 'high']] = None
	location: Optional[str] = None


class ScreenshotComparison(BaseModel):
	similarity: float = Field(..., ge=0, le=100)
	match: bool
	differences: List[ScreenshotDifference] = Field(default_factory=list)
	suggestions: List[str] = Field(default_factory=list)


class ComparisonVerdict(BaseModel):
	match: bool
	status: ComparisonStatus
	suggestions: List[str] = Field(default_factory=list)


# --- Report contract ---


class _ContractModel(BaseModel):
	"""Models serialised with the camelCase field names of the report contract."""

	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StepExecutionResult(_ContractModel):
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

	name: str
	path_used: ExecutionPath
	fallback_occurred: bool = False
	success: bool
	duration: int = 0  # ms
	error: Optional[str] = None
	screenshot: Optional[str] = None


class ExecutionReport(_ContractModel):
	"""Aggregate outcome of one orchestrator run.

	Counters are only touched through :meth:`record_step`, which keeps them equal
	to the counts derived from ``steps``.
	"""

	execution_id: str
	steps: List[StepExecutionResult] = Field(default_factory=list)
	ai_usage_count: int = 0
	snippet_usage_count: int = 0
	fallback_count: int = 0
	screenshots: List[str] = Field(default_factory=list)
	overall_success: bool = True
	suggestions: List[str] = Field(default_factory=list)
	total_duration: int = 0  # ms
	success_state_match: Optional[bool] = None
	comparison_similarity: Optional[float] = None
	comparison_status: Optional[ComparisonStatus] = None

	def record_step(self, result: StepExecutionResult) -> None:
		self.steps.append(result)
		if result.path_used == 'ai':
			self.ai_usage_count += 1
		else:
			self.snippet_usage_count += 1
		if result.fallback_occurred:
			self.fallback_count += 1
		if result.screenshot:
			self.screenshots.append(result.screenshot)
		if not result.success:
			self.overall_success = False

	def replace_last_step(self, **update: Any) -> None:
		"""Rewrite the most recent step result (used to attach a late run error)."""
		self.steps[-1] = self.steps[-1].model_copy(update=update)
		if update.get('success') is False:
			self.overall_success = False

	@property
	def successful_steps(self) -> int:
		return sum(1 for step in self.steps if step.success)

	def to_contract_dict(self) -> Dict[str, Any]:
		"""Dictionary using the camelCase contract names; unset optional fields are omitted."""
		return self.model_dump(mode='json', by_alias=True, exclude_none=True)
