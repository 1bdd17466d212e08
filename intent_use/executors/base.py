"""Collaborator interfaces consumed by the execution orchestrator."""

from __future__ import annotations

from typing import Mapping, Protocol, runtime_checkable

from intent_use.orchestrator.views import (
	AIFlowResult,
	FlowOptions,
	ScreenshotComparison,
	ScriptActionResult,
)
from intent_use.schema.views import IntentSpec, IntentStep


@runtime_checkable
class AIStepExecutor(Protocol):
	async def execute_flow(self, mini_spec: IntentSpec, variables: Mapping[str, str], options: FlowOptions) -> AIFlowResult:
		"""Run the single step of *mini_spec* from its natural-language instruction."""
		...


@runtime_checkable
class ScriptStepExecutor(Protocol):
	async def execute_action(self, step: IntentStep) -> ScriptActionResult: ...

	async def take_screenshot(self, label: str) -> str: ...

	async def cleanup(self) -> None:
		"""Release browser resources. Safe to call more than once."""
		...


@runtime_checkable
class ScreenshotComparatorProtocol(Protocol):
	async def compare_screenshots(self, candidate_path: str, reference_path: str) -> ScreenshotComparison: ...
