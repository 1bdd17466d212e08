from __future__ import annotations

import asyncio
import logging
import secrets
import time
from typing import Any, Awaitable, Dict, Mapping, Optional, TypeVar

from pydantic import BaseModel

from intent_use.executors.base import AIStepExecutor, ScreenshotComparatorProtocol, ScriptStepExecutor
from intent_use.orchestrator import events
from intent_use.orchestrator.error_analysis import suggestions_for_failures
from intent_use.orchestrator.events import EventDispatcher, EventListener
from intent_use.orchestrator.path_resolver import StepClassifier, resolve_path
from intent_use.orchestrator.success_state import SuccessStateResolver
from intent_use.orchestrator.views import (
	ComparisonVerdict,
	ExecutionReport,
	FlowOptions,
	OrchestratorOptions,
	OverrideStrategy,
	PathDecision,
	ScreenshotComparison,
	StepExecutionResult,
)
from intent_use.schema.views import ExecutionPath, IntentSpec, IntentStep
from intent_use.statistics.service import ExecutionStatistics, ExecutionStatisticsStore
from intent_use.variables import substitute_step

logger = logging.getLogger(__name__)

PATH_LABELS = {'ai': 'AI', 'snippet': 'Snippet'}

SUCCESS_THRESHOLD = 80
PARTIAL_THRESHOLD = 60

NO_REFERENCE_SUGGESTION = 'No success state screenshot available for comparison'


T = TypeVar('T')


class _ExecutorTimeout(Exception):
	"""The orchestrator's per-call deadline passed."""


class _PathOutcome(BaseModel):
	success: bool
	error: Optional[str] = None
	screenshot: Optional[str] = None


def generate_execution_id() -> str:
	return f'exec_{int(time.time() * 1000)}_{secrets.token_hex(5)}'


def evaluate_comparison_thresholds(comparison: ScreenshotComparison) -> ComparisonVerdict:
	"""Map a similarity score to a verdict: >80 success, 60..80 partial, <60 mismatch."""
	similarity = comparison.similarity

	if similarity > SUCCESS_THRESHOLD:
		return ComparisonVerdict(
			match=True,
			status='success',
			suggestions=['Screenshot comparison successful - execution matches expected state'],
		)

	if similarity >= PARTIAL_THRESHOLD:
		suggestions = [
			'Partial match detected - execution may be mostly correct with minor differences',
			'Review the differences to determine if they are acceptable',
		]
		if any(difference.severity == 'high' for difference in comparison.differences):
			suggestions.append('High-severity differences found - manual review recommended')
		return ComparisonVerdict(match=False, status='partial', suggestions=suggestions)

	return ComparisonVerdict(
		match=False,
		status='mismatch',
		suggestions=[
			'Significant mismatch detected - execution state differs substantially from expected',
			'Verify that the automation completed successfully',
			'Check for navigation errors or timing issues',
		],
	)


class ExecutionOrchestrator:
	"""Runs the steps of an intent spec over the AI and snippet paths with fallback.

	One instance executes one spec at a time; concurrent ``execute`` calls on the
	same instance are not supported. Create one orchestrator per run or await
	runs one after another.
	"""

	def __init__(
		self,
		ai_executor: AIStepExecutor,
		script_executor: ScriptStepExecutor,
		*,
		comparator: ScreenshotComparatorProtocol | None = None,
		options: OrchestratorOptions | Mapping[str, Any] | None = None,
		success_resolver: SuccessStateResolver | None = None,
		classifier: StepClassifier | None = None,
		statistics_store: ExecutionStatisticsStore | None = None,
	) -> None:
		"""Create an orchestrator.

		Args:
			ai_executor: Executes a step from its natural-language instruction.
			script_executor: Executes snippets, captures screenshots and owns browser cleanup.
			comparator: Optional screenshot comparator for success-state verification.
			options: ``OrchestratorOptions`` or a mapping of overrides merged onto the defaults.
			success_resolver: Reference screenshot lookup (default: one rooted at ``options.recordings_dir``).
			classifier: Step classifier used for category preferences.
			statistics_store: Optional store that receives every finished report.
		"""
		self.ai_executor = ai_executor
		self.script_executor = script_executor
		self.comparator = comparator

		if isinstance(options, OrchestratorOptions):
			self.options = options
		else:
			self.options = OrchestratorOptions().merged(options)

		self.success_resolver = success_resolver or SuccessStateResolver(self.options.recordings_dir)
		self.classifier = classifier
		self.statistics_store = statistics_store
		self.events = EventDispatcher()

	def on(self, event: str, listener: EventListener) -> None:
		self.events.on(event, listener)

	def off(self, event: str, listener: EventListener) -> None:
		self.events.off(event, listener)

	# --- Main entry point ---

	async def execute(
		self,
		spec: IntentSpec,
		variables: Mapping[str, str] | None = None,
		override: OverrideStrategy | None = None,
	) -> ExecutionReport:
		"""Execute *spec* and return its report. Never raises; failures land in the report."""
		start_time = time.monotonic()
		report = ExecutionReport(execution_id=generate_execution_id())
		self.events.emit(events.EXECUTION_STARTED, {'execution_id': report.execution_id, 'spec': spec})

		try:
			variables = dict(variables or {})
			total_steps = len(spec.steps)
			logger.info(f'Starting execution {report.execution_id} of "{spec.name}" ({total_steps} steps)')
			for step_index, step in enumerate(spec.steps):
				self.events.emit(events.STEP_STARTED, {'step_index': step_index, 'step': step, 'total_steps': total_steps})
				logger.info(f'--- Running Step {step_index + 1}/{total_steps} -- {step.display_name} ---')

				decision = resolve_path(step, spec.preferences, override, self.classifier)
				step_result = await self._execute_step_with_fallback(step, variables, step_index, decision)

				report.record_step(step_result)
				self.events.emit(events.STEP_COMPLETED, step_result)

				if step_result.success:
					logger.info(f'--- Finished Step {step_index + 1} via {step_result.path_used} ---')
				else:
					logger.warning(f'--- Step {step_index + 1} failed: {step_result.error} ---')
					if self.options.stop_on_failure:
						logger.info('stop_on_failure is set - skipping remaining steps')
						break

			report.suggestions.extend(suggestions_for_failures(report.steps))

			final_screenshot: Optional[str] = None
			if self.options.save_screenshots:
				final_screenshot = await self._capture_screenshot('final-state')
				if final_screenshot:
					report.screenshots.append(final_screenshot)

			if self.options.screenshot_comparison:
				await self._perform_screenshot_comparison(final_screenshot, spec, report)

			report.total_duration = self._elapsed_ms(start_time)
			logger.info(
				f'Execution {report.execution_id} finished: success={report.overall_success}, '
				f'ai={report.ai_usage_count}, snippet={report.snippet_usage_count}, fallbacks={report.fallback_count}'
			)
			self.events.emit(events.EXECUTION_COMPLETED, report)

		except Exception as e:
			error_message = str(e) or type(e).__name__
			logger.error(f'Execution {report.execution_id} failed unexpectedly: {error_message}', exc_info=True)
			report.overall_success = False
			report.total_duration = self._elapsed_ms(start_time)

			if report.steps:
				report.replace_last_step(success=False, error=error_message)
			else:
				report.record_step(
					StepExecutionResult(
						name='Execution Failed',
						path_used='ai',
						success=False,
						error=error_message,
						duration=report.total_duration,
					)
				)
			self.events.emit(events.EXECUTION_FAILED, {'error': error_message, 'report': report})

		finally:
			await self.cleanup()
			self._record_statistics(report)

		return report

	# --- Step execution ---

	async def _execute_step_with_fallback(
		self,
		step: IntentStep,
		variables: Dict[str, str],
		step_index: int,
		decision: PathDecision,
	) -> StepExecutionResult:
		step_start = time.monotonic()
		resolved_step = substitute_step(step, variables)

		primary = await self._run_path(decision.primary, resolved_step, variables, step_index)
		if primary.success:
			return StepExecutionResult(
				name=step.display_name,
				path_used=decision.primary,
				success=True,
				duration=self._elapsed_ms(step_start),
				screenshot=primary.screenshot,
			)

		primary_label = PATH_LABELS[decision.primary]
		if decision.fallback == 'none' or not self.options.enable_fallback:
			return StepExecutionResult(
				name=step.display_name,
				path_used=decision.primary,
				success=False,
				duration=self._elapsed_ms(step_start),
				error=primary.error,
				screenshot=primary.screenshot,
			)

		logger.warning(f'{primary_label} path failed for step {step_index + 1}: {primary.error}. Falling back to {decision.fallback}')
		self.events.emit(events.FALLBACK_STARTED, {'step_index': step_index, 'step': step})

		fallback = await self._run_path(decision.fallback, resolved_step, variables, step_index)
		self.events.emit(events.FALLBACK_COMPLETED, {'step_index': step_index, 'success': fallback.success})

		error = None
		if not fallback.success:
			error = f'{primary_label} failed: {primary.error}. Fallback failed: {fallback.error}'

		return StepExecutionResult(
			name=step.display_name,
			path_used=decision.fallback,
			fallback_occurred=True,
			success=fallback.success,
			duration=self._elapsed_ms(step_start),
			error=error,
			screenshot=fallback.screenshot,
		)

	async def _run_path(self, path: ExecutionPath, step: IntentStep, variables: Dict[str, str], step_index: int) -> _PathOutcome:
		"""Run one path for *step*; every failure becomes an outcome."""
		label = PATH_LABELS[path]
		runner = self._run_ai if path == 'ai' else self._run_snippet
		try:
			return await runner(step, variables, step_index)
		except _ExecutorTimeout:
			return _PathOutcome(success=False, error=f'{label} execution timed out after {self.options.timeout}ms')
		except Exception as e:
			return _PathOutcome(success=False, error=str(e) or f'{label} execution error ({type(e).__name__})')

	async def _call_with_timeout(self, call: Awaitable[T]) -> T:
		"""Await an executor call under the configured timeout.

		Only the deadline raises ``_ExecutorTimeout``; a ``TimeoutError`` raised by the
		executor itself propagates unchanged.
		"""
		try:
			async with asyncio.timeout(self.options.timeout / 1000) as deadline:
				return await call
		except TimeoutError:
			if deadline.expired():
				raise _ExecutorTimeout() from None
			raise

	async def _run_ai(self, step: IntentStep, variables: Dict[str, str], step_index: int) -> _PathOutcome:
		mini_spec = IntentSpec(name='temp-step', url='current', params=[], steps=[step])
		flow_options = FlowOptions(save_screenshots=self.options.save_screenshots, timeout=self.options.timeout)

		result = await self._call_with_timeout(self.ai_executor.execute_flow(mini_spec, variables, flow_options))
		return _PathOutcome(
			success=result.success,
			error=None if result.success else (result.error or 'AI execution reported failure'),
			screenshot=result.screenshots[0] if result.screenshots else None,
		)

	async def _run_snippet(self, step: IntentStep, variables: Dict[str, str], step_index: int) -> _PathOutcome:
		result = await self._call_with_timeout(self.script_executor.execute_action(step))
		if not result.success:
			return _PathOutcome(success=False, error=result.error or 'Snippet execution reported failure')

		screenshot = None
		if self.options.save_screenshots:
			screenshot = await self._capture_screenshot(f'snippet-step-{step_index + 1}')
		return _PathOutcome(success=True, screenshot=screenshot)

	# --- Screenshots & verification ---

	async def _capture_screenshot(self, name: str) -> Optional[str]:
		try:
			return await self.script_executor.take_screenshot(f'{name}-{int(time.time() * 1000)}')
		except Exception as e:
			logger.warning(f'Screenshot capture failed: {e}')
			return None

	async def _perform_screenshot_comparison(
		self, final_screenshot: Optional[str], spec: IntentSpec, report: ExecutionReport
	) -> Optional[ScreenshotComparison]:
		if self.comparator is None:
			report.suggestions.append('Screenshot comparator not configured - success state was not verified')
			return None

		try:
			reference = self.success_resolver.find_reference_screenshot(spec)
		except Exception as e:
			logger.warning(f'Error finding success screenshot: {e}')
			reference = None

		if not reference:
			logger.warning('No success state screenshot found for comparison')
			report.suggestions.append(NO_REFERENCE_SUGGESTION)
			return None

		if not final_screenshot:
			report.suggestions.append('No final-state screenshot was captured - success state was not verified')
			return None

		try:
			comparison = await self.comparator.compare_screenshots(final_screenshot, reference)
		except Exception as e:
			logger.warning(f'Screenshot comparison failed: {e}')
			report.suggestions.append(f'Screenshot comparison failed: {e}')
			return None

		verdict = evaluate_comparison_thresholds(comparison)
		report.success_state_match = verdict.match
		report.comparison_similarity = comparison.similarity
		report.comparison_status = verdict.status
		report.suggestions.extend(comparison.suggestions)
		report.suggestions.extend(verdict.suggestions)

		logger.info(f'Screenshot comparison completed: {verdict.status} ({comparison.similarity}% similarity)')
		self.events.emit(
			events.SCREENSHOT_COMPARISON,
			{'result': comparison, 'verdict': verdict, 'reference_screenshot': reference},
		)
		return comparison

	# --- Lifecycle ---

	async def cleanup(self) -> None:
		"""Release executor resources; problems are logged, never raised."""
		stop_ai = getattr(self.ai_executor, 'stop', None)
		calls = [self.script_executor.cleanup()]
		if callable(stop_ai):
			calls.append(stop_ai())

		try:
			results = await asyncio.gather(*calls, return_exceptions=True)
		except Exception as e:
			logger.warning(f'Cleanup error: {e}')
			return
		for result in results:
			if isinstance(result, BaseException):
				logger.warning(f'Cleanup error: {result}')

	async def stop(self) -> None:
		self.events.emit(events.EXECUTION_STOPPED)
		await self.cleanup()

	def get_statistics(self) -> ExecutionStatistics:
		if self.statistics_store is None:
			return ExecutionStatistics()
		return self.statistics_store.summary()

	def _record_statistics(self, report: ExecutionReport) -> None:
		if self.statistics_store is None:
			return
		try:
			self.statistics_store.record(report)
		except Exception as e:
			logger.warning(f'Failed to record execution statistics: {e}')

	@staticmethod
	def _elapsed_ms(start: float) -> int:
		return int((time.monotonic() - start) * 1000)
