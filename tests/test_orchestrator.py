import asyncio

import pytest
from conftest import FakeAIExecutor, FakeComparator, FakeScriptExecutor, make_spec, make_step

from intent_use.orchestrator import events
from intent_use.orchestrator import service as service_module
from intent_use.orchestrator.service import NO_REFERENCE_SUGGESTION, ExecutionOrchestrator, evaluate_comparison_thresholds
from intent_use.orchestrator.views import (
	AIFlowResult,
	OrchestratorOptions,
	OverrideStrategy,
	ScreenshotComparison,
	ScreenshotDifference,
)
from intent_use.statistics.service import ExecutionStatisticsStore


def assert_counters_consistent(report):
	assert report.ai_usage_count + report.snippet_usage_count == len(report.steps)
	assert report.fallback_count == sum(1 for step in report.steps if step.fallback_occurred)


async def test_single_ai_step_succeeds(ai_executor, script_executor, quiet_options):
	orchestrator = ExecutionOrchestrator(ai_executor, script_executor, options=quiet_options)

	report = await orchestrator.execute(make_spec(make_step('login', prefer='ai')))

	assert report.ai_usage_count == 1
	assert report.snippet_usage_count == 0
	assert report.fallback_count == 0
	assert report.overall_success is True
	step = report.steps[0]
	assert (step.path_used, step.fallback_occurred, step.success) == ('ai', False, True)
	assert script_executor.steps == []
	assert_counters_consistent(report)


async def test_ai_exception_falls_back_to_snippet(script_executor, quiet_options):
	ai_executor = FakeAIExecutor([Exception('Element not found')])
	orchestrator = ExecutionOrchestrator(ai_executor, script_executor, options=quiet_options)

	report = await orchestrator.execute(make_spec(make_step('submit', prefer='ai', fallback='snippet')))

	step = report.steps[0]
	assert step.path_used == 'snippet'
	assert step.fallback_occurred is True
	assert step.success is True
	assert step.error is None
	assert report.fallback_count == 1
	assert report.overall_success is True
	assert_counters_consistent(report)


async def test_both_paths_fail_reports_attributed_error(quiet_options):
	ai_executor = FakeAIExecutor([Exception('Element not found')])
	script_executor = FakeScriptExecutor([Exception('Selector timeout')])
	orchestrator = ExecutionOrchestrator(ai_executor, script_executor, options=quiet_options)

	report = await orchestrator.execute(make_spec(make_step('submit', prefer='ai', fallback='snippet')))

	step = report.steps[0]
	assert step.success is False
	assert step.error == 'AI failed: Element not found. Fallback failed: Selector timeout'
	assert report.overall_success is False


async def test_snippet_primary_failure_uses_snippet_label(quiet_options):
	ai_executor = FakeAIExecutor([AIFlowResult(success=False, error='Agent gave up')])
	script_executor = FakeScriptExecutor([False])
	orchestrator = ExecutionOrchestrator(ai_executor, script_executor, options=quiet_options)

	report = await orchestrator.execute(make_spec(make_step('x', prefer='snippet', fallback='ai')))

	assert report.steps[0].error == 'Snippet failed: Snippet step failed. Fallback failed: Agent gave up'
	assert report.steps[0].path_used == 'ai'


async def test_mixed_preferences_are_counted(ai_executor, script_executor, quiet_options):
	spec = make_spec(make_step('a', prefer='snippet'), make_step('b', prefer='ai'), make_step('c', prefer='snippet'))
	orchestrator = ExecutionOrchestrator(ai_executor, script_executor, options=quiet_options)

	report = await orchestrator.execute(spec)

	assert report.snippet_usage_count == 2
	assert report.ai_usage_count == 1
	assert report.fallback_count == 0
	assert [step.name for step in report.steps] == ['a', 'b', 'c']
	assert [step.path_used for step in report.steps] == ['snippet', 'ai', 'snippet']


async def test_failure_without_fallback_never_touches_other_executor(script_executor, quiet_options):
	ai_executor = FakeAIExecutor([False])
	orchestrator = ExecutionOrchestrator(ai_executor, script_executor, options=quiet_options)

	report = await orchestrator.execute(make_spec(make_step('only-ai', prefer='ai', fallback='none')))

	step = report.steps[0]
	assert step.fallback_occurred is False
	assert step.success is False
	assert script_executor.steps == []


async def test_disabled_fallback_records_primary_failure(script_executor, quiet_options):
	ai_executor = FakeAIExecutor([False])
	orchestrator = ExecutionOrchestrator(ai_executor, script_executor, options={**quiet_options, 'enable_fallback': False})

	report = await orchestrator.execute(make_spec(make_step('x', prefer='ai', fallback='snippet')))

	assert report.steps[0].fallback_occurred is False
	assert report.steps[0].error == 'AI step failed'
	assert script_executor.steps == []


async def test_execution_continues_after_failed_step_by_default(script_executor, quiet_options):
	ai_executor = FakeAIExecutor([False, True])
	orchestrator = ExecutionOrchestrator(ai_executor, script_executor, options=quiet_options)

	report = await orchestrator.execute(make_spec(make_step('a'), make_step('b')))

	assert [step.success for step in report.steps] == [False, True]
	assert report.overall_success is False


async def test_stop_on_failure_halts_after_failed_step(script_executor, quiet_options):
	ai_executor = FakeAIExecutor([False, True])
	orchestrator = ExecutionOrchestrator(ai_executor, script_executor, options={**quiet_options, 'stop_on_failure': True})

	report = await orchestrator.execute(make_spec(make_step('a'), make_step('b'), make_step('c')))

	assert len(report.steps) == 1
	assert len(ai_executor.calls) == 1
	assert_counters_consistent(report)


async def test_variables_are_substituted_before_execution(ai_executor, quiet_options):
	script_executor = FakeScriptExecutor()
	spec = make_spec(
		make_step('fill', prefer='snippet', snippet="await page.fill('#email', '{{ EMAIL }}')"),
		make_step('ask', prefer='ai', ai_instruction='Search for {{QUERY}}'),
		params=['EMAIL', 'QUERY'],
	)
	orchestrator = ExecutionOrchestrator(ai_executor, script_executor, options=quiet_options)

	await orchestrator.execute(spec, {'EMAIL': 'jane@example.com', 'QUERY': 'shoes'})

	assert script_executor.steps[0].snippet == "await page.fill('#email', 'jane@example.com')"
	mini_spec = ai_executor.calls[0]
	assert mini_spec.name == 'temp-step'
	assert mini_spec.url == 'current'
	assert mini_spec.steps[0].ai_instruction == 'Search for shoes'
	# The input spec is never mutated
	assert spec.steps[0].snippet == "await page.fill('#email', '{{ EMAIL }}')"


async def test_timed_out_primary_falls_back(script_executor, quiet_options):
	class SlowAI(FakeAIExecutor):
		async def execute_flow(self, mini_spec, variables, options):
			await asyncio.sleep(1)
			return AIFlowResult(success=True)

	orchestrator = ExecutionOrchestrator(SlowAI(), script_executor, options={**quiet_options, 'timeout': 10})

	report = await orchestrator.execute(make_spec(make_step('slow', prefer='ai', fallback='snippet')))

	step = report.steps[0]
	assert step.success is True
	assert step.path_used == 'snippet'


async def test_step_timeout_error_message(quiet_options):
	class SlowAI(FakeAIExecutor):
		async def execute_flow(self, mini_spec, variables, options):
			await asyncio.sleep(1)

	orchestrator = ExecutionOrchestrator(SlowAI(), FakeScriptExecutor(), options={**quiet_options, 'timeout': 10})

	report = await orchestrator.execute(make_spec(make_step('slow')))

	assert report.steps[0].error == 'AI execution timed out after 10ms'


async def test_executor_timeout_error_keeps_its_own_message(quiet_options):
	ai_executor = FakeAIExecutor([Exception('Element not found')])
	script_executor = FakeScriptExecutor([TimeoutError('Selector timeout')])
	orchestrator = ExecutionOrchestrator(ai_executor, script_executor, options={**quiet_options, 'timeout': 5000})

	report = await orchestrator.execute(make_spec(make_step('submit', prefer='ai', fallback='snippet')))

	assert report.steps[0].error == 'AI failed: Element not found. Fallback failed: Selector timeout'


async def test_slow_screenshot_does_not_count_against_step_timeout(ai_executor, tmp_path):
	class SlowScreenshots(FakeScriptExecutor):
		async def take_screenshot(self, label):
			await asyncio.sleep(0.5)
			return await super().take_screenshot(label)

	script_executor = SlowScreenshots()
	options = {'timeout': 100, 'screenshot_comparison': False, 'recordings_dir': tmp_path}
	orchestrator = ExecutionOrchestrator(ai_executor, script_executor, options=options)

	report = await orchestrator.execute(make_spec(make_step('save', prefer='snippet', fallback='ai')))

	step = report.steps[0]
	assert step.success is True
	assert step.path_used == 'snippet'
	assert step.fallback_occurred is False
	assert step.screenshot == 'final.png'
	assert ai_executor.calls == []
	assert len(script_executor.steps) == 1


async def test_events_are_emitted_in_execution_order(quiet_options):
	ai_executor = FakeAIExecutor([False])
	orchestrator = ExecutionOrchestrator(ai_executor, FakeScriptExecutor(), options=quiet_options)
	seen = []
	for name in events.ALL_EVENTS:
		orchestrator.on(name, lambda payload, name=name: seen.append(name))

	await orchestrator.execute(make_spec(make_step('a', fallback='snippet'), make_step('b')))

	assert seen == [
		events.EXECUTION_STARTED,
		events.STEP_STARTED,
		events.FALLBACK_STARTED,
		events.FALLBACK_COMPLETED,
		events.STEP_COMPLETED,
		events.STEP_STARTED,
		events.STEP_COMPLETED,
		events.EXECUTION_COMPLETED,
	]


async def test_listener_exception_does_not_abort_run(ai_executor, script_executor, quiet_options):
	orchestrator = ExecutionOrchestrator(ai_executor, script_executor, options=quiet_options)

	def broken(payload):
		raise RuntimeError('listener bug')

	orchestrator.on(events.STEP_COMPLETED, broken)

	report = await orchestrator.execute(make_spec(make_step('a'), make_step('b')))

	assert report.overall_success is True
	assert len(report.steps) == 2


async def test_unexpected_exception_without_steps_adds_pseudo_step(ai_executor, script_executor, quiet_options):
	orchestrator = ExecutionOrchestrator(ai_executor, script_executor, options=quiet_options)
	failures = []
	orchestrator.on(events.EXECUTION_FAILED, failures.append)

	# Break the loop itself rather than an executor call
	orchestrator._execute_step_with_fallback = None

	report = await orchestrator.execute(make_spec(make_step('a')))

	assert report.overall_success is False
	assert len(report.steps) == 1
	assert report.steps[0].name == 'Execution Failed'
	assert report.steps[0].success is False
	assert report.steps[0].error
	assert_counters_consistent(report)
	assert script_executor.cleanups == 1
	assert failures and failures[0]['report'] is report


async def test_malformed_spec_is_reported_not_raised(ai_executor, script_executor, quiet_options):
	orchestrator = ExecutionOrchestrator(ai_executor, script_executor, options=quiet_options)

	report = await orchestrator.execute(object())

	assert report.overall_success is False
	assert [step.name for step in report.steps] == ['Execution Failed']
	assert script_executor.cleanups == 1
	assert ai_executor.calls == []


async def test_unexpected_exception_after_steps_attaches_error_to_last_step(ai_executor, script_executor, quiet_options, monkeypatch):
	orchestrator = ExecutionOrchestrator(ai_executor, script_executor, options=quiet_options)

	def boom(steps):
		raise RuntimeError('analysis crashed')

	monkeypatch.setattr(service_module, 'suggestions_for_failures', boom)

	report = await orchestrator.execute(make_spec(make_step('a'), make_step('b')))

	assert len(report.steps) == 2
	assert report.steps[0].success is True
	assert report.steps[-1].success is False
	assert report.steps[-1].error == 'analysis crashed'
	assert report.overall_success is False


async def test_cleanup_runs_once_and_errors_are_swallowed(ai_executor, quiet_options):
	class BrokenCleanup(FakeScriptExecutor):
		async def cleanup(self):
			self.cleanups += 1
			raise RuntimeError('browser already closed')

	script_executor = BrokenCleanup()
	orchestrator = ExecutionOrchestrator(ai_executor, script_executor, options=quiet_options)

	report = await orchestrator.execute(make_spec(make_step('a')))

	assert report.overall_success is True
	assert script_executor.cleanups == 1
	assert ai_executor.stopped == 1


async def test_stop_emits_event_and_cleans_up(ai_executor, script_executor):
	orchestrator = ExecutionOrchestrator(ai_executor, script_executor)
	stopped = []
	orchestrator.on(events.EXECUTION_STOPPED, stopped.append)

	await orchestrator.stop()

	assert stopped == [None]
	assert script_executor.cleanups == 1


async def test_override_forces_path_for_every_step(ai_executor, script_executor, quiet_options):
	orchestrator = ExecutionOrchestrator(ai_executor, script_executor, options=quiet_options)
	override = OverrideStrategy(preferred_path='snippet', override_preferences=True)

	report = await orchestrator.execute(make_spec(make_step('a', prefer='ai'), make_step('b', prefer='ai')), override=override)

	assert report.snippet_usage_count == 2
	assert ai_executor.calls == []


async def test_snippet_screenshots_are_collected(ai_executor, tmp_path):
	script_executor = FakeScriptExecutor(screenshot='shot.png')
	options = {'screenshot_comparison': False, 'recordings_dir': tmp_path}
	orchestrator = ExecutionOrchestrator(ai_executor, script_executor, options=options)

	report = await orchestrator.execute(make_spec(make_step('a', prefer='snippet')))

	assert report.steps[0].screenshot == 'shot.png'
	# Step screenshot plus the final-state capture
	assert report.screenshots == ['shot.png', 'shot.png']
	assert script_executor.screenshot_labels[0].startswith('snippet-step-1-')
	assert script_executor.screenshot_labels[1].startswith('final-state-')


async def test_missing_reference_adds_suggestion(ai_executor, script_executor, tmp_path):
	recordings = tmp_path / 'recordings'
	recordings.mkdir()
	comparator = FakeComparator(ScreenshotComparison(similarity=100, match=True))
	orchestrator = ExecutionOrchestrator(ai_executor, script_executor, comparator=comparator, options={'recordings_dir': recordings})
	spec = make_spec(make_step('a'), success_screenshot=str(tmp_path / 'missing.png'))

	report = await orchestrator.execute(spec)

	assert report.success_state_match is None
	assert 'successStateMatch' not in report.to_contract_dict()
	assert NO_REFERENCE_SUGGESTION in report.suggestions
	assert comparator.calls == []


async def test_partial_comparison_sets_status_and_suggestions(ai_executor, script_executor, tmp_path):
	reference = tmp_path / 'expected.png'
	reference.write_bytes(b'png')
	comparison = ScreenshotComparison(
		similarity=75,
		match=False,
		differences=[ScreenshotDifference(type='layout', description='Banner missing', severity='high')],
	)
	comparator = FakeComparator(comparison)
	orchestrator = ExecutionOrchestrator(ai_executor, script_executor, comparator=comparator, options={'recordings_dir': tmp_path})
	comparisons = []
	orchestrator.on(events.SCREENSHOT_COMPARISON, comparisons.append)

	report = await orchestrator.execute(make_spec(make_step('a'), success_screenshot=str(reference)))

	assert report.comparison_status == 'partial'
	assert report.success_state_match is False
	assert report.comparison_similarity == 75
	assert 'Review the differences to determine if they are acceptable' in report.suggestions
	assert 'High-severity differences found - manual review recommended' in report.suggestions
	assert comparator.calls == [('final.png', str(reference))]
	assert comparisons[0]['result'] is comparison


async def test_comparator_error_is_not_fatal(ai_executor, script_executor, tmp_path):
	reference = tmp_path / 'expected.png'
	reference.write_bytes(b'png')

	class BrokenComparator:
		async def compare_screenshots(self, candidate_path, reference_path):
			raise RuntimeError('vision model offline')

	orchestrator = ExecutionOrchestrator(ai_executor, script_executor, comparator=BrokenComparator(), options={'recordings_dir': tmp_path})

	report = await orchestrator.execute(make_spec(make_step('a'), success_screenshot=str(reference)))

	assert report.overall_success is True
	assert report.success_state_match is None
	assert 'Screenshot comparison failed: vision model offline' in report.suggestions


async def test_failure_suggestions_are_added(script_executor, quiet_options):
	ai_executor = FakeAIExecutor([AIFlowResult(success=False, error='Element not found for selector: #go')])
	orchestrator = ExecutionOrchestrator(ai_executor, script_executor, options=quiet_options)

	report = await orchestrator.execute(make_spec(make_step('a')))

	assert any('selectors' in suggestion for suggestion in report.suggestions)


async def test_statistics_store_receives_reports(script_executor, quiet_options):
	store = ExecutionStatisticsStore()
	ai_executor = FakeAIExecutor([True, False])
	orchestrator = ExecutionOrchestrator(ai_executor, script_executor, options=quiet_options, statistics_store=store)

	await orchestrator.execute(make_spec(make_step('a')))
	await orchestrator.execute(make_spec(make_step('b')))

	statistics = orchestrator.get_statistics()
	assert statistics.total_executions == 2
	assert statistics.success_rate == 50.0
	assert statistics.ai_usage_rate == 100.0


def test_options_accept_known_overrides_only():
	options = OrchestratorOptions().merged({'timeout': 5000})
	assert options.timeout == 5000
	assert options.enable_fallback is True

	with pytest.raises(ValueError):
		OrchestratorOptions().merged({'retry_everything': True})


@pytest.mark.parametrize(
	'similarity,status,match',
	[
		(95, 'success', True),
		(80.1, 'success', True),
		(80, 'partial', False),
		(60, 'partial', False),
		(59.9, 'mismatch', False),
		(0, 'mismatch', False),
	],
)
def test_comparison_thresholds(similarity, status, match):
	verdict = evaluate_comparison_thresholds(ScreenshotComparison(similarity=similarity, match=False))

	assert verdict.status == status
	assert verdict.match is match
