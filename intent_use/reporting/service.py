"""Render execution reports as text, JSON and CSV.

Every renderer is a pure function of the report: nothing here reads the clock
or touches the filesystem, so rendering the same report twice gives the same
output. :func:`save_report` is the only helper that writes files.
"""

from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Any, Dict, Iterable, List

import aiofiles
import pandas as pd

from intent_use.orchestrator.views import ExecutionReport

logger = logging.getLogger(__name__)

CSV_COLUMNS = ['ExecutionID', 'StepIndex', 'StepName', 'PathUsed', 'FallbackOccurred', 'Success', 'Duration', 'Error']
REPORT_FORMATS = ('text', 'json', 'csv')
_FORMAT_EXTENSIONS = {'text': 'txt', 'json': 'json', 'csv': 'csv'}

HIGH_FALLBACK_RATIO = 0.3
LONG_EXECUTION_MS = 60000

_RULE = '=' * 46


def _round(value: float) -> int:
	"""Round half up, matching the percentages shown in the text report."""
	return int(math.floor(value + 0.5))


def _percentage(value: int, total: int) -> int:
	return _round(value / total * 100) if total > 0 else 0


def format_duration(ms: float) -> str:
	if ms < 1000:
		return f'{int(ms)}ms'
	if ms < 60000:
		return f'{ms / 1000:.1f}s'
	return f'{ms / 60000:.1f}m'


# --- Derived metrics ---


def compute_summary(report: ExecutionReport) -> Dict[str, int]:
	step_count = len(report.steps)
	successful = report.successful_steps
	return {
		'successfulSteps': successful,
		'successRate': _percentage(successful, step_count),
		'fallbackRate': _percentage(report.fallback_count, step_count),
		'aiUsageRate': _percentage(report.ai_usage_count, step_count),
	}


def performance_score(report: ExecutionReport) -> int:
	step_count = len(report.steps)
	if step_count == 0:
		return 0
	success_rate = report.successful_steps / step_count * 100
	fallback_penalty = report.fallback_count / step_count * 20
	duration_penalty = min(report.total_duration / 60000 * 10, 20)
	return max(0, _round(success_rate - fallback_penalty - duration_penalty))


def reliability_score(report: ExecutionReport) -> int:
	step_count = len(report.steps)
	if step_count == 0:
		return 0
	success_rate = report.successful_steps / step_count * 100
	consistency_bonus = 10 if report.fallback_count == 0 else 0
	return min(100, _round(success_rate + consistency_bonus))


def adaptability_score(report: ExecutionReport) -> int:
	step_count = len(report.steps)
	if step_count == 0:
		return 0
	ai_usage_rate = report.ai_usage_count / step_count * 100
	fallback_bonus = 0.0
	if report.fallback_count > 0:
		successful_fallbacks = sum(1 for step in report.steps if step.fallback_occurred and step.success)
		fallback_bonus = successful_fallbacks / report.fallback_count * 20
	return min(100, _round(ai_usage_rate + fallback_bonus))


def compute_analysis(report: ExecutionReport) -> Dict[str, int]:
	return {
		'performanceScore': performance_score(report),
		'reliabilityScore': reliability_score(report),
		'adaptabilityScore': adaptability_score(report),
	}


def recommendations(report: ExecutionReport) -> List[str]:
	step_count = len(report.steps)
	items: List[str] = []

	if report.fallback_count > step_count * HIGH_FALLBACK_RATIO:
		items.append('High fallback rate detected - consider reviewing step definitions for AI optimization')
	if report.total_duration > LONG_EXECUTION_MS:
		items.append('Long execution time - consider adding more specific selectors or optimizing wait conditions')
	if not report.overall_success:
		items.append('Execution failed - review error messages and consider adding retry logic')
	if report.success_state_match is False:
		items.append('Update success screenshot or review success criteria')
	if report.ai_usage_count == 0:
		items.append('Consider enabling AI execution for better adaptability')
	if report.snippet_usage_count == 0 and report.fallback_count > 0:
		items.append('Consider implementing snippet-based fallbacks for critical steps')

	return items


# --- Text ---


def _header(report: ExecutionReport) -> str:
	status = '✓ PASSED' if report.overall_success else '✗ FAILED'
	return '\n'.join(
		[
			_RULE,
			'    INTENT SPEC EXECUTION REPORT',
			_RULE,
			f'Execution ID: {report.execution_id}',
			f'Duration: {format_duration(report.total_duration)}',
			f'Overall Success: {status}',
			_RULE,
		]
	)


def _summary(report: ExecutionReport) -> str:
	step_count = len(report.steps)
	summary = compute_summary(report)
	return '\n'.join(
		[
			'EXECUTION SUMMARY',
			'=================',
			f'Total Steps: {step_count}',
			f'Successful Steps: {summary["successfulSteps"]}',
			f'Success Rate: {summary["successRate"]}%',
			'',
			'EXECUTION PATHS',
			'===============',
			f'AI Used: {report.ai_usage_count} times ({_percentage(report.ai_usage_count, step_count)}%)',
			f'Snippets Used: {report.snippet_usage_count} times ({_percentage(report.snippet_usage_count, step_count)}%)',
			f'Fallbacks Occurred: {report.fallback_count} times ({_percentage(report.fallback_count, step_count)}%)',
		]
	)


def _step_details(report: ExecutionReport) -> str:
	lines = ['STEP DETAILS', '============']
	for index, step in enumerate(report.steps, 1):
		status = '✓' if step.success else '✗'
		fallback_indicator = ' (FALLBACK)' if step.fallback_occurred else ''
		lines.append(f'{index}. {step.name}')
		lines.append(f'   Status: {status} {step.path_used.upper()}{fallback_indicator}')
		lines.append(f'   Duration: {format_duration(step.duration)}')
		if step.error:
			lines.append(f'   Error: {step.error}')
		if step.screenshot:
			lines.append(f'   Screenshot: {step.screenshot}')
	return '\n'.join(lines)


def _usage_analysis(report: ExecutionReport) -> str:
	step_count = len(report.steps)
	lines = ['USAGE ANALYSIS', '==============']

	if step_count == 0:
		lines.append('No steps were executed.')
		return '\n'.join(lines)

	if report.fallback_count > 0:
		fallback_rate = _percentage(report.fallback_count, step_count)
		title = 'High Fallback Usage Detected' if report.fallback_count > step_count * HIGH_FALLBACK_RATIO else 'Fallback Usage Detected'
		lines += [
			f'⚠️  {title} ({fallback_rate}%)',
			'',
			'   Analysis:',
			f'   - {report.fallback_count} step(s) required their fallback path',
			'   - The preferred path may need improvement for these actions',
			'   - Consider reviewing the failing steps for pattern optimization',
			'',
			'   Fallback Steps:',
		]
		lines += [
			f'   - Step {index}: {step.name} (ran on {step.path_used})'
			for index, step in enumerate(report.steps, 1)
			if step.fallback_occurred
		]
	elif report.ai_usage_count == step_count:
		lines += [
			'✓ Optimal AI Performance',
			'',
			'   Analysis:',
			'   - All steps executed using AI reasoning',
			'   - No fallbacks required',
			'   - Intent Spec is well-optimized for AI execution',
		]
	elif report.snippet_usage_count == step_count:
		lines += [
			'Snippet-Only Execution',
			'',
			'   Analysis:',
			'   - All steps executed using the snippet-based approach',
			'   - This may indicate conservative execution or AI availability issues',
			'   - Consider enabling AI execution for improved adaptability',
		]
	else:
		lines += [
			'Mixed Execution Approach',
			'',
			'   Analysis:',
			f'   - Combination of AI ({report.ai_usage_count}) and snippet ({report.snippet_usage_count}) execution',
			'   - Balanced approach providing both intelligence and reliability',
			'   - Review failed AI steps for potential improvements',
		]
	return '\n'.join(lines)


def _success_analysis(report: ExecutionReport) -> str:
	lines = ['SUCCESS STATE ANALYSIS', '======================']

	if report.success_state_match is None:
		lines += [
			'No Success State Comparison Available',
			'',
			'   Consider adding a success screenshot to the Intent Spec for automated',
			'   verification of execution results.',
		]
	elif report.success_state_match:
		lines += [
			f'✓ Success State Verified ({report.comparison_similarity}% similarity)',
			'',
			'   The final execution state matches the expected success screenshot.',
			'   The Intent Spec appears to be working correctly.',
		]
	else:
		lines += [
			f'⚠️  Success State Mismatch Detected ({report.comparison_status}, {report.comparison_similarity}% similarity)',
			'',
			'   The final execution state does not match the expected success screenshot.',
			'   This may indicate:',
			"   - Changes in the target application's UI",
			'   - Need for Intent Spec updates',
			'   - Timing or synchronization issues',
		]

	if report.screenshots:
		lines += ['', f'   Screenshots Captured: {len(report.screenshots)}']
		lines += [f'   - {screenshot}' for screenshot in report.screenshots]
	return '\n'.join(lines)


def _recommendations(report: ExecutionReport) -> str:
	items = recommendations(report)
	if report.suggestions:
		items.append('Analysis Suggestions:')
		items += [f'   - {suggestion}' for suggestion in report.suggestions]
	if not items:
		items.append('Execution completed successfully - no specific recommendations at this time')

	return '\n'.join(
		[
			'RECOMMENDATIONS',
			'===============',
			*items,
			'',
			'For more details, review the execution logs and screenshots.',
			'Consider updating the Intent Spec based on these findings.',
		]
	)


def to_text(report: ExecutionReport) -> str:
	sections = [
		_header(report),
		_summary(report),
		_step_details(report),
		_usage_analysis(report),
		_success_analysis(report),
		_recommendations(report),
	]
	return '\n\n'.join(sections) + '\n'


# --- JSON / CSV ---


def to_json(report: ExecutionReport) -> str:
	payload: Dict[str, Any] = report.to_contract_dict()
	payload['summary'] = compute_summary(report)
	payload['analysis'] = compute_analysis(report)
	return json.dumps(payload, indent=2, ensure_ascii=False)


def to_csv(report: ExecutionReport) -> str:
	rows = [
		[
			report.execution_id,
			index,
			step.name,
			step.path_used,
			str(step.fallback_occurred).lower(),
			str(step.success).lower(),
			step.duration,
			step.error or '',
		]
		for index, step in enumerate(report.steps)
	]
	df = pd.DataFrame(rows, columns=CSV_COLUMNS)
	return df.to_csv(index=False, lineterminator='\n')


_RENDERERS = {'text': to_text, 'json': to_json, 'csv': to_csv}


def render(report: ExecutionReport, fmt: str) -> str:
	if fmt not in _RENDERERS:
		raise ValueError(f'Unsupported report format: {fmt!r} (expected one of {", ".join(REPORT_FORMATS)})')
	return _RENDERERS[fmt](report)


async def save_report(report: ExecutionReport, directory: str | Path, formats: Iterable[str] = REPORT_FORMATS) -> List[Path]:
	"""Write the requested renderings to *directory* as ``<execution_id>.<ext>``."""
	output_dir = Path(directory)
	output_dir.mkdir(parents=True, exist_ok=True)

	written: List[Path] = []
	for fmt in formats:
		content = render(report, fmt)
		path = output_dir / f'{report.execution_id}.{_FORMAT_EXTENSIONS[fmt]}'
		async with aiofiles.open(path, 'w', encoding='utf-8') as f:
			await f.write(content)
		logger.info(f'Saved {fmt} report to {path}')
		written.append(path)
	return written


class ExecutionReporter:
	"""Object facade over the module-level renderers."""

	def generate_report(self, report: ExecutionReport) -> str:
		return to_text(report)

	def generate_json_report(self, report: ExecutionReport) -> str:
		return to_json(report)

	def generate_csv_report(self, report: ExecutionReport) -> str:
		return to_csv(report)

	async def save(self, report: ExecutionReport, directory: str | Path, formats: Iterable[str] = REPORT_FORMATS) -> List[Path]:
		return await save_report(report, directory, formats)
