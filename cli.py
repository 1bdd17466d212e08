import asyncio
import json
import os
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd
import typer
import yaml
from browser_use.llm import ChatBrowserUse
from browser_use.llm.base import BaseChatModel

from intent_use.comparison.service import ScreenshotComparator
from intent_use.executors.agent_executor import BrowserUseAIExecutor
from intent_use.executors.script_executor import BrowserScriptExecutor
from intent_use.orchestrator.events import STEP_COMPLETED
from intent_use.orchestrator.path_resolver import DEFAULT_CLASSIFIER, resolve_path
from intent_use.orchestrator.service import ExecutionOrchestrator
from intent_use.orchestrator.views import ExecutionReport, OrchestratorOptions, OverrideStrategy
from intent_use.reporting.service import REPORT_FORMATS, render, save_report
from intent_use.schema.views import IntentSpec
from intent_use.validation import format_validation_report, validate_intent_spec

app = typer.Typer(
	name='intent-cli',
	help='Run intent specs over AI and snippet execution paths.',
	add_completion=False,
	no_args_is_help=True,
)


def _create_llm() -> Optional[BaseChatModel]:
	try:
		return ChatBrowserUse(model='bu-latest')
	except Exception as e:
		typer.secho(f'Error initializing LLM: {e}. Would you like to set your BROWSER_USE_API_KEY?', fg=typer.colors.RED)
		set_browser_use_api_key = input('Set BROWSER_USE_API_KEY? (y/n): ')
		if set_browser_use_api_key.lower() == 'y':
			os.environ['BROWSER_USE_API_KEY'] = input('Enter your BROWSER_USE_API_KEY: ')
			return ChatBrowserUse(model='bu-latest')
	return None


def _load_spec(spec_path: Path) -> IntentSpec:
	try:
		return IntentSpec.load_from_file(spec_path)
	except Exception as e:
		typer.secho(f'Error loading intent spec: {e}', fg=typer.colors.RED)
		raise typer.Exit(code=1)


def parse_variables(pairs: List[str]) -> Dict[str, str]:
	"""Turn ``NAME=VALUE`` pairs into a variables mapping."""
	variables = {}
	for pair in pairs:
		name, sep, value = pair.partition('=')
		if not sep or not name.strip():
			raise typer.BadParameter(f'Expected NAME=VALUE, got {pair!r}', param_hint='--var')
		variables[name.strip()] = value
	return variables


def _check_formats(formats: List[str]) -> List[str]:
	unknown = [fmt for fmt in formats if fmt not in REPORT_FORMATS]
	if unknown:
		raise typer.BadParameter(f'Unknown format(s): {", ".join(unknown)}. Use one of: {", ".join(REPORT_FORMATS)}', param_hint='--format')
	return formats


def _build_orchestrator(llm: Optional[BaseChatModel], options: OrchestratorOptions, screenshot_dir: Path) -> ExecutionOrchestrator:
	script_executor = BrowserScriptExecutor(screenshot_dir=screenshot_dir)
	# The script executor owns the shared browser and closes it on cleanup
	ai_executor = BrowserUseAIExecutor(llm, browser=script_executor.browser, screenshot_dir=screenshot_dir)
	return ExecutionOrchestrator(
		ai_executor,
		script_executor,
		comparator=ScreenshotComparator(llm=llm),
		options=options,
	)


def _print_report_summary(report: ExecutionReport) -> None:
	status = typer.style('SUCCESS', fg=typer.colors.GREEN, bold=True) if report.overall_success else typer.style('FAILED', fg=typer.colors.RED, bold=True)
	typer.echo(f'Execution {report.execution_id}: {status}')
	typer.echo(f'  Steps: {report.successful_steps}/{len(report.steps)} successful')
	typer.echo(f'  AI: {report.ai_usage_count}, Snippet: {report.snippet_usage_count}, Fallbacks: {report.fallback_count}')
	if report.comparison_status:
		typer.echo(f'  Success state: {report.comparison_status} ({report.comparison_similarity}%)')
	for suggestion in report.suggestions:
		typer.secho(f'  • {suggestion}', fg=typer.colors.CYAN)


@app.command(name='run-intent', help='Runs an intent spec with AI/snippet fallback and writes execution reports.')
def run_intent_command(
	spec_path: Path = typer.Argument(
		...,
		exists=True,
		file_okay=True,
		dir_okay=False,
		readable=True,
		help='Path to the intent spec (.yaml or .json).',
		show_default=False,
	),
	var: List[str] = typer.Option([], '--var', help='Variable binding as NAME=VALUE. Repeatable.'),
	output_dir: Path = typer.Option(Path('./reports'), '--output-dir', help='Directory for the execution reports.'),
	formats: List[str] = typer.Option(['text', 'json'], '--format', help='Report format (text, json or csv). Repeatable.'),
	no_fallback: bool = typer.Option(False, '--no-fallback', help='Never try the fallback path.'),
	no_comparison: bool = typer.Option(False, '--no-comparison', help='Skip success-state screenshot comparison.'),
	no_screenshots: bool = typer.Option(False, '--no-screenshots', help='Do not capture screenshots.'),
	timeout: int = typer.Option(30000, '--timeout', min=1, help='Per-step executor timeout in milliseconds.'),
	stop_on_failure: bool = typer.Option(False, '--stop-on-failure', help='Skip remaining steps after a step fails.'),
	prefer: Optional[str] = typer.Option(None, '--prefer', help="Force every step onto 'ai' or 'snippet'."),
):
	"""
	Loads an intent spec, executes every step and saves the report in the requested formats.
	"""
	variables = parse_variables(var)
	_check_formats(formats)
	if prefer is not None and prefer not in ('ai', 'snippet'):
		raise typer.BadParameter("Must be 'ai' or 'snippet'", param_hint='--prefer')

	spec = _load_spec(spec_path)
	missing = [name for name in spec.params if name not in variables]
	if missing:
		typer.secho(f'Warning: no value given for: {", ".join(missing)}', fg=typer.colors.YELLOW)

	options = OrchestratorOptions(
		enable_fallback=not no_fallback,
		screenshot_comparison=not no_comparison,
		save_screenshots=not no_screenshots,
		timeout=timeout,
		stop_on_failure=stop_on_failure,
	)
	override = None
	if prefer:
		fallback = 'none' if no_fallback else ('snippet' if prefer == 'ai' else 'ai')
		override = OverrideStrategy(preferred_path=prefer, override_preferences=True, fallback_policy=fallback)

	llm = _create_llm()
	if llm is None:
		typer.secho('Warning: no LLM available, AI steps will fail.', fg=typer.colors.YELLOW)

	async def _run_intent() -> ExecutionReport:
		typer.echo(typer.style(f'Running intent spec: {typer.style(spec.name, fg=typer.colors.MAGENTA)}', bold=True))
		typer.echo()
		orchestrator = _build_orchestrator(llm, options, output_dir / 'screenshots')
		orchestrator.on(STEP_COMPLETED, lambda result: typer.echo(f'  {"✓" if result.success else "✗"} {result.name} [{result.path_used}]'))
		report = await orchestrator.execute(spec, variables, override)
		written = await save_report(report, output_dir, formats)
		typer.echo()
		_print_report_summary(report)
		for path in written:
			typer.echo(f'  Report: {typer.style(str(path), fg=typer.colors.CYAN)}')
		return report

	report = asyncio.run(_run_intent())
	if not report.overall_success:
		raise typer.Exit(code=1)


@app.command(name='run-intent-csv', help='Runs an intent spec once per CSV row, using the columns as variables.')
def run_intent_csv_command(
	spec_path: Path = typer.Argument(..., exists=True, file_okay=True, dir_okay=False, readable=True, help='Path to the intent spec.'),
	csv_path: Path = typer.Argument(..., exists=True, file_okay=True, dir_okay=False, readable=True, help='CSV file with one row per execution.'),
	output_file: Optional[Path] = typer.Option(None, '--output-file', help='Write the per-row results to this CSV file.'),
	output_dir: Path = typer.Option(Path('./reports'), '--output-dir', help='Directory for the execution reports.'),
	stop_on_failure: bool = typer.Option(False, '--stop-on-failure', help='Skip remaining steps of a row after a step fails.'),
):
	"""
	Each CSV column header names a spec parameter; empty cells are left unbound.
	"""
	spec = _load_spec(spec_path)

	try:
		df = pd.read_csv(csv_path, dtype=str)
	except Exception as e:
		typer.secho(f'Error loading CSV file: {e}', fg=typer.colors.RED)
		raise typer.Exit(code=1)
	if df.empty:
		typer.secho('Error: CSV file is empty.', fg=typer.colors.RED)
		raise typer.Exit(code=1)

	missing_columns = [name for name in spec.params if name not in df.columns]
	if missing_columns:
		typer.secho(f'Warning: CSV has no column for: {", ".join(missing_columns)}', fg=typer.colors.YELLOW)

	typer.secho(f'Loaded CSV with {len(df)} rows and {len(df.columns)} columns.', fg=typer.colors.GREEN)
	llm = _create_llm()
	options = OrchestratorOptions(stop_on_failure=stop_on_failure)

	async def _run_intent_csv() -> List[dict]:
		results = []
		for row_number, (_, row) in enumerate(df.iterrows(), 1):
			variables = {column: value for column, value in row.items() if not pd.isna(value)}
			typer.echo(typer.style(f'\nRow {row_number}/{len(df)}', bold=True))
			orchestrator = _build_orchestrator(llm, options, output_dir / 'screenshots')
			report = await orchestrator.execute(spec, variables)
			await save_report(report, output_dir, ['json'])
			_print_report_summary(report)

			failed = [step for step in report.steps if not step.success]
			results.append(
				{
					'row_number': row_number,
					'execution_id': report.execution_id,
					'status': 'success' if report.overall_success else 'failed',
					'steps': len(report.steps),
					'fallbacks': report.fallback_count,
					'duration': report.total_duration,
					'error': failed[0].error if failed else '',
					**{column: row[column] for column in df.columns},
				}
			)
		return results

	results = asyncio.run(_run_intent_csv())
	results_df = pd.DataFrame(results)
	succeeded = int((results_df['status'] == 'success').sum())

	typer.echo('\n' + '=' * 40)
	typer.secho('SUMMARY', bold=True)
	typer.echo('=' * 40)
	typer.echo(results_df[['row_number', 'status', 'steps', 'fallbacks', 'duration']].to_string(index=False))
	typer.echo(f'\n{succeeded}/{len(results_df)} executions succeeded')

	if output_file:
		try:
			results_df.to_csv(output_file, index=False)
			typer.secho(f'\nResults saved to: {output_file}', fg=typer.colors.GREEN, bold=True)
		except Exception as e:
			typer.secho(f'Error saving results: {e}', fg=typer.colors.RED)

	if succeeded < len(results_df):
		raise typer.Exit(code=1)


@app.command(name='validate-intent', help='Checks an intent spec for structural problems.')
def validate_intent_command(
	spec_path: Path = typer.Argument(..., exists=True, file_okay=True, dir_okay=False, readable=True, help='Path to the intent spec.'),
):
	try:
		with open(spec_path, 'r', encoding='utf-8') as f:
			data = yaml.safe_load(f)
	except Exception as e:
		typer.secho(f'Error reading intent spec: {e}', fg=typer.colors.RED)
		raise typer.Exit(code=1)
	if not isinstance(data, dict):
		typer.secho('Error: intent spec must be a mapping.', fg=typer.colors.RED)
		raise typer.Exit(code=1)

	result = validate_intent_spec(data)
	typer.echo(format_validation_report(result))
	if not result.valid:
		raise typer.Exit(code=1)


@app.command(name='render-report', help='Re-renders a saved JSON execution report.')
def render_report_command(
	report_path: Path = typer.Argument(..., exists=True, file_okay=True, dir_okay=False, readable=True, help='Path to a JSON report.'),
	fmt: str = typer.Option('text', '--format', help='Output format: text, json or csv.'),
):
	_check_formats([fmt])
	try:
		data = json.loads(report_path.read_text(encoding='utf-8'))
		report = ExecutionReport.model_validate(data)
	except Exception as e:
		typer.secho(f'Error loading report: {e}', fg=typer.colors.RED)
		raise typer.Exit(code=1)
	typer.echo(render(report, fmt))


@app.command(name='intent-info', help='Shows the parameters, steps and path decisions of an intent spec.')
def intent_info_command(
	spec_path: Path = typer.Argument(..., exists=True, file_okay=True, dir_okay=False, readable=True, help='Path to the intent spec.'),
):
	spec = _load_spec(spec_path)

	typer.echo()
	typer.echo(typer.style(f'Intent: {spec.name}', bold=True))
	if spec.description:
		typer.echo(f'  Description: {spec.description}')
	if spec.url:
		typer.echo(f'  URL: {spec.url}')
	typer.echo()

	if spec.params:
		typer.echo(typer.style('Parameters:', bold=True))
		for name in spec.params:
			typer.echo(f'  • {typer.style(name, fg=typer.colors.CYAN)}')
		typer.echo()

	if spec.preferences:
		typer.echo(typer.style('Preferences:', bold=True))
		for category, path in spec.preferences.items():
			typer.echo(f'  • {category}: {path}')
		typer.echo()

	typer.echo(typer.style('Steps:', bold=True))
	for i, step in enumerate(spec.steps, 1):
		decision = resolve_path(step, spec.preferences)
		category = DEFAULT_CLASSIFIER.categorize(step)
		typer.echo(f'  {i}. {step.display_name} [{category}] -> {decision.primary} (fallback: {decision.fallback})')
	typer.echo()


if __name__ == '__main__':
	app()
