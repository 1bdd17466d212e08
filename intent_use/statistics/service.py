from typing import List

from pydantic import BaseModel

from intent_use.orchestrator.views import ExecutionReport


class ExecutionStatistics(BaseModel):
	total_executions: int = 0
	success_rate: float = 0  # % of runs with overall success
	fallback_rate: float = 0  # % of executed steps that needed the fallback path
	ai_usage_rate: float = 0  # % of executed steps that ran on the AI path


class _RunSummary(BaseModel):
	execution_id: str
	overall_success: bool
	step_count: int
	fallback_count: int
	ai_usage_count: int


class ExecutionStatisticsStore:
	"""Cross-run aggregates, owned by whoever creates the store.

	Keeps one summary row per recorded report rather than the reports themselves.
	"""

	def __init__(self) -> None:
		self._runs: List[_RunSummary] = []

	def record(self, report: ExecutionReport) -> None:
		self._runs.append(
			_RunSummary(
				execution_id=report.execution_id,
				overall_success=report.overall_success,
				step_count=len(report.steps),
				fallback_count=report.fallback_count,
				ai_usage_count=report.ai_usage_count,
			)
		)

	def clear(self) -> None:
		self._runs.clear()

	def summary(self) -> ExecutionStatistics:
		if not self._runs:
			return ExecutionStatistics()

		total_steps = sum(run.step_count for run in self._runs)
		successful_runs = sum(1 for run in self._runs if run.overall_success)

		def rate(value: int, total: int) -> float:
			return round(value / total * 100, 1) if total else 0

		return ExecutionStatistics(
			total_executions=len(self._runs),
			success_rate=rate(successful_runs, len(self._runs)),
			fallback_rate=rate(sum(run.fallback_count for run in self._runs), total_steps),
			ai_usage_rate=rate(sum(run.ai_usage_count for run in self._runs), total_steps),
		)
