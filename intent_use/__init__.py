from intent_use.orchestrator.events import EventDispatcher
from intent_use.orchestrator.path_resolver import HeuristicStepClassifier, resolve_path
from intent_use.orchestrator.service import ExecutionOrchestrator, evaluate_comparison_thresholds
from intent_use.orchestrator.success_state import SuccessStateResolver
from intent_use.orchestrator.views import (
	ExecutionReport,
	OrchestratorOptions,
	OverrideStrategy,
	PathDecision,
	StepExecutionResult,
)
from intent_use.reporting.service import ExecutionReporter, to_csv, to_json, to_text
from intent_use.schema.views import IntentSpec, IntentStep
from intent_use.statistics.service import ExecutionStatisticsStore
from intent_use.validation import SpecValidationResult, validate_intent_spec
from intent_use.variables import substitute

__all__ = [
	'EventDispatcher',
	'ExecutionOrchestrator',
	'ExecutionReport',
	'ExecutionReporter',
	'ExecutionStatisticsStore',
	'HeuristicStepClassifier',
	'IntentSpec',
	'IntentStep',
	'OrchestratorOptions',
	'OverrideStrategy',
	'PathDecision',
	'SpecValidationResult',
	'StepExecutionResult',
	'SuccessStateResolver',
	'evaluate_comparison_thresholds',
	'resolve_path',
	'substitute',
	'to_csv',
	'to_json',
	'to_text',
	'validate_intent_spec',
]
