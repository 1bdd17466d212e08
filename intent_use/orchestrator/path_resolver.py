"""Choose the execution path (and fallback) for a single intent step."""

from __future__ import annotations

from typing import List, Mapping, Optional, Protocol

from intent_use.orchestrator.views import OverrideStrategy, PathDecision
from intent_use.schema.views import ExecutionPath, IntentStep

SIMPLE_STEPS = 'simple_steps'
DYNAMIC_ELEMENTS = 'dynamic_elements'
FORM_INTERACTIONS = 'form_interactions'
DROPDOWN_INTERACTIONS = 'dropdown_interactions'
GENERAL_INTERACTIONS = 'general_interactions'

SIMPLE_ACTIONS = {'navigate', 'wait', 'screenshot'}

# Keyword hints used when a step carries no explicit action
_INSTRUCTION_ACTION_HINTS = (
	('navigate', ('navigate', 'go to', 'open the url', 'visit')),
	('wait', ('wait',)),
	('select', ('select', 'choose')),
	('fill', ('fill', 'type', 'enter ')),
	('click', ('click', 'press', 'tap')),
)


class StepClassifier(Protocol):
	def categories(self, step: IntentStep) -> List[str]:
		"""Preference categories for *step*, most specific first."""
		...


def infer_action(step: IntentStep) -> str:
	if step.action:
		return step.action.lower()
	instruction = (step.ai_instruction or step.description or '').lower()
	for action, hints in _INSTRUCTION_ACTION_HINTS:
		if any(hint in instruction for hint in hints):
			return action
	return ''


class HeuristicStepClassifier:
	"""Keyword and selector-shape heuristics for step categories."""

	def is_simple(self, step: IntentStep) -> bool:
		return infer_action(step) in SIMPLE_ACTIONS

	def is_dynamic(self, step: IntentStep) -> bool:
		mentions_text = 'text' in (step.ai_instruction or '').lower()
		selector = step.selector or ''
		has_stable_selector = '#' in selector or '[data-' in selector
		return mentions_text or not has_stable_selector

	def categorize(self, step: IntentStep) -> str:
		action = infer_action(step)
		if action in ('navigate', 'wait'):
			return SIMPLE_STEPS
		if action == 'click':
			return DYNAMIC_ELEMENTS if self.is_dynamic(step) else SIMPLE_STEPS
		if action in ('fill', 'type'):
			return FORM_INTERACTIONS
		if action == 'select':
			return DROPDOWN_INTERACTIONS
		return GENERAL_INTERACTIONS

	def categories(self, step: IntentStep) -> List[str]:
		found = [self.categorize(step)]
		if self.is_simple(step) and SIMPLE_STEPS not in found:
			found.append(SIMPLE_STEPS)
		if self.is_dynamic(step) and DYNAMIC_ELEMENTS not in found:
			found.append(DYNAMIC_ELEMENTS)
		return found


DEFAULT_CLASSIFIER = HeuristicStepClassifier()


def resolve_path(
	step: IntentStep,
	preferences: Optional[Mapping[str, ExecutionPath]] = None,
	override: Optional[OverrideStrategy] = None,
	classifier: Optional[StepClassifier] = None,
) -> PathDecision:
	"""Decide the primary path and the fallback target for *step*.

	First match wins: caller override, the step's own ``prefer``, the spec's
	category preferences, then ``ai`` with no fallback. Pure; never raises.
	"""
	if override is not None and override.override_preferences and override.preferred_path:
		fallback = override.fallback_policy or 'none'
		if fallback == override.preferred_path:
			fallback = 'none'
		return PathDecision(primary=override.preferred_path, fallback=fallback)

	if step.prefer:
		return PathDecision(primary=step.prefer, fallback=step.fallback)

	if preferences:
		for category in (classifier or DEFAULT_CLASSIFIER).categories(step):
			if category in preferences:
				return PathDecision(primary=preferences[category], fallback='none')

	return PathDecision(primary='ai', fallback='none')
