from typing import Iterable, List

from intent_use.orchestrator.views import StepExecutionResult

ERROR_CATEGORIES = ('timeout', 'selector', 'navigation', 'network', 'validation')

_CATEGORY_KEYWORDS = {
	'timeout': ('timeout', 'timed out'),
	'selector': ('selector', 'element not found', 'no element matches', 'strict mode violation', 'not visible'),
	'navigation': ('navigation', 'net::err_aborted', 'page.goto', 'frame was detached'),
	'network': ('net::', 'network', 'fetch', 'connection refused', 'econnrefused'),
	'validation': ('invalid', 'validation', 'required field'),
}

_CATEGORY_SUGGESTIONS = {
	'timeout': 'Timeouts occurred - consider raising the step timeout or adding explicit wait steps',
	'selector': 'Element lookups failed - review selectors or prefer the AI path for dynamic elements',
	'navigation': 'Navigation failed - verify the URLs and that earlier steps leave the expected page',
	'network': 'Network errors occurred - check connectivity and that the target site is reachable',
	'validation': 'The page rejected input - check variable values against the form requirements',
	'unknown': 'Some steps failed for unclassified reasons - review the step errors and screenshots',
}


def classify_error(message: str) -> str:
	lowered = message.lower()
	for category in ERROR_CATEGORIES:
		if any(keyword in lowered for keyword in _CATEGORY_KEYWORDS[category]):
			return category
	return 'unknown'


def suggestions_for_failures(steps: Iterable[StepExecutionResult]) -> List[str]:
	"""One suggestion per distinct error category among failed steps, in first-seen order."""
	categories: List[str] = []
	for step in steps:
		if step.success or not step.error:
			continue
		category = classify_error(step.error)
		if category not in categories:
			categories.append(category)
	return [_CATEGORY_SUGGESTIONS[category] for category in categories]
