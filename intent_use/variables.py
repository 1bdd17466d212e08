"""Placeholder substitution for intent steps.

Placeholders are written as ``{{NAME}}``; surrounding whitespace inside the
braces is ignored. Unknown names are left in place so a broken binding stays
visible downstream instead of turning into an empty string.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, List, Mapping, Optional

if TYPE_CHECKING:
	from intent_use.schema.views import IntentStep

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r'\{\{([^{}]+)\}\}')


def substitute(text: Optional[str], variables: Mapping[str, str]) -> Optional[str]:
	"""Replace ``{{NAME}}`` markers in *text* with values from *variables*."""
	if not text or '{{' not in text:
		return text

	def _replace(match: re.Match) -> str:
		name = match.group(1).strip()
		if name in variables:
			return str(variables[name])
		logger.warning(f'Variable {name} not found in context, leaving placeholder intact')
		return match.group(0)

	return PLACEHOLDER_PATTERN.sub(_replace, text)


def find_placeholders(text: Optional[str]) -> List[str]:
	"""Return the placeholder names used in *text* (trimmed, in order, with repeats)."""
	if not text:
		return []
	return [match.group(1).strip() for match in PLACEHOLDER_PATTERN.finditer(text)]


def substitute_step(step: IntentStep, variables: Mapping[str, str]) -> IntentStep:
	"""Return a copy of *step* with placeholders resolved in every text field.

	The original step is never mutated.
	"""
	from intent_use.schema.views import SUBSTITUTABLE_STEP_FIELDS

	update = {}
	for field_name in SUBSTITUTABLE_STEP_FIELDS:
		original = getattr(step, field_name)
		resolved = substitute(original, variables)
		if resolved != original:
			update[field_name] = resolved

	if not update:
		return step
	return step.model_copy(update=update)
