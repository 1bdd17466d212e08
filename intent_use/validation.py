"""
Static validation of intent specs.

Works on raw mappings as well as ``IntentSpec`` instances so files that
would not load into the model still get a readable list of problems.
"""

from typing import Any, List, Mapping, Optional, Union
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from intent_use.schema.views import SUBSTITUTABLE_STEP_FIELDS, IntentSpec
from intent_use.variables import find_placeholders

VALID_PATHS = ('ai', 'snippet')
VALID_FALLBACKS = ('ai', 'snippet', 'none')


class SpecIssue(BaseModel):
	"""A single problem found in a spec."""

	severity: str = Field(..., description="Severity: 'error' or 'warning'")
	step_index: Optional[int] = Field(None, description='Index of the step with the issue (if applicable)')
	issue_type: str = Field(..., description="Type of issue: 'missing_field', 'invalid_url', 'undeclared_param', etc.")
	description: str = Field(..., description='Human-readable description of the issue')


class SpecValidationResult(BaseModel):
	"""Result of spec validation."""

	issues: List[SpecIssue] = Field(default_factory=list)

	@property
	def errors(self) -> List[str]:
		return [issue.description for issue in self.issues if issue.severity == 'error']

	@property
	def warnings(self) -> List[str]:
		return [issue.description for issue in self.issues if issue.severity == 'warning']

	@property
	def valid(self) -> bool:
		return not self.errors


def _is_valid_url(url: str) -> bool:
	parsed = urlparse(url)
	return bool(parsed.scheme and parsed.netloc)


def validate_intent_spec(spec: Union[IntentSpec, Mapping[str, Any]]) -> SpecValidationResult:
	data = spec.model_dump() if isinstance(spec, IntentSpec) else dict(spec)
	issues: List[SpecIssue] = []

	def error(issue_type: str, description: str, step_index: Optional[int] = None) -> None:
		issues.append(SpecIssue(severity='error', issue_type=issue_type, description=description, step_index=step_index))

	def warning(issue_type: str, description: str, step_index: Optional[int] = None) -> None:
		issues.append(SpecIssue(severity='warning', issue_type=issue_type, description=description, step_index=step_index))

	for field_name in ('name', 'description', 'url'):
		if not isinstance(data.get(field_name), str) or not data[field_name].strip():
			error('missing_field', f"Spec is missing required field '{field_name}'")

	url = data.get('url')
	if isinstance(url, str) and url.strip() and not _is_valid_url(url):
		error('invalid_url', f'Spec url is not a valid absolute URL: {url}')

	params = data.get('params') or []
	if not isinstance(params, list):
		error('invalid_params', "'params' must be a list of names")
		params = []
	declared = []
	for param in params:
		if not isinstance(param, str) or not param.strip():
			error('invalid_params', f'Parameter names must be non-empty strings, got {param!r}')
		elif param in declared:
			error('duplicate_param', f'Parameter {param!r} is declared more than once')
		else:
			declared.append(param)

	steps = data.get('steps') or []
	if not isinstance(steps, list) or not steps:
		error('missing_steps', 'Spec must contain at least one step')
		steps = []

	referenced: List[str] = []
	for index, step in enumerate(steps):
		label = f'Step {index + 1}'
		if not isinstance(step, Mapping):
			error('invalid_step', f'{label} must be a mapping', index)
			continue

		if not step.get('name'):
			error('missing_field', f"{label} is missing 'name'", index)
		else:
			label = f'{label} ({step["name"]})'

		prefer = step.get('prefer')
		fallback = step.get('fallback') or 'none'
		if prefer is not None and prefer not in VALID_PATHS:
			error('invalid_prefer', f"{label} has invalid prefer {prefer!r}, expected 'ai' or 'snippet'", index)
		if fallback not in VALID_FALLBACKS:
			error('invalid_fallback', f"{label} has invalid fallback {fallback!r}, expected 'ai', 'snippet' or 'none'", index)
		if prefer is not None and fallback == prefer:
			error('fallback_equals_prefer', f'{label} falls back to the same path it prefers ({prefer})', index)

		if not step.get('ai_instruction') and not step.get('snippet'):
			error('missing_instruction', f"{label} needs an 'ai_instruction' or a 'snippet'", index)
		for path in (prefer, fallback):
			if path == 'ai' and not step.get('ai_instruction'):
				error('missing_instruction', f"{label} uses the ai path but has no 'ai_instruction'", index)
			elif path == 'snippet' and not step.get('snippet'):
				error('missing_snippet', f"{label} uses the snippet path but has no 'snippet'", index)

		for field_name in SUBSTITUTABLE_STEP_FIELDS:
			value = step.get(field_name)
			for name in find_placeholders(value if isinstance(value, str) else None):
				if name not in referenced:
					referenced.append(name)
				if name not in declared:
					error('undeclared_param', f'{label} references undeclared parameter {{{{{name}}}}}', index)

	for param in declared:
		if param not in referenced:
			warning('unused_param', f'Parameter {param!r} is declared but never used')

	preferences = data.get('preferences') or {}
	if not isinstance(preferences, Mapping):
		error('invalid_preferences', "'preferences' must be a mapping of category to path")
	else:
		for category, path in preferences.items():
			if path not in VALID_PATHS:
				error('invalid_preference', f"Preference for {category!r} must be 'ai' or 'snippet', got {path!r}")

	return SpecValidationResult(issues=issues)


def format_validation_report(result: SpecValidationResult, title: str = 'INTENT SPEC VALIDATION') -> str:
	lines = ['=' * 60, title, '=' * 60]
	if not result.issues:
		lines.append('✅ No issues found!')
		return '\n'.join(lines)

	errors = [issue for issue in result.issues if issue.severity == 'error']
	warnings = [issue for issue in result.issues if issue.severity == 'warning']
	for heading, group in ((f'🔴 ERRORS ({len(errors)}):', errors), (f'⚠️  WARNINGS ({len(warnings)}):', warnings)):
		if not group:
			continue
		lines.append('')
		lines.append(heading)
		for i, issue in enumerate(group, 1):
			lines.append(f'  {i}. [{issue.issue_type}] {issue.description}')
	lines.append('=' * 60)
	return '\n'.join(lines)
