from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

from intent_use.variables import find_placeholders

ExecutionPath = Literal['ai', 'snippet']
FallbackPath = Literal['ai', 'snippet', 'none']

# Step fields that may carry {{NAME}} placeholders
SUBSTITUTABLE_STEP_FIELDS = ('ai_instruction', 'snippet', 'selector', 'value', 'target', 'description')


class IntentStep(BaseModel):
	"""One unit of work inside an intent specification.

	``snippet`` is opaque text: only a script executor interprets it.
	"""

	model_config = ConfigDict(frozen=True, extra='ignore')

	name: Optional[str] = None
	ai_instruction: Optional[str] = None
	snippet: Optional[str] = None
	prefer: Optional[ExecutionPath] = None
	fallback: FallbackPath = 'none'

	# Auxiliary fields consumed by the executors only
	selector: Optional[str] = None
	value: Optional[str] = None
	timeout: Optional[int] = None
	retries: Optional[int] = None

	# Legacy recording fields
	action: Optional[str] = None
	target: Optional[str] = None
	description: Optional[str] = None

	@model_validator(mode='after')
	def _check_fallback_differs(self) -> IntentStep:
		if self.prefer is not None and self.fallback != 'none' and self.fallback == self.prefer:
			raise ValueError(f"Step {self.display_name!r}: fallback '{self.fallback}' must differ from prefer '{self.prefer}'")
		return self

	@property
	def display_name(self) -> str:
		"""Name used in reports, derived from legacy fields when ``name`` is missing."""
		if self.name:
			return self.name
		if self.description:
			return self.description
		if self.action:
			return f'{self.action} on {self.selector or self.target or "page"}'
		return 'Unnamed step'


class IntentSpec(BaseModel):
	"""Immutable execution plan produced from a recording."""

	model_config = ConfigDict(frozen=True, extra='ignore')

	name: str
	description: str = ''
	url: str = ''
	params: List[str] = Field(default_factory=list)
	steps: List[IntentStep] = Field(default_factory=list)
	preferences: Dict[str, ExecutionPath] = Field(default_factory=dict)
	success_screenshot: Optional[str] = None
	recording_spec: Optional[str] = None

	@classmethod
	def load_from_file(cls, file_path: str | Path) -> IntentSpec:
		"""Load an intent spec from a YAML or JSON file."""
		with open(file_path, 'r', encoding='utf-8') as f:
			data = yaml.safe_load(f)
		if not isinstance(data, dict):
			raise ValueError(f'Intent spec file {file_path} does not contain a mapping')
		return cls(**data)

	def referenced_params(self) -> List[str]:
		"""Return every ``{{NAME}}`` referenced by a step, in first-seen order."""
		seen: List[str] = []
		for step in self.steps:
			for field_name in SUBSTITUTABLE_STEP_FIELDS:
				for name in find_placeholders(getattr(step, field_name)):
					if name not in seen:
						seen.append(name)
		return seen
