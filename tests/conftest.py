from typing import Dict, List, Optional

import pytest

from intent_use.orchestrator.views import AIFlowResult, ScreenshotComparison, ScriptActionResult
from intent_use.schema.views import IntentSpec, IntentStep


class FakeAIExecutor:
	"""Replays scripted outcomes; an Exception instance in ``outcomes`` is raised."""

	def __init__(self, outcomes: Optional[List] = None, default: bool = True):
		self.outcomes = list(outcomes or [])
		self.default = default
		self.calls: List[IntentSpec] = []
		self.variables: List[Dict[str, str]] = []
		self.stopped = 0

	async def execute_flow(self, mini_spec, variables, options):
		self.calls.append(mini_spec)
		self.variables.append(dict(variables))
		outcome = self.outcomes.pop(0) if self.outcomes else self.default
		if isinstance(outcome, Exception):
			raise outcome
		if isinstance(outcome, AIFlowResult):
			return outcome
		return AIFlowResult(success=bool(outcome), error=None if outcome else 'AI step failed')

	async def stop(self):
		self.stopped += 1


class FakeScriptExecutor:
	def __init__(self, outcomes: Optional[List] = None, default: bool = True, screenshot: Optional[str] = 'final.png'):
		self.outcomes = list(outcomes or [])
		self.default = default
		self.screenshot = screenshot
		self.steps: List[IntentStep] = []
		self.screenshot_labels: List[str] = []
		self.cleanups = 0

	async def execute_action(self, step):
		self.steps.append(step)
		outcome = self.outcomes.pop(0) if self.outcomes else self.default
		if isinstance(outcome, Exception):
			raise outcome
		if isinstance(outcome, ScriptActionResult):
			return outcome
		return ScriptActionResult(success=bool(outcome), error=None if outcome else 'Snippet step failed')

	async def take_screenshot(self, label):
		self.screenshot_labels.append(label)
		if self.screenshot is None:
			raise RuntimeError('no page')
		return self.screenshot

	async def cleanup(self):
		self.cleanups += 1


class FakeComparator:
	def __init__(self, comparison: ScreenshotComparison):
		self.comparison = comparison
		self.calls = []

	async def compare_screenshots(self, candidate_path, reference_path):
		self.calls.append((candidate_path, reference_path))
		return self.comparison


def make_step(name='step', prefer='ai', fallback='none', **kwargs) -> IntentStep:
	kwargs.setdefault('ai_instruction', f'Do {name}')
	kwargs.setdefault('snippet', f"await page.click('#{name}')")
	return IntentStep(name=name, prefer=prefer, fallback=fallback, **kwargs)


def make_spec(*steps: IntentStep, **kwargs) -> IntentSpec:
	kwargs.setdefault('name', 'test-spec')
	kwargs.setdefault('description', 'A test spec')
	kwargs.setdefault('url', 'https://example.com')
	return IntentSpec(steps=list(steps), **kwargs)


@pytest.fixture
def ai_executor():
	return FakeAIExecutor()


@pytest.fixture
def script_executor():
	return FakeScriptExecutor()


@pytest.fixture
def quiet_options(tmp_path):
	"""Options with screenshots and comparison off, rooted in an empty recordings dir."""
	return {'save_screenshots': False, 'screenshot_comparison': False, 'recordings_dir': tmp_path / 'recordings'}
