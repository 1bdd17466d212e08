from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Mapping

from browser_use import Agent, Browser
from browser_use.llm.base import BaseChatModel

from intent_use.executors.screenshots import capture_page_screenshot
from intent_use.orchestrator.views import AIFlowResult, FlowOptions
from intent_use.schema.views import IntentSpec, IntentStep
from intent_use.variables import substitute

logger = logging.getLogger(__name__)

AGENT_STEP_CONTEXT = """You are executing exactly one step of a recorded browser workflow.
Perform only the requested action on the current page, do not navigate away unless asked,
and do not make up any data that was not given to you."""


class BrowserUseAIExecutor:
	"""AI step executor backed by a browser-use agent.

	Shares its ``Browser`` with the script executor so both paths act on the same page.
	"""

	def __init__(
		self,
		llm: BaseChatModel,
		*,
		browser: Browser | None = None,
		max_steps: int = 10,
		screenshot_dir: str | Path = './screenshots',
		use_vision: bool = True,
	) -> None:
		self.llm = llm
		self._owns_browser = browser is None
		self.browser = browser or Browser()
		# Keep the session alive between agents; the owner closes it
		self.browser.browser_profile.keep_alive = True
		self.max_steps = max_steps
		self.screenshot_dir = Path(screenshot_dir)
		self.use_vision = use_vision
		self._stopped = False

	@staticmethod
	def build_task(step: IntentStep, variables: Mapping[str, str]) -> str:
		instruction = step.ai_instruction or step.description
		if not instruction:
			raise ValueError(f'Step {step.display_name!r} has no AI instruction')
		task = substitute(instruction, variables)
		if step.value and step.value not in task:
			task = f'{task} (value: {substitute(step.value, variables)})'
		return task

	async def execute_flow(self, mini_spec: IntentSpec, variables: Mapping[str, str], options: FlowOptions) -> AIFlowResult:
		screenshots = []
		last_output = None

		for step in mini_spec.steps:
			task = self.build_task(step, variables)
			logger.info(f'Running agent task: {task}')

			agent = Agent(
				task=task,
				message_context=AGENT_STEP_CONTEXT,
				llm=self.llm,
				browser_session=self.browser,
				use_vision=self.use_vision,
			)
			history = await agent.run(max_steps=self.max_steps)

			if not history.is_successful():
				errors = [error for error in history.errors() if error]
				error = errors[-1] if errors else f'Agent could not complete: {task}'
				logger.warning(f'Agent step failed: {error}')
				return AIFlowResult(success=False, error=error, screenshots=screenshots)

			last_output = history.final_result()

			if options.save_screenshots:
				try:
					label = f'ai-step-{step.display_name}-{int(time.time() * 1000)}'
					screenshots.append(await capture_page_screenshot(self.browser, self.screenshot_dir, label))
				except Exception as e:
					logger.warning(f'Failed to capture AI step screenshot: {e}')

		return AIFlowResult(success=True, screenshots=screenshots, data=last_output)

	async def stop(self) -> None:
		if self._stopped:
			return
		self._stopped = True
		if not self._owns_browser:
			return
		self.browser.browser_profile.keep_alive = False
		await self.browser.stop()
