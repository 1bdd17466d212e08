"""Deterministic step execution on a browser-use page.

Snippets are recorded as Playwright-style statements, e.g.::

	await page.fill('#email', 'jane@example.com'); await page.click('#submit');

Only the call shape ``page.<method>(<literal args>)`` is interpreted; option
objects such as ``{ timeout: 5000 }`` are accepted and ignored.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from pathlib import Path
from typing import Any, List, NamedTuple

from browser_use import Browser

from intent_use.executors.screenshots import capture_page_screenshot
from intent_use.orchestrator.views import ScriptActionResult
from intent_use.schema.views import IntentStep

logger = logging.getLogger(__name__)

CALL_PATTERN = re.compile(r'(?:await\s+)?page\.(\w+)\(')
ARG_PATTERN = re.compile(
	r"""\s*(?:'((?:[^'\\]|\\.)*)'|"((?:[^"\\]|\\.)*)"|`((?:[^`\\]|\\.)*)`|(-?\d+(?:\.\d+)?)|(\{[^{}]*\}))\s*([,)])"""
)
_ESCAPE_PATTERN = re.compile(r'\\(.)')

SUPPORTED_COMMANDS = {
	'goto',
	'click',
	'fill',
	'type',
	'press',
	'check',
	'hover',
	'scroll',
	'select_option',
	'wait_for_selector',
	'wait_for_timeout',
}

DEFAULT_WAIT_MS = 5000
DEFAULT_SCROLL_PX = 500

ELEMENT_POLL_INTERVAL = 0.1


class SnippetCommand(NamedTuple):
	method: str
	args: List[Any]


def _snake_case(name: str) -> str:
	return re.sub(r'(?<!^)(?=[A-Z])', '_', name).lower()


def parse_snippet(snippet: str) -> List[SnippetCommand]:
	"""Split a snippet into ``page.<method>(...)`` commands.

	Raises:
		ValueError: If a call has arguments that are not literals.
	"""
	commands: List[SnippetCommand] = []
	position = 0
	while True:
		call = CALL_PATTERN.search(snippet, position)
		if call is None:
			break

		method = _snake_case(call.group(1))
		args: List[Any] = []
		position = call.end()

		if snippet[position:].lstrip().startswith(')'):
			position = snippet.index(')', position) + 1
		else:
			while True:
				arg = ARG_PATTERN.match(snippet, position)
				if arg is None:
					raise ValueError(f'Unsupported snippet syntax near: {snippet[call.start() : call.start() + 60]!r}')
				single, double, backtick, number, _options, terminator = arg.groups()
				text = next((value for value in (single, double, backtick) if value is not None), None)
				if text is not None:
					args.append(_ESCAPE_PATTERN.sub(r'\1', text))
				elif number is not None:
					args.append(float(number) if '.' in number else int(number))
				position = arg.end()
				if terminator == ')':
					break

		commands.append(SnippetCommand(method, args))
	return commands


def _int_or(value, default: int) -> int:
	try:
		return int(value)
	except (TypeError, ValueError):
		return default


def commands_for_step(step: IntentStep) -> List[SnippetCommand]:
	"""Commands for *step*: its snippet, or one built from the legacy action fields."""
	if step.snippet:
		commands = parse_snippet(step.snippet)
		if not commands:
			raise ValueError(f'Snippet for step {step.display_name!r} contains no page commands')
		return commands

	action = (step.action or '').lower()
	target = step.selector or step.target
	if action == 'navigate' and (step.value or step.target):
		return [SnippetCommand('goto', [step.value or step.target])]
	if action == 'click' and target:
		return [SnippetCommand('click', [target])]
	if action in ('fill', 'type') and target:
		return [SnippetCommand('fill', [target, step.value or ''])]
	if action == 'select' and target:
		return [SnippetCommand('select_option', [target, step.value or ''])]
	if action == 'hover' and target:
		return [SnippetCommand('hover', [target])]
	if action == 'wait':
		wait_ms = _int_or(step.value, DEFAULT_WAIT_MS)
		if target:
			return [SnippetCommand('wait_for_selector', [target, wait_ms])]
		return [SnippetCommand('wait_for_timeout', [wait_ms])]
	if action == 'scroll':
		return [SnippetCommand('scroll', [target or '', _int_or(step.value, DEFAULT_SCROLL_PX)])]
	raise ValueError(f'Step {step.display_name!r} has no snippet to execute')


class BrowserScriptExecutor:
	"""Script step executor that replays snippet commands on the shared browser."""

	def __init__(
		self,
		browser: Browser | None = None,
		*,
		screenshot_dir: str | Path = './screenshots',
		element_timeout_ms: int = 10000,
	) -> None:
		self._owns_browser = browser is None
		self.browser = browser or Browser()
		self.browser.browser_profile.keep_alive = True
		self.screenshot_dir = Path(screenshot_dir)
		self.element_timeout_ms = element_timeout_ms
		self._started = False
		self._closed = False

	async def _ensure_started(self) -> None:
		if not self._started:
			await self.browser.start()
			self._started = True

	async def open(self, url: str) -> None:
		await self._ensure_started()
		page = await self.browser.get_current_page()
		await page.goto(url)

	async def execute_action(self, step: IntentStep) -> ScriptActionResult:
		try:
			commands = commands_for_step(step)
			await self._ensure_started()
			for command in commands:
				logger.info(f'Attempting snippet command: page.{command.method}{tuple(command.args)}')
				await self._run_command(command, step)
		except Exception as e:
			logger.warning(f'Snippet step {step.display_name!r} failed: {e}')
			return ScriptActionResult(success=False, error=str(e))
		return ScriptActionResult(success=True)

	async def _wait_for_elements(self, selector: str, timeout_ms: int) -> list:
		page = await self.browser.get_current_page()
		deadline = time.monotonic() + timeout_ms / 1000
		while True:
			try:
				elements = await page.get_elements_by_css_selector(selector)
			except Exception as e:
				logger.debug(f'Error getting elements with selector {selector}: {e}')
				elements = []
			if elements:
				if len(elements) > 1:
					logger.warning(f'Selector {selector} matches {len(elements)} elements, using the first')
				return elements
			if time.monotonic() >= deadline:
				raise RuntimeError(f'Element not found for selector: {selector} (waited {timeout_ms}ms)')
			await asyncio.sleep(ELEMENT_POLL_INTERVAL)

	async def _run_command(self, command: SnippetCommand, step: IntentStep) -> None:
		method, args = command.method, command.args
		if method not in SUPPORTED_COMMANDS:
			raise ValueError(f'Unsupported snippet command: page.{method}')

		timeout_ms = step.timeout or self.element_timeout_ms
		page = await self.browser.get_current_page()

		if method == 'goto':
			await page.goto(str(args[0]))
		elif method == 'wait_for_timeout':
			await asyncio.sleep(float(args[0]) / 1000)
		elif method == 'wait_for_selector':
			wait_ms = args[1] if len(args) > 1 and isinstance(args[1], (int, float)) else timeout_ms
			await self._wait_for_elements(str(args[0]), wait_ms)
		elif method == 'scroll' and not (args and args[0]):
			pixels = args[1] if len(args) > 1 else DEFAULT_SCROLL_PX
			await page.evaluate(f'() => window.scrollBy(0, {int(pixels)})')
		else:
			if not args:
				raise ValueError(f'page.{method} needs a selector')
			element = (await self._wait_for_elements(str(args[0]), timeout_ms))[0]
			if method in ('click', 'check'):
				await element.click()
			elif method in ('fill', 'type'):
				await element.fill(str(args[1]) if len(args) > 1 else '')
			elif method == 'select_option':
				await element.select_option(str(args[1]) if len(args) > 1 else '')
			elif method == 'hover':
				await element.hover()
			elif method == 'scroll':
				await page.evaluate('(selector) => document.querySelector(selector).scrollIntoView({block: "center"})', str(args[0]))
			elif method == 'press':
				await element.focus()
				await page.press(str(args[1]) if len(args) > 1 else 'Enter')

	async def take_screenshot(self, label: str) -> str:
		await self._ensure_started()
		return await capture_page_screenshot(self.browser, self.screenshot_dir, label)

	async def cleanup(self) -> None:
		if self._closed:
			return
		self._closed = True
		if not (self._owns_browser and self._started):
			return
		self.browser.browser_profile.keep_alive = False
		await self.browser.stop()
