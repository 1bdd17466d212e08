import base64
import hashlib
import logging
from pathlib import Path
from typing import Dict, Optional, Tuple

import aiofiles
from browser_use.llm import SystemMessage, UserMessage
from browser_use.llm.base import BaseChatModel
from browser_use.llm.messages import ContentPartImageParam, ContentPartTextParam, ImageURL

from intent_use.llm_utils import invoke_with_structured_output
from intent_use.orchestrator.views import ScreenshotComparison, ScreenshotDifference

logger = logging.getLogger(__name__)

MAX_SIZE_FOR_AI = 500 * 1024  # bytes per image
BASIC_MATCH_THRESHOLD = 90

COMPARISON_SYSTEM_PROMPT = """You compare two screenshots of the same web application.
The first image is the state reached by an automated run, the second is the expected success state.

Assess:
1. Overall visual similarity (0-100)
2. Key differences in layout, content or UI elements
3. Whether the current state matches the expected success criteria

Each difference needs a type (layout, content, element, color or text), a description,
a severity (low, medium or high) and where it occurs. Add concrete suggestions for making
the automation reach the expected state."""


class ScreenshotComparator:
	"""Compare a final-state screenshot with a known-good reference.

	Identical files short-circuit to 100. With an ``llm`` the images go to a
	vision model; without one (or for large files, or when the model fails) a
	file-size heuristic is used.
	"""

	def __init__(self, llm: Optional[BaseChatModel] = None, max_size_for_ai: int = MAX_SIZE_FOR_AI):
		self.llm = llm
		self.max_size_for_ai = max_size_for_ai
		self._cache: Dict[Tuple[str, str], ScreenshotComparison] = {}

	async def compare_screenshots(self, candidate_path: str, reference_path: str) -> ScreenshotComparison:
		candidate = Path(candidate_path)
		reference = Path(reference_path)

		for label, path in (('Actual', candidate), ('Expected', reference)):
			if not path.is_file():
				message = f'{label} screenshot not found: {path}'
				logger.warning(message)
				return ScreenshotComparison(
					similarity=0,
					match=False,
					differences=[ScreenshotDifference(type='error', description=message, severity='high')],
					suggestions=[f'Comparison failed: {message}'],
				)

		candidate_bytes = await self._read_bytes(candidate)
		reference_bytes = await self._read_bytes(reference)

		candidate_hash = hashlib.sha256(candidate_bytes).hexdigest()
		reference_hash = hashlib.sha256(reference_bytes).hexdigest()
		if candidate_hash == reference_hash:
			return ScreenshotComparison(similarity=100, match=True)

		cache_key = (candidate_hash, reference_hash)
		if cache_key in self._cache:
			return self._cache[cache_key]

		if self.llm is None:
			result = self.basic_comparison(len(candidate_bytes), len(reference_bytes))
		elif len(candidate_bytes) > self.max_size_for_ai or len(reference_bytes) > self.max_size_for_ai:
			logger.info('Screenshots too large for AI comparison, using basic analysis')
			result = self.basic_comparison(len(candidate_bytes), len(reference_bytes))
		else:
			try:
				result = await self._ai_comparison(candidate_bytes, reference_bytes)
			except Exception as e:
				logger.warning(f'AI comparison failed: {e}')
				result = self.basic_comparison(len(candidate_bytes), len(reference_bytes))

		self._cache[cache_key] = result
		return result

	@staticmethod
	async def _read_bytes(path: Path) -> bytes:
		async with aiofiles.open(path, 'rb') as f:
			return await f.read()

	@staticmethod
	def basic_comparison(candidate_size: int, reference_size: int) -> ScreenshotComparison:
		"""Estimate similarity from the difference in encoded file size."""
		size_difference = abs(candidate_size - reference_size)
		average_size = (candidate_size + reference_size) / 2
		similarity = max(0.0, 100 - (size_difference / average_size) * 100) if average_size else 0.0
		similarity = round(similarity, 1)

		differences = []
		suggestions = []
		if size_difference > 0:
			percent = size_difference / reference_size * 100 if reference_size else 100.0
			differences.append(
				ScreenshotDifference(
					type='content',
					description=f'Screenshot file size differs by {percent:.1f}% from the expected state',
					severity='high' if similarity < 60 else 'medium' if similarity < 90 else 'low',
				)
			)
		if similarity < BASIC_MATCH_THRESHOLD:
			suggestions.append('Visual comparison was approximate (file size only) - configure a vision model for detail')

		return ScreenshotComparison(
			similarity=similarity,
			match=similarity > BASIC_MATCH_THRESHOLD,
			differences=differences,
			suggestions=suggestions,
		)

	async def _ai_comparison(self, candidate_bytes: bytes, reference_bytes: bytes) -> ScreenshotComparison:
		def image_part(data: bytes) -> ContentPartImageParam:
			encoded = base64.b64encode(data).decode('ascii')
			return ContentPartImageParam(image_url=ImageURL(url=f'data:image/png;base64,{encoded}', media_type='image/png'))

		messages = [
			SystemMessage(content=COMPARISON_SYSTEM_PROMPT),
			UserMessage(
				content=[
					ContentPartTextParam(text='Actual final state:'),
					image_part(candidate_bytes),
					ContentPartTextParam(text='Expected success state:'),
					image_part(reference_bytes),
				]
			),
		]
		return await invoke_with_structured_output(self.llm, messages, ScreenshotComparison, fallback_to_json_parsing=True)
