"""
Structured-output helpers for browser-use chat models.

Not every provider honours ``output_format`` (Gemini in particular returns
free text), so these helpers retry with an explicit JSON instruction and pull
the JSON object out of whatever text comes back.
"""

import json
import logging
import re
from typing import List, Optional, Type, TypeVar

from browser_use.llm import UserMessage
from browser_use.llm.base import BaseChatModel, BaseMessage
from browser_use.llm.messages import ContentPartTextParam
from pydantic import BaseModel

logger = logging.getLogger(__name__)

T = TypeVar('T', bound=BaseModel)

_FENCED_JSON_PATTERNS = (
	re.compile(r'```json\s*([\s\S]*?)\s*```'),
	re.compile(r'```\s*([\s\S]*?)\s*```'),
)


def _is_json(text: str) -> bool:
	try:
		json.loads(text)
	except json.JSONDecodeError:
		return False
	return True


def extract_json_from_text(text: Optional[str]) -> Optional[str]:
	"""Return the first parseable JSON object or array found in *text*."""
	if not text:
		return None

	for pattern in _FENCED_JSON_PATTERNS:
		match = pattern.search(text)
		if match and _is_json(match.group(1).strip()):
			return match.group(1).strip()

	text = text.strip()
	if text[:1] in ('{', '[') and _is_json(text):
		return text

	# Scan for a balanced object/array anywhere in the text
	for open_char, close_char in (('{', '}'), ('[', ']')):
		start = text.find(open_char)
		if start == -1:
			continue
		depth = 0
		for index in range(start, len(text)):
			if text[index] == open_char:
				depth += 1
			elif text[index] == close_char:
				depth -= 1
				if depth == 0:
					candidate = text[start : index + 1]
					if _is_json(candidate):
						return candidate
					break
	return None


def _response_text(response) -> Optional[str]:
	completion = getattr(response, 'completion', None)
	if isinstance(completion, str):
		return completion
	if completion is not None and isinstance(getattr(completion, 'content', None), str):
		return completion.content
	if isinstance(getattr(response, 'content', None), str):
		return response.content
	if isinstance(response, str):
		return response
	return None


def _parse_completion(response, output_schema: Type[T]) -> T:
	completion = getattr(response, 'completion', None)
	if isinstance(completion, output_schema):
		return completion
	if isinstance(completion, dict):
		return output_schema(**completion)

	json_str = extract_json_from_text(_response_text(response))
	if json_str:
		return output_schema(**json.loads(json_str))
	raise ValueError(f'Unexpected response format from LLM: {type(response).__name__}')


def _with_json_instruction(messages: List[BaseMessage], output_schema: Type[T]) -> List[BaseMessage]:
	instruction = (
		'\n\nIMPORTANT: Return your response as valid JSON matching this schema:\n'
		f'```json\n{json.dumps(output_schema.model_json_schema(), indent=2)}\n```\n'
		'Return ONLY the JSON object, no additional text.'
	)
	patched = list(messages)
	if not patched:
		return patched

	content = getattr(patched[-1], 'content', None)
	if isinstance(content, str):
		patched[-1] = UserMessage(content=content + instruction)
	elif isinstance(content, list):
		patched[-1] = UserMessage(content=content + [ContentPartTextParam(text=instruction)])
	return patched


async def invoke_with_structured_output(
	llm: BaseChatModel,
	messages: List[BaseMessage],
	output_schema: Type[T],
	fallback_to_json_parsing: bool = True,
) -> T:
	"""Invoke *llm* expecting an *output_schema* instance back.

	Raises:
		ValueError: If no structured output could be obtained or parsed.
	"""
	try:
		response = await llm.ainvoke(messages, output_format=output_schema)
		return _parse_completion(response, output_schema)
	except Exception as e:
		if not fallback_to_json_parsing:
			raise
		logger.warning(f'Structured output failed ({e}), attempting fallback JSON parsing')

		try:
			response = await llm.ainvoke(_with_json_instruction(messages, output_schema))
			text = _response_text(response)
			if not text:
				raise ValueError('No text content in fallback response')
			json_str = extract_json_from_text(text)
			if not json_str:
				raise ValueError(f'Could not extract JSON from response: {text[:500]}...')
			return output_schema(**json.loads(json_str))
		except Exception as fallback_error:
			logger.error(f'Fallback JSON parsing also failed: {fallback_error}')
			raise ValueError(f'Failed to get structured output: {e}. Fallback also failed: {fallback_error}') from e
