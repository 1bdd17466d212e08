import logging
import os
from pathlib import Path
from typing import List, Optional

from intent_use.schema.views import IntentSpec

logger = logging.getLogger(__name__)

SUCCESS_STATE_SUFFIX = 'success-state.png'


class SuccessStateResolver:
	"""Locate the known-good screenshot for an intent spec.

	Recordings are named inconsistently, so the lookup goes explicit path,
	then name variants, then the newest ``*success-state.png`` in the directory.
	"""

	def __init__(self, recordings_dir: str | Path = './recordings'):
		self.recordings_dir = Path(recordings_dir)

	@staticmethod
	def candidate_names(spec_name: str) -> List[str]:
		lowered = spec_name.lower()
		names = [
			f'{spec_name}-{SUCCESS_STATE_SUFFIX}',
			f'{"-".join(lowered.split())}-{SUCCESS_STATE_SUFFIX}',
			f'{"_".join(lowered.split())}-{SUCCESS_STATE_SUFFIX}',
		]
		return list(dict.fromkeys(names))

	def find_reference_screenshot(self, spec: IntentSpec) -> Optional[str]:
		if spec.success_screenshot:
			explicit = Path(spec.success_screenshot)
			if explicit.is_file():
				return str(explicit)
			logger.warning(f'Configured success screenshot not found: {explicit}')

		if not self.recordings_dir.is_dir():
			logger.warning(f'Recordings directory not found: {self.recordings_dir}')
			return None

		for name in self.candidate_names(spec.name):
			candidate = self.recordings_dir / name
			if candidate.is_file():
				return str(candidate)

		success_files = [
			entry for entry in self.recordings_dir.iterdir() if entry.is_file() and SUCCESS_STATE_SUFFIX in entry.name
		]
		if not success_files:
			return None

		most_recent = max(success_files, key=lambda entry: os.stat(entry).st_mtime)
		logger.info(f'Using most recent success screenshot: {most_recent.name}')
		return str(most_recent)
