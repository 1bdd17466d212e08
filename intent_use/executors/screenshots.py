import base64
import logging
import re
from pathlib import Path

import aiofiles
from browser_use import Browser

logger = logging.getLogger(__name__)


def screenshot_filename(label: str) -> str:
	clean = re.sub(r'[^\w\s-]', '', label)
	clean = re.sub(r'[-\s]+', '-', clean).strip('-')
	return f'{clean[:80] or "screenshot"}.png'


async def capture_page_screenshot(browser: Browser, directory: Path, label: str) -> str:
	"""Save a PNG of the current page under *directory* and return its path."""
	directory.mkdir(parents=True, exist_ok=True)
	path = directory / screenshot_filename(label)

	page = await browser.get_current_page()
	data = await page.screenshot(format='png')
	raw = base64.b64decode(data) if isinstance(data, str) else data

	async with aiofiles.open(path, 'wb') as f:
		await f.write(raw)
	logger.info(f'📸 Screenshot saved: {path}')
	return str(path)
