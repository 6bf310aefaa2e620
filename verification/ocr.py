import asyncio
import io
from typing import Optional

import pytesseract
import structlog
from PIL import Image, UnidentifiedImageError


logger = structlog.get_logger(__name__)

CHAR_WHITELIST = "@ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_ "


class TesseractExtractor:
    def __init__(self, language: str = "eng", timeout_seconds: Optional[float] = 15.0):
        self.language = language
        self.timeout_seconds = timeout_seconds
        self.config = f"-c tessedit_char_whitelist={CHAR_WHITELIST!r}"

    @property
    def is_available(self) -> bool:
        try:
            pytesseract.get_tesseract_version()
        except pytesseract.TesseractNotFoundError:
            return False
        return True

    async def extract_text(self, image: bytes) -> str:
        return await asyncio.to_thread(self._recognize, image)

    def _recognize(self, image: bytes) -> str:
        try:
            with Image.open(io.BytesIO(image)) as img:
                text = pytesseract.image_to_string(
                    img.convert("RGB"),
                    lang=self.language,
                    config=self.config,
                    timeout=self.timeout_seconds or 0,
                )
        except UnidentifiedImageError:
            logger.warning("ocr_unreadable_image", size=len(image))
            return ""
        return text.lower()
