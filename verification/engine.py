import asyncio
import re
from dataclasses import dataclass
from typing import Optional, Protocol

import structlog

from core.errors import MalformedLinkError


logger = structlog.get_logger(__name__)

HANDLE_PATTERN = re.compile(r"/@([\w.-]+)")
CHANNEL_LINK_PATTERN = re.compile(r"^(https?://)?(www\.|m\.)?(youtube\.com|youtu\.?be)/.+", re.IGNORECASE)
NOISE_PATTERN = re.compile(r"[^a-z0-9@_-]")
SPACES_PATTERN = re.compile(r"\s+")
SEPARATORS = r"[@_\- ]"
SUBSCRIBED_WORD = "subscribed"


class TextExtractor(Protocol):
    async def extract_text(self, image: bytes) -> str: ...


@dataclass
class VerificationResult:
    handle: str
    has_handle: bool
    has_subscribed: bool

    @property
    def verified(self) -> bool:
        return self.has_handle and self.has_subscribed


def is_channel_link(link: str) -> bool:
    return bool(CHANNEL_LINK_PATTERN.match(link or ""))


def extract_handle(link: str) -> str:
    """Return the lower-cased ``@handle`` segment of a channel URL, without the ``@``."""
    match = HANDLE_PATTERN.search(link or "")
    if not match:
        raise MalformedLinkError("Invalid YouTube link format - missing @handle", {"link": link})
    handle = normalize(match.group(1)).lstrip("@")
    if not handle:
        raise MalformedLinkError("Invalid YouTube link format - empty @handle", {"link": link})
    return handle


def normalize(text: str) -> str:
    return NOISE_PATTERN.sub("", (text or "").lower())


def tokenize(text: str) -> str:
    """Normalize each whitespace-separated word, keeping single spaces between them."""
    words = (normalize(word) for word in SPACES_PATTERN.split(text or ""))
    return " ".join(word for word in words if word)


def handle_pattern(handle: str) -> re.Pattern:
    """Match ``handle`` as a whole token, allowing one separator between consecutive characters."""
    chars = [re.escape(c) for c in normalize(handle).lstrip("@")]
    return re.compile(r"(?<![a-z0-9])" + f"{SEPARATORS}?".join(chars) + r"(?![a-z0-9])")


def check(text: str, handle: str) -> VerificationResult:
    clean = normalize(text)
    target = normalize(handle).lstrip("@")
    has_handle = bool(target) and handle_pattern(target).search(tokenize(text)) is not None
    return VerificationResult(
        handle=target,
        has_handle=has_handle,
        has_subscribed=SUBSCRIBED_WORD in clean,
    )


class VerificationEngine:
    def __init__(self, extractor: TextExtractor, timeout_seconds: Optional[float] = 15.0):
        self.extractor = extractor
        self.timeout_seconds = timeout_seconds

    async def read_text(self, image: bytes) -> str:
        try:
            text = await asyncio.wait_for(self.extractor.extract_text(image), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("ocr_timeout", timeout_seconds=self.timeout_seconds)
            return ""
        except Exception:
            logger.exception("ocr_failed")
            return ""
        return (text or "").lower()

    async def verify(self, image: bytes, expected_handle: str) -> bool:
        text = await self.read_text(image)
        result = check(text, expected_handle)
        logger.info(
            "subscription_proof_checked",
            handle=result.handle,
            has_handle=result.has_handle,
            has_subscribed=result.has_subscribed,
            text_length=len(text),
        )
        return result.verified

    async def verify_link(self, image: bytes, channel_link: str) -> bool:
        return await self.verify(image, extract_handle(channel_link))
