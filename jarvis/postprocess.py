"""Input filtering and reply post-processing.

Provider-agnostic: applied by the orchestrator, never by a provider.
"""

import re
from dataclasses import dataclass
from typing import Optional

FILLER_WORDS = frozenset({"a", "ah", "um", "uh", "hm", "mm"})
MIN_INPUT_LENGTH = 2

LINK_RE = re.compile(r"\[LINK:(https?://[^\]]+)\]")
CODE_BLOCK_RE = re.compile(r"```[\s\S]*?```")
INLINE_CODE_RE = re.compile(r"`[^`]+`")
WHITESPACE_RE = re.compile(r"\s+")


def is_noise(text: Optional[str]) -> bool:
    """True for input too short to act on or made of a single filler word."""
    cleaned = (text or "").strip()
    if len(cleaned) < MIN_INPUT_LENGTH:
        return True
    return cleaned.lower() in FILLER_WORDS


@dataclass(frozen=True)
class Reply:
    display: str  # transcript text, directive removed
    spoken: str   # display text with code removed
    link: Optional[str] = None


def extract_link(text: str):
    """Split a reply into (text without the first directive, url or None)."""
    match = LINK_RE.search(text)
    if not match:
        return text, None
    cleaned = (text[:match.start()] + text[match.end():]).strip()
    return cleaned, match.group(1)


def speakable(text: str) -> str:
    """Replace code with short placeholders and collapse whitespace."""
    text = CODE_BLOCK_RE.sub(" [code blocks] ", text)
    text = INLINE_CODE_RE.sub(" [code] ", text)
    return WHITESPACE_RE.sub(" ", text).strip()


def process_reply(text: str) -> Reply:
    display, link = extract_link(text)
    return Reply(display=display, spoken=speakable(display), link=link)
