"""Prompt injection filter for inbound chat messages.

A blocklist classifier: an ordered list of named regex detectors, checked
against both the raw message and its NFKC-normalized form. The first match
rejects the message. The matched pattern name is a server-side diagnostic and
is never shown to users.
"""

import logging
import re
import unicodedata
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from ..observability.metrics import record_content_filtered

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000

REJECTED_REASON = "허용되지 않는 요청입니다."
EMPTY_REASON = "메시지를 입력해 주세요."


@dataclass(frozen=True, slots=True)
class InjectionPattern:
    name: str
    regex: "re.Pattern[str]"

    @classmethod
    def compile(cls, name: str, pattern: str, flags: int = re.IGNORECASE) -> "InjectionPattern":
        return cls(name=name, regex=re.compile(pattern, flags))


_P = InjectionPattern.compile

DEFAULT_PATTERNS: Tuple[InjectionPattern, ...] = (
    # System prompt disclosure
    _P("system_prompt_ko", r"시스템.*프롬프트"),
    _P("system_prompt_en", r"system.*prompt"),
    _P("reveal_instruction", r"reveal.*instruction"),
    _P("show_hidden", r"show.*hidden"),
    # l33t variants
    _P("leet_system", r"syst[e3]m"),
    _P("leet_prompt", r"pr[o0]mpt"),
    _P("leet_system_alt", r"s[yi1]st[e3]m"),
    # Instruction override
    _P("ignore_prev_ko", r"이전.*지시.*무시"),
    _P("ignore_prev_en", r"ignore.*previous.*instruction"),
    _P("forget_everything", r"forget.*everything"),
    _P("disregard_above", r"disregard.*above"),
    _P("ignore_prev_ko_short", r"이전.*무시"),
    # Role manipulation
    _P("roleplay_ko", r"역할극"),
    _P("roleplay_en", r"roleplay"),
    _P("pretend", r"pretend.*you.*are"),
    _P("act_as", r"act.*as.*if"),
    _P("you_are_now", r"you.*are.*now"),
    # Jailbreak
    _P("dan_mode", r"DAN.*mode"),
    _P("jailbreak", r"jailbreak"),
    _P("developer_mode", r"developer.*mode"),
    _P("bypass_filter", r"bypass.*filter"),
    _P("leet_jailbreak", r"j[a4][i1]lbr[e3][a4]k"),
    # Invisible characters
    _P("zero_width_space", "\u200b"),
    _P("zero_width_non_joiner", "\u200c"),
    _P("zero_width_joiner", "\u200d"),
    _P("bom", "\ufeff"),
    _P("soft_hyphen", "\u00ad"),
    _P("word_joiner", "\u2060"),
    _P("mongolian_vowel_separator", "\u180e"),
    # Encoded payloads; matches any 40+ run of the base64 alphabet, long
    # identifiers included
    _P("base64_payload", r"[A-Za-z0-9+/]{40,}={0,2}", flags=0),
    # Delimiter manipulation
    _P("code_block_system", r"```.*system"),
    _P("special_delimiter", r"<\|.*\|>"),
    _P("xml_system_tag", r"<system>"),
    _P("xml_instruction_tag", r"<instruction>"),
)

_INVISIBLE_CHARS = re.compile("[\u200b\u200c\u200d\ufeff\u00ad\u2060\u180e]")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class FilterResult:
    is_clean: bool
    reason: Optional[str] = None
    matched_pattern: Optional[str] = None


class PromptInjectionFilter:
    """Classifies chat messages before they are forwarded to the LLM."""

    def __init__(
        self,
        max_length: int = MAX_MESSAGE_LENGTH,
        patterns: Sequence[InjectionPattern] = DEFAULT_PATTERNS,
    ):
        self.max_length = max_length
        self.patterns = tuple(patterns)

    def filter(self, message: str) -> FilterResult:
        if len(message) > self.max_length:
            logger.warning("Message too long (%d chars)", len(message))
            return FilterResult(
                is_clean=False,
                reason=f"메시지가 너무 깁니다. (최대 {self.max_length}자)",
                matched_pattern="length_exceeded",
            )

        if not message.strip():
            return FilterResult(is_clean=False, reason=EMPTY_REASON, matched_pattern="empty_message")

        normalized = unicodedata.normalize("NFKC", message)

        for pattern in self.patterns:
            if pattern.regex.search(message) or pattern.regex.search(normalized):
                logger.warning("Prompt injection detected: pattern=%s", pattern.name)
                record_content_filtered(pattern.name)
                return FilterResult(
                    is_clean=False,
                    reason=REJECTED_REASON,
                    matched_pattern=pattern.name,
                )

        return FilterResult(is_clean=True)

    @staticmethod
    def sanitize(message: str) -> str:
        """Normalize, strip invisible/control characters and collapse whitespace."""
        text = unicodedata.normalize("NFKC", message)
        text = _INVISIBLE_CHARS.sub("", text)
        text = _CONTROL_CHARS.sub("", text)
        text = _WHITESPACE.sub(" ", text)
        return text.strip()
