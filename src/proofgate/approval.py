"""Interpretation of free-text approval replies.

A reply approves a gate only when it contains an allow-listed keyword. Bare
filler such as "ok" is refused. The state machine accepts any object
satisfying ``ApprovalPolicy``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol

from .settings import RuntimeSettings

_WORD_RE = re.compile(r"[a-z']+")
_NEGATIONS = frozenset({"not", "no", "don't", "dont", "never", "cannot", "can't", "won't"})


@dataclass(frozen=True)
class ApprovalDecision:
    valid: bool
    reason: str = ""


class ApprovalPolicy(Protocol):
    def interpret(self, text: str) -> ApprovalDecision: ...


class KeywordApprovalPolicy:
    def __init__(self, keywords: tuple[str, ...], ambiguous: tuple[str, ...]) -> None:
        self.keywords = frozenset(word.lower() for word in keywords)
        self.ambiguous = frozenset(word.lower() for word in ambiguous)
        self._hint = " or ".join(f'"{word}"' for word in sorted(self.keywords)[:2])

    @classmethod
    def from_settings(cls, settings: RuntimeSettings) -> "KeywordApprovalPolicy":
        return cls(settings.approval_keywords, settings.ambiguous_replies)

    def interpret(self, text: str) -> ApprovalDecision:
        normalized = text.strip().lower()
        stripped = normalized.strip(" .!?")
        if not stripped:
            return ApprovalDecision(False, f"Approval text is empty. Reply with {self._hint} to approve this gate.")
        if stripped in self.ambiguous:
            return ApprovalDecision(
                False, f'"{text.strip()}" is not a clear approval. Reply with {self._hint} to approve this gate.'
            )

        words = _WORD_RE.findall(normalized)
        if any(word in _NEGATIONS for word in words):
            return ApprovalDecision(False, f'"{text.strip()}" reads as a refusal, not an approval.')
        if any(word in self.keywords for word in words):
            return ApprovalDecision(True)
        return ApprovalDecision(False, f"Please provide explicit approval using {self._hint}.")
