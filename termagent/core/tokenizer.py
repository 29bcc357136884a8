"""
Token estimation for dialogue size reporting.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import tiktoken

logger = logging.getLogger(__name__)


@dataclass
class TokenEstimator:
    """Estimate token counts with tiktoken or a characters-per-token ratio."""

    mode: str = "approx"
    encoding: str = "cl100k_base"
    approx_chars_per_token: int = 4

    def __post_init__(self) -> None:
        self._encoder = None
        self._warned = False
        self.mode = (self.mode or "approx").lower()
        if self.mode not in {"tiktoken", "approx", "disabled"}:
            self._warn_once(f"Unknown token counting mode '{self.mode}'; falling back to approximate mode.")
            self.mode = "approx"

    def _warn_once(self, message: str) -> None:
        if self._warned:
            return
        logger.warning(message)
        self._warned = True

    def _get_encoder(self):
        # Loaded on first use; get_encoding may need to fetch BPE ranks.
        if self._encoder is None and self.mode == "tiktoken":
            try:
                self._encoder = tiktoken.get_encoding(self.encoding)
            except Exception as exc:
                self._warn_once(
                    f"Failed to initialize tiktoken encoding '{self.encoding}' ({exc}); "
                    "falling back to approximate token counting."
                )
                self.mode = "approx"
        return self._encoder

    @property
    def is_disabled(self) -> bool:
        return self.mode == "disabled"

    def count(self, text: str | None) -> int:
        """Estimate token count for text."""
        if self.is_disabled or text is None:
            return 0
        encoder = self._get_encoder()
        if encoder is not None:
            return len(encoder.encode(text))
        return self._approximate_count(text)

    def _approximate_count(self, text: str) -> int:
        if not text:
            return 0
        return max(1, math.ceil(len(text) / max(self.approx_chars_per_token, 1)))
