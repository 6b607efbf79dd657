from __future__ import annotations

import re

# OpenAI/DeepSeek, Replicate and Google key shapes.
_KEY_PREFIXES = ("sk-", "r8_", "AIza")
SECRET_PATTERN = re.compile(
    r"(?:sk-[A-Za-z0-9_-]{6,}|r8_[A-Za-z0-9]{6,}|AIza[A-Za-z0-9_-]{6,})"
)


def redact_secrets(text: str) -> str:
    """Replace provider API keys with their prefix followed by ``***``."""

    return SECRET_PATTERN.sub(_mask_key, text)


def _mask_key(match: re.Match) -> str:
    value = match.group(0)
    prefix = next((item for item in _KEY_PREFIXES if value.startswith(item)), value[:3])
    return f"{prefix}***"

