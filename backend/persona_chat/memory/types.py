from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

_WHITESPACE = re.compile(r"\s+")
KEY_SEPARATOR = ":"


def _safe_component(value: str) -> str:
    # Escaping "%" first and then the separator keeps the joined key injective.
    escaped = value.replace("%", "%25").replace(KEY_SEPARATOR, "%3A")
    return _WHITESPACE.sub("_", escaped)


@dataclass(frozen=True)
class ConversationKey:
    """Identifies one chat memory stream."""

    persona_id: str
    user_id: str
    model_name: str

    @property
    def storage_key(self) -> str:
        """Flatten the key into the opaque string used by the history backend."""

        return KEY_SEPARATOR.join(
            _safe_component(part) for part in (self.persona_id, self.model_name, self.user_id)
        )


@dataclass(frozen=True)
class HistoryEntry:
    """One chronological history line with its ordering score."""

    text: str
    order: float


@dataclass(frozen=True)
class RecalledPassage:
    """Passage returned by semantic recall for a single prompt assembly."""

    content: str


@dataclass(frozen=True)
class PersonaContext:
    """Persona data the chat layer needs from the persona store."""

    id: str
    instruction: str
    seed: str
    name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return (self.name or "").strip() or self.id


@dataclass(frozen=True)
class PassagePayload:
    """Payload persisted into the recall index."""

    scope_tag: str
    content: str
    content_hash: str


@dataclass(frozen=True)
class PassageSearchResult:
    """Vector-search candidate with similarity score."""

    item_id: str
    content: str
    score: float


def scope_tag_for(persona_id: str) -> str:
    """Return the metadata tag that scopes recall to one persona."""

    return f"{persona_id}.txt"
