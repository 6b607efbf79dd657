from __future__ import annotations

from typing import Iterable, Optional

from persona_chat.memory.types import PersonaContext, RecalledPassage


class PromptBuilder:
    """Compose the single generation prompt for a persona chat turn."""

    def compose(
        self,
        persona: PersonaContext,
        recalled_passages: Optional[Iterable[RecalledPassage]],
        recent_history: Iterable[str],
    ) -> str:
        """Assemble directive, instruction, recall, history and the speaker cue."""

        name = persona.display_name
        relevant_history = "\n".join(
            passage.content for passage in (recalled_passages or []) if passage.content
        )
        recent_chat_history = "\n".join(recent_history)
        return (
            "\n"
            "ONLY generate plain sentences without prefix of who is speaking. "
            f"DO NOT use {name}: prefix.\n"
            "\n"
            f"{persona.instruction}\n"
            "\n"
            f"Below are the relevant details about {name}'s past and the conversation you are in.\n"
            f"{relevant_history}\n"
            "\n"
            f"{recent_chat_history}\n"
            f"{name}:\n"
        )

    @staticmethod
    def build_recall_query(recent_history: Iterable[str]) -> str:
        """Text used to search long-term memory: the recent conversation itself."""

        return "\n".join(recent_history)
