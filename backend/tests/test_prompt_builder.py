from __future__ import annotations

from persona_chat.memory.types import PersonaContext, RecalledPassage
from persona_chat.services.prompt_builder import PromptBuilder


def test_compose_orders_sections_and_ends_with_cue() -> None:
    persona = PersonaContext(id="ada", instruction="You are Ada.", seed="", name="Ada")
    prompt = PromptBuilder().compose(
        persona,
        [RecalledPassage("Ada wrote the first algorithm."), RecalledPassage("She loved poetry.")],
        ["Hello", "User: hi\n"],
    )

    assert "DO NOT use Ada: prefix." in prompt
    directive_at = prompt.index("ONLY generate plain sentences")
    instruction_at = prompt.index("You are Ada.")
    recall_at = prompt.index("Ada wrote the first algorithm.\nShe loved poetry.")
    history_at = prompt.index("Hello\nUser: hi\n")
    assert directive_at < instruction_at < recall_at < history_at
    assert prompt.rstrip("\n").endswith("Ada:")


def test_compose_falls_back_to_persona_id_for_name() -> None:
    persona = PersonaContext(id="persona-42", instruction="Be kind.", seed="")
    prompt = PromptBuilder().compose(persona, [], ["User: yo\n"])

    assert "DO NOT use persona-42: prefix." in prompt
    assert prompt.rstrip("\n").endswith("persona-42:")


def test_compose_tolerates_missing_inputs() -> None:
    persona = PersonaContext(id="ada", instruction="", seed="")
    prompt = PromptBuilder().compose(persona, None, [])

    assert "Below are the relevant details about ada's past" in prompt
    assert prompt.rstrip("\n").endswith("ada:")


def test_recall_query_is_joined_history() -> None:
    assert PromptBuilder.build_recall_query(["a", "b"]) == "a\nb"
