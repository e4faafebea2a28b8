"""Tests for prompt utilities."""

from __future__ import annotations

from core.prompts import ACTION_INSTRUCTIONS, SYSTEM_PROMPT, build_system_prompt
from models.session_models import SessionContext


def test_build_system_prompt_without_context() -> None:
    """Base prompt plus action instructions when nothing is known."""
    assert build_system_prompt() == SYSTEM_PROMPT + ACTION_INSTRUCTIONS


def test_build_system_prompt_with_patient_and_room() -> None:
    result = build_system_prompt(SessionContext(patient_id="P-204", room="12B"))

    assert result.startswith(SYSTEM_PROMPT)
    assert result.endswith("You are speaking with the patient in patient ID P-204 and room 12B.")


def test_build_system_prompt_room_only() -> None:
    result = build_system_prompt(SessionContext(room="3"))

    assert "in room 3." in result
    assert "patient ID" not in result


def test_build_system_prompt_empty_context() -> None:
    """An empty context adds no ward line."""
    assert build_system_prompt(SessionContext()) == SYSTEM_PROMPT + ACTION_INSTRUCTIONS


def test_action_instructions_list_vocabulary() -> None:
    """Both actions and the allowed enum values are described to the model."""
    assert "create_request" in ACTION_INSTRUCTIONS
    assert "get_patient_requests" in ACTION_INSTRUCTIONS
    assert "Cardiology" in ACTION_INSTRUCTIONS
    assert "pending" in ACTION_INSTRUCTIONS
