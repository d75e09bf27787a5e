"""Tests for council/models.py."""

from dataclasses import asdict

from council.models import (
    AgentSession,
    DetectorState,
    DiscussionResult,
    DiscussionTurn,
    ParallelDiscussionResult,
    Subtask,
    SubtaskResult,
)


def test_agent_session_defaults_not_ready():
    session = AgentSession(agent_id="1", page=object())
    assert session.ready is False


def test_discussion_turn_defaults_not_failed():
    turn = DiscussionTurn(1, "0", "Expert A", "Analyst", "prompt", "response")
    assert turn.failed is False


def test_detector_state_values_are_strings():
    assert DetectorState.DONE.value == "done"
    assert DetectorState.TIMED_OUT == "timed_out"


def test_discussion_result_optional_room():
    result = DiscussionResult("Q?", 1, [], "answer", "summary", 1.0)
    assert result.room_id is None


def test_parallel_result_serializes_nested():
    subtask = Subtask(id=1, task="t", focus="technical")
    execution = SubtaskResult(subtask=subtask, account_id="0", prompt="p", response="r")
    result = ParallelDiscussionResult(
        question="Q?",
        subtasks=[subtask],
        used_default_subtasks=True,
        executions=[execution],
        reviews=[],
        final_answer="final",
        coordinator="0",
        total_duration_sec=2.5,
    )
    payload = asdict(result)
    assert payload["executions"][0]["subtask"]["focus"] == "technical"
    assert payload["phases_completed"] == []
