"""Parallel discussion: split -> parallel execute -> cross-review -> summarize."""

import asyncio
import json
import logging
import time
from collections.abc import Callable, Iterator
from typing import Any

from config.config_loader import ParallelConfig, PromptsConfig
from council.browser.base import AgentChannel
from council.discussion import failure_marker
from council.models import (
    ParallelDiscussionResult,
    ReviewAssignment,
    ReviewResult,
    Subtask,
    SubtaskResult,
)
from council.persistence import RoomPersistence, record_agent_urls, record_message

logger = logging.getLogger(__name__)

NUM_SUBTASKS = 3

PHASE_SPLIT = "split"
PHASE_EXECUTE = "execute"
PHASE_REVIEW = "review"
PHASE_SUMMARIZE = "summarize"


def _json_objects(text: str) -> Iterator[Any]:
    """Yield every JSON value that decodes from an opening brace in text."""
    decoder = json.JSONDecoder()
    idx = text.find("{")
    while idx != -1:
        try:
            obj, end = decoder.raw_decode(text, idx)
        except json.JSONDecodeError:
            idx = text.find("{", idx + 1)
            continue
        yield obj
        idx = text.find("{", end)


def _find_subtasks_key(obj: Any) -> list | None:
    if isinstance(obj, dict):
        if isinstance(obj.get("subtasks"), list):
            return obj["subtasks"]
        for value in obj.values():
            found = _find_subtasks_key(value)
            if found is not None:
                return found
    elif isinstance(obj, list):
        for item in obj:
            found = _find_subtasks_key(item)
            if found is not None:
                return found
    return None


def parse_subtasks(raw: str) -> list[Subtask] | None:
    """Find the first JSON object with a "subtasks" list anywhere in raw text.

    Returns exactly NUM_SUBTASKS subtasks (extra items are dropped), or None
    when no usable decomposition is present.
    """
    for obj in _json_objects(raw):
        items = _find_subtasks_key(obj)
        if items is None:
            continue
        subtasks: list[Subtask] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            task = str(item.get("task", "")).strip()
            if not task:
                continue
            focus = str(item.get("focus", "")).strip() or "general"
            subtasks.append(Subtask(id=len(subtasks) + 1, task=task, focus=focus))
        if len(subtasks) >= NUM_SUBTASKS:
            return subtasks[:NUM_SUBTASKS]
        logger.warning("Split output had %d usable subtasks, need %d", len(subtasks), NUM_SUBTASKS)
        return None
    return None


def default_subtasks(config: ParallelConfig) -> list[Subtask]:
    return [
        Subtask(id=i + 1, task=t.task, focus=t.focus)
        for i, t in enumerate(config.default_subtasks[:NUM_SUBTASKS])
    ]


def review_assignments(results: list[SubtaskResult]) -> list[ReviewAssignment]:
    """Cyclic peer review: participant i reviews participant i+1, the last reviews the first."""
    n = len(results)
    return [
        ReviewAssignment(
            reviewer_account_id=results[i].account_id,
            target_account_id=results[(i + 1) % n].account_id,
            target_result=results[(i + 1) % n],
        )
        for i in range(n)
    ]


def _format_results(results: list[SubtaskResult]) -> str:
    parts = ["## Parallel results"]
    for r in results:
        parts.append(f"### Expert #{r.subtask.id} ({r.subtask.focus} focus): {r.subtask.task}\n{r.response}")
    return "\n\n".join(parts)


def _format_reviews(reviews: list[ReviewResult], index_of: dict[str, int]) -> str:
    parts = ["## Cross-reviews"]
    for r in reviews:
        a = r.assignment
        parts.append(
            f"### Review of expert #{index_of[a.target_account_id]} "
            f"by expert #{index_of[a.reviewer_account_id]}\n{r.response}"
        )
    return "\n\n".join(parts)


async def _send_isolated(channel: AgentChannel, account_id: str, prompt: str, phase: str) -> tuple[str, bool]:
    """Send one prompt; a failure becomes a marker instead of an exception."""
    try:
        response = await channel.send_message(account_id, prompt)
    except Exception as exc:
        logger.warning("Account %s failed in %s phase: %s", account_id, phase, exc)
        return failure_marker(exc), True
    logger.info("Account %s finished %s phase (%d chars)", account_id, phase, len(response))
    return response, False


async def _execute(
    channel: AgentChannel,
    question: str,
    prompts: PromptsConfig,
    subtask: Subtask,
    account_id: str,
) -> SubtaskResult:
    prompt = prompts.execute.format(
        index=subtask.id,
        question=question,
        task=subtask.task,
        focus=subtask.focus,
    )
    response, failed = await _send_isolated(channel, account_id, prompt, PHASE_EXECUTE)
    return SubtaskResult(subtask=subtask, account_id=account_id, prompt=prompt, response=response, failed=failed)


async def _review(
    channel: AgentChannel,
    question: str,
    prompts: PromptsConfig,
    assignment: ReviewAssignment,
    index_of: dict[str, int],
) -> ReviewResult:
    target = assignment.target_result
    prompt = prompts.review.format(
        reviewer_index=index_of[assignment.reviewer_account_id],
        target_index=index_of[assignment.target_account_id],
        question=question,
        focus=target.subtask.focus,
        task=target.subtask.task,
        target_response=target.response,
    )
    response, failed = await _send_isolated(channel, assignment.reviewer_account_id, prompt, PHASE_REVIEW)
    return ReviewResult(assignment=assignment, prompt=prompt, response=response, failed=failed)


async def run_parallel_discussion(
    question: str,
    channel: AgentChannel,
    config: ParallelConfig,
    prompts: PromptsConfig,
    fresh_start: bool = False,
    store: RoomPersistence | None = None,
    room_id: str | None = None,
    on_phase_complete: Callable[[str], None] | None = None,
) -> ParallelDiscussionResult:
    """Run the 4-phase parallel protocol.

    Phases 2 and 3 fan out to the 3 participants concurrently and wait for
    all of them; a failing participant yields a failure marker in its slot.
    A broken split falls back to the configured default decomposition.

    Returns:
        ParallelDiscussionResult whose final_answer is the coordinator's
        phase-4 response.

    Raises:
        ValueError: If the participant list is not exactly 3 accounts.
    """
    participants = list(config.participants)
    if len(participants) != NUM_SUBTASKS:
        raise ValueError(f"Parallel discussion needs exactly {NUM_SUBTASKS} participants, got {len(participants)}")
    coordinator = config.coordinator
    index_of = {account_id: i + 1 for i, account_id in enumerate(participants)}

    start = time.monotonic()
    completed: list[str] = []

    def _phase_done(phase: str) -> None:
        completed.append(phase)
        logger.info("Phase %d/4 complete: %s", len(completed), phase)
        if on_phase_complete:
            on_phase_complete(phase)

    record_message(store, room_id, "user", question)

    if fresh_start:
        for account_id in dict.fromkeys([coordinator, *participants]):
            try:
                await channel.start_new_chat(account_id)
            except Exception as exc:
                logger.warning("Account %s could not start a new chat, continuing: %s", account_id, exc)

    # Phase 1: split
    split_prompt = prompts.split.format(question=question)
    raw_split, split_failed = await _send_isolated(channel, coordinator, split_prompt, PHASE_SPLIT)
    subtasks = None if split_failed else parse_subtasks(raw_split)
    used_default = subtasks is None
    if subtasks is None:
        logger.warning("Could not parse subtasks from coordinator output, using default decomposition")
        subtasks = default_subtasks(config)
    record_message(store, room_id, coordinator, raw_split)
    _phase_done(PHASE_SPLIT)

    # Phase 2: parallel execution
    executions = list(
        await asyncio.gather(
            *(
                _execute(channel, question, prompts, subtask, account_id)
                for subtask, account_id in zip(subtasks, participants)
            )
        )
    )
    for r in executions:
        record_message(store, room_id, r.account_id, r.response)
    _phase_done(PHASE_EXECUTE)

    # Phase 3: parallel cross-review
    assignments = review_assignments(executions)
    reviews = list(
        await asyncio.gather(*(_review(channel, question, prompts, a, index_of) for a in assignments))
    )
    for r in reviews:
        record_message(store, room_id, r.assignment.reviewer_account_id, r.response, r.assignment.target_account_id)
    _phase_done(PHASE_REVIEW)

    # Phase 4: summarize
    summary_prompt = prompts.summarize.format(
        question=question,
        results=_format_results(executions),
        reviews=_format_reviews(reviews, index_of),
    )
    final_answer, _ = await _send_isolated(channel, coordinator, summary_prompt, PHASE_SUMMARIZE)
    record_message(store, room_id, coordinator, final_answer)
    _phase_done(PHASE_SUMMARIZE)

    await record_agent_urls(store, room_id, channel, list(dict.fromkeys([coordinator, *participants])))

    return ParallelDiscussionResult(
        question=question,
        subtasks=subtasks,
        used_default_subtasks=used_default,
        executions=executions,
        reviews=reviews,
        final_answer=final_answer,
        coordinator=coordinator,
        total_duration_sec=time.monotonic() - start,
        room_id=room_id,
        phases_completed=completed,
    )
