"""Serial discussion: a fixed 3-role panel speaking in turn, round by round."""

import logging
import time
from collections.abc import Callable

from config.config_loader import DiscussionConfig, PromptsConfig
from council.browser.base import AgentChannel
from council.models import DiscussionResult, DiscussionRole, DiscussionTurn
from council.persistence import RoomPersistence, record_agent_urls, record_message

logger = logging.getLogger(__name__)

_PANEL_SIZE = 3


def failure_marker(exc: BaseException) -> str:
    """In-band text that stands in for a participant's response when the send failed."""
    return f"[Failed: {exc}]"


def roles_from_config(config: DiscussionConfig) -> list[DiscussionRole]:
    return [DiscussionRole(account_id=r.account, name=r.name, role=r.role) for r in config.panel]


def build_turn_prompt(
    prompts: PromptsConfig,
    question: str,
    role: DiscussionRole,
    round_index: int,
    position: int,
    num_rounds: int,
    panel_size: int,
    previous_turns: list[DiscussionTurn],
) -> str:
    """Pick the opening, final or critique template for one turn.

    round_index and position are 0-based.
    """
    if round_index == 0 and position == 0:
        return prompts.opening.format(name=role.name, role=role.role, question=question)

    if position == panel_size - 1 and round_index == num_rounds - 1:
        previous = "\n\n".join(f"{t.name}: {t.response}" for t in previous_turns[-2:])
        return prompts.final.format(
            name=role.name,
            role=role.role,
            question=question,
            previous_responses=previous,
        )

    last = previous_turns[-1]
    return prompts.critique.format(
        name=role.name,
        role=role.role,
        question=question,
        previous_name=last.name,
        previous_response=last.response,
    )


async def _start_fresh(channel: AgentChannel, roles: list[DiscussionRole]) -> None:
    for role in roles:
        try:
            await channel.start_new_chat(role.account_id)
        except Exception as exc:
            logger.warning("Account %s could not start a new chat, continuing: %s", role.account_id, exc)


async def run_discussion(
    question: str,
    channel: AgentChannel,
    roles: list[DiscussionRole],
    prompts: PromptsConfig,
    num_rounds: int,
    fresh_start: bool = False,
    store: RoomPersistence | None = None,
    room_id: str | None = None,
    on_turn: Callable[[DiscussionTurn], None] | None = None,
) -> DiscussionResult:
    """Run the serial round-robin discussion.

    Each turn depends on the previous one, so sends are strictly sequential.
    A failed send becomes a turn whose response is a failure marker; the
    discussion always runs to completion.

    Args:
        question: The original question.
        channel: Sends prompts on behalf of each account.
        roles: The ordered 3-role panel.
        prompts: Prompt templates from config.
        num_rounds: Number of full passes over the panel (>= 1).
        fresh_start: Open a new chat for every participant before round 1.
        store: Optional persistence collaborator.
        room_id: Room to record messages in; nothing is saved without it.
        on_turn: Optional callback invoked after each turn.

    Returns:
        DiscussionResult whose final_answer is the last turn's response.

    Raises:
        ValueError: If num_rounds < 1 or the panel is not 3 roles.
    """
    if num_rounds < 1:
        raise ValueError(f"num_rounds must be >= 1, got {num_rounds}")
    if len(roles) != _PANEL_SIZE:
        raise ValueError(f"Serial discussion needs exactly {_PANEL_SIZE} roles, got {len(roles)}")

    start = time.monotonic()
    logger.info("Starting discussion: %r", question[:50])
    logger.info("Participants: %s; rounds: %d", ", ".join(r.name for r in roles), num_rounds)

    record_message(store, room_id, "user", question)

    if fresh_start:
        await _start_fresh(channel, roles)

    turns: list[DiscussionTurn] = []
    for round_index in range(num_rounds):
        logger.info("--- Round %d ---", round_index + 1)
        for position, role in enumerate(roles):
            prompt = build_turn_prompt(
                prompts, question, role, round_index, position, num_rounds, len(roles), turns
            )
            logger.info("%s is speaking...", role.name)
            try:
                response = await channel.send_message(role.account_id, prompt)
                failed = False
                logger.info("%s done (%d chars)", role.name, len(response))
            except Exception as exc:
                response = failure_marker(exc)
                failed = True
                logger.warning("%s failed: %s", role.name, exc)

            turn = DiscussionTurn(
                round=round_index + 1,
                account_id=role.account_id,
                name=role.name,
                role=role.role,
                prompt=prompt,
                response=response,
                failed=failed,
            )
            turns.append(turn)
            record_message(store, room_id, role.account_id, response)
            if on_turn:
                on_turn(turn)

    await record_agent_urls(store, room_id, channel, [r.account_id for r in roles])

    logger.info("Discussion complete: %d turns", len(turns))
    return DiscussionResult(
        question=question,
        rounds=num_rounds,
        turns=turns,
        final_answer=turns[-1].response,
        summary=f"{len(roles)} experts discussed for {num_rounds} round(s)",
        total_duration_sec=time.monotonic() - start,
        room_id=room_id,
    )
