"""Account health checks: make sure each account's tab can be made ready."""

import asyncio
import logging

from council.browser.registry import SessionRegistry

logger = logging.getLogger(__name__)

_TIMEOUT_SEC = 45.0


async def _check_one(registry: SessionRegistry, agent_id: str) -> tuple[str, bool, str]:
    """Provision/verify one account's page. Returns (agent_id, ok, error_message)."""
    try:
        await asyncio.wait_for(registry.get_agent_page(agent_id), timeout=_TIMEOUT_SEC)
        return agent_id, True, ""
    except Exception as exc:
        logger.debug("Health check failed for account %s: %s", agent_id, exc)
        return agent_id, False, str(exc) or type(exc).__name__


async def run_health_checks(
    registry: SessionRegistry,
    agent_ids: list[str],
) -> dict[str, tuple[bool, str]]:
    """Check all accounts in parallel.

    Returns:
        Dict mapping account id -> (ok, error_message).
        error_message is "" when ok is True.
    """
    results = await asyncio.gather(*(_check_one(registry, a) for a in agent_ids))
    return {agent_id: (ok, err) for agent_id, ok, err in results}
