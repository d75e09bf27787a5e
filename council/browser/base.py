"""Error taxonomy and the agent channel interface the orchestrators depend on."""

import time
from abc import ABC, abstractmethod

from council.models import SendResult


class CouncilError(Exception):
    """Root of all council errors."""


class BrowserConnectionError(CouncilError, ConnectionError):
    """Raised when the remote browser's debug endpoint cannot be reached."""

    def __init__(self, endpoint: str, message: str) -> None:
        self.endpoint = endpoint
        super().__init__(f"[{endpoint}] {message}")


class NavigationError(CouncilError):
    """Raised when an account tab fails to load its URL."""

    def __init__(self, agent_id: str, url: str, message: str) -> None:
        self.agent_id = agent_id
        self.url = url
        super().__init__(f"[account {agent_id}] Could not load {url}: {message}")


class InputNotFoundError(CouncilError):
    """Raised when no known prompt-input selector variant appears on a page."""

    def __init__(self, agent_id: str | None, selectors: list[str]) -> None:
        self.agent_id = agent_id
        self.selectors = selectors
        who = f"account {agent_id}" if agent_id is not None else "page"
        super().__init__(f"Could not find prompt input for {who} (tried {len(selectors)} selectors)")


class InputInjectionError(CouncilError):
    """Raised when the input element is missing at send time."""

    def __init__(self, agent_id: str, message: str) -> None:
        self.agent_id = agent_id
        super().__init__(f"[account {agent_id}] {message}")


class SendTriggerExhaustedError(CouncilError):
    """Raised when button click, synthetic Enter and keyboard Enter all failed."""

    def __init__(self, agent_id: str, message: str) -> None:
        self.agent_id = agent_id
        super().__init__(f"[account {agent_id}] {message}")


class ResponseTimeoutError(CouncilError):
    """Raised on detector timeout only when partial results are disabled."""

    def __init__(self, ceiling_sec: float, partial_text: str) -> None:
        self.ceiling_sec = ceiling_sec
        self.partial_text = partial_text
        super().__init__(f"Response did not complete within {ceiling_sec:.0f}s")


class AgentChannel(ABC):
    """Anything that can hold a conversation on behalf of an account."""

    @abstractmethod
    async def send_message(self, agent_id: str, text: str) -> str:
        """Send text as agent_id and return the finished response text.

        Raises:
            CouncilError: On connection, input or send-trigger failure.
        """
        ...

    async def send(self, agent_id: str, text: str) -> SendResult:
        """send_message with timing, packaged for persistence and HTTP replies."""
        start = time.monotonic()
        response = await self.send_message(agent_id, text)
        return SendResult(
            account_id=agent_id,
            prompt=text,
            response=response,
            duration_sec=time.monotonic() - start,
        )

    @abstractmethod
    async def start_new_chat(self, agent_id: str) -> None:
        """Open a fresh conversation for agent_id."""
        ...

    @abstractmethod
    async def current_url(self, agent_id: str) -> str | None:
        """Return the agent's current conversation URL, None if not tracked."""
        ...
