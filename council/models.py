"""Pure dataclasses for the council pipeline. No logic, no deps."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class DetectorState(str, Enum):
    GENERATING = "generating"
    STABLE_PENDING = "stable_pending"
    DONE = "done"
    TIMED_OUT = "timed_out"


@dataclass
class AgentSession:
    agent_id: str          # "0", "1", "2"
    page: Any              # live browser tab handle
    ready: bool = False


@dataclass
class Completion:
    text: str
    state: DetectorState   # DONE or TIMED_OUT
    polls: int
    elapsed_sec: float


@dataclass
class SendResult:
    account_id: str
    prompt: str
    response: str
    duration_sec: float


@dataclass
class DiscussionRole:
    account_id: str
    name: str
    role: str


@dataclass
class DiscussionTurn:
    round: int
    account_id: str
    name: str
    role: str
    prompt: str
    response: str
    failed: bool = False


@dataclass
class DiscussionResult:
    question: str
    rounds: int
    turns: list[DiscussionTurn]
    final_answer: str
    summary: str
    total_duration_sec: float
    room_id: str | None = None


@dataclass
class Subtask:
    id: int
    task: str
    focus: str


@dataclass
class SubtaskResult:
    subtask: Subtask
    account_id: str
    prompt: str
    response: str
    failed: bool = False


@dataclass
class ReviewAssignment:
    reviewer_account_id: str
    target_account_id: str
    target_result: SubtaskResult


@dataclass
class ReviewResult:
    assignment: ReviewAssignment
    prompt: str
    response: str
    failed: bool = False


@dataclass
class ParallelDiscussionResult:
    question: str
    subtasks: list[Subtask]
    used_default_subtasks: bool
    executions: list[SubtaskResult]
    reviews: list[ReviewResult]
    final_answer: str
    coordinator: str
    total_duration_sec: float
    room_id: str | None = None
    phases_completed: list[str] = field(default_factory=list)
