"""Rich console output and markdown file save for discussion results."""

import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.text import Text

from council.models import DiscussionResult, DiscussionTurn, ParallelDiscussionResult

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _preview(content: str, words: int = 50) -> str:
    """Return first N words of a response."""
    all_words = content.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def print_turn(turn: DiscussionTurn) -> None:
    console.print(
        Panel(
            _preview(turn.response),
            title=f"[bold]{turn.name}[/bold] (account {turn.account_id})",
            subtitle=f"round {turn.round}",
            border_style="red" if turn.failed else "dim",
        )
    )


def print_discussion(result: DiscussionResult) -> None:
    console.print(Rule("[bold cyan]Discussion[/bold cyan]"))
    for turn in result.turns:
        print_turn(turn)
    console.print(Rule("[bold green]Final Answer[/bold green]"))
    console.print(Text(f"{result.summary} | Duration: {result.total_duration_sec:.1f}s", style="dim"))
    console.print(Markdown(result.final_answer))


def print_parallel(result: ParallelDiscussionResult) -> None:
    console.print(Rule("[bold cyan]Subtasks[/bold cyan]"))
    source = "default decomposition" if result.used_default_subtasks else f"split by account {result.coordinator}"
    console.print(Text(source, style="dim"))
    for r in result.executions:
        console.print(
            Panel(
                _preview(r.response),
                title=f"[bold]#{r.subtask.id} {r.subtask.focus}[/bold] (account {r.account_id})",
                subtitle=r.subtask.task[:60],
                border_style="red" if r.failed else "dim",
            )
        )
    console.print(Rule("[bold cyan]Cross-reviews[/bold cyan]"))
    for r in result.reviews:
        a = r.assignment
        console.print(
            Panel(
                _preview(r.response),
                title=f"[bold]{a.reviewer_account_id} -> {a.target_account_id}[/bold]",
                border_style="red" if r.failed else "dim",
            )
        )
    console.print(Rule("[bold green]Final Answer[/bold green]"))
    console.print(Text(f"Summarized by account {result.coordinator} | Duration: {result.total_duration_sec:.1f}s", style="dim"))
    console.print(Markdown(result.final_answer))


def _write(lines: list[str], question: str, output_dir: Path) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    filepath = output_dir / f"{timestamp}_{_slug(question)}.md"
    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Discussion saved to: %s", filepath)
    return filepath


def save_to_file(result: DiscussionResult, output_dir: Path) -> Path:
    """Save a serial discussion transcript as markdown. Returns the saved path."""
    lines: list[str] = [
        f"# Council Discussion: {result.question[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        "**Mode:** serial",
        f"**Rounds:** {result.rounds}",
        f"**Duration:** {result.total_duration_sec:.1f}s",
    ]
    if result.room_id:
        lines.append(f"**Room:** {result.room_id}")
    lines += ["", "---", ""]

    for turn in result.turns:
        lines.append(f"## Round {turn.round}: {turn.name} (account {turn.account_id})")
        lines.append("")
        lines.append(f"*{turn.role}*")
        lines.append("")
        lines.append(turn.response)
        lines.append("")

    lines += ["## Final Answer", "", result.final_answer, ""]
    return _write(lines, result.question, output_dir)


def save_parallel_to_file(result: ParallelDiscussionResult, output_dir: Path) -> Path:
    """Save a parallel discussion transcript as markdown. Returns the saved path."""
    lines: list[str] = [
        f"# Council Discussion: {result.question[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        "**Mode:** parallel",
        f"**Coordinator:** account {result.coordinator}",
        f"**Subtasks:** {'default' if result.used_default_subtasks else 'split'}",
        f"**Duration:** {result.total_duration_sec:.1f}s",
    ]
    if result.room_id:
        lines.append(f"**Room:** {result.room_id}")
    lines += ["", "---", "", "## Phase 2: Execution", ""]

    for r in result.executions:
        lines.append(f"### Subtask {r.subtask.id} ({r.subtask.focus}) - account {r.account_id}")
        lines.append("")
        lines.append(f"*{r.subtask.task}*")
        lines.append("")
        lines.append(r.response)
        lines.append("")

    lines += ["## Phase 3: Cross-review", ""]
    for r in result.reviews:
        a = r.assignment
        lines.append(f"### Account {a.reviewer_account_id} reviews account {a.target_account_id}")
        lines.append("")
        lines.append(r.response)
        lines.append("")

    lines += ["## Phase 4: Final Answer", "", result.final_answer, ""]
    return _write(lines, result.question, output_dir)
