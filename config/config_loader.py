"""Load settings.yaml into typed dataclasses. Applies environment overrides."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


@dataclass
class BrowserConfig:
    cdp_endpoint: str
    app_url: str
    account_url_template: str
    accounts: list[str] = field(default_factory=lambda: ["0", "1", "2"])
    navigation_timeout_ms: int = 30000
    post_navigation_delay_ms: int = 3000
    ready_timeout_ms: int = 5000
    overlay_click_timeout_ms: int = 1000
    overlay_settle_ms: int = 500
    post_input_delay_ms: int = 500

    def account_url(self, account_id: str) -> str:
        """Canonical URL for an account: bare app URL for "0", indexed sub-path otherwise."""
        if account_id == "0":
            return self.app_url
        return self.account_url_template.format(account=account_id)


@dataclass
class DetectorConfig:
    """Thresholds of the completion state machine. Times in seconds."""

    grace_sec: float = 3.0
    poll_interval_sec: float = 0.5
    ceiling_sec: float = 180.0
    stable_polls: int = 5
    settle_sec: float = 2.0
    min_response_chars: int = 10
    # Lenient policy: on TIMED_OUT return the last text instead of raising.
    return_partial_on_timeout: bool = True
    extraction_failed_sentinel: str = "[Response extraction failed]"


@dataclass
class ExtractionStrategy:
    selector: str
    scope: str | None = None  # query inside the first match of this selector


@dataclass
class SelectorsConfig:
    ready: list[str] = field(default_factory=list)
    input: list[str] = field(default_factory=list)
    send_buttons: list[str] = field(default_factory=list)
    overlays: list[str] = field(default_factory=list)
    stop_generation: list[str] = field(default_factory=list)
    loading: list[str] = field(default_factory=list)
    extraction: list[ExtractionStrategy] = field(default_factory=list)
    stopped_phrases: list[str] = field(default_factory=list)


@dataclass
class RoleConfig:
    account: str
    name: str
    role: str


@dataclass
class SubtaskTemplate:
    task: str
    focus: str


@dataclass
class ParallelConfig:
    participants: list[str]
    coordinator: str
    default_subtasks: list[SubtaskTemplate] = field(default_factory=list)


@dataclass
class DiscussionConfig:
    rounds: int
    max_rounds: int
    panel: list[RoleConfig]
    parallel: ParallelConfig


@dataclass
class PromptsConfig:
    opening: str
    critique: str
    final: str
    split: str
    execute: str
    review: str
    summarize: str


@dataclass
class StorageConfig:
    db_path: Path
    output_dir: Path


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 3000


@dataclass
class AppConfig:
    browser: BrowserConfig
    detector: DetectorConfig
    selectors: SelectorsConfig
    discussion: DiscussionConfig
    prompts: PromptsConfig
    storage: StorageConfig
    server: ServerConfig


def _load_selectors(raw: dict) -> SelectorsConfig:
    return SelectorsConfig(
        ready=[str(s) for s in raw.get("ready", [])],
        input=[str(s) for s in raw.get("input", [])],
        send_buttons=[str(s) for s in raw.get("send_buttons", [])],
        overlays=[str(s) for s in raw.get("overlays", [])],
        stop_generation=[str(s) for s in raw.get("stop_generation", [])],
        loading=[str(s) for s in raw.get("loading", [])],
        extraction=[
            ExtractionStrategy(selector=str(s["selector"]), scope=s.get("scope"))
            for s in raw.get("extraction", [])
        ],
        stopped_phrases=[str(s) for s in raw.get("stopped_phrases", [])],
    )


def _load_discussion(raw: dict) -> DiscussionConfig:
    panel = [
        RoleConfig(account=str(r["account"]), name=str(r["name"]), role=str(r["role"]))
        for r in raw["panel"]
    ]
    if len(panel) != 3:
        raise ValueError(f"discussion.panel must have exactly 3 roles, got {len(panel)}")

    parallel_raw = raw["parallel"]
    participants = [str(p) for p in parallel_raw["participants"]]
    if len(participants) != 3:
        raise ValueError(f"discussion.parallel.participants must have exactly 3 entries, got {len(participants)}")
    default_subtasks = [
        SubtaskTemplate(task=str(s["task"]), focus=str(s["focus"]))
        for s in parallel_raw.get("default_subtasks", [])
    ]
    if len(default_subtasks) != 3:
        raise ValueError("discussion.parallel.default_subtasks must have exactly 3 entries")

    return DiscussionConfig(
        rounds=int(raw["rounds"]),
        max_rounds=int(raw["max_rounds"]),
        panel=panel,
        parallel=ParallelConfig(
            participants=participants,
            coordinator=str(parallel_raw["coordinator"]),
            default_subtasks=default_subtasks,
        ),
    )


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing, ValueError if the
    discussion panel is not a 3-participant panel.
    Environment variables COUNCIL_CDP_ENDPOINT, COUNCIL_DB_PATH and
    COUNCIL_PORT override the file values.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    browser_raw = raw["browser"]
    browser = BrowserConfig(
        cdp_endpoint=str(browser_raw["cdp_endpoint"]),
        app_url=str(browser_raw["app_url"]),
        account_url_template=str(browser_raw["account_url_template"]),
        accounts=[str(a) for a in browser_raw.get("accounts", ["0", "1", "2"])],
        navigation_timeout_ms=int(browser_raw.get("navigation_timeout_ms", 30000)),
        post_navigation_delay_ms=int(browser_raw.get("post_navigation_delay_ms", 3000)),
        ready_timeout_ms=int(browser_raw.get("ready_timeout_ms", 5000)),
        overlay_click_timeout_ms=int(browser_raw.get("overlay_click_timeout_ms", 1000)),
        overlay_settle_ms=int(browser_raw.get("overlay_settle_ms", 500)),
        post_input_delay_ms=int(browser_raw.get("post_input_delay_ms", 500)),
    )

    detector_raw = raw.get("detector", {})
    detector = DetectorConfig(
        grace_sec=float(detector_raw.get("grace_sec", 3.0)),
        poll_interval_sec=float(detector_raw.get("poll_interval_sec", 0.5)),
        ceiling_sec=float(detector_raw.get("ceiling_sec", 180.0)),
        stable_polls=int(detector_raw.get("stable_polls", 5)),
        settle_sec=float(detector_raw.get("settle_sec", 2.0)),
        min_response_chars=int(detector_raw.get("min_response_chars", 10)),
        return_partial_on_timeout=bool(detector_raw.get("return_partial_on_timeout", True)),
        extraction_failed_sentinel=str(
            detector_raw.get("extraction_failed_sentinel", "[Response extraction failed]")
        ),
    )

    prompts_raw = raw["prompts"]
    prompts = PromptsConfig(
        opening=prompts_raw["opening"],
        critique=prompts_raw["critique"],
        final=prompts_raw["final"],
        split=prompts_raw["split"],
        execute=prompts_raw["execute"],
        review=prompts_raw["review"],
        summarize=prompts_raw["summarize"],
    )

    storage_raw = raw.get("storage", {})
    storage = StorageConfig(
        db_path=Path(storage_raw.get("db_path", "./data/council.db")),
        output_dir=Path(storage_raw.get("output_dir", "./output")),
    )

    server_raw = raw.get("server", {})
    server = ServerConfig(
        host=str(server_raw.get("host", "0.0.0.0")),
        port=int(server_raw.get("port", 3000)),
    )

    endpoint = os.environ.get("COUNCIL_CDP_ENDPOINT", "").strip()
    if endpoint:
        logger.info("CDP endpoint overridden from environment: %s", endpoint)
        browser.cdp_endpoint = endpoint
    db_path = os.environ.get("COUNCIL_DB_PATH", "").strip()
    if db_path:
        storage.db_path = Path(db_path)
    port = os.environ.get("COUNCIL_PORT", "").strip()
    if port:
        server.port = int(port)

    return AppConfig(
        browser=browser,
        detector=detector,
        selectors=_load_selectors(raw["selectors"]),
        discussion=_load_discussion(raw["discussion"]),
        prompts=prompts,
        storage=storage,
        server=server,
    )
