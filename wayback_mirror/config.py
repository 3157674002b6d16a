"""Configuration for mirroring jobs."""

from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_OUTPUT_ROOT = Path("downloads")
UA = "Mozilla/5.0 (WaybackHTMLMachine/1.0)"


@dataclass
class MirrorConfig:
    """Settings that control fetching, pacing and retries."""

    output_root: Path = field(default_factory=lambda: DEFAULT_OUTPUT_ROOT)
    # Minimum spacing between network operations, in seconds.
    request_delay: float = 0.2
    timeout: float = 30.0
    max_retries: int = 3
    backoff_unit: float = 2.0
    user_agent: str = UA
    raw: bool = True

    def __post_init__(self) -> None:
        self.output_root = Path(self.output_root)
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")

    @property
    def requests_per_second(self) -> float:
        """0 means unpaced."""
        if self.request_delay <= 0:
            return 0.0
        return 1.0 / self.request_delay
