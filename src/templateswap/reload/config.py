"""Configuration for the reload coordinator."""

from dataclasses import dataclass

from templateswap.reload.diagnostics import DEFAULT_CAPACITY, OverflowPolicy


@dataclass
class ReloadConfig:
    """Configuration for automatic template reloading."""

    # Bounded size of the error channel handed back to the host
    error_capacity: int = DEFAULT_CAPACITY

    # What happens when the host stops draining diagnostics
    overflow_policy: OverflowPolicy = OverflowPolicy.BLOCK

    # fnmatch pattern for file names that count as templates
    pattern: str = "*"

    # Passed through to watchfiles; the coordinator itself never debounces
    debounce_ms: int = 50
    step_ms: int = 50
    force_polling: bool | None = None

    # Compile once right after registration, before the first change event
    compile_on_start: bool = False

    def __post_init__(self) -> None:
        self.overflow_policy = OverflowPolicy(self.overflow_policy)
        if self.error_capacity < 1:
            raise ValueError(f"error_capacity must be at least 1, got {self.error_capacity}")
        if self.debounce_ms < 0 or self.step_ms < 0:
            raise ValueError("debounce_ms and step_ms must not be negative")
