"""Exceptions raised by templateswap."""

from pathlib import Path


class TemplateSwapError(Exception):
    """Base class for all templateswap errors."""


class TemplateCompileError(TemplateSwapError):
    """Raised when a template directory cannot be compiled."""

    def __init__(self, message: str, directory: Path | None = None, template: str | None = None):
        self.directory = directory
        self.template = template
        super().__init__(message)


class TemplateNotFoundError(TemplateSwapError, KeyError):
    """Raised when rendering a template name that is not in the set."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(name)

    def __str__(self) -> str:
        return f"template not found: {self.name}"


class NotifierSetupError(TemplateSwapError):
    """Raised when a change notifier cannot watch the requested path."""

    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot watch {path}: {reason}")


class StreamClosed(TemplateSwapError):
    """Raised by a notifier stream once it is closed and drained."""
