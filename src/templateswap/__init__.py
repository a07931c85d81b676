"""templateswap - live reloading of compiled template sets.

Watches a directory of template files and swaps a freshly compiled
template set into a shared store whenever the files change.
"""

__version__ = "0.1.0"

from templateswap.errors import (
    NotifierSetupError,
    StreamClosed,
    TemplateCompileError,
    TemplateNotFoundError,
    TemplateSwapError,
)
from templateswap.reload import (
    AutoReload,
    Diagnostic,
    DiagnosticKind,
    ErrorChannel,
    OverflowPolicy,
    ReloadConfig,
    start_auto_reload,
)
from templateswap.store import ArtifactStore, ReadWriteLock, SharedLock
from templateswap.templates import TemplateSet, compile_directory

__all__ = [
    "ArtifactStore",
    "AutoReload",
    "Diagnostic",
    "DiagnosticKind",
    "ErrorChannel",
    "NotifierSetupError",
    "OverflowPolicy",
    "ReadWriteLock",
    "ReloadConfig",
    "SharedLock",
    "StreamClosed",
    "TemplateCompileError",
    "TemplateNotFoundError",
    "TemplateSet",
    "TemplateSwapError",
    "__version__",
    "compile_directory",
    "start_auto_reload",
]
