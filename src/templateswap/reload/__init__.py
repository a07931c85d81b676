"""Automatic reloading of template sets when their files change.

- Directory watching via watchfiles
- Full recompilation on every change event
- Guarded swap into the shared artifact store
- Failures reported on a bounded error channel
"""

from templateswap.reload.config import ReloadConfig
from templateswap.reload.coordinator import AutoReload, CoordinatorState, ReloadCoordinator, start_auto_reload
from templateswap.reload.diagnostics import Diagnostic, DiagnosticKind, ErrorChannel, OverflowPolicy
from templateswap.reload.watcher import (
    ChangeEvent,
    ChangeNotifier,
    NotifierStream,
    QueueNotifier,
    WatchfilesNotifier,
)

__all__ = [
    "AutoReload",
    "ChangeEvent",
    "ChangeNotifier",
    "CoordinatorState",
    "Diagnostic",
    "DiagnosticKind",
    "ErrorChannel",
    "NotifierStream",
    "OverflowPolicy",
    "QueueNotifier",
    "ReloadConfig",
    "ReloadCoordinator",
    "WatchfilesNotifier",
    "start_auto_reload",
]
