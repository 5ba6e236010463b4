"""Processing history: outcome log and rolling aggregates."""

from creditpipe.history.recorder import HistoryRecorder

__all__ = ["HistoryRecorder"]
