"""Snapshot comparison producing ordered change events."""

from __future__ import annotations

from .engine import diff_records, diff_snapshots
from .models import Change, ChangeKind

__all__ = ["Change", "ChangeKind", "diff_records", "diff_snapshots"]
