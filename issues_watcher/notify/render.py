"""Render change batches as Slack mrkdwn digests.

Every :class:`~issues_watcher.diff.ChangeKind` maps to exactly one renderer;
the table is checked at import time so adding a kind without a renderer
fails loudly instead of dropping notifications.

Usage
-----
>>> text = render_digest("octo/reef", changes)
>>> print(text.splitlines()[0])
*octo/reef*: 2 changes

"""

from __future__ import annotations

import typing as typ

from issues_watcher.diff import Change, ChangeKind
from issues_watcher.snapshot import IssueState

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from issues_watcher.snapshot import IssueRecord

    type Renderer = cabc.Callable[[Change], str]

DEFAULT_MAX_LINES = 50
_NO_COLUMN = "no column"


def escape_mrkdwn(text: str) -> str:
    """Escape the three characters Slack treats as control sequences."""
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _link(record: IssueRecord) -> str:
    """Return a Slack link for the record, or its bare id without a URL."""
    label = escape_mrkdwn(record.id)
    if record.url:
        return f"<{record.url}|{label}>"
    return label


def _subject(record: IssueRecord) -> str:
    return f"{_link(record)} {escape_mrkdwn(record.title)}"


def _format_delta(added: frozenset[str], removed: frozenset[str]) -> str:
    parts = [f"+{escape_mrkdwn(name)}" for name in sorted(added)]
    parts.extend(f"-{escape_mrkdwn(name)}" for name in sorted(removed))
    return ", ".join(parts)


def _render_added(change: Change) -> str:
    record = change.record
    if record.state is IssueState.CLOSED:
        return f"new (closed): {_subject(record)}"
    return f"new: {_subject(record)}"


def _render_removed(change: Change) -> str:
    return f"no longer tracked: {_subject(change.record)}"


def _render_state(change: Change) -> str:
    verb = "closed" if change.record.state is IssueState.CLOSED else "reopened"
    return f"{verb}: {_subject(change.record)}"


def _render_labels(change: Change) -> str:
    delta = _format_delta(change.labels_added, change.labels_removed)
    return f"labels {delta} on {_link(change.record)}"


def _render_assignees(change: Change) -> str:
    delta = _format_delta(change.assignees_added, change.assignees_removed)
    return f"assignees {delta} on {_link(change.record)}"


def _render_column(change: Change) -> str:
    before = change.before.project_column if change.before else None
    after = change.after.project_column if change.after else None
    source = escape_mrkdwn(before or _NO_COLUMN)
    destination = escape_mrkdwn(after or _NO_COLUMN)
    return f"moved {_link(change.record)} from _{source}_ to _{destination}_"


_RENDERERS: dict[ChangeKind, Renderer] = {
    ChangeKind.ADDED: _render_added,
    ChangeKind.REMOVED: _render_removed,
    ChangeKind.STATE_CHANGED: _render_state,
    ChangeKind.LABELS_CHANGED: _render_labels,
    ChangeKind.ASSIGNEES_CHANGED: _render_assignees,
    ChangeKind.COLUMN_CHANGED: _render_column,
}

_MISSING_RENDERERS = set(ChangeKind) - set(_RENDERERS)
if _MISSING_RENDERERS:  # pragma: no cover - import-time guard
    msg = f"no renderer for change kinds: {sorted(_MISSING_RENDERERS)}"
    raise RuntimeError(msg)


def render_change(change: Change) -> str:
    """Render a single change as one line of mrkdwn."""
    return _RENDERERS[change.kind](change)


def render_digest(
    target_key: str,
    changes: cabc.Sequence[Change],
    *,
    max_lines: int = DEFAULT_MAX_LINES,
) -> str:
    """Render one cycle's changes as a single digest message.

    Parameters
    ----------
    target_key
        Watched target the changes belong to.
    changes
        Ordered change batch.
    max_lines
        Maximum number of change lines; the rest are summarised in a footer.

    Returns
    -------
    str
        Header line followed by one bullet per change.

    """
    count = len(changes)
    noun = "change" if count == 1 else "changes"
    lines = [f"*{escape_mrkdwn(target_key)}*: {count} {noun}"]
    shown = changes[:max_lines] if max_lines > 0 else changes
    lines.extend(f"• {render_change(change)}" for change in shown)
    hidden = count - len(shown)
    if hidden > 0:
        lines.append(f"… and {hidden} more")
    return "\n".join(lines)
