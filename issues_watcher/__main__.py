"""Allow ``python -m issues_watcher``."""

from __future__ import annotations

from issues_watcher.cli import main

raise SystemExit(main())
