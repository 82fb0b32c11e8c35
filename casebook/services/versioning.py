"""
Version tags for case studies.

Tags are ``"<major>.<minor>"`` strings. First submission starts at ``0.1``,
each round of incorporated feedback bumps the minor component, and
publication pins the record to ``1.0``.
"""
from __future__ import annotations

import logging
import re
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

_VERSION_RE = re.compile(r"^\s*(\d+)\.(\d+)\s*$")


class VersionPolicy:
    INITIAL_VERSION = "0.1"
    PUBLISHED_VERSION = "1.0"

    @staticmethod
    def parse(version: Optional[str]) -> Optional[Tuple[int, int]]:
        if not version:
            return None
        match = _VERSION_RE.match(str(version))
        if not match:
            return None
        return int(match.group(1)), int(match.group(2))

    def initial(self) -> str:
        return self.INITIAL_VERSION

    def next_feedback_version(self, current: Optional[str]) -> str:
        """``M.N`` -> ``M.(N+1)``; a missing or unreadable tag counts as ``0.1``."""
        parsed = self.parse(current)
        if parsed is None:
            if current:
                logger.warning("Unreadable version tag %r, rebasing on %s", current, self.INITIAL_VERSION)
            parsed = self.parse(self.INITIAL_VERSION)
        major, minor = parsed
        return f"{major}.{minor + 1}"

    def published(self) -> str:
        return self.PUBLISHED_VERSION


version_policy = VersionPolicy()
