"""Persisted remote-session state on disk.

The driver captures the remote browser state into a *partial* file first; once
the session is confirmed, :meth:`StateFiles.promote_partial` validates it and
swaps it into place. Status queries only look at the final file.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path

from .models import ClearSessionResponse, SessionStatus

logger = logging.getLogger("stepwatch.sessions")


class StateFiles:
    def __init__(
        self,
        state_file: str | Path,
        partial_file: str | Path,
        *,
        max_age_hours: float = 8.0,
    ) -> None:
        self.state_file = Path(state_file)
        self.partial_file = Path(partial_file)
        self.max_age_hours = max_age_hours

    def check(self, *, now: datetime | None = None) -> SessionStatus:
        try:
            stat = self.state_file.stat()
        except OSError:
            return SessionStatus(logged_in=False, has_state=False)
        modified = datetime.fromtimestamp(stat.st_mtime, UTC)
        current = now or datetime.now(UTC)
        hours_age = max(0.0, (current - modified).total_seconds() / 3600)
        return SessionStatus(
            logged_in=hours_age < self.max_age_hours,
            has_state=True,
            last_login=modified,
            hours_age=round(hours_age, 1),
        )

    def promote_partial(self) -> None:
        """Validate the partial capture and atomically make it the final state."""
        try:
            payload = json.loads(self.partial_file.read_text(encoding="utf-8"))
            cookies = payload.get("cookies") if isinstance(payload, dict) else None
            if not isinstance(cookies, list) or not cookies:
                raise ValueError("partial state has no cookies")
            os.replace(self.partial_file, self.state_file)
        except (OSError, ValueError) as exc:
            logger.error("state_promotion_failed", extra={"path": str(self.partial_file), "error": str(exc)})
            self.partial_file.unlink(missing_ok=True)
            raise
        logger.info("state_promoted", extra={"path": str(self.state_file)})

    def clear(self) -> ClearSessionResponse:
        try:
            self.state_file.unlink()
        except FileNotFoundError:
            return ClearSessionResponse(success=True, message="Session state was already clear.")
        logger.info("state_cleared", extra={"path": str(self.state_file)})
        return ClearSessionResponse(success=True, message="Session state cleared.")


__all__ = ["StateFiles"]
