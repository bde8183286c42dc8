"""Explicit client session context, created on login and closed on logout."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class SessionContext:
    identity_id: str
    display_name: str = ""
    token: Optional[str] = None
    opened_at: int = field(default_factory=lambda: int(time.time()))
    closed: bool = False

    @property
    def active(self) -> bool:
        return not self.closed and bool(self.token)

    def auth_headers(self) -> Dict[str, str]:
        if not self.active:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    def close(self) -> None:
        """Forget the bearer token. The stored private key is left in place."""

        if not self.closed:
            logger.info("closing session for %s", self.identity_id)
        self.token = None
        self.closed = True

    def __enter__(self) -> "SessionContext":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
