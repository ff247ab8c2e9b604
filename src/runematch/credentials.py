"""Account verification state shared with the matchmaking engine."""

import logging
import threading
from typing import Optional

logger = logging.getLogger(__name__)


class AccountState:
    """Verification code and verified username for the linked account.

    Written by whatever performs account verification, read by the engine
    once per operation.
    """

    def __init__(
        self,
        verification_code: Optional[str] = None,
        verified_username: Optional[str] = None,
    ) -> None:
        self._lock = threading.Lock()
        self._verification_code = verification_code
        self._verified_username = verified_username

    @property
    def verification_code(self) -> Optional[str]:
        return self._verification_code or None

    @property
    def verified_username(self) -> Optional[str]:
        return self._verified_username or None

    @property
    def verified(self) -> bool:
        return self.verification_code is not None and self.verified_username is not None

    def update(self, verification_code: Optional[str], verified_username: Optional[str]) -> None:
        with self._lock:
            self._verification_code = verification_code
            self._verified_username = verified_username
        logger.info(f"Account state updated (username={verified_username})")

    def reset(self) -> None:
        with self._lock:
            self._verification_code = None
            self._verified_username = None
