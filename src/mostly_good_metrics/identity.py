"""
Identity and session state: user id, anonymous id, session id, and the
$identify debounce record. Everything is persisted through StateStorage.
"""

import logging
from typing import Optional

from mostly_good_metrics.models.event import UserProfile
from mostly_good_metrics.storage import StateStorage
from mostly_good_metrics.utils import generate_anonymous_id, generate_uuid, identify_hash, now_ms

logger = logging.getLogger(__name__)

USER_ID_KEY = "user_id"
ANONYMOUS_ID_KEY = "anonymous_id"
SESSION_ID_KEY = "session_id"
IDENTIFY_HASH_KEY = "identify_hash"
IDENTIFY_TIMESTAMP_KEY = "identify_timestamp"

IDENTIFY_RESEND_MS = 24 * 60 * 60 * 1000


class IdentityManager:
    def __init__(self, state: StateStorage):
        self._state = state
        self.user_id: Optional[str] = None
        self.anonymous_id: Optional[str] = None
        self.session_id: Optional[str] = None

    @property
    def effective_user_id(self) -> str:
        """Identified user id if set, else the anonymous id."""
        return self.user_id or self.anonymous_id or ""

    async def restore(self) -> None:
        self.user_id = await self._state.get_string(USER_ID_KEY)
        self.session_id = await self._state.get_string(SESSION_ID_KEY)
        self.anonymous_id = await self._state.get_string(ANONYMOUS_ID_KEY)
        if self.anonymous_id is None:
            self.anonymous_id = generate_anonymous_id()
            await self._state.set_string(ANONYMOUS_ID_KEY, self.anonymous_id)
            logger.debug(f"Generated new anonymous id: {self.anonymous_id}")
        logger.debug(f"Restored identity user_id={self.user_id} anonymous_id={self.anonymous_id}")

    async def set_user_id(self, user_id: str) -> bool:
        """Persist a new user id. Returns True if the effective user changed."""
        previous = self.effective_user_id
        self.user_id = user_id
        await self._state.set_string(USER_ID_KEY, user_id)
        return previous != self.effective_user_id

    async def reset(self) -> bool:
        """Clear the user id and debounce state, rotate the session.

        Returns True if the effective user changed.
        """
        previous = self.effective_user_id
        self.user_id = None
        await self._state.set_string(USER_ID_KEY, None)
        await self.clear_identify_state()
        await self.start_new_session()
        return previous != self.effective_user_id

    async def start_new_session(self) -> str:
        session_id = generate_uuid()
        await self._state.set_string(SESSION_ID_KEY, session_id)
        self.session_id = session_id
        logger.debug(f"Started new session: {session_id}")
        return session_id

    # $identify debounce

    async def should_send_identify(self, user_id: str, profile: UserProfile) -> bool:
        """True if the profile hash changed or the last send is over 24h old."""
        current = identify_hash(user_id, profile.email, profile.name)
        stored = await self._state.get_string(IDENTIFY_HASH_KEY)
        sent_at_raw = await self._state.get_string(IDENTIFY_TIMESTAMP_KEY)
        try:
            sent_at = int(sent_at_raw) if sent_at_raw is not None else None
        except ValueError:
            sent_at = None

        hash_changed = stored != current
        expired = sent_at is None or now_ms() - sent_at > IDENTIFY_RESEND_MS
        logger.debug(f"$identify debounce: hash_changed={hash_changed} expired={expired}")
        return hash_changed or expired

    async def record_identify(self, user_id: str, profile: UserProfile) -> None:
        await self._state.set_string(IDENTIFY_HASH_KEY, identify_hash(user_id, profile.email, profile.name))
        await self._state.set_string(IDENTIFY_TIMESTAMP_KEY, str(now_ms()))

    async def clear_identify_state(self) -> None:
        await self._state.set_string(IDENTIFY_HASH_KEY, None)
        await self._state.set_string(IDENTIFY_TIMESTAMP_KEY, None)
