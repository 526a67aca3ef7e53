"""
Transient registration sessions.

A candidate identity lives here, keyed by mobile number, between the
registration challenge and its confirmation.  Nothing is written to the
database until the code is answered correctly.  Sessions are held in
process memory, so a restart discards every pending registration.
"""
from __future__ import annotations

import datetime
import enum
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from django.utils import timezone

Clock = Callable[[], datetime.datetime]


@dataclass
class RegistrationSession:
    mobile_number: str
    national_id: str
    code: str
    expires_at: datetime.datetime
    attempts: int = 0


class CheckOutcome(enum.Enum):
    NOT_FOUND = 'not_found'
    EXPIRED = 'expired'
    MISMATCH = 'mismatch'
    EXHAUSTED = 'exhausted'
    MATCH = 'match'


class RegistrationSessionStore:
    """Process-wide keyed store of pending registrations.

    Expiry is evaluated lazily against the injected clock whenever a
    session is read; :meth:`purge_expired` sweeps stale entries and runs
    each time a new session is opened.  Every check-and-mutate step is
    performed under one lock so concurrent requests for the same mobile
    number cannot interleave.
    """

    def __init__(self, ttl: datetime.timedelta, max_attempts: int = 3, clock: Optional[Clock] = None) -> None:
        self.ttl = ttl
        self.max_attempts = max_attempts
        self.clock: Clock = clock or timezone.now
        self._sessions: Dict[str, RegistrationSession] = {}
        self._lock = threading.RLock()

    def open(self, mobile_number: str, national_id: str, code: str) -> RegistrationSession:
        """Start a session for ``mobile_number``, replacing any earlier one."""
        with self._lock:
            self.purge_expired()
            session = RegistrationSession(
                mobile_number=mobile_number,
                national_id=national_id,
                code=code,
                expires_at=self.clock() + self.ttl,
            )
            self._sessions[mobile_number] = session
            return session

    def get(self, mobile_number: str) -> Optional[RegistrationSession]:
        with self._lock:
            return self._sessions.get(mobile_number)

    def check(self, mobile_number: str, code: str, matches: Callable[[str, str], bool]) -> Tuple[CheckOutcome, Optional[RegistrationSession]]:
        """Check ``code`` against the pending session and apply the outcome.

        Expired and exhausted sessions are discarded, a mismatch bumps the
        attempt counter, a match pops the session and hands it back.
        """
        with self._lock:
            session = self._sessions.get(mobile_number)
            if session is None:
                return CheckOutcome.NOT_FOUND, None
            if self.clock() > session.expires_at:
                del self._sessions[mobile_number]
                return CheckOutcome.EXPIRED, session
            if not matches(session.code, code):
                session.attempts += 1
                if session.attempts >= self.max_attempts:
                    del self._sessions[mobile_number]
                    return CheckOutcome.EXHAUSTED, session
                return CheckOutcome.MISMATCH, session
            del self._sessions[mobile_number]
            return CheckOutcome.MATCH, session

    def discard(self, mobile_number: str) -> None:
        with self._lock:
            self._sessions.pop(mobile_number, None)

    def purge_expired(self) -> int:
        with self._lock:
            now = self.clock()
            stale = [k for k, s in self._sessions.items() if now > s.expires_at]
            for k in stale:
                del self._sessions[k]
            return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, mobile_number: str) -> bool:
        with self._lock:
            return mobile_number in self._sessions
