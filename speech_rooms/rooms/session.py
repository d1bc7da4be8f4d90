"""
Client session identity and local display-name derivation.

Display names are derived on the client that renders them: the local session
is "You" and every other session gets "Speaker N" in order of first rendering.
Two clients may therefore call the same speaker by different names.
"""

import secrets
import time
from dataclasses import dataclass, field

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"

LOCAL_DISPLAY_NAME = "You"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_session_id() -> str:
    """Generate an opaque session id, e.g. 'user_k3j9x0qalz8m1q2c'."""
    random_part = "".join(secrets.choice(_BASE36) for _ in range(8))
    return f"user_{random_part}{_to_base36(int(time.time() * 1000))}"


class DisplayNames:
    """Per-client cache mapping session ids to display names."""

    def __init__(self, local_session_id: str):
        self.local_session_id = local_session_id
        self._names: dict[str, str] = {}
        self._next_speaker = 1

    def name_for(self, session_id: str) -> str:
        """Resolve (and on first use, derive) the display name for a session."""
        name = self._names.get(session_id)
        if name is not None:
            return name

        if session_id == self.local_session_id:
            name = LOCAL_DISPLAY_NAME
        else:
            name = f"Speaker {self._next_speaker}"
            self._next_speaker += 1

        self._names[session_id] = name
        return name

    def __len__(self) -> int:
        return len(self._names)


@dataclass
class Session:
    """Process-wide identity for one connected client."""

    session_id: str = field(default_factory=generate_session_id)
    display_names: DisplayNames = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.display_names = DisplayNames(self.session_id)

    def is_own(self, sender_id: str) -> bool:
        """True if an entry sent by `sender_id` was written by this client."""
        return sender_id == self.session_id

    def display_name(self, session_id: str) -> str:
        return self.display_names.name_for(session_id)
