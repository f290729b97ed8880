"""Channel name and participant id generation."""
import random
import string
import time
from typing import Callable, Optional, Tuple

DEFAULT_CHANNEL_PREFIX = "aura"

# Participant ids are drawn from [UID_MIN, UID_MAX)
UID_MIN = 1
UID_MAX = 100000
MAX_UID_ATTEMPTS = 16

_BASE36 = string.digits + string.ascii_lowercase


def generate_channel_name(
    prefix: str = DEFAULT_CHANNEL_PREFIX,
    clock: Callable[[], float] = time.time,
    rng: Optional[random.Random] = None,
) -> str:
    """
    Generate a channel name for one call attempt.

    Format is ``{prefix}-{epoch milliseconds}-{6 base36 chars}``. Uniqueness is
    not cryptographically bounded; channels live for a single call.
    """
    rng = rng or random
    suffix = "".join(rng.choice(_BASE36) for _ in range(6))
    return f"{prefix}-{int(clock() * 1000)}-{suffix}"


def generate_uids(rng: Optional[random.Random] = None) -> Tuple[int, int]:
    """
    Generate a distinct (user_uid, agent_uid) pair.

    Returns:
        Tuple of user and agent participant ids

    Raises:
        RuntimeError: If no distinct agent id was drawn within the retry cap
    """
    rng = rng or random
    user_uid = rng.randrange(UID_MIN, UID_MAX)
    for _ in range(MAX_UID_ATTEMPTS):
        agent_uid = rng.randrange(UID_MIN, UID_MAX)
        if agent_uid != user_uid:
            return user_uid, agent_uid
    raise RuntimeError("Could not generate distinct participant ids")
