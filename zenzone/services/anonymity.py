"""Stable pseudonyms for students, so psychiatrists never see real usernames."""

from zenzone.core import config
from zenzone.models.user import STUDENT_ROLE, User

ADJECTIVES = (
    'Quiet', 'Brave', 'Gentle', 'Strong', 'Peaceful', 'Thoughtful', 'Kind', 'Wise',
    'Calm', 'Bright', 'Hopeful', 'Serene', 'Patient', 'Caring', 'Mindful', 'Resilient',
    'Creative', 'Focused', 'Balanced', 'Steady', 'Curious', 'Open', 'Determined', 'Positive',
)

ANIMALS = (
    'Butterfly', 'Dove', 'Owl', 'Turtle', 'Deer', 'Swan', 'Robin', 'Panda',
    'Dolphin', 'Cat', 'Rabbit', 'Koala', 'Seal', 'Penguin', 'Fox', 'Wolf',
    'Bear', 'Eagle', 'Whale', 'Hummingbird', 'Otter', 'Squirrel', 'Hedgehog', 'Bee',
)


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def hash_seed(seed: object) -> int:
    # Same arithmetic as the web client: UTF-16 code units, 32-bit signed wraparound.
    encoded = str(seed or '').encode('utf-16-le')
    result = 0
    for offset in range(0, len(encoded), 2):
        unit = int.from_bytes(encoded[offset:offset + 2], 'little')
        result = _to_int32((result << 5) - result + unit)
    return abs(result)


def deterministic_display_name(seed: object) -> str:
    h = hash_seed(seed or 'seed')
    adjective = ADJECTIVES[h % len(ADJECTIVES)]
    animal = ANIMALS[(h // 7) % len(ANIMALS)]
    number = (h % 97) + 3
    return f'{adjective}{animal}{number}'


def display_name(user: User | None) -> str:
    if user is None:
        return 'Unknown'
    if config.ANONYMIZE_STUDENTS and user.role == STUDENT_ROLE:
        return deterministic_display_name(user.id)
    return user.username
