"""
Seeded shuffle for question presentation order

Deterministic for a given (items, seed) pair so that a resumed attempt shows
the same order as on first load. NOT cryptographically secure; only use it
where a consistent-but-varied order is the goal.
"""
from typing import Iterator, List, Sequence, TypeVar

T = TypeVar("T")

LCG_MULTIPLIER = 9301
LCG_INCREMENT = 49297
LCG_MODULUS = 233280


def _to_int32(value: int) -> int:
    """Wrap to a signed 32-bit integer (JavaScript bitwise semantics)"""
    return ((value + 0x80000000) & 0xFFFFFFFF) - 0x80000000


def _code_units(seed: str) -> Iterator[int]:
    # UTF-16 code units, so astral characters hash as two surrogates
    data = seed.encode("utf-16-le", "surrogatepass")
    for i in range(0, len(data), 2):
        yield data[i] | (data[i + 1] << 8)


def seed_hash(seed: str) -> int:
    """Multiplicative string hash (hash * 31 + code) folded to 32 bits"""
    value = 0
    for code in _code_units(seed):
        value = _to_int32(_to_int32(value << 5) - value + code)
    return value


def seeded_shuffle(items: Sequence[T], seed: str) -> List[T]:
    """
    Fisher-Yates shuffle driven by a linear congruential generator

    Args:
        items: Items to reorder (left untouched)
        seed: Non-empty seed string, normally the attempt id

    Returns:
        A new list holding a permutation of items
    """
    if not seed:
        raise ValueError("seed must be a non-empty string")

    result = list(items)
    state = seed_hash(seed)

    for i in range(len(result) - 1, 0, -1):
        # Python's % keeps the state in [0, LCG_MODULUS), so j is always in [0, i]
        state = (state * LCG_MULTIPLIER + LCG_INCREMENT) % LCG_MODULUS
        j = int(state / LCG_MODULUS * (i + 1))
        result[i], result[j] = result[j], result[i]

    return result


def question_seed(attempt_id, enrollment_id, is_reassignment: bool) -> str:
    """
    Seed for an attempt's question order

    Reassignments append the enrollment id so a retake never replays the
    order the student saw on an earlier attempt.
    """
    if is_reassignment:
        return f"{attempt_id}{enrollment_id}"
    return str(attempt_id)
