import uuid

import pytest

from scrolls.utils.shuffle import question_seed, seed_hash, seeded_shuffle


def test_seed_hash_matches_multiplicative_string_hash():
    assert seed_hash("a") == 97
    # (97 << 5) - 97 + 98
    assert seed_hash("ab") == 3105


def test_seed_hash_wraps_to_signed_32_bits():
    value = seed_hash("x" * 64)
    assert -2**31 <= value < 2**31


def test_known_two_item_order():
    # state 97 -> (97 * 9301 + 49297) % 233280 = 18374 -> j = 0
    assert seeded_shuffle([0, 1], "a") == [1, 0]


def test_same_seed_same_order():
    items = list(range(20))
    seed = str(uuid.uuid4())
    assert seeded_shuffle(items, seed) == seeded_shuffle(items, seed)


def test_result_is_a_permutation_and_input_untouched():
    items = list(range(25))
    original = list(items)
    shuffled = seeded_shuffle(items, "attempt-123")
    assert items == original
    assert sorted(shuffled) == original
    assert shuffled is not items


def test_every_seed_yields_a_valid_permutation():
    items = list(range(12))
    for _ in range(200):
        seed = str(uuid.uuid4())
        assert sorted(seeded_shuffle(items, seed)) == items


def test_negative_hash_seed_still_permutes():
    seed = next(s for s in (f"seed-{n}" * 5 for n in range(1000)) if seed_hash(s) < 0)
    assert sorted(seeded_shuffle(list(range(10)), seed)) == list(range(10))


def test_different_seeds_usually_differ():
    items = list(range(15))
    orders = {tuple(seeded_shuffle(items, str(uuid.uuid4()))) for _ in range(10)}
    assert len(orders) > 1


@pytest.mark.parametrize("items", [[], ["only"]])
def test_trivial_lists(items):
    assert seeded_shuffle(items, "seed") == items


def test_empty_seed_rejected():
    with pytest.raises(ValueError):
        seeded_shuffle([1, 2, 3], "")


def test_question_seed_for_original_attempt():
    attempt_id = uuid.uuid4()
    assert question_seed(attempt_id, uuid.uuid4(), False) == str(attempt_id)


def test_question_seed_for_reassignment_appends_enrollment():
    attempt_id, enrollment_id = uuid.uuid4(), uuid.uuid4()
    assert question_seed(attempt_id, enrollment_id, True) == f"{attempt_id}{enrollment_id}"
