# CirrusFlags/cirrusflags/tests/test_hashing.py
"""
Unit tests for the MurmurHash3 implementation and bucket mapping.
"""


from cirrusflags.services.hashing import default_hash, murmur3_32


# ---------- murmur3_32 ----------


def test_murmur3_known_vectors():
    assert murmur3_32(b"") == 0
    assert murmur3_32(b"", 1) == 0x514E28B7
    assert murmur3_32(b"hello") == 613153351
    assert murmur3_32(b"foo") == 4138058784


def test_murmur3_seed_changes_hash():
    assert murmur3_32(b"checkout-v2", 0) != murmur3_32(b"checkout-v2", 42)


def test_murmur3_handles_every_tail_length():
    # 1, 2, 3 and 4 byte inputs exercise each tail branch and one full block
    hashes = {murmur3_32(b"abcd"[:n]) for n in range(1, 5)}
    assert len(hashes) == 4
    assert all(0 <= h < 2**32 for h in hashes)


# ---------- default_hash ----------


def test_default_hash_is_deterministic_and_in_range():
    first = default_hash("checkout-v2:user-1", "default")
    assert first == default_hash("checkout-v2:user-1", "default")
    assert 0 <= first < 100
    # two decimal places
    assert round(first, 2) == first


def test_default_hash_depends_on_salt():
    buckets = {default_hash("flag:user-7", salt) for salt in ("a", "b", "c", "d")}
    assert len(buckets) > 1


def test_default_hash_distribution_is_roughly_uniform():
    buckets = [default_hash(f"flag:user-{i}") for i in range(10000)]
    below_half = sum(1 for b in buckets if b < 50)
    assert 4700 <= below_half <= 5300
