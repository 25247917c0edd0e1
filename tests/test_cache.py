import pytest

from rvpipesim.cache import Cache, Policy, PolicyError
from rvpipesim.memory import MemoryManager


def make_policy(cache_size, block_size, associativity, hit_latency=1, miss_latency=8):
    return Policy(
        cache_size=cache_size,
        block_size=block_size,
        block_num=cache_size // block_size,
        associativity=associativity,
        hit_latency=hit_latency,
        miss_latency=miss_latency,
    )


def make_cache(policy, **kwargs):
    memory = MemoryManager()
    cache = Cache(memory, policy, **kwargs)
    return memory, cache


@pytest.mark.parametrize(
    "policy, message",
    [
        (Policy(100, 4, 25, 1, 1, 8), "Invalid Cache Size 100"),
        (Policy(64, 3, 21, 1, 1, 8), "Invalid Block Size 3"),
        (Policy(64, 16, 3, 1, 1, 8), "blockNum * blockSize != cacheSize"),
        (Policy(64, 16, 4, 3, 1, 8), "blockNum % associativity != 0"),
    ],
)
def test_invalid_policy_rejected(policy, message):
    with pytest.raises(PolicyError, match=message.replace("*", r"\*")):
        Cache(MemoryManager(), policy)


def test_read_miss_then_hit():
    memory, cache = make_cache(make_policy(64, 16, 1, hit_latency=2, miss_latency=9))
    assert cache.get_block_id(0x20) is None
    cache.get_byte(0x20)
    assert cache.statistics.num_miss == cache.statistics.num_read
    assert cache.statistics.total_cycles == 9
    misses = cache.statistics.num_miss
    cache.get_byte(0x21)
    assert cache.statistics.num_miss == misses
    assert cache.statistics.num_hit + cache.statistics.num_miss == cache.statistics.num_read


def test_block_id_within_its_set():
    policy = make_policy(128, 16, 2)
    _, cache = make_cache(policy)
    cache.get_byte(0x35)
    block_id = cache.get_block_id(0x35)
    sets = policy.block_num // policy.associativity
    set_index = (0x35 // policy.block_size) % sets
    assert block_id // policy.associativity == set_index


def test_whole_block_loaded_on_miss():
    _, cache = make_cache(make_policy(64, 16, 1))
    cache.get_byte(0x40)
    assert cache.in_cache(0x4F)
    assert not cache.in_cache(0x50)


def test_reads_memory_contents():
    memory, cache = make_cache(make_policy(64, 16, 1))
    memory.set_byte_no_cache(0x123, 0x5A)
    assert cache.get_byte(0x123) == 0x5A


def test_write_back_defers_until_eviction():
    memory, cache = make_cache(make_policy(64, 16, 1))
    cache.set_byte(0x8, 0x33)
    assert cache.get_byte(0x8) == 0x33
    assert memory.get_byte_no_cache(0x8) == 0
    cache.get_byte(0x8 + 64)  # same set, evicts the dirty block
    assert not cache.in_cache(0x8)
    assert memory.get_byte_no_cache(0x8) == 0x33


def test_write_through_on_hit():
    memory, cache = make_cache(make_policy(64, 16, 1), write_back=False)
    cache.set_byte(0x8, 0x11)
    assert memory.get_byte_no_cache(0x8) == 0
    cache.set_byte(0x8, 0x22)
    assert memory.get_byte_no_cache(0x8) == 0x22


def test_no_write_allocate_writes_to_memory():
    memory, cache = make_cache(make_policy(64, 16, 1), write_allocate=False)
    cache.set_byte(0x30, 0x44)
    assert not cache.in_cache(0x30)
    assert memory.get_byte_no_cache(0x30) == 0x44


def test_lru_replacement():
    _, cache = make_cache(make_policy(32, 16, 2))  # a single 2-way set
    a, b, c = 0x000, 0x100, 0x200
    cache.get_byte(a)
    cache.get_byte(b)
    cache.get_byte(a)
    cache.get_byte(c)
    assert cache.in_cache(a)
    assert cache.in_cache(c)
    assert not cache.in_cache(b)


def test_two_level_hierarchy():
    memory = MemoryManager()
    l2 = Cache(memory, make_policy(256, 16, 2, hit_latency=4, miss_latency=20))
    l1_policy = make_policy(64, 16, 1, hit_latency=1, miss_latency=8)
    l1 = Cache(memory, l1_policy, l2)
    memory.set_byte_no_cache(0x77, 0x99)
    assert l1.get_byte(0x77) == 0x99
    assert l2.statistics.num_read == l1_policy.block_size
    assert l2.in_cache(0x77)


def test_last_cycles():
    memory, cache = make_cache(make_policy(64, 16, 1, hit_latency=3))
    cache.get_byte(0x10)
    assert cache.last_cycles == 100
    cache.get_byte(0x10)
    assert cache.last_cycles == 3


def test_last_cycles_from_lower_level():
    memory = MemoryManager()
    l2 = Cache(memory, make_policy(256, 16, 2, hit_latency=4))
    l1 = Cache(memory, make_policy(64, 16, 1), l2)
    l2.get_byte(0x50)
    l1.get_byte(0x50)
    assert l1.last_cycles == 4


def test_statistics_report_lower_section():
    memory = MemoryManager()
    l2 = Cache(memory, make_policy(256, 16, 2))
    l1 = Cache(memory, make_policy(64, 16, 1), l2)
    assert "---------- LOWER CACHE ----------" in l1.statistics_report()
    assert "LOWER CACHE" not in l2.statistics_report()
    assert l2.statistics_report().startswith("-------- STATISTICS ----------\n")


def test_values_masked_to_byte():
    _, cache = make_cache(make_policy(64, 16, 1))
    cache.set_byte(0x4, 0x1FF)
    assert cache.get_byte(0x4) == 0x1FF & 0xFF