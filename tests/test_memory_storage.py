"""
MemorySessionStorage单元测试
"""

import asyncio

import pytest

from session_store.storage import MemorySessionStorage


@pytest.fixture
def store(clock):
    return MemorySessionStorage(max_age=1, auto_maintenance=False, clock=clock)


@pytest.mark.asyncio
async def test_get_unknown_session(store):
    """测试获取不存在的会话"""
    assert await store.get("missing") is None


@pytest.mark.asyncio
async def test_set_then_get(store):
    """测试保存后读取"""
    payload = {"a": 1, "nested": {"b": [1, 2, 3]}}
    await store.set("s1", payload)

    assert await store.get("s1") == payload


@pytest.mark.asyncio
async def test_returned_payload_is_a_copy(store):
    await store.set("s1", {"a": 1})

    data = await store.get("s1")
    data["a"] = 2

    assert await store.get("s1") == {"a": 1}


@pytest.mark.asyncio
async def test_nested_payload_is_not_shared(store):
    """测试嵌套数据在 set/get/touch/all 前后都不与调用方共享"""
    payload = {"cart": {"items": 1}, "tags": ["a"]}
    await store.set("s1", payload)

    payload["cart"]["items"] = 99
    payload["tags"].append("b")
    assert await store.get("s1") == {"cart": {"items": 1}, "tags": ["a"]}

    data = await store.get("s1")
    data["cart"]["items"] = 42
    assert await store.get("s1") == {"cart": {"items": 1}, "tags": ["a"]}

    touched = {"cart": {"items": 2}}
    await store.touch("s1", touched)
    touched["cart"]["items"] = 7
    [(_, listed)] = await store.all()
    listed["cart"]["items"] = 8
    assert await store.get("s1") == {"cart": {"items": 2}}


@pytest.mark.asyncio
async def test_expiry_boundary(store, clock):
    """测试过期边界: 到期前可读，到期时刻起不可读"""
    await store.set("s1", {"a": 1})

    clock.advance(0.5)
    assert await store.get("s1") == {"a": 1}

    clock.advance(0.25)
    assert await store.get("s1") == {"a": 1}

    clock.advance(0.25)
    assert await store.get("s1") is None


@pytest.mark.asyncio
async def test_expired_get_destroys_record(store, clock):
    await store.set("s1", {"a": 1})
    clock.advance(1.5)

    assert await store.length() == 1
    assert await store.get("s1") is None
    assert await store.length() == 0
    assert store.index_size() == 0


@pytest.mark.asyncio
async def test_touch_absent_is_noop(store):
    """测试 touch 不存在的会话不会创建记录"""
    await store.touch("ghost", {"a": 1})

    assert await store.get("ghost") is None
    assert await store.length() == 0
    assert store.index_size() == 0


@pytest.mark.asyncio
async def test_touch_extends_expiry_and_replaces_payload(store, clock):
    await store.set("s1", {"a": 1})
    clock.advance(0.5)
    await store.touch("s1", {"a": 2})

    # 原过期时间已过，但 touch 后仍然有效
    clock.advance(0.75)
    assert await store.get("s1") == {"a": 2}
    assert store.index_size() == 1

    clock.advance(0.25)
    assert await store.get("s1") is None


@pytest.mark.asyncio
async def test_destroy(store):
    await store.set("s1", {"a": 1})
    await store.set("s2", {"b": 2})

    await store.destroy("s1")
    await store.destroy("s1")

    assert await store.get("s1") is None
    assert await store.all() == [("s2", {"b": 2})]
    assert store.index_size() == 1


@pytest.mark.asyncio
async def test_all_returns_live_records(store):
    await store.set("s1", {"a": 1})
    await store.set("s2", {"b": 2})

    result = await store.all()

    assert sorted(result) == [("s1", {"a": 1}), ("s2", {"b": 2})]


@pytest.mark.asyncio
async def test_all_excludes_expired_without_reclaiming(store, clock):
    await store.set("old", {"a": 1})
    clock.advance(0.6)
    await store.set("new", {"b": 2})
    clock.advance(0.6)

    assert await store.all() == [("new", {"b": 2})]
    # length() 包含尚未回收的过期会话
    assert await store.length() == 2


@pytest.mark.asyncio
async def test_clear(store):
    for i in range(5):
        await store.set(f"s{i}", {"i": i})

    await store.clear()

    assert await store.all() == []
    assert await store.length() == 0
    assert store.index_size() == 0


@pytest.mark.asyncio
async def test_repeated_set_keeps_one_index_entry(store, clock):
    """测试重复 set 同一会话不产生索引漂移"""
    for _ in range(5):
        await store.set("s1", {"a": 1})
        clock.advance(0.1)

    assert store.index_size() == 1


@pytest.mark.asyncio
async def test_cleanup_reclaims_in_expiry_order(store, clock):
    """测试清理按过期时间顺序回收，遇到未过期条目即停止"""
    await store.set("s1", {"n": 1})
    clock.advance(0.3)
    await store.set("s2", {"n": 2})
    clock.advance(0.3)
    await store.set("s3", {"n": 3})

    # s1 过期于 1.0，s2 于 1.3，s3 于 1.6
    clock.advance(0.75)  # t = 1.35

    reclaimed = store.cleanup_expired()

    assert reclaimed == 2
    assert await store.length() == 1
    assert store.index_size() == 1
    assert await store.get("s3") == {"n": 3}


@pytest.mark.asyncio
async def test_cleanup_nothing_expired(store):
    await store.set("s1", {"a": 1})

    assert store.cleanup_expired() == 0
    assert await store.length() == 1
    assert store.index_size() == 1


@pytest.mark.asyncio
async def test_cleanup_drops_stale_entry_without_destroying_live_record(store, clock):
    await store.set("s1", {"a": 1})
    # 模拟索引漂移：残留一个更早的过期条目
    store._index(clock() - 10, "s1")
    assert store.index_size() == 2

    assert store.cleanup_expired() == 0
    assert await store.get("s1") == {"a": 1}
    assert store.index_size() == 1


@pytest.mark.asyncio
async def test_rebuild_index_repairs_drift(store, clock):
    """测试索引重建后每个有效会话只有一个索引条目"""
    await store.set("s1", {"a": 1})
    await store.set("s2", {"b": 2})
    store._index(clock() + 0.2, "s1")
    store._index(clock() + 0.3, "s2")
    store._index(clock() + 0.4, "ghost")

    live = store.rebuild_index()

    assert live == 2
    assert store.index_size() == 2


@pytest.mark.asyncio
async def test_rebuild_index_deletes_expired_records(store, clock):
    await store.set("old", {"a": 1})
    clock.advance(0.6)
    await store.set("new", {"b": 2})
    clock.advance(0.6)

    assert store.rebuild_index() == 1
    assert await store.length() == 1
    assert store.get_statistics()["live_sessions"] == 1


def test_invalid_durations():
    with pytest.raises(ValueError):
        MemorySessionStorage(max_age=0)
    with pytest.raises(ValueError):
        MemorySessionStorage(cleanup_interval=-1)


@pytest.mark.asyncio
async def test_cleanup_loop_reclaims_in_background():
    """测试后台清理循环最终回收过期会话"""
    store = MemorySessionStorage(max_age=0.05, cleanup_interval=0.02, index_interval=60)
    await store.start_cleanup()
    try:
        for i in range(3):
            await store.set(f"s{i}", {"i": i})
        assert await store.length() == 3

        await asyncio.sleep(0.3)

        assert await store.length() == 0
        assert store.index_size() == 0
    finally:
        await store.stop_cleanup()


@pytest.mark.asyncio
async def test_index_rebuild_loop_repairs_drift():
    store = MemorySessionStorage(max_age=60, cleanup_interval=60, index_interval=0.02)
    await store.set("s1", {"a": 1})
    store._index(1.0, "s1")
    store._index(2.0, "gone")

    await store.start_index_rebuild()
    try:
        await asyncio.sleep(0.2)
        assert store.index_size() == 1
    finally:
        await store.stop_index_rebuild()


@pytest.mark.asyncio
async def test_start_and_stop_are_idempotent():
    store = MemorySessionStorage(cleanup_interval=10, index_interval=10)

    await store.start_cleanup()
    task = store._cleanup_task
    await store.start_cleanup()
    assert store._cleanup_task is task

    await store.start_index_rebuild()
    await store.start_index_rebuild()
    assert store.cleanup_running
    assert store.index_rebuild_running

    await store.stop_cleanup()
    await store.stop_cleanup()
    await store.stop_index_rebuild()
    await store.stop_index_rebuild()
    assert not store.cleanup_running
    assert not store.index_rebuild_running
    assert task.done()


@pytest.mark.asyncio
async def test_connect_starts_maintenance():
    store = MemorySessionStorage(cleanup_interval=10, index_interval=10)

    async with store:
        assert store.cleanup_running
        assert store.index_rebuild_running

    assert not store.cleanup_running
    assert not store.index_rebuild_running


@pytest.mark.asyncio
async def test_cleanup_loop_survives_failing_pass(monkeypatch):
    store = MemorySessionStorage(cleanup_interval=0.01, index_interval=60)
    calls = []

    def failing_pass():
        calls.append(1)
        raise RuntimeError("boom")

    monkeypatch.setattr(store, "cleanup_expired", failing_pass)
    await store.start_cleanup()
    try:
        await asyncio.sleep(0.1)
        assert len(calls) > 1
        assert store.cleanup_running
    finally:
        await store.stop_cleanup()
