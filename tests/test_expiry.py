"""Tests for ExpiryManager."""

import asyncio
import time

import pytest

from memkv.expiry import ExpiryManager
from memkv.storage import KVStore

NOW = 1_700_000_000


def fixed_clock() -> float:
    return float(NOW)


class TestExpireIfDue:
    """アクセス時の期限チェックのテスト."""

    def test_returns_false_for_nonexistent_key(self) -> None:
        """存在しないキーに対してFalseを返す."""
        expiry = ExpiryManager(KVStore(), clock=fixed_clock)

        assert expiry.expire_if_due("nonexistent") is False

    def test_returns_false_for_key_without_expiry(self) -> None:
        """有効期限が設定されていないキーは残る."""
        store = KVStore()
        expiry = ExpiryManager(store, clock=fixed_clock)
        store.set("key1", "value1")

        assert expiry.expire_if_due("key1") is False
        assert store.exists("key1") is True

    def test_returns_false_before_deadline(self) -> None:
        """期限前のキーは残る."""
        store = KVStore()
        expiry = ExpiryManager(store, clock=fixed_clock)
        store.set("key1", "value1", expire=NOW + 1)

        assert expiry.expire_if_due("key1") is False
        assert store.exists("key1") is True

    def test_removes_key_at_deadline(self) -> None:
        """期限ちょうどのキーは期限切れとして削除される."""
        store = KVStore()
        expiry = ExpiryManager(store, clock=fixed_clock)
        store.set("key1", "value1", expire=NOW)

        assert expiry.expire_if_due("key1") is True
        assert store.exists("key1") is False
        assert store.get_expiry("key1") is None


class TestSweep:
    """sweep / reclaim / sweep_cycle のテスト."""

    def test_sweep_removes_expired_keys_of_every_type(self) -> None:
        """文字列以外の型のキーも期限切れで削除される."""
        store = KVStore()
        expiry = ExpiryManager(store, clock=fixed_clock)
        store.sadd("s", ["a"])
        store.hset("h", "f", "v")
        store.set_expiry("s", NOW - 1)
        store.set_expiry("h", NOW - 1)

        assert expiry.sweep() == 2
        assert store.size() == 0

    def test_sweep_keeps_live_keys(self) -> None:
        """期限内・期限なしのキーは残る."""
        store = KVStore()
        expiry = ExpiryManager(store, clock=fixed_clock)
        store.set("dead", "v", expire=NOW - 1)
        store.set("alive", "v", expire=NOW + 100)
        store.set("forever", "v")

        assert expiry.sweep() == 1
        assert store.exists("dead") is False
        assert store.exists("alive") is True
        assert store.exists("forever") is True

    def test_reclaim_frees_slot_in_full_store(self) -> None:
        """上限に達したストアでは期限切れのキーを回収する."""
        store = KVStore(1)
        expiry = ExpiryManager(store, clock=fixed_clock)
        store.set("old", "v", expire=NOW - 1)

        assert expiry.reclaim() == 1
        assert store.can_add_key() is True

    def test_reclaim_does_nothing_below_capacity(self) -> None:
        """上限に余裕がある場合は何も削除しない."""
        store = KVStore(2)
        expiry = ExpiryManager(store, clock=fixed_clock)
        store.set("old", "v", expire=NOW - 1)

        assert expiry.reclaim() == 0
        assert store.exists("old") is True

    def test_sweep_cycle_removes_expired_and_keeps_valid(self) -> None:
        """1サイクルで期限切れキーを削除し、有効なキーは残す."""
        store = KVStore()
        expiry = ExpiryManager(store, clock=fixed_clock)
        store.set("expired1", "v", expire=NOW - 1)
        store.sadd("expired2", ["a"])
        store.set_expiry("expired2", NOW - 1)
        store.set("valid1", "v", expire=NOW + 100)
        store.set("valid2", "v")

        assert expiry.sweep_cycle() == 2
        assert store.exists("valid1") is True
        assert store.exists("valid2") is True

    def test_sweep_cycle_repeats_while_many_expired(self) -> None:
        """期限切れの割合が高い間はサンプリングを繰り返す."""
        store = KVStore()
        expiry = ExpiryManager(store, clock=fixed_clock)
        for i in range(50):
            store.set(f"key{i}", "v", expire=NOW - 1)

        assert expiry.sweep_cycle() == 50
        assert store.size() == 0

    def test_sweep_cycle_with_empty_ledger(self) -> None:
        """有効期限付きのキーがなければ何もしない."""
        store = KVStore()
        store.set("k", "v")

        assert ExpiryManager(store, clock=fixed_clock).sweep_cycle() == 0
        assert store.size() == 1


class TestRemaining:
    """expire_in / remaining のテスト."""

    def test_expire_in_sets_relative_deadline(self) -> None:
        """現在時刻からseconds秒後の期限を設定する."""
        store = KVStore()
        expiry = ExpiryManager(store, clock=fixed_clock)
        store.set("key1", "value1")

        assert expiry.expire_in("key1", 10) is True
        assert store.get_expiry("key1") == NOW + 10
        assert expiry.remaining("key1") == 10

    def test_expire_in_missing_key(self) -> None:
        """存在しないキーには期限を設定しない."""
        expiry = ExpiryManager(KVStore(), clock=fixed_clock)

        assert expiry.expire_in("missing", 10) is False
        assert expiry.remaining("missing") is None

    def test_remaining_never_negative(self) -> None:
        """期限を過ぎたキーの残り秒数は0."""
        store = KVStore()
        expiry = ExpiryManager(store, clock=fixed_clock)
        store.set("key1", "value1", expire=NOW - 5)

        assert expiry.remaining("key1") == 0


class TestSweeperTask:
    """定期sweepタスクのテスト."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self) -> None:
        """タスクが期限切れキーを削除し、stop()で停止する."""
        store = KVStore()
        expiry = ExpiryManager(store, interval=0.01)
        store.set("key1", "value1", expire=int(time.time()) - 1)

        await expiry.start()
        assert expiry.running is True
        await asyncio.sleep(0.1)
        await expiry.stop()

        assert expiry.running is False
        assert store.exists("key1") is False

    @pytest.mark.asyncio
    async def test_start_twice_raises(self) -> None:
        """実行中にstart()を呼ぶとRuntimeError."""
        expiry = ExpiryManager(KVStore(), interval=0.01)

        await expiry.start()
        try:
            with pytest.raises(RuntimeError, match="already running"):
                await expiry.start()
        finally:
            await expiry.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start_is_noop(self) -> None:
        """開始していない場合、stop()は何もしない."""
        expiry = ExpiryManager(KVStore())

        await expiry.stop()

        assert expiry.running is False

    @pytest.mark.asyncio
    async def test_stop_logs_crashed_sweeper(self, caplog: pytest.LogCaptureFixture) -> None:
        """例外で終了したタスクの例外をstop()で回収してログに残す."""

        def broken_clock() -> float:
            raise OSError("clock unavailable")

        store = KVStore()
        store.set("key1", "value1", expire=NOW)
        expiry = ExpiryManager(store, interval=0.01, clock=broken_clock)

        await expiry.start()
        await asyncio.sleep(0.1)
        with caplog.at_level("ERROR", logger="memkv.expiry"):
            await expiry.stop()

        assert expiry.running is False
        assert "Expiry sweeper had crashed" in caplog.text
