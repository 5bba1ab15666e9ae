"""Expiry policy for memkv keys.

KVStore は有効期限を ledger に記録するだけで、読み取り時に参照しません。
このモジュールがその ledger を適用し、期限を過ぎたキーを削除します。

キーの状態遷移: live -> expired（期限到達）-> absent（削除済み）

削除のタイミング:
- コマンドがキーに触れる直前（expire_if_due）
- ストアが上限に達していて新しいキーの枠が必要なとき（reclaim）
- SIZE の直前（sweep による全件チェック）
- バックグラウンドの定期sweep（start/stop）
"""

import asyncio
import logging
import random
import time
from collections.abc import Callable

from memkv.storage import KVStore

logger = logging.getLogger(__name__)

SWEEP_SAMPLE_SIZE = 20  # 定期sweepで1回に調べる有効期限付きキーの数
SWEEP_REPEAT_PERCENT = 25  # この割合を超えて期限切れなら続けてsweepする
SWEEP_INTERVAL = 1.0  # 定期sweepの間隔（秒）


class ExpiryManager:
    """ledgerに記録された有効期限を適用する.

    Args:
        store: 対象のKVStore
        interval: 定期sweepの間隔（秒）
        clock: 現在時刻（Unix秒）を返す関数
    """

    def __init__(
        self,
        store: KVStore,
        interval: float = SWEEP_INTERVAL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._interval = interval
        self._clock = clock
        self._sweeper: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._sweeper is not None

    def _now(self) -> int:
        return int(self._clock())

    # ------------------------------------------------------------------
    # 期限の判定と削除
    # ------------------------------------------------------------------

    def is_due(self, key: str) -> bool:
        """キーの期限が到達しているか（期限なし・キーなしはFalse）."""
        deadline = self._store.get_expiry(key)
        return deadline is not None and self._now() >= deadline

    def expire_if_due(self, key: str) -> bool:
        """期限が到達していればキーを削除する.

        Returns:
            True: 期限切れで削除した
        """
        if not self.is_due(key):
            return False
        self._store.delete([key])
        logger.debug(f"Key {key!r} expired")
        return True

    def sweep(self, sample: int | None = None) -> int:
        """有効期限付きのキーを調べ、期限切れを削除する.

        Args:
            sample: 調べるキーの数（Noneの場合はすべて）

        Returns:
            削除したキーの数
        """
        keys = self._store.get_keys_with_expiry()
        if sample is not None and sample < len(keys):
            keys = random.sample(keys, sample)
        return sum(1 for key in keys if self.expire_if_due(key))

    def reclaim(self) -> int:
        """ストアが上限に達している場合、期限切れのキーを削除して枠を空ける.

        上限に余裕がある場合は何もしない。
        """
        if self._store.can_add_key():
            return 0
        removed = self.sweep()
        if removed:
            logger.debug(f"Reclaimed {removed} expired keys for new writes")
        return removed

    def sweep_cycle(self) -> int:
        """定期sweepの1サイクル.

        SWEEP_SAMPLE_SIZE個ずつ調べ、期限切れの割合がSWEEP_REPEAT_PERCENT%を
        超える間は続けて調べる。

        Returns:
            このサイクルで削除したキーの数
        """
        total = 0
        while True:
            checked = min(SWEEP_SAMPLE_SIZE, len(self._store.get_keys_with_expiry()))
            if checked == 0:
                return total
            removed = self.sweep(SWEEP_SAMPLE_SIZE)
            total += removed
            if removed * 100 <= checked * SWEEP_REPEAT_PERCENT:
                return total

    # ------------------------------------------------------------------
    # TTL
    # ------------------------------------------------------------------

    def expire_in(self, key: str, seconds: int) -> bool:
        """キーの期限を現在からseconds秒後にする（キーがなければFalse）."""
        return self._store.set_expiry(key, self._now() + seconds)

    def remaining(self, key: str) -> int | None:
        """キーの残り秒数（0以上）、期限なしの場合はNone."""
        deadline = self._store.get_expiry(key)
        if deadline is None:
            return None
        return max(0, deadline - self._now())

    # ------------------------------------------------------------------
    # 定期sweepタスク
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """定期sweepタスクを起動する.

        Raises:
            RuntimeError: 既に起動している場合
        """
        if self._sweeper is not None:
            raise RuntimeError("Expiry sweeper is already running")
        self._sweeper = asyncio.create_task(self._sweep_forever(), name="memkv-expiry")
        logger.info(f"Expiry sweeper started (interval={self._interval}s)")

    async def stop(self) -> None:
        """定期sweepタスクを停止する（起動していなければ何もしない）.

        タスクが例外で終了していた場合は、その例外をログに記録する。
        """
        sweeper, self._sweeper = self._sweeper, None
        if sweeper is None:
            return

        if sweeper.done():
            if not sweeper.cancelled() and sweeper.exception() is not None:
                logger.error("Expiry sweeper had crashed", exc_info=sweeper.exception())
        else:
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass
        logger.info("Expiry sweeper stopped")

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            removed = self.sweep_cycle()
            if removed:
                logger.debug(f"Sweep removed {removed} expired keys")
