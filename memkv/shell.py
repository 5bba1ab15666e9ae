"""Interactive shell for memkv.

このモジュールは、入力行の読み取り、コマンドへの分割、実行、
結果のレンダリングのループ、およびActive Expiryタスクのライフサイクル管理を担当します。

"""

import asyncio
import logging
import shlex
import threading
from collections.abc import AsyncIterator
from typing import TextIO

from memkv.commands import COMMANDS, CommandError, CommandHandler
from memkv.expiry import ExpiryManager
from memkv.replies import ErrorReply, ReplyRenderer
from memkv.storage import DBError, KVStore

logger = logging.getLogger(__name__)


class Shell:
    """memkvの対話シェル.

    責務:
    - 入力行の分割（shlex）→実行→レンダリングのループ
    - エラーの表示（1行のエラーでセッションを終了しない）
    - Active Expiryバックグラウンドタスクの管理

    1つのシェルが1つのKVStoreを所有する。
    ストアの操作はすべてイベントループ上で同期的に実行されるため、
    Active Expiryタスクとの間で排他制御は不要。
    """

    def __init__(
        self,
        store: KVStore,
        expiry: ExpiryManager | None = None,
        handler: CommandHandler | None = None,
        renderer: ReplyRenderer | None = None,
        active_expiry: bool = True,
    ) -> None:
        """シェルを初期化.

        Args:
            store: データストア
            expiry: Expiryマネージャ（Noneの場合は新規作成）
            handler: コマンドハンドラ（Noneの場合は新規作成）
            renderer: レンダラ（Noneの場合は新規作成）
            active_expiry: Active Expiryタスクを起動するか
        """
        self._store = store
        self._expiry = expiry if expiry is not None else ExpiryManager(store)
        self._handler = handler if handler is not None else CommandHandler(store, self._expiry)
        self._renderer = renderer if renderer is not None else ReplyRenderer()
        self._active_expiry = active_expiry

    async def handle_line(self, line: str) -> str | None:
        """1行を実行し、表示するテキストを返す（空行の場合はNone）."""
        try:
            words = shlex.split(line)
        except ValueError as e:
            return self._renderer.render(ErrorReply(f"ERR invalid input: {e}"))

        if not words:
            return None

        try:
            reply = await self._handler.execute(words)
        except (CommandError, DBError) as e:
            return self._renderer.render(ErrorReply(str(e)))
        except Exception as e:
            logger.exception(f"Unexpected error while executing {words[0]!r}")
            return self._renderer.render(ErrorReply(f"ERR internal error: {e}"))

        return self._renderer.render(reply)

    async def run(self, lines: AsyncIterator[str], output: TextIO) -> None:
        """入力が尽きるまで行を読み取り、結果をoutputに書き出す.

        Active Expiryタスクは開始時に起動し、終了時（キャンセル含む）に停止する。
        """
        if self._active_expiry:
            await self._expiry.start()

        logger.info("memkv session started")
        try:
            async for line in lines:
                text = await self.handle_line(line)
                if text is not None:
                    print(text, file=output, flush=True)
        finally:
            await self._expiry.stop()
            logger.info("memkv session finished")


async def stdin_lines(prompt: str = "> ") -> AsyncIterator[str]:
    """標準入力から1行ずつ読み取る非同期イテレータ.

    input()はブロッキングのため、daemonスレッドで読み取る。
    前の行の処理が終わってから次のプロンプトを表示する。
    EOF（Ctrl-D）で終了する。
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[str | None] = asyncio.Queue()
    wanted = threading.Event()

    def reader() -> None:
        while True:
            wanted.wait()
            wanted.clear()
            try:
                line: str | None = input(prompt)
            except EOFError:
                line = None
            loop.call_soon_threadsafe(queue.put_nowait, line)
            if line is None:
                return

    threading.Thread(target=reader, name="memkv-stdin", daemon=True).start()

    while True:
        wanted.set()
        line = await queue.get()
        if line is None:
            return
        yield line


def complete_command(text: str, state: int) -> str | None:
    """readline用の補完関数（コマンド名を補完する）."""
    matches = [name.lower() + " " for name in COMMANDS if name.lower().startswith(text.lower())]
    return matches[state] if state < len(matches) else None
