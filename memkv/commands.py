"""Command handler for memkv.

このモジュールは、コマンド（単語のリスト）のルーティング、
引数の変換（数値・真偽値・field-valueペア）、KVStoreの呼び出し、
結果のReplyへの変換、およびPassive expiryの統合を担当します。

"""

import logging

from memkv.expiry import ExpiryManager
from memkv.replies import Array, BulkString, Integer, Reply, SimpleString, Text
from memkv.storage import DBOk, KVStore

logger = logging.getLogger(__name__)

# コマンド名 -> (使い方, 説明)。HELPの出力とルーティングの両方に使う
COMMANDS: dict[str, tuple[str, str]] = {
    "GET": ("get key", "get the string value of key"),
    "SET": (
        "set key value [not_exists already_exists [expire_at]]",
        "set a string; flags are true/false, expire_at is a unix timestamp",
    ),
    "SADD": ("sadd key member [member ...]", "add members to a set"),
    "SRANDMEMBER": (
        "srandmember key count",
        "REMOVE and return up to count random members (destructive)",
    ),
    "SPOP": ("spop key", "remove and return one member"),
    "SISMEMBER": ("sismember key member", "check set membership"),
    "SREM": ("srem key member [member ...]", "remove members from a set"),
    "SLEN": ("slen key", "number of members in a set"),
    "SMEMBERS": ("smembers key", "all members of a set"),
    "HSET": ("hset key field value", "set a hash field"),
    "HGET": ("hget key field", "get a hash field"),
    "HMSET": ("hmset key field value [field value ...]", "set several hash fields"),
    "HMGET": ("hmget key field [field ...]", "get several hash fields"),
    "HKEYS": ("hkeys key", "all fields of a hash"),
    "HVALUES": ("hvalues key", "all values of a hash"),
    "HLEN": ("hlen key", "number of fields in a hash"),
    "HEXISTS": ("hexists key field", "check whether a hash field exists"),
    "HDEL": ("hdel key field", "delete a hash field"),
    "DEL": ("del key [key ...]", "delete keys of any type"),
    "EXISTS": ("exists key", "check whether a key exists"),
    "SIZE": ("size", "number of keys"),
    "EXPIRE": ("expire key seconds", "expire key after seconds"),
    "TTL": ("ttl key", "remaining seconds (-1 no expiry, -2 no key)"),
    "HELP": ("help", "show this help"),
}

# キーを引数に取らないコマンド
KEYLESS_COMMANDS = {"SIZE", "HELP"}


class CommandHandler:
    """memkvコマンドのハンドラ.

    責務:
    - コマンドのルーティングと引数の検証・変換
    - KVStoreの呼び出しと結果のReplyへの変換
    - Passive expiryの実行（コマンドが触るキーを実行前にチェック）

    KVStoreのエラー（DBError）はそのまま呼び出し側に伝播する。
    """

    def __init__(self, store: KVStore, expiry: ExpiryManager) -> None:
        """ハンドラを初期化.

        Args:
            store: KVStoreのインスタンス
            expiry: ExpiryManagerのインスタンス
        """
        self._store = store
        self._expiry = expiry

    async def execute(self, command: list[str]) -> Reply:
        """コマンドを実行する

        Raises:
            CommandError: 空コマンド、未知のコマンド、引数の誤り
            DBError: ストア操作のエラー
        """
        if not command:
            raise CommandError("ERR empty command")

        cmd_name = command[0].upper()
        args = command[1:]

        if cmd_name not in COMMANDS:
            raise CommandError(f"ERR unknown command '{command[0]}'")

        # Passive Expiry: 触るキーを先にチェック
        if cmd_name == "DEL":
            touched = args
        elif cmd_name in KEYLESS_COMMANDS:
            touched = []
        else:
            touched = args[:1]
        for key in touched:
            self._expiry.expire_if_due(key)
        # 上限に達している場合は期限切れのキーの枠を先に回収する
        self._expiry.reclaim()

        method = getattr(self, f"execute_{cmd_name.lower()}")
        return await method(args)

    # ------------------------------------------------------------------
    # String
    # ------------------------------------------------------------------

    async def execute_get(self, args: list[str]) -> BulkString:
        _check_arity("get", args, 1, 1)
        return BulkString(self._store.get(args[0]))

    async def execute_set(self, args: list[str]) -> SimpleString | BulkString:
        """SETコマンドを実行

        set key value
        set key value not_exists already_exists [expire_at]
        """
        if len(args) not in (2, 4, 5):
            raise CommandError("ERR wrong number of arguments for 'set' command")

        key, value = args[0], args[1]
        not_exists = already_exists = False
        expire = None
        if len(args) >= 4:
            not_exists = _parse_bool(args[2])
            already_exists = _parse_bool(args[3])
        if len(args) == 5:
            expire = _parse_int(args[4], minimum=0)

        result = self._store.set(key, value, not_exists, already_exists, expire)
        return _db_ok(result)

    # ------------------------------------------------------------------
    # Set
    # ------------------------------------------------------------------

    async def execute_sadd(self, args: list[str]) -> Integer:
        _check_arity("sadd", args, 2)
        return Integer(self._store.sadd(args[0], args[1:]))

    async def execute_srandmember(self, args: list[str]) -> Array:
        _check_arity("srandmember", args, 2, 2)
        count = _parse_int(args[1], minimum=0)
        return _members(self._store.srandmember(args[0], count))

    async def execute_spop(self, args: list[str]) -> BulkString:
        _check_arity("spop", args, 1, 1)
        return BulkString(self._store.spop(args[0]))

    async def execute_sismember(self, args: list[str]) -> Integer | BulkString:
        _check_arity("sismember", args, 2, 2)
        return _flag(self._store.sismember(args[0], args[1]))

    async def execute_srem(self, args: list[str]) -> Integer:
        _check_arity("srem", args, 2)
        return Integer(self._store.srem(args[0], args[1:]))

    async def execute_slen(self, args: list[str]) -> Integer | BulkString:
        _check_arity("slen", args, 1, 1)
        return _count(self._store.slen(args[0]))

    async def execute_smembers(self, args: list[str]) -> Array:
        _check_arity("smembers", args, 1, 1)
        return _members(self._store.smembers(args[0]))

    # ------------------------------------------------------------------
    # Hash
    # ------------------------------------------------------------------

    async def execute_hset(self, args: list[str]) -> Integer:
        _check_arity("hset", args, 3, 3)
        return Integer(self._store.hset(args[0], args[1], args[2]))

    async def execute_hget(self, args: list[str]) -> BulkString:
        _check_arity("hget", args, 2, 2)
        return BulkString(self._store.hget(args[0], args[1]))

    async def execute_hmset(self, args: list[str]) -> SimpleString | BulkString:
        """HMSETコマンドを実行（field valueのペアが揃っている必要がある）"""
        if len(args) < 3 or len(args) % 2 == 0:
            raise CommandError("ERR wrong number of arguments for 'hmset' command")

        pairs = list(zip(args[1::2], args[2::2]))
        return _db_ok(self._store.hmset(args[0], pairs))

    async def execute_hmget(self, args: list[str]) -> Array:
        _check_arity("hmget", args, 2)
        values = self._store.hmget(args[0], args[1:])
        return Array([BulkString(v) for v in values])

    async def execute_hkeys(self, args: list[str]) -> Array:
        _check_arity("hkeys", args, 1, 1)
        fields = self._store.hkeys(args[0])
        return Array(None if fields is None else [BulkString(f) for f in fields])

    async def execute_hvalues(self, args: list[str]) -> Array:
        _check_arity("hvalues", args, 1, 1)
        values = self._store.hvalues(args[0])
        return Array(None if values is None else [BulkString(v) for v in values])

    async def execute_hlen(self, args: list[str]) -> Integer | BulkString:
        _check_arity("hlen", args, 1, 1)
        return _count(self._store.hlen(args[0]))

    async def execute_hexists(self, args: list[str]) -> Integer | BulkString:
        _check_arity("hexists", args, 2, 2)
        return _flag(self._store.hexists(args[0], args[1]))

    async def execute_hdel(self, args: list[str]) -> Integer | BulkString:
        _check_arity("hdel", args, 2, 2)
        return _count(self._store.hdel(args[0], args[1]))

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    async def execute_del(self, args: list[str]) -> Integer:
        _check_arity("del", args, 1)
        return Integer(self._store.delete(args))

    async def execute_exists(self, args: list[str]) -> Integer:
        _check_arity("exists", args, 1, 1)
        return Integer(1 if self._store.exists(args[0]) else 0)

    async def execute_size(self, args: list[str]) -> Integer:
        _check_arity("size", args, 0, 0)
        purged = self._expiry.sweep()
        if purged:
            logger.debug(f"Removed {purged} expired keys before SIZE")
        return Integer(self._store.size())

    async def execute_expire(self, args: list[str]) -> Integer:
        """EXPIREコマンドを実行"""
        _check_arity("expire", args, 2, 2)

        seconds = _parse_int(args[1])
        if seconds < 0:
            raise CommandError("ERR invalid expire time in 'expire' command")

        return Integer(1 if self._expiry.expire_in(args[0], seconds) else 0)

    async def execute_ttl(self, args: list[str]) -> Integer:
        """TTLコマンドを実行

        Returns:
            残り秒数、-1: 有効期限なし、-2: キーが存在しない
        """
        _check_arity("ttl", args, 1, 1)

        key = args[0]
        if not self._store.exists(key):
            return Integer(-2)

        ttl = self._expiry.remaining(key)
        if ttl is None:
            return Integer(-1)
        return Integer(ttl)

    async def execute_help(self, args: list[str]) -> Text:
        _check_arity("help", args, 0, 0)
        width = max(len(usage) for usage, _ in COMMANDS.values())
        lines = ["memkv help info:", ""]
        for usage, summary in COMMANDS.values():
            lines.append(f"  {usage:<{width}}  {summary}")
        return Text("\n".join(lines))


def _check_arity(name: str, args: list[str], minimum: int, maximum: int | None = None) -> None:
    if len(args) < minimum or (maximum is not None and len(args) > maximum):
        raise CommandError(f"ERR wrong number of arguments for '{name}' command")


def _parse_bool(raw: str) -> bool:
    lowered = raw.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    raise CommandError(f"ERR value is not a boolean (true/false): '{raw}'")


def _parse_int(raw: str, minimum: int | None = None) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise CommandError("ERR value is not an integer or out of range") from None
    if minimum is not None and value < minimum:
        raise CommandError("ERR value is out of range, must not be negative")
    return value


def _db_ok(result: DBOk) -> SimpleString | BulkString:
    return SimpleString("OK") if result is DBOk.OK else BulkString(None)


def _flag(result: bool | None) -> Integer | BulkString:
    if result is None:
        return BulkString(None)
    return Integer(1 if result else 0)


def _count(result: int | None) -> Integer | BulkString:
    return BulkString(None) if result is None else Integer(result)


def _members(members: set[str] | None) -> Array:
    if members is None:
        return Array(None)
    return Array([BulkString(m) for m in sorted(members)])


class CommandError(Exception):
    """コマンド実行エラー.

    コマンド実行時のエラー（引数不足、未知のコマンド、引数の形式の誤り等）を表す。

    例:
        raise CommandError("ERR unknown command 'FOO'")
        raise CommandError("ERR wrong number of arguments for 'get' command")
        raise CommandError("ERR value is not an integer or out of range")
    """

    pass
