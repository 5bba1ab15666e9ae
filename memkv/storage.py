"""Typed in-memory key-value store for memkv.

このモジュールは、キーと型付きの値（文字列・集合・ハッシュ）の保存、
型の一貫性チェック、キー数の上限管理（admission control）、
および有効期限メタデータ（ledger）の記録を担当します。

有効期限の判定と削除は ExpiryManager の責任で、
このストアの読み取り操作は ledger を参照しません。
"""

from __future__ import annotations

import logging
import random
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import TypeVar

logger = logging.getLogger(__name__)

# key数の上限のデフォルト値
DEFAULT_DB_KEY_SIZE = 256


class DBOk(Enum):
    """条件付き書き込みの結果.

    OK: 書き込みを実行した
    NIL: 条件（not_exists / already_exists）により何もしなかった（エラーではない）
    """

    OK = "OK"
    NIL = "nil"


class DBError(Exception):
    """ストア操作エラーの基底クラス."""

    message = "ERR database error"

    def __init__(self, key: str | None = None) -> None:
        super().__init__(self.message)
        self.key = key


class KeyNotFound(DBError):
    """キーが存在しない（要素ごとにNoneで表現できない一括読み取りのみ）."""

    message = "ERR no such key"


class WrongValueType(DBError):
    """キーは存在するが、操作と異なる型の値を保持している."""

    message = "WRONGTYPE Operation against a key holding the wrong kind of value"


class OutOfKeysSize(DBError):
    """key数の上限に達しているため、新しいキーを作成できない."""

    message = "ERR max number of keys reached"


@dataclass
class StringValue:
    """文字列型の値."""

    value: str


@dataclass
class SetValue:
    """集合型の値（重複なしの文字列コレクション）."""

    members: set[str] = field(default_factory=set)


@dataclass
class HashValue:
    """ハッシュ型の値（field -> value のマッピング）."""

    fields: dict[str, str] = field(default_factory=dict)


Value = StringValue | SetValue | HashValue

V = TypeVar("V", StringValue, SetValue, HashValue)


class KVStore:
    """インメモリの型付きキー・バリューストア.

    責務:
    - キー -> 値（StringValue / SetValue / HashValue）の保存
    - 1つのキーは常に1つの型だけを持つ（型の自動変換はしない）
    - key数の上限チェック（新しいキーの作成時のみ）
    - 有効期限メタデータ（ledger）の記録

    エラーは DBError のサブクラスとしてraiseする。
    キーが存在しないことはエラーではなく、None または 0 で表現する。
    """

    def __init__(self, capacity: int | None = None) -> None:
        """ストアを初期化.

        Args:
            capacity: key数の上限（Noneの場合は無制限）
        """
        self._data: dict[str, Value] = {}
        self._expiry: dict[str, int] = {}
        self._capacity = capacity

    @property
    def capacity(self) -> int | None:
        return self._capacity

    def can_add_key(self) -> bool:
        """新しいキーを作成できるかを判定.

        Returns:
            True: 上限なし、または現在のkey数が上限未満
            False: 上限に達している（上限が0の場合も含む）
        """
        if self._capacity is None:
            return True
        return self._capacity > 0 and len(self._data) < self._capacity

    def _lookup(self, key: str, kind: type[V]) -> V | None:
        """キーの値を型付きで取得する.

        Raises:
            WrongValueType: キーが別の型の値を保持している場合
        """
        entry = self._data.get(key)
        if entry is None:
            return None
        if not isinstance(entry, kind):
            raise WrongValueType(key)
        return entry

    def _create(self, key: str, entry: V) -> V:
        """新しいキーを作成する（上限チェック後に挿入）.

        Raises:
            OutOfKeysSize: key数の上限に達している場合（ストアは変更されない）
        """
        if not self.can_add_key():
            logger.debug(f"Rejected new key {key!r}: capacity {self._capacity} reached")
            raise OutOfKeysSize(key)
        self._data[key] = entry
        return entry

    # ------------------------------------------------------------------
    # String
    # ------------------------------------------------------------------

    def set(
        self,
        key: str,
        value: str,
        not_exists: bool = False,
        already_exists: bool = False,
        expire: int | None = None,
    ) -> DBOk:
        """キーに文字列を設定.

        Args:
            key: 設定するキー
            value: 設定する文字列
            not_exists: Trueの場合、キーが存在しないときだけ書き込む
            already_exists: Trueの場合、キーが既に存在するときだけ書き込む
            expire: 有効期限のUnix timestamp（秒）

        Returns:
            DBOk.OK: 書き込みを実行した
            DBOk.NIL: 条件により書き込まなかった

        Raises:
            WrongValueType: キーが文字列以外の値を保持している場合
            OutOfKeysSize: 新しいキーを作成できない場合

        両方のフラグがTrueの場合は not_exists を先に判定する。
        既存キーの上書きは上限チェックの対象外。
        書き込みに成功した場合、expireがあればledgerに記録し、
        なければ既存の有効期限をクリアする。
        """
        current = self._lookup(key, StringValue)
        if current is not None:
            if not_exists:
                return DBOk.NIL
            current.value = value
        else:
            if already_exists:
                return DBOk.NIL
            self._create(key, StringValue(value))

        if expire is not None:
            self._expiry[key] = expire
        else:
            self._expiry.pop(key, None)
        return DBOk.OK

    def get(self, key: str) -> str | None:
        entry = self._lookup(key, StringValue)
        return entry.value if entry else None

    # ------------------------------------------------------------------
    # Set
    # ------------------------------------------------------------------

    def sadd(self, key: str, members: Iterable[str]) -> int:
        """集合にメンバーを追加.

        Returns:
            新しく追加されたメンバーの数（既存のメンバーは数えない）
        """
        entry = self._lookup(key, SetValue)
        if entry is None:
            entry = self._create(key, SetValue(set(members)))
            return len(entry.members)

        before = len(entry.members)
        entry.members.update(members)
        return len(entry.members) - before

    def srandmember(self, key: str, count: int) -> set[str] | None:
        """集合から最大count個のメンバーをランダムに**取り除いて**返す.

        注意: Redisの SRANDMEMBER と違い、この操作は破壊的で、
        返したメンバーは集合から削除される。
        集合のメンバーがcount個より少ない場合はすべてを返す（集合は空になる）。

        Returns:
            取り除いたメンバーの集合、キーが存在しない場合はNone

        Raises:
            ValueError: countが負の場合
        """
        if count < 0:
            raise ValueError("count must be non-negative")
        entry = self._lookup(key, SetValue)
        if entry is None:
            return None

        picked = set(random.sample(list(entry.members), min(count, len(entry.members))))
        entry.members -= picked
        return picked

    def spop(self, key: str) -> str | None:
        """集合から任意のメンバーを1つ取り除いて返す（空集合・キーなしはNone）."""
        entry = self._lookup(key, SetValue)
        if not entry or not entry.members:
            return None
        return entry.members.pop()

    def sismember(self, key: str, member: str) -> bool | None:
        entry = self._lookup(key, SetValue)
        return member in entry.members if entry else None

    def srem(self, key: str, members: Iterable[str]) -> int:
        """集合からメンバーを削除.

        Returns:
            実際に削除されたメンバーの数（キーが存在しない場合は0）
        """
        entry = self._lookup(key, SetValue)
        if entry is None:
            return 0

        removed = 0
        for member in members:
            if member in entry.members:
                entry.members.remove(member)
                removed += 1
        return removed

    def slen(self, key: str) -> int | None:
        entry = self._lookup(key, SetValue)
        return len(entry.members) if entry else None

    def smembers(self, key: str) -> set[str] | None:
        entry = self._lookup(key, SetValue)
        return set(entry.members) if entry else None

    # ------------------------------------------------------------------
    # Hash
    # ------------------------------------------------------------------

    def hset(self, key: str, field: str, value: str) -> int:
        """ハッシュのfieldに値を設定.

        Returns:
            1: 新しいfieldを作成した
            0: 既存のfieldを上書きした
        """
        entry = self._lookup(key, HashValue)
        if entry is None:
            self._create(key, HashValue({field: value}))
            return 1

        created = field not in entry.fields
        entry.fields[field] = value
        return 1 if created else 0

    def hget(self, key: str, field: str) -> str | None:
        entry = self._lookup(key, HashValue)
        return entry.fields.get(field) if entry else None

    def hmset(self, key: str, pairs: Iterable[tuple[str, str]]) -> DBOk:
        """複数のfield-valueをまとめて設定（同じfieldは後の値が優先）."""
        entry = self._lookup(key, HashValue)
        if entry is None:
            self._create(key, HashValue(dict(pairs)))
        else:
            entry.fields.update(pairs)
        return DBOk.OK

    def hmget(self, key: str, fields: Iterable[str]) -> list[str | None]:
        """複数のfieldの値を取得.

        Returns:
            fieldsと1対1に対応する値のリスト（存在しないfieldはNone）

        Raises:
            KeyNotFound: キー自体が存在しない場合
            WrongValueType: キーがハッシュ以外の値を保持している場合
        """
        entry = self._lookup(key, HashValue)
        if entry is None:
            raise KeyNotFound(key)
        return [entry.fields.get(f) for f in fields]

    def hkeys(self, key: str) -> list[str] | None:
        entry = self._lookup(key, HashValue)
        return list(entry.fields.keys()) if entry else None

    def hvalues(self, key: str) -> list[str] | None:
        entry = self._lookup(key, HashValue)
        return list(entry.fields.values()) if entry else None

    def hlen(self, key: str) -> int | None:
        entry = self._lookup(key, HashValue)
        return len(entry.fields) if entry else None

    def hexists(self, key: str, field: str) -> bool | None:
        entry = self._lookup(key, HashValue)
        return field in entry.fields if entry else None

    def hdel(self, key: str, field: str) -> int | None:
        """ハッシュからfieldを削除.

        Returns:
            1: 削除した
            0: fieldが存在しなかった
            None: キーが存在しない
        """
        entry = self._lookup(key, HashValue)
        if entry is None:
            return None
        try:
            del entry.fields[field]
            return 1
        except KeyError:
            return 0

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def delete(self, keys: Iterable[str]) -> int:
        """キーを型に関係なく削除（有効期限も一緒に削除）.

        Returns:
            実際に削除されたキーの数
        """
        removed = 0
        for key in keys:
            try:
                self._data.pop(key)
            except KeyError:
                continue
            self._expiry.pop(key, None)
            removed += 1
        return removed

    def exists(self, key: str) -> bool:
        return key in self._data

    def size(self) -> int:
        return len(self._data)

    # ------------------------------------------------------------------
    # Expiry ledger
    # ------------------------------------------------------------------

    def set_expiry(self, key: str, expiry_at: int) -> bool:
        """キーに有効期限を設定する（キーが存在しない場合はFalse）"""
        if key not in self._data:
            return False
        self._expiry[key] = expiry_at
        return True

    def get_expiry(self, key: str) -> int | None:
        """キーの有効期限を取得する"""
        return self._expiry.get(key)

    def get_keys_with_expiry(self) -> list[str]:
        """有効期限が設定されたキーの一覧を取得する"""
        return list(self._expiry.keys())
