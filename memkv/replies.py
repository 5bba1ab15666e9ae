"""Reply values and text rendering for memkv.

このモジュールは、コマンドの実行結果を表す型（Reply）と、
redis-cli と同じ形式のテキストへのレンダリングを担当します。

"""

from dataclasses import dataclass


@dataclass
class SimpleString:
    """ステータス応答（例: OK）"""
    value: str

@dataclass
class ErrorReply:
    """エラー応答"""
    value: str

@dataclass
class Integer:
    """整数応答"""
    value: int

@dataclass
class BulkString:
    """文字列応答（Noneの場合は(nil)）"""
    value: str | None

@dataclass
class Array:
    """配列応答（Noneの場合は(nil)）"""
    items: list | None

@dataclass
class Text:
    """そのまま出力するテキスト（HELPなど）"""
    value: str


Reply = SimpleString | ErrorReply | Integer | BulkString | Array | Text


class ReplyRenderer:
    """Replyをredis-cli形式のテキストにレンダリングする.

    例:
        OK
        (integer) 3
        "hello"
        (nil)
        1) "a"
        2) "b"
        (error) WRONGTYPE Operation against a key holding the wrong kind of value
    """

    def render_simple_string(self, value: str) -> str:
        return value

    def render_error(self, message: str) -> str:
        return f"(error) {message}"

    def render_integer(self, value: int) -> str:
        return f"(integer) {value}"

    def render_bulk_string(self, value: str | None) -> str:
        if value is None:
            return "(nil)"
        return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'

    def render_array(self, items: list | None) -> str:
        """Arrayをレンダリング（要素ごとに番号付きの行）"""
        if items is None:
            return "(nil)"
        if not items:
            return "(empty array)"

        width = len(str(len(items)))
        lines = []
        for index, item in enumerate(items, start=1):
            lines.append(f"{index:>{width}}) {self.render(item)}")
        return "\n".join(lines)

    def render(self, reply: Reply) -> str:
        """応答を適切な形式でレンダリングする"""
        if isinstance(reply, SimpleString):
            return self.render_simple_string(reply.value)
        elif isinstance(reply, ErrorReply):
            return self.render_error(reply.value)
        elif isinstance(reply, Integer):
            return self.render_integer(reply.value)
        elif isinstance(reply, BulkString):
            return self.render_bulk_string(reply.value)
        elif isinstance(reply, Array):
            return self.render_array(reply.items)
        elif isinstance(reply, Text):
            return reply.value
        else:
            raise ValueError(f"Unsupported type: {type(reply)}")
