"""memkv entry point.

このモジュールは、memkvシェルのエントリポイントです。
`python -m memkv` で起動します。
"""

import argparse
import asyncio
import logging
import sys

from memkv.expiry import ExpiryManager
from memkv.shell import Shell, complete_command, stdin_lines
from memkv.storage import DEFAULT_DB_KEY_SIZE, KVStore

try:
    import readline
except ImportError:  # Windowsなど
    readline = None

BANNER = """\
#    # #    # #    #
##  ## #   #  #    #           Welcome to use memkv!
# ## # ####   #    #
#    # #  #   #    #           configs:
#    # #   #   #  #               * key_size = {key_size}
#    # #    #   ##                * verbose  = {verbose}


for more help information, please input "help"
"""


def setup_logging(verbose: int = 0) -> None:
    """ログ設定を初期化（-vでINFO、-vvでDEBUG）."""
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """コマンドライン引数をパース."""
    parser = argparse.ArgumentParser(
        prog="memkv",
        description="In-memory key-value database shell.",
    )
    parser.add_argument(
        "-s",
        "--key-size",
        type=int,
        default=DEFAULT_DB_KEY_SIZE,
        help=f"maximum number of keys (default: {DEFAULT_DB_KEY_SIZE})",
    )
    parser.add_argument(
        "--unlimited",
        action="store_true",
        help="do not limit the number of keys",
    )
    parser.add_argument(
        "--no-active-expiry",
        dest="active_expiry",
        action="store_false",
        help="only expire keys when they are accessed",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="increase log verbosity (may be repeated)",
    )

    args = parser.parse_args(argv)
    if args.key_size < 0:
        parser.error("--key-size must not be negative")
    return args


async def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    capacity = None if args.unlimited else args.key_size
    print(BANNER.format(key_size=capacity if capacity is not None else "unlimited", verbose=args.verbose))

    if readline is not None:
        readline.set_completer(complete_command)
        readline.parse_and_bind("tab: complete")

    # コンポーネントの初期化
    store = KVStore(capacity)
    expiry_manager = ExpiryManager(store)
    shell = Shell(store, expiry=expiry_manager, active_expiry=args.active_expiry)

    logger.info(f"Starting memkv shell (capacity={capacity})")
    await shell.run(stdin_lines("> "), sys.stdout)
    print("CTRL-D")


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("CTRL-C")


if __name__ == "__main__":
    run()
