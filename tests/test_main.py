"""Tests for the command-line entry point."""

import logging

import pytest

from memkv.__main__ import parse_args, setup_logging
from memkv.storage import DEFAULT_DB_KEY_SIZE


class TestParseArgs:
    """Test command-line option parsing."""

    def test_defaults(self) -> None:
        """Test that the defaults match the documented configuration."""
        args = parse_args([])
        assert args.key_size == DEFAULT_DB_KEY_SIZE
        assert args.unlimited is False
        assert args.active_expiry is True
        assert args.verbose == 0

    def test_options(self) -> None:
        """Test that every option is parsed."""
        args = parse_args(["-s", "10", "--no-active-expiry", "-vv"])
        assert args.key_size == 10
        assert args.active_expiry is False
        assert args.verbose == 2

    def test_unlimited(self) -> None:
        """Test the unbounded store flag."""
        assert parse_args(["--unlimited"]).unlimited is True

    def test_negative_key_size_is_rejected(self) -> None:
        """Test that a negative ceiling exits with a usage error."""
        with pytest.raises(SystemExit):
            parse_args(["--key-size", "-1"])


class TestSetupLogging:
    """Test log level selection."""

    @pytest.mark.parametrize(
        ("verbose", "level"),
        [(0, logging.WARNING), (1, logging.INFO), (2, logging.DEBUG), (5, logging.DEBUG)],
    )
    def test_level_follows_verbosity(
        self, monkeypatch: pytest.MonkeyPatch, verbose: int, level: int
    ) -> None:
        """Test that each -v raises the verbosity."""
        calls = []
        monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))

        setup_logging(verbose)

        assert calls[0]["level"] == level
