"""Tests for error_handling utilities."""

import asyncio
import logging

import pytest

from worktree_fleet.utils.error_handling import ErrorContext, log_and_ignore


def test_log_and_ignore_does_not_raise(caplog):
    """Test that log_and_ignore does not re-raise."""
    with caplog.at_level(logging.WARNING):
        try:
            raise ValueError("test error")
        except ValueError as e:
            log_and_ignore(e, "Test context")

    assert "Test context: test error" in caplog.text


def test_log_and_ignore_custom_level(caplog):
    """Test log_and_ignore honours the given level."""
    with caplog.at_level(logging.DEBUG):
        log_and_ignore(ValueError("quiet"), "Branch delete", level=logging.DEBUG)

    assert caplog.records[-1].levelno == logging.DEBUG


def test_error_context_reraises_by_default(caplog):
    """Test ErrorContext logs and re-raises when raise_on_error=True."""
    with caplog.at_level(logging.ERROR):
        with pytest.raises(ValueError):
            with ErrorContext("test operation"):
                raise ValueError("test error")

    assert "Error during test operation: test error" in caplog.text


def test_error_context_suppresses(caplog):
    """Test ErrorContext records the error when raise_on_error=False."""
    with caplog.at_level(logging.ERROR):
        with ErrorContext("sampling", raise_on_error=False) as ctx:
            raise RuntimeError("disk gone")

    assert isinstance(ctx.error, RuntimeError)
    assert "Error during sampling" in caplog.text


def test_error_context_no_error():
    """Test ErrorContext leaves error unset on success."""
    with ErrorContext("noop", raise_on_error=False) as ctx:
        pass

    assert ctx.error is None


def test_error_context_never_swallows_cancellation():
    """Test cancellation passes through even with raise_on_error=False."""
    with pytest.raises(asyncio.CancelledError):
        with ErrorContext("sampling", raise_on_error=False):
            raise asyncio.CancelledError()
