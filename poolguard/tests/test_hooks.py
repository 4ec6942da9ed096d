"""
Tests for protocol event hooks.
"""

import dataclasses
import logging

import pytest

from poolguard.hooks import (
    ClaimSubmittedEvent,
    CompositeHooks,
    EventLog,
    LoggingHooks,
    NullHooks,
    PoolCreatedEvent,
    RoundComputedEvent,
    dispatch,
)


def _submitted(ts: int = 1) -> ClaimSubmittedEvent:
    return ClaimSubmittedEvent(
        timestamp=ts, claim_id="c1", pool_id="p", claimant="alice", amount_requested=500,
    )


class TestEvents:
    """Event records."""

    def test_frozen(self):
        event = _submitted()
        with pytest.raises(dataclasses.FrozenInstanceError):
            event.amount_requested = 1

    def test_to_dict(self):
        data = _submitted(7).to_dict()
        assert data["kind"] == "claim_submitted"
        assert data["timestamp"] == 7
        assert data["claim_id"] == "c1"

    def test_round_event_kind(self):
        event = RoundComputedEvent(
            timestamp=1, pool_id="p", round_number=1, total_claims=2, selected_claims=1,
            is_oversubscribed=True, available_funds=1000, total_requested=1200,
        )
        assert event.kind == "round_computed"


class TestEventLog:
    """Tests for EventLog."""

    def test_filters(self):
        log = EventLog()
        log.on_event(_submitted(1))
        log.on_event(PoolCreatedEvent(timestamp=2, pool_id="p", pool_type="CROP", authority="a"))
        log.on_event(_submitted(3))

        assert len(log.events) == 3
        assert [e.timestamp for e in log.of_type(ClaimSubmittedEvent)] == [1, 3]
        assert log.last(PoolCreatedEvent).timestamp == 2
        assert log.last().timestamp == 3

    def test_clear(self):
        log = EventLog()
        log.on_event(_submitted())
        log.clear()
        assert log.events == []
        assert log.last() is None


class TestDispatch:
    """Hook failures never escape."""

    def test_none(self):
        dispatch(None, _submitted())

    def test_exception_logged(self, caplog):
        class Broken:
            def on_event(self, event):
                raise RuntimeError("boom")

        with caplog.at_level(logging.WARNING, logger="poolguard.hooks"):
            dispatch(Broken(), _submitted())
        assert "claim_submitted" in caplog.text

    def test_composite_continues_after_failure(self):
        class Broken:
            def on_event(self, event):
                raise ValueError("boom")

        log = EventLog()
        hooks = CompositeHooks(Broken())
        hooks.add(log)
        hooks.on_event(_submitted())
        assert len(log.events) == 1

    def test_null_and_logging_hooks(self, caplog):
        NullHooks().on_event(_submitted())
        with caplog.at_level(logging.INFO, logger="poolguard.hooks"):
            LoggingHooks().on_event(_submitted())
        assert "[HOOK] claim_submitted" in caplog.text
