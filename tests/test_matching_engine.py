"""
Test suite for the dark pool matching engine.

Covers:
  - Commit intake validation
  - Reveal intake and the reveal-window boundary
  - Epoch ingest: decrypt, commitment check, limits, trader binding
  - Matching correctness and price-time priority
  - Settlement failure handling
  - Sweeping, cancellation, engine states
"""

import json
from decimal import Decimal

import pytest

from darkpool.constants import ZERO_COMMITMENT
from darkpool.crypto.commitment import commitment_for, generate_secret_nonce, verify_commitment
from darkpool.crypto.envelope import EngineKeyPair, encrypt_order, encrypt_payload
from darkpool.crypto.hashing import blake2b_hex
from darkpool.crypto.address import to_checksum_address
from darkpool.exceptions import InputRejected, VerificationFailed, WindowExpired
from darkpool.exchange.engine import MatchingEngine
from darkpool.exchange.orders import EncryptedOrder, EngineState, OrderDetails, OrderSide, OrderStatus
from darkpool.exchange.settlement import RecordingSettlement

TOKEN_A = "0x" + "11" * 20
TOKEN_B = "0x" + "22" * 20
TRADER_A = "0x" + "a1" * 20
TRADER_B = "0x" + "b2" * 20
TRADER_C = "0x" + "c3" * 20


def _details(trader=TRADER_A, is_buy=True, amount_in="1", amount_out="2",
             token_in=None, token_out=None):
    if token_in is None:
        token_in = TOKEN_A if is_buy else TOKEN_B
    if token_out is None:
        token_out = TOKEN_B if is_buy else TOKEN_A
    return OrderDetails(
        trader=trader,
        token_in=token_in,
        token_out=token_out,
        amount_in=Decimal(amount_in),
        amount_out=Decimal(amount_out),
        is_buy=is_buy,
        secret_nonce=generate_secret_nonce(),
    )


def _buy(trader=TRADER_A, amount_in="1", amount_out="2"):
    return _details(trader=trader, is_buy=True, amount_in=amount_in, amount_out=amount_out)


def _sell(trader=TRADER_B, amount_in="2", amount_out="1"):
    return _details(trader=trader, is_buy=False, amount_in=amount_in, amount_out=amount_out)


def _commit(engine, details, trader=None):
    commitment = commitment_for(details)
    engine.commit(commitment, engine.clock(), trader or details.trader)
    return commitment


def _reveal(engine, commitment, details):
    return engine.reveal(EncryptedOrder(commitment, encrypt_order(details, engine.public_key)))


def _submit(engine, details):
    commitment = _commit(engine, details)
    _reveal(engine, commitment, details)
    return commitment


@pytest.fixture
def engine(key_provider, settlement, clock):
    return MatchingEngine(key_provider, settlement, clock=clock)


# ============================================================================
# Commit
# ============================================================================


class TestCommit:

    def test_commit_registers_record(self, engine, clock):
        details = _buy()
        commitment = commitment_for(details)
        record = engine.commit(commitment, clock() - 5, TRADER_A)
        assert record.commitment == commitment
        assert record.trader == to_checksum_address(TRADER_A)
        assert record.submitted_at == clock()
        assert record.client_timestamp == clock() - 5
        assert engine.get_status(commitment) == OrderStatus.COMMITTED
        assert engine.get_commitment(commitment) is record

    def test_commit_moves_engine_to_collecting(self, engine):
        assert engine.state == EngineState.IDLE
        _commit(engine, _buy())
        assert engine.state == EngineState.COLLECTING

    def test_zero_commitment_rejected(self, engine, clock):
        with pytest.raises(InputRejected):
            engine.commit(ZERO_COMMITMENT, clock(), TRADER_A)

    @pytest.mark.parametrize("commitment", ["0x1234", "", "0x" + "zz" * 32, None])
    def test_malformed_commitment_rejected(self, engine, clock, commitment):
        with pytest.raises(InputRejected):
            engine.commit(commitment, clock(), TRADER_A)

    def test_bad_trader_rejected(self, engine, clock):
        with pytest.raises(InputRejected):
            engine.commit(commitment_for(_buy()), clock(), "not-an-address")

    def test_future_timestamp_beyond_skew_rejected(self, engine, clock):
        with pytest.raises(InputRejected, match="future"):
            engine.commit(commitment_for(_buy()), clock() + engine.max_clock_skew + 1, TRADER_A)

    def test_timestamp_within_skew_accepted(self, engine, clock):
        record = engine.commit(commitment_for(_buy()), clock() + engine.max_clock_skew, TRADER_A)
        assert record.submitted_at == clock()

    def test_negative_timestamp_rejected(self, engine):
        with pytest.raises(InputRejected):
            engine.commit(commitment_for(_buy()), -1, TRADER_A)

    def test_duplicate_commitment_rejected(self, engine, clock):
        commitment = _commit(engine, _buy())
        with pytest.raises(InputRejected, match="Duplicate"):
            engine.commit(commitment, clock(), TRADER_A)
        with pytest.raises(InputRejected, match="Duplicate"):
            engine.commit("0x" + commitment[2:].upper(), clock(), TRADER_A)

    def test_paused_engine_refuses_commits(self, engine, clock):
        engine.pause()
        assert engine.is_paused
        with pytest.raises(InputRejected, match="paused"):
            engine.commit(commitment_for(_buy()), clock(), TRADER_A)
        engine.resume()
        _commit(engine, _buy())


# ============================================================================
# Reveal
# ============================================================================


class TestReveal:

    def test_reveal_queues_for_next_epoch(self, engine, clock):
        details = _buy()
        commitment = _commit(engine, details)
        clock.advance(10)
        queued = _reveal(engine, commitment, details)
        assert queued.submitted_at == clock()
        assert engine.pending_reveal_count == 1
        assert engine.get_status(commitment) == OrderStatus.PENDING_REVEAL

    def test_unknown_commitment(self, engine):
        details = _buy()
        with pytest.raises(InputRejected, match="Unknown"):
            _reveal(engine, commitment_for(details), details)

    def test_empty_payload(self, engine):
        commitment = _commit(engine, _buy())
        with pytest.raises(InputRejected):
            engine.reveal(EncryptedOrder(commitment, b""))

    def test_double_reveal(self, engine):
        details = _buy()
        commitment = _submit(engine, details)
        with pytest.raises(InputRejected, match="already revealed"):
            _reveal(engine, commitment, details)

    def test_reveal_exactly_at_window_edge_accepted(self, engine, clock):
        details = _buy()
        commitment = _commit(engine, details)
        clock.advance(engine.reveal_window)
        _reveal(engine, commitment, details)
        assert engine.pending_reveal_count == 1

    def test_reveal_after_window_expires(self, engine, clock):
        details = _buy()
        commitment = _commit(engine, details)
        clock.advance(engine.reveal_window + 1)
        with pytest.raises(WindowExpired):
            _reveal(engine, commitment, details)

    def test_queue_limit(self, key_provider, settlement, clock):
        engine = MatchingEngine(key_provider, settlement, max_pending_reveals=1, clock=clock)
        _submit(engine, _buy())
        second = _sell()
        commitment = _commit(engine, second)
        with pytest.raises(InputRejected, match="full"):
            _reveal(engine, commitment, second)

    def test_paused_engine_refuses_reveals(self, engine):
        details = _buy()
        commitment = _commit(engine, details)
        engine.pause()
        with pytest.raises(InputRejected, match="paused"):
            _reveal(engine, commitment, details)


# ============================================================================
# Epoch ingest
# ============================================================================


class TestEpochIngest:

    def test_reveal_lands_on_book_unchanged(self, engine):
        details = _buy(amount_in="1.5", amount_out="3.25")
        commitment = _submit(engine, details)
        report = engine.run_epoch()

        assert report.accepted == [commitment]
        order = engine.get_order(commitment)
        assert order.trader == to_checksum_address(details.trader)
        assert order.token_in == to_checksum_address(details.token_in)
        assert order.token_out == to_checksum_address(details.token_out)
        assert order.amount_in == details.amount_in
        assert order.amount_out == details.amount_out
        assert order.side == OrderSide.BUY
        assert engine.get_status(commitment) == OrderStatus.OPEN
        assert engine.get_commitment(commitment) is None
        assert engine.pending_reveal_count == 0

    def test_undecryptable_reveal_discarded(self, engine):
        commitment = _commit(engine, _buy())
        engine.reveal(EncryptedOrder(commitment, b"\x01" * 80))
        report = engine.run_epoch()
        assert report.discarded[commitment].startswith("undecryptable")
        assert engine.get_status(commitment) == OrderStatus.REJECTED
        assert len(engine.book) == 0

    def test_envelope_for_other_engine_discarded(self, engine):
        details = _buy()
        commitment = _commit(engine, details)
        other = EngineKeyPair.generate()
        engine.reveal(EncryptedOrder(commitment, encrypt_order(details, other.public_key)))
        report = engine.run_epoch()
        assert commitment in report.discarded
        assert engine.get_status(commitment) == OrderStatus.REJECTED

    def test_commitment_mismatch_discarded(self, engine):
        committed = _buy()
        commitment = _commit(engine, committed)
        altered = OrderDetails(
            trader=committed.trader,
            token_in=committed.token_in,
            token_out=committed.token_out,
            amount_in=committed.amount_in,
            amount_out=Decimal("5"),
            is_buy=committed.is_buy,
            secret_nonce=committed.secret_nonce,
        )
        _reveal(engine, commitment, altered)
        report = engine.run_epoch()
        assert report.discarded[commitment] == "commitment mismatch"
        assert len(engine.book) == 0

    def test_rejected_reveal_can_be_retried(self, engine):
        details = _buy()
        commitment = _commit(engine, details)
        engine.reveal(EncryptedOrder(commitment, b"\x01" * 80))
        engine.run_epoch()
        assert engine.get_status(commitment) == OrderStatus.REJECTED

        _reveal(engine, commitment, details)
        report = engine.run_epoch()
        assert report.accepted == [commitment]
        assert engine.get_status(commitment) == OrderStatus.OPEN

    def test_order_below_minimum_discarded(self, engine):
        details = _buy(amount_in="0.01", amount_out="0.02")
        commitment = _submit(engine, details)
        report = engine.run_epoch()
        assert "below minimum" in report.discarded[commitment]

    def test_order_above_maximum_discarded(self, engine):
        details = _buy(amount_in="1001", amount_out="2")
        commitment = _submit(engine, details)
        report = engine.run_epoch()
        assert "above maximum" in report.discarded[commitment]

    def test_same_token_swap_discarded(self, engine):
        details = _details(token_in=TOKEN_A, token_out=TOKEN_A)
        commitment = _submit(engine, details)
        report = engine.run_epoch()
        assert commitment in report.discarded

    def test_trader_must_match_committer(self, engine):
        details = _buy(trader=TRADER_B)
        commitment = _commit(engine, details, trader=TRADER_A)
        _reveal(engine, commitment, details)
        report = engine.run_epoch()
        assert report.discarded[commitment] == "trader does not match committer"
        assert len(engine.book) == 0

    def test_bad_reveal_does_not_abort_epoch(self, engine):
        bad = _commit(engine, _buy())
        engine.reveal(EncryptedOrder(bad, b"\x02" * 90))
        good = _submit(engine, _sell())
        report = engine.run_epoch()
        assert bad in report.discarded
        assert report.accepted == [good]

    def test_non_hex_secret_nonce_does_not_abort_epoch(self, engine):
        payload = _details(trader=TRADER_C).to_dict()
        payload["secretNonce"] = [0] * 32
        bad = "0x" + "ab" * 32
        engine.commit(bad, engine.clock(), TRADER_C)
        engine.reveal(EncryptedOrder(bad, encrypt_payload(json.dumps(payload).encode(), engine.public_key)))
        buy = _submit(engine, _buy())
        sell = _submit(engine, _sell())

        report = engine.run_epoch()
        assert bad in report.discarded
        assert engine.get_status(bad) == OrderStatus.REJECTED
        assert report.accepted == [buy, sell]
        assert len(report.matches) == 1
        assert engine.get_status(buy) == OrderStatus.MATCHED

    def test_unexpected_ingest_error_only_drops_that_reveal(self, engine, monkeypatch):
        bad_details = _buy(trader=TRADER_C)
        bad = _submit(engine, bad_details)
        good = _submit(engine, _sell())

        def failing_verify(commitment, details):
            if commitment == bad:
                raise RuntimeError("encoder exploded")
            return verify_commitment(commitment, details)

        monkeypatch.setattr("darkpool.exchange.engine.verify_commitment", failing_verify)
        report = engine.run_epoch()
        assert report.discarded[bad] == "ingest error: encoder exploded"
        assert report.accepted == [good]
        assert engine.pending_reveal_count == 0

        # the record survives, so the trader can reveal again
        monkeypatch.undo()
        _reveal(engine, bad, bad_details)
        assert engine.run_epoch().matches[0].buy_commitment == bad

    def test_reveal_past_window_at_ingest_expires(self, engine, clock):
        details = _buy()
        commitment = _commit(engine, details)
        clock.advance(engine.reveal_window)
        _reveal(engine, commitment, details)
        clock.advance(1)
        report = engine.run_epoch()
        assert report.discarded[commitment] == "reveal window elapsed"
        assert engine.get_status(commitment) == OrderStatus.EXPIRED


# ============================================================================
# Matching
# ============================================================================


class TestMatching:

    def test_crossing_orders_match(self, engine, settlement):
        buy = _submit(engine, _buy())
        sell = _submit(engine, _sell())
        report = engine.run_epoch()

        assert len(report.matches) == 1
        match = report.matches[0]
        assert match.buy_commitment == buy
        assert match.sell_commitment == sell
        assert match.match_price == Decimal("0.5")
        assert match.epoch == 1
        assert match.id == blake2b_hex(buy, sell, "1")
        assert settlement.matches == [match]

        assert len(engine.book) == 0
        assert engine.get_status(buy) == OrderStatus.MATCHED
        assert engine.get_status(sell) == OrderStatus.MATCHED
        with pytest.raises(InputRejected, match="not found"):
            engine.candidates_for(buy)

    def test_uncrossed_orders_rest(self, engine):
        buy = _submit(engine, _buy(amount_in="1", amount_out="1"))
        sell = _submit(engine, _sell(amount_in="1", amount_out="2"))
        report = engine.run_epoch()
        assert report.matches == []
        assert engine.get_status(buy) == OrderStatus.OPEN
        assert engine.get_status(sell) == OrderStatus.OPEN
        assert engine.candidates_for(buy) == []

    def test_orders_on_book_match_in_later_epoch(self, engine):
        sell = _submit(engine, _sell())
        engine.run_epoch()
        buy = _submit(engine, _buy())
        report = engine.run_epoch()
        assert [(m.buy_commitment, m.sell_commitment) for m in report.matches] == [(buy, sell)]
        assert report.matches[0].epoch == 2

    def test_best_price_wins(self, engine):
        expensive = _submit(engine, _sell(amount_in="2", amount_out="2"))
        cheap = _submit(engine, _sell(trader=TRADER_C, amount_in="2", amount_out="1"))
        _submit(engine, _buy())
        report = engine.run_epoch()
        assert report.matches[0].sell_commitment == cheap
        assert engine.get_status(expensive) == OrderStatus.OPEN

    def test_earlier_reveal_wins_at_equal_price(self, engine, clock):
        early = _submit(engine, _sell())
        clock.advance(5)
        late = _submit(engine, _sell(trader=TRADER_C))
        _submit(engine, _buy())
        report = engine.run_epoch()
        assert report.matches[0].sell_commitment == early
        assert engine.get_status(late) == OrderStatus.OPEN

    def test_no_partial_fills(self, engine):
        _submit(engine, _buy())
        _submit(engine, _buy(trader=TRADER_C))
        _submit(engine, _sell())
        report = engine.run_epoch()
        assert len(report.matches) == 1
        assert len(engine.book) == 1

    def test_recent_matches_and_stats(self, engine):
        _submit(engine, _buy())
        _submit(engine, _sell())
        engine.run_epoch()
        assert len(engine.recent_matches(10)) == 1
        assert engine.recent_matches(0) == []
        assert engine.stats()["total_matches"] == 1
        assert engine.stats()["total_commits"] == 2


# ============================================================================
# Settlement
# ============================================================================


class RaisingSettlement(RecordingSettlement):

    def execute_match(self, match):
        raise RuntimeError("chain unavailable")


class TestSettlement:

    def test_failed_settlement_marks_orders(self, key_provider, clock):
        engine = MatchingEngine(key_provider, RecordingSettlement(fail_matches=True), clock=clock)
        buy = _submit(engine, _buy())
        sell = _submit(engine, _sell())
        report = engine.run_epoch()

        assert report.settlement_failures == [report.matches[0].id]
        assert engine.get_status(buy) == OrderStatus.SETTLEMENT_FAILED
        assert engine.get_status(sell) == OrderStatus.SETTLEMENT_FAILED
        assert len(engine.book) == 0

    def test_raising_collaborator_is_a_failure(self, key_provider, clock):
        engine = MatchingEngine(key_provider, RaisingSettlement(), clock=clock)
        buy = _submit(engine, _buy())
        _submit(engine, _sell())
        report = engine.run_epoch()
        assert len(report.settlement_failures) == 1
        assert engine.get_status(buy) == OrderStatus.SETTLEMENT_FAILED
        assert engine.stats()["total_settlement_failures"] == 1

    def test_failure_limited_to_one_match(self, key_provider, clock):
        failing = _buy()
        settlement = RecordingSettlement(fail_commitments={commitment_for(failing)})
        engine = MatchingEngine(key_provider, settlement, clock=clock)
        bad_buy = _submit(engine, failing)
        _submit(engine, _sell())
        good_buy = _submit(engine, _buy(trader=TRADER_C))
        _submit(engine, _sell(trader=TRADER_C))
        report = engine.run_epoch()

        assert len(report.matches) == 2
        assert engine.get_status(bad_buy) == OrderStatus.SETTLEMENT_FAILED
        assert engine.get_status(good_buy) == OrderStatus.MATCHED


# ============================================================================
# Sweep / cancel
# ============================================================================


class TestSweep:

    def test_unmatched_order_expires(self, engine, clock):
        commitment = _submit(engine, _buy())
        engine.run_epoch()
        clock.advance(engine.reveal_window + 1)
        report = engine.run_epoch()
        assert report.swept == [commitment]
        assert engine.get_status(commitment) == OrderStatus.EXPIRED
        assert len(engine.book) == 0

    def test_order_at_window_edge_survives(self, engine, clock):
        commitment = _submit(engine, _buy())
        engine.run_epoch()
        clock.advance(engine.reveal_window)
        engine.run_epoch()
        assert engine.get_status(commitment) == OrderStatus.OPEN

    def test_unrevealed_commitment_expires(self, engine, clock):
        commitment = _commit(engine, _buy())
        clock.advance(engine.reveal_window + 1)
        report = engine.run_epoch()
        assert commitment in report.swept
        assert engine.get_status(commitment) == OrderStatus.EXPIRED
        assert engine.get_commitment(commitment) is None


class TestCancel:

    def test_committer_can_cancel(self, engine):
        details = _buy()
        commitment = _commit(engine, details)
        engine.cancel(commitment, TRADER_A)
        assert engine.get_status(commitment) == OrderStatus.CANCELLED
        with pytest.raises(InputRejected, match="Unknown"):
            _reveal(engine, commitment, details)

    def test_cancelled_commitment_is_not_reusable(self, engine, clock):
        commitment = _commit(engine, _buy())
        engine.cancel(commitment, TRADER_A)
        with pytest.raises(InputRejected, match="Duplicate"):
            engine.commit(commitment, clock(), TRADER_A)

    def test_other_trader_cannot_cancel(self, engine):
        commitment = _commit(engine, _buy())
        with pytest.raises(VerificationFailed):
            engine.cancel(commitment, TRADER_B)
        assert engine.get_status(commitment) == OrderStatus.COMMITTED

    def test_cancel_at_window_edge(self, engine, clock):
        commitment = _commit(engine, _buy())
        clock.advance(engine.commitment_window)
        engine.cancel(commitment, TRADER_A)
        assert engine.get_status(commitment) == OrderStatus.CANCELLED

    def test_cancel_after_window(self, engine, clock):
        commitment = _commit(engine, _buy())
        clock.advance(engine.commitment_window + 1)
        with pytest.raises(WindowExpired):
            engine.cancel(commitment, TRADER_A)

    def test_revealed_order_cannot_be_cancelled(self, engine):
        commitment = _submit(engine, _buy())
        with pytest.raises(InputRejected, match="cannot be cancelled"):
            engine.cancel(commitment, TRADER_A)
        engine.run_epoch()
        with pytest.raises(InputRejected, match="cannot be cancelled"):
            engine.cancel(commitment, TRADER_A)

    def test_unknown_commitment(self, engine):
        with pytest.raises(InputRejected):
            engine.cancel(commitment_for(_buy()), TRADER_A)


# ============================================================================
# Engine state
# ============================================================================


class StateProbe(RecordingSettlement):
    """Records the engine state seen during settlement and can reveal mid-epoch."""

    def __init__(self):
        super().__init__()
        self.engine = None
        self.seen_states = []
        self.late_reveal = None

    def execute_match(self, match):
        self.seen_states.append(self.engine.state)
        if self.late_reveal is not None:
            commitment, details = self.late_reveal
            self.late_reveal = None
            _reveal(self.engine, commitment, details)
        return super().execute_match(match)


class TestEngineState:

    def test_empty_epoch_increments_and_idles(self, engine):
        report = engine.run_epoch()
        assert report.epoch == 1
        assert engine.current_epoch == 1
        assert engine.state == EngineState.IDLE
        engine.run_epoch()
        assert engine.current_epoch == 2

    def test_state_is_matching_during_settlement(self, key_provider, clock):
        probe = StateProbe()
        engine = MatchingEngine(key_provider, probe, clock=clock)
        probe.engine = engine
        _submit(engine, _buy())
        _submit(engine, _sell())
        engine.run_epoch()
        assert probe.seen_states == [EngineState.MATCHING]
        assert engine.state == EngineState.IDLE

    def test_reveal_during_epoch_lands_in_next_epoch(self, key_provider, clock):
        probe = StateProbe()
        engine = MatchingEngine(key_provider, probe, clock=clock)
        probe.engine = engine
        late = _sell(trader=TRADER_C)
        late_commitment = _commit(engine, late)
        probe.late_reveal = (late_commitment, late)
        _submit(engine, _buy())
        _submit(engine, _sell())

        first = engine.run_epoch()
        assert late_commitment not in first.accepted
        assert engine.pending_reveal_count == 1
        assert engine.state == EngineState.COLLECTING

        second = engine.run_epoch()
        assert second.accepted == [late_commitment]

    def test_status_snapshot(self, engine):
        _commit(engine, _buy())
        _submit(engine, _sell())
        status = engine.status()
        assert status == {
            "buy_orders": 0,
            "sell_orders": 0,
            "pending_orders": 1,
            "pending_commitments": 2,
            "current_epoch": 0,
            "state": "collecting",
            "paused": False,
        }
        engine.run_epoch()
        status = engine.status()
        assert status["sell_orders"] == 1
        assert status["pending_commitments"] == 1

    def test_windows_must_be_positive(self, key_provider):
        with pytest.raises(ValueError):
            MatchingEngine(key_provider, reveal_window=0)
