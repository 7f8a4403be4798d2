"""
Tests for scanner.py - cheap filter, verification hand-off, tick batching.
"""
import asyncio
import dataclasses

import pytest
from unittest.mock import AsyncMock, MagicMock
from solders.hash import Hash
from solders.keypair import Keypair

from roundtrip_arb.config import TokenPair
from roundtrip_arb.dispatcher import ExecutionDispatcher
from roundtrip_arb.executor import ExecutionMode, ExecutionOutcome, TransactionExecutor
from roundtrip_arb.scanner import Scanner
from roundtrip_arb.solana_client import SimulationResult
from roundtrip_arb.verifier import AntiLossVerifier, VerifiedRoundTrip


def quote_table(routes):
    """compute_routes side effect that answers from a {(in, out): route} table."""
    async def compute_routes(input_mint, output_mint, amount, slippage_bps=50):
        route = routes.get((input_mint, output_mint))
        return [route] if route is not None else []
    return compute_routes


class TestScannerEvaluatePair:
    """Tests for the cheap filter."""

    @pytest.fixture
    def verifier(self):
        return AsyncMock()

    @pytest.mark.asyncio
    async def test_second_leg_quoted_on_first_leg_output(
        self, bot_config, mock_jupiter_client, verifier, sol_usdc_pair, make_route, sol_mint, usdc_mint
    ):
        out = make_route(sol_mint, usdc_mint, 10_000_000, 1_500_000)
        back = make_route(usdc_mint, sol_mint, 1_500_000, 10_020_000)
        mock_jupiter_client.compute_routes.side_effect = quote_table({
            (sol_mint, usdc_mint): out,
            (usdc_mint, sol_mint): back,
        })
        verifier.verify.return_value = VerifiedRoundTrip(out, back, 10_000_000, 10_020_000)
        scanner = Scanner(bot_config, mock_jupiter_client, verifier)

        candidate = await scanner.evaluate_pair(sol_usdc_pair)

        first, second = mock_jupiter_client.compute_routes.await_args_list
        assert first.args == (sol_mint, usdc_mint, 10_000_000, 50)
        assert second.args == (usdc_mint, sol_mint, 1_500_000, 50)
        verifier.verify.assert_awaited_once_with(sol_usdc_pair, 10_000_000)
        assert candidate.preliminary_profit == 20_000
        assert candidate.verified_profit == 20_000
        assert candidate.profit_usd_estimate == pytest.approx(0.003)

    @pytest.mark.asyncio
    async def test_high_impact_stops_after_first_leg(
        self, bot_config, mock_jupiter_client, verifier, sol_usdc_pair, make_route, sol_mint, usdc_mint
    ):
        """Impact of 0.6 is a rejection even with an enormous apparent profit."""
        mock_jupiter_client.compute_routes.side_effect = quote_table({
            (sol_mint, usdc_mint): make_route(sol_mint, usdc_mint, 10_000_000, 20_000_000, impact=0.6),
            (usdc_mint, sol_mint): make_route(usdc_mint, sol_mint, 20_000_000, 90_000_000),
        })
        scanner = Scanner(bot_config, mock_jupiter_client, verifier)

        stats = await scanner.tick()

        assert mock_jupiter_client.compute_routes.await_count == 1
        verifier.verify.assert_not_awaited()
        assert stats.rejections["PriceImpactExceeded"] == 1
        assert stats.candidates == 0

    @pytest.mark.asyncio
    async def test_no_profit_is_not_verified(
        self, bot_config, mock_jupiter_client, verifier, make_route, sol_mint, usdc_mint
    ):
        mock_jupiter_client.compute_routes.side_effect = quote_table({
            (sol_mint, usdc_mint): make_route(sol_mint, usdc_mint, 10_000_000, 1_500_000),
            (usdc_mint, sol_mint): make_route(usdc_mint, sol_mint, 1_500_000, 10_000_000),
        })
        scanner = Scanner(bot_config, mock_jupiter_client, verifier)

        stats = await scanner.tick()

        verifier.verify.assert_not_awaited()
        assert stats.rejections["NoProfitAfterRoundtrip"] == 1

    @pytest.mark.asyncio
    async def test_missing_route_is_quote_unavailable(self, bot_config, mock_jupiter_client, verifier):
        mock_jupiter_client.compute_routes.return_value = []
        scanner = Scanner(bot_config, mock_jupiter_client, verifier)

        stats = await scanner.tick()

        assert stats.rejections["QuoteUnavailable"] == 1
        assert stats.errors == 0

    @pytest.mark.asyncio
    async def test_quote_timeout_is_quote_unavailable(self, bot_config, mock_jupiter_client, verifier):
        async def slow(*args):
            await asyncio.sleep(1)
            return []

        mock_jupiter_client.compute_routes.side_effect = slow
        config = dataclasses.replace(bot_config, quote_timeout_seconds=0.01)
        scanner = Scanner(config, mock_jupiter_client, verifier)

        stats = await scanner.tick()

        assert stats.rejections["QuoteUnavailable"] == 1

    @pytest.mark.asyncio
    async def test_price_moved_during_verification_is_not_dispatched(
        self, bot_config, mock_jupiter_client, verifier, make_route, sol_mint, usdc_mint
    ):
        mock_jupiter_client.compute_routes.side_effect = quote_table({
            (sol_mint, usdc_mint): make_route(sol_mint, usdc_mint, 10_000_000, 1_500_000),
            (usdc_mint, sol_mint): make_route(usdc_mint, sol_mint, 1_500_000, 10_050_000),
        })
        verifier.verify.return_value = None
        dispatch = MagicMock(return_value=True)
        scanner = Scanner(bot_config, mock_jupiter_client, verifier, dispatch=dispatch)

        stats = await scanner.tick()

        dispatch.assert_not_called()
        assert stats.rejections["VerificationRejected"] == 1


class TestScannerTick:
    """Tests for batching, isolation and dispatch."""

    @pytest.fixture
    def many_pairs(self):
        return [
            TokenPair(base_mint=str(Keypair().pubkey()), quote_mint=str(Keypair().pubkey()),
                      base_symbol=f"T{i}", quote_symbol="Q")
            for i in range(10)
        ]

    @pytest.mark.asyncio
    async def test_concurrency_bounded_by_batch_size(self, bot_config, mock_jupiter_client, many_pairs):
        config = dataclasses.replace(bot_config, pairs=many_pairs, max_concurrent_pairs=4)
        active = 0
        peak = 0

        async def compute_routes(*args):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return []

        mock_jupiter_client.compute_routes.side_effect = compute_routes
        scanner = Scanner(config, mock_jupiter_client, AsyncMock())

        stats = await scanner.tick()

        assert stats.pairs_scanned == 10
        assert peak == 4
        assert stats.rejections["QuoteUnavailable"] == 10

    @pytest.mark.asyncio
    async def test_one_failing_pair_does_not_affect_others(
        self, bot_config, mock_jupiter_client, sol_usdc_pair, make_route, sol_mint, usdc_mint, jup_mint
    ):
        jup_pair = TokenPair.from_symbols("SOL", "JUP")
        config = dataclasses.replace(bot_config, pairs=[jup_pair, sol_usdc_pair])
        table = quote_table({
            (sol_mint, usdc_mint): make_route(sol_mint, usdc_mint, 10_000_000, 1_500_000),
            (usdc_mint, sol_mint): make_route(usdc_mint, sol_mint, 1_500_000, 10_010_000),
        })

        async def compute_routes(input_mint, output_mint, amount, slippage_bps):
            if jup_mint in (input_mint, output_mint):
                raise RuntimeError("connection reset")
            return await table(input_mint, output_mint, amount, slippage_bps)

        mock_jupiter_client.compute_routes.side_effect = compute_routes
        verifier = AntiLossVerifier(mock_jupiter_client, verify_slippage_bps=20)
        dispatch = MagicMock(return_value=True)
        scanner = Scanner(config, mock_jupiter_client, verifier, dispatch=dispatch)

        stats = await scanner.tick()

        assert stats.errors == 1
        assert stats.candidates == 1
        assert stats.dispatched == 1
        assert dispatch.call_args.args[0].pair == sol_usdc_pair

    @pytest.mark.asyncio
    async def test_scan_mode_never_dispatches(
        self, bot_config, mock_jupiter_client, make_route, sol_mint, usdc_mint
    ):
        mock_jupiter_client.compute_routes.side_effect = quote_table({
            (sol_mint, usdc_mint): make_route(sol_mint, usdc_mint, 10_000_000, 1_500_000),
            (usdc_mint, sol_mint): make_route(usdc_mint, sol_mint, 1_500_000, 10_010_000),
        })
        config = dataclasses.replace(bot_config, mode="scan")
        dispatch = MagicMock(return_value=True)
        scanner = Scanner(config, mock_jupiter_client, AntiLossVerifier(mock_jupiter_client), dispatch=dispatch)

        stats = await scanner.tick()

        assert stats.candidates == 1
        dispatch.assert_not_called()
        assert stats.dispatched == 0

    @pytest.mark.asyncio
    async def test_refused_and_failing_dispatch_count_as_dropped(
        self, bot_config, mock_jupiter_client, make_route, sol_mint, usdc_mint
    ):
        mock_jupiter_client.compute_routes.side_effect = quote_table({
            (sol_mint, usdc_mint): make_route(sol_mint, usdc_mint, 10_000_000, 1_500_000),
            (usdc_mint, sol_mint): make_route(usdc_mint, sol_mint, 1_500_000, 10_010_000),
        })
        dispatch = MagicMock(side_effect=[False, RuntimeError("queue gone")])
        scanner = Scanner(bot_config, mock_jupiter_client, AntiLossVerifier(mock_jupiter_client), dispatch=dispatch)

        first = await scanner.tick()
        second = await scanner.tick()

        assert first.dropped == 1
        assert second.dropped == 1
        assert dispatch.call_count == 2

    @pytest.mark.asyncio
    async def test_run_survives_failing_tick(self, bot_config, mock_jupiter_client):
        scanner = Scanner(bot_config, mock_jupiter_client, AsyncMock())
        calls = 0

        async def tick():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("boom")
            scanner.stop()
            return await Scanner.tick(scanner)

        scanner.tick = tick
        mock_jupiter_client.compute_routes.return_value = []

        await asyncio.wait_for(scanner.run(), timeout=2)

        assert calls == 2
        assert scanner.iterations == 2


class TestScannerEndToEnd:
    """Scanner, verifier, dispatcher and executor wired together."""

    @pytest.mark.asyncio
    async def test_profitable_round_trip_is_simulated(
        self, bot_config, mock_keypair, make_route, make_swap_instructions, mock_log_sink, sol_mint, usdc_mint
    ):
        """10M -> 20M -> 20M ends in one simulated result with no signature."""
        quote_source = AsyncMock()
        quote_source.compute_routes.side_effect = quote_table({
            (sol_mint, usdc_mint): make_route(sol_mint, usdc_mint, 10_000_000, 20_000_000),
            (usdc_mint, sol_mint): make_route(usdc_mint, sol_mint, 20_000_000, 20_000_000),
        })
        quote_source.build_swap.side_effect = lambda *a, **k: make_swap_instructions(mock_keypair)

        chain = AsyncMock()
        chain.get_latest_blockhash.return_value = (Hash.default(), 1_000)
        chain.simulate.return_value = SimulationResult(err=None)

        relay = MagicMock()
        relay.enabled = False

        executor = TransactionExecutor(quote_source, chain, relay, mock_log_sink)
        dispatcher = ExecutionDispatcher(executor, mock_keypair, ExecutionMode.SIMULATE_ONLY, workers=1)
        verifier = AntiLossVerifier(quote_source, verify_slippage_bps=20)
        scanner = Scanner(bot_config, quote_source, verifier, dispatch=dispatcher.submit)

        dispatcher.start()
        try:
            stats = await scanner.tick()
            await asyncio.wait_for(dispatcher.join(), timeout=2)
        finally:
            await dispatcher.stop(drain_timeout=1)

        assert stats.candidates == 1
        assert stats.dispatched == 1
        result = dispatcher.last_result
        assert result.outcome is ExecutionOutcome.SIMULATED
        assert result.signature is None
        chain.broadcast.assert_not_awaited()
        mock_log_sink.record.assert_called_once_with(result)
