# ledger_watch/apps/dashboard_cli.py
"""
Command line front-end for the live engines.

Sub-commands:
  pulse     Poll the chain head and log every published snapshot.
  holdings  Track one or more token contracts and print the portfolio.
  explore   Look up a single token contract.

Every command reads --config (or `settings.yaml` when present) plus LEDGER_WATCH_* env
overrides, and talks to the configured JSON-RPC node unless --offline points
at a fixture file.
"""
import argparse
import os
import asyncio
import signal
import sys
from typing import List, Optional

from dotenv import load_dotenv
from loguru import logger

from ledger_watch.core.config import ConfigError, Settings, load_settings
from ledger_watch.core.custom_types import PulseState
from ledger_watch.core.errors import LedgerWatchError
from ledger_watch.core.formatting import (
    format_grouped,
    format_share,
    format_size_kb,
    format_token_amount,
    shorten_hash,
    time_ago,
)
from ledger_watch.core.mathutils import gas_utilization
from ledger_watch.live.chain_pulse import ChainPulse
from ledger_watch.live.explorer import TokenExplorer
from ledger_watch.live.holdings import HoldingsLedger
from ledger_watch.onchain.base import ChainQueryClient, StaticIdentity
from ledger_watch.onchain.offline import OfflineChainClient
from ledger_watch.onchain.rpc_client import JsonRpcChainClient


def setup_logging(log_level: str, log_file: Optional[str] = None) -> None:
    """Route loguru to stderr (and optionally a rotating file)."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=log_level.upper(),
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} - {level} - {message}",
    )
    if log_file:
        logger.add(
            log_file,
            level=log_level.upper(),
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} - {level} - {name}:{line} - {message}",
            rotation="10 MB",
        )


def build_client(args: argparse.Namespace, settings: Settings) -> ChainQueryClient:
    if args.offline:
        return OfflineChainClient.from_file(args.offline)
    return JsonRpcChainClient(settings.rpc.url, timeout_sec=settings.rpc.timeout_sec)


async def _close(client: ChainQueryClient) -> None:
    close = getattr(client, "close", None)
    if close is not None:
        await close()


def describe_state(state: PulseState) -> str:
    snap = state.snapshot
    if not snap.connected:
        return "not yet connected"
    parts = [f"#{format_grouped(snap.head_height)}"]
    if state.pulse:
        parts.append("NEW BLOCK")
    gas = snap.gas_parameters
    if gas is not None:
        tiers = gas.fee_tiers
        parts.append(f"base gas {format_grouped(gas.base_gas)}")
        parts.append(f"gas/sat {format_grouped(gas.gas_per_sat)}")
        parts.append(f"fees {tiers.low:g}/{tiers.medium:g}/{tiers.high:g} sat/vB")
        parts.append(f"gas used {gas_utilization(gas)}%")
    b = snap.latest_block
    if b is not None:
        parts.append(
            f"latest {shorten_hash(b.hash)} {b.tx_count} txs {format_size_kb(b.size_bytes)} {time_ago(b.timestamp_seconds)}"
        )
    if snap.recent_blocks:
        parts.append("recent " + ",".join(str(rb.height) for rb in snap.recent_blocks))
    return " | ".join(parts)


async def handle_pulse(args: argparse.Namespace, settings: Settings) -> int:
    client = build_client(args, settings)
    pulse = ChainPulse.from_settings(client, settings)
    stop = asyncio.Event()

    def _on_state(state: PulseState) -> None:
        logger.info(describe_state(state))
        if args.cycles and pulse.metrics.counters["cycles_ok"] >= args.cycles:
            stop.set()

    pulse.subscribe(_on_state)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # pragma: no cover - windows
            pass

    interval = args.interval or settings.pulse.poll_interval_ms
    try:
        async with pulse.running(interval):
            await stop.wait()
    finally:
        await _close(client)
        logger.info("Poll metrics: {}", pulse.metrics.snapshot())
    return 0


def render_holdings(ledger: HoldingsLedger, fraction_digits: int) -> str:
    view = ledger.view
    if not view.holdings:
        return "No tokens tracked."
    lines = [f"{'SYMBOL':<10} {'NAME':<20} {'BALANCE':>24} {'SHARE':>8} {'WEIGHT':>7}  COLOR    ADDRESS"]
    for h, seg in zip(view.holdings, view.segments):
        lines.append(
            f"{h.symbol:<10} {h.display_name[:20]:<20} "
            f"{format_token_amount(h.balance, h.decimals, fraction_digits):>24} "
            f"{format_share(h.supply_share):>8} {seg.weight:>6.1f}%  {seg.color}  {h.contract_address}"
        )
    return "\n".join(lines)


async def handle_holdings(args: argparse.Namespace, settings: Settings) -> int:
    client = build_client(args, settings)
    identity = StaticIdentity(args.identity or settings.identity.address)
    ledger = HoldingsLedger(client, identity, palette=settings.holdings.palette)
    failures = 0
    try:
        for address in list(settings.holdings.tracked) + list(args.addresses):
            try:
                await ledger.add(address)
            except LedgerWatchError as e:
                failures += 1
                logger.error("{}: {}", address, e)
    finally:
        await _close(client)
    if identity.current_identity() is None:
        logger.warning("No identity configured; balances are shown as zero.")
    print(render_holdings(ledger, settings.holdings.portfolio_fraction_digits))
    return 1 if failures and not ledger.holdings else 0


async def handle_explore(args: argparse.Namespace, settings: Settings) -> int:
    client = build_client(args, settings)
    identity = StaticIdentity(args.identity or settings.identity.address)
    try:
        report = await TokenExplorer(client, identity).explore(args.address)
    except LedgerWatchError as e:
        logger.error("{}", e)
        return 1
    finally:
        await _close(client)
    md = report.metadata
    digits = settings.holdings.explorer_fraction_digits
    print(f"{md.name} ({md.symbol}) at {report.contract_address}")
    print(f"  decimals:     {md.decimals}")
    print(f"  total supply: {format_token_amount(md.total_supply, md.decimals, digits)}")
    if report.balance is not None:
        print(f"  balance:      {format_token_amount(report.balance, md.decimals, digits)}")
        print(f"  supply share: {format_share(report.supply_share or 0.0)}")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Creates the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ledger-watch",
        description="Chain head monitor and token portfolio tracker",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", required=True, help="Available sub-commands")

    common_parser = argparse.ArgumentParser(add_help=False)
    common_parser.add_argument(
        "--config", type=str, default=None, help="Path to a YAML configuration file."
    )
    common_parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (overrides logging.level).",
    )
    common_parser.add_argument(
        "--offline", type=str, default=None, metavar="FIXTURE", help="Use a YAML chain fixture instead of RPC."
    )

    parser_pulse = subparsers.add_parser("pulse", help="Poll the chain head.", parents=[common_parser])
    parser_pulse.add_argument("--interval", type=int, default=None, help="Poll interval in ms.")
    parser_pulse.add_argument("--cycles", type=int, default=0, help="Stop after N published snapshots (0 = run forever).")
    parser_pulse.set_defaults(func=handle_pulse)

    parser_hold = subparsers.add_parser("holdings", help="Track token contracts.", parents=[common_parser])
    parser_hold.add_argument("addresses", nargs="*", help="Token contract addresses.")
    parser_hold.add_argument("--identity", type=str, default=None, help="Wallet address for balances.")
    parser_hold.set_defaults(func=handle_holdings)

    parser_exp = subparsers.add_parser("explore", help="Look up one token contract.", parents=[common_parser])
    parser_exp.add_argument("address", help="Token contract address.")
    parser_exp.add_argument("--identity", type=str, default=None, help="Wallet address for balances.")
    parser_exp.set_defaults(func=handle_explore)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = create_parser().parse_args(argv)
    try:
        config_path = args.config or ("settings.yaml" if os.path.isfile("settings.yaml") else None)
        settings = load_settings(config_path)
    except ConfigError as e:
        setup_logging("INFO")
        logger.error("Failed to start due to configuration error: {}", e)
        return 2
    setup_logging(args.log_level or settings.logging.level, settings.logging.file)
    try:
        return asyncio.run(args.func(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
