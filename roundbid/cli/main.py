"""
roundbid CLI - Command Line Interface for the auction engine

Main entry point for all CLI commands. State lives in a SQLite database
under --data-dir, so successive commands operate on the same auctions.
"""

import json
from pathlib import Path

import click

from roundbid.utils.logger import setup_from_config


def _engine(ctx):
    """Build (once per invocation) the engine bound to the data directory."""
    if "engine" not in ctx.obj:
        from roundbid.core.clock import ManualClock, build_clock
        from roundbid.core.engine import AuctionEngine
        from roundbid.core.storage import StorageManager

        config = ctx.obj["config"]
        if ctx.obj["at"] is not None:
            clock = ManualClock(ctx.obj["at"])
        else:
            clock = build_clock(config.time_source_url, config.clock_sync_interval, config.time_source_timeout)
            # One resync up front; reads never contact the time source
            clock.sync()

        storage = StorageManager(config.data_dir)
        ctx.obj["engine"] = AuctionEngine(config, clock, storage_manager=storage)
        ctx.call_on_close(storage.close)
    return ctx.obj["engine"]


def _reject(ctx, result):
    reason = result.reason.name if result.reason is not None else "FAILED"
    click.echo(f"❌ Rejected: {reason} - {result.message}")
    ctx.exit(1)


def _fmt_time(ts):
    if ts is None:
        return "-"
    return f"{ts:.0f}"


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--data-dir", default=None, help="Data directory (default: ROUNDBID_DATA_DIR or ./data)")
@click.option("--at", "at", type=float, default=None, help="Evaluate at this epoch time instead of the clock")
@click.option("--env-file", default=None, help="Path to a .env file")
@click.version_option(version="0.1.0")
@click.pass_context
def cli(ctx, debug, data_dir, at, env_file):
    """roundbid - Timed multi-round auctions with prize claim escalation"""
    from roundbid.core.config import load_config

    config = load_config(env_file)
    if data_dir:
        config.data_dir = Path(data_dir).expanduser()

    try:
        setup_from_config(config, debug)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="ROUNDBID_LOG_LEVEL")

    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["at"] = at
    config.data_dir.mkdir(parents=True, exist_ok=True)


# =============================================================================
# Auction Commands
# =============================================================================


@cli.group()
def auction():
    """Auction management commands"""
    pass


@auction.command("create")
@click.argument("name")
@click.option("--prize", required=True, type=int, help="Prize value")
@click.option("--fee", required=True, type=int, help="Entry fee")
@click.option("--start", type=float, default=None, help="Start time (epoch seconds)")
@click.option("--start-in", type=int, default=300, help="Seconds from now until start, if --start is absent")
@click.option("--id", "auction_id", default=None, help="Explicit auction id (default: the HA code)")
@click.pass_context
def auction_create(ctx, name, prize, fee, start, start_in, auction_id):
    """Schedule a new auction"""
    engine = _engine(ctx)
    start_time = start if start is not None else engine.clock.now() + start_in

    try:
        created = engine.create_auction(name, start_time, prize_value=prize, entry_fee=fee,
                                        auction_id=auction_id)
    except ValueError as e:
        click.echo(f"❌ Invalid auction: {e}")
        ctx.exit(1)
        return

    click.echo(f"✓ Auction created: {created.code}")
    click.echo(f"  ID: {created.auction_id}")
    click.echo(f"  Starts: {_fmt_time(created.start_time)}")
    click.echo(f"  Rounds: {created.total_rounds} x {created.round_length // 60} min")


@auction.command("list")
@click.pass_context
def auction_list(ctx):
    """List all auctions"""
    engine = _engine(ctx)
    auctions = engine.list_auctions()
    if not auctions:
        click.echo("No auctions found.")
        return
    for a in auctions:
        click.echo(f"  {a.code}  {a.auction_id}  {engine.status(a.auction_id).value:<10} {a.name}")


@auction.command("status")
@click.argument("auction_id")
@click.option("--json", "as_json", is_flag=True, help="Print JSON")
@click.pass_context
def auction_status(ctx, auction_id, as_json):
    """Show the status of an auction"""
    from roundbid.core.errors import AuctionNotFound

    engine = _engine(ctx)
    try:
        view = engine.status_view(auction_id)
    except AuctionNotFound as e:
        click.echo(f"❌ {e}")
        ctx.exit(1)
        return

    if as_json:
        click.echo(view.model_dump_json(indent=2))
        return

    click.echo(f"Auction {view.code} - {view.name}")
    click.echo("-" * 40)
    click.echo(f"  Status: {view.status.value}")
    if view.current_round is not None:
        click.echo(f"  Round: {view.current_round}")
    if view.seconds_remaining is not None:
        click.echo(f"  Next transition in: {view.seconds_remaining:.0f}s")
    click.echo(f"  Participants: {view.participants}")
    if view.cancelled_by:
        click.echo(f"  Cancelled by: {view.cancelled_by}")
    if view.clock_stale:
        click.echo("  ⚠️  Clock is stale (time source unreachable)")


@auction.command("cancel")
@click.argument("auction_id")
@click.option("--admin", required=True, help="Admin id")
@click.pass_context
def auction_cancel(ctx, auction_id, admin):
    """Cancel an auction and refund entry fees"""
    from roundbid.core.errors import EngineError

    engine = _engine(ctx)
    try:
        result = engine.cancel(auction_id, admin)
    except EngineError as e:
        click.echo(f"❌ {e}")
        ctx.exit(1)
        return
    if not result.accepted:
        _reject(ctx, result)
        return
    click.echo(f"✅ Auction {auction_id} cancelled")
    click.echo(f"   Refunds requested: {result.refunded}")


@auction.command("leaderboard")
@click.argument("auction_id")
@click.option("--round", "round_number", type=int, default=None, help="Round (default: open or deciding round)")
@click.option("--json", "as_json", is_flag=True, help="Print JSON")
@click.pass_context
def auction_leaderboard(ctx, auction_id, round_number, as_json):
    """Show ranked bids of a round"""
    from roundbid.core.errors import EngineError

    engine = _engine(ctx)
    try:
        entries = engine.leaderboard(auction_id, round_number)
    except (EngineError, ValueError) as e:
        click.echo(f"❌ {e}")
        ctx.exit(1)
        return

    if as_json:
        click.echo(json.dumps([e.model_dump() for e in entries], indent=2))
        return

    if not entries:
        click.echo("No bids yet.")
        return
    for e in entries:
        mark = "" if e.qualified else "  (not qualified)"
        click.echo(f"  #{e.rank:<3} {e.participant_id:<20} {e.amount:>10}{mark}")


# =============================================================================
# Entry & Bid Commands
# =============================================================================


@cli.group()
def entry():
    """Entry fee commands"""
    pass


@entry.command("pay")
@click.argument("auction_id")
@click.argument("participant_id")
@click.option("--name", "display_name", default=None, help="Display name")
@click.pass_context
def entry_pay(ctx, auction_id, participant_id, display_name):
    """Pay the entry fee of an auction"""
    from roundbid.core.errors import EngineError

    engine = _engine(ctx)
    try:
        result = engine.pay_entry(auction_id, participant_id, display_name)
    except EngineError as e:
        click.echo(f"❌ {e}")
        ctx.exit(1)
        return
    if not result.accepted:
        _reject(ctx, result)
        return
    click.echo(f"✅ {participant_id} entered {auction_id}")
    click.echo(f"   Payment: {result.payment_ref}")


@cli.command("bid")
@click.argument("auction_id")
@click.argument("participant_id")
@click.argument("round_number", type=int)
@click.argument("amount", type=int)
@click.pass_context
def bid(ctx, auction_id, participant_id, round_number, amount):
    """Submit a bid for a round"""
    from roundbid.core.errors import EngineError

    engine = _engine(ctx)
    try:
        result = engine.submit_bid(auction_id, participant_id, round_number, amount)
    except EngineError as e:
        click.echo(f"❌ {e}")
        ctx.exit(1)
        return
    if not result.accepted:
        _reject(ctx, result)
        return
    click.echo(f"✅ Bid accepted: round {round_number}, amount {amount}")


# =============================================================================
# Claim Commands
# =============================================================================


@cli.group()
def claim():
    """Prize claim commands"""
    pass


@claim.command("status")
@click.argument("auction_id")
@click.option("--json", "as_json", is_flag=True, help="Print JSON")
@click.pass_context
def claim_status(ctx, auction_id, as_json):
    """Show the claim ticket of a completed auction"""
    from roundbid.core.errors import EngineError

    engine = _engine(ctx)
    try:
        view = engine.claim_view(auction_id)
    except EngineError as e:
        click.echo(f"❌ {e}")
        ctx.exit(1)
        return

    if as_json:
        click.echo(view.model_dump_json(indent=2))
        return

    click.echo(f"Claim ticket {auction_id}: {view.status.value}")
    if view.current_rank is not None:
        click.echo(f"  Holder: rank {view.current_rank}, deadline {_fmt_time(view.deadline)}")
    if view.claimed_by:
        click.echo(f"  Claimed by: {view.claimed_by}")
    if view.prize_unclaimed:
        click.echo("  Prize unclaimed")
    for rc in view.ranks:
        click.echo(f"  #{rc.rank} {rc.participant_id:<20} {rc.amount:>10}  {rc.status.value}")
    if view.clock_stale:
        click.echo("  ⚠️  Clock is stale (time source unreachable)")


@claim.command("pay")
@click.argument("auction_id")
@click.argument("participant_id")
@click.option("--fail", is_flag=True, help="Simulate a failed payment")
@click.pass_context
def claim_pay(ctx, auction_id, participant_id, fail):
    """Pay for the prize as the current claim holder"""
    from roundbid.core.errors import EngineError

    engine = _engine(ctx)
    try:
        result = engine.initiate_claim(auction_id, participant_id)
        if result.accepted:
            result = engine.confirm_claim_payment(auction_id, participant_id, result.payment_ref,
                                                  success=not fail)
    except EngineError as e:
        click.echo(f"❌ {e}")
        ctx.exit(1)
        return

    if not result.accepted:
        _reject(ctx, result)
        return
    click.echo(f"✅ Prize claimed by {participant_id} (rank {result.rank})")


@claim.command("forfeit")
@click.argument("auction_id")
@click.argument("participant_id")
@click.pass_context
def claim_forfeit(ctx, auction_id, participant_id):
    """Give up the claim right to the next rank"""
    from roundbid.core.errors import EngineError

    engine = _engine(ctx)
    try:
        result = engine.forfeit(auction_id, participant_id)
    except EngineError as e:
        click.echo(f"❌ {e}")
        ctx.exit(1)
        return

    if not result.accepted:
        _reject(ctx, result)
        return
    click.echo(f"✅ Rank {result.rank} forfeited")


@cli.command("sweep")
@click.option("--loop", is_flag=True, help="Keep sweeping every sweep_interval seconds")
@click.pass_context
def sweep(ctx, loop):
    """Process claim queues of all completed auctions"""
    engine = _engine(ctx)

    if not loop:
        result = engine.sweep()
        click.echo(f"Processed: {result['processed']}  Advanced: {result['advanced']}")
        return

    import asyncio
    from roundbid.core.sweeper import ClaimSweeper

    async def run_sweeper():
        sweeper = ClaimSweeper(engine)
        await sweeper.start()
        click.echo(f"Sweeping every {sweeper.interval}s. Press Ctrl+C to stop.")
        try:
            while True:
                await asyncio.sleep(3600)
        except asyncio.CancelledError:
            pass
        finally:
            await sweeper.stop()

    try:
        asyncio.run(run_sweeper())
    except KeyboardInterrupt:
        click.echo("\nSweeper stopped.")


# =============================================================================
# Demo Command
# =============================================================================


@cli.command("demo")
def demo():
    """Run an in-memory walkthrough of a full auction"""
    from roundbid.core.clock import ManualClock
    from roundbid.core.engine import AuctionEngine

    start = 1_700_000_000.0
    clock = ManualClock(start - 600)
    engine = AuctionEngine(clock=clock)
    L = engine.config.round_length

    click.echo("=" * 60)
    click.echo("  ROUNDBID - DEMO")
    click.echo("=" * 60)
    click.echo()

    a = engine.create_auction("Demo Lamp", start, prize_value=5000, entry_fee=50)
    click.echo(f"📦 Auction {a.code} scheduled, 4 rounds of {L // 60} min")

    bidders = ["alice", "bob", "carol", "dave", "erin"]
    for p in bidders:
        engine.pay_entry(a.auction_id, p)
    click.echo(f"  ✓ {len(bidders)} participants entered")
    click.echo()

    for round_number in range(1, 5):
        clock.set(start + (round_number - 1) * L + 60)
        for i, p in enumerate(bidders):
            if round_number == 3 and p == "erin":
                continue  # erin misses round 3
            engine.submit_bid(a.auction_id, p, round_number, 100 * round_number + 10 * i)
        top = engine.leaderboard(a.auction_id, round_number)[0]
        click.echo(f"🔨 Round {round_number}: leader {top.participant_id} at {top.amount}")

    clock.set(start + 4 * L)
    winners = engine.resolve(a.auction_id)
    click.echo()
    click.echo("🏆 Winners:")
    for w in winners:
        click.echo(f"  #{w.rank} {w.participant_id} ({w.amount})")

    click.echo()
    clock.advance(L)
    ticket = engine.claim_ticket(a.auction_id)
    click.echo(f"⏱️  Rank 1 let the window pass; rank {ticket.current_rank} now holds the claim")
    result = engine.claim(a.auction_id, ticket.holder.participant_id)
    click.echo(f"  ✓ Claimed by {ticket.holder.participant_id}: {result.accepted}")
    click.echo()
    click.echo("📊 Final Statistics:")
    click.echo(f"  {engine.stats()}")
    click.echo()
    click.echo("✅ Demo complete!")


if __name__ == "__main__":
    cli()
