"""Command-line interface for the referral engine."""

import json
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from marketplace.leaderboard.service import LeaderboardWindow, leaderboard_service
from marketplace.ledger.service import credit_ledger
from marketplace.logging_config import configure_logging, get_logger
from marketplace.policy.snapshot import POLICY_KEYS, PolicyConfigError
from marketplace.policy.store import policy_store
from marketplace.referral.codes import code_registry
from marketplace.referral.errors import CodeNotFound, InvalidEventError
from marketplace.referral.graph import attribution_graph
from marketplace.referral.milestones import milestone_service
from marketplace.referral.rewards import reward_engine
from marketplace.referral.tracking import share_tracker
from marketplace.storage.db import db
from marketplace.storage.models import UserAccount, UserRole

# Configure logging
configure_logging()
logger = get_logger(__name__)

app = typer.Typer(
    name="marketplace",
    help="Marketplace referral engine - attribution, rewards and leaderboard",
    no_args_is_help=True,
)

console = Console()


@app.command("init")
def init_database() -> None:
    """Initialize the database and create tables."""
    console.print("[bold blue]Initializing database...[/bold blue]")
    db.create_tables()
    console.print("[bold green]✓[/bold green] Database initialized successfully")


@app.command("user-add")
def add_user(
    email: Annotated[str, typer.Option("--email", "-e", help="Account email")],
    name: Annotated[str, typer.Option("--name", "-n", help="Full name")] = "",
    role: Annotated[UserRole, typer.Option("--role", "-r", help="Account role")] = UserRole.AGENT,
) -> None:
    """Create a user account (local testing)."""
    with db.session() as session:
        user = UserAccount(email=email.strip().lower(), full_name=name.strip() or None, role=role.value)
        session.add(user)
        session.flush()
        user_id = user.id

    console.print(f"[bold green]✓[/bold green] User created with ID: [bold]{user_id}[/bold]")


@app.command("policy-show")
def show_policy() -> None:
    """Show the effective referral policy."""
    try:
        snapshot = policy_store.get_snapshot()
    except PolicyConfigError as e:
        console.print(f"[bold red]✗[/bold red] Invalid policy: {e}")
        raise typer.Exit(1)

    console.print_json(json.dumps(snapshot.to_dict()))


@app.command("policy-set")
def set_policy(
    key: Annotated[str, typer.Argument(help=f"Policy key ({', '.join(POLICY_KEYS)})")],
    value: Annotated[str, typer.Argument(help="JSON value")],
) -> None:
    """Update one referral policy setting."""
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        console.print(f"[bold red]✗[/bold red] Value is not valid JSON: {e}")
        raise typer.Exit(1)

    try:
        policy_store.update(key, parsed)
    except PolicyConfigError as e:
        logger.warning("policy_update_rejected", key=key, error=str(e))
        console.print(f"[bold red]✗[/bold red] Rejected: {e}")
        raise typer.Exit(1)

    console.print(f"[bold green]✓[/bold green] {key} updated")


@app.command("code")
def get_code(
    user_id: Annotated[int, typer.Argument(help="User ID")],
) -> None:
    """Show (and create if missing) a user's referral code."""
    result = code_registry.ensure_referral_code(user_id)
    suffix = " (new)" if result.created else ""
    console.print(f"Referral code for user {user_id}: [bold]{result.code}[/bold]{suffix}")


@app.command("capture")
def capture(
    user_id: Annotated[int, typer.Argument(help="Newly registered user ID")],
    code: Annotated[str, typer.Argument(help="Referral code used at signup")],
) -> None:
    """Attribute a new user to a referral code."""
    try:
        result = attribution_graph.capture_referral_for_user(user_id, code, policy_store.get_snapshot().max_depth)
    except CodeNotFound:
        console.print(f"[bold red]✗[/bold red] Unknown referral code: {code}")
        raise typer.Exit(1)

    if result.captured:
        console.print(
            f"[bold green]✓[/bold green] User {user_id} attributed to {result.referrer_user_id} "
            f"at depth {result.depth}"
        )
    else:
        console.print(f"[yellow]Not captured: {result.reason}[/yellow]")


@app.command("issue")
def issue_rewards(
    user_id: Annotated[int, typer.Argument(help="Referred user who paid")],
    event_type: Annotated[str, typer.Argument(help="Event type")],
    reference: Annotated[str, typer.Argument(help="Payment or consumption reference")],
) -> None:
    """Issue referral rewards for a paid event."""
    try:
        result = reward_engine.issue_referral_rewards_for_event(user_id, event_type, reference)
    except InvalidEventError as e:
        console.print(f"[bold red]✗[/bold red] {e}")
        raise typer.Exit(1)

    console.print(f"Issued: [bold]{result.issued}[/bold]  Skipped: {result.skipped}")
    if result.reason:
        console.print(f"  Reason: {result.reason}")
    for skip in result.skips:
        console.print(f"  Level {skip.level} (user {skip.user_id}): {skip.reason.value}")


@app.command("ancestors")
def show_ancestors(
    user_id: Annotated[int, typer.Argument(help="User ID")],
    max_depth: Annotated[int, typer.Option("--max-depth", "-d", help="Levels to walk")] = 5,
) -> None:
    """Show the referrer chain above a user."""
    ancestors = attribution_graph.get_referral_ancestors(user_id, max_depth)
    if not ancestors:
        console.print("[yellow]No referrers found[/yellow]")
        return

    table = Table(title=f"Referrers of user {user_id}")
    table.add_column("Level", justify="right")
    table.add_column("User ID", style="cyan")
    for ancestor in ancestors:
        table.add_row(str(ancestor.level), str(ancestor.user_id))
    console.print(table)


@app.command("balance")
def show_balance(
    user_id: Annotated[int, typer.Argument(help="User ID")],
) -> None:
    """Show a user's credit balances."""
    table = Table(title=f"Balances for user {user_id}")
    table.add_column("Credit Type", style="green")
    table.add_column("Balance", justify="right")
    for credit_type, balance in credit_ledger.get_balances(user_id).items():
        table.add_row(credit_type, f"{balance:.2f}")
    console.print(table)


@app.command("funnel")
def show_funnel(
    user_id: Annotated[int, typer.Argument(help="User ID")],
) -> None:
    """Show the click -> signup -> paid funnel of a user's share link."""
    funnel = share_tracker.get_funnel(user_id)
    table = Table(title=f"Share funnel for user {user_id}")
    table.add_column("Step", style="green")
    table.add_column("Count", justify="right")
    table.add_row("Clicks", str(funnel.clicks))
    table.add_row("Signups", str(funnel.signups))
    table.add_row("Paid referrals", str(funnel.paid_referrals))
    console.print(table)
    console.print(f"Signup rate: {funnel.signup_rate:.1%}")


@app.command("milestone-add")
def add_milestone(
    name: Annotated[str, typer.Option("--name", "-n", help="Milestone name")],
    threshold: Annotated[int, typer.Option("--threshold", "-t", help="Active referrals required")],
    bonus: Annotated[int, typer.Option("--bonus", "-b", help="Listing credits awarded")],
) -> None:
    """Define a referral milestone."""
    try:
        milestone = milestone_service.create_milestone(name, threshold, bonus)
    except ValueError as e:
        console.print(f"[bold red]✗[/bold red] {e}")
        raise typer.Exit(1)

    console.print(f"[bold green]✓[/bold green] Milestone created with ID: [bold]{milestone.id}[/bold]")


@app.command("leaderboard")
def show_leaderboard(
    window: Annotated[Optional[LeaderboardWindow], typer.Option("--window", "-w", help="Time window")] = None,
    limit: Annotated[int, typer.Option("--limit", "-l", help="Entries to show")] = 10,
    viewer: Annotated[int, typer.Option("--viewer", help="Viewer user ID")] = 0,
) -> None:
    """Show the referral leaderboard."""
    snapshot = leaderboard_service.get_snapshot(viewer, window=window, top_limit=limit)
    if not snapshot.available:
        console.print("[bold red]✗[/bold red] Leaderboard unavailable")
        raise typer.Exit(1)
    if not snapshot.enabled:
        console.print("[yellow]Leaderboard is disabled[/yellow]")
        return

    for item in snapshot.windows:
        table = Table(title=f"{item.label} ({item.total_agents} agents)")
        table.add_column("Rank", justify="right")
        table.add_column("Name", style="green")
        table.add_column("Tier")
        table.add_column("Active Referrals", justify="right")
        for entry in item.entries:
            table.add_row(str(entry.rank), entry.display_name, entry.tier, str(entry.active_referrals))
        console.print(table)


if __name__ == "__main__":
    app()
