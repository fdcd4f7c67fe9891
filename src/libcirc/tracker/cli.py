"""Command-line interface for libcirc.

Built with Typer for commands and Rich for beautiful output.
"""

import logging
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from .config import get_config
from .db import get_db
from .db.schemas import ItemCreate, ItemResponse, ItemStatus, ItemType
from .lending import CirculationEngine, CirculationResult, ScanIntent

# Create the main app
app = typer.Typer(
    name="libcirc",
    help="Track library items through checkout, return and renewal.",
    no_args_is_help=True,
)

# Rich console for pretty output
console = Console()
err_console = Console(stderr=True)

STATUS_STYLES = {
    ItemStatus.AVAILABLE: "green",
    ItemStatus.CHECKED_OUT: "yellow",
    ItemStatus.OVERDUE: "bold red",
    ItemStatus.MAINTENANCE: "blue",
    ItemStatus.LOST: "magenta",
    ItemStatus.RETIRED: "dim",
}


# ============================================================================
# Helper Functions
# ============================================================================


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[bold red]Error:[/bold red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[bold green]Success:[/bold green] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[bold yellow]Warning:[/bold yellow] {message}")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[dim]{message}[/dim]")


def configure_logging(level: str) -> None:
    """Send log records to stderr through Rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def format_status(status: ItemStatus) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status.label}[/{style}]"


def format_item_table(items: list[ItemResponse], title: str = "Items") -> Table:
    """Create a rich table for displaying items."""
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Code", style="cyan", no_wrap=True)
    table.add_column("Name", style="white", max_width=40)
    table.add_column("Type", style="green")
    table.add_column("Status")
    table.add_column("Borrower")
    table.add_column("Due", justify="center")

    for item in items:
        table.add_row(
            item.code,
            item.name,
            item.item_type.value,
            format_status(item.status),
            item.current_borrower or "-",
            item.due_date.strftime("%Y-%m-%d") if item.due_date else "-",
        )

    return table


def get_engine() -> CirculationEngine:
    """Build a circulation engine on the configured database."""
    return CirculationEngine(get_db())


def report_result(result: CirculationResult) -> None:
    """Print a circulation result; exit non-zero on failure."""
    if result.is_success:
        print_success(result.message)
        return
    print_error(result.message)
    if result.retryable:
        print_info("This is a temporary problem; it is safe to try again.")
    raise typer.Exit(1)


# ============================================================================
# Setup Commands
# ============================================================================


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show info-level logs"),
) -> None:
    """Track library items through checkout, return and renewal."""
    level = "INFO" if verbose else get_config().log_level
    configure_logging(level)


@app.command()
def init() -> None:
    """Create the database and check configuration."""
    config = get_config()
    errors = config.validate()
    for error in errors:
        print_warning(error)

    db = get_db()
    print_success(f"Database ready at {db.db_path}")
    print_info(f"{db.count_items()} item(s) registered")
    if errors:
        raise typer.Exit(1)


@app.command()
def version() -> None:
    """Show version information."""
    from . import __version__

    console.print(f"libcirc version {__version__}")


@app.command()
def policies() -> None:
    """Show the borrowing policy for each item type."""
    from .policy import get_policies

    table = Table(title="Borrowing Policies", show_header=True, header_style="bold magenta")
    table.add_column("Type", style="cyan")
    table.add_column("Max loans", justify="right")
    table.add_column("Loan days", justify="right")
    table.add_column("Renewable", justify="center")
    table.add_column("Max renewals", justify="right")

    for policy in get_policies().all():
        table.add_row(
            policy.item_type.value,
            str(policy.max_loans),
            str(policy.loan_period_days),
            "yes" if policy.allow_renewal else "no",
            str(policy.max_renewals),
        )

    console.print(table)


# ============================================================================
# Item Commands
# ============================================================================


@app.command("add-item")
def add_item(
    code: str = typer.Argument(..., help="Item barcode"),
    name: str = typer.Argument(..., help="Display name"),
    item_type: ItemType = typer.Option(ItemType.BOOK, "--type", "-t", help="Item type"),
    author: Optional[str] = typer.Option(None, "--author", "-a", help="Author or manufacturer"),
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Category"),
    actor: str = typer.Option(
        "librarian", "--actor", envvar="LIBCIRC_ACTOR", help="Who is adding the item"
    ),
) -> None:
    """Register a new item."""
    from pydantic import ValidationError

    from .errors import PermissionDenied

    engine = get_engine()
    try:
        data = ItemCreate(
            code=code, item_type=item_type, name=name, author=author, category=category
        )
        item = engine.registry.register_item(actor, data)
    except PermissionDenied as e:
        print_error(e.message)
        raise typer.Exit(1)
    except ValidationError as e:
        print_error(f"Invalid item: {e.errors()[0]['msg']}")
        raise typer.Exit(1)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)

    print_success(f"Added {item.item_type.value} '{item.name}' ({item.code})")


@app.command("list")
def list_items(
    status: Optional[ItemStatus] = typer.Option(None, "--status", "-s", help="Filter by status"),
    item_type: Optional[ItemType] = typer.Option(None, "--type", "-t", help="Filter by type"),
    search: Optional[str] = typer.Option(None, "--search", "-q", help="Match name, author or code"),
) -> None:
    """List items."""
    items = get_engine().list_items()

    if status:
        items = [i for i in items if i.status == status]
    if item_type:
        items = [i for i in items if i.item_type == item_type]
    if search:
        needle = search.lower()
        items = [
            i for i in items
            if needle in i.code.lower()
            or needle in i.name.lower()
            or needle in (i.author or "").lower()
            or needle in (i.category or "").lower()
        ]

    if not items:
        print_info("No items found.")
        return

    console.print(format_item_table(items, title=f"Items ({len(items)})"))


@app.command()
def show(code: str = typer.Argument(..., help="Item barcode")) -> None:
    """Show an item and its loan history."""
    from .errors import NotFound

    engine = get_engine()
    try:
        item = engine.registry.get(code)
    except NotFound as e:
        print_error(e.message)
        raise typer.Exit(1)

    lines = [
        f"[bold]{item.name}[/bold]",
        f"Type: {item.item_type.value}",
        f"Status: {format_status(item.status)}",
    ]
    if item.author:
        lines.append(f"Author: {item.author}")
    if item.current_borrower:
        lines.append(f"Borrower: {item.current_borrower}")
        lines.append(f"Due: {item.due_date:%Y-%m-%d %H:%M} UTC")
    if item.days_overdue:
        lines.append(f"[red]{item.days_overdue} day(s) overdue[/red]")
    console.print(Panel("\n".join(lines), title=item.code))

    history = engine.ledger.loan_history(item.code)
    if history:
        table = Table(title="Loan History", show_header=True, header_style="bold magenta")
        table.add_column("Borrower", style="cyan")
        table.add_column("Checked out")
        table.add_column("Due")
        table.add_column("Returned")
        table.add_column("Renewals", justify="right")
        for loan in history:
            table.add_row(
                loan.borrower_id,
                f"{loan.checkout_time:%Y-%m-%d}",
                f"{loan.due_time:%Y-%m-%d}",
                f"{loan.return_time:%Y-%m-%d}" if loan.return_time else "-",
                str(loan.renewal_count),
            )
        console.print(table)


@app.command("set-status")
def set_status(
    code: str = typer.Argument(..., help="Item barcode"),
    status: ItemStatus = typer.Argument(..., help="available, maintenance, lost or retired"),
    actor: str = typer.Option(
        "librarian", "--actor", envvar="LIBCIRC_ACTOR", help="Who is changing the item"
    ),
) -> None:
    """Move an item that is not on loan to another shelf status."""
    from .errors import CirculationError

    engine = get_engine()
    try:
        item = engine.registry.change_status(actor, code, status)
    except CirculationError as e:
        print_error(e.message)
        raise typer.Exit(1)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)

    print_success(f"{item.code} is now {item.status.label}")


@app.command()
def mine(borrower: str = typer.Argument(..., help="Borrower ID")) -> None:
    """List items currently on loan to a borrower."""
    items = get_engine().registry.items_for_borrower(borrower)
    if not items:
        print_info(f"{borrower} has nothing checked out.")
        return
    console.print(format_item_table(items, title=f"On loan to {borrower}"))


# ============================================================================
# Circulation Commands
# ============================================================================


@app.command()
def checkout(
    code: str = typer.Argument(..., help="Item barcode"),
    borrower: str = typer.Argument(..., help="Borrower ID"),
) -> None:
    """Check an item out to a borrower."""
    report_result(get_engine().checkout(code, borrower))


@app.command("return")
def return_item(code: str = typer.Argument(..., help="Item barcode")) -> None:
    """Return an item."""
    report_result(get_engine().return_item(code))


@app.command()
def renew(
    code: str = typer.Argument(..., help="Item barcode"),
    borrower: str = typer.Argument(..., help="Borrower ID (must be the current borrower)"),
) -> None:
    """Renew a loan."""
    report_result(get_engine().renew(code, borrower))


@app.command()
def scan(
    mode: ScanIntent = typer.Option(ScanIntent.CHECKOUT, "--mode", "-m", help="checkout or return"),
    borrower: Optional[str] = typer.Option(None, "--borrower", "-b", help="Borrower for checkouts"),
) -> None:
    """Process barcodes one per line until a blank line."""
    if mode == ScanIntent.CHECKOUT and not borrower:
        print_error("--borrower is required in checkout mode")
        raise typer.Exit(1)

    engine = get_engine()
    succeeded = failed = 0
    console.print(f"[bold]{mode.value.upper()}[/bold] mode. Enter a blank line to finish.")

    while True:
        try:
            code = typer.prompt("Scan", default="", show_default=False)
        except (EOFError, typer.Abort):
            break
        if not code.strip():
            break

        result = engine.process_scan(code, mode, borrower_id=borrower)
        if result.is_success:
            succeeded += 1
            console.print(f"[green]✓[/green] {result.message}")
        else:
            failed += 1
            console.print(f"[red]✗[/red] {code.strip()}: {result.message}")

    console.print(f"\nScanned {succeeded + failed}: {succeeded} ok, {failed} failed")


# ============================================================================
# Report Commands
# ============================================================================


def format_overdue_panel(snapshot) -> Panel:
    lines = [
        f"Up to 1 week:        {snapshot.overdue_1_week}",
        f"1 to 2 weeks:        {snapshot.overdue_2_weeks}",
        f"More than 2 weeks:   {snapshot.overdue_more_than_2_weeks}",
        f"[bold]Total overdue:       {snapshot.total_overdue}[/bold]",
    ]
    return Panel("\n".join(lines), title="Overdue")


@app.command()
def overdue() -> None:
    """Show overdue loans by how late they are."""
    from .stats import CirculationAnalytics

    engine = get_engine()
    snapshot = CirculationAnalytics(engine.db, clock=engine.clock).get_overdue_snapshot()
    console.print(format_overdue_panel(snapshot))

    items = [i for i in engine.list_items() if i.status == ItemStatus.OVERDUE]
    if items:
        items.sort(key=lambda i: i.days_overdue, reverse=True)
        console.print(format_item_table(items, title="Overdue Items"))


@app.command()
def dashboard(
    days: int = typer.Option(14, "--days", "-d", help="Days of checkout trend"),
    limit: int = typer.Option(5, "--limit", "-l", help="Rows per leaderboard"),
) -> None:
    """Show circulation statistics."""
    from .stats import CirculationAnalytics

    data = CirculationAnalytics(get_db()).get_dashboard(trend_days=days, limit=limit)
    stats = data.item_stats

    console.print(Panel(
        f"Items: {stats.total_count}   Available: {stats.available_count}   "
        f"Checked out: {stats.checked_out_count}   Overdue: {stats.overdue_count} "
        f"({stats.overdue_percentage}%)   Unavailable: {stats.unavailable_count}",
        title="Library Dashboard",
    ))
    console.print(format_overdue_panel(data.overdue))

    if data.item_type_distribution:
        table = Table(title="Items by Type", show_header=True, header_style="bold magenta")
        table.add_column("Type", style="cyan")
        table.add_column("Total", justify="right")
        table.add_column("Available", justify="right")
        table.add_column("Checked out", justify="right")
        for row in data.item_type_distribution:
            table.add_row(
                row.item_type, str(row.total_count),
                str(row.available_count), str(row.checked_out_count),
            )
        console.print(table)

    total_checkouts = sum(p.checkout_count for p in data.borrowing_trend)
    console.print(f"\n[bold]Checkouts, last {days} days:[/bold] {total_checkouts}")
    peak = max((p.checkout_count for p in data.borrowing_trend), default=0)
    for point in data.borrowing_trend:
        bar = "█" * round(point.checkout_count / peak * 20) if peak else ""
        console.print(f"  {point.date:%b %d} {bar} {point.checkout_count}")

    if data.popular_items:
        console.print("\n[bold]Most borrowed:[/bold]")
        for entry in data.popular_items:
            console.print(f"  {entry.checkout_count:>3}  {entry.name} ({entry.code})")

    if data.top_borrowers:
        console.print("\n[bold]Top borrowers:[/bold]")
        for b in data.top_borrowers:
            console.print(f"  {b.total_loans:>3}  {b.borrower_id} ({b.active_loans} active)")

    if data.recent_activity:
        console.print("\n[bold]Recent activity:[/bold]")
        for event in data.recent_activity:
            verb = "checked out" if event.action == "checked_out" else "returned"
            console.print(
                f"  [dim]{event.timestamp:%Y-%m-%d %H:%M}[/dim] "
                f"{event.item_name} {verb} by {event.borrower_id}"
            )


@app.command()
def trend(days: int = typer.Option(30, "--days", "-d", help="Number of days")) -> None:
    """Show daily checkout counts."""
    from .stats import CirculationAnalytics

    try:
        points = CirculationAnalytics(get_db()).get_borrowing_trend(days)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)

    table = Table(title=f"Checkouts, last {days} days", show_header=True, header_style="bold magenta")
    table.add_column("Date", style="cyan")
    table.add_column("Checkouts", justify="right")
    for point in points:
        table.add_row(point.date.isoformat(), str(point.checkout_count))
    console.print(table)


# ============================================================================
# Maintenance Commands
# ============================================================================


@app.command("sync-overdue")
def sync_overdue(
    progress: bool = typer.Option(False, "--progress", "-p", help="Show progress bar"),
) -> None:
    """Persist overdue status on items past their due date."""
    count = get_engine().registry.sync_overdue_statuses(show_progress=progress)
    print_success(f"Marked {count} item(s) overdue")


@app.command("verify-ledger")
def verify_ledger() -> None:
    """Check borrower loan tallies against open loans."""
    mismatches = get_engine().ledger.verify()
    if not mismatches:
        print_success("Ledger matches open loans")
        return

    table = Table(title="Ledger Mismatches", show_header=True, header_style="bold red")
    table.add_column("Borrower", style="cyan")
    table.add_column("Type")
    table.add_column("Recorded", justify="right")
    table.add_column("Open loans", justify="right")
    for m in mismatches:
        table.add_row(m.borrower_id, m.item_type, str(m.recorded), str(m.actual))
    console.print(table)
    raise typer.Exit(1)


# ============================================================================
# Main Entry Point
# ============================================================================


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
