"""Command-line interface for the circulation engine.

Built with Typer for commands and Rich for output. Stands in for the HTTP
layer and for the scheduler that triggers overdue sweeps.
"""

import logging
from datetime import datetime
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from .config import get_config
from .copies import CopyAvailabilityStore, CopyCreate, CopyStatus
from .db import Database, get_db
from .errors import CirculationError, StorageUnavailable
from .ledger import TransactionFilter, TransactionStatus
from .lending import LoanPolicy, LoanPolicyEngine
from .rentals import RentalQueryService

# Create the main app
app = typer.Typer(
    name="circulation",
    help="Check out, return and track library copies.",
    no_args_is_help=True,
)

# Create sub-apps for command groups
copies_app = typer.Typer(help="Register copies and change their status.")
app.add_typer(copies_app, name="copies")

# Rich console for pretty output
console = Console()


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


def configure_logging(level: str) -> None:
    """Send package logs to stderr through Rich."""
    logger = logging.getLogger("circulation")
    logger.setLevel(level)
    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        logger.addHandler(RichHandler(console=Console(stderr=True), show_path=False))


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO date or datetime option."""
    if value is None:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        print_error(f"Invalid date/time: {value} (expected ISO format)")
        raise typer.Exit(1)


def open_db() -> Database:
    """Open the configured database."""
    config = get_config()
    return get_db(str(config.db_path), busy_timeout=config.db_busy_timeout)


def build_engine() -> LoanPolicyEngine:
    """Create a loan engine from configuration."""
    return LoanPolicyEngine(open_db(), policy=LoanPolicy.from_config(get_config()))


def build_queries() -> RentalQueryService:
    """Create a query service from configuration."""
    return RentalQueryService(open_db(), member_loan_limit=get_config().member_loan_limit)


def fail(error: Exception) -> None:
    """Report a failed operation and exit non-zero."""
    print_error(str(error))
    raise typer.Exit(2 if isinstance(error, StorageUnavailable) else 1)


def format_due(due: datetime, overdue: bool) -> str:
    """Render a due date, highlighted when overdue."""
    text = due.strftime("%Y-%m-%d")
    return f"[bold red]{text}[/bold red]" if overdue else text


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show info-level logs"),
) -> None:
    """Check out, return and track library copies."""
    config = get_config()
    configure_logging("INFO" if verbose else config.log_level)


# ============================================================================
# Setup
# ============================================================================


@app.command("init-db")
def init_db() -> None:
    """Create the circulation tables."""
    config = get_config()
    problems = config.validate()
    if problems:
        for problem in problems:
            print_error(problem)
        raise typer.Exit(1)

    db = open_db()
    db.create_tables()
    print_success(f"Database ready at {config.db_path}")


@app.command()
def version() -> None:
    """Show version information."""
    from . import __version__

    console.print(f"circulation version {__version__}")


# ============================================================================
# Copies
# ============================================================================


@copies_app.command("add")
def copies_add(
    book_id: str = typer.Argument(..., help="Catalog book ID"),
    copy_number: str = typer.Argument(..., help="Copy number, unique per book"),
    notes: Optional[str] = typer.Option(None, "--notes", "-n", help="Condition notes"),
) -> None:
    """Register a physical copy of a book."""
    store = CopyAvailabilityStore(open_db())
    try:
        copy = store.add_copy(
            CopyCreate(book_id=book_id, copy_number=copy_number, condition_notes=notes)
        )
    except (CirculationError, StorageUnavailable, ValueError) as e:
        fail(e)
    print_success(f"Registered copy {copy.copy_number}")
    console.print(f"[dim]Copy ID: {copy.id}[/dim]")


@copies_app.command("list")
def copies_list(
    book_id: Optional[str] = typer.Option(None, "--book", "-b", help="Only copies of this book"),
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Only copies in this status"),
) -> None:
    """List copies."""
    status_enum = None
    if status:
        try:
            status_enum = CopyStatus(status.capitalize())
        except ValueError:
            print_error(f"Invalid status: {status}")
            console.print(f"[dim]Valid: {', '.join(s.value for s in CopyStatus)}[/dim]")
            raise typer.Exit(1)

    try:
        copies = CopyAvailabilityStore(open_db()).list_copies(book_id=book_id, status=status_enum)
    except StorageUnavailable as e:
        fail(e)
    if not copies:
        console.print("[dim]No copies found[/dim]")
        return

    table = Table(title="Copies", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim")
    table.add_column("Book", style="cyan")
    table.add_column("Copy")
    table.add_column("Status")

    for copy in copies:
        color = "green" if copy.is_available else "yellow"
        table.add_row(copy.id, copy.book_id, copy.copy_number, f"[{color}]{copy.status.value}[/{color}]")

    console.print(table)


@copies_app.command("status")
def copies_status(
    copy_id: str = typer.Argument(..., help="Copy ID"),
    status: str = typer.Argument(..., help="Available, Maintenance, Lost or Damaged"),
    notes: Optional[str] = typer.Option(None, "--notes", "-n", help="Condition notes"),
) -> None:
    """Change a copy's administrative status."""
    try:
        target = CopyStatus(status.capitalize())
    except ValueError:
        print_error(f"Invalid status: {status}")
        raise typer.Exit(1)

    store = CopyAvailabilityStore(open_db())
    try:
        copy = store.set_administrative_status(copy_id, target, notes=notes)
    except (CirculationError, StorageUnavailable) as e:
        fail(e)
    print_success(f"Copy {copy.copy_number} is now {copy.status.value}")


# ============================================================================
# Checkout and Return
# ============================================================================


@app.command()
def checkout(
    member_id: str = typer.Argument(..., help="Member ID"),
    copy_id: str = typer.Argument(..., help="Copy ID"),
    days: Optional[int] = typer.Option(None, "--days", "-d", help="Loan period in days"),
    notes: Optional[str] = typer.Option(None, "--notes", "-n", help="Notes"),
) -> None:
    """Lend a copy to a member."""
    engine = build_engine()
    try:
        txn = engine.checkout(member_id, copy_id, loan_period_days=days, notes=notes)
    except (CirculationError, StorageUnavailable) as e:
        fail(e)

    print_success(f"Checked out copy {copy_id}")
    console.print(f"[dim]Transaction: {txn.id}[/dim]")
    console.print(f"[dim]Due: {txn.due_date.strftime('%Y-%m-%d %H:%M')} UTC[/dim]")


@app.command("return")
def return_(
    transaction_id: str = typer.Argument(..., help="Transaction ID"),
    notes: Optional[str] = typer.Option(None, "--notes", "-n", help="Return notes"),
) -> None:
    """Return a borrowed copy."""
    engine = build_engine()
    try:
        txn = engine.return_book(transaction_id, notes=notes)
    except (CirculationError, StorageUnavailable) as e:
        fail(e)

    print_success(f"Returned copy {txn.copy_id}")
    if txn.return_date and txn.return_date > txn.due_date:
        print_warning(f"Returned {(txn.return_date - txn.due_date).days} day(s) late")


@app.command()
def sweep(
    now: Optional[str] = typer.Option(None, "--now", help="Reference time (ISO), default now"),
) -> None:
    """Flag loans past their due date as overdue."""
    engine = build_engine()
    try:
        flagged = engine.sweep_overdue(parse_timestamp(now))
    except StorageUnavailable as e:
        fail(e)
    print_success(f"Flagged {flagged} overdue loan(s)")


# ============================================================================
# Queries
# ============================================================================


@app.command()
def borrowers(book_id: str = typer.Argument(..., help="Catalog book ID")) -> None:
    """Show who currently has copies of a book."""
    try:
        entries = build_queries().current_borrowers_of(book_id)
    except StorageUnavailable as e:
        fail(e)
    if not entries:
        console.print("[dim]No copies of this book are on loan[/dim]")
        return

    table = Table(title="Current Borrowers", show_header=True, header_style="bold magenta")
    table.add_column("Member", style="cyan")
    table.add_column("Copy", style="dim")
    table.add_column("Borrowed")
    table.add_column("Due")

    for entry in entries:
        table.add_row(
            entry.member_id,
            entry.copy_id,
            entry.borrow_date.strftime("%Y-%m-%d"),
            format_due(entry.due_date, entry.overdue),
        )

    console.print(table)


@app.command("member-loans")
def member_loans(member_id: str = typer.Argument(..., help="Member ID")) -> None:
    """Show the copies a member currently holds."""
    try:
        loans = build_queries().current_books_of(member_id)
    except StorageUnavailable as e:
        fail(e)
    if not loans:
        console.print("[dim]Member has no open loans[/dim]")
        return

    table = Table(title="Open Loans", show_header=True, header_style="bold magenta")
    table.add_column("Book", style="cyan", max_width=40)
    table.add_column("Copy", style="dim")
    table.add_column("Due")

    for loan in loans:
        table.add_row(loan.title or loan.book_id or "Unknown", loan.copy_id, format_due(loan.due_date, loan.overdue))

    console.print(table)


@app.command("member-summary")
def member_summary(member_id: str = typer.Argument(..., help="Member ID")) -> None:
    """Show a member's borrowing summary."""
    try:
        summary = build_queries().member_summary(member_id)
        eligibility = build_engine().can_borrow(member_id)
    except StorageUnavailable as e:
        fail(e)

    status = (
        "[green]can borrow[/green]"
        if eligibility.can_borrow
        else f"[red]cannot borrow[/red] ({eligibility.reason})"
    )
    console.print(Panel(
        f"Open loans: {summary.open_loans}/{summary.limit}\n"
        f"Overdue: {summary.overdue_loans}\n"
        f"Total loans: {summary.total_loans}\n"
        f"Status: {status}",
        title=f"Member {member_id}",
    ))


@app.command()
def history(
    book_id: Optional[str] = typer.Option(None, "--book", "-b", help="Book ID"),
    member_id: Optional[str] = typer.Option(None, "--member", "-m", help="Member ID"),
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Active, Overdue or Returned"),
    since: Optional[str] = typer.Option(None, "--since", help="Borrowed on/after (ISO)"),
    until: Optional[str] = typer.Option(None, "--until", help="Borrowed on/before (ISO)"),
    limit: int = typer.Option(20, "--limit", "-l", help="Maximum rows"),
) -> None:
    """Show loan history for a book or member."""
    status_enum = None
    if status:
        try:
            status_enum = TransactionStatus(status.capitalize())
        except ValueError:
            print_error(f"Invalid status: {status}")
            raise typer.Exit(1)

    try:
        criteria = TransactionFilter(
            status=status_enum,
            borrowed_from=parse_timestamp(since),
            borrowed_until=parse_timestamp(until),
            limit=limit,
        )
        rows = list(build_queries().history_of(book_id=book_id, member_id=member_id, criteria=criteria))
    except (ValueError, StorageUnavailable) as e:
        fail(e)

    if not rows:
        console.print("[dim]No loans found[/dim]")
        return

    table = Table(title="Loan History", show_header=True, header_style="bold magenta")
    table.add_column("Member", style="cyan")
    table.add_column("Copy", style="dim")
    table.add_column("Borrowed")
    table.add_column("Due")
    table.add_column("Returned")
    table.add_column("Status")

    for txn in rows:
        table.add_row(
            txn.member_id,
            txn.copy_id,
            txn.borrow_date.strftime("%Y-%m-%d"),
            txn.due_date.strftime("%Y-%m-%d"),
            txn.return_date.strftime("%Y-%m-%d") if txn.return_date else "-",
            txn.status.value,
        )

    console.print(table)


@app.command()
def popular(
    since: Optional[str] = typer.Option(None, "--since", help="Window start (ISO)"),
    until: Optional[str] = typer.Option(None, "--until", help="Window end (ISO)"),
    limit: int = typer.Option(10, "--limit", "-l", help="Number of books"),
) -> None:
    """Rank books by number of loans."""
    start, end = parse_timestamp(since), parse_timestamp(until)
    try:
        ranking = build_queries().popularity(start, end, limit=limit)
    except StorageUnavailable as e:
        fail(e)
    if not ranking:
        console.print("[dim]No loans in this window[/dim]")
        return

    table = Table(title="Most Borrowed", show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right")
    table.add_column("Title", style="cyan", max_width=40)
    table.add_column("Loans", justify="right")

    for book in ranking:
        table.add_row(str(book.rank), book.title or book.book_id, str(book.borrow_count))

    console.print(table)


@app.command()
def overdue() -> None:
    """Show overdue loans."""
    try:
        report = build_queries().overdue_loans()
    except StorageUnavailable as e:
        fail(e)
    if not report:
        print_success("No overdue loans!")
        return

    console.print(Panel(f"[bold red]Overdue Loans: {len(report)}[/bold red]", style="red"))

    table = Table(show_header=True, header_style="bold red")
    table.add_column("Book", style="cyan", max_width=40)
    table.add_column("Member")
    table.add_column("Due Date")
    table.add_column("Days Overdue", justify="right")

    for loan in report:
        table.add_row(
            loan.title or loan.copy_id,
            loan.member_id,
            loan.due_date.strftime("%Y-%m-%d"),
            f"[bold red]{loan.days_overdue}[/bold red]",
        )

    console.print(table)


@app.command()
def availability(book_id: str = typer.Argument(..., help="Catalog book ID")) -> None:
    """Show copy availability for a book."""
    try:
        info = build_queries().book_availability(book_id)
    except StorageUnavailable as e:
        fail(e)
    if info.total_copies == 0:
        print_warning("No copies registered for this book")
        return

    lines = [f"{status.value}: {count}" for status, count in info.copies_by_status.items() if count]
    console.print(Panel(
        f"Copies: {info.total_copies}\n" + "\n".join(lines) + f"\nLifetime loans: {info.total_loans}",
        title=info.title or book_id,
    ))


@app.command()
def stats() -> None:
    """Show library-wide loan statistics."""
    try:
        figures = build_queries().rental_statistics()
    except StorageUnavailable as e:
        fail(e)

    console.print(Panel(
        f"Open loans: {figures.open_loans}\n"
        f"Overdue: {figures.overdue_loans}\n"
        f"Returned: {figures.returned_loans}\n"
        f"Members with loans: {figures.members_with_open_loans}",
        title="Circulation",
    ))

    if figures.most_borrowed:
        table = Table(title="Top Books", show_header=True, header_style="bold magenta")
        table.add_column("#", justify="right")
        table.add_column("Title", style="cyan")
        table.add_column("Loans", justify="right")
        for book in figures.most_borrowed:
            table.add_row(str(book.rank), book.title or book.book_id, str(book.borrow_count))
        console.print(table)


# ============================================================================
# Main Entry Point
# ============================================================================


def main() -> None:
    """Main entry point for the CLI."""
    app()
