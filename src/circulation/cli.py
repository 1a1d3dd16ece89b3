"""Command-line interface for the circulation engine.

Built with Typer for commands and Rich for output.
"""

import logging
from typing import NoReturn, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .availability import AvailabilityTracker
from .config import get_config
from .db import BookCreate, BookResponse, BookStatus, MemberCreate, MemberResponse, get_db
from .db.models import Book, Member
from .errors import CirculationError, ConflictError, NotFoundError
from .loans import LoanManager, LoanResponse
from .reservations import ReservationManager, ReservationResponse

# Create the main app
app = typer.Typer(
    name="circulation",
    help="Borrow, return, extend and reserve library books.",
    no_args_is_help=True,
)

# Sub-apps for catalog and membership
member_app = typer.Typer(help="Manage library members.")
app.add_typer(member_app, name="member")
book_app = typer.Typer(help="Manage the book catalog.")
app.add_typer(book_app, name="book")

# Rich console for pretty output
console = Console()


@app.callback()
def setup(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show engine log output"),
) -> None:
    """Configure logging before any command runs."""
    level = logging.INFO if verbose else get_config().log_level
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


# ============================================================================
# Helper Functions
# ============================================================================


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[bold red]Error:[/bold red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[bold green]Success:[/bold green] {message}")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[dim]{message}[/dim]")


def fail(error: Exception) -> NoReturn:
    """Report a failed command and exit non-zero."""
    if isinstance(error, ConflictError):
        print_error(f"{error} [dim]({error.reason.value})[/dim]")
    else:
        print_error(str(error))
    raise typer.Exit(1)


def resolve_member(ref: str) -> Member:
    """Find a member by ID or username."""
    db = get_db()
    member = db.get_member(ref) or db.get_member_by_username(ref)
    if not member:
        raise NotFoundError("Member", ref)
    return member


def resolve_book(ref: str) -> Book:
    """Find a book by ID or ISBN."""
    db = get_db()
    book = db.get_book(ref) or db.get_book_by_isbn(ref)
    if not book:
        raise NotFoundError("Book", ref)
    return book


def format_loan_table(loans: list, title: str = "Loans") -> Table:
    """Create a rich table for displaying loans."""
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", max_width=12)
    table.add_column("Book", style="cyan", max_width=40)
    table.add_column("Member", style="green")
    table.add_column("Borrowed")
    table.add_column("Due")
    table.add_column("Status", style="yellow")

    for loan in loans:
        due = loan.due_date.isoformat()
        if loan.is_overdue():
            due = f"[red]{due}[/red]"
        table.add_row(
            loan.id[:8],
            loan.book.title,
            loan.member.username,
            loan.borrow_date.isoformat(),
            due,
            loan.status,
        )

    return table


def format_reservation_table(reservations: list, title: str = "Reservations") -> Table:
    """Create a rich table for displaying reservations."""
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", max_width=12)
    table.add_column("Book", style="cyan", max_width=40)
    table.add_column("Member", style="green")
    table.add_column("Position", justify="center")
    table.add_column("Status", style="yellow")
    table.add_column("Pickup by")

    for r in reservations:
        table.add_row(
            r.id[:8],
            r.book.title,
            r.member.username,
            str(r.queue_position) if r.status == "pending" else "-",
            r.status,
            r.expires_at.strftime("%Y-%m-%d %H:%M") if r.is_ready and r.expires_at else "-",
        )

    return table


# ============================================================================
# Catalog and Membership Commands
# ============================================================================


@member_app.command("add")
def member_add(
    username: str = typer.Argument(..., help="Unique username"),
    name: str = typer.Option(..., "--name", "-n", help="Full name"),
    email: Optional[str] = typer.Option(None, "--email", "-e", help="Email address"),
) -> None:
    """Register a new member."""
    try:
        member = get_db().create_member(
            MemberCreate(username=username, full_name=name, email=email)
        )
    except ValueError as e:
        fail(e)
    print_success(f"Registered {member.full_name} ({member.username})")
    print_info(f"ID: {member.id}")


@member_app.command("list")
def member_list(
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """List all members."""
    members = get_db().get_all_members()
    if as_json:
        for m in members:
            console.print_json(MemberResponse.model_validate(m).model_dump_json())
        return

    if not members:
        print_info("No members registered.")
        return

    table = Table(title="Members", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim")
    table.add_column("Username", style="green")
    table.add_column("Name")
    table.add_column("Email")
    table.add_column("Active")
    for m in members:
        table.add_row(m.id, m.username, m.full_name, m.email or "-", "yes" if m.active else "no")
    console.print(table)


@member_app.command("deactivate")
def member_deactivate(
    member: str = typer.Argument(..., help="Member ID or username"),
) -> None:
    """Stop a member from borrowing or reserving."""
    _set_member_active(member, False)


@member_app.command("activate")
def member_activate(
    member: str = typer.Argument(..., help="Member ID or username"),
) -> None:
    """Allow a deactivated member to borrow and reserve again."""
    _set_member_active(member, True)


def _set_member_active(ref: str, active: bool) -> None:
    try:
        member = resolve_member(ref)
    except CirculationError as e:
        fail(e)
    get_db().set_member_active(member.id, active)
    print_success(f"{member.username} is now {'active' if active else 'inactive'}")


@book_app.command("add")
def book_add(
    isbn: str = typer.Argument(..., help="ISBN"),
    title: str = typer.Option(..., "--title", "-t", help="Book title"),
    author: str = typer.Option(..., "--author", "-a", help="Author"),
    publisher: Optional[str] = typer.Option(None, "--publisher", "-p", help="Publisher"),
) -> None:
    """Add a book to the catalog."""
    try:
        book = get_db().create_book(
            BookCreate(isbn=isbn, title=title, author=author, publisher=publisher)
        )
    except ValueError as e:
        fail(e)
    print_success(f"Added '{book.title}'")
    print_info(f"ID: {book.id}")


@book_app.command("list")
def book_list(
    status: Optional[BookStatus] = typer.Option(None, "--status", "-s", help="Filter by status"),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """List books and their availability."""
    books = AvailabilityTracker(get_db()).list_books(status)
    if as_json:
        for b in books:
            console.print_json(BookResponse.model_validate(b).model_dump_json())
        return

    if not books:
        print_info("No books found.")
        return

    table = Table(title="Books", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim")
    table.add_column("ISBN")
    table.add_column("Title", style="cyan", max_width=40)
    table.add_column("Author", style="green", max_width=25)
    table.add_column("Status", style="yellow")
    for b in books:
        table.add_row(b.id, b.isbn, b.title, b.author, b.status)
    console.print(table)


@app.command()
def seed() -> None:
    """Load the demo members and books."""
    from .seed import seed_demo_data

    result = seed_demo_data(get_db())
    print_success(
        f"Seeded {len(result.members)} members and {len(result.books)} books"
    )
    if result.skipped:
        print_info(f"{result.skipped} already present")


# ============================================================================
# Loan Commands
# ============================================================================


@app.command()
def borrow(
    member: str = typer.Argument(..., help="Member ID or username"),
    book: str = typer.Argument(..., help="Book ID or ISBN"),
) -> None:
    """Borrow a book."""
    try:
        loan = LoanManager(get_db()).borrow(resolve_member(member).id, resolve_book(book).id)
    except CirculationError as e:
        fail(e)
    print_success(f"Borrowed '{loan.book.title}', due {loan.due_date.isoformat()}")
    print_info(f"Loan ID: {loan.id}")


@app.command("return")
def return_cmd(
    loan_id: str = typer.Argument(..., help="Loan ID"),
) -> None:
    """Return a borrowed book."""
    db = get_db()
    manager = LoanManager(db)
    try:
        loan = manager.return_book(loan_id)
    except CirculationError as e:
        fail(e)
    print_success(f"Returned '{loan.book.title}'")

    held = manager.reservations.get_ready_reservation(loan.book_id)
    if held:
        print_info(
            f"Held for {held.member.username} until {held.expires_at.strftime('%Y-%m-%d %H:%M')}"
        )


@app.command()
def extend(
    loan_id: str = typer.Argument(..., help="Loan ID"),
) -> None:
    """Extend a loan by one loan period."""
    try:
        loan = LoanManager(get_db()).extend(loan_id)
    except CirculationError as e:
        fail(e)
    print_success(f"Extended '{loan.book.title}', now due {loan.due_date.isoformat()}")


@app.command()
def loans(
    member: str = typer.Argument(..., help="Member ID or username"),
    all_loans: bool = typer.Option(False, "--all", "-a", help="Include returned loans"),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """List a member's loans."""
    manager = LoanManager(get_db())
    try:
        member_obj = resolve_member(member)
    except CirculationError as e:
        fail(e)

    if all_loans:
        results = manager.get_loans_by_member(member_obj.id)
    else:
        results = manager.get_active_loans(member_obj.id)

    if as_json:
        for loan in results:
            console.print_json(LoanResponse.from_loan(loan).model_dump_json())
        return

    if not results:
        print_info("No loans found.")
        return
    console.print(format_loan_table(results, title=f"Loans for {member_obj.username}"))


@app.command()
def overdue() -> None:
    """List overdue loans."""
    results = LoanManager(get_db()).get_overdue_loans()
    if not results:
        print_info("No overdue loans.")
        return
    console.print(format_loan_table(results, title="Overdue Loans"))


@app.command("due-soon")
def due_soon(
    days: int = typer.Option(3, "--days", "-d", help="Days ahead to look"),
) -> None:
    """List loans due within the next few days."""
    results = LoanManager(get_db()).get_loans_due_within(days)
    if not results:
        print_info(f"No loans due in the next {days} days.")
        return
    console.print(format_loan_table(results, title=f"Due Within {days} Days"))


# ============================================================================
# Reservation Commands
# ============================================================================


@app.command()
def reserve(
    member: str = typer.Argument(..., help="Member ID or username"),
    book: str = typer.Argument(..., help="Book ID or ISBN"),
) -> None:
    """Join the reservation queue for a book."""
    try:
        reservation = ReservationManager(get_db()).reserve(
            resolve_member(member).id, resolve_book(book).id
        )
    except CirculationError as e:
        fail(e)
    print_success(f"Reserved at queue position {reservation.queue_position}")
    print_info(f"Reservation ID: {reservation.id}")


@app.command()
def cancel(
    reservation_id: str = typer.Argument(..., help="Reservation ID"),
    member: str = typer.Argument(..., help="Member ID or username cancelling"),
) -> None:
    """Cancel one of your reservations."""
    try:
        ReservationManager(get_db()).cancel(reservation_id, resolve_member(member).id)
    except CirculationError as e:
        fail(e)
    print_success("Reservation cancelled")


@app.command()
def reservations(
    member: str = typer.Argument(..., help="Member ID or username"),
    all_reservations: bool = typer.Option(False, "--all", "-a", help="Include past reservations"),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """List a member's reservations."""
    manager = ReservationManager(get_db())
    try:
        member_obj = resolve_member(member)
    except CirculationError as e:
        fail(e)

    if all_reservations:
        results = manager.get_all_reservations(member_obj.id)
    else:
        results = manager.get_user_reservations(member_obj.id)

    if as_json:
        for r in results:
            console.print_json(ReservationResponse.model_validate(r).model_dump_json())
        return

    if not results:
        print_info("No reservations found.")
        return
    console.print(
        format_reservation_table(results, title=f"Reservations for {member_obj.username}")
    )


@app.command()
def queue(
    book: str = typer.Argument(..., help="Book ID or ISBN"),
) -> None:
    """Show the reservation queue for a book."""
    manager = ReservationManager(get_db())
    try:
        book_obj = resolve_book(book)
    except CirculationError as e:
        fail(e)

    held = manager.get_ready_reservation(book_obj.id)
    waiting = manager.get_queue(book_obj.id)
    entries = ([held] if held else []) + waiting
    if not entries:
        print_info(f"Nobody is waiting for '{book_obj.title}'.")
        return
    console.print(format_reservation_table(entries, title=f"Queue for {book_obj.title}"))


@app.command()
def sweep(
    expire: bool = typer.Option(True, "--expire/--no-expire", help="Expire uncollected holds"),
    remind: bool = typer.Option(True, "--remind/--no-remind", help="Mark due-soon reminders"),
) -> None:
    """Run the periodic expiry and reminder sweeps."""
    db = get_db()

    if expire:
        expired = ReservationManager(db).process_expired()
        console.print(f"Expired holds: [bold]{len(expired)}[/bold]")
    if remind:
        reminded = LoanManager(db).due_soon_reminder_sweep()
        console.print(f"Reminders marked: [bold]{len(reminded)}[/bold]")


@app.command()
def version() -> None:
    """Show version information."""
    from . import __version__

    console.print(f"circulation version {__version__}")


# ============================================================================
# Main Entry Point
# ============================================================================


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
