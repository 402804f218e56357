"""CLI for GroupLedger using Typer."""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from decimal import Decimal, InvalidOperation

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import load_settings
from .db import Database
from .exceptions import (
    ConfigurationError,
    GroupLedgerError,
    InvalidStateError,
    NothingToSettleError,
)
from .models import (
    Group,
    MemberRole,
    ParticipantInput,
    Settlement,
    SettlementMethod,
    SettlementStatus,
    SplitType,
)
from .money import format_cents, to_cents
from .service import LedgerService
from .ui import select_member_interactive, select_settlement_interactive

app = typer.Typer(
    name="group-ledger",
    help="Split shared expenses and settle group balances",
)

console = Console()


def setup_logging(verbose: bool = False, level: str = "WARNING"):
    """Setup logging configuration."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@contextmanager
def _service_session(verbose: bool) -> Iterator[LedgerService]:
    """Open the service, map errors to exit codes and always close the DB."""
    try:
        settings = load_settings()
    except ConfigurationError as e:
        console.print(f"\n[bold red]Configuration error:[/bold red] {escape(str(e))}")
        sys.exit(1)
    setup_logging(verbose, "INFO" if verbose else settings.log_level)
    db = Database(settings.database_path)

    try:
        yield LedgerService(settings, db)
    except NothingToSettleError as e:
        console.print(f"\n[green]✓ {e}[/green]\n")
        sys.exit(0)
    except InvalidStateError as e:
        console.print(f"\n[bold yellow]⚠️  {escape(str(e))}[/bold yellow]\n")
        sys.exit(1)
    except GroupLedgerError as e:
        console.print(f"\n[bold red]Error:[/bold red] {escape(str(e))}")
        if verbose:
            raise
        sys.exit(1)
    finally:
        db.close()


def format_money(cents: int, currency: str = "USD", use_color: bool = True) -> str:
    """
    Format money in accounting style with alignment.

    Negative amounts use parentheses: ($85.02)
    Positive amounts have spaces:      $85.02
    """
    formatted = format_cents(cents, currency)
    if cents < 0:
        return f"[red]{formatted}[/red]" if use_color else formatted
    if use_color:
        return f" [green]{formatted}[/green] "
    return f" {formatted} "


def _member_name(group: Group, user_id: str) -> str:
    for member in group.members:
        if member.user_id == user_id:
            return member.label
    return f"{user_id} [dim](former)[/dim]"


def parse_participant(raw: str, split_type: SplitType, currency: str) -> ParticipantInput:
    """
    Parse a participant option.

    Formats:
        EQUAL:       alice
        EXACT:       alice:12.50   (amount in major units)
        PERCENTAGE:  alice:40
        SHARES:      alice:2
    """
    user_id, _, value = raw.partition(":")
    user_id = user_id.strip()
    value = value.strip()

    if not user_id:
        raise typer.BadParameter(f"Missing user id in '{raw}'")
    if split_type == SplitType.EQUAL:
        return ParticipantInput(user_id=user_id)
    if not value:
        raise typer.BadParameter(
            f"{split_type.value} split needs a value for '{user_id}' (user:value)"
        )

    try:
        if split_type == SplitType.EXACT:
            return ParticipantInput(user_id=user_id, share_cents=to_cents(value, currency))
        if split_type == SplitType.PERCENTAGE:
            return ParticipantInput(user_id=user_id, share_percentage=Decimal(value))
        return ParticipantInput(user_id=user_id, share_count=int(value))
    except (InvalidOperation, ValueError) as e:
        raise typer.BadParameter(f"Invalid value in '{raw}': {e}") from e


def parse_amount(raw: str, currency: str) -> int:
    """Parse a major-unit amount (e.g. 12.34) into cents."""
    try:
        return to_cents(raw, currency)
    except (InvalidOperation, ValueError) as e:
        raise typer.BadParameter(f"Invalid amount '{raw}'") from e


# ============================================================================
# Groups
# ============================================================================


@app.command("create-group")
def create_group(
    name: str = typer.Argument(..., help="Group name"),
    owner: str = typer.Option(..., "--owner", "-o", help="Owner user id"),
    owner_name: str | None = typer.Option(None, "--owner-name", help="Owner display name"),
    currency: str | None = typer.Option(None, "--currency", help="ISO 4217 currency code"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Create a new group owned by --owner."""
    with _service_session(verbose) as service:
        group = service.create_group(name, owner, currency, owner_name)
        console.print(
            f"\n[bold green]✓ Created group {group.name}[/bold green] "
            f"({group.currency})\n  ID: {group.id}\n"
        )


@app.command("add-member")
def add_member(
    group_id: str = typer.Argument(..., help="Group id"),
    user_id: str = typer.Argument(..., help="User id of the new member"),
    name: str | None = typer.Option(None, "--name", "-n", help="Display name"),
    role: MemberRole = typer.Option(MemberRole.MEMBER, "--role", help="Member role"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Add a member to a group."""
    with _service_session(verbose) as service:
        group = service.add_member(group_id, user_id, role, name)
        console.print(
            f"[green]✓ {user_id} is a member of {group.name} "
            f"({len(group.members)} members)[/green]"
        )


@app.command("remove-member")
def remove_member(
    group_id: str = typer.Argument(..., help="Group id"),
    user_id: str = typer.Argument(..., help="User id of the member to remove"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Remove a member from a group. Their balance stays until settled."""
    with _service_session(verbose) as service:
        group = service.remove_member(group_id, user_id)
        console.print(
            f"[green]✓ Removed {user_id} from {group.name} "
            f"({len(group.members)} members)[/green]"
        )

        outstanding = service.compute_balances(group_id).get(user_id, 0)
        if outstanding:
            console.print(
                f"  [yellow]{user_id} still has a balance of "
                f"{format_cents(outstanding, group.currency)}[/yellow]"
            )


@app.command("delete-group")
def delete_group(
    group_id: str = typer.Argument(..., help="Group id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Delete a group with all of its expenses and settlements."""
    with _service_session(verbose) as service:
        group = service.get_group(group_id)

        if not yes:
            confirm = input(f"\nDelete {group.name} and its history? [y/N] ").strip().lower()
            if confirm not in ("y", "yes"):
                console.print("[yellow]Cancelled.[/yellow]")
                return

        service.delete_group(group_id)
        console.print(f"[green]✓ Deleted group {group.name}[/green]")


# ============================================================================
# Expenses
# ============================================================================


@app.command("add-expense")
def add_expense(
    group_id: str = typer.Argument(..., help="Group id"),
    amount: str = typer.Argument(..., help="Amount in major units, e.g. 12.34"),
    payer: str | None = typer.Option(
        None, "--payer", help="Payer user id (prompted if omitted)"
    ),
    split_type: SplitType = typer.Option(SplitType.EQUAL, "--split", "-s", help="Split type"),
    participants: list[str] = typer.Option(
        [], "--participant", "-p", help="user, or user:value (repeat per participant)"
    ),
    description: str = typer.Option("", "--description", "-d", help="Description"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    Record an expense and split it.

    Without --participant, an EQUAL split covers every group member.
    """
    with _service_session(verbose) as service:
        group = service.get_group(group_id)

        if payer is None:
            console.print("\n[bold blue]Who paid?[/bold blue]")
            payer = select_member_interactive(group, "Payer: ")
            if payer is None:
                console.print("[yellow]No payer selected.[/yellow]")
                return

        if participants:
            inputs = [parse_participant(p, split_type, group.currency) for p in participants]
        elif split_type == SplitType.EQUAL:
            inputs = [ParticipantInput(user_id=uid) for uid in group.member_ids()]
        else:
            raise typer.BadParameter(
                f"{split_type.value} split needs --participant user:value options"
            )

        expense = service.create_expense(
            group_id,
            payer_id=payer,
            amount_cents=parse_amount(amount, group.currency),
            split_type=split_type,
            participants=inputs,
            description=description,
        )

        table = Table(title="Shares", show_header=True, header_style="bold magenta")
        table.add_column("Member", style="cyan")
        table.add_column("Share", justify="right")
        for participant in expense.participants:
            table.add_row(
                _member_name(group, participant.user_id),
                format_money(participant.share_cents, group.currency, use_color=False),
            )

        console.print(
            f"\n[bold green]✓ Expense {expense.id}[/bold green] "
            f"{expense.amount} "
            f"paid by {_member_name(group, expense.payer_id)}\n"
        )
        console.print(table)


@app.command("delete-expense")
def delete_expense(
    expense_id: str = typer.Argument(..., help="Expense id"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Delete an expense."""
    with _service_session(verbose) as service:
        service.delete_expense(expense_id)
        console.print(f"[green]✓ Deleted expense {expense_id}[/green]")


@app.command()
def expenses(
    group_id: str = typer.Argument(..., help="Group id"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """List a group's expenses."""
    with _service_session(verbose) as service:
        group = service.get_group(group_id)
        items = service.list_expenses(group_id)

        if not items:
            console.print("[yellow]No expenses yet.[/yellow]")
            return

        table = Table(title=f"Expenses: {group.name}", header_style="bold magenta")
        table.add_column("ID", style="dim", width=10)
        table.add_column("Date")
        table.add_column("Description", style="cyan", width=30)
        table.add_column("Paid by")
        table.add_column("Split")
        table.add_column("Amount", justify="right")

        for expense in items:
            desc = expense.description
            table.add_row(
                expense.id[:8],
                expense.created_at.strftime("%Y-%m-%d"),
                desc[:30] + "..." if len(desc) > 30 else desc,
                _member_name(group, expense.payer_id),
                expense.split_type.value,
                format_money(expense.amount_cents, expense.currency, use_color=False),
            )

        console.print(table)
        total = sum(expense.amount_cents for expense in items)
        console.print(f"  Group total: {format_money(total, group.currency)}")


# ============================================================================
# Balances & settlement
# ============================================================================


@app.command()
def balances(
    group_id: str = typer.Argument(..., help="Group id"),
    verify: bool = typer.Option(
        False, "--verify", help="Also recompute from scratch and compare"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show every member's balance (positive = is owed money)."""
    with _service_session(verbose) as service:
        group = service.get_group(group_id)
        current = service.compute_balances(group_id)
        summaries = {s.user_id: s for s in service.member_summaries(group_id)}

        table = Table(title=f"Balances: {group.name}", header_style="bold magenta")
        table.add_column("Member", style="cyan")
        table.add_column("Paid", justify="right")
        table.add_column("Share", justify="right")
        table.add_column("Settled", justify="right")
        table.add_column("Balance", justify="right")

        for user_id, amount in current.items():
            summary = summaries[user_id]
            table.add_row(
                _member_name(group, user_id),
                format_money(summary.total_paid, group.currency, use_color=False),
                format_money(summary.total_owed, group.currency, use_color=False),
                format_money(
                    summary.settled_out - summary.settled_in,
                    group.currency,
                    use_color=False,
                ),
                format_money(amount, group.currency),
            )

        console.print(table)

        if sum(current.values()) == 0:
            console.print("  [green]✓ Balances sum to zero[/green]")

        if verify:
            service.verify_balances(group_id)
            console.print("  [green]✓ Matches a full recompute[/green]")


def display_plan(group: Group, transfers, title: str = "Settlement Plan"):
    """Display planned transfers or settlements in a table."""
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("#", style="dim", width=4)
    table.add_column("From", style="cyan")
    table.add_column("To", style="cyan")
    table.add_column("Amount", justify="right")

    for idx, transfer in enumerate(transfers, start=1):
        table.add_row(
            str(idx),
            _member_name(group, transfer.from_user_id),
            _member_name(group, transfer.to_user_id),
            format_money(transfer.amount_cents, group.currency, use_color=False),
        )

    console.print(table)


@app.command()
def plan(
    group_id: str = typer.Argument(..., help="Group id"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show the transfers that would settle the group (dry-run)."""
    with _service_session(verbose) as service:
        group = service.get_group(group_id)
        transfers = service.propose_settlement_plan(group_id)

        if not transfers:
            console.print("[green]✓ Everyone is settled up.[/green]")
            return

        display_plan(group, transfers)
        console.print(f"  {len(transfers)} transfers for {len(group.members)} members")


@app.command()
def settle(
    group_id: str = typer.Argument(..., help="Group id"),
    method: SettlementMethod | None = typer.Option(None, "--method", "-m", help="Payment method"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Propose the settlement plan as PENDING settlements."""
    with _service_session(verbose) as service:
        group = service.get_group(group_id)
        transfers = service.plan_settlements(group_id)
        if not transfers:
            console.print("[green]✓ Nothing left to settle.[/green]")
            return

        display_plan(group, transfers)

        if not yes:
            confirm = input("\nCreate these settlements? [y/N] ").strip().lower()
            if confirm not in ("y", "yes"):
                console.print("[yellow]Cancelled.[/yellow]")
                return

        created = service.propose_settlements(group_id, method)
        console.print(f"\n[bold green]✓ Proposed {len(created)} settlements[/bold green]")
        for settlement in created:
            console.print(f"  [dim]{settlement.id}[/dim]")


@app.command()
def record(
    group_id: str = typer.Argument(..., help="Group id"),
    from_user: str = typer.Argument(..., help="Who paid"),
    to_user: str = typer.Argument(..., help="Who received"),
    amount: str = typer.Argument(..., help="Amount in major units"),
    method: SettlementMethod | None = typer.Option(None, "--method", "-m", help="Payment method"),
    external_ref: str | None = typer.Option(None, "--ref", help="External payment reference"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Record a payment made directly between two members."""
    with _service_session(verbose) as service:
        group = service.get_group(group_id)
        settlement = service.record_settlement(
            group_id,
            from_user,
            to_user,
            parse_amount(amount, group.currency),
            method,
            external_ref,
        )
        console.print(
            f"[green]✓ Recorded settlement {settlement.id} "
            f"({settlement.amount}, pending)[/green]"
        )


@app.command()
def confirm(
    settlement_id: str | None = typer.Argument(None, help="Settlement id"),
    group_id: str | None = typer.Option(
        None, "--group", "-g", help="Pick a pending settlement of this group"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Confirm a settlement as paid (safe to repeat)."""
    with _service_session(verbose) as service:
        if settlement_id is None:
            if group_id is None:
                raise typer.BadParameter("Pass a settlement id or --group")
            group = service.get_group(group_id)
            pending = service.list_settlements(group_id, SettlementStatus.PENDING)
            selected_idx = select_settlement_interactive(pending, group)
            if selected_idx is None:
                console.print("[yellow]No settlement selected.[/yellow]")
                return
            settlement_id = pending[selected_idx].id

        settlement = service.confirm_settlement(settlement_id)
        console.print(
            f"[bold green]✓ Settlement {settlement.id} confirmed[/bold green] "
            f"({settlement.amount})"
        )


@app.command()
def cancel(
    settlement_id: str = typer.Argument(..., help="Settlement id"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Cancel a pending settlement."""
    with _service_session(verbose) as service:
        service.cancel_settlement(settlement_id)
        console.print(f"[green]✓ Cancelled settlement {settlement_id}[/green]")


@app.command()
def reverse(
    settlement_id: str = typer.Argument(..., help="Settlement id"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Create an offsetting settlement for a confirmed one."""
    with _service_session(verbose) as service:
        reversal = service.reverse_settlement(settlement_id)
        console.print(
            f"[green]✓ Created reversal {reversal.id} (pending; confirm it to apply)[/green]"
        )


@app.command()
def settlements(
    group_id: str = typer.Argument(..., help="Group id"),
    status: SettlementStatus | None = typer.Option(None, "--status", help="Filter by status"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """List a group's settlements."""
    with _service_session(verbose) as service:
        group = service.get_group(group_id)
        items: list[Settlement] = service.list_settlements(group_id, status)

        if not items:
            console.print("[yellow]No settlements.[/yellow]")
            return

        table = Table(title=f"Settlements: {group.name}", header_style="bold magenta")
        table.add_column("ID", style="dim")
        table.add_column("From", style="cyan")
        table.add_column("To", style="cyan")
        table.add_column("Amount", justify="right")
        table.add_column("Method")
        table.add_column("Status")

        for settlement in items:
            status_display = (
                "[green]CONFIRMED[/green]"
                if settlement.is_confirmed
                else "[yellow]PENDING[/yellow]"
            )
            table.add_row(
                settlement.id,
                _member_name(group, settlement.from_user_id),
                _member_name(group, settlement.to_user_id),
                format_money(settlement.amount_cents, settlement.currency, use_color=False),
                settlement.method.value,
                status_display,
            )

        console.print(table)


if __name__ == "__main__":
    app()
