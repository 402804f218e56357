"""Interactive UI components for picking members and settlements."""

import logging
from typing import Any

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

from .models import Group, Settlement
from .money import format_cents

logger = logging.getLogger(__name__)


def fuzzy_match(query: str, text: str) -> bool:
    """
    Fuzzy match: all characters in query must appear in order in text.

    Example:
        query="aln" matches "alice.nguyen"
    """
    query_idx = 0
    for char in text:
        if query_idx < len(query) and char == query[query_idx]:
            query_idx += 1
    return query_idx == len(query)


class MemberCompleter(Completer):
    """Fuzzy search completer for group members."""

    def __init__(self, group: Group):
        """Initialize the completer with the group's members."""
        self.label_to_id = {}
        for member in group.members:
            label = (
                f"{member.display_name} ({member.user_id})"
                if member.display_name
                else member.user_id
            )
            self.label_to_id[label] = member.user_id

    def get_completions(self, document: Document, complete_event: Any):
        """Get fuzzy-matched completions."""
        query = document.text.lower()

        for label in self.label_to_id:
            if not query or fuzzy_match(query, label.lower()):
                yield Completion(
                    text=label,
                    start_position=-len(document.text),
                    display=label,
                )

    def resolve(self, text: str) -> str | None:
        """Map typed text (a label or a raw user id) back to a user id."""
        if text in self.label_to_id:
            return self.label_to_id[text]
        if text in self.label_to_id.values():
            return text
        return None


def select_member_interactive(group: Group, prompt: str = "Member: ") -> str | None:
    """
    Interactive member selection with fuzzy search.

    Returns:
        Selected user id, or None to skip
    """
    completer = MemberCompleter(group)
    session: PromptSession[str] = PromptSession(completer=completer)

    print("   Type to search, press Enter to confirm, Ctrl+C to skip\n")

    try:
        while True:
            result = session.prompt(prompt, complete_while_typing=True)
            if not result:
                return None

            user_id = completer.resolve(result)
            if user_id:
                logger.debug(f"User selected member: {user_id}")
                return user_id

            print("❌ Not a member of this group. Press Tab to complete.")

    except KeyboardInterrupt:
        print("\n⏭️  Skipped")
        return None
    except EOFError:
        return None


def select_settlement_interactive(
    settlements: list[Settlement], group: Group
) -> int | None:
    """
    Interactive settlement selection.

    Args:
        settlements: Settlements to choose from
        group: Their group, used for member names and currency

    Returns:
        Index of selected settlement (0-based), or None to cancel
    """
    if not settlements:
        print("\n⚠️  No settlements found")
        return None

    def name(user_id: str) -> str:
        for member in group.members:
            if member.user_id == user_id:
                return member.label
        return user_id

    print("\n💸 Settlements:\n")

    for idx, settlement in enumerate(settlements):
        amount = format_cents(settlement.amount_cents, settlement.currency)
        print(f"  [{idx + 1}] {settlement.created_at.strftime('%Y-%m-%d %H:%M')}")
        print(f"      {name(settlement.from_user_id)} → {name(settlement.to_user_id)}")
        print(f"      Amount: {amount} ({settlement.method.value})")
        print()

    try:
        max_selection = len(settlements)
        response = (
            input(f"Select settlement [1-{max_selection}, or q to quit]: ")
            .strip()
            .lower()
        )

        if response in ("q", "quit", ""):
            return None

        selection = int(response) - 1  # Convert to 0-based index

        if 0 <= selection < len(settlements):
            return selection
        else:
            print("❌ Invalid selection")
            return None

    except (ValueError, KeyboardInterrupt, EOFError):
        print("\n⏭️  Cancelled")
        return None
