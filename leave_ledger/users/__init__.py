"""Users module — the people who hold leave grants."""

from leave_ledger.users.models import User

__all__ = ["User"]
