"""Map an external payment reference back to the user who started the payment.

References are issued as ``<identifier>-<suffix>`` where the identifier is the
user's email or username. Identifiers that themselves contain ``-`` are cut at
the first one, so such users cannot be resolved from their references.
"""

from __future__ import annotations

from typing import Protocol

from models import User

SEPARATOR = "-"


class UserLookup(Protocol):
    def get_user_by_email(self, email: str) -> User | None: ...

    def get_user_by_username(self, username: str) -> User | None: ...


def parse_identifier(reference: str | None) -> str | None:
    if not reference:
        return None
    identifier = reference.split(SEPARATOR, 1)[0]
    return identifier or None


def resolve_user(store: UserLookup, reference: str | None) -> User | None:
    identifier = parse_identifier(reference)
    if identifier is None:
        return None
    user = store.get_user_by_email(identifier)
    if user is not None:
        return user
    return store.get_user_by_username(identifier)
