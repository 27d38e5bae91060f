"""
Capability checks consumed by the ledger.

Every admin/owner decision goes through one `Authorizer`, injected into the
services that need it.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, Optional

from core.exceptions import PermissionDeniedError
from database.models import Affiliate


@dataclass(frozen=True)
class Actor:
    """Authenticated caller, identified by identity-store account ID."""
    account_id: int
    username: Optional[str] = None


class Authorizer(ABC):
    """Answers "is this caller an admin" and "does this caller own affiliate X"."""

    @abstractmethod
    def is_admin(self, actor: Actor) -> bool:
        ...

    def owns_affiliate(self, actor: Actor, affiliate: Affiliate) -> bool:
        return affiliate.owner_account_id == actor.account_id

    def can_review_referral(self, actor: Actor) -> bool:
        return self.is_admin(actor)

    def can_process_withdrawal(self, actor: Actor) -> bool:
        return self.is_admin(actor)

    def can_manage_affiliates(self, actor: Actor) -> bool:
        return self.is_admin(actor)

    def can_view_affiliate(self, actor: Actor, affiliate: Affiliate) -> bool:
        return self.is_admin(actor) or self.owns_affiliate(actor, affiliate)

    def can_request_withdrawal(self, actor: Actor, affiliate: Affiliate) -> bool:
        return self.is_admin(actor) or self.owns_affiliate(actor, affiliate)

    def require(self, allowed: bool, action: str) -> None:
        """Raise PermissionDeniedError unless `allowed`."""
        if not allowed:
            raise PermissionDeniedError(f"Permission denied: {action}")


class SettingsAuthorizer(Authorizer):
    """Admins are the account IDs listed in settings."""

    def __init__(self, admin_account_ids: Iterable[int]):
        self.admin_account_ids = frozenset(admin_account_ids)

    def is_admin(self, actor: Actor) -> bool:
        return actor.account_id in self.admin_account_ids
