"""
authority.py - Role checks for DCS operations

The engine never hardcodes privileged wallets; it asks an injected
RoleAuthority. StaticRoleAuthority covers tests and single-process use.
"""

from __future__ import annotations
from typing import Iterable, Optional, Protocol, Set, runtime_checkable

from .core import Unauthorized


@runtime_checkable
class RoleAuthority(Protocol):
    """Boolean role checks for the two privileged roles."""

    def is_cega_admin(self, wallet_id: str) -> bool:
        ...

    def is_trader_admin(self, wallet_id: str) -> bool:
        ...


class StaticRoleAuthority:
    """
    Fixed role membership.

    Cega admins are implicitly trader admins, matching a role registry where
    the admin role administers the trading role.
    """

    def __init__(
        self,
        cega_admins: Optional[Iterable[str]] = None,
        trader_admins: Optional[Iterable[str]] = None,
    ):
        self.cega_admins: Set[str] = set(cega_admins or ())
        self.trader_admins: Set[str] = set(trader_admins or ())

    def is_cega_admin(self, wallet_id: str) -> bool:
        return wallet_id in self.cega_admins

    def is_trader_admin(self, wallet_id: str) -> bool:
        return wallet_id in self.trader_admins or wallet_id in self.cega_admins

    def grant_trader_admin(self, wallet_id: str) -> None:
        self.trader_admins.add(wallet_id)

    def revoke_trader_admin(self, wallet_id: str) -> None:
        self.trader_admins.discard(wallet_id)


def require_cega_admin(authority: RoleAuthority, caller: str) -> None:
    if not authority.is_cega_admin(caller):
        raise Unauthorized(f"{caller} is not a cega admin")


def require_trader_admin(authority: RoleAuthority, caller: str) -> None:
    if not authority.is_trader_admin(caller):
        raise Unauthorized(f"{caller} is not a trader admin")
