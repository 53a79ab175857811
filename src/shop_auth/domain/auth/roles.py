"""Closed role set and role capability lookup for storefront accounts."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum
from types import MappingProxyType


class Role(StrEnum):
    """Supported account roles."""

    CUSTOMER = "customer"
    SELLER = "seller"


class Permission(StrEnum):
    """Coarse capabilities that protected operations may require."""

    PROFILE_WRITE = "profile:write"
    WISHLIST_WRITE = "wishlist:write"
    CART_WRITE = "cart:write"
    ITEMS_WRITE = "items:write"


ROLE_CAPABILITIES: Mapping[Role, frozenset[Permission]] = MappingProxyType(
    {
        Role.CUSTOMER: frozenset(
            {
                Permission.PROFILE_WRITE,
                Permission.WISHLIST_WRITE,
                Permission.CART_WRITE,
            }
        ),
        Role.SELLER: frozenset(
            {
                Permission.PROFILE_WRITE,
                Permission.ITEMS_WRITE,
            }
        ),
    }
)


def role_has_permission(*, role: Role, permission: Permission) -> bool:
    """Return whether one role carries the requested capability."""

    return permission in ROLE_CAPABILITIES.get(role, frozenset())
