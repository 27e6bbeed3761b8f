"""Role to capability resolution.

Every feature gate asks this module instead of comparing role strings.
"""

from enum import Enum

from ..models import AppRole, CustomRole


class Capability(str, Enum):
    """Feature access granted to a profile."""

    MEMBER_AREA = "member_area"          # news, players, shop, reports, giveaways
    CONTRACTS = "contracts"
    VACATIONS = "vacations"
    LEAVE_REQUESTS = "leave_requests"
    ADMIN_PANEL = "admin_panel"
    ROULETTE = "roulette"
    CHANGE_USERNAME = "change_username"
    DEVELOPER_TOOLS = "developer_tools"
    SUPPORT_TICKETS = "support_tickets"  # list and answer bot tickets
    APPLY = "apply"


MEMBER_ROLES = frozenset({AppRole.MEMBER, AppRole.ADMIN, AppRole.DEVELOPER})
ADMIN_ROLES = frozenset({AppRole.ADMIN, AppRole.DEVELOPER})

_MEMBER_CAPABILITIES = frozenset({
    Capability.MEMBER_AREA,
    Capability.CONTRACTS,
    Capability.VACATIONS,
    Capability.LEAVE_REQUESTS,
})

_ADMIN_CAPABILITIES = frozenset({
    Capability.ADMIN_PANEL,
    Capability.ROULETTE,
})

_DEVELOPER_CAPABILITIES = frozenset({
    Capability.DEVELOPER_TOOLS,
    Capability.SUPPORT_TICKETS,
    Capability.CHANGE_USERNAME,
    Capability.APPLY,
})

# Flags on a custom role that add capabilities on top of the base role
_CUSTOM_ROLE_FLAGS = {
    "has_admin_access": Capability.ADMIN_PANEL,
    "has_roulette_access": Capability.ROULETTE,
    "can_change_username": Capability.CHANGE_USERNAME,
    "can_view_contracts": Capability.CONTRACTS,
}


def coerce_role(role: AppRole | str | None) -> AppRole:
    """Unknown or missing roles resolve to guest."""
    if isinstance(role, AppRole):
        return role
    try:
        return AppRole(role)
    except ValueError:
        return AppRole.GUEST


def resolve_capabilities(
    role: AppRole | str | None,
    custom_role: CustomRole | None = None,
) -> frozenset[Capability]:
    """Compute the full capability set for a role and optional custom role."""
    role = coerce_role(role)
    capabilities: set[Capability] = set()

    if role == AppRole.GUEST:
        capabilities.add(Capability.APPLY)
    if role in MEMBER_ROLES:
        capabilities |= _MEMBER_CAPABILITIES
    if role in ADMIN_ROLES:
        capabilities |= _ADMIN_CAPABILITIES
    if role == AppRole.DEVELOPER:
        capabilities |= _DEVELOPER_CAPABILITIES

    if custom_role is not None:
        for flag, capability in _CUSTOM_ROLE_FLAGS.items():
            if getattr(custom_role, flag, False):
                capabilities.add(capability)

    return frozenset(capabilities)


def has_capability(
    role: AppRole | str | None,
    capability: Capability,
    custom_role: CustomRole | None = None,
) -> bool:
    return capability in resolve_capabilities(role, custom_role)
