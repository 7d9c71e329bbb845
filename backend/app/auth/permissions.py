"""Role permissions for the group formation API.

Each role has a set of DEFAULT permissions (defined here, not in DB). The
identity service embeds the effective set in the JWT, so checks are
token-only.

Permission naming: `<resource>.<action>`
  Resources: group, plot, supervisor
  Actions:   read, write
"""

from __future__ import annotations


# ── All known permissions ───────────────────────────────────

ALL_PERMISSIONS: set[str] = {
    "group.read",         # preview, list ungrouped plots
    "group.write",        # commit formation, create groups manually
    "plot.read",
    "supervisor.read",
}


# ── Role → default permissions ──────────────────────────────

ROLE_DEFAULTS: dict[str, set[str]] = {
    "admin": ALL_PERMISSIONS.copy(),

    "cluster_manager": {
        "group.read", "group.write",
        "plot.read",
        "supervisor.read",
    },

    "supervisor": {
        "group.read",
        "plot.read",
    },

    "expert": {
        "group.read",
        "plot.read",
    },
}


# ── Resolution ──────────────────────────────────────────────

def resolve_permissions(
    role: str,
    custom_overrides: dict[str, bool] | None = None,
) -> list[str]:
    """Compute effective permissions for a role.

    1. Start with the role's defaults.
    2. Apply custom_overrides: {perm: True} adds, {perm: False} removes.
    3. Return a sorted list (for stable JWT claims).
    """
    base = ROLE_DEFAULTS.get(role, set()).copy()

    if custom_overrides:
        for perm, granted in custom_overrides.items():
            if perm not in ALL_PERMISSIONS:
                continue  # ignore unknown permissions
            if granted:
                base.add(perm)
            else:
                base.discard(perm)

    return sorted(base)


def has_permission(user_permissions: list[str] | set[str], required: str) -> bool:
    """Check whether a permission set satisfies a requirement ("*" grants all)."""
    return "*" in user_permissions or required in user_permissions
