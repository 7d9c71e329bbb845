"""Token and permission tests."""

from datetime import timedelta

import pytest
from jose import jwt

from app.auth.jwt import create_access_token, decode_token
from app.auth.permissions import ALL_PERMISSIONS, has_permission, resolve_permissions


@pytest.mark.unit
class TestPermissions:
    """Role defaults and overrides."""

    def test_cluster_manager_defaults(self):
        perms = resolve_permissions("cluster_manager")
        assert "group.write" in perms
        assert perms == sorted(perms)

    def test_supervisor_is_read_only(self):
        assert "group.write" not in resolve_permissions("supervisor")

    def test_overrides_add_and_remove(self):
        """Overrides grant or revoke known permissions; unknown ones are ignored."""
        perms = resolve_permissions(
            "expert", {"group.write": True, "plot.read": False, "made.up": True}
        )
        assert perms == ["group.read", "group.write"]

    def test_admin_has_everything(self):
        assert set(resolve_permissions("admin")) == ALL_PERMISSIONS

    def test_unknown_role_has_nothing(self):
        assert resolve_permissions("visitor") == []

    def test_wildcard(self):
        assert has_permission(["*"], "group.write")
        assert not has_permission(["group.read"], "group.write")


@pytest.mark.unit
class TestTokens:

    def test_round_trip_claims(self):
        """Claims survive encoding, including the optional cluster."""
        token = create_access_token("user-1", "cluster_manager", ["group.read"], cluster_id="c-1")
        payload = decode_token(token)
        assert payload["sub"] == "user-1"
        assert payload["type"] == "access"
        assert payload["cluster_id"] == "c-1"

    def test_expired_token_decodes_empty(self):
        token = create_access_token(
            "user-1", "expert", ["group.read"], expires_delta=timedelta(seconds=-5)
        )
        assert decode_token(token) == {}

    def test_foreign_signature_decodes_empty(self):
        """A token signed with another key is rejected."""
        token = jwt.encode({"sub": "user-1", "type": "access"}, "someone-else", algorithm="HS256")
        assert decode_token(token) == {}
