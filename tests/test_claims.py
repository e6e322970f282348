"""Tests for access token claims extraction and permission strings."""

import jwt
import pytest

from permission_engine.core import config
from permission_engine.features.permissions.actions import (
    is_custom_action,
    parse_permission_string,
    permission_key,
)
from permission_engine.features.users.claims import Claims, claims_from_payload, extract_claims
from tests.helpers import TEST_SECRET, mint_token


class TestPermissionStrings:
    """Tests for "resource:action" parsing."""

    def test_parse_valid(self):
        assert parse_permission_string("document:read") == ("document", "read")

    def test_parse_normalizes_action_case(self):
        assert parse_permission_string("reports: Manage ") == ("reports", "manage")

    def test_parse_splits_on_first_colon(self):
        assert parse_permission_string("kb:public:sync") == ("kb", "public:sync")

    @pytest.mark.parametrize("value", ["document", ":read", "document:", "", None, 42, ["a:b"]])
    def test_parse_invalid(self, value):
        assert parse_permission_string(value) is None

    def test_permission_key(self):
        assert permission_key("reports", "export") == "reports:export"

    def test_custom_action(self):
        assert is_custom_action("sync")
        assert not is_custom_action("Manage")


class TestClaimsFromPayload:
    """Tests for building Claims from a decoded payload."""

    def test_reads_root_claims(self):
        claims = claims_from_payload({
            "sub": "user-1",
            "email": "a@example.com",
            "roles": ["editor"],
            "permissions": ["document:read", "document:update"],
            "role_ids": [3, 4],
            "department_id": "dep-1",
            "department_name": "Legal",
        })
        assert claims.subject_id == "user-1"
        assert claims.role_names == ("editor",)
        assert claims.permission_strings == ("document:read", "document:update")
        assert claims.role_ids == (3, 4)
        assert claims.department_id == "dep-1"
        assert claims.department_name == "Legal"

    def test_merges_metadata_and_deduplicates(self):
        claims = claims_from_payload({
            "role": "admin",
            "permissions": ["document:read"],
            "app_metadata": {"roles": ["admin", "ops"], "permissions": ["document:read", "reports:export"]},
            "user_metadata": {"department_id": "dep-9"},
        })
        assert claims.role_names == ("admin", "ops")
        assert claims.permission_strings == ("document:read", "reports:export")
        assert claims.department_id == "dep-9"

    def test_ignores_wrong_types(self):
        claims = claims_from_payload({
            "roles": "admin",
            "permissions": [1, None, "", "document:read"],
            "role_ids": ["1", True, 2],
            "department_id": True,
        })
        assert claims.role_names == ()
        assert claims.permission_strings == ("document:read",)
        assert claims.role_ids == (2,)
        assert claims.department_id is None

    def test_expiry_is_parsed(self):
        claims = claims_from_payload({"exp": 1700000000})
        assert claims.expires_at is not None
        assert int(claims.expires_at.timestamp()) == 1700000000

    @pytest.mark.parametrize("exp", [10**20, -10**20, float("nan")])
    def test_out_of_range_expiry_is_dropped(self, exp):
        claims = claims_from_payload({"sub": "user-1", "exp": exp, "permissions": ["document:read"]})
        assert claims.expires_at is None
        assert claims.permission_strings == ("document:read",)


class TestExtractClaims:
    """Tests for best-effort token decoding."""

    def test_valid_token(self):
        token = mint_token("user-1", roles=["editor"], permissions=["document:read"])
        claims = extract_claims(token)
        assert claims.subject_id == "user-1"
        assert claims.permission_strings == ("document:read",)

    def test_missing_token_is_empty(self):
        assert extract_claims(None).is_empty
        assert extract_claims("").is_empty

    def test_malformed_token_is_empty(self):
        assert extract_claims("not-a-jwt") == Claims.empty()

    def test_expired_token_is_empty(self):
        token = mint_token("user-1", expires_in=-60, roles=["admin"])
        assert extract_claims(token).is_empty

    def test_far_future_expiry_does_not_raise(self):
        token = jwt.encode(
            {"sub": "user-1", "exp": 10**20, "permissions": ["document:read"]},
            TEST_SECRET,
            algorithm="HS256",
        )
        claims = extract_claims(token)
        assert claims.subject_id == "user-1"
        assert claims.permission_strings == ("document:read",)
        assert claims.expires_at is None

    def test_wrong_signature_is_empty(self):
        token = mint_token("user-1", secret="another-secret-entirely-not-the-configured-one", roles=["admin"])
        assert extract_claims(token).is_empty

    def test_unverified_without_secret(self, monkeypatch):
        monkeypatch.setattr(config, "JWT_SECRET", None)
        token = jwt.encode({"sub": "user-2", "roles": ["ops"]}, "whatever-key-the-upstream-issuer-signs-with", algorithm="HS256")
        claims = extract_claims(token)
        assert claims.subject_id == "user-2"
        assert claims.role_names == ("ops",)
