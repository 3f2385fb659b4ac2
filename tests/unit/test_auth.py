"""
Unit tests for bearer verification of protected actions.
"""

import httpx
import pytest

from catalog_gateway.auth import AuthGate, parse_bearer
from catalog_gateway.errors import AuthenticationError

INTROSPECTION_URL = "https://auth.example.com/auth/v1/user"


def build_gate(upstream, **kwargs):
    kwargs.setdefault("protected_actions", {"get-release"})
    kwargs.setdefault("introspection_url", INTROSPECTION_URL)
    return AuthGate(http_client=upstream.client(), **kwargs)


class TestParseBearer:

    def test_extracts_token(self):
        assert parse_bearer("Bearer abc.def") == "abc.def"

    def test_scheme_is_case_insensitive(self):
        assert parse_bearer("bearer abc") == "abc"

    @pytest.mark.parametrize("header", [None, ""])
    def test_missing_header(self, header):
        with pytest.raises(AuthenticationError) as exc_info:
            parse_bearer(header)
        assert exc_info.value.message == "Missing authorization header"

    @pytest.mark.parametrize("header", ["abc", "Basic abc", "Bearer", "Bearer a b"])
    def test_malformed_header(self, header):
        with pytest.raises(AuthenticationError) as exc_info:
            parse_bearer(header)
        assert exc_info.value.message == "Invalid authorization header format"
        assert exc_info.value.status_code == 401


class TestAuthGate:
    """Test cases for AuthGate."""

    @pytest.mark.asyncio
    async def test_public_action_skips_verification(self, upstream):
        """Test a public action never contacts the identity provider."""
        gate = build_gate(upstream)

        identity = await gate.authorize("search-artist", None)

        assert identity is None
        assert upstream.calls() == []

    @pytest.mark.asyncio
    async def test_protected_action_without_header(self, upstream):
        """Test a protected action with no credential is rejected."""
        gate = build_gate(upstream)

        with pytest.raises(AuthenticationError):
            await gate.authorize("get-release", None)

        assert upstream.calls() == []

    @pytest.mark.asyncio
    async def test_valid_token_accepted(self, upstream):
        """Test the introspection response becomes the caller identity."""
        upstream.on("/auth/v1/user", httpx.Response(200, json={"id": "user-1", "email": "a@b.c"}))
        gate = build_gate(upstream, api_key="anon-key")

        identity = await gate.authorize("get-release", "Bearer good-token")

        assert identity.user_id == "user-1"
        assert identity.email == "a@b.c"
        request = upstream.calls("/auth/v1/user")[0]
        assert request.headers["Authorization"] == "Bearer good-token"
        assert request.headers["apikey"] == "anon-key"

    @pytest.mark.asyncio
    async def test_rejected_token(self, upstream):
        """Test a non-200 introspection answer is an invalid token."""
        upstream.on("/auth/v1/user", httpx.Response(401, json={"msg": "invalid JWT"}))
        gate = build_gate(upstream)

        with pytest.raises(AuthenticationError) as exc_info:
            await gate.authorize("get-release", "Bearer expired")

        assert exc_info.value.message == "Invalid or expired token"

    @pytest.mark.asyncio
    async def test_response_without_user_id(self, upstream):
        upstream.on("/auth/v1/user", httpx.Response(200, json={"email": "a@b.c"}))
        gate = build_gate(upstream)

        with pytest.raises(AuthenticationError) as exc_info:
            await gate.verify("Bearer token")

        assert exc_info.value.message == "Invalid or expired token"

    @pytest.mark.asyncio
    async def test_identity_provider_unreachable(self, upstream):
        """Test network failure while verifying is an authentication failure."""
        upstream.on("/auth/v1/user", httpx.ConnectError)
        gate = build_gate(upstream)

        with pytest.raises(AuthenticationError) as exc_info:
            await gate.verify("Bearer token")

        assert exc_info.value.message == "Unable to verify credentials"

    @pytest.mark.asyncio
    async def test_fails_closed_without_provider(self, upstream):
        """Test a protected action cannot pass when no provider is configured."""
        gate = build_gate(upstream, introspection_url=None)

        with pytest.raises(AuthenticationError) as exc_info:
            await gate.authorize("get-release", "Bearer token")

        assert exc_info.value.message == "Authentication is not available"

    @pytest.mark.asyncio
    async def test_aclose_closes_owned_client(self):
        """Test a gate that created its HTTP client closes it."""
        gate = AuthGate(protected_actions={"get-release"}, introspection_url=INTROSPECTION_URL)

        await gate.aclose()

        assert gate._client.is_closed

    @pytest.mark.asyncio
    async def test_aclose_leaves_shared_client_open(self, upstream):
        """Test an injected client stays open for its other users."""
        http_client = upstream.client()
        gate = AuthGate(protected_actions={"get-release"}, http_client=http_client)

        await gate.aclose()

        assert not http_client.is_closed

    def test_is_protected(self, upstream):
        gate = build_gate(upstream, protected_actions={"get-release", "get-artist"})

        assert gate.is_protected("get-artist")
        assert not gate.is_protected("search-artist")
