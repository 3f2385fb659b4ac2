"""
Auth Gate
=========

Bearer-credential verification for protected gateway actions.

Which actions are protected is configuration (settings.protected_actions),
not a property of any call site. Public actions never touch the credential.
For protected actions the token is introspected against the identity
provider ("get user" endpoint) before any catalog quota is spent.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx
import structlog
from prometheus_client import Counter

from .errors import AuthenticationError

logger = structlog.get_logger(__name__)

auth_checks_total = Counter(
    'catalog_gateway_auth_checks_total',
    'Authentication checks for protected actions',
    ['result']
)


@dataclass
class CallerIdentity:
    """Identity extracted from a verified credential."""
    user_id: str
    email: Optional[str] = None
    claims: Dict[str, Any] = field(default_factory=dict)


def parse_bearer(authorization: Optional[str]) -> str:
    """
    Extract the token from an ``Authorization: Bearer <token>`` header.

    Raises:
        AuthenticationError: Header missing or not in Bearer format
    """
    if not authorization:
        raise AuthenticationError("Missing authorization header")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != 'bearer' or not parts[1]:
        raise AuthenticationError("Invalid authorization header format")

    return parts[1]


class AuthGate:
    """
    Verifies callers of protected actions via token introspection.

    Usage:
        gate = AuthGate(
            protected_actions={"get-release"},
            introspection_url="https://project.supabase.co/auth/v1/user",
            api_key="anon-key",
        )
        identity = await gate.authorize("get-release", request.headers.get("authorization"))
    """

    def __init__(
        self,
        protected_actions=None,
        introspection_url: Optional[str] = None,
        api_key: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0
    ):
        self.protected_actions = frozenset(protected_actions or ())
        self.introspection_url = introspection_url
        self.api_key = api_key
        self.timeout = timeout
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient()

    def is_protected(self, action: str) -> bool:
        return action in self.protected_actions

    async def verify(self, authorization: Optional[str]) -> CallerIdentity:
        """
        Verify a bearer credential with the identity provider.

        Args:
            authorization: Raw Authorization header value

        Returns:
            CallerIdentity for the token owner

        Raises:
            AuthenticationError: Missing, malformed or rejected credential
        """
        token = parse_bearer(authorization)

        if not self.introspection_url:
            # Fail closed: nothing can vouch for the token
            logger.error("Protected action called but no identity provider is configured")
            raise AuthenticationError("Authentication is not available")

        headers = {'Authorization': f'Bearer {token}'}
        if self.api_key:
            headers['apikey'] = self.api_key

        try:
            response = await self._client.get(
                self.introspection_url,
                headers=headers,
                timeout=self.timeout
            )
        except httpx.HTTPError as e:
            logger.warning("Identity provider unreachable", error=str(e))
            raise AuthenticationError("Unable to verify credentials")

        if response.status_code != 200:
            logger.info("Identity provider rejected token", status_code=response.status_code)
            raise AuthenticationError("Invalid or expired token")

        try:
            user = response.json()
        except ValueError:
            raise AuthenticationError("Unable to verify credentials")

        if not isinstance(user, dict) or not user.get('id'):
            raise AuthenticationError("Invalid or expired token")

        return CallerIdentity(
            user_id=str(user['id']),
            email=user.get('email'),
            claims=user
        )

    async def authorize(
        self,
        action: str,
        authorization: Optional[str]
    ) -> Optional[CallerIdentity]:
        """
        Gate an action: None for public actions, identity for protected ones.

        Raises:
            AuthenticationError: Protected action without a valid credential
        """
        if not self.is_protected(action):
            return None

        try:
            identity = await self.verify(authorization)
        except AuthenticationError as e:
            auth_checks_total.labels(result='rejected').inc()
            logger.info("Authentication failed", action=action, reason=e.message)
            raise

        auth_checks_total.labels(result='accepted').inc()
        logger.debug("Caller authenticated", action=action, user_id=identity.user_id)
        return identity

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()
