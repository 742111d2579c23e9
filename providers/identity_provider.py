"""
Federated Identity Providers

Verify third-party sign-in credentials and turn them into a
`FederatedIdentity`. Only Google ID tokens are supported today.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from core import config
from core.exceptions import AuthenticationError

logger = logging.getLogger(__name__)


@dataclass
class FederatedIdentity:
    subject: str
    email: Optional[str] = None
    name: Optional[str] = None
    picture: Optional[str] = None
    email_verified: bool = False


class FederatedIdentityProvider(ABC):
    """Abstract base class for federated sign-in providers"""

    @abstractmethod
    async def verify(self, credential: str) -> FederatedIdentity:
        """Verify a credential. Raises AuthenticationError when it is not valid."""
        pass

    @property
    @abstractmethod
    def source_name(self) -> str:
        pass


class GoogleIdentityProvider(FederatedIdentityProvider):
    """Verify Google ID tokens against Google's public certificates"""

    def __init__(self, client_id: str = None):
        self.client_id = client_id or config.GOOGLE_CLIENT_ID
        self._request = google_requests.Request()

    @property
    def source_name(self) -> str:
        return "google"

    async def verify(self, credential: str) -> FederatedIdentity:
        if not credential:
            raise AuthenticationError("Google credential is required")

        if not self.client_id:
            logger.error("GOOGLE_CLIENT_ID is not configured")
            raise AuthenticationError("Google sign-in is not configured")

        # google-auth is synchronous and fetches certificates over HTTP
        loop = asyncio.get_running_loop()
        try:
            claims = await loop.run_in_executor(
                None,
                lambda: id_token.verify_oauth2_token(
                    credential, self._request, self.client_id
                ),
            )
        except ValueError as e:
            logger.warning(f"Google token rejected: {e}")
            raise AuthenticationError("Invalid Google token")

        subject = claims.get("sub")
        if not subject:
            raise AuthenticationError("Google token has no subject")

        return FederatedIdentity(
            subject=subject,
            email=(claims.get("email") or "").lower() or None,
            name=claims.get("name"),
            picture=claims.get("picture"),
            email_verified=bool(claims.get("email_verified", False)),
        )
