"""Signed bearer tokens for the marketplace APIs."""
import base64
import binascii
import time
import uuid
from typing import Callable, Dict, Optional

import jwt

from catalog_sync.errors import ConfigurationError


class MarketplaceAuth:
    """Builds the Authorization header for marketplace requests.

    Each call signs a fresh HS256 token over the access key, a random nonce
    and the issue time, so headers must never be cached or reused.
    """

    def __init__(
        self,
        access_key: Optional[str],
        secret_key: Optional[str],
        clock: Callable[[], float] = time.time,
    ):
        if not access_key or not secret_key:
            raise ConfigurationError(
                "Marketplace credentials missing: set MARKETPLACE_ACCESS_KEY and MARKETPLACE_SECRET_KEY"
            )
        try:
            self._secret = base64.b64decode(secret_key, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ConfigurationError("MARKETPLACE_SECRET_KEY is not valid base64") from e
        self.access_key = access_key
        self._clock = clock

    def build_token(self) -> str:
        payload = {
            "accessKey": self.access_key,
            "nonce": str(uuid.uuid4()),
            "iat": int(self._clock()),
        }
        return jwt.encode(payload, self._secret, algorithm="HS256")

    def headers(self) -> Dict[str, str]:
        """Return a freshly signed Authorization header."""
        return {"Authorization": f"Bearer {self.build_token()}"}
