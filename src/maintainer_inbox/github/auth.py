"""GitHub App authentication (JWT -> installation token)."""

import logging
import time
from datetime import datetime

import httpx
import jwt

logger = logging.getLogger(__name__)

# GitHub rejects app JWTs valid for longer than 10 minutes
JWT_TTL_SECONDS = 600
JWT_CLOCK_SKEW_SECONDS = 60


class GitHubAppAuth:
    """Mints installation tokens for a GitHub App installation."""

    def __init__(self, app_id: str, private_key: str, installation_id: str):
        self.app_id = app_id
        self.private_key = private_key
        self.installation_id = installation_id

    def create_jwt(self, now: float | None = None) -> str:
        """Create an RS256 JWT identifying the app."""
        issued = int(now if now is not None else time.time())
        payload = {
            "iat": issued - JWT_CLOCK_SKEW_SECONDS,
            "exp": issued + JWT_TTL_SECONDS,
            "iss": str(self.app_id),
        }
        return jwt.encode(payload, self.private_key, algorithm="RS256")

    async def create_installation_token(self, http: httpx.AsyncClient) -> tuple[str, float]:
        """Exchange the app JWT for an installation token.

        Returns:
            (token, expires_at as epoch seconds)
        """
        response = await http.post(
            f"/app/installations/{self.installation_id}/access_tokens",
            headers={
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {self.create_jwt()}",
            },
        )
        response.raise_for_status()
        data = response.json()

        expires_raw = data.get("expires_at")
        if expires_raw:
            expires_at = datetime.fromisoformat(expires_raw.replace("Z", "+00:00")).timestamp()
        else:
            # Installation tokens live for one hour
            expires_at = time.time() + 3600
        logger.debug(f"Installation token for {self.installation_id} expires at {expires_raw}")
        return data["token"], expires_at
