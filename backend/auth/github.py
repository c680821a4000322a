# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
GitHub OAuth – authorize URL, code exchange and profile fetch.

Only the subset of GitHub's API needed to identify a user is used:
``/login/oauth/access_token``, ``/user`` and, when the profile hides the
address, ``/user/emails``.
"""

from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import httpx

from core.config import Settings
from core.exceptions import InvalidInputError, UpstreamFailureError
from core.logger import logger

AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
TOKEN_URL = "https://github.com/login/oauth/access_token"
API_URL = "https://api.github.com"
SCOPE = "read:user user:email"


@dataclass(frozen=True)
class GithubProfile:
    id: str                 # numeric account id, as text
    login: str
    email: Optional[str]
    avatar_url: Optional[str]


class GitHubOAuth:
    def __init__(self, settings: Settings, transport: Optional[httpx.BaseTransport] = None):
        self.client_id = settings.github_client_id
        self.client_secret = settings.github_client_secret
        self.redirect_uri = settings.github_redirect_uri
        self.timeout = settings.github_timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def _require_configured(self) -> None:
        if not self.configured:
            raise UpstreamFailureError("GitHub login is not configured")

    def _client(self) -> httpx.Client:
        return httpx.Client(
            timeout=self.timeout,
            transport=self._transport,
            headers={"Accept": "application/json"},
        )

    def authorize_url(self, state: str) -> str:
        self._require_configured()
        query = urlencode({
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": SCOPE,
            "state": state,
        })
        return f"{AUTHORIZE_URL}?{query}"

    def exchange_code_for_token(self, code: str) -> str:
        """
        Trade the callback ``code`` for an access token.

        GitHub answers 200 with an ``error`` field for a bad or reused code;
        that is the caller's fault and becomes a validation error.
        """
        self._require_configured()
        try:
            with self._client() as client:
                res = client.post(
                    TOKEN_URL,
                    data={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "code": code,
                        "redirect_uri": self.redirect_uri,
                    },
                )
                res.raise_for_status()
                data = res.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("GitHub token exchange failed: %s", exc)
            raise UpstreamFailureError("GitHub token exchange failed") from exc

        if "error" in data:
            raise InvalidInputError(data.get("error_description") or "GitHub authentication failed")
        token = data.get("access_token")
        if not token:
            raise UpstreamFailureError("GitHub did not return an access token")
        return token

    def fetch_profile(self, access_token: str) -> GithubProfile:
        """Load ``/user``; fall back to the primary verified address when the email is private."""
        headers = {"Authorization": f"Bearer {access_token}"}
        try:
            with self._client() as client:
                res = client.get(f"{API_URL}/user", headers=headers)
                res.raise_for_status()
                data = res.json()

                email = data.get("email")
                if not email:
                    res = client.get(f"{API_URL}/user/emails", headers=headers)
                    res.raise_for_status()
                    email = next(
                        (
                            row.get("email")
                            for row in res.json()
                            if row.get("primary") and row.get("verified")
                        ),
                        None,
                    )
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("GitHub profile fetch failed: %s", exc)
            raise UpstreamFailureError("GitHub profile fetch failed") from exc

        if data.get("id") is None or not data.get("login"):
            raise UpstreamFailureError("GitHub returned an incomplete profile")

        return GithubProfile(
            id=str(data["id"]),
            login=data["login"],
            email=email,
            avatar_url=data.get("avatar_url"),
        )
