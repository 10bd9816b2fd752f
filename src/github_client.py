"""GitHub API client helpers."""

from __future__ import annotations

import base64
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

import httpx
import jwt


class GitHubAPIError(RuntimeError):
    """Raised when a GitHub API request fails."""

    def __init__(self, message: str, status_code: int, response_body: Any | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


DEFAULT_ACCEPT_HEADER = "application/vnd.github+json"
# Classic project boards are still served behind the inertia preview.
PROJECTS_ACCEPT_HEADER = "application/vnd.github.inertia-preview+json"
DEFAULT_API_VERSION = "2022-11-28"


@dataclass
class InstallationToken:
    token: str
    expires_at: datetime

    def is_active(self, *, skew_seconds: int = 60) -> bool:
        """Return True if the token is still valid accounting for clock skew."""

        return self.expires_at - timedelta(seconds=skew_seconds) > datetime.now(timezone.utc)


class GitHubInstallationClient:
    """GitHub App client for installation-scoped repository and project reads."""

    def __init__(
        self,
        *,
        base_url: str,
        app_id: int,
        private_key_pem: str,
        timeout: float = 10.0,
        user_agent: str = "TestBuildTriggerBot/1.0",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._app_id = app_id
        # Private keys from the environment usually carry escaped newlines
        self._private_key = private_key_pem.replace("\\n", "\n")
        self._client = client or httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout,
            headers={
                "User-Agent": user_agent,
                "Accept": DEFAULT_ACCEPT_HEADER,
                "X-GitHub-Api-Version": DEFAULT_API_VERSION,
            },
        )
        self._owns_client = client is None
        self._installation_tokens: Dict[int, InstallationToken] = {}

    @property
    def base_url(self) -> str:
        return self._base_url

    def _build_jwt(self) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "iat": int((now - timedelta(seconds=60)).timestamp()),
            "exp": int((now + timedelta(minutes=10)).timestamp()),
            "iss": str(self._app_id),
        }
        try:
            return jwt.encode(payload, self._private_key, algorithm="RS256")
        except Exception as exc:
            raise GitHubAPIError(
                f"Failed to encode JWT: {exc}. Check that GITHUB_PRIVATE_KEY is a valid RSA private key in PEM format.",
                0,
                None,
            ) from exc

    def _app_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._build_jwt()}",
            "Accept": DEFAULT_ACCEPT_HEADER,
            "X-GitHub-Api-Version": DEFAULT_API_VERSION,
        }

    @staticmethod
    def _installation_headers(token: str, *, accept: str = DEFAULT_ACCEPT_HEADER) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": accept,
            "X-GitHub-Api-Version": DEFAULT_API_VERSION,
        }

    async def _request(
        self,
        method: str,
        url: str,
        *,
        headers: Dict[str, str],
        params: Dict[str, Any] | None = None,
        json: Any | None = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, url, headers=headers, params=params, json=json)
        except httpx.HTTPError as exc:
            raise GitHubAPIError(f"GitHub API request to {url} failed: {exc}", 0, None) from exc
        if response.status_code >= 400:
            detail: Any | None
            if response.content:
                try:
                    detail = response.json()
                except ValueError:
                    detail = response.text
            else:
                detail = None
            raise GitHubAPIError(
                f"GitHub API request to {url} failed with status {response.status_code}.",
                response.status_code,
                detail,
            )
        return response

    async def _fetch_installation_token(self, installation_id: int) -> InstallationToken:
        response = await self._request(
            "POST",
            f"/app/installations/{installation_id}/access_tokens",
            headers=self._app_headers(),
        )
        data = response.json()
        token_value = data.get("token")
        if not token_value:
            raise GitHubAPIError(
                "GitHub did not return an installation token.",
                response.status_code,
                data,
            )

        expires_at_raw = data.get("expires_at")
        if not expires_at_raw:
            raise GitHubAPIError(
                "GitHub did not return an expires_at value for installation token.",
                response.status_code,
                data,
            )
        return InstallationToken(token=token_value, expires_at=_parse_github_timestamp(expires_at_raw))

    async def get_installation_token(self, installation_id: int) -> InstallationToken:
        cached = self._installation_tokens.get(installation_id)
        if cached and cached.is_active():
            return cached

        token = await self._fetch_installation_token(installation_id)
        self._installation_tokens[installation_id] = token
        return token

    async def _get_json(
        self,
        installation_id: int,
        url: str,
        *,
        accept: str = DEFAULT_ACCEPT_HEADER,
        params: Dict[str, Any] | None = None,
    ) -> Any:
        token = await self.get_installation_token(installation_id)
        response = await self._request(
            "GET",
            url,
            headers=self._installation_headers(token.token, accept=accept),
            params=params,
        )
        try:
            return response.json()
        except ValueError as exc:
            raise GitHubAPIError(
                f"GitHub API returned invalid JSON for {url}.",
                response.status_code,
                response.text,
            ) from exc

    async def get_repository(self, *, installation_id: int, owner: str, repo: str) -> Dict[str, Any]:
        return await self._get_json(installation_id, f"/repos/{owner}/{repo}")

    async def get_project_column(self, *, installation_id: int, column_id: int) -> Dict[str, Any]:
        return await self._get_json(
            installation_id, f"/projects/columns/{column_id}", accept=PROJECTS_ACCEPT_HEADER
        )

    async def get_project(self, *, installation_id: int, project_id: int | str) -> Dict[str, Any]:
        return await self._get_json(installation_id, f"/projects/{project_id}", accept=PROJECTS_ACCEPT_HEADER)

    async def get_file_contents(
        self,
        *,
        installation_id: int,
        owner: str,
        repo: str,
        path: str,
        ref: str | None = None,
    ) -> str | None:
        """Return the decoded text of ``path``, or None when the file does not exist."""

        params = {"ref": ref} if ref else None
        try:
            data = await self._get_json(
                installation_id, f"/repos/{owner}/{repo}/contents/{path}", params=params
            )
        except GitHubAPIError as exc:
            if exc.status_code == 404:
                return None
            raise

        if not isinstance(data, dict) or data.get("type") != "file":
            raise GitHubAPIError(f"'{path}' is not a file in {owner}/{repo}.", 200, data)
        if data.get("encoding") != "base64":
            raise GitHubAPIError(
                f"Unsupported encoding '{data.get('encoding')}' for '{path}'.", 200, data
            )
        return base64.b64decode(data.get("content") or "").decode("utf-8")

    async def get_pull_request(self, *, installation_id: int, owner: str, repo: str, pull_number: int) -> Dict[str, Any]:
        return await self._get_json(installation_id, f"/repos/{owner}/{repo}/pulls/{pull_number}")

    async def list_pull_request_reviews(
        self,
        *,
        installation_id: int,
        owner: str,
        repo: str,
        pull_number: int,
    ) -> List[Dict[str, Any]]:
        reviews: List[Dict[str, Any]] = []
        page = 1
        while True:
            batch = await self._get_json(
                installation_id,
                f"/repos/{owner}/{repo}/pulls/{pull_number}/reviews",
                params={"per_page": 100, "page": page},
            )
            if not isinstance(batch, list):
                raise GitHubAPIError("Unexpected response while listing pull request reviews.", 200, batch)
            reviews.extend(batch)
            if len(batch) < 100:
                break
            page += 1
        return reviews

    async def get_combined_status(self, *, installation_id: int, owner: str, repo: str, ref: str) -> Dict[str, Any]:
        return await self._get_json(installation_id, f"/repos/{owner}/{repo}/commits/{ref}/status")

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


def _parse_github_timestamp(raw: str) -> datetime:
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    return datetime.fromisoformat(raw).astimezone(timezone.utc)
