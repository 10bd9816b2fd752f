"""Client wrapper for submitting builds to Jenkins."""

from __future__ import annotations

import re
from typing import Any, Dict
from urllib.parse import quote

import httpx

from src.logger import get_logger, log_with_context

logger = get_logger()

_QUEUE_ITEM_PATTERN = re.compile(r"/queue/item/(\d+)/?$")


class JenkinsAPIError(RuntimeError):
    """Raised when Jenkins rejects or fails a request."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


def job_path(job_full_name: str) -> str:
    """Translate ``folder/sub/job`` into ``/job/folder/job/sub/job/job``."""

    segments = [segment for segment in job_full_name.strip("/").split("/") if segment]
    if not segments:
        raise ValueError("Jenkins job name must not be empty.")
    return "".join(f"/job/{quote(segment, safe='')}" for segment in segments)


class JenkinsClient:
    def __init__(
        self,
        base_url: str,
        *,
        user: str | None = None,
        api_token: str | None = None,
        timeout: float = 30.0,
        use_crumb: bool = True,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        auth = (user, api_token) if user and api_token else None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            auth=auth,
        )
        self._owns_client = client is None
        self._use_crumb = use_crumb
        self._crumb: Dict[str, str] | None = None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _crumb_headers(self) -> Dict[str, str]:
        if not self._use_crumb:
            return {}
        if self._crumb is not None:
            return self._crumb

        try:
            response = await self._client.get("/crumbIssuer/api/json")
        except httpx.HTTPError as exc:
            raise JenkinsAPIError(f"Unable to reach Jenkins crumb issuer: {exc}") from exc

        if response.status_code == 404:
            logger.debug("Jenkins crumb issuer is disabled; sending builds without a crumb")
            self._use_crumb = False
            return {}
        if response.status_code >= 400:
            raise JenkinsAPIError(
                f"Jenkins crumb issuer responded with status {response.status_code}.",
                response.status_code,
            )

        data = response.json()
        field = data.get("crumbRequestField")
        crumb = data.get("crumb")
        if not field or not crumb:
            raise JenkinsAPIError("Jenkins crumb issuer returned an incomplete crumb.", response.status_code)
        self._crumb = {field: crumb}
        return self._crumb

    async def build_job(self, job_full_name: str, parameters: Dict[str, Any]) -> int | str:
        """Queue a parameterized build and return its queue item id."""

        ctx_logger = log_with_context(logger, job=job_full_name)
        url = f"{job_path(job_full_name)}/buildWithParameters"
        headers = await self._crumb_headers()
        form = {name: str(value) for name, value in parameters.items()}

        ctx_logger.debug(f"Submitting Jenkins build to {url}")
        try:
            response = await self._client.post(url, data=form, headers=headers)
        except httpx.HTTPError as exc:
            raise JenkinsAPIError(f"Jenkins build request for {job_full_name} failed: {exc}") from exc

        if response.status_code in (401, 403) and self._crumb is not None:
            # Crumbs are tied to the web session; drop it so the next attempt fetches a fresh one.
            self._crumb = None
        if response.status_code >= 400:
            raise JenkinsAPIError(
                f"Jenkins responded with status {response.status_code} for {job_full_name}.",
                response.status_code,
            )

        location = response.headers.get("Location", "")
        match = _QUEUE_ITEM_PATTERN.search(location)
        if match:
            return int(match.group(1))
        return location
