from __future__ import annotations

import asyncio
from typing import List
from urllib.parse import parse_qs

import httpx
import pytest

from src.jenkins_client import JenkinsAPIError, JenkinsClient, job_path

JENKINS = "https://jenkins.example.com"


def _client(handler) -> JenkinsClient:
    transport = httpx.MockTransport(handler)
    return JenkinsClient(JENKINS, client=httpx.AsyncClient(base_url=JENKINS, transport=transport))


def test_job_path_nests_folders() -> None:
    assert job_path("end-to-end-tests/status-app-end-to-end-tests") == (
        "/job/end-to-end-tests/job/status-app-end-to-end-tests"
    )
    assert job_path("/single job/") == "/job/single%20job"
    with pytest.raises(ValueError):
        job_path("//")


def test_build_job_sends_crumb_and_parameters() -> None:
    requests: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path == "/crumbIssuer/api/json":
            return httpx.Response(200, json={"crumb": "c0ffee", "crumbRequestField": "Jenkins-Crumb"})
        return httpx.Response(201, headers={"Location": f"{JENKINS}/queue/item/812/"})

    client = _client(handler)
    build_id = asyncio.run(client.build_job("e2e/tests", {"pr_id": 42, "apk": "--apk=42.apk"}))

    assert build_id == 812
    build_request = requests[-1]
    assert build_request.method == "POST"
    assert build_request.url.path == "/job/e2e/job/tests/buildWithParameters"
    assert build_request.headers["Jenkins-Crumb"] == "c0ffee"
    assert parse_qs(build_request.content.decode()) == {"pr_id": ["42"], "apk": ["--apk=42.apk"]}


def test_crumb_issuer_missing_disables_crumbs() -> None:
    paths: List[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        if request.url.path == "/crumbIssuer/api/json":
            return httpx.Response(404)
        return httpx.Response(201, headers={"Location": f"{JENKINS}/queue/item/5/"})

    client = _client(handler)

    async def scenario() -> None:
        await client.build_job("job", {"pr_id": 1})
        await client.build_job("job", {"pr_id": 2})

    asyncio.run(scenario())
    assert paths.count("/crumbIssuer/api/json") == 1


def test_build_job_raises_on_error_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/crumbIssuer/api/json":
            return httpx.Response(404)
        return httpx.Response(500)

    with pytest.raises(JenkinsAPIError) as excinfo:
        asyncio.run(_client(handler).build_job("job", {"pr_id": 1}))

    assert excinfo.value.status_code == 500
