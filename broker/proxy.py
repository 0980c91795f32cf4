from __future__ import annotations

import logging
import urllib.parse

import httpx

from broker.errors import UpstreamError, ValidationError
from broker.models import Session
from broker.schemas import IssuePayload, ProjectPayload, parse_model

LOGGER = logging.getLogger("baklogmd.backlog_api")

SEARCH_MODES = ("key", "keyword")
MAX_LOGGED_BODY = 1000


def _project_json(project: ProjectPayload) -> dict:
    return {"id": project.id, "projectKey": project.project_key, "name": project.name}


def _summary_json(issue: IssuePayload) -> dict:
    return {"issueKey": issue.issue_key, "summary": issue.summary, "updatedAt": issue.updated}


def _detail_json(issue: IssuePayload) -> dict:
    return {
        "issueKey": issue.issue_key,
        "summary": issue.summary,
        "descriptionRaw": issue.description or "",
        "updatedAt": issue.updated,
    }


class ResourceProxy:
    """Authenticated, read-only pass-through to the Backlog REST API."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def _get(self, session: Session, path: str, params: dict[str, str] | None = None):
        url = f"{session.space_url}{path}"
        try:
            response = await self._client.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {session.access_token}"},
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as error:
            body = error.response.text
            if len(body) > MAX_LOGGED_BODY:
                body = body[:MAX_LOGGED_BODY] + "...<truncated>"
            LOGGER.warning(
                "Backlog API request failed status=%s path=%s space=%s body=%s",
                error.response.status_code,
                path,
                session.space_url,
                body,
            )
            raise UpstreamError(upstream_status=error.response.status_code) from error
        except (httpx.HTTPError, ValueError) as error:
            LOGGER.warning(
                "Backlog API request failed path=%s space=%s error=%r",
                path,
                session.space_url,
                error,
            )
            raise UpstreamError() from error

    def _parse(self, model, payload, path: str):
        parsed = parse_model(model, payload)
        if not parsed.ok:
            LOGGER.warning("Backlog API payload rejected path=%s: %s", path, parsed.error)
            raise UpstreamError()
        return parsed.value

    def _parse_list(self, model, payload, path: str) -> list:
        if not isinstance(payload, list):
            LOGGER.warning("Backlog API payload rejected path=%s: expected a list", path)
            raise UpstreamError()
        return [self._parse(model, item, path) for item in payload]

    async def list_projects(self, session: Session) -> list[dict]:
        path = "/api/v2/projects"
        payload = await self._get(session, path)
        return [_project_json(project) for project in self._parse_list(ProjectPayload, payload, path)]

    async def _fetch_issue(self, session: Session, issue_key: str) -> IssuePayload:
        path = f"/api/v2/issues/{urllib.parse.quote(issue_key, safe='')}"
        payload = await self._get(session, path)
        return self._parse(IssuePayload, payload, path)

    async def get_issue(self, session: Session, issue_key: str) -> dict:
        key = (issue_key or "").strip()
        if not key:
            raise ValidationError("issueKey is required.")
        return _detail_json(await self._fetch_issue(session, key))

    async def search_issues(self, session: Session, mode: str | None, query: str | None) -> list[dict]:
        if mode not in SEARCH_MODES:
            raise ValidationError("mode must be 'key' or 'keyword'.")
        q = (query or "").strip()
        if not q:
            raise ValidationError("q is required.")

        if mode == "key":
            try:
                issue = await self._fetch_issue(session, q)
            except UpstreamError as error:
                if error.upstream_status == 404:
                    return []
                raise
            return [_summary_json(issue)]

        path = "/api/v2/issues"
        payload = await self._get(session, path, params={"keyword": q})
        return [_summary_json(issue) for issue in self._parse_list(IssuePayload, payload, path)]
