"""GitHub provider. Reads PRs and repository content, manages the status comment."""

from __future__ import annotations

import base64
from typing import Optional

import httpx
import structlog

from orchestrator.services.errors import UpstreamError

from .base import IGNORED_TREE_DIRS, ChangedFile, CodeHost, PullRequest, RepoVariable

logger = structlog.get_logger()


class GitHubProvider(CodeHost):
    """GitHub integration using the REST API (via httpx, no PyGithub dep needed)."""

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.github.com",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.token = token
        self.base_url = base_url
        self._client = client

    async def close(self) -> None:
        """Close the HTTP client to release resources."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            }
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(base_url=self.base_url, headers=headers, timeout=30.0)
        return self._client

    async def _get(self, path: str, **params) -> httpx.Response:
        resp = await self.client.get(path, params=params or None)
        self._raise_for_status(resp)
        return resp

    @staticmethod
    def _raise_for_status(resp: httpx.Response) -> None:
        if resp.status_code >= 300:
            raise UpstreamError("github", resp.status_code, resp.text)

    async def get_pull_request(self, repo: str, pr_number: int) -> PullRequest:
        pr = (await self._get(f"/repos/{repo}/pulls/{pr_number}")).json()
        return PullRequest(
            number=pr["number"],
            title=pr["title"],
            body=pr.get("body") or "",
            head_ref=pr["head"]["ref"],
            head_sha=pr["head"]["sha"],
            head_repo=(pr["head"].get("repo") or {}).get("full_name", repo),
            base_ref=pr["base"]["ref"],
        )

    async def list_pr_files(self, repo: str, pr_number: int) -> list[ChangedFile]:
        files: list[ChangedFile] = []
        page = 1
        while True:
            batch = (
                await self._get(f"/repos/{repo}/pulls/{pr_number}/files", per_page=100, page=page)
            ).json()
            for f in batch:
                files.append(
                    ChangedFile(
                        filename=f["filename"],
                        status=f["status"],
                        additions=f.get("additions", 0),
                        deletions=f.get("deletions", 0),
                        changes=f.get("changes", 0),
                        patch=f.get("patch"),
                    )
                )
            if len(batch) < 100:
                return files
            page += 1

    async def get_file_content(self, repo: str, path: str, ref: Optional[str] = None) -> Optional[str]:
        params = {"ref": ref} if ref else None
        resp = await self.client.get(f"/repos/{repo}/contents/{path}", params=params)
        if resp.status_code == 404:
            return None
        self._raise_for_status(resp)

        data = resp.json()
        if isinstance(data, list) or data.get("encoding") != "base64":
            return None
        return base64.b64decode(data.get("content", "")).decode("utf-8", errors="replace")

    async def get_tree(self, repo: str, ref: Optional[str] = None, max_depth: int = 3) -> str:
        return await self._walk_tree(repo, "", ref, 0, max_depth)

    async def _walk_tree(self, repo: str, path: str, ref: Optional[str], level: int, max_depth: int) -> str:
        params = {"ref": ref} if ref else {}
        items = (await self._get(f"/repos/{repo}/contents/{path}", **params)).json()
        if not isinstance(items, list):
            items = [items]

        lines: list[str] = []
        indent = "  " * level
        for item in sorted(items, key=lambda i: (i.get("type") != "dir", i["name"])):
            if item["type"] == "dir":
                if level >= max_depth or item["name"] in IGNORED_TREE_DIRS:
                    continue
                subtree = await self._walk_tree(repo, item["path"], ref, level + 1, max_depth)
                lines.append(f"{indent}{item['name']}/")
                if subtree:
                    lines.append(subtree)
            elif not item["name"].startswith(".") and not item["name"].endswith((".pyc", ".pyo")):
                lines.append(f"{indent}{item['name']}")
        return "\n".join(lines)

    async def list_variables(self, repo: str) -> list[RepoVariable]:
        variables: list[RepoVariable] = []
        page = 1
        while True:
            # 30 is the largest page this endpoint serves
            data = (await self._get(f"/repos/{repo}/actions/variables", per_page=30, page=page)).json()
            batch = data.get("variables", [])
            variables.extend(RepoVariable(name=v["name"], value=v.get("value", "")) for v in batch)
            if len(batch) < 30 or len(variables) >= data.get("total_count", 0):
                return variables
            page += 1

    async def post_comment(self, repo: str, pr_number: int, body: str) -> int:
        resp = await self.client.post(f"/repos/{repo}/issues/{pr_number}/comments", json={"body": body})
        self._raise_for_status(resp)
        comment_id = resp.json()["id"]
        await logger.ainfo("GitHub comment posted", repo=repo, pr_number=pr_number, comment_id=comment_id)
        return comment_id

    async def edit_comment(self, repo: str, comment_id: int, body: str) -> bool:
        resp = await self.client.patch(f"/repos/{repo}/issues/comments/{comment_id}", json={"body": body})
        self._raise_for_status(resp)
        return True

    def clone_url(self, repo: str) -> str:
        """Return a plain HTTPS clone URL without embedded credentials."""
        return f"https://github.com/{repo}.git"

    def clone_auth_header(self) -> Optional[str]:
        if not self.token:
            return None
        basic = base64.b64encode(f"x-access-token:{self.token}".encode()).decode()
        return f"Authorization: Basic {basic}"
