"""Best-effort progress reporting through a single PR comment."""

from __future__ import annotations

from typing import Optional

import structlog

from git_integration.providers.base import CodeHost

logger = structlog.get_logger()


class ProgressReporter:
    """Posts one status comment and edits it in place.

    Reporting never fails a review: every code-host error is logged and
    swallowed. If the first post fails there is no comment to edit, so later
    updates are skipped.
    """

    def __init__(
        self,
        code_host: CodeHost,
        repo_full_name: str,
        pr_number: int,
        comment_id: Optional[int] = None,
    ):
        self.code_host = code_host
        self.repo_full_name = repo_full_name
        self.pr_number = pr_number
        self.comment_id = comment_id
        self._last_body: Optional[str] = None

    async def start(self, body: str) -> Optional[int]:
        """Post the status comment, or edit it when resuming a review that already has one."""
        if self.comment_id is not None:
            await self.update(body)
            return self.comment_id
        try:
            self.comment_id = await self.code_host.post_comment(self.repo_full_name, self.pr_number, body)
            self._last_body = body
        except Exception as e:
            await logger.awarning(
                "Failed to post status comment; continuing without progress reporting",
                repo=self.repo_full_name,
                pr_number=self.pr_number,
                error=str(e),
            )
        return self.comment_id

    async def update(self, body: str) -> None:
        if self.comment_id is None:
            await logger.adebug("No status comment to update", pr_number=self.pr_number)
            return
        if body == self._last_body:
            return
        try:
            await self.code_host.edit_comment(self.repo_full_name, self.comment_id, body)
            self._last_body = body
        except Exception as e:
            await logger.awarning(
                "Failed to update status comment",
                repo=self.repo_full_name,
                comment_id=self.comment_id,
                error=str(e),
            )
