"""Shared-secret bearer checks for the pipeline endpoints.

Each endpoint group (scheduler, results, tasks) has its own secret. An unset
secret rejects every request of that group instead of leaving it open.
"""

import logging
import secrets

from fastapi import Header, HTTPException, Request, status

logger = logging.getLogger("leagueops.auth")

_SECRET_FIELDS = {
    "scheduler": "SCHEDULER_SECRET",
    "results": "RESULTS_SECRET",
    "tasks": "TASKS_SECRET",
}


def bearer_token(authorization: str | None) -> str:
    if not authorization:
        return ""
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


def secret_matches(presented: str, expected: str) -> bool:
    if not presented or not expected:
        return False
    return secrets.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


def require_bearer(group: str):
    """Build a FastAPI dependency that checks the bearer secret of `group`."""
    field = _SECRET_FIELDS[group]

    async def verify(request: Request, authorization: str | None = Header(default=None)) -> None:
        expected = getattr(request.app.state.settings, field, "")
        if not secret_matches(bearer_token(authorization), expected):
            logger.warning("Unauthorized %s request: %s %s", group, request.method, request.url.path)
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unauthorized")

    verify.__name__ = f"require_{group}_secret"
    return verify


require_scheduler = require_bearer("scheduler")
require_results = require_bearer("results")
require_tasks = require_bearer("tasks")
