from __future__ import annotations

from fastapi import Header, Request

from estateops.jobs.engine import JobEngine

DEFAULT_ACTOR = "api"


def get_engine(request: Request) -> JobEngine:
    return request.app.state.engine


def get_actor(x_actor: str | None = Header(default=None, max_length=128)) -> str:
    actor = (x_actor or "").strip()
    return actor or DEFAULT_ACTOR
