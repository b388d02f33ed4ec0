from __future__ import annotations

from contextvars import ContextVar

actor_id_ctx: ContextVar[str | None] = ContextVar("actor_id", default=None)
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)


def set_request_context(actor_id: str | None, request_id: str | None = None) -> None:
    actor_id_ctx.set(actor_id)
    if request_id is not None:
        request_id_ctx.set(request_id)


def get_actor_id() -> str | None:
    return actor_id_ctx.get()


def get_request_id() -> str | None:
    return request_id_ctx.get()


def get_context_dict() -> dict[str, str]:
    context: dict[str, str] = {}
    actor_id = get_actor_id()
    request_id = get_request_id()
    if actor_id is not None:
        context["actor_id"] = actor_id
    if request_id is not None:
        context["request_id"] = request_id
    return context
