from __future__ import annotations

from contextvars import ContextVar, Token

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)
client_address_var: ContextVar[str | None] = ContextVar("client_address", default=None)


def set_correlation_id(value: str | None) -> Token[str | None]:
    return correlation_id_var.set(value)


def reset_correlation_id(token: Token[str | None]) -> None:
    correlation_id_var.reset(token)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


def set_client_address(value: str | None) -> Token[str | None]:
    return client_address_var.set(value)


def reset_client_address(token: Token[str | None]) -> None:
    client_address_var.reset(token)


def get_client_address() -> str | None:
    return client_address_var.get()
