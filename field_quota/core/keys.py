"""Subject key generation for rate limited operations.

A key generator maps one invocation to the string the counter store meters.
Generators are plain callables injected into the engine, so new identity
schemes can be added without touching the interception pipeline.

Strategies provided:
- ``default_key_generator``: one shared quota per operation (NOT per caller)
- ``create_user_key_generator``: per authenticated user
- ``create_ip_key_generator``: per client address
- ``create_composite_key_generator``: several named identifiers combined
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Mapping, TypeVar

from field_quota.core.validation import QuotaSpec

TContext = TypeVar("TContext")

ANONYMOUS_USER = "anonymous"
UNKNOWN_ADDRESS = "unknown"


@dataclass(frozen=True)
class Invocation(Generic[TContext]):
    """Read-only view of one call to a protected operation.

    Attributes:
        parent_type_name: Owning type of the operation (e.g. ``Query``).
        field_name: Operation name within its parent type.
        context: Caller context (request, user, ...).
        source: Parent value the resolver was invoked on.
        args: Arguments supplied to the operation.
        info: Transport-specific resolve info, when available.
    """

    parent_type_name: str
    field_name: str
    context: TContext | None = None
    source: Any = None
    args: Mapping[str, Any] = field(default_factory=dict)
    info: Any = None

    @property
    def operation_id(self) -> str:
        return f"{self.parent_type_name}.{self.field_name}"


KeyGenerator = Callable[[QuotaSpec, Invocation[Any]], str]


def default_key_generator(spec: QuotaSpec, invocation: Invocation[Any]) -> str:
    """Key on operation identity only.

    WARNING: every caller shares one quota per operation. Use
    ``create_user_key_generator`` or ``create_ip_key_generator`` for
    multi-tenant deployments.
    """
    return invocation.operation_id


def create_user_key_generator(
    get_user_id: Callable[[Any], str | None],
) -> KeyGenerator:
    """Create a key generator that rate limits per user id.

    Args:
        get_user_id: Extracts the user id from the caller context.

    Returns:
        KeyGenerator producing ``user:<id>:<Parent>.<field>``.

    Example:
        >>> keys = create_user_key_generator(lambda ctx: ctx.get("user_id"))
    """

    def generate(spec: QuotaSpec, invocation: Invocation[Any]) -> str:
        user_id = get_user_id(invocation.context) or ANONYMOUS_USER
        return f"user:{user_id}:{invocation.operation_id}"

    return generate


def create_ip_key_generator(
    get_ip: Callable[[Any], str | None],
) -> KeyGenerator:
    """Create a key generator that rate limits per client address.

    Args:
        get_ip: Extracts the client address from the caller context.

    Returns:
        KeyGenerator producing ``ip:<address>:<Parent>.<field>``.
    """

    def generate(spec: QuotaSpec, invocation: Invocation[Any]) -> str:
        address = get_ip(invocation.context) or UNKNOWN_ADDRESS
        return f"ip:{address}:{invocation.operation_id}"

    return generate


def create_composite_key_generator(
    get_identifiers: Callable[[Any], Mapping[str, Any]],
) -> KeyGenerator:
    """Create a key generator combining several named identifiers.

    Identifiers keep their mapping order; ``None`` values are dropped.

    Example:
        >>> keys = create_composite_key_generator(
        ...     lambda ctx: {"user": ctx.get("user_id"), "key": ctx.get("api_key")}
        ... )
        >>> # {"user": None, "key": "k1"} -> "key:k1:Query.search"
    """

    def generate(spec: QuotaSpec, invocation: Invocation[Any]) -> str:
        identifiers = get_identifiers(invocation.context)
        parts = ":".join(
            f"{name}:{value}" for name, value in identifiers.items() if value is not None
        )
        return f"{parts}:{invocation.operation_id}"

    return generate
