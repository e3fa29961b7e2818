"""GraphQL schema integration."""

from field_quota.schema.directive import (
    RATE_LIMIT_DIRECTIVE_TYPE_DEFS,
    create_rate_limit_directive,
    to_graphql_error,
)

__all__ = [
    "RATE_LIMIT_DIRECTIVE_TYPE_DEFS",
    "create_rate_limit_directive",
    "to_graphql_error",
]
