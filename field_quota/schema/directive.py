"""``@rateLimit`` schema directive for graphql-core schemas.

Usage:
    engine = create_rate_limit_engine(key_generator=create_user_key_generator(...))
    schema = build_schema(RATE_LIMIT_DIRECTIVE_TYPE_DEFS + type_defs)
    schema = create_rate_limit_directive(engine)(schema)

Wrapped resolvers are async, so the schema must be executed with
``graphql.graphql`` (not ``graphql_sync``).
"""

from __future__ import annotations

import logging
from typing import Callable

from graphql import (
    GraphQLError,
    GraphQLObjectType,
    GraphQLSchema,
    default_field_resolver,
)
from graphql.execution.values import get_directive_values

from field_quota.core.engine import RATE_LIMIT_SPEC_ATTR, RateLimitEngine
from field_quota.core.errors import AppError
from field_quota.core.validation import QuotaSpec

logger = logging.getLogger(__name__)

DIRECTIVE_NAME = "rateLimit"

RATE_LIMIT_DIRECTIVE_TYPE_DEFS = """
directive @rateLimit(
  limit: Int!
  duration: Int!
) on FIELD_DEFINITION
"""

SchemaTransformer = Callable[[GraphQLSchema], GraphQLSchema]


def to_graphql_error(exc: AppError) -> GraphQLError:
    """Convert an admission error to a GraphQLError keeping its extensions."""
    return GraphQLError(exc.message, original_error=exc, extensions=exc.extensions)


def create_rate_limit_directive(
    engine: RateLimitEngine,
    directive_name: str = DIRECTIVE_NAME,
) -> SchemaTransformer:
    """Create a transformer that enforces ``@rateLimit`` on object fields.

    Args:
        engine: Engine whose registry and key generator the fields share.
        directive_name: Name of the directive in the schema SDL.

    Returns:
        Function wrapping the resolver of every annotated field in place and
        returning the same schema. Fields without the directive are untouched.
        Applying it again to the same schema leaves already wrapped fields
        as they are, so each call still consumes one point.
    """

    def transform(schema: GraphQLSchema) -> GraphQLSchema:
        directive = schema.get_directive(directive_name)
        if directive is None:
            logger.warning(
                "rate_limit.directive_missing",
                extra={"directive": directive_name},
            )
            return schema

        wrapped = 0
        for type_name, named_type in schema.type_map.items():
            if type_name.startswith("__") or not isinstance(named_type, GraphQLObjectType):
                continue

            for field_name, field in named_type.fields.items():
                if field.ast_node is None:
                    continue
                args = get_directive_values(directive, field.ast_node)
                if args is None:
                    continue
                if getattr(field.resolve, RATE_LIMIT_SPEC_ATTR, None) is not None:
                    # Already enforced by an earlier pass over this schema
                    logger.debug(
                        "rate_limit.field_already_wrapped",
                        extra={"operation": f"{type_name}.{field_name}"},
                    )
                    continue

                field.resolve = engine.wrap_resolver(
                    field.resolve or default_field_resolver,
                    QuotaSpec.from_directive_args(args),
                    translate_error=to_graphql_error,
                )
                wrapped += 1
                logger.debug(
                    "rate_limit.field_wrapped",
                    extra={"operation": f"{type_name}.{field_name}", **args},
                )

        logger.info(
            "rate_limit.directive_applied",
            extra={"directive": directive_name, "fields": wrapped},
        )
        return schema

    return transform
