from .base import EventSource, FetchResult
from .graphql import GraphQLError, StokefireGraphQLSource

__all__ = [
    "EventSource",
    "FetchResult",
    "GraphQLError",
    "StokefireGraphQLSource",
]
