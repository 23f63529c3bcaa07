"""GraphQL access to the GitLab API."""

from .client import GraphQLClient

__all__ = ["GraphQLClient"]
