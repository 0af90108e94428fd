"""
Client wrappers for the source deal API and the relational datastore.
"""

from .postgres_client import PostgresClient
from .source_client import SourceClient

__all__ = ['PostgresClient', 'SourceClient']
