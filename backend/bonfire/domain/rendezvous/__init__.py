"""Rendezvous domain exports."""

from .service import BonfireService, SecretFetchResult
from .validator import JoinResult, JoinValidator

__all__ = ["BonfireService", "JoinResult", "JoinValidator", "SecretFetchResult"]
