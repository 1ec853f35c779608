"""Tax authority (SRI) integration."""

from .client import (
    AuthorityResponse,
    HttpTaxAuthorityClient,
    TaxAuthorityClient,
    map_authority_status,
)

__all__ = [
    "AuthorityResponse",
    "HttpTaxAuthorityClient",
    "TaxAuthorityClient",
    "map_authority_status",
]
