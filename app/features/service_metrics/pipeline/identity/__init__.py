"""
Identity package.

Decides which chat participant is the professional.
"""

from .service import IdentityResolver, collect_identifiers_by_key, identity_resolver, open_scope

__all__ = ["IdentityResolver", "collect_identifiers_by_key", "identity_resolver", "open_scope"]
