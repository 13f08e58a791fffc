"""
Hub-side API: reference resolution, credential issuance, tree listing.
"""

from xetclient.api.auth import CasAuthProvider
from xetclient.api.resolver import ReferenceResolver, ResolvedFile, parse_pointer
from xetclient.api.tree import TreeLister

__all__ = [
    "CasAuthProvider",
    "ReferenceResolver",
    "ResolvedFile",
    "TreeLister",
    "parse_pointer",
]
