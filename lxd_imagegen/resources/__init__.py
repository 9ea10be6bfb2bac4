"""Built image resource module.

This module handles:
- The BuiltImage record and its lifecycle state machine
- The provider context shared by lifecycle operations
- The create/read/update/delete/exists operations
"""

from lxd_imagegen.resources.context import ProviderContext, UnknownRemoteError
from lxd_imagegen.resources.models import (
    BuiltImage,
    ImmutableFieldError,
    InvalidStateError,
)

__all__ = [
    "BuiltImage",
    "ImmutableFieldError",
    "InvalidStateError",
    "ProviderContext",
    "UnknownRemoteError",
]

# Lifecycle operations live in lxd_imagegen.resources.lifecycle
