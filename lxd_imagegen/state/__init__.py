"""Persisted state module.

Tracks built images under local names so they can be read, updated and
deleted across invocations.
"""

from lxd_imagegen.state.models import ResourceRecord

__all__ = ["ResourceRecord"]

# Service functions live in lxd_imagegen.state.service
