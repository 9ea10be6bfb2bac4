"""LXD Image Generator - build, import and alias LXD images.

This package wraps distrobuilder and the LXD image store API: it builds an
image from a distrobuilder template, imports the artifact pair into a remote
image store, reconciles image aliases, and tracks the resulting image by its
composite ``<remote>/<fingerprint>`` identity.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
