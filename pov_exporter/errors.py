"""
Exception types raised by the POV-Ray exporter.

Most of these are caught inside the export pipeline and turned into log
messages plus degraded output; only scene-format errors escape to callers
that load snapshots themselves.
"""


class PovExportError(Exception):
    """Base class for all exporter errors."""


class AssetNotFoundError(PovExportError):
    """An asset source has no payload for the requested id."""


class ImageDecodeError(PovExportError):
    """Raw texture bytes could not be decoded into an image."""


class MeshDecodeError(PovExportError):
    """A binary mesh asset could not be decoded."""


class HierarchyError(PovExportError):
    """A primitive would break the two-level root/child hierarchy."""


class SceneFormatError(PovExportError):
    """A scene snapshot document is malformed."""
