"""
Timeout-bounded asset retrieval.

An asset source is any object exposing::

    request_image(asset_id) -> concurrent.futures.Future  # resolves to bytes
    request_mesh(asset_id)  -> concurrent.futures.Future  # resolves to bytes

The source completes the future from its own thread.  Failure is signalled
explicitly with ``Future.set_exception``; a future that never completes is
reported as a timeout once the wait expires.

:class:`AssetFetcher` issues one request at a time and blocks the calling
thread on it, so a slow source bounds export latency to one timeout per
uncached asset.  Nothing is retried.

:class:`DirectoryAssetSource` serves assets from a local directory laid out
as::

    {root}/textures/{id}.png|.jp2|.j2c|.jpg|.tga
    {root}/meshes/{id}.glb
"""

import io
import os
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from enum import Enum

try:
    from PIL import Image
except ImportError:
    raise ImportError(
        "Pillow is required for pov_exporter. "
        "Install with: pip install Pillow"
    )

from .errors import AssetNotFoundError, ImageDecodeError

log = logging.getLogger(__name__)

# Seconds to wait for a single asset before giving up on it.
FETCH_TIMEOUT = 30.0

_TEXTURE_EXTENSIONS = ('.png', '.jp2', '.j2c', '.jpg', '.jpeg', '.tga')
_MESH_EXTENSIONS = ('.glb',)


# ---------------------------------------------------------------------------
# Fetch results
# ---------------------------------------------------------------------------

class FetchStatus(Enum):
    """Outcome of a single asset request."""
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"


class FetchResult(object):
    """Outcome of a single asset request plus its payload or error."""

    __slots__ = ('asset_id', 'status', 'data', 'error')

    def __init__(self, asset_id, status, data=None, error=None):
        self.asset_id = asset_id
        self.status = status
        self.data = data
        self.error = error

    @property
    def ok(self):
        return self.status == FetchStatus.SUCCESS

    def __repr__(self):
        return "FetchResult({!r}, {})".format(self.asset_id, self.status.value)


class AssetFetcher(object):
    """Blocking, timeout-bounded front end for an asynchronous asset source."""

    def __init__(self, source, timeout=FETCH_TIMEOUT):
        """
        Args:
            source: Object with request_image() / request_mesh() returning
                    futures.
            timeout: Seconds to wait for each request.
        """
        self.source = source
        self.timeout = timeout

    def fetch_image(self, asset_id):
        """Fetch raw (still compressed) image bytes for *asset_id*."""
        return self._wait('image', asset_id, self.source.request_image)

    def fetch_mesh(self, asset_id):
        """Fetch a raw binary mesh payload for *asset_id*."""
        return self._wait('mesh', asset_id, self.source.request_mesh)

    def _wait(self, kind, asset_id, request):
        log.debug("Requesting %s %s", kind, asset_id)
        try:
            future = request(asset_id)
        except Exception as e:
            log.warning("Request for %s %s failed: %s", kind, asset_id, e)
            return FetchResult(asset_id, FetchStatus.FAILED, error=e)

        try:
            data = future.result(timeout=self.timeout)
        except FutureTimeout as e:
            future.cancel()
            log.warning("Timed out after %.1fs waiting for %s %s",
                        self.timeout, kind, asset_id)
            return FetchResult(asset_id, FetchStatus.TIMEOUT, error=e)
        except Exception as e:
            log.warning("Fetching %s %s failed: %s", kind, asset_id, e)
            return FetchResult(asset_id, FetchStatus.FAILED, error=e)

        if not data:
            log.warning("Empty payload for %s %s", kind, asset_id)
            return FetchResult(asset_id, FetchStatus.FAILED,
                               error=AssetNotFoundError(asset_id))

        return FetchResult(asset_id, FetchStatus.SUCCESS, data=bytes(data))


# ---------------------------------------------------------------------------
# Image codec
# ---------------------------------------------------------------------------

def decode_image(data):
    """
    Decode compressed image bytes (PNG, JPEG 2000, JPEG, TGA, ...).

    Returns:
        PIL.Image.Image: The fully loaded image.

    Raises:
        ImageDecodeError: If Pillow cannot read the payload.
    """
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except Exception as e:
        raise ImageDecodeError("Cannot decode image: {}".format(e))
    return img


# ---------------------------------------------------------------------------
# Local directory source
# ---------------------------------------------------------------------------

class DirectoryAssetSource(object):
    """Asset source reading payloads from a local directory on a worker pool."""

    def __init__(self, root, max_workers=1):
        self.root = root
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="asset-fetch")

    def request_image(self, asset_id):
        return self._executor.submit(
            self._read, 'textures', asset_id, _TEXTURE_EXTENSIONS)

    def request_mesh(self, asset_id):
        return self._executor.submit(
            self._read, 'meshes', asset_id, _MESH_EXTENSIONS)

    def _read(self, subdir, asset_id, extensions):
        base = os.path.join(self.root, subdir, str(asset_id))
        for ext in extensions:
            path = base + ext
            if os.path.isfile(path):
                with open(path, 'rb') as f:
                    return f.read()
        raise AssetNotFoundError(
            "No {} asset for {} under {}".format(subdir, asset_id, self.root))

    def close(self):
        self._executor.shutdown(wait=False)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
