"""
Persistent mean-colour cache for textures.

POV-Ray ``mesh2`` blocks are written with flat pigments, so every texture is
approximated by its mean colour, which then tints the face colour.  Computing
that colour means downloading and decoding the texture, so results are kept
in a JSON file shared between export runs::

    [
      {"id": "5748decc-f629-461c-9a36-a35a221fe21f", "meancolor": [128, 120, 96, null]},
      ...
    ]

``meancolor`` is ``[r, g, b, a]`` in 0-255; ``a`` is null when the source
texture had no alpha channel (treated as fully opaque).

Textures that could not be fetched are remembered as :data:`UNKNOWN` for the
rest of the run so they are not requested again, but are never written to
the cache file.
"""

import json
import os
import logging
import tempfile

try:
    import numpy as np
except ImportError:
    raise ImportError(
        "numpy is required for pov_exporter. "
        "Install it with: pip install numpy"
    )

from .asset_fetcher import decode_image
from .errors import ImageDecodeError

log = logging.getLogger(__name__)

DEFAULT_CACHE_FILE = "knownTextures.json"


class _UnknownTexture(object):
    """Marker for a texture whose fetch failed or timed out this run."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(_UnknownTexture, cls).__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return "UNKNOWN"


UNKNOWN = _UnknownTexture()


class TextureRecord(object):
    """Mean colour of one texture.  ``alpha is None`` means no alpha channel."""

    __slots__ = ('texture_id', 'red', 'green', 'blue', 'alpha')

    def __init__(self, texture_id, red, green, blue, alpha=None):
        self.texture_id = texture_id
        self.red = int(red)
        self.green = int(green)
        self.blue = int(blue)
        self.alpha = None if alpha is None else int(alpha)

    @property
    def has_alpha(self):
        return self.alpha is not None

    @property
    def rgba(self):
        """Mean colour as 0-255 ints, opaque when the texture had no alpha."""
        return (self.red, self.green, self.blue,
                255 if self.alpha is None else self.alpha)

    def color_factors(self):
        """Mean colour scaled to 0..1 for multiplying into a face tint."""
        return tuple(c / 255.0 for c in self.rgba)

    def to_dict(self):
        return {
            'id': self.texture_id,
            'meancolor': [self.red, self.green, self.blue, self.alpha],
        }

    @classmethod
    def from_dict(cls, data):
        color = data['meancolor']
        if len(color) != 4:
            raise ValueError("meancolor needs 4 components")
        return cls(data['id'], color[0], color[1], color[2], color[3])

    def __eq__(self, other):
        if not isinstance(other, TextureRecord):
            return NotImplemented
        return (self.texture_id == other.texture_id
                and self.rgba == other.rgba
                and self.has_alpha == other.has_alpha)

    def __hash__(self):
        return hash((self.texture_id, self.rgba, self.has_alpha))

    def __repr__(self):
        return "TextureRecord({!r}, {}, {}, {}, {})".format(
            self.texture_id, self.red, self.green, self.blue, self.alpha)


def compute_mean_color(texture_id, img):
    """
    Average the channels of a decoded image.

    The alpha channel, when present, is averaged on its own and then dropped;
    red, green and blue are averaged over all pixels.  All averages use
    truncating integer division.

    Returns:
        TextureRecord
    """
    bands = img.getbands()
    has_alpha = 'A' in bands or 'transparency' in img.info
    if has_alpha:
        pixels = np.asarray(img.convert('RGBA'))
    else:
        pixels = np.asarray(img.convert('RGB'))

    num_pix = pixels.shape[0] * pixels.shape[1]
    if num_pix == 0:
        raise ImageDecodeError("Texture {} has no pixels".format(texture_id))

    alpha = None
    if has_alpha:
        alpha = int(pixels[..., 3].sum(dtype=np.uint64)) // num_pix
        pixels = pixels[..., :3]

    sums = [int(pixels[..., c].sum(dtype=np.uint64)) for c in range(3)]
    return TextureRecord(texture_id, sums[0] // num_pix, sums[1] // num_pix,
                         sums[2] // num_pix, alpha)


class TextureColorCache(object):
    """
    Mapping of texture id to :class:`TextureRecord` or :data:`UNKNOWN`.

    Lookups of ids that were never seen go through the asset fetcher; the
    fetched image is decoded, its mean colour recorded, and the image itself
    handed back to callers that need it (sculpt maps, terrain textures).
    """

    def __init__(self, fetcher=None):
        """
        Args:
            fetcher: AssetFetcher used for textures not in the cache.  Without
                     one, every uncached texture resolves to UNKNOWN.
        """
        self.fetcher = fetcher
        self._records = {}

    def __contains__(self, texture_id):
        return texture_id in self._records

    def __len__(self):
        return len(self._records)

    def get(self, texture_id):
        """Return the record, UNKNOWN, or None if the id was never resolved."""
        return self._records.get(texture_id)

    def put(self, record):
        self._records[record.texture_id] = record

    def mark_unknown(self, texture_id):
        self._records[texture_id] = UNKNOWN

    def known_records(self):
        return [r for r in self._records.values() if r is not UNKNOWN]

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    def get_or_fetch(self, texture_id):
        """
        Resolve the mean colour of *texture_id*.

        Ids that already have a record (known or UNKNOWN) are returned
        without fetching again.

        Returns:
            TextureRecord or UNKNOWN.
        """
        existing = self._records.get(texture_id)
        if existing is not None:
            return existing
        self.fetch_image(texture_id)
        return self._records[texture_id]

    def fetch_image(self, texture_id):
        """
        Fetch and decode *texture_id*, recording its mean colour.

        Unlike :meth:`get_or_fetch` this always requests the image unless the
        id is already UNKNOWN, since the caller needs the pixels.  A failed
        fetch marks the id UNKNOWN only when no colour is known for it yet.

        Returns:
            PIL.Image.Image, or None if the texture is unavailable.
        """
        if self._records.get(texture_id) is UNKNOWN:
            return None
        if self.fetcher is None:
            log.debug("No fetcher configured, texture %s unavailable",
                      texture_id)
            self._fetch_failed(texture_id)
            return None

        result = self.fetcher.fetch_image(texture_id)
        if not result.ok:
            self._fetch_failed(texture_id)
            return None

        try:
            img = decode_image(result.data)
            record = compute_mean_color(texture_id, img)
        except ImageDecodeError as e:
            log.warning("Texture %s: %s", texture_id, e)
            self._fetch_failed(texture_id)
            return None

        self.put(record)
        log.debug("Texture %s mean colour %s", texture_id, record.rgba)
        return img

    def _fetch_failed(self, texture_id):
        if texture_id not in self._records:
            self.mark_unknown(texture_id)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self, path):
        """
        Merge records persisted at *path* into the cache.

        Known in-memory records are kept; a persisted record replaces an
        in-memory UNKNOWN.  A missing file is not an error.

        Returns:
            int: Number of records added.
        """
        if not os.path.isfile(path):
            log.debug("No texture cache at %s", path)
            return 0

        with open(path, 'r', encoding='utf-8') as f:
            try:
                entries = json.load(f)
            except ValueError as e:
                log.warning("Ignoring unreadable texture cache %s: %s", path, e)
                return 0

        if not isinstance(entries, list):
            log.warning("Ignoring texture cache %s: expected a JSON array", path)
            return 0

        added = 0
        for entry in entries:
            try:
                record = TextureRecord.from_dict(entry)
            except (KeyError, TypeError, ValueError) as e:
                log.warning("Skipping malformed cache entry %r: %s", entry, e)
                continue
            existing = self._records.get(record.texture_id)
            if existing is None or existing is UNKNOWN:
                self._records[record.texture_id] = record
                added += 1

        log.debug("Loaded %d texture records from %s", added, path)
        return added

    def save(self, path):
        """
        Write all known records to *path*.

        The file is written next to its destination and renamed into place so
        a reader never sees a partial cache.
        """
        records = [r.to_dict() for r in self.known_records()]
        parent = os.path.dirname(os.path.abspath(path))
        if not os.path.exists(parent):
            os.makedirs(parent)

        fd, tmp_path = tempfile.mkstemp(
            prefix=".{}.".format(os.path.basename(path)), suffix=".tmp",
            dir=parent)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(records, f, indent=2)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

        log.info("Saved %d texture records to %s", len(records), path)

    def merge_and_save(self, path):
        """Reload *path* to pick up records written by other runs, then save."""
        self.load(path)
        self.save(path)
