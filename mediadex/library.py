"""Media directory scanning and configuration.

A MediaLibrary wraps one root directory. Every call to list() or find()
re-scans the directory; nothing is cached between calls.
"""

import logging
import os
from dataclasses import dataclass

from mediadex.matcher import FALLBACK_ALL, FALLBACK_NEAREST, find as find_matches

log = logging.getLogger("mediadex")

ALLOWED_EXTENSIONS = frozenset({"jpg", "png", "jpeg", "webp", "gif", "mp4", "mkv", "webm"})

DEFAULT_MEDIA_DIR = "./static"
DEFAULT_MAX_DISTANCE = 10

FALLBACK_POLICIES = (FALLBACK_NEAREST, FALLBACK_ALL)


class MediadexError(Exception):
    """Base class for errors that cross the library boundary."""


class RootUnavailable(MediadexError):
    """The media directory cannot be opened or enumerated."""

    def __init__(self, path, reason=None):
        self.path = path
        self.reason = reason
        msg = f"media directory unavailable: {path}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


def _env_flag(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_max_distance(default):
    value = os.environ.get("MEDIADEX_MAX_DISTANCE")
    if value is None:
        return default
    value = value.strip().lower()
    if value in ("", "none", "off"):
        return None
    return int(value)


@dataclass(frozen=True)
class LibraryConfig:
    media_dir: str = DEFAULT_MEDIA_DIR
    fallback: str = FALLBACK_NEAREST
    strip_digits: bool = True
    # None means any distance is acceptable for the nearest candidate
    max_distance: int | None = DEFAULT_MAX_DISTANCE
    lowercase_names: bool = False

    def __post_init__(self):
        if self.fallback not in FALLBACK_POLICIES:
            raise ValueError(f"unknown fallback policy {self.fallback!r} (expected one of {', '.join(FALLBACK_POLICIES)})")
        if self.max_distance is not None and self.max_distance < 0:
            raise ValueError("max_distance must be >= 0")

    @classmethod
    def from_env(cls, **overrides):
        """Build a config from MEDIA_DIR / MEDIADEX_* variables; keyword overrides win."""
        values = {
            "media_dir": os.environ.get("MEDIA_DIR", DEFAULT_MEDIA_DIR),
            "fallback": os.environ.get("MEDIADEX_FALLBACK", FALLBACK_NEAREST).strip().lower(),
            "strip_digits": _env_flag("MEDIADEX_STRIP_DIGITS", True),
            "max_distance": _env_max_distance(DEFAULT_MAX_DISTANCE),
            "lowercase_names": _env_flag("MEDIADEX_LOWERCASE_NAMES", False),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


def media_extension(name):
    """Lower-cased extension without the dot, or '' if the name has none."""
    ext = os.path.splitext(name)[1]
    return ext[1:].lower() if ext else ""


def is_media_name(name):
    return media_extension(name) in ALLOWED_EXTENSIONS


def scan_media_dir(media_dir, lowercase_names=False):
    """Return eligible media file names in media_dir (non-recursive, sorted).

    Raises RootUnavailable if the directory itself cannot be listed. Single
    entries that are directories, extensionless, not allow-listed or vanish
    mid-scan are skipped.
    """
    try:
        it = os.scandir(media_dir)
    except FileNotFoundError:
        raise RootUnavailable(media_dir, "not found") from None
    except NotADirectoryError:
        raise RootUnavailable(media_dir, "not a directory") from None
    except OSError as e:
        raise RootUnavailable(media_dir, e.strerror or str(e)) from e

    names = []
    with it:
        for entry in it:
            if not is_media_name(entry.name):
                log.debug("skip %s: extension not allowed", entry.name)
                continue
            try:
                if not entry.is_file():
                    log.debug("skip %s: not a regular file", entry.name)
                    continue
            except OSError:
                continue
            names.append(entry.name.lower() if lowercase_names else entry.name)
    names.sort(key=lambda n: (n.casefold(), n))
    return names


class MediaLibrary:
    """The two operations the HTTP layer and CLI need: list() and find()."""

    def __init__(self, config=None):
        self.config = config or LibraryConfig()

    @property
    def media_dir(self):
        return self.config.media_dir

    def list(self):
        return scan_media_dir(self.config.media_dir, lowercase_names=self.config.lowercase_names)

    def find(self, query):
        candidates = self.list()
        return find_matches(
            query,
            candidates,
            fallback=self.config.fallback,
            strip_digits=self.config.strip_digits,
            max_distance=self.config.max_distance,
        )

    def resolve(self, name):
        """Absolute path of a servable media file, or None.

        Only bare file names with an allowed extension that currently exist
        as regular files directly inside the media directory resolve.
        """
        if not name or name in (".", "..") or "/" in name or "\\" in name or "\x00" in name:
            return None
        if not is_media_name(name):
            return None
        base = os.path.abspath(self.config.media_dir)
        path = os.path.join(base, name)
        if os.path.dirname(path) != base:
            return None
        if os.path.isfile(path):
            return path
        if self.config.lowercase_names:
            # Listed names were lower-cased; map back to the on-disk entry
            try:
                with os.scandir(base) as it:
                    for entry in it:
                        if entry.name.lower() == name and entry.is_file():
                            return entry.path
            except OSError:
                return None
        return None
