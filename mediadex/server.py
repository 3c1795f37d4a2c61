#!/usr/bin/env python3
"""
Mediadex -- Local-network media browser

Serves a directory of images and videos over HTTP with a search page. The
page asks the server for matching file links as HTML fragments, so a
phone on the same Wi-Fi can find and open a clip by typing part of its name.

Requires: rapidfuzz (pip install rapidfuzz), pyperclip (pip install pyperclip)

Configuration:
  MEDIA_DIR                 Directory to serve (default: ./static)
  MEDIADEX_PORT             Port for `serve` (default: 2468)
  MEDIADEX_FALLBACK         "nearest" (closest name by edit distance) or "all"
  MEDIADEX_STRIP_DIGITS     "1" to ignore digits when matching (default: 1)
  MEDIADEX_MAX_DISTANCE     Max edit distance for the nearest match (default: 10)
  MEDIADEX_LOWERCASE_NAMES  "1" to list names lower-cased (default: 0)

Usage (CLI):
  mediadex list
  mediadex find "holiday"
  mediadex serve --port 2468

Usage (HTTP):
  GET  /                 Search page
  GET  /all              Links to every media file (HTML fragment)
  GET  /search?q=...     Links to matching files (HTML fragment)
  POST /search           Same, q in a form-encoded body
  GET  /assets/<name>    The media file itself (Range supported)
  GET  /health           Health check
"""

import argparse
import html
import json
import logging
import os
import socket
import sys
import time
from http.server import ThreadingHTTPServer, BaseHTTPRequestHandler
from urllib.parse import urlparse, parse_qs, unquote, quote

import pyperclip

from mediadex import __version__
from mediadex.library import (
    DEFAULT_MEDIA_DIR,
    FALLBACK_POLICIES,
    LibraryConfig,
    MediaLibrary,
    RootUnavailable,
    media_extension,
)

log = logging.getLogger("mediadex")
logging.basicConfig(format="%(asctime)s %(message)s", datefmt="%H:%M:%S", level=logging.INFO)

DEFAULT_PORT = int(os.environ.get("MEDIADEX_PORT", "2468"))
MAX_POST_BODY = 64 * 1024
STREAM_CHUNK = 256 * 1024

MEDIA_MIME = {
    "jpg": "image/jpeg", "jpeg": "image/jpeg", "png": "image/png",
    "gif": "image/gif", "webp": "image/webp",
    "mp4": "video/mp4", "webm": "video/webm", "mkv": "video/x-matroska",
}

# Load UI template from file (next to this script)
_TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "templates")
try:
    with open(os.path.join(_TEMPLATE_DIR, "index.html"), encoding="utf-8") as f:
        INDEX_HTML = f.read()
except FileNotFoundError:
    INDEX_HTML = "<html><body><h1>Mediadex</h1><p>UI template not found. Try /all.</p></body></html>"


# ── Rendering ──

def render_links(names):
    """One <p><a class='link'> per file name, as served under /assets/."""
    parts = []
    for name in names:
        href = "/assets/" + quote(name)
        parts.append(f"<p><a class='link' href='{html.escape(href, quote=True)}'>{html.escape(name)}</a></p>")
    return "".join(parts)


def render_error(message):
    return f"<p class='error'>{html.escape(message)}</p>"


# ── Network ──

def lan_address():
    """Best-guess IPv4 address other machines on the LAN can reach us at."""
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # UDP connect sends nothing; it only picks the outbound interface
        s.connect(("10.255.255.255", 1))
        return s.getsockname()[0]
    except OSError:
        return "127.0.0.1"
    finally:
        s.close()


def copy_to_clipboard(text):
    """Copy text to the system clipboard. Returns False if no clipboard is available."""
    try:
        pyperclip.copy(text)
    except pyperclip.PyperclipException as e:
        log.warning("Could not copy to clipboard: %s", e)
        return False
    return True


# ── HTTP ──

class MediaServer(ThreadingHTTPServer):
    """ThreadingHTTPServer that carries the MediaLibrary its handlers query."""

    daemon_threads = True

    def __init__(self, server_address, library, handler_class=None):
        self.library = library
        super().__init__(server_address, handler_class or MediaHandler)


class MediaHandler(BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"
    timeout = 30  # seconds -- prevents slow-client DoS on POST bodies

    @property
    def library(self):
        return self.server.library

    # Non-asset GET routes, answered with an empty 200 on HEAD
    _HEAD_ROUTES = frozenset({"/", "/all", "/search", "/health"})

    def do_HEAD(self):
        parsed = urlparse(self.path)
        if parsed.path.startswith("/assets/"):
            return self._serve_media(unquote(parsed.path[len("/assets/"):]), head=True)
        if parsed.path == "/favicon.ico":
            return self._empty(204)
        if parsed.path in self._HEAD_ROUTES:
            return self._empty(200, "application/json" if parsed.path == "/health" else "text/html; charset=utf-8")
        return self._empty(404)

    def do_GET(self):
        parsed = urlparse(self.path)
        params = parse_qs(parsed.query, keep_blank_values=True)

        try:
            if parsed.path == "/":
                return self._html(200, INDEX_HTML)

            elif parsed.path == "/all":
                return self._html(200, render_links(self.library.list()))

            elif parsed.path == "/search":
                return self._search(params.get("q", [""])[0])

            elif parsed.path.startswith("/assets/"):
                return self._serve_media(unquote(parsed.path[len("/assets/"):]))

            elif parsed.path == "/health":
                try:
                    count = len(self.library.list())
                    status = "ok"
                except RootUnavailable:
                    count = 0
                    status = "media directory unavailable"
                return self._json(200, {
                    "status": status,
                    "version": __version__,
                    "media_dir": self.library.media_dir,
                    "file_count": count,
                })

            elif parsed.path == "/favicon.ico":
                return self._empty(204)

            return self._html(404, render_error("not found"))

        except RootUnavailable as e:
            log.warning("%s", e)
            return self._html(503, render_error(str(e)))
        except Exception:
            log.exception("GET %s failed", self.path)
            return self._html(500, render_error("internal error"))

    def do_POST(self):
        parsed = urlparse(self.path)
        try:
            try:
                content_len = int(self.headers.get("Content-Length", "0"))
            except ValueError:
                return self._html(400, render_error("bad Content-Length"))
            if content_len > MAX_POST_BODY:
                return self._html(413, render_error(f"Request body too large (max {MAX_POST_BODY} bytes)"))
            body = self.rfile.read(content_len) if content_len > 0 else b""

            if parsed.path == "/search":
                form = parse_qs(body.decode("utf-8", errors="replace"), keep_blank_values=True)
                return self._search(form.get("q", [""])[0])

            return self._html(404, render_error("not found"))

        except RootUnavailable as e:
            log.warning("%s", e)
            return self._html(503, render_error(str(e)))
        except Exception:
            log.exception("POST %s failed", self.path)
            return self._html(500, render_error("internal error"))

    def _search(self, q):
        t0 = time.time()
        names = self.library.find(q)
        log.info("search q=%r results=%d %.3fs", q, len(names), time.time() - t0)
        return self._html(200, render_links(names))

    def _serve_media(self, name, head=False):
        path = self.library.resolve(name)
        f = None
        if path is not None:
            try:
                f = open(path, "rb")
            except OSError:
                pass  # removed or made unreadable after resolve()
        if f is None:
            if head:
                return self._empty(404)
            return self._html(404, render_error("not found"))

        with f:
            self._stream_file(f, media_extension(path), head)

    def _stream_file(self, f, ext, head):
        """Send an open media file, honouring a single-range Range header."""
        total_size = os.fstat(f.fileno()).st_size
        content_type = MEDIA_MIME.get(ext, "application/octet-stream")

        range_start = range_end = None
        range_header = self.headers.get("Range")
        if range_header:
            try:
                range_start, range_end = self._parse_range(range_header, total_size)
            except ValueError:
                range_start = range_end = None  # malformed: serve the whole file

        if range_start is not None and range_end is not None:
            self.send_response(206)
            self.send_header("Content-Range", f"bytes {range_start}-{range_end}/{total_size}")
            length = range_end - range_start + 1
        else:
            self.send_response(200)
            range_start = 0
            length = total_size

        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(length))
        self.send_header("Accept-Ranges", "bytes")
        self.send_header("Cache-Control", "no-cache")
        self.end_headers()
        if head:
            return

        f.seek(range_start)
        remaining = length
        while remaining > 0:
            chunk = f.read(min(STREAM_CHUNK, remaining))
            if not chunk:
                break
            try:
                self.wfile.write(chunk)
            except (BrokenPipeError, ConnectionResetError):
                # Video players routinely drop the connection mid-stream
                return
            remaining -= len(chunk)

    @staticmethod
    def _parse_range(header, total_size):
        """Parse HTTP Range header. Returns (start, end) or (None, None)."""
        if not header.startswith("bytes="):
            return None, None
        range_spec = header[6:].strip()
        if "," in range_spec:
            return None, None  # multi-range not supported
        if range_spec.startswith("-"):
            # Suffix range: last N bytes
            suffix = int(range_spec[1:])
            if suffix <= 0 or total_size == 0:
                return None, None
            start = max(0, total_size - suffix)
            return start, total_size - 1
        parts = range_spec.split("-", 1)
        start = int(parts[0])
        end = int(parts[1]) if len(parts) > 1 and parts[1] else total_size - 1
        end = min(end, total_size - 1)
        if start > end or start >= total_size:
            return None, None
        return start, end

    def _empty(self, code, content_type=None):
        self.send_response(code)
        if content_type:
            self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def _send(self, code, body_bytes, content_type):
        self.send_response(code)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body_bytes)))
        self.end_headers()
        self.wfile.write(body_bytes)

    def _html(self, code, content):
        self._send(code, content.encode("utf-8"), "text/html; charset=utf-8")

    def _json(self, code, data):
        self._send(code, json.dumps(data, ensure_ascii=False, separators=(",", ":")).encode(), "application/json")

    def log_message(self, format, *args):
        # Light logging: errors only. Suppress 200/206/304 noise.
        if len(args) >= 2 and str(args[1]) in ("200", "206", "304"):
            return
        log.info(format, *args)


def make_server(library, host="0.0.0.0", port=DEFAULT_PORT):
    return MediaServer((host, port), library)


# ── CLI ──

def _library_from_args(args):
    config = LibraryConfig.from_env(
        media_dir=args.dir,
        fallback=args.fallback,
        strip_digits=False if args.no_strip_digits else None,
        max_distance=args.max_distance,
        lowercase_names=True if args.lowercase_names else None,
    )
    return MediaLibrary(config)


def main(argv=None):
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--dir", help=f"Media directory (default: $MEDIA_DIR or {DEFAULT_MEDIA_DIR})")
    common.add_argument("--fallback", choices=FALLBACK_POLICIES,
                        help="What to return when nothing contains the query")
    common.add_argument("--no-strip-digits", action="store_true", help="Keep digits when matching names")
    common.add_argument("--max-distance", type=int, help="Max edit distance for the nearest-name fallback")
    common.add_argument("--lowercase-names", action="store_true", help="List file names lower-cased")

    parser = argparse.ArgumentParser(description="Local-network media browser")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("list", parents=[common], help="List media files")

    p_find = sub.add_parser("find", parents=[common], help="Search media file names")
    p_find.add_argument("query", help="Search query")

    p_serve = sub.add_parser("serve", parents=[common], help="Start HTTP server")
    p_serve.add_argument("--host", default="0.0.0.0")
    p_serve.add_argument("--port", type=int, default=DEFAULT_PORT)
    p_serve.add_argument("--no-clipboard", action="store_true", help="Don't copy the server URL to the clipboard")

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    try:
        library = _library_from_args(args)
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    try:
        if args.command == "list":
            for name in library.list():
                print(name)

        elif args.command == "find":
            for name in library.find(args.query):
                print(name)

        elif args.command == "serve":
            # Fail early on a bad directory rather than on the first request
            count = len(library.list())
            server = make_server(library, args.host, args.port)
            port = server.server_address[1]
            url = f"http://{lan_address()}:{port}"
            log.info("Serving %d files from %s", count, os.path.abspath(library.media_dir))
            print(f"Server running on {url}")
            if not args.no_clipboard and copy_to_clipboard(url):
                print("Copied to clipboard")
            try:
                server.serve_forever()
            except KeyboardInterrupt:
                pass
            finally:
                server.server_close()

    except RootUnavailable as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
