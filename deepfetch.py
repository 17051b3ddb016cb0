#!/usr/bin/env python3
import argparse
import base64
import json
import logging
import mimetypes
import posixpath
import re
import sys
import threading
import time
import zipfile
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from io import BytesIO
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Set, Union
from urllib.parse import unquote, unquote_to_bytes, urljoin, urlparse

import requests
from bs4 import BeautifulSoup, FeatureNotFound
from bs4.builder import ParserRejectedMarkup
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

__version__ = "0.3.0"

# -------------------- Config --------------------

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    f"deepfetch/{__version__} (resource mirror)",
    "Accept": "*/*",
    "Accept-Language": "en-US,en;q=0.7",
}

DEFAULT_RELAY_URL = "https://api.allorigins.win/get"
RELAY_MODES = ("envelope", "raw")
RELAY_TIMEOUT = 30.0

TEXT_TYPE_MARKERS = ("text", "javascript", "json", "css", "html", "xml")
UNFETCHABLE_PREFIXES = ("data:", "mailto:", "tel:", "#", "javascript:", "blob:")

INVALID_FILENAME_CHARS_RE = re.compile(r'[<>:"/\\|?*]')
INVALID_SOURCE_CHARS_RE = re.compile(r'[<>:"|?*]')

JS_SOURCE_MAP_RE = re.compile(r"//([#@])\s*sourceMappingURL=(\S+)")
CSS_SOURCE_MAP_RE = re.compile(r"/\*([#@])\s*sourceMappingURL=(\S+?)\s*\*/")
WEBPACK_HOST_PREFIX_RE = re.compile(r"^webpack://[^/]*/")

API_PATH_RE = re.compile(r"""(["'`])(/api/[^"'`\s]+)\1""")
ABSOLUTE_URL_RE = re.compile(r"""(["'`])(https?://[^"'`\s]+)\1""")

NOISE_MARKERS = (
    "webpack/",
    "node_modules/",
    "webpack:///",
    "webpack/bootstrap",
    "webpack/runtime",
    "webpack-dev-server",
    "webpack-hot-middleware",
    "__webpack",
    "webpack-internal://",
)

SOURCES_DIR = "sources"
ROOT_FILENAME = "index.html"

KINDS = ("html", "script", "stylesheet", "image", "source", "sourcemap", "other")
EXT_KINDS = {
    ".js": "script",
    ".mjs": "script",
    ".jsx": "script",
    ".ts": "script",
    ".tsx": "script",
    ".css": "stylesheet",
    ".scss": "stylesheet",
    ".png": "image",
    ".jpg": "image",
    ".jpeg": "image",
    ".gif": "image",
    ".svg": "image",
    ".webp": "image",
    ".ico": "image",
    ".html": "html",
    ".htm": "html",
    ".map": "sourcemap",
}

CLICK_SELECTOR = 'button, [role="button"], .menu, .nav'
HOVER_SELECTOR = "[onmouseover], [onmouseenter], .dropdown, .menu-item"

CONFIG_GROUPS = ("network", "relay", "discovery", "output", "general")
NEGATED_SWITCHES = {
    "source_maps": "no_source_maps",
    "dynamic": "no_dynamic",
    "warc_gzip": "no_warc_gzip",
}


# -------------------- Errors --------------------


class DeepFetchError(Exception):
    pass


class InvalidInput(DeepFetchError):
    pass


class RootFetchFailure(DeepFetchError):
    pass


class ParseFailure(DeepFetchError):
    pass


class ResourceFetchFailure(DeepFetchError):
    def __init__(
        self, url: str, message: str, status: Optional[int] = None, reason: str = ""
    ):
        super().__init__(message)
        self.url = url
        self.status = status
        self.reason = reason


class FetchTimeout(ResourceFetchFailure):
    pass


class RelayFailure(ResourceFetchFailure):
    pass


# -------------------- Settings --------------------


@dataclass
class Settings:
    timeout: float = 15.0
    workers: int = 8
    connect_retries: int = 1

    # Relay
    relay_url: Optional[str] = DEFAULT_RELAY_URL
    relay_mode: str = "envelope"  # envelope | raw

    # Discovery
    source_maps: bool = True
    guess_source_maps: bool = False
    dynamic: bool = True
    interact: bool = False
    interact_timeout_ms: int = 10000

    # Output
    zip_path: Optional[str] = None
    out_dir: Optional[str] = None
    warc_path: Optional[str] = None
    manifest_path: Optional[str] = None
    warc_gzip: bool = True


# -------------------- URL resolution --------------------


def can_fetch_url(u: Optional[str]) -> bool:
    if not u:
        return False
    u = u.strip()
    if not u:
        return False
    return not u.lower().startswith(UNFETCHABLE_PREFIXES)


def resolve_url(reference: Optional[str], base: Optional[str]) -> Optional[str]:
    if not can_fetch_url(reference):
        return None
    try:
        absu = urljoin(base or "", reference.strip())
        p = urlparse(absu)
    except ValueError:
        return None
    if p.scheme not in ("http", "https") or not p.netloc:
        return None
    return absu


def resolve_all(references: Iterable[Optional[str]], base: str) -> Set[str]:
    urls: Set[str] = set()
    for ref in references:
        absu = resolve_url(ref, base)
        if absu is not None:
            urls.add(absu)
    return urls


def validate_target(url: Optional[str]) -> str:
    if not url or not url.strip():
        raise InvalidInput("Please enter a valid URL")
    url = url.strip()
    try:
        p = urlparse(url)
    except ValueError as e:
        raise InvalidInput(f"Invalid URL {url!r}: {e}") from e
    if p.scheme not in ("http", "https") or not p.netloc:
        raise InvalidInput("Please enter a valid HTTP/HTTPS URL")
    return url


class VisitedSet:
    """URLs fetched successfully this session, plus the ones currently in flight."""

    def __init__(self) -> None:
        self._done: Set[str] = set()
        self._pending: Set[str] = set()
        self._lock = threading.Lock()

    def claim(self, url: str) -> bool:
        with self._lock:
            if url in self._done or url in self._pending:
                return False
            self._pending.add(url)
            return True

    def add(self, url: str) -> None:
        with self._lock:
            self._pending.discard(url)
            self._done.add(url)

    def release(self, url: str) -> None:
        with self._lock:
            self._pending.discard(url)

    def __contains__(self, url: object) -> bool:
        with self._lock:
            return url in self._done

    def __len__(self) -> int:
        with self._lock:
            return len(self._done)

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            return iter(sorted(self._done))


# -------------------- Network --------------------


@dataclass
class FetchResult:
    url: str
    status: int
    headers: Dict[str, str]
    is_binary: bool
    content: Union[str, bytes]
    reason: str = ""
    via: str = "direct"

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type") or "application/octet-stream"

    @property
    def text(self) -> str:
        if isinstance(self.content, bytes):
            return self.content.decode("utf-8", errors="replace")
        return self.content


def is_text_type(content_type: Optional[str]) -> bool:
    ct = (content_type or "").lower()
    return any(marker in ct for marker in TEXT_TYPE_MARKERS)


def guess_text_encoding(r: requests.Response) -> str:
    """Encoding for a text body whose content type names no charset: UTF-8
    when the bytes decode as such, otherwise whatever detection suggests."""
    try:
        r.content.decode("utf-8")
    except UnicodeDecodeError:
        return r.apparent_encoding or "utf-8"
    return "utf-8"


def build_session(
    headers: Optional[Dict[str, str]] = None, connect_retries: int = 1
) -> requests.Session:
    s = requests.Session()
    # connection errors only: HTTP error statuses are surfaced, never retried
    retry = Retry(
        total=connect_retries,
        connect=connect_retries,
        read=0,
        status=0,
        other=0,
        backoff_factor=0.5,
        allowed_methods={"GET", "HEAD"},
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=64, pool_maxsize=64)
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    s.headers.update(DEFAULT_HEADERS if headers is None else headers)
    return s


def _relay_error_message(r: requests.Response) -> str:
    try:
        data = r.json()
    except ValueError:
        return f"HTTP {r.status_code} {r.reason or ''}".strip()
    if isinstance(data, dict):
        parts = [str(data[k]) for k in ("error", "message") if data.get(k)]
        if parts:
            return ": ".join(parts)
    return f"HTTP {r.status_code} {r.reason or ''}".strip()


class NetworkFetcher:
    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        if settings.relay_mode not in RELAY_MODES:
            raise ValueError(f"unknown relay mode: {settings.relay_mode}")
        self.s = settings
        self.session = session or build_session(connect_retries=settings.connect_retries)

    def fetch(self, url: str, method: str = "GET") -> FetchResult:
        try:
            r = self.session.request(method, url, timeout=self.s.timeout)
        except requests.RequestException as e:
            logging.info("direct fetch failed for %s (%s), trying relay", url, e)
            return self._fetch_via_relay(url, method, e)
        if not 200 <= r.status_code < 300:
            raise ResourceFetchFailure(
                url,
                f"HTTP {r.status_code} {r.reason or ''}".strip(),
                status=r.status_code,
                reason=r.reason or "",
            )
        return self._from_response(url, r, via="direct")

    def _from_response(self, url: str, r: requests.Response, via: str) -> FetchResult:
        headers = {k.lower(): v for k, v in r.headers.items()}
        ct = headers.get("content-type") or "application/octet-stream"
        if is_text_type(ct):
            # requests assumes ISO-8859-1 for text/* without a charset
            if "charset=" not in ct.lower():
                r.encoding = guess_text_encoding(r)
            content: Union[str, bytes] = r.text
            binary = False
        else:
            content = r.content
            binary = True
        return FetchResult(
            url=url,
            status=r.status_code,
            headers=headers,
            is_binary=binary,
            content=content,
            reason=r.reason or "",
            via=via,
        )

    def _fetch_via_relay(
        self, url: str, method: str, cause: Exception
    ) -> FetchResult:
        if not self.s.relay_url:
            raise RelayFailure(url, f"direct fetch failed and no relay configured: {cause}")
        try:
            r = self.session.request(
                method, self.s.relay_url, params={"url": url}, timeout=RELAY_TIMEOUT
            )
        except requests.Timeout as e:
            raise FetchTimeout(
                url, f"relay timed out after {RELAY_TIMEOUT:.0f}s"
            ) from e
        except requests.RequestException as e:
            raise RelayFailure(url, f"both direct fetch and relay failed: {e}") from e
        if self.s.relay_mode == "envelope":
            return self._from_envelope(url, r)
        return self._from_raw_relay(url, r)

    def _from_envelope(self, url: str, r: requests.Response) -> FetchResult:
        if not 200 <= r.status_code < 300:
            raise RelayFailure(
                url, f"relay error: {_relay_error_message(r)}", status=r.status_code
            )
        try:
            data = r.json()
        except ValueError as e:
            raise RelayFailure(url, "relay returned a malformed envelope") from e
        if not isinstance(data, dict):
            raise RelayFailure(url, "relay returned a malformed envelope")
        if data.get("error"):
            raise RelayFailure(url, f"relay error: {data['error']}")
        status_info = data.get("status") if isinstance(data.get("status"), dict) else {}
        upstream = status_info.get("http_code")
        if isinstance(upstream, int) and not 200 <= upstream < 300:
            raise ResourceFetchFailure(
                url, f"HTTP {upstream} (via relay)", status=upstream
            )
        contents = data.get("contents")
        if contents is None:
            raise RelayFailure(url, "relay envelope has no contents")
        if not isinstance(contents, str):
            contents = json.dumps(contents)
        ct = status_info.get("content_type") or data.get("content-type") or "text/plain"
        return FetchResult(
            url=url,
            status=upstream if isinstance(upstream, int) else 200,
            headers={"content-type": ct},
            is_binary=False,
            content=contents,
            reason="OK",
            via="relay",
        )

    def _from_raw_relay(self, url: str, r: requests.Response) -> FetchResult:
        if r.status_code in (400, 500):
            raise RelayFailure(
                url, f"relay error: {_relay_error_message(r)}", status=r.status_code
            )
        if not 200 <= r.status_code < 300:
            raise ResourceFetchFailure(
                url,
                f"HTTP {r.status_code} (via relay): {_relay_error_message(r)}",
                status=r.status_code,
                reason=r.reason or "",
            )
        return self._from_response(url, r, via="relay")


# -------------------- Catalog --------------------


def content_size(content: Union[str, bytes]) -> int:
    if isinstance(content, bytes):
        return len(content)
    return len(content.encode("utf-8"))


def record_bytes(content: Union[str, bytes]) -> bytes:
    if isinstance(content, bytes):
        return content
    return content.encode("utf-8")


@dataclass(frozen=True)
class ResourceRecord:
    filename: str
    content: Union[str, bytes]
    kind: str
    source_url: Optional[str] = None
    content_type: Optional[str] = None
    original_path: Optional[str] = None
    size: int = field(init=False)

    def __post_init__(self) -> None:
        if self.kind not in KINDS:
            raise ValueError(f"unknown record kind: {self.kind}")
        object.__setattr__(self, "size", content_size(self.content))

    @property
    def is_binary(self) -> bool:
        return isinstance(self.content, bytes)


def sanitize_filename(name: str) -> str:
    name = INVALID_FILENAME_CHARS_RE.sub("_", name)
    name = name or "file"
    return name[:200]


def extension_for_type(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    ct = content_type.split(";")[0].strip().lower()
    if ct in ("application/javascript", "text/javascript", "application/x-javascript"):
        return ".js"
    if ct == "application/json":
        return ".json"
    if ct == "image/svg+xml":
        return ".svg"
    if ct == "font/woff2":
        return ".woff2"
    if ct == "font/woff":
        return ".woff"
    if ct == "application/manifest+json":
        return ".webmanifest"
    return mimetypes.guess_extension(ct)


def kind_for(filename: str, content_type: Optional[str]) -> str:
    ct = (content_type or "").lower()
    if "javascript" in ct:
        return "script"
    if "css" in ct:
        return "stylesheet"
    if "image" in ct:
        return "image"
    if "html" in ct:
        return "html"
    ext = posixpath.splitext(filename)[1].lower()
    return EXT_KINDS.get(ext, "other")


def filename_for_url(
    url: str, content_type: Optional[str], root_url: Optional[str] = None
) -> str:
    p = urlparse(url)
    path = unquote(p.path)
    segs = [sanitize_filename(s) for s in path.split("/") if s not in ("", ".", "..")]
    if not segs or path.endswith("/"):
        segs.append("index" + (extension_for_type(content_type) or ".bin"))
    else:
        last = segs[-1]
        if not posixpath.splitext(last)[1]:
            if p.query:
                last += "_" + re.sub(r"[=&]", "_", p.query)[:20]
            last += extension_for_type(content_type) or ".bin"
            segs[-1] = sanitize_filename(last)
    if root_url and urlparse(root_url).netloc != p.netloc:
        segs = ["vendor", sanitize_filename(p.netloc)] + segs
    return "/".join(segs)


def record_from_result(res: FetchResult, root_url: Optional[str]) -> ResourceRecord:
    filename = filename_for_url(res.url, res.content_type, root_url)
    return ResourceRecord(
        filename=filename,
        content=res.content,
        kind=kind_for(filename, res.content_type),
        source_url=res.url,
        content_type=res.headers.get("content-type"),
    )


def suffixed_name(name: str, taken: Union[Set[str], Dict[str, object]]) -> str:
    if name not in taken:
        return name
    base, ext = posixpath.splitext(name)
    n = 1
    while f"{base}_{n}{ext}" in taken:
        n += 1
    return f"{base}_{n}{ext}"


@dataclass
class CatalogStats:
    total_files: int = 0
    total_size: int = 0
    by_kind: Counter = field(default_factory=Counter)


class ResourceCatalog:
    """Insertion-ordered store of retained files keyed by unique filename.

    ``put`` is the only mutation point. It runs under a lock, so concurrent
    inserts of the same name are serialized: the first keeps the plain name and
    later ones receive ``_1``, ``_2``... before the extension.
    """

    def __init__(self) -> None:
        self._records: Dict[str, ResourceRecord] = {}
        self._lock = threading.Lock()
        self.stats = CatalogStats()

    def put(self, record: ResourceRecord) -> str:
        with self._lock:
            name = suffixed_name(record.filename, self._records)
            if name != record.filename:
                logging.debug("name collision: %s stored as %s", record.filename, name)
                record = replace(record, filename=name)
            self._records[name] = record
            self.stats.total_files += 1
            self.stats.total_size += record.size
            self.stats.by_kind[record.kind] += 1
        return name

    def has(self, filename: str) -> bool:
        with self._lock:
            return filename in self._records

    def get(self, filename: str) -> Optional[ResourceRecord]:
        with self._lock:
            return self._records.get(filename)

    def all_records(self) -> List[ResourceRecord]:
        with self._lock:
            return list(self._records.values())

    def snapshot_stats(self) -> Dict[str, object]:
        with self._lock:
            return {
                "total_files": self.stats.total_files,
                "total_size": self.stats.total_size,
                "by_kind": dict(self.stats.by_kind),
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, filename: object) -> bool:
        with self._lock:
            return filename in self._records


# -------------------- HTML extraction --------------------


def bs4_parse(html: str) -> BeautifulSoup:
    try:
        return BeautifulSoup(html, "lxml")
    except (FeatureNotFound, ParserRejectedMarkup):
        return BeautifulSoup(html, "html.parser")


def effective_base_url(soup: BeautifulSoup, fallback: str) -> str:
    tag = soup.find("base", href=True)
    if tag and tag.get("href"):
        return urljoin(fallback, tag["href"])
    return fallback


def _rels(tag) -> Set[str]:
    rel = tag.get("rel") or []
    if isinstance(rel, str):
        rel = rel.split()
    return {r.lower() for r in rel}


def extract_resource_urls(html_text: str, base_url: str) -> Set[str]:
    try:
        soup = bs4_parse(html_text)
    except ParserRejectedMarkup as e:
        raise ParseFailure(f"could not parse HTML from {base_url}: {e}") from e
    base = effective_base_url(soup, base_url)

    candidates: List[Optional[str]] = []
    candidates.extend(tag.get("src") for tag in soup.select("script[src]"))
    candidates.extend(
        link.get("href")
        for link in soup.find_all("link", href=True)
        if "stylesheet" in _rels(link)
    )
    candidates.extend(tag.get("src") for tag in soup.select("img[src]"))
    for tag in soup.select("link[href], [src]"):
        candidates.append(tag.get("href") or tag.get("src"))
    return resolve_all(candidates, base)


# -------------------- Source maps --------------------


def clean_path(source_path: str) -> str:
    p = source_path
    if p.startswith("/"):
        p = p[1:]
    p = WEBPACK_HOST_PREFIX_RE.sub("", p, count=1)
    if p.startswith("webpack://"):
        p = p[len("webpack://"):]
    if p.startswith("./"):
        p = p[2:]
    p = p.split("?", 1)[0]
    return INVALID_SOURCE_CHARS_RE.sub("_", p)


def is_noise(cleaned: str) -> bool:
    if len(cleaned) < 2:
        return True
    if cleaned.startswith("(webpack)"):
        return True
    return any(marker in cleaned for marker in NOISE_MARKERS)


def source_filename(cleaned: str) -> Optional[str]:
    segs = [s for s in cleaned.split("/") if s not in ("", ".", "..")]
    if not segs:
        return None
    return "/".join([SOURCES_DIR] + segs)


def source_map_comment(text: str) -> Optional[str]:
    fallback: Optional[str] = None
    for line in reversed(text.splitlines()):
        m = CSS_SOURCE_MAP_RE.search(line) or JS_SOURCE_MAP_RE.search(line)
        if not m:
            continue
        if m.group(1) == "#":
            return m.group(2).strip()
        if fallback is None:
            fallback = m.group(2).strip()
    return fallback


def find_map_reference(script_text: str, script_url: Optional[str]) -> Optional[str]:
    ref = source_map_comment(script_text)
    if not ref or ref.lower().startswith("data:"):
        return None
    if ref.startswith(("http://", "https://")):
        return ref
    return resolve_url(ref, script_url)


def parse_map(text: str, origin: str) -> dict:
    try:
        payload = json.loads(text)
    except ValueError as e:
        raise ParseFailure(f"source map {origin} is not valid JSON: {e}") from e
    if not isinstance(payload, dict) or not isinstance(payload.get("sources"), list):
        raise ParseFailure(f"source map {origin} has no sources array")
    return payload


def decode_inline_map(ref: str) -> dict:
    header, sep, data = ref.partition(",")
    if not sep or "json" not in header.lower():
        raise ParseFailure("inline source map is not a JSON data URL")
    charset = "utf-8"
    for part in header.split(";"):
        if part.lower().startswith("charset="):
            charset = part.split("=", 1)[1]
    try:
        if header.lower().endswith(";base64"):
            raw = base64.b64decode(data + "=" * (-len(data) % 4))
        else:
            raw = unquote_to_bytes(data)
        text = raw.decode(charset, errors="replace")
    except (ValueError, LookupError) as e:
        raise ParseFailure(f"could not decode inline source map: {e}") from e
    return parse_map(text, "(inline)")


def find_inline_map(script_text: str) -> Optional[dict]:
    ref = source_map_comment(script_text)
    if not ref or not ref.lower().startswith("data:"):
        return None
    return decode_inline_map(ref)


def candidate_map_urls(script_url: Optional[str]) -> List[str]:
    if not script_url:
        return []
    p = urlparse(script_url)
    path = p.path
    if not path or path.endswith("/"):
        return []
    origin = f"{p.scheme}://{p.netloc}"
    stem = re.sub(r"\.(m?js|css)$", "", path)
    patterns = [
        path + ".map",
        stem + ".map",
        re.sub(r"/([^/]+)$", r"/sourcemaps/\1.map", path),
        re.sub(r"/([^/]+)$", r"/maps/\1.map", path),
    ]
    return list(dict.fromkeys(origin + x for x in patterns))


LogFn = Callable[[int, str], None]


def _default_log(level: int, message: str) -> None:
    logging.log(level, "%s", message)


class SourceMapProcessor:
    def __init__(
        self,
        fetcher,
        catalog: ResourceCatalog,
        log: Optional[LogFn] = None,
        *,
        root_url: Optional[str] = None,
        is_active: Optional[Callable[[], bool]] = None,
        guess: bool = False,
    ):
        self.fetcher = fetcher
        self.catalog = catalog
        self.log = log or _default_log
        self.root_url = root_url
        self.is_active = is_active or (lambda: True)
        self.guess = guess

    find_map_reference = staticmethod(find_map_reference)
    find_inline_map = staticmethod(find_inline_map)
    candidate_map_urls = staticmethod(candidate_map_urls)

    def process_record(self, record: ResourceRecord) -> int:
        if record.is_binary:
            return 0
        try:
            inline = find_inline_map(record.content)
        except ParseFailure as e:
            self.log(logging.WARNING, f"[source maps] {record.filename}: {e}")
            return 0
        if inline is not None:
            self.log(logging.INFO, f"Found inline source map in {record.filename}")
            return self.extract(inline, record.source_url)

        map_url = find_map_reference(record.content, record.source_url)
        if map_url:
            self.log(logging.INFO, f"Found source map for {record.filename}: {map_url}")
            return self.process(map_url, record.filename)
        logging.debug("no source map reference in %s", record.filename)

        if self.guess:
            for candidate in candidate_map_urls(record.source_url):
                if not self.is_active():
                    break
                text = self._fetch_map(candidate, quiet=True)
                if text is None:
                    continue
                try:
                    payload = parse_map(text, candidate)
                except ParseFailure as e:
                    logging.debug("rejecting map candidate: %s", e)
                    continue
                self.log(logging.INFO, f"Found implicit source map: {candidate}")
                self._store_map(candidate, text)
                return self._extract_logged(payload, candidate, record)
        return 0

    def process(self, map_url: str, script_filename: str) -> int:
        script = self.catalog.get(script_filename)
        text = self._fetch_map(map_url)
        if text is None:
            return 0
        self._store_map(map_url, text)
        try:
            payload = parse_map(text, map_url)
        except ParseFailure as e:
            self.log(logging.WARNING, f"[source maps] {e}")
            return 0
        return self._extract_logged(payload, map_url, script)

    def _fetch_map(self, map_url: str, quiet: bool = False) -> Optional[str]:
        try:
            res = self.fetcher.fetch(map_url)
        except ResourceFetchFailure as e:
            level = logging.DEBUG if quiet else logging.WARNING
            self.log(level, f"[source maps] failed to fetch {map_url}: {e}")
            return None
        if not self.is_active():
            logging.debug("discarding map %s fetched after stop", map_url)
            return None
        return res.text

    def _store_map(self, map_url: str, text: str) -> str:
        return self.catalog.put(
            ResourceRecord(
                filename=filename_for_url(map_url, "application/json", self.root_url),
                content=text,
                kind="sourcemap",
                source_url=map_url,
                content_type="application/json",
            )
        )

    def _extract_logged(
        self, payload: dict, map_url: str, script: Optional[ResourceRecord]
    ) -> int:
        count = self.extract(payload, script.source_url if script else None, map_url)
        name = script.filename if script else map_url
        self.log(logging.INFO, f"Extracted {count} source files from {name}")
        return count

    def extract(
        self, payload: dict, base_url: Optional[str], map_url: Optional[str] = None
    ) -> int:
        sources = payload.get("sources") or []
        contents = payload.get("sourcesContent")
        if not isinstance(contents, list):
            return self._fetch_sources(sources, payload, base_url, map_url)
        if len(contents) != len(sources):
            self.log(
                logging.WARNING,
                f"[source maps] {map_url or 'inline map'}: {len(sources)} sources "
                f"but {len(contents)} contents, pairing the first {min(len(sources), len(contents))}",
            )
        count = 0
        for raw, content in zip(sources, contents):
            if not isinstance(raw, str) or not isinstance(content, str) or not content:
                continue
            if self._store(raw, content, None):
                count += 1
        return count

    def _fetch_sources(
        self, sources: list, payload: dict, base_url: Optional[str], map_url: Optional[str]
    ) -> int:
        self.log(
            logging.INFO,
            f"Source map has {len(sources)} references without content, fetching",
        )
        base = base_url
        root = payload.get("sourceRoot")
        if isinstance(root, str) and root.strip():
            resolved = resolve_url(root, map_url or base_url)
            if resolved:
                base = resolved if resolved.endswith("/") else resolved + "/"
        count = 0
        for raw in sources:
            if not self.is_active():
                break
            if not isinstance(raw, str) or not raw:
                continue
            cleaned = clean_path(raw)
            if is_noise(cleaned):
                continue
            url = resolve_url(raw, base) or resolve_url(cleaned, base)
            if not url:
                self.log(logging.WARNING, f"[source maps] cannot resolve source {raw}")
                continue
            try:
                res = self.fetcher.fetch(url)
            except ResourceFetchFailure as e:
                self.log(logging.WARNING, f"[source maps] failed to fetch source {url}: {e}")
                continue
            if not self.is_active():
                logging.debug("discarding source %s fetched after stop", url)
                break
            if self._store(raw, res.text, url):
                count += 1
        return count

    def _store(self, raw: str, content: str, source_url: Optional[str]) -> bool:
        cleaned = clean_path(raw)
        if is_noise(cleaned):
            logging.debug("skipping bundler internal %s", raw)
            return False
        filename = source_filename(cleaned)
        if filename is None:
            return False
        self.catalog.put(
            ResourceRecord(
                filename=filename,
                content=content,
                kind="source",
                source_url=source_url,
                original_path=raw,
            )
        )
        return True


# -------------------- Dynamic endpoints --------------------


def scan_endpoints(
    catalog: ResourceCatalog, root_url: str, visited: Union[VisitedSet, Set[str]]
) -> Set[str]:
    found: Set[str] = set()
    for rec in catalog.all_records():
        if rec.kind != "script" or rec.is_binary:
            continue
        for m in API_PATH_RE.finditer(rec.content):
            absu = resolve_url(m.group(2), root_url)
            if absu:
                found.add(absu)
        for m in ABSOLUTE_URL_RE.finditer(rec.content):
            u = m.group(2)
            if u not in visited and resolve_url(u, root_url):
                found.add(u)
    return found


# -------------------- Interaction probe --------------------


class InteractionProbe:
    def discover(self, url: str) -> Set[str]:
        raise NotImplementedError

    def close(self) -> None:
        pass


class PlaywrightProbe(InteractionProbe):
    """Loads the page in headless Chromium and records every request it makes
    while scrolling, clicking and hovering a handful of elements."""

    def __init__(
        self,
        timeout_ms: int = 10000,
        wait_until: str = "networkidle",
        user_agent: Optional[str] = None,
    ):
        self.timeout_ms = timeout_ms
        self.wait_until = wait_until
        self.user_agent = user_agent or DEFAULT_HEADERS["User-Agent"]
        self._pl = None
        self._browser = None
        self._error_cls: type = Exception

    def _ensure_browser(self) -> bool:
        if self._pl is None or self._browser is None:
            try:
                from playwright.sync_api import Error, sync_playwright
            except ImportError:
                logging.error(
                    "Playwright not installed. Run: pip install playwright && playwright install"
                )
                return False
            self._error_cls = Error
            try:
                self._pl = sync_playwright().start()
                self._browser = self._pl.chromium.launch(headless=True)
            except Error as e:
                logging.error("could not launch Chromium (try: playwright install): %s", e)
                self.close()
                return False
        return True

    def discover(self, url: str) -> Set[str]:
        if not self._ensure_browser():
            return set()
        seen: Set[str] = set()
        try:
            context = self._browser.new_context(user_agent=self.user_agent)
        except self._error_cls as e:
            logging.warning("interaction probe failed for %s: %s", url, e)
            return set()
        try:
            page = context.new_page()
            page.on("request", lambda req: seen.add(req.url))
            page.goto(url, wait_until=self.wait_until, timeout=self.timeout_ms)
            page.evaluate("window.scrollTo(0, document.body.scrollHeight)")
            page.wait_for_timeout(1000)
            page.evaluate("window.scrollTo(0, 0)")
            page.wait_for_timeout(1000)
            for el in page.query_selector_all(CLICK_SELECTOR)[:5]:
                try:
                    el.click(timeout=1000, no_wait_after=True)
                    page.wait_for_timeout(500)
                except self._error_cls as e:
                    logging.debug("click failed on %s: %s", url, e)
            for el in page.query_selector_all(HOVER_SELECTOR)[:3]:
                try:
                    el.hover(timeout=1000)
                    page.wait_for_timeout(300)
                except self._error_cls as e:
                    logging.debug("hover failed on %s: %s", url, e)
        except self._error_cls as e:
            logging.warning("interaction probe failed for %s: %s", url, e)
        finally:
            context.close()
        return {u for u in seen if resolve_url(u, url)}

    def close(self) -> None:
        if self._browser is not None:
            self._browser.close()
            self._browser = None
        if self._pl is not None:
            self._pl.stop()
            self._pl = None


# -------------------- Session --------------------


class Phase(Enum):
    IDLE = "idle"
    FETCHING_ROOT = "fetching-root"
    EXTRACTING = "extracting"
    DOWNLOADING_STATIC = "downloading-static"
    PROCESSING_MAPS = "processing-maps"
    SCANNING_DYNAMIC = "scanning-dynamic"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_PHASES = {Phase.COMPLETE, Phase.CANCELLED, Phase.FAILED}


@dataclass
class SessionState:
    root_url: Optional[str] = None
    is_active: bool = False
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    phase: Phase = Phase.IDLE
    catalog: ResourceCatalog = field(default_factory=ResourceCatalog)
    visited: VisitedSet = field(default_factory=VisitedSet)

    @property
    def stats(self) -> CatalogStats:
        return self.catalog.stats

    @property
    def elapsed(self) -> float:
        if self.start_time is None:
            return 0.0
        end = self.end_time if self.end_time is not None else time.monotonic()
        return end - self.start_time


ProgressFn = Callable[[float, str], None]


def format_file_size(n: int) -> str:
    if n <= 0:
        return "0 B"
    size = float(n)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            break
        size /= 1024
    return f"{size:.2f}".rstrip("0").rstrip(".") + f" {unit}"


class Downloader:
    """One download session at a time: ``start`` runs the whole pipeline in the
    calling thread, ``stop`` may be called from any other thread."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        fetcher=None,
        probe: Optional[InteractionProbe] = None,
        progress: Optional[ProgressFn] = None,
        on_log: Optional[LogFn] = None,
    ):
        self.s = settings or Settings()
        self.fetcher = fetcher if fetcher is not None else NetworkFetcher(self.s)
        self.probe = probe
        self.progress_cb = progress
        self.on_log = on_log
        self.state = SessionState()
        self._percent = 0.0

    @property
    def catalog(self) -> ResourceCatalog:
        return self.state.catalog

    @property
    def phase(self) -> Phase:
        return self.state.phase

    # ---- callbacks ----

    def log(self, level: int, message: str) -> None:
        logging.log(level, "%s", message)
        if self.on_log is not None:
            self.on_log(level, message)

    def report_progress(self, percent: float, message: str = "") -> None:
        self._percent = max(self._percent, min(100.0, float(percent)))
        if message:
            self.log(logging.INFO, message)
        if self.progress_cb is not None:
            self.progress_cb(self._percent, message)

    # ---- control surface ----

    def start(self, url: str) -> SessionState:
        if self.state.is_active:
            raise InvalidInput("a download session is already running")
        target = validate_target(url)
        state = SessionState(
            root_url=target, is_active=True, start_time=time.monotonic()
        )
        self.state = state
        self._percent = 0.0
        self.log(logging.INFO, f"Starting download of {target}")
        try:
            self._run(state)
        finally:
            state.is_active = False
            state.end_time = time.monotonic()
        return state

    def stop(self) -> None:
        if not self.state.is_active:
            return
        self.state.is_active = False
        self.log(logging.WARNING, "Download stopped by user")

    def reset(self) -> None:
        self.stop()
        self.state = SessionState()
        self._percent = 0.0

    # ---- pipeline ----

    def _enter(self, state: SessionState, phase: Phase) -> None:
        logging.debug("phase %s -> %s", state.phase.value, phase.value)
        state.phase = phase

    def _cancelled(self, state: SessionState) -> bool:
        if state.is_active:
            return False
        if state.phase not in TERMINAL_PHASES:
            self._enter(state, Phase.CANCELLED)
            self.log(
                logging.WARNING,
                f"Session cancelled with {len(state.catalog)} files catalogued",
            )
        return True

    def _run(self, state: SessionState) -> None:
        url = state.root_url

        self._enter(state, Phase.FETCHING_ROOT)
        self.report_progress(5, "Phase 1: downloading main HTML page")
        html = self._fetch_root(state, url)
        # a None page only happens after stop()
        if self._cancelled(state) or html is None:
            return

        self._enter(state, Phase.EXTRACTING)
        self.report_progress(20, "Phase 2: extracting static resources")
        urls = self._extract(state, html, url)
        if self._cancelled(state):
            return

        self._enter(state, Phase.DOWNLOADING_STATIC)
        self.report_progress(40, "Phase 3: downloading static resources")
        self._download_static(state, urls)
        if self._cancelled(state):
            return

        self._enter(state, Phase.PROCESSING_MAPS)
        self.report_progress(70, "Phase 4: processing source maps")
        if self.s.source_maps:
            self._process_maps(state)
        else:
            self.log(logging.INFO, "Source map processing disabled")
        if self._cancelled(state):
            return

        self._enter(state, Phase.SCANNING_DYNAMIC)
        self.report_progress(85, "Phase 5: searching for dynamic resources")
        if self.s.dynamic:
            self._scan_dynamic(state)
        else:
            self.log(logging.INFO, "Dynamic endpoint scan disabled")
        if self._cancelled(state):
            return

        self._enter(state, Phase.FINALIZING)
        self.report_progress(95, "Phase 6: generating report")
        self._final_report(state)

        self._enter(state, Phase.COMPLETE)
        self.report_progress(100, "Extraction completed")

    def _fetch_root(self, state: SessionState, url: str) -> Optional[str]:
        try:
            res = self.fetcher.fetch(url)
        except ResourceFetchFailure as e:
            self._enter(state, Phase.FAILED)
            state.is_active = False
            self.log(logging.ERROR, f"[fetching-root] failed to download main page {url}: {e}")
            raise RootFetchFailure(f"Failed to download main page {url}: {e}") from e
        if not state.is_active:
            return None
        state.catalog.put(
            ResourceRecord(
                filename=ROOT_FILENAME,
                content=res.text,
                kind="html",
                source_url=url,
                content_type=res.headers.get("content-type") or "text/html",
            )
        )
        state.visited.add(url)
        self.log(logging.INFO, "Main HTML downloaded")
        return res.text

    def _extract(self, state: SessionState, html: str, url: str) -> Set[str]:
        try:
            urls = extract_resource_urls(html, url)
        except ParseFailure as e:
            self.log(logging.WARNING, f"[extracting] {e}")
            urls = set()
        self.log(logging.INFO, f"Found {len(urls)} static resources in HTML")
        if self.probe is not None and state.is_active:
            observed = self.probe.discover(url)
            new = observed - urls
            self.log(logging.INFO, f"Interaction probe observed {len(new)} additional resources")
            urls |= observed
        return urls

    def _fetch_into_catalog(
        self, state: SessionState, url: str, phase: Phase
    ) -> Optional[str]:
        if not state.is_active:
            return None
        if not state.visited.claim(url):
            return None
        try:
            res = self.fetcher.fetch(url)
        except ResourceFetchFailure as e:
            state.visited.release(url)
            self.log(logging.WARNING, f"[{phase.value}] failed to download {url}: {e}")
            return None
        if not state.is_active:
            state.visited.release(url)
            logging.debug("discarding %s fetched after stop", url)
            return None
        name = state.catalog.put(record_from_result(res, state.root_url))
        state.visited.add(url)
        return name

    def _download_static(self, state: SessionState, urls: Set[str]) -> int:
        total = len(urls)
        if not total:
            self.log(logging.INFO, "No static resources to download")
            return 0
        done = 0
        saved = 0
        with ThreadPoolExecutor(max_workers=max(1, self.s.workers)) as pool:
            future_map = {
                pool.submit(
                    self._fetch_into_catalog, state, u, Phase.DOWNLOADING_STATIC
                ): u
                for u in sorted(urls)
            }
            for fut in as_completed(future_map):
                done += 1
                name = fut.result()
                if name is not None:
                    saved += 1
                self.report_progress(
                    40 + done / total * 30, f"Downloaded: {name}" if name else ""
                )
        self.log(logging.INFO, f"Downloaded {saved}/{total} static resources")
        return saved

    def _process_maps(self, state: SessionState) -> int:
        processor = SourceMapProcessor(
            self.fetcher,
            state.catalog,
            root_url=state.root_url,
            log=self.log,
            is_active=lambda: state.is_active,
            guess=self.s.guess_source_maps,
        )
        records = [
            r
            for r in state.catalog.all_records()
            if r.kind in ("script", "stylesheet") and not r.is_binary
        ]
        self.log(logging.INFO, f"Found {len(records)} script and stylesheet files to process")
        total = 0
        for rec in records:
            if not state.is_active:
                break
            total += processor.process_record(rec)
        self.log(logging.INFO, f"Total source files extracted: {total}")
        return total

    def _scan_dynamic(self, state: SessionState) -> int:
        endpoints = scan_endpoints(state.catalog, state.root_url, state.visited)
        self.log(logging.INFO, f"Found {len(endpoints)} potential dynamic endpoints")
        saved = 0
        for endpoint in sorted(endpoints):
            if not state.is_active:
                break
            if self._fetch_into_catalog(state, endpoint, Phase.SCANNING_DYNAMIC):
                saved += 1
                self.log(logging.INFO, f"Downloaded dynamic resource: {endpoint}")
        self.log(logging.INFO, f"Downloaded {saved} dynamic resources")
        return saved

    def _final_report(self, state: SessionState) -> None:
        stats = state.catalog.snapshot_stats()
        by_kind = stats["by_kind"]
        self.log(logging.INFO, "Final statistics:")
        self.log(logging.INFO, f"  Total files: {stats['total_files']}")
        self.log(logging.INFO, f"  Total size: {format_file_size(stats['total_size'])}")
        for kind in KINDS:
            if by_kind.get(kind):
                self.log(logging.INFO, f"  {kind}: {by_kind[kind]}")
        self.log(logging.INFO, f"  Elapsed: {state.elapsed:.1f}s")


# -------------------- Archivers --------------------


def safe_archive_name(name: str) -> str:
    segs = [s for s in name.replace("\\", "/").split("/") if s not in ("", ".", "..")]
    return "/".join(segs) or "file"


def default_archive_name(url: str) -> str:
    host = sanitize_filename(urlparse(url).hostname or "site")
    return f"{host}-resources.zip"


def write_zip(records: Iterable[ResourceRecord], path: Union[str, Path]) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(p, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for rec in records:
            zf.writestr(safe_archive_name(rec.filename), record_bytes(rec.content))
    return p


def export_record(record: ResourceRecord, dest: Union[str, Path]) -> Path:
    p = Path(dest)
    if p.is_dir():
        p = p / posixpath.basename(safe_archive_name(record.filename))
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_bytes(record_bytes(record.content))
    return p


def save_to_directory(records: Iterable[ResourceRecord], root: Union[str, Path]) -> List[Path]:
    out = Path(root)
    written: List[Path] = []
    for rec in records:
        p = out.joinpath(*safe_archive_name(rec.filename).split("/"))
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(record_bytes(rec.content))
        written.append(p)
    return written


def write_manifest(state: SessionState, path: Union[str, Path]) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    # RFC3339 UTC timestamp without microseconds
    created_ts = (
        datetime.now(timezone.utc)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z")
    )
    stats = state.catalog.snapshot_stats()
    data = {
        "site": state.root_url,
        "created_utc": created_ts,
        "phase": state.phase.value,
        "elapsed_seconds": round(state.elapsed, 3),
        "stats": stats,
        "files": [
            {
                "filename": rec.filename,
                "kind": rec.kind,
                "size": rec.size,
                "source_url": rec.source_url,
                "original_path": rec.original_path,
            }
            for rec in state.catalog.all_records()
        ],
        "notes": "Third-party resources under vendor/<host>/. Recovered sources under sources/.",
    }
    p.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return p


class WarcArchiver:
    def __init__(self, path: Union[str, Path], gzip: bool = True):
        self.enabled = False
        try:
            from warcio.warcwriter import WARCWriter  # type: ignore
        except ImportError:
            logging.error("warcio not installed. Drop --warc or: pip install warcio")
            return
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        self._fh = open(p, "wb")
        self._writer = WARCWriter(self._fh, gzip=gzip)
        self.enabled = True

    def write_records(self, records: Iterable[ResourceRecord]) -> int:
        if not self.enabled:
            return 0
        n = 0
        for rec in records:
            uri = rec.source_url or f"urn:deepfetch:{safe_archive_name(rec.filename)}"
            wr = self._writer.create_warc_record(
                uri,
                "resource",
                payload=BytesIO(record_bytes(rec.content)),
                warc_content_type=rec.content_type or "application/octet-stream",
            )
            self._writer.write_record(wr)
            n += 1
        return n

    def close(self) -> None:
        if self.enabled:
            self._fh.close()
            self.enabled = False


# -------------------- Config loader --------------------


def load_config_file(path: str) -> Dict[str, object]:
    p = Path(path)
    suf = p.suffix.lower()
    if suf in {".toml", ".tml"}:
        try:
            import tomllib  # py311+
        except ImportError:
            try:
                import tomli as tomllib  # backport
            except ImportError:
                raise RuntimeError("TOML config requires Python 3.11+ or 'tomli'")
        with open(p, "rb") as f:
            return tomllib.load(f) or {}
    elif suf in {".yaml", ".yml"}:
        try:
            import yaml
        except ImportError:
            raise RuntimeError("YAML config requires 'PyYAML'")
        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise RuntimeError("Top-level YAML must be a mapping")
            return data
    else:
        raise RuntimeError("Unsupported config format. Use .toml or .yaml")


def config_defaults(cfg: Dict[str, object], known: Set[str]) -> Dict[str, object]:
    """Turns a config mapping into parser defaults.

    Keys may sit at the top level or inside one of the ``CONFIG_GROUPS``
    tables, and may use dashes. The positive ``Settings`` switches
    (``source_maps = false``) map onto their ``--no-*`` flags. Anything the
    parser does not know is rejected rather than silently ignored.
    """
    flat: Dict[str, object] = {}
    for key, value in cfg.items():
        if key in CONFIG_GROUPS and isinstance(value, dict):
            flat.update(value)
        else:
            flat[key] = value
    out: Dict[str, object] = {}
    unknown = []
    for key, value in flat.items():
        dest = str(key).replace("-", "_")
        if dest in NEGATED_SWITCHES:
            dest, value = NEGATED_SWITCHES[dest], not value
        if dest not in known:
            unknown.append(str(key))
            continue
        out[dest] = value
    if unknown:
        raise RuntimeError(f"Unknown config key(s): {', '.join(sorted(unknown))}")
    return out


# -------------------- CLI --------------------


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="deepfetch",
        description="Download a page with its resources and recover original "
        "sources from source maps.",
    )
    p.add_argument("--config", type=str, help="path to config.toml|.yaml", default=None)
    p.add_argument("url", help="http(s) URL")
    p.add_argument(
        "-o", "--output", dest="zip_path", default=None, help="ZIP file to write"
    )
    p.add_argument("--dir", dest="out_dir", default=None, help="also write files here")
    p.add_argument("--verbose", action="store_true", help="debug logging")

    # network
    p.add_argument("--timeout", type=float, default=15.0, help="direct request timeout")
    p.add_argument("--workers", type=int, default=8, help="concurrent downloads")
    p.add_argument(
        "--connect-retries", type=int, default=1, help="retries on connection errors"
    )

    # relay
    p.add_argument(
        "--relay", dest="relay_url", default=DEFAULT_RELAY_URL, help="CORS relay URL"
    )
    p.add_argument(
        "--relay-mode",
        choices=RELAY_MODES,
        default="envelope",
        help="relay response shape: JSON envelope or raw passthrough",
    )
    p.add_argument("--no-relay", action="store_true", help="never use the relay")

    # discovery
    p.add_argument(
        "--no-source-maps", action="store_true", help="skip source map extraction"
    )
    p.add_argument(
        "--guess-source-maps",
        action="store_true",
        help="probe common .map locations when no reference is found",
    )
    p.add_argument(
        "--no-dynamic", action="store_true", help="skip the dynamic endpoint scan"
    )
    p.add_argument(
        "--interact",
        action="store_true",
        help="load the page in Playwright and simulate interactions",
    )
    p.add_argument(
        "--interact-timeout-ms", type=int, default=10000, help="Playwright timeout ms"
    )

    # output
    p.add_argument("--warc", dest="warc_path", default=None, help="also write a WARC file")
    p.add_argument("--no-warc-gzip", action="store_true", help="disable gzip for WARC")
    p.add_argument(
        "--manifest", dest="manifest_path", default=None, help="write a JSON manifest here"
    )
    return p


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = build_arg_parser()
    preliminary, _ = parser.parse_known_args(argv)
    if preliminary.config:
        cfg = load_config_file(preliminary.config)
        known = set(vars(preliminary)) - {"config", "url"}
        parser.set_defaults(**config_defaults(cfg, known))
    return parser.parse_args(argv)


def settings_from_args(args: argparse.Namespace) -> Settings:
    return Settings(
        timeout=max(1.0, args.timeout),
        workers=max(1, args.workers),
        connect_retries=max(0, args.connect_retries),
        relay_url=None if args.no_relay else args.relay_url,
        relay_mode=args.relay_mode,
        source_maps=not args.no_source_maps,
        guess_source_maps=args.guess_source_maps,
        dynamic=not args.no_dynamic,
        interact=args.interact,
        interact_timeout_ms=args.interact_timeout_ms,
        zip_path=args.zip_path,
        out_dir=args.out_dir,
        warc_path=args.warc_path,
        warc_gzip=not args.no_warc_gzip,
        manifest_path=args.manifest_path,
    )


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )
    try:
        url = validate_target(args.url)
    except InvalidInput as e:
        print(f"Invalid URL: {e}")
        sys.exit(1)

    settings = settings_from_args(args)
    probe = (
        PlaywrightProbe(timeout_ms=settings.interact_timeout_ms)
        if settings.interact
        else None
    )
    downloader = Downloader(settings, probe=probe)

    print("Reminder: only download content you own or have permission to copy.")
    try:
        state = downloader.start(url)
    except RootFetchFailure as e:
        print(f"Critical error: {e}")
        sys.exit(1)
    finally:
        if probe is not None:
            probe.close()

    records = state.catalog.all_records()
    zip_path = settings.zip_path or default_archive_name(url)
    write_zip(records, zip_path)
    print(f"Saved {len(records)} files to: {zip_path}")
    if settings.out_dir:
        save_to_directory(records, settings.out_dir)
        print(f"Files written under: {settings.out_dir}")
    if settings.warc_path:
        archiver = WarcArchiver(settings.warc_path, gzip=settings.warc_gzip)
        try:
            n = archiver.write_records(records)
        finally:
            archiver.close()
        if n:
            print(f"WARC: {settings.warc_path} ({n} records)")
    if settings.manifest_path:
        write_manifest(state, settings.manifest_path)
        print(f"Manifest: {settings.manifest_path}")
    if state.phase is Phase.CANCELLED:
        print("Session was cancelled; the archive is partial.")


if __name__ == "__main__":
    main()
