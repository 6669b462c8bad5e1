import hashlib
import json
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from urllib.parse import urlparse

from accesslog.core.errors import ValidationFailed

# 1x1 transparent GIF89a, 43 bytes
TRANSPARENT_GIF = bytes(
    [
        0x47, 0x49, 0x46, 0x38, 0x39, 0x61,  # GIF89a
        0x01, 0x00, 0x01, 0x00,  # 1x1
        0x80, 0x00, 0x00,  # global color table, 2 entries
        0x00, 0x00, 0x00, 0xFF, 0xFF, 0xFF,  # black, white
        0x21, 0xF9, 0x04, 0x01, 0x00, 0x00, 0x00, 0x00,  # graphic control, index 0 transparent
        0x2C, 0x00, 0x00, 0x00, 0x00, 0x01, 0x00, 0x01, 0x00, 0x00,  # image descriptor
        0x02, 0x02, 0x44, 0x01, 0x00,  # LZW image data
        0x3B,  # trailer
    ]
)

GIF_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

JS_MEDIA_TYPE = "application/javascript"

APP_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

TEMPLATE_PATH = Path(__file__).resolve().parent.parent / "static" / "tracker.js"

_LEXEME_RE = re.compile(
    r"""(?P<string>'(?:\\.|[^'\\\n])*'|"(?:\\.|[^"\\\n])*"|`(?:\\.|[^`\\])*`)"""
    r"|(?P<comment>/\*.*?\*/|^[ \t]*//[^\n]*$)",
    re.DOTALL | re.MULTILINE,
)
_WHITESPACE_RE = re.compile(r"\s+")
_PUNCT_SPACE_RE = re.compile(r"\s*([{}();,:=+\-<>!?&|])\s*")


@dataclass(frozen=True)
class BeaconConfig:
    endpoint: str
    version: str
    debug: bool = False
    minify: bool = False
    app_id: str | None = None
    custom_params: dict = field(default_factory=dict)

    def validate(self) -> None:
        if not self.endpoint:
            raise ValidationFailed("endpoint is required")
        parsed = urlparse(self.endpoint)
        if parsed.scheme not in ("", "http", "https") or not (parsed.path or parsed.netloc):
            raise ValidationFailed("invalid endpoint URL", details={"endpoint": self.endpoint})
        if not self.version:
            raise ValidationFailed("version is required")
        if self.app_id is not None and not is_valid_app_id(self.app_id):
            raise ValidationFailed("invalid app_id", details={"app_id": self.app_id})


def is_valid_app_id(app_id: str) -> bool:
    return bool(APP_ID_RE.match(app_id))


@lru_cache(maxsize=1)
def load_template() -> str:
    return TEMPLATE_PATH.read_text(encoding="utf-8")


def minify(code: str) -> str:
    """
    Whitespace/comment stripper for the bundled template.

    String literals are copied through untouched. Comments are block
    comments and whole-line `//` comments only, and regex literals are not
    recognised, which is why values are substituted after minifying.
    """
    out = []
    code_run = []
    pos = 0
    for m in _LEXEME_RE.finditer(code):
        code_run.append(code[pos : m.start()])
        if m.group("string"):
            out.append(_squeeze("".join(code_run)))
            out.append(m.group("string"))
            code_run = []
        else:
            code_run.append(" ")
        pos = m.end()
    code_run.append(code[pos:])
    out.append(_squeeze("".join(code_run)))
    return "".join(out).strip()


def _squeeze(code: str) -> str:
    code = _WHITESPACE_RE.sub(" ", code)
    return _PUNCT_SPACE_RE.sub(r"\1", code)


def render(config: BeaconConfig) -> str:
    config.validate()
    code = load_template()
    if config.minify:
        code = minify(code)
    replacements = {
        "__ALT_ENDPOINT__": json.dumps(config.endpoint),
        "__ALT_VERSION__": json.dumps(config.version),
        "__ALT_DEBUG__": "true" if config.debug else "false",
        "__ALT_APP_ID__": json.dumps(config.app_id),
        "__ALT_CUSTOM_PARAMS__": json.dumps(config.custom_params or {}, sort_keys=True),
    }
    for placeholder, value in replacements.items():
        code = code.replace(placeholder, value)
    return code


def etag_for(body: bytes) -> str:
    return '"' + hashlib.sha256(body).hexdigest() + '"'


def etag_matches(if_none_match: str | None, etag: str) -> bool:
    """If-None-Match comparison (weak, list-aware, with '*')."""
    if not if_none_match:
        return False
    bare = etag.removeprefix("W/")
    for candidate in if_none_match.split(","):
        candidate = candidate.strip()
        if candidate == "*":
            return True
        if candidate.removeprefix("W/") == bare:
            return True
    return False


@dataclass(frozen=True)
class BeaconAsset:
    body: bytes
    etag: str

    @classmethod
    def from_code(cls, code: str) -> "BeaconAsset":
        body = code.encode("utf-8")
        return cls(body=body, etag=etag_for(body))


class BeaconAssets:
    """Rendered JS bundles, computed once per process (per app_id for tenant bundles)."""

    def __init__(self, endpoint: str, version: str, debug: bool = False):
        self.endpoint = endpoint
        self.version = version
        self.debug = debug
        self.tracker = BeaconAsset.from_code(render(self._config()))
        self.tracker_min = BeaconAsset.from_code(render(self._config(minify=True)))
        self.for_app = lru_cache(maxsize=4096)(self._render_for_app)

    def _config(self, **overrides) -> BeaconConfig:
        values = {"endpoint": self.endpoint, "version": self.version, "debug": self.debug}
        values.update(overrides)
        return BeaconConfig(**values)

    def _render_for_app(self, app_id: str) -> BeaconAsset:
        if not is_valid_app_id(app_id):
            raise ValidationFailed("invalid app_id", details={"app_id": app_id})
        return BeaconAsset.from_code(render(self._config(app_id=app_id, minify=True)))

    def generate(
        self,
        app_id: str,
        endpoint: str | None = None,
        debug: bool | None = None,
        minify: bool = False,
        custom_params: dict | None = None,
    ) -> BeaconAsset:
        config = self._config(
            app_id=app_id,
            endpoint=endpoint or self.endpoint,
            debug=self.debug if debug is None else debug,
            minify=minify,
            custom_params=custom_params or {},
        )
        return BeaconAsset.from_code(render(config))
