"""Normalization of generation payloads into ``GeneratedArtifact``.

The backend either sends the multi-file shape
``{manifest, files, assets|sharedAssets, encoded?}`` or the legacy single
page ``{html, css, js, meta?}``. File contents may be base64 encoded; the
``encoded`` flag says so. Flag-less payloads fall back to sniffing, which is
a known weak spot: a long, marker-free plain string whose bytes happen to be
valid base64 of markup would be decoded.
"""
from __future__ import annotations
import base64
import binascii
import logging
from typing import Any, Dict, Optional
from wizardflow.core.errors import BackendError
from wizardflow.schemas.artifact import GeneratedArtifact, SharedAssets

log = logging.getLogger(__name__)

MARKERS = {
    "markup": ("<!DOCTYPE", "<!doctype", "<html", "<head", "<body", "<div", "<section", "<main"),
    "styles": ("/*", "{", "}"),
    "script": ("//", "function", "=>", "const ", "let ", "var ", "document."),
}

# Sniffing only considers strings at least this long.
SNIFF_MIN_LENGTH = 100


def looks_plain(content: str, kind: str = "markup") -> bool:
    return any(marker in content for marker in MARKERS[kind])


def decode_content(content: Any, kind: str = "markup", encoded: Optional[bool] = None) -> Any:
    """Best-effort base64 decoding of one piece of content.

    ``encoded=True``: decode unless the text already shows plain-text markers.
    ``encoded=False``: return untouched.
    ``encoded=None``: decode only a long, marker-free string whose decoded
    form does carry markers.
    Decode failures return the input unchanged.
    """
    if not isinstance(content, str) or not content or encoded is False:
        return content
    if looks_plain(content, kind):
        return content
    if encoded is None and len(content) < SNIFF_MIN_LENGTH:
        return content

    try:
        decoded = base64.b64decode(content, validate=True).decode("utf-8")
    except (binascii.Error, ValueError) as e:
        log.debug("Content is not base64, using as-is: %s", e)
        return content

    if encoded is None and not looks_plain(decoded, kind):
        return content
    return decoded


def _kind_for_path(path: str) -> str:
    if path.endswith(".css"):
        return "styles"
    if path.endswith(".js"):
        return "script"
    return "markup"


def _file_content(value: Any) -> str:
    if isinstance(value, dict):
        return value.get("content") or ""
    return value or ""


def _normalize_multi_file(payload: Dict[str, Any], encoded: Optional[bool]) -> GeneratedArtifact:
    files = {
        path: decode_content(_file_content(value), _kind_for_path(path), encoded)
        for path, value in (payload.get("files") or {}).items()
    }
    assets = payload.get("assets") or payload.get("sharedAssets") or {}
    return GeneratedArtifact(
        manifest=payload.get("manifest") or {},
        files=files,
        shared_assets=SharedAssets(
            styles=decode_content(assets.get("css") or assets.get("styles") or "", "styles", encoded),
            script=decode_content(assets.get("js") or assets.get("script") or "", "script", encoded),
        ),
    )


def _normalize_legacy(payload: Dict[str, Any], encoded: Optional[bool]) -> GeneratedArtifact:
    meta = payload.get("meta") or {}
    title = meta.get("title") or "Home"
    description = meta.get("description") or ""
    keywords = meta.get("keywords") or []
    manifest = {
        "siteName": meta.get("title") or "Website",
        "description": description,
        "pages": [
            {
                "slug": "home",
                "title": title,
                "description": description,
                "sections": [],
                "seo": {"title": title, "description": description, "keywords": keywords},
                "order": 1,
            }
        ],
        "navigation": {
            "type": "header",
            "sticky": True,
            "pages": [{"slug": "home", "label": "Home", "order": 1}],
        },
        "seoStrategy": {"primaryKeywords": keywords, "secondaryKeywords": [], "contentGaps": []},
        "version": "1.0",
    }
    return GeneratedArtifact(
        manifest=manifest,
        files={"pages/home.html": decode_content(payload.get("html") or "", "markup", encoded)},
        shared_assets=SharedAssets(
            styles=decode_content(payload.get("css") or "", "styles", encoded),
            script=decode_content(payload.get("js") or "", "script", encoded),
        ),
    )


def normalize_artifact(payload: Any, encoded: Optional[bool] = None) -> GeneratedArtifact:
    if not isinstance(payload, dict):
        raise BackendError("Invalid website data format received", retryable=False)

    if encoded is None and "encoded" in payload:
        encoded = bool(payload["encoded"])

    if "manifest" in payload and "files" in payload:
        return _normalize_multi_file(payload, encoded)
    if "html" in payload:
        return _normalize_legacy(payload, encoded)
    raise BackendError("Invalid website data format received", retryable=False)
