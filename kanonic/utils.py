"""
URL, header and auth helpers used by the request pipeline.
"""

from __future__ import annotations

import base64
import re
from collections.abc import Mapping
from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import BaseModel

from .types import Auth, BasicAuth, BearerAuth

_PLACEHOLDER = re.compile(r":([A-Za-z_][A-Za-z0-9_]*)")


def stringify(value: Any) -> str:
    """Render a path/query value the way it appears on the wire."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return stringify(value.value)
    return str(value)


def to_mapping(value: Any) -> dict[str, Any]:
    """Convert validated params/query (model, dataclass or mapping) to a plain dict."""
    if value is None:
        return {}
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True)
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, Mapping):
        return dict(value)
    raise TypeError(f"Expected a mapping for params/query, got {type(value).__name__}")


def build_url(
    base_url: str,
    path: str,
    *,
    params: Mapping[str, Any] | None = None,
    query: Mapping[str, Any] | None = None,
) -> str:
    """
    Resolve an endpoint path against a base URL.

    `:name` placeholders are replaced by the matching non-None entry of
    `params`; placeholders without a value are left as they are. Query values
    that are None are omitted, lists/tuples become repeated keys in order.
    """
    params = params or {}

    def _substitute(match: re.Match[str]) -> str:
        value = params.get(match.group(1))
        if value is None:
            return match.group(0)
        return quote(stringify(value), safe="")

    url = base_url.rstrip("/") + _PLACEHOLDER.sub(_substitute, path)

    pairs: list[tuple[str, str]] = []
    for key, value in (query or {}).items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            pairs.extend((key, stringify(item)) for item in value if item is not None)
        else:
            pairs.append((key, stringify(value)))

    if not pairs:
        return url
    return str(httpx.URL(url).copy_merge_params(pairs))


def build_auth_header(auth: Auth | None) -> dict[str, str]:
    if auth is None:
        return {}
    if isinstance(auth, BearerAuth):
        return {"Authorization": f"Bearer {auth.token}"}
    if isinstance(auth, BasicAuth):
        raw = f"{auth.username}:{auth.password}".encode()
        return {"Authorization": f"Basic {base64.b64encode(raw).decode('ascii')}"}
    raise TypeError(f"Unsupported auth type: {type(auth).__name__}")


def merge_headers(*layers: Mapping[str, str] | None) -> dict[str, str]:
    """
    Merge header layers in ascending priority.

    Header names compare case-insensitively; a later layer replaces an earlier
    entry and its spelling.
    """
    merged: dict[str, str] = {}
    for layer in layers:
        if not layer:
            continue
        for name, value in layer.items():
            for existing in [k for k in merged if k.lower() == name.lower()]:
                del merged[existing]
            merged[name] = value
    return merged
