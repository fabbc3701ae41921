from __future__ import annotations

from collections.abc import Iterable, Mapping
from urllib.parse import urlsplit


def build_sort_sign_string(params: Mapping[str, object], exclude: Iterable[str] = ("sign",)) -> str:
    skip = set(exclude)
    items: list[tuple[str, str]] = []
    for k, v in params.items():
        if k in skip:
            continue
        items.append((str(k), "" if v is None else str(v)))
    # str 比较按码位排序，不受 locale 影响
    items.sort(key=lambda x: x[0])
    return "&".join([f"{k}={v}" for k, v in items])


def url_path_with_query(url: str) -> str:
    parts = urlsplit(url)
    path = parts.path or "/"
    if parts.query:
        return f"{path}?{parts.query}"
    return path


def build_request_message(method: str, path_with_query: str, timestamp: str | int, nonce: str, body: str | None) -> str:
    return f"{method}\n{path_with_query}\n{timestamp}\n{nonce}\n{body or ''}\n"


def build_notify_message(timestamp: str, nonce: str, body: str | bytes) -> bytes:
    body_bytes = body if isinstance(body, bytes) else body.encode("utf-8")
    return timestamp.encode("utf-8") + b"\n" + nonce.encode("utf-8") + b"\n" + body_bytes + b"\n"


def build_jsapi_pay_message(appid: str, timestamp: str, nonce: str, package: str) -> str:
    return f"{appid}\n{timestamp}\n{nonce}\n{package}\n"
