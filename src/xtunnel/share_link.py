"""
Share link conversion.

A converter turns a share link into an envelope of the form::

    {"success": true, "data": {"outbounds": [ {...}, ... ]}}

``parse_outbounds`` validates that envelope and returns clean outbound
dicts. ``BuiltinShareLinkConverter`` understands the common
``vless://``, ``vmess://``, ``trojan://`` and ``ss://`` formats.
"""

import base64
import binascii
import json
from typing import Any, Mapping, Optional, Protocol, Union
from urllib.parse import parse_qs, unquote, urlsplit

from .core.logging import get_logger
from .errors import InvalidShareLink, TunnelError, UpstreamParseFailure


logger = get_logger(__name__)

NULL_PLACEHOLDER = "<null>"

Envelope = Union[Mapping[str, Any], str, bytes]


class ShareLinkConverter(Protocol):
    """Anything that can turn a share link into a conversion envelope."""

    def convert(self, share_link: str) -> Envelope:
        ...


def strip_placeholders(value: Any) -> Any:
    """
    Recursively drop ``None`` and ``"<null>"`` values.

    Converters written against loosely typed runtimes emit these for unset
    fields; the proxy core rejects them.
    """
    if isinstance(value, Mapping):
        return {
            k: strip_placeholders(v)
            for k, v in value.items()
            if v is not None and v != NULL_PLACEHOLDER
        }
    if isinstance(value, list):
        return [
            strip_placeholders(v)
            for v in value
            if v is not None and v != NULL_PLACEHOLDER
        ]
    return value


def _decode_envelope(raw: Envelope) -> Mapping[str, Any]:
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (ValueError, UnicodeDecodeError) as e:
            raise UpstreamParseFailure(f"Converter output is not JSON: {e}") from e
    if not isinstance(raw, Mapping) or "success" not in raw:
        raise UpstreamParseFailure("Converter output is not a conversion envelope")
    return raw


def parse_outbounds(converter: ShareLinkConverter, share_link: Optional[str]) -> list[dict[str, Any]]:
    """
    Convert ``share_link`` and return its outbound descriptors.

    Raises:
        InvalidShareLink: empty link, rejected link, or no outbounds
        UpstreamParseFailure: converter output of unexpected shape
    """
    if share_link is None or not share_link.strip():
        raise InvalidShareLink("Share link is empty")

    try:
        raw = converter.convert(share_link.strip())
    except TunnelError:
        raise
    except Exception as e:
        raise UpstreamParseFailure(f"Converter failed: {e}") from e

    envelope = _decode_envelope(raw)

    if not envelope.get("success"):
        reason = envelope.get("error") or "converter rejected the link"
        raise InvalidShareLink(f"Invalid share link: {reason}")

    data = envelope.get("data")
    if not isinstance(data, Mapping):
        raise UpstreamParseFailure("Conversion envelope has no data object")

    outbounds = data.get("outbounds")
    if outbounds is None or outbounds == []:
        raise InvalidShareLink("Share link produced no outbounds")
    if not isinstance(outbounds, list) or not all(isinstance(o, Mapping) for o in outbounds):
        raise UpstreamParseFailure("Outbounds must be a list of objects")

    cleaned = strip_placeholders(outbounds)
    for outbound in cleaned:
        if not isinstance(outbound.get("protocol"), str):
            raise UpstreamParseFailure("Outbound is missing its protocol")
    return cleaned


class LinkFormatError(ValueError):
    """A share link could not be decoded."""


def _b64decode(data: str) -> str:
    data = data.strip().replace("-", "+").replace("_", "/")
    data += "=" * (-len(data) % 4)
    try:
        return base64.b64decode(data).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise LinkFormatError(f"bad base64 payload: {e}") from e


def _first(params: dict[str, list[str]], key: str, default: str = "") -> str:
    return params.get(key, [default])[0]


def _port(value: Any) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError) as e:
        raise LinkFormatError(f"bad port: {value!r}") from e
    if not 1 <= port <= 65535:
        raise LinkFormatError(f"port out of range: {port}")
    return port


def _stream_settings(
    network: str,
    security: str,
    host: str,
    path: str,
    sni: str,
    params: dict[str, list[str]],
) -> dict[str, Any]:
    network = network or "tcp"
    stream: dict[str, Any] = {"network": network}

    if security == "tls":
        tls: dict[str, Any] = {"serverName": sni or host or None}
        if alpn := _first(params, "alpn"):
            tls["alpn"] = alpn.split(",")
        if fp := _first(params, "fp"):
            tls["fingerprint"] = fp
        if _first(params, "allowInsecure") in ("1", "true"):
            tls["allowInsecure"] = True
        stream["security"] = "tls"
        stream["tlsSettings"] = tls
    elif security == "reality":
        stream["security"] = "reality"
        stream["realitySettings"] = {
            "serverName": sni or None,
            "fingerprint": _first(params, "fp", "chrome"),
            "publicKey": _first(params, "pbk"),
            "shortId": _first(params, "sid"),
            "spiderX": _first(params, "spx") or None,
        }
    elif security not in ("", "none"):
        raise LinkFormatError(f"unsupported security: {security}")

    if network == "ws":
        stream["wsSettings"] = {"path": path or "/", "headers": {"Host": host} if host else None}
    elif network == "grpc":
        stream["grpcSettings"] = {
            "serviceName": _first(params, "serviceName") or path,
            "multiMode": _first(params, "mode") == "multi" or None,
        }
    elif network == "httpupgrade":
        stream["httpupgradeSettings"] = {"path": path or "/", "host": host or None}
    elif network == "tcp":
        if _first(params, "headerType") == "http":
            stream["tcpSettings"] = {
                "header": {
                    "type": "http",
                    "request": {"path": [path or "/"], "headers": {"Host": [host]} if host else None},
                }
            }
    else:
        raise LinkFormatError(f"unsupported transport: {network}")

    return stream


def _split_userinfo_link(link: str, scheme: str) -> tuple[str, str, int, dict[str, list[str]], str]:
    parts = urlsplit(link)
    if parts.scheme != scheme or not parts.hostname or "@" not in parts.netloc:
        raise LinkFormatError(f"malformed {scheme} link")
    user = unquote(parts.username or "")
    if not user:
        raise LinkFormatError(f"{scheme} link has no credentials")
    try:
        port = parts.port
    except ValueError as e:
        raise LinkFormatError(str(e)) from e
    return user, parts.hostname, _port(port), parse_qs(parts.query), unquote(parts.fragment)


class BuiltinShareLinkConverter:
    """Converts common share-link formats into proxy core outbounds."""

    def convert(self, share_link: str) -> dict[str, Any]:
        outbounds = []
        try:
            for line in share_link.splitlines():
                line = line.strip()
                if line:
                    outbounds.append(self.convert_one(line))
        except LinkFormatError as e:
            logger.warning("Share link rejected", error=str(e))
            return {"success": False, "error": str(e)}

        return {"success": True, "data": {"outbounds": outbounds}}

    def convert_one(self, link: str) -> dict[str, Any]:
        scheme = link.split("://", 1)[0].lower() if "://" in link else ""
        handler = {
            "vless": self._vless,
            "vmess": self._vmess,
            "trojan": self._trojan,
            "ss": self._shadowsocks,
        }.get(scheme)
        if handler is None:
            raise LinkFormatError(f"unsupported scheme: {scheme or link[:16]!r}")
        return handler(link)

    def _vless(self, link: str) -> dict[str, Any]:
        uuid, host, port, params, _ = _split_userinfo_link(link, "vless")
        return {
            "protocol": "vless",
            "settings": {
                "vnext": [{
                    "address": host,
                    "port": port,
                    "users": [{
                        "id": uuid,
                        "encryption": _first(params, "encryption", "none"),
                        "flow": _first(params, "flow") or None,
                        "level": 0,
                    }],
                }]
            },
            "streamSettings": _stream_settings(
                _first(params, "type", "tcp"),
                _first(params, "security"),
                _first(params, "host"),
                unquote(_first(params, "path")),
                _first(params, "sni"),
                params,
            ),
        }

    def _vmess(self, link: str) -> dict[str, Any]:
        try:
            node = json.loads(_b64decode(link[len("vmess://"):]))
        except ValueError as e:
            raise LinkFormatError(f"malformed vmess payload: {e}") from e
        if not isinstance(node, dict) or not node.get("add") or not node.get("id"):
            raise LinkFormatError("vmess payload lacks address or id")

        params = {k: [str(v)] for k, v in node.items() if v not in (None, "")}
        return {
            "protocol": "vmess",
            "settings": {
                "vnext": [{
                    "address": node["add"],
                    "port": _port(node.get("port")),
                    "users": [{
                        "id": node["id"],
                        "alterId": int(node.get("aid") or 0),
                        "security": node.get("scy") or "auto",
                        "level": 0,
                    }],
                }]
            },
            "streamSettings": _stream_settings(
                node.get("net") or "tcp",
                node.get("tls") or "",
                node.get("host") or "",
                node.get("path") or "",
                node.get("sni") or "",
                params,
            ),
        }

    def _trojan(self, link: str) -> dict[str, Any]:
        password, host, port, params, _ = _split_userinfo_link(link, "trojan")
        return {
            "protocol": "trojan",
            "settings": {
                "servers": [{"address": host, "port": port, "password": password, "level": 0}]
            },
            "streamSettings": _stream_settings(
                _first(params, "type", "tcp"),
                _first(params, "security", "tls"),
                _first(params, "host"),
                unquote(_first(params, "path")),
                _first(params, "sni") or host,
                params,
            ),
        }

    def _shadowsocks(self, link: str) -> dict[str, Any]:
        body = link[len("ss://"):]
        body = body.partition("#")[0]
        body = body.split("?", 1)[0].rstrip("/")

        if "@" in body:
            userinfo, _, server = body.rpartition("@")
            userinfo = unquote(userinfo)
            if ":" not in userinfo:
                userinfo = _b64decode(userinfo)
        else:
            userinfo, _, server = _b64decode(body).rpartition("@")

        method, sep, password = userinfo.partition(":")
        host, _, port = server.rpartition(":")
        if not sep or not method or not host:
            raise LinkFormatError("malformed ss link")

        return {
            "protocol": "shadowsocks",
            "settings": {
                "servers": [{
                    "address": host.strip("[]"),
                    "port": _port(port),
                    "method": method,
                    "password": password,
                    "level": 0,
                }]
            },
        }
