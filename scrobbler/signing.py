"""
Request signing for the Last.fm 2.0 web service.

Last.fm authenticates write calls with an `api_sig` parameter: the MD5 of
every parameter (except `format` and `api_sig` itself) concatenated as
`name + value` in sorted-name order, followed by the shared secret.
"""

from __future__ import annotations
import hashlib
from typing import Mapping
from urllib.parse import quote

_UNSIGNED = ("format", "api_sig")

# Lone surrogates (e.g. tags decoded with surrogateescape) encode as-is, and
# the signature and the body see the same bytes.
ENCODING_ERRORS = "surrogatepass"


def sign(params: Mapping[str, str], secret: str) -> str:
    """Return the lowercase hex MD5 signature for `params`."""
    payload = "".join(
        f"{k}{params[k]}" for k in sorted(params) if k not in _UNSIGNED
    )
    payload += secret
    return hashlib.md5(payload.encode("utf-8", ENCODING_ERRORS)).hexdigest()


def url_encode(value: str) -> str:
    # Unreserved set only; '/' and spaces are escaped too
    return quote(value, safe="-_.~", encoding="utf-8", errors=ENCODING_ERRORS)


def encode_body(params: Mapping[str, str]) -> str:
    """Form-encode `params` in sorted key order."""
    return "&".join(f"{k}={url_encode(params[k])}" for k in sorted(params))
