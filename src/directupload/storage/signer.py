"""AWS Signature Version 4 for S3-compatible storage.

Implements the two presigning flavours browsers need:

* query-string signing, used for PUT/POST/DELETE URLs that a client calls
  without any further credentials;
* POST policy signing, used for HTML form uploads.

Everything here is a pure function of (credentials, request description,
time). Invalid input is a programming error and raises ``ValueError``.
"""

import base64
import hashlib
import hmac
import json
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Mapping
from urllib.parse import parse_qsl, quote, unquote, urlsplit

ALGORITHM = "AWS4-HMAC-SHA256"
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"
SERVICE = "s3"
TERMINATOR = "aws4_request"

# SigV4 presigned URLs may live at most 7 days
MAX_EXPIRES_IN = 7 * 24 * 60 * 60


@dataclass(frozen=True)
class Credentials:
    """Access key pair scoped to one region."""

    access_key_id: str
    secret_access_key: str
    region: str
    session_token: str | None = None
    service: str = SERVICE

    def __post_init__(self) -> None:
        if not self.access_key_id or not self.secret_access_key:
            raise ValueError("Credentials require an access key id and a secret access key")
        if not self.region:
            raise ValueError("Credentials require a region")


def to_amz_date(now: datetime) -> str:
    """Format a timestamp as ``YYYYMMDDTHHMMSSZ``."""
    return _as_utc(now).strftime("%Y%m%dT%H%M%SZ")


def to_datestamp(now: datetime) -> str:
    """Format a timestamp as ``YYYYMMDD``."""
    return _as_utc(now).strftime("%Y%m%d")


def credential_scope(datestamp: str, region: str, service: str = SERVICE) -> str:
    return f"{datestamp}/{region}/{service}/{TERMINATOR}"


def to_amz_credential(credentials: Credentials, now: datetime) -> str:
    """Build ``<access key>/<date>/<region>/<service>/aws4_request``."""
    scope = credential_scope(to_datestamp(now), credentials.region, credentials.service)
    return f"{credentials.access_key_id}/{scope}"


def uri_encode(value: str, safe: str = "-_.~") -> str:
    """Percent-encode per RFC 3986, leaving only unreserved characters."""
    return quote(value, safe=safe)


def encode_path(path: str) -> str:
    """Canonical S3 path: every segment encoded once, slashes preserved."""
    return uri_encode(unquote(path), safe="/-_.~") or "/"


def _hmac(key: bytes, value: str) -> bytes:
    return hmac.new(key, value.encode("utf-8"), hashlib.sha256).digest()


def derive_signing_key(
    secret: str, datestamp: str, region: str, service: str = SERVICE
) -> bytes:
    """Derive the scoped signing key.

    Four chained HMAC-SHA256 operations seeded with ``"AWS4" + secret``:
    date stamp, region, service and the literal ``aws4_request``.
    """
    k_date = _hmac(f"AWS4{secret}".encode("utf-8"), datestamp)
    k_region = _hmac(k_date, region)
    k_service = _hmac(k_region, service)
    return _hmac(k_service, TERMINATOR)


def canonical_query_string(params: Iterable[tuple[str, str]]) -> str:
    """Encode every pair and sort by key, then value."""
    encoded = sorted((uri_encode(key), uri_encode(value)) for key, value in params)
    return "&".join(f"{key}={value}" for key, value in encoded)


def canonical_headers(headers: Mapping[str, str]) -> tuple[str, str]:
    """Return the canonical header block and the signed header list.

    Names are lower-cased, values trimmed with inner whitespace collapsed,
    and every line (the last included) ends with a newline.
    """
    normalized = {
        name.strip().lower(): " ".join(str(value).split()) for name, value in headers.items()
    }
    names = sorted(normalized)
    block = "".join(f"{name}:{normalized[name]}\n" for name in names)
    return block, ";".join(names)


def canonical_request(
    method: str,
    path: str,
    query: str,
    headers_block: str,
    signed_headers: str,
    payload_hash: str,
) -> str:
    return "\n".join(
        [method.upper(), path, query, headers_block, signed_headers, payload_hash]
    )


def string_to_sign(amz_date: str, scope: str, request: str) -> str:
    digest = hashlib.sha256(request.encode("utf-8")).hexdigest()
    return "\n".join([ALGORITHM, amz_date, scope, digest])


def _as_utc(now: datetime) -> datetime:
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def _check_expires_in(expires_in: Any) -> int:
    if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)):
        raise ValueError(f"expires_in must be a number of seconds, got {expires_in!r}")
    if not math.isfinite(expires_in) or expires_in <= 0:
        raise ValueError(f"expires_in must be finite and positive, got {expires_in!r}")
    if expires_in > MAX_EXPIRES_IN:
        raise ValueError(f"expires_in cannot exceed {MAX_EXPIRES_IN} seconds")
    return int(expires_in)


def _compute_signature(
    credentials: Credentials,
    method: str,
    path: str,
    params: list[tuple[str, str]],
    headers: Mapping[str, str],
    amz_date: str,
    payload_hash: str,
) -> str:
    headers_block, signed_headers = canonical_headers(headers)
    request = canonical_request(
        method,
        path,
        canonical_query_string(params),
        headers_block,
        signed_headers,
        payload_hash,
    )
    datestamp = amz_date[:8]
    scope = credential_scope(datestamp, credentials.region, credentials.service)
    key = derive_signing_key(
        credentials.secret_access_key, datestamp, credentials.region, credentials.service
    )
    return hmac.new(
        key, string_to_sign(amz_date, scope, request).encode("utf-8"), hashlib.sha256
    ).hexdigest()


def sign_query_url(
    method: str,
    url: str,
    credentials: Credentials,
    *,
    expires_in: int,
    headers: Mapping[str, str] | None = None,
    now: datetime | None = None,
) -> str:
    """Presign ``url`` for ``method`` by embedding the signature in the query.

    Every query parameter already present on ``url`` and every header in
    ``headers`` (plus ``host``) is covered by the signature, so the caller of
    the URL must send exactly those headers with exactly those values.

    Args:
        method: HTTP method the URL will be used with
        url: Absolute URL, may already carry query parameters
        credentials: Key pair and region to sign with
        expires_in: Validity window in seconds
        headers: Extra headers to bind into the signature
        now: Signing time, defaults to the current UTC time

    Returns:
        The signed URL
    """
    expires_in = _check_expires_in(expires_in)
    now = _as_utc(now or datetime.now(timezone.utc))
    amz_date = to_amz_date(now)

    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"Cannot sign a relative URL: {url!r}")
    path = encode_path(parts.path)

    params = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key not in ("X-Amz-Expires", "X-Amz-Signature")
    ]
    payload_hash = dict(params).get("X-Amz-Content-Sha256", UNSIGNED_PAYLOAD)

    signing_headers = {"host": parts.netloc.lower()}
    for name, value in (headers or {}).items():
        if name.lower() != "host":
            signing_headers[name.lower()] = value
    _, signed_headers = canonical_headers(signing_headers)

    params.extend(
        [
            ("X-Amz-Algorithm", ALGORITHM),
            ("X-Amz-Credential", to_amz_credential(credentials, now)),
            ("X-Amz-Date", amz_date),
            ("X-Amz-Expires", str(expires_in)),
            ("X-Amz-SignedHeaders", signed_headers),
        ]
    )
    if credentials.session_token:
        params.append(("X-Amz-Security-Token", credentials.session_token))

    signature = _compute_signature(
        credentials, method, path, params, signing_headers, amz_date, payload_hash
    )
    query = canonical_query_string(params)
    return f"{parts.scheme}://{parts.netloc}{path}?{query}&X-Amz-Signature={signature}"


def verify_presigned_url(
    url: str,
    credentials: Credentials,
    method: str,
    *,
    headers: Mapping[str, str] | None = None,
    now: datetime | None = None,
) -> bool:
    """Recompute the signature of a query-signed URL and check its expiry.

    ``headers`` are the headers the request would carry; every header named
    in ``X-Amz-SignedHeaders`` other than ``host`` must be present.
    """
    parts = urlsplit(url)
    params = parse_qsl(parts.query, keep_blank_values=True)
    query = dict(params)

    signature = query.get("X-Amz-Signature")
    amz_date = query.get("X-Amz-Date")
    expires = query.get("X-Amz-Expires")
    signed_header_names = query.get("X-Amz-SignedHeaders")
    if not signature or not amz_date or not expires or not signed_header_names:
        return False

    try:
        issued_at = datetime.strptime(amz_date, "%Y%m%dT%H%M%SZ").replace(tzinfo=timezone.utc)
        expires_in = int(expires)
    except ValueError:
        return False
    now = _as_utc(now or datetime.now(timezone.utc))
    if now > issued_at + timedelta(seconds=expires_in) or now < issued_at - timedelta(minutes=15):
        return False

    if query.get("X-Amz-Credential") != to_amz_credential(credentials, issued_at):
        return False

    provided = {name.lower(): value for name, value in (headers or {}).items()}
    provided["host"] = parts.netloc.lower()
    signing_headers = {}
    for name in signed_header_names.split(";"):
        if name not in provided:
            return False
        signing_headers[name] = provided[name]

    unsigned_params = [(key, value) for key, value in params if key != "X-Amz-Signature"]
    expected = _compute_signature(
        credentials,
        method,
        encode_path(parts.path),
        unsigned_params,
        signing_headers,
        amz_date,
        query.get("X-Amz-Content-Sha256", UNSIGNED_PAYLOAD),
    )
    return hmac.compare_digest(expected, signature)


def build_post_policy(
    conditions: list[Any], *, expires_in: int, now: datetime
) -> dict[str, Any]:
    """Build a POST policy document.

    Conditions may be exact matches (``{"key": "a.jpg"}`` or
    ``["eq", "$key", "a.jpg"]``), prefix matches
    (``["starts-with", "$key", "uploads/"]``) or size ranges
    (``["content-length-range", 0, 1024]``).
    """
    expires_in = _check_expires_in(expires_in)
    expiration = _as_utc(now) + timedelta(seconds=expires_in)
    return {
        "expiration": expiration.strftime("%Y-%m-%dT%H:%M:%S.")
        + f"{expiration.microsecond // 1000:03d}Z",
        "conditions": list(conditions),
    }


def sign_post_policy(
    conditions: list[Any],
    credentials: Credentials,
    *,
    expires_in: int,
    now: datetime | None = None,
) -> dict[str, str]:
    """Sign a POST policy and return the signature form fields.

    The algorithm, credential, date (and session token) conditions are
    appended to ``conditions`` so that storage accepts the matching form
    fields. The base64 policy itself is what gets signed.

    Returns:
        ``Policy``, ``X-Amz-Algorithm``, ``X-Amz-Credential``, ``X-Amz-Date``,
        ``X-Amz-Signature`` and, with a session token, ``X-Amz-Security-Token``
    """
    now = _as_utc(now or datetime.now(timezone.utc))
    amz_date = to_amz_date(now)
    amz_credential = to_amz_credential(credentials, now)

    signed_conditions = list(conditions) + [
        {"x-amz-algorithm": ALGORITHM},
        {"x-amz-credential": amz_credential},
        {"x-amz-date": amz_date},
    ]
    if credentials.session_token:
        signed_conditions.append({"x-amz-security-token": credentials.session_token})

    policy = build_post_policy(signed_conditions, expires_in=expires_in, now=now)
    encoded_policy = base64.b64encode(
        json.dumps(policy, separators=(",", ":")).encode("utf-8")
    ).decode("ascii")

    key = derive_signing_key(
        credentials.secret_access_key, to_datestamp(now), credentials.region, credentials.service
    )
    signature = hmac.new(key, encoded_policy.encode("utf-8"), hashlib.sha256).hexdigest()

    fields = {
        "Policy": encoded_policy,
        "X-Amz-Algorithm": ALGORITHM,
        "X-Amz-Credential": amz_credential,
        "X-Amz-Date": amz_date,
    }
    if credentials.session_token:
        fields["X-Amz-Security-Token"] = credentials.session_token
    fields["X-Amz-Signature"] = signature
    return fields
