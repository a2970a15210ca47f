"""
Service account token minting for the GA4 Data API.

Builds the RS256-signed JWT assertion for a service account key and trades
it at Google's OAuth 2.0 token endpoint for a short-lived access token.
Every run mints a fresh token; nothing is cached or refreshed.

Example:
  from service_account_token import load_service_account_key, get_access_token

  credentials = load_service_account_key("credentials.json")
  token = get_access_token(credentials)
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import requests
from google.auth import crypt

from ga4_errors import AuthError, CredentialError, EncodingError, NetworkError

TOKEN_URI = "https://oauth2.googleapis.com/token"
ANALYTICS_READONLY_SCOPE = "https://www.googleapis.com/auth/analytics.readonly"
JWT_BEARER_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:jwt-bearer"
TOKEN_LIFETIME_SECONDS = 3600
DEFAULT_TIMEOUT = 30

JWT_HEADER = {"alg": "RS256", "typ": "JWT"}

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceAccountCredentials:
    client_email: str
    private_key: str

    def __repr__(self) -> str:
        return f"ServiceAccountCredentials(client_email={self.client_email!r})"


def load_service_account_key(path: str | Path) -> ServiceAccountCredentials:
    """Read a service account JSON key file.

    Only ``client_email`` and ``private_key`` are used; any other fields
    Google puts in the key file are ignored.
    """
    key_path = Path(path)
    if not key_path.exists():
        raise CredentialError(f"Service account key file not found: {key_path}")

    try:
        data = json.loads(key_path.read_text(encoding="utf-8"))
    except OSError as e:
        raise CredentialError(f"Could not read service account key {key_path}: {e}") from e
    except ValueError as e:
        raise CredentialError(f"Service account key {key_path} is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise CredentialError(f"Service account key {key_path} must be a JSON object")

    missing = [
        field for field in ("client_email", "private_key")
        if not isinstance(data.get(field), str) or not data.get(field)
    ]
    if missing:
        raise CredentialError(
            f"Service account key {key_path} is missing: {', '.join(missing)}"
        )

    logger.debug("Loaded service account key for %s", data["client_email"])
    return ServiceAccountCredentials(
        client_email=data["client_email"],
        private_key=data["private_key"],
    )


def base64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def base64url_decode(text: str) -> bytes:
    text += "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text.encode("ascii"))


def _encode_segment(value: Dict[str, Any]) -> str:
    try:
        raw = json.dumps(value, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise EncodingError(f"Could not serialize JWT segment: {e}") from e
    return base64url_encode(raw)


def build_claims(credentials: ServiceAccountCredentials, now: Optional[int] = None) -> Dict[str, Any]:
    """Claim set for the jwt-bearer grant. ``exp`` is always ``iat + 3600``."""
    if now is None:
        now = int(datetime.now(timezone.utc).timestamp())
    return {
        "iss": credentials.client_email,
        "sub": credentials.client_email,
        "aud": TOKEN_URI,
        "iat": now,
        "exp": now + TOKEN_LIFETIME_SECONDS,
        "scope": ANALYTICS_READONLY_SCOPE,
    }


def _signer_for(credentials: ServiceAccountCredentials) -> crypt.RSASigner:
    try:
        return crypt.RSASigner.from_string(credentials.private_key)
    except (ValueError, TypeError, IndexError) as e:
        raise CredentialError(
            f"Private key for {credentials.client_email} is not a usable RSA key: {e}"
        ) from e


def mint_jwt(credentials: ServiceAccountCredentials, now: Optional[int] = None) -> str:
    """Return ``header.payload.signature`` signed with RS256."""
    signing_input = f"{_encode_segment(JWT_HEADER)}.{_encode_segment(build_claims(credentials, now))}"

    signer = _signer_for(credentials)
    try:
        signature = signer.sign(signing_input.encode("ascii"))
    except (ValueError, TypeError) as e:
        raise CredentialError(
            f"Private key for {credentials.client_email} could not sign the assertion: {e}"
        ) from e

    return f"{signing_input}.{base64url_encode(signature)}"


def decode_jwt_segments(jwt: str) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Decode header and claims of a JWT without verifying the signature."""
    parts = jwt.split(".")
    if len(parts) != 3:
        raise ValueError(f"Expected 3 JWT segments, got {len(parts)}")
    header = json.loads(base64url_decode(parts[0]).decode("utf-8"))
    claims = json.loads(base64url_decode(parts[1]).decode("utf-8"))
    return header, claims


def exchange_for_access_token(jwt: str, timeout: float = DEFAULT_TIMEOUT) -> str:
    """POST the signed assertion to the token endpoint and return the access token."""
    try:
        response = requests.post(
            TOKEN_URI,
            data={"grant_type": JWT_BEARER_GRANT_TYPE, "assertion": jwt},
            timeout=timeout,
        )
    except requests.RequestException as e:
        raise NetworkError(f"Token request failed: {e}", endpoint=TOKEN_URI) from e

    try:
        data = response.json()
    except ValueError:
        raise AuthError(
            f"Token endpoint returned a non-JSON body: {response.text[:200]}",
            endpoint=TOKEN_URI,
            status_code=response.status_code,
            payload=response.text,
        )

    token = data.get("access_token") if isinstance(data, dict) else None
    if not token:
        detail = "no access_token in response"
        if isinstance(data, dict) and "error" in data:
            detail = str(data["error"])
            if data.get("error_description"):
                detail += f": {data['error_description']}"
        raise AuthError(
            f"Token exchange failed ({detail})",
            endpoint=TOKEN_URI,
            status_code=response.status_code,
            payload=data,
        )

    if data.get("expires_in"):
        logger.debug("Access token issued, expires in %s seconds", data["expires_in"])
    return token


def get_access_token(
    credentials: ServiceAccountCredentials,
    timeout: float = DEFAULT_TIMEOUT,
    log_claims: bool = False,
) -> str:
    """Mint a fresh assertion and exchange it. ``log_claims`` logs the decoded claims, never the signature."""
    jwt = mint_jwt(credentials)
    if log_claims:
        _, claims = decode_jwt_segments(jwt)
        logger.info("JWT claims: %s", {k: claims.get(k) for k in ("iss", "sub", "aud", "scope", "iat", "exp")})

    logger.info("Requesting access token for %s", credentials.client_email)
    return exchange_for_access_token(jwt, timeout=timeout)
