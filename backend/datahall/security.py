import base64
import hashlib
import hmac
import json
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Union

from datahall.config import settings


def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    hashed = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), 200_000)
    return f"{salt}${hashed.hex()}"


def verify_password(password: str, password_hash: str) -> bool:
    try:
        salt, _ = password_hash.split("$", 1)
    except ValueError:
        return False
    expected = hash_password(password, salt)
    return hmac.compare_digest(expected, password_hash)


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode((data + padding).encode("ascii"))


def _sign(signing_input: bytes, secret: str) -> str:
    return _b64url_encode(hmac.new(secret.encode("utf-8"), signing_input, hashlib.sha256).digest())


def encode_token(payload: Dict[str, Any], expires_in: timedelta, secret: Optional[str] = None) -> str:
    now = datetime.now(timezone.utc)
    expiry = now + expires_in

    token_payload = dict(payload)
    token_payload.update({"exp": int(expiry.timestamp()), "iat": int(now.timestamp())})

    header = {"alg": "HS256", "typ": "JWT"}
    encoded_header = _b64url_encode(json.dumps(header, separators=(",", ":")).encode("utf-8"))
    encoded_payload = _b64url_encode(json.dumps(token_payload, separators=(",", ":")).encode("utf-8"))
    signing_input = f"{encoded_header}.{encoded_payload}".encode("ascii")
    return f"{encoded_header}.{encoded_payload}.{_sign(signing_input, secret or settings.jwt_secret_key)}"


def decode_token(token: str, secret: Optional[str] = None) -> Dict[str, Any]:
    try:
        encoded_header, encoded_payload, encoded_signature = token.split(".")
    except ValueError as exc:
        raise ValueError("Malformed token") from exc

    signing_input = f"{encoded_header}.{encoded_payload}".encode("ascii")
    if not hmac.compare_digest(_sign(signing_input, secret or settings.jwt_secret_key), encoded_signature):
        raise ValueError("Invalid token signature")

    payload = json.loads(_b64url_decode(encoded_payload).decode("utf-8"))
    exp = payload.get("exp")
    if not isinstance(exp, int):
        raise ValueError("Invalid token payload")

    if datetime.now(timezone.utc).timestamp() > exp:
        raise ValueError("Token expired")

    return payload


def create_access_token(payload: Dict[str, Union[str, int]], expire_minutes: Optional[int] = None) -> str:
    return encode_token(payload, timedelta(minutes=expire_minutes or settings.jwt_expire_minutes))


def decode_access_token(token: str) -> Dict[str, Union[str, int]]:
    payload = decode_token(token)
    if payload.get("typ") == "file":
        raise ValueError("File tokens cannot authenticate users")
    return payload
