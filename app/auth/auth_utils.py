# app/auth/auth_utils.py
from typing import Optional

from fastapi import Header, HTTPException, WebSocket
from jose import jwt, JWTError

from app.config import JWT_SECRET_KEY, JWT_ALGORITHM


class TokenError(Exception):
    """Raised when a socket handshake token is missing or invalid"""


def _decode_jwt_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or Expired Token")


def verify_lum_token(authorization: str = Header(None)) -> dict:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized")

    token = authorization.split(" ", 1)[1]
    payload = _decode_jwt_token(token)
    if not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Token has no subject")
    return payload


def extract_ws_token(websocket: WebSocket) -> Optional[str]:
    auth = websocket.headers.get("authorization")
    if auth and auth.lower().startswith("bearer "):
        return auth.split(" ", 1)[1]
    return websocket.query_params.get("token")


def verify_lum_token_ws(token: Optional[str]) -> dict:
    if not token:
        raise TokenError("Unauthorized")
    try:
        payload = jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        raise TokenError("Invalid or Expired Token") from e
    if not payload.get("sub"):
        raise TokenError("Token has no subject")
    return payload


def is_platform_admin(payload: dict) -> bool:
    return payload.get("role") == "admin"
