"""Authentication middleware - admin JWT for the dashboard, shared token for webhooks."""

import hmac
from datetime import datetime, timedelta

from fastapi import Header, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from leadengine.config import settings

security = HTTPBearer(auto_error=False)

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_HOURS = 24


def create_admin_token(email: str) -> str:
    """Create a JWT token for admin access."""
    expire = datetime.utcnow() + timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS)
    payload = {"sub": email, "exp": expire, "type": "admin"}
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def verify_admin_token(credentials: HTTPAuthorizationCredentials = Security(security)) -> str:
    """Verify admin JWT token. Returns admin email."""
    if not credentials:
        raise HTTPException(status_code=401, detail="Authentication required")
    try:
        payload = jwt.decode(credentials.credentials, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    email = payload.get("sub")
    if not email or payload.get("type") != "admin":
        raise HTTPException(status_code=401, detail="Invalid token")
    return email


async def verify_webhook_token(
    x_webhook_token: str | None = Header(None, description="Shared secret, required only when configured"),
) -> None:
    """Intake webhooks are open unless a shared token is configured."""
    if not settings.webhook_token:
        return
    if not x_webhook_token or not hmac.compare_digest(x_webhook_token, settings.webhook_token):
        raise HTTPException(status_code=401, detail="Invalid webhook token")
