from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from marketplace.core.config import ProviderConfig
from marketplace.core.exceptions import ConfigurationError
from marketplace.core.security import decode_access_token

security = HTTPBearer(auto_error=False)


def get_optional_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> int | None:
    """Guest checkout is allowed: no token means no user. A bad token is still rejected."""
    if not credentials:
        return None
    payload = decode_access_token(credentials.credentials)
    if not payload or "sub" not in payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token.",
        )
    return int(payload["sub"])


def get_provider_config(request: Request) -> ProviderConfig:
    config = getattr(request.app.state, "provider_config", None)
    if config is None:
        raise ConfigurationError("MITEC provider is not configured")
    return config
