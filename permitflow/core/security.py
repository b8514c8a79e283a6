from datetime import datetime, timedelta
from typing import Optional, Union

from jose import JWTError, jwt

from permitflow.core.auth import AuthContext, Role
from permitflow.core.config import get_settings
from permitflow.core.errors import AuthenticationError


def create_access_token(
    user_id: str,
    role: Union[Role, str],
    expires_delta: Optional[timedelta] = None
) -> str:
    """Create a JWT access token carrying the caller's id and role."""
    settings = get_settings()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.access_token_expire_minutes)
    
    to_encode = {
        "sub": str(user_id),
        "role": role.value if isinstance(role, Role) else str(role),
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> AuthContext:
    """
    Decode a bearer token into an AuthContext.
    
    Raises:
        AuthenticationError: If the token is invalid, expired or has no subject
    """
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        raise AuthenticationError("Could not validate credentials")
    
    if payload.get("type") != "access":
        raise AuthenticationError("Could not validate credentials")
    
    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Could not validate credentials")
    
    return AuthContext.from_claims(user_id, payload.get("role"))
