import logging
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from promptops.schemas.auth import TokenData
from promptops.core.config import settings
from promptops.core.exceptions import ForbiddenError

logger = logging.getLogger(__name__)

security = HTTPBearer()

def decode_access_token(token: str) -> dict:
    """Decode a Supabase access token"""
    if not settings.jwt_verify_signature:
        return jwt.get_unverified_claims(token)
    return jwt.decode(
        token,
        settings.jwt_secret_key,
        algorithms=[settings.jwt_algorithm],
        # Supabase sets aud=authenticated; the issuer project is trusted by key
        options={"verify_aud": False}
    )

async def verify_token(credentials: HTTPAuthorizationCredentials = Depends(security)) -> TokenData:
    """Verify JWT token and return user data"""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_access_token(credentials.credentials)
    except JWTError as e:
        logger.warning(f"⚠️ JWT decode failed: {e}")
        raise credentials_exception

    user_id = payload.get("sub")
    if not user_id:
        raise credentials_exception

    return TokenData(user_id=user_id, email=payload.get("email") or "")

async def get_current_user(token_data: TokenData = Depends(verify_token)) -> TokenData:
    """Get current authenticated user"""
    return token_data

async def require_admin(current_user: TokenData = Depends(get_current_user)) -> TokenData:
    """Only users listed in ADMIN_USER_IDS may pass"""
    if current_user.user_id not in settings.admin_user_ids:
        logger.warning(f"⚠️ Admin access denied for user {current_user.user_id}")
        raise ForbiddenError("Admin access required")
    return current_user
