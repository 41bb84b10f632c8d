from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt, JWTError

from .config import Settings

bearer_scheme = HTTPBearer(auto_error=False)


def decode_token(token: str, settings: Settings) -> Optional[dict]:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> dict:
    """Resolve the caller from the identity provider's token.

    Tokens are issued elsewhere; the `sub` claim is the user id and is trusted as-is.
    """
    if credentials is None:
        raise HTTPException(status_code=401, detail='Unauthorized')
    claims = decode_token(credentials.credentials, request.app.state.settings)
    if not claims or not claims.get('sub'):
        raise HTTPException(status_code=401, detail='Unauthorized')
    return {'id': str(claims['sub']), 'claims': claims}
