import logging
import time

import jwt

from .exceptions import AuthTokenError

logger = logging.getLogger(__name__)

TOKEN_ALGORITHM = "HS256"


def get_auth_token(user_id: str, jwt_secret: str) -> str:
    """
    Issues a signed bearer token for user_id. The API identifies the user
    from the 'uid' claim.
    Raises AuthTokenError if the user id or secret is missing or signing fails.
    """
    if not user_id:
        raise AuthTokenError("A user id is required to issue an auth token.")
    if not jwt_secret:
        raise AuthTokenError(
            "No JWT secret configured. Set RULE_HANDLER_JWT_SECRET or pass --jwt-secret."
        )
    payload = {"uid": user_id, "iat": int(time.time())}
    try:
        token = jwt.encode(payload, jwt_secret, algorithm=TOKEN_ALGORITHM)
    except jwt.PyJWTError as e:
        logger.error(f"Failed to sign auth token for user {user_id}: {e}", exc_info=True)
        raise AuthTokenError(f"Could not sign auth token: {e}", original_exception=e)
    logger.debug(f"Issued auth token for user {user_id}.")
    return token
