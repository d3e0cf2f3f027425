"""
Shared-secret authentication for clouddisk-py
"""

import asyncio
import base64
import hmac
import inspect
import logging
from typing import Optional, Tuple
from fastapi import HTTPException, Request
from passlib.context import CryptContext
from starlette.concurrency import run_in_threadpool

from .models import AuthConfig, ApiResponse, ResponseCode

logger = logging.getLogger(__name__)

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

SECRET_HEADER = "X-Cloud-Secret"
SECRET_FIELD = "password"


def hash_password(password: str) -> str:
    """Hash a password using bcrypt"""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str, is_bcrypt: bool = True) -> bool:
    """Verify a password against its hash"""
    if is_bcrypt:
        try:
            return pwd_context.verify(plain_password, hashed_password)
        except ValueError as e:
            logger.error(f"Configured password hash is not usable: {e}")
            return False
    else:
        # Plain text comparison (not recommended for production)
        return hmac.compare_digest(plain_password.encode('utf-8'), hashed_password.encode('utf-8'))


class SecretVerifier:
    """Default credential predicate built from the ``auth`` config section.

    An empty configured password rejects every secret.
    """

    def __init__(self, auth_config: AuthConfig):
        self.update(auth_config)

    def update(self, auth_config: AuthConfig) -> None:
        self.password = auth_config.password
        self.is_bcrypt = auth_config.pass_bcrypt
        if not self.password:
            logger.warning("No password configured, all cloud requests will be rejected")

    def __call__(self, secret: str) -> bool:
        if not self.password or not secret:
            return False
        return verify_password(secret, self.password, self.is_bcrypt)


def parse_basic_auth(authorization: str) -> Optional[Tuple[str, str]]:
    """Parse Basic Auth header"""
    if not authorization.startswith("Basic "):
        return None

    try:
        encoded = authorization[6:]  # Remove "Basic " prefix
        decoded = base64.b64decode(encoded).decode('utf-8')
    except ValueError as e:
        logger.warning(f"Failed to parse Basic Auth header: {e}")
        return None

    if ':' not in decoded:
        return None

    username, password = decoded.split(':', 1)
    return username, password


async def _body_secret(request: Request) -> Optional[str]:
    """``password`` field of a JSON or form body, if there is one"""
    content_type = request.headers.get("content-type", "")

    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            return None
        if isinstance(body, dict) and isinstance(body.get(SECRET_FIELD), str):
            return body[SECRET_FIELD]
        return None

    if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        form = await request.form()
        value = form.get(SECRET_FIELD)
        return value if isinstance(value, str) else None

    return None


async def extract_secret(request: Request) -> Optional[str]:
    """
    Find the shared secret in a request

    Checked in order: the ``X-Cloud-Secret`` header, the password of HTTP
    Basic credentials, the ``password`` query parameter (used by media
    links that cannot set headers) and a ``password`` body field.
    """
    header = request.headers.get(SECRET_HEADER)
    if header:
        return header

    auth_header = request.headers.get("Authorization")
    if auth_header:
        credentials = parse_basic_auth(auth_header)
        if credentials:
            return credentials[1]

    query = request.query_params.get(SECRET_FIELD)
    if query:
        return query

    return await _body_secret(request)


async def check_secret(request: Request, secret: Optional[str]) -> bool:
    """
    Run the app's credential predicate

    Coroutine functions are awaited directly; anything else runs in a
    worker thread and its result is awaited if it turns out to be
    awaitable (an object with an ``async def __call__``). Only ``True``
    grants access.
    """
    if not secret:
        return False

    verify = request.app.state.verify_secret
    if asyncio.iscoroutinefunction(verify):
        result = await verify(secret)
    else:
        result = await run_in_threadpool(verify, secret)
        if inspect.isawaitable(result):
            result = await result
    return result is True


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=401,
        detail=ApiResponse(
            code=ResponseCode.UNAUTHORIZED.value,
            msg="Authentication required",
            data=None
        ).to_dict(),
        headers={"WWW-Authenticate": 'Basic realm="clouddisk"'},
    )


async def require_secret(request: Request) -> None:
    """Dependency to require the shared secret"""
    secret = await extract_secret(request)
    if not await check_secret(request, secret):
        client = request.client.host if request.client else "unknown"
        logger.warning(f"Authentication failed from {client}: {request.method} {request.url.path}")
        raise _unauthorized()


def create_basic_auth_header(username: str, password: str) -> str:
    """Create Basic Auth header value"""
    credentials = f"{username}:{password}"
    encoded = base64.b64encode(credentials.encode('utf-8')).decode('ascii')
    return f"Basic {encoded}"
