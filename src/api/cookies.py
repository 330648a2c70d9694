"""
Auth cookie handling.

The token travels in an HttpOnly cookie whose Max-Age matches the token
lifetime. Logout replaces it with an already-expired one.
"""
from typing import Optional

from fastapi import Request, Response

from ..auth.types import IssuedToken
from ..utils.settings import CookieSettings


def set_auth_cookie(response: Response, token: IssuedToken, cookie: CookieSettings) -> None:
    response.set_cookie(
        key=cookie.name,
        value=token.token,
        max_age=token.max_age,
        path=cookie.path,
        domain=cookie.domain,
        secure=cookie.secure,
        httponly=True,
        samesite=cookie.same_site,
    )


def clear_auth_cookie(response: Response, cookie: CookieSettings) -> None:
    response.set_cookie(
        key=cookie.name,
        value="",
        max_age=0,
        expires=0,
        path=cookie.path,
        domain=cookie.domain,
        secure=cookie.secure,
        httponly=True,
        samesite=cookie.same_site,
    )


def read_auth_cookie(request: Request, cookie: CookieSettings) -> Optional[str]:
    return request.cookies.get(cookie.name) or None
