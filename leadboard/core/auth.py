from dataclasses import dataclass

from jose import JWTError, jwt
from starlette.requests import Request

from leadboard.core.config import get_settings


@dataclass
class AuthUser:
    sub: str
    roles: list[str]


async def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""

    if not token:
        return AuthUser(sub="anonymous", roles=[])

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return AuthUser(sub="anonymous", roles=[])

    subject = str(payload.get("sub", "anonymous"))
    roles = payload.get("roles", ["sales_staff"])
    if not isinstance(roles, list):
        roles = ["sales_staff"]
    return AuthUser(sub=subject, roles=[str(role) for role in roles])
