from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from jose import JWTError, jwt
from starlette.requests import Request

from booking_api.core.config import get_settings


@dataclass
class OperatorUser:
    """Internal operator calling system endpoints. Business contacts never authenticate."""

    sub: str
    roles: list[str]


async def get_operator(request: Request) -> OperatorUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""

    if not token:
        return OperatorUser(sub="anonymous", roles=[])

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return OperatorUser(sub="anonymous", roles=[])

    roles = payload.get("roles", [])
    if not isinstance(roles, list):
        roles = []
    return OperatorUser(sub=str(payload.get("sub", "anonymous")), roles=[str(role) for role in roles])


def require_roles(*roles: str):
    async def checker(operator: OperatorUser = Depends(get_operator)) -> OperatorUser:
        missing = [role for role in roles if role not in operator.roles]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permissions: {', '.join(missing)}",
            )
        return operator

    return checker
