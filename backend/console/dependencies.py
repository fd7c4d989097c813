from fastapi import Request

from .errors import AuthError
from .schemas.caller import Caller
from .services.access_service import AccessService


def get_access_service(request: Request) -> AccessService:
    return request.app.state.access_service


def get_caller(request: Request) -> Caller:
    """Identity placed on the request by the authentication layer.

    Token validation happens before the request reaches the handlers; this
    only reads its result.
    """
    caller = getattr(request.state, "caller", None)
    if not isinstance(caller, Caller):
        raise AuthError()
    return caller
