"""Bearer-token dependency resolving the calling principal, if any."""

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from cupfortune.common.logging import owner_id_ctx
from cupfortune.services.identity.service import Principal

bearer_scheme = HTTPBearer(auto_error=False)


def optional_principal(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Principal | None:
    """Return the verified principal, or None for guest callers.

    A token that is present but invalid is rejected with 401 rather than
    treated as a guest.
    """

    if credentials is None or not credentials.credentials:
        return None
    principal = request.app.state.identity.authenticate(credentials.credentials)
    owner_id_ctx.set(principal.user_id)
    return principal
