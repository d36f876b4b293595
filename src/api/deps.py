"""FastAPI dependency injection functions."""

import hmac
from typing import Annotated

from fastapi import Depends, Header

from src.api.middleware.error_handler import AuthenticationError, ServiceUnavailableError
from src.core.config import get_settings


async def require_internal_key(
    x_internal_key: Annotated[str | None, Header(description="Internal API key")] = None,
) -> None:
    """Guard internal fulfillment endpoints.

    Args:
        x_internal_key: The X-Internal-Key header value.

    Raises:
        ServiceUnavailableError: 503 if no internal key is configured.
        AuthenticationError: 401 if the header is missing or wrong.
    """
    expected = get_settings().internal_api_key
    if not expected:
        raise ServiceUnavailableError("Internal API key not configured")
    if not x_internal_key or not hmac.compare_digest(x_internal_key.encode(), expected.encode()):
        raise AuthenticationError("Invalid or missing internal API key")


# Type alias for cleaner dependency injection
InternalKey = Annotated[None, Depends(require_internal_key)]
