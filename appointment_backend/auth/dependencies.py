from dataclasses import dataclass

from fastapi import Header, HTTPException, status


@dataclass(frozen=True)
class RequestContext:
    user_id: int
    healthcare_entity_id: int


def _parse_positive_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        parsed = int(value.strip())
    except ValueError:
        return None
    return parsed if parsed > 0 else None


def get_request_context(
    x_user_id: str | None = Header(default=None),
    x_healthcare_entity_id: str | None = Header(default=None),
) -> RequestContext:
    """Identity forwarded by the API gateway after it has authenticated the caller."""
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='User authentication required')

    user_id = _parse_positive_int(x_user_id)
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Invalid user ID')

    if not x_healthcare_entity_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Healthcare entity ID required')

    healthcare_entity_id = _parse_positive_int(x_healthcare_entity_id)
    if healthcare_entity_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Invalid healthcare entity ID')

    return RequestContext(user_id=user_id, healthcare_entity_id=healthcare_entity_id)
