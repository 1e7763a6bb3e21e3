import pytest
from fastapi import HTTPException

from appointment_backend.auth.dependencies import RequestContext, get_request_context


def test_get_request_context_parses_gateway_headers() -> None:
    context = get_request_context(x_user_id=' 12 ', x_healthcare_entity_id='3')

    assert context == RequestContext(user_id=12, healthcare_entity_id=3)


@pytest.mark.parametrize(
    ('user_id', 'entity_id', 'status_code', 'detail'),
    [
        (None, '3', 401, 'User authentication required'),
        ('', '3', 401, 'User authentication required'),
        ('abc', '3', 401, 'Invalid user ID'),
        ('0', '3', 401, 'Invalid user ID'),
        ('12', None, 400, 'Healthcare entity ID required'),
        ('12', 'clinic', 400, 'Invalid healthcare entity ID'),
        ('12', '-4', 400, 'Invalid healthcare entity ID'),
    ],
)
def test_get_request_context_rejects_missing_or_invalid_headers(
    user_id: str | None,
    entity_id: str | None,
    status_code: int,
    detail: str,
) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_request_context(x_user_id=user_id, x_healthcare_entity_id=entity_id)

    assert exception_info.value.status_code == status_code
    assert exception_info.value.detail == detail
