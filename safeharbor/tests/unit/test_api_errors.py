from __future__ import annotations

import pytest

from safeharbor.apps.api.errors import status_for
from safeharbor.core.errors import (
    AlreadyExistsError,
    CollaboratorError,
    ForbiddenError,
    InternalError,
    InvalidActionError,
    LockTimeoutError,
    NotFoundError,
    ReferentialIntegrityError,
    UnauthorizedError,
    ValidationError,
)


@pytest.mark.parametrize(
    ("error", "status_code"),
    [
        (NotFoundError("x"), 400),
        (ValidationError("x"), 400),
        (InvalidActionError("x"), 400),
        (UnauthorizedError("x"), 401),
        (ForbiddenError("x"), 403),
        (AlreadyExistsError("x"), 409),
        (ReferentialIntegrityError("x"), 409),
        (CollaboratorError("x"), 502),
        (LockTimeoutError("x"), 503),
        (InternalError("x"), 500),
    ],
)
def test_error_kinds_map_to_statuses(error, status_code: int) -> None:
    assert status_for(error) == status_code
