import json

import pytest
from psycopg import errors as pg_errors

from backend.app.main import db_error_response


@pytest.mark.parametrize(
    "exc_type,status_code,detail",
    [
        (pg_errors.UniqueViolation, 409, "document number already in use"),
        (pg_errors.NotNullViolation, 400, "missing required value"),
        (pg_errors.CheckViolation, 400, "constraint violation"),
        (pg_errors.RaiseException, 409, "audit log is append-only"),
    ],
)
def test_db_errors_map_to_client_errors(exc_type, status_code, detail):
    resp = db_error_response(exc_type("boom"))
    assert resp.status_code == status_code
    assert json.loads(resp.body)["detail"] == detail


def test_unmapped_db_error_is_reraised():
    with pytest.raises(pg_errors.DeadlockDetected):
        db_error_response(pg_errors.DeadlockDetected("deadlock"))
