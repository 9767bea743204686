"""Error taxonomy and HTTP mapping tests."""

from vitality.errors import ConflictError, NotFoundError, PersistenceError, ProgressError, ValidationError
from vitality.middleware.error_handler import status_for


class TestErrorTaxonomy:
    """Test error classes."""

    def test_all_errors_share_base(self):
        for cls in (NotFoundError, ValidationError, ConflictError, PersistenceError):
            assert issubclass(cls, ProgressError)

    def test_validation_error_is_value_error(self):
        assert issubclass(ValidationError, ValueError)

    def test_to_dict_carries_context(self):
        err = NotFoundError("User 5 not found", user_id=5)
        assert err.to_dict() == {"error": "NotFoundError", "detail": "User 5 not found", "user_id": 5}


class TestStatusMapping:
    """Test HTTP status per error type."""

    def test_not_found(self):
        assert status_for(NotFoundError("x")) == 404

    def test_validation(self):
        assert status_for(ValidationError("x")) == 422

    def test_conflict(self):
        assert status_for(ConflictError("x")) == 409

    def test_persistence(self):
        assert status_for(PersistenceError("x")) == 503

    def test_base_error_is_500(self):
        assert status_for(ProgressError("x")) == 500
