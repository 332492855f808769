"""
Tests for the exception hierarchy and how failures render.
"""

from botocore.exceptions import ClientError

from dynorm.exceptions import (
    ConstraintViolation,
    DynormError,
    MissingIndexValueError,
    StoreError,
    UniqueConstraintViolation,
    ValidationError,
)


class TestDynormError:
    """Test cases for error rendering."""

    def test_plain_message(self):
        """Test an error without details."""
        assert str(DynormError("boom")) == "boom"

    def test_validation_errors_listed(self):
        """Test that each validator error is rendered on its own line."""
        error = ValidationError("User failed validation", errors=[
            {'path': 'loginCount', 'message': "'many' is not of type 'integer'", 'validator': 'type'},
            {'path': '', 'message': "'id' is a required property", 'validator': 'required'},
        ])

        assert str(error) == (
            "User failed validation\n"
            "  - loginCount: 'many' is not of type 'integer'\n"
            "  - <root>: 'id' is a required property"
        )
        assert error.validation_errors == error.errors

    def test_unique_values_rendered(self):
        """Test that the colliding index values appear in the message."""
        error = UniqueConstraintViolation("email-index", {'email': 'a@x.com'})

        assert str(error) == (
            "Unique index constraint email-index "
            "[index='email-index', values={'email': 'a@x.com'}]"
        )

    def test_index_details_rendered(self):
        """Test the missing index value details."""
        error = MissingIndexValueError("badge-index", "season", "rangeKey")

        assert "season" in str(error)
        assert "index='badge-index'" in str(error)

    def test_cause_named(self):
        """Test that the wrapped boto3 error is named."""
        original = ClientError({'Error': {'Code': 'ConditionalCheckFailedException', 'Message': 'no'}}, 'PutItem')

        error = ConstraintViolation("Conditional check failed", original_error=original)

        assert error.original_error is original
        assert str(error).endswith("(caused by ClientError)")

    def test_store_error_code(self):
        """Test that store error codes are kept as details."""
        error = StoreError("ValidationException - Query on users: bad", 'ValidationException')

        assert error.code == 'ValidationException'
        assert error.context == {'code': 'ValidationException'}
        assert isinstance(error, DynormError)
