"""Errors raised by the OCI registry client.

None of these are retried by the client, they abort the current push or pull.

ref: https://github.com/opencontainers/distribution-spec/blob/main/spec.md#error-codes
"""
from __future__ import annotations


class OCIError(Exception):
    """Base class for all errors raised by ocidist."""


class ValidationError(OCIError, ValueError):
    """Raised when a repository name, tag or digest is malformed.

    Always raised before a request is sent.
    """


class AuthenticationError(OCIError):
    """Raised when authentication fails."""


class ProtocolError(OCIError):
    """Raised when the registry deviates from the distribution API contract.

    This covers unexpected status codes, missing required headers and
    manifests with a missing or unknown media type.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        status_code: int | None = None,
        name: str | None = None,
        reference: str | None = None,
        errors: list[dict] | None = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code
        self.name = name
        self.reference = reference
        self.errors = errors or []

    @property
    def codes(self) -> list[str]:
        """The OCI error codes returned by the registry, if any."""
        return [error["code"] for error in self.errors if "code" in error]

    def __str__(self):
        message = super().__str__()
        context = [
            f"{key}={value}"
            for key, value in (
                ("operation", self.operation),
                ("name", self.name),
                ("reference", self.reference),
                ("status", self.status_code),
            )
            if value is not None
        ]
        if self.codes:
            context.append(f"codes={','.join(self.codes)}")
        if context:
            return f"{message} ({', '.join(context)})"
        return message


class IntegrityError(OCIError):
    """Raised when content does not match the digest or size it was addressed by."""

    def __init__(
        self,
        message: str,
        *,
        expected: str,
        actual: str,
        expected_size: int | None = None,
        actual_size: int | None = None,
    ):
        super().__init__(message)
        self.expected = expected
        self.actual = actual
        self.expected_size = expected_size
        self.actual_size = actual_size
