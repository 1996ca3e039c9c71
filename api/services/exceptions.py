from __future__ import annotations


class ContractServiceError(Exception):
    """Base class for errors raised by the contract pipeline."""


class ValidationError(ContractServiceError):
    """Upload or request rejected before anything is persisted."""


class UnsupportedMediaTypeError(ValidationError):
    pass


class PayloadTooLargeError(ValidationError):
    pass


class EmptyUploadError(ValidationError):
    pass


class NotFoundError(ContractServiceError):
    """No row matches the (id, owner) pair."""


class ExternalServiceError(ContractServiceError):
    """An extractor or email transport call failed."""


class ExtractorError(ExternalServiceError):
    pass


class ExtractorTimeoutError(ExtractorError):
    pass


class EmailDeliveryError(ExternalServiceError):
    pass


class EmailTimeoutError(EmailDeliveryError):
    pass


class StorageError(ContractServiceError):
    """Database or object storage failure."""
