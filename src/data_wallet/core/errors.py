"""
Data Wallet Errors

Error taxonomy shared by the policy registry, encryption gateway,
session builder and blob storage clients.
"""

from typing import Optional


class DataWalletError(Exception):
    """Base class for all data wallet errors"""


class ConfigError(DataWalletError):
    """Configuration is missing or malformed"""


class ResourceNotFound(DataWalletError):
    """
    An expected on-chain object is missing from transaction effects.

    The transaction was accepted, so chain state is ambiguous. Callers
    must surface this rather than retry.
    """

    def __init__(self, object_type: str, digest: Optional[str] = None):
        self.object_type = object_type
        self.digest = digest
        where = f" in effects of {digest}" if digest else ""
        super().__init__(f"No created object of type {object_type}{where}")


class TransactionFailed(DataWalletError):
    """A transaction executed but its effects report failure"""

    def __init__(self, digest: Optional[str], reason: str):
        self.digest = digest
        self.reason = reason
        super().__init__(f"Transaction {digest or '<unknown>'} failed: {reason}")


class ConfirmationTimeout(DataWalletError):
    """A transaction was not observable before the polling deadline"""

    def __init__(self, digest: str, timeout: float, attempts: int):
        self.digest = digest
        self.timeout = timeout
        self.attempts = attempts
        super().__init__(
            f"Transaction {digest} not confirmed after {attempts} polls ({timeout:.1f}s)"
        )


class Unauthorized(DataWalletError):
    """Decryption refused: the address is not authorized for the data id"""


class Expired(DataWalletError):
    """The session credential outlived its time-to-live"""


class PlaintextMismatch(DataWalletError):
    """Decrypted bytes differ from the bytes that were encrypted"""


class TransportError(DataWalletError):
    """A remote service could not be reached or answered with an error"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class BlobNotFound(TransportError):
    """The storage network has no blob with the requested id"""

    def __init__(self, blob_id: str):
        self.blob_id = blob_id
        super().__init__(f"Blob {blob_id} not found", status_code=404)


class UploadFailed(DataWalletError):
    """Every upload attempt failed"""

    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Blob upload failed after {attempts} attempts: {last_error}")


class ObjectNotFound(DataWalletError):
    """The chain has no object with the requested id"""

    def __init__(self, object_id: str):
        self.object_id = object_id
        super().__init__(f"Object {object_id} does not exist")


class DecryptionFailed(DataWalletError):
    """Key material was released but the ciphertext did not authenticate"""
