"""
Data Wallet Core

Identities, the BCS codec, and the clients for the policy registry,
encryption gateway, session authorization and blob storage.
"""

from .errors import (
    DataWalletError,
    ConfigError,
    ResourceNotFound,
    TransactionFailed,
    ConfirmationTimeout,
    Unauthorized,
    Expired,
    PlaintextMismatch,
    TransportError,
    BlobNotFound,
    UploadFailed,
    ObjectNotFound,
    DecryptionFailed,
)
from .identity import Identity, verify_personal_message, verify_transaction
from .policy import PolicyRegistry, PolicyTuple, PolicyObjectType, Whitelist
from .session import KeyRequest, SessionCredential, SessionAuthorization, SessionAuthorizationBuilder
from .encryption import EncryptedObject, EncryptionGateway, EncryptionResult
from .storage import BlobStorageClient, combine, split
from .pipeline import Pipeline, PipelineReport, Step, StepResult, StepStatus

__all__ = [
    # Errors
    "DataWalletError",
    "ConfigError",
    "ResourceNotFound",
    "TransactionFailed",
    "ConfirmationTimeout",
    "Unauthorized",
    "Expired",
    "PlaintextMismatch",
    "TransportError",
    "BlobNotFound",
    "UploadFailed",
    "ObjectNotFound",
    "DecryptionFailed",
    # Identity
    "Identity",
    "verify_personal_message",
    "verify_transaction",
    # Policy
    "PolicyRegistry",
    "PolicyTuple",
    "PolicyObjectType",
    "Whitelist",
    # Sessions
    "KeyRequest",
    "SessionCredential",
    "SessionAuthorization",
    "SessionAuthorizationBuilder",
    # Encryption
    "EncryptedObject",
    "EncryptionGateway",
    "EncryptionResult",
    # Storage
    "BlobStorageClient",
    "combine",
    "split",
    # Pipeline
    "Pipeline",
    "PipelineReport",
    "Step",
    "StepResult",
    "StepStatus",
]
