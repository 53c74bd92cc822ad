class VaultError(Exception):
    """Base class for every failure the vault and resolver report."""

    kind = "VaultError"


class ValidationError(VaultError):
    kind = "ValidationError"


class NotFound(VaultError):
    kind = "NotFound"


class CredentialNotFound(NotFound):
    kind = "CredentialNotFound"


class VaultNotInitialized(VaultError):
    kind = "VaultNotInitialized"


class DecryptionError(VaultError):
    """Tag mismatch or malformed blob. The message never says which."""

    kind = "DecryptionError"


class KeyProvisionError(VaultError):
    kind = "KeyProvisionError"


class NoKeyAvailable(VaultError):
    kind = "NoKeyAvailable"


class AuthCancelled(NoKeyAvailable):
    kind = "AuthCancelled"


class EnvVarMissing(VaultError):
    kind = "EnvVarMissing"


class UnknownSource(VaultError):
    kind = "UnknownSource"


class PersistenceError(VaultError):
    kind = "PersistenceError"


ERROR_KINDS = {
    cls.kind: cls
    for cls in (
        VaultError,
        ValidationError,
        NotFound,
        CredentialNotFound,
        VaultNotInitialized,
        DecryptionError,
        KeyProvisionError,
        NoKeyAvailable,
        AuthCancelled,
        EnvVarMissing,
        UnknownSource,
        PersistenceError,
    )
}
