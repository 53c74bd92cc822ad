from typing import Dict, List
from fastapi import APIRouter, HTTPException
from credvault.client import Result, VaultClient
from credvault.core.errors import VaultError
from credvault.models import ConfigPayload, ExtractResponse, ValidateResponse, VaultStatus

router = APIRouter()

_client: VaultClient | None = None

STATUS_CODES = {
    "NoKeyAvailable": 423,
    "AuthCancelled": 423,
    "VaultNotInitialized": 409,
    "DecryptionError": 401,
    "ValidationError": 400,
    "CredentialNotFound": 404,
    "NotFound": 404,
}


def get_client() -> VaultClient:
    global _client
    if _client is None:
        _client = VaultClient.from_settings()
    return _client


def swap_client(client: VaultClient | None) -> VaultClient | None:
    """
    Replace the process-wide client (e.g. after changing the vault directory).
    """
    global _client
    _client = client
    return _client


def _unwrap(result: Result):
    if result.ok:
        return result.value
    raise HTTPException(status_code=STATUS_CODES.get(result.kind or "", 500), detail=result.error)


# --- Vault ---
@router.get("/vault/status", response_model=VaultStatus)
async def vault_status():
    client = get_client()
    legacy_entries = None
    if client.legacy is not None:
        try:
            legacy_entries = len(client.legacy.list())
        except VaultError:
            legacy_entries = None
    return VaultStatus(
        initialized=client.vault.exists(),
        keychain=await client.vault.key_provider.has_key(),
        path=str(client.vault.path),
        legacy_entries=legacy_entries,
    )


@router.get("/vault/credentials")
async def list_credentials() -> Dict[str, List[str]]:
    client = get_client()
    try:
        return {"credentials": await client.vault.list_credentials()}
    except VaultError as exc:
        raise HTTPException(status_code=STATUS_CODES.get(exc.kind, 500), detail=str(exc))


# --- Placeholders (never return resolved values) ---
@router.post("/placeholders/extract", response_model=ExtractResponse)
async def extract_placeholders(payload: ConfigPayload):
    found = _unwrap(await get_client().extract_placeholders(payload.config))
    return ExtractResponse(placeholders=sorted(found))


@router.post("/placeholders/validate", response_model=ValidateResponse)
async def validate_placeholders(payload: ConfigPayload):
    client = get_client()
    found = _unwrap(await client.extract_placeholders(payload.config))
    missing = _unwrap(await client.validate_credentials(payload.config))
    return ValidateResponse(ready=not missing, missing=missing, placeholders=sorted(found))
