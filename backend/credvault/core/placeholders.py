"""
${{source:key}} placeholder resolution over JSON-like trees.

    ${{vault:gmail_password}}   credential from the vault
    ${{env:API_KEY}}            process environment (or the mapping passed in)
    ${{value:https://x}}        literal text, for non-secret settings
    ${{gmail_email}}            shorthand for vault:gmail_email
"""

import logging
import os
import re
from typing import Any, List, Mapping, Optional, Protocol, Set

from credvault.core.errors import EnvVarMissing, UnknownSource
from credvault.models import PlaceholderToken

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\$\{\{([^}]+)\}\}")
SOURCES = ("vault", "env", "value")


class CredentialSource(Protocol):
    async def get_credential(self, name: str) -> str: ...

    async def has_credential(self, name: str) -> bool: ...


def parse_token(ref: str) -> PlaceholderToken:
    source, sep, key = ref.partition(":")
    if not sep:
        return PlaceholderToken(source="vault", key=ref.strip())
    return PlaceholderToken(source=source.strip(), key=key.strip())


def has_placeholders(value: Any) -> bool:
    return isinstance(value, str) and PLACEHOLDER_PATTERN.search(value) is not None


class PlaceholderResolver:
    def __init__(self, vault: CredentialSource, env: Optional[Mapping[str, str]] = None):
        self.vault = vault
        self.env = os.environ if env is None else env

    async def resolve_token(self, token: PlaceholderToken) -> str:
        if token.source == "vault":
            return await self.vault.get_credential(token.key)
        if token.source == "env":
            value = self.env.get(token.key)
            if not value:
                raise EnvVarMissing(f"Environment variable not found: {token.key}")
            return value
        if token.source == "value":
            return token.key
        raise UnknownSource(f"Unknown placeholder source: {token.source}")

    async def resolve_string(self, text: str) -> str:
        matches = list(PLACEHOLDER_PATTERN.finditer(text))
        if not matches:
            return text
        parts = []
        last = 0
        for match in matches:
            token = parse_token(match.group(1))
            logger.debug("Resolving %s", token.identifier)
            parts.append(text[last:match.start()])
            parts.append(await self.resolve_token(token))
            last = match.end()
        parts.append(text[last:])
        return "".join(parts)

    async def resolve(self, node: Any) -> Any:
        """
        Return a resolved copy of `node`. Dict keys are left alone, non-string
        scalars pass through. Any failing token aborts the whole call.
        """
        if isinstance(node, str):
            return await self.resolve_string(node)
        if isinstance(node, dict):
            return {k: await self.resolve(v) for k, v in node.items()}
        if isinstance(node, list):
            return [await self.resolve(item) for item in node]
        if isinstance(node, tuple):
            return tuple([await self.resolve(item) for item in node])
        return node

    def extract_placeholders(self, node: Any, extracted: Optional[Set[str]] = None) -> Set[str]:
        if extracted is None:
            extracted = set()
        if isinstance(node, str):
            for match in PLACEHOLDER_PATTERN.finditer(node):
                extracted.add(parse_token(match.group(1)).identifier)
        elif isinstance(node, dict):
            for value in node.values():
                self.extract_placeholders(value, extracted)
        elif isinstance(node, (list, tuple)):
            for item in node:
                self.extract_placeholders(item, extracted)
        return extracted

    async def validate_credentials(self, node: Any) -> List[str]:
        """
        Missing requirements without resolving anything: bare names for vault
        credentials, "env:NAME" for unset variables, the full identifier for
        unknown sources. value: tokens are never missing.
        """
        missing = []
        for identifier in sorted(self.extract_placeholders(node)):
            token = parse_token(identifier)
            if token.source == "vault":
                if not await self.vault.has_credential(token.key):
                    missing.append(token.key)
            elif token.source == "env":
                if not self.env.get(token.key):
                    missing.append(identifier)
            elif token.source not in SOURCES:
                missing.append(identifier)
        return missing


async def resolve_placeholders(config: Any, vault: CredentialSource, env: Optional[Mapping[str, str]] = None) -> Any:
    return await PlaceholderResolver(vault, env).resolve(config)
