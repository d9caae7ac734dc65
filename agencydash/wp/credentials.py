# agencydash/wp/credentials.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional

from agencydash.crypto_utils import decrypt_string, encrypt_string

# persisted as <name>_encrypted
_REQUIRED_SECRETS = ("username", "app_password", "shared_secret")
_OPTIONAL_SECRETS = ("ssh_host", "ssh_user", "ssh_key")


def normalize_site_url(url: str) -> str:
    return (url or "").strip().rstrip("/")


@dataclass(frozen=True)
class WordPressCredentials:
    """Decrypted connection details for one site. Lives only for a request."""

    site_url: str
    username: str
    app_password: str
    shared_secret: str
    id: Optional[int] = None
    integration_id: Optional[int] = None
    ssh_host: Optional[str] = None
    ssh_user: Optional[str] = None
    ssh_key: Optional[str] = None
    ssh_port: int = 22
    mu_plugin_installed: bool = False
    mu_plugin_version: Optional[str] = None
    last_health_check: Optional[datetime] = None
    last_health_status: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "site_url", normalize_site_url(self.site_url))

    @property
    def has_ssh(self) -> bool:
        return bool(self.ssh_host and self.ssh_user)

    def __repr__(self) -> str:
        # never print secrets
        return f"WordPressCredentials(site_url={self.site_url!r}, username={self.username!r}, integration_id={self.integration_id!r})"


def encrypt_credentials(creds: WordPressCredentials) -> dict:
    """Return the persisted form: ``<field>_encrypted`` columns plus plain metadata.

    Optional SSH fields are omitted when absent.
    """
    out: dict = {
        "site_url": creds.site_url,
        "ssh_port": creds.ssh_port or 22,
    }
    for name in _REQUIRED_SECRETS:
        out[f"{name}_encrypted"] = encrypt_string(getattr(creds, name))
    for name in _OPTIONAL_SECRETS:
        value = getattr(creds, name)
        if value:
            out[f"{name}_encrypted"] = encrypt_string(value)
    return out


def _get(source: Any, name: str, default=None):
    if isinstance(source, Mapping):
        return source.get(name, default)
    return getattr(source, name, default)


def decrypt_credentials(row: Any) -> WordPressCredentials:
    """Build plaintext credentials from a ``WordPressCredential`` row or its dict form.

    Raises EncryptionError when the vault key is missing or wrong, so callers
    never end up with a client carrying corrupt headers.
    """
    kwargs = {name: decrypt_string(_get(row, f"{name}_encrypted") or "") for name in _REQUIRED_SECRETS}
    for name in _OPTIONAL_SECRETS:
        token = _get(row, f"{name}_encrypted")
        kwargs[name] = decrypt_string(token) if token else None

    return WordPressCredentials(
        site_url=_get(row, "site_url") or "",
        id=_get(row, "id"),
        integration_id=_get(row, "integration_id"),
        ssh_port=_get(row, "ssh_port") or 22,
        mu_plugin_installed=bool(_get(row, "mu_plugin_installed", False)),
        mu_plugin_version=_get(row, "mu_plugin_version"),
        last_health_check=_get(row, "last_health_check"),
        last_health_status=_get(row, "last_health_status"),
        **kwargs,
    )
