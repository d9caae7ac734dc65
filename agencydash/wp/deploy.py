# agencydash/wp/deploy.py
"""Install the companion plugin into wp-content/mu-plugins/ over SSH."""
from __future__ import annotations

import io
import logging
import os
import shlex
from typing import List, Optional
from urllib.parse import urlparse

import paramiko

from agencydash.wp.companion import CONNECTOR_FILENAME
from agencydash.wp.credentials import WordPressCredentials

logger = logging.getLogger(__name__)

SSH_CONNECT_TIMEOUT = 10
COMMAND_TIMEOUT = 30

MANUAL_INSTRUCTIONS = (
    f"Upload {CONNECTOR_FILENAME} to wp-content/mu-plugins/ on the server "
    "(create the folder if it does not exist), then reload diagnostics."
)

_KEY_CLASSES = (paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey)


def _result(success: bool, method: str, message: str) -> dict:
    return {"success": success, "method": method, "message": message}


def _load_private_key(key_text: str) -> paramiko.PKey:
    last_err: Optional[Exception] = None
    for cls in _KEY_CLASSES:
        try:
            return cls.from_private_key(io.StringIO(key_text))
        except paramiko.SSHException as e:
            last_err = e
    raise paramiko.SSHException(f"Unsupported or invalid private key: {last_err}")


def _connect(client: paramiko.SSHClient, creds: WordPressCredentials, timeout: int) -> None:
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    connect_kwargs = {
        "hostname": creds.ssh_host,
        "username": creds.ssh_user,
        "port": creds.ssh_port or 22,
        "timeout": timeout,
    }
    if creds.ssh_key:
        if "PRIVATE KEY" in creds.ssh_key:
            connect_kwargs["pkey"] = _load_private_key(creds.ssh_key)
        else:
            connect_kwargs["key_filename"] = creds.ssh_key

    client.connect(**connect_kwargs)


def _run(client: paramiko.SSHClient, command: str) -> str:
    _, stdout, _ = client.exec_command(command, timeout=COMMAND_TIMEOUT)
    out = stdout.read().decode("utf-8", errors="replace")
    stdout.channel.recv_exit_status()
    return out


def candidate_paths(site_url: str) -> List[str]:
    host = urlparse(site_url).hostname or ""
    return [
        f"/var/www/{host}/public_html",
        f"/var/www/{host}/htdocs",
        "/var/www/html",
        f"/home/{host}/public_html",
        f"/var/www/{host}",
    ]


def detect_wordpress_root(client: paramiko.SSHClient, site_url: str) -> Optional[str]:
    """Directory holding wp-config.php, or None."""
    found = _run(client, "find /var/www /home -maxdepth 5 -name wp-config.php 2>/dev/null | head -5").strip()
    if found:
        first = found.splitlines()[0].strip()
        if first:
            return os.path.dirname(first)

    for path in candidate_paths(site_url):
        check = _run(client, f"test -f {shlex.quote(path + '/wp-config.php')} && echo found").strip()
        if check == "found":
            return path
    return None


def deploy_mu_plugin(
    credentials: WordPressCredentials,
    plugin_source: Optional[str],
    *,
    ssh_factory=paramiko.SSHClient,
    timeout: int = SSH_CONNECT_TIMEOUT,
) -> dict:
    """Copy the connector into mu-plugins. Returns ``{success, method, message}``; never raises."""
    if not credentials.has_ssh:
        return _result(False, "manual", "SSH credentials not provided. " + MANUAL_INSTRUCTIONS)

    if not plugin_source or not os.path.isfile(plugin_source):
        logger.warning("Companion plugin source not found at %r", plugin_source)
        return _result(False, "manual", "Plugin file is not available on this server. " + MANUAL_INSTRUCTIONS)

    with open(plugin_source, "rb") as fh:
        payload = fh.read()

    client = ssh_factory()
    try:
        _connect(client, credentials, timeout)
        root = detect_wordpress_root(client, credentials.site_url)
        if not root:
            return _result(False, "ssh", "Could not detect the WordPress installation path on the server.")

        mu_dir = f"{root}/wp-content/mu-plugins"
        target = f"{mu_dir}/{CONNECTOR_FILENAME}"
        _run(client, f"mkdir -p {shlex.quote(mu_dir)}")

        sftp = client.open_sftp()
        try:
            sftp.putfo(io.BytesIO(payload), target)
            sftp.chmod(target, 0o644)
        finally:
            sftp.close()

        logger.info("Deployed %s to %s:%s", CONNECTOR_FILENAME, credentials.ssh_host, target)
        return _result(True, "ssh", f"Companion plugin deployed to {target}.")
    except (paramiko.SSHException, OSError) as e:
        logger.error("SSH deploy to %s failed: %s", credentials.ssh_host, e)
        return _result(False, "ssh", f"SSH deployment failed: {e}. {MANUAL_INSTRUCTIONS}")
    finally:
        client.close()
