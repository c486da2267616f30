"""Map local SSH keys onto a provider's key inventory."""

import logging
import os

from agenthost.provisioning.capabilities import CloudProvider
from agenthost.provisioning.types import LocalSSHKey

logger = logging.getLogger(__name__)

UPLOADED_KEY_SUFFIX = "(agenthost)"


def uploaded_key_name(key: LocalSSHKey) -> str:
    return f"{key.name} {UPLOADED_KEY_SUFFIX}"


def load_local_ssh_key(private_key_path) -> LocalSSHKey:
    """Read ``<private_key_path>.pub`` into a LocalSSHKey named after the file.

    Raises:
        ValueError: if the public key file is missing or empty.
    """
    private_key_path = os.path.expanduser(private_key_path)
    pub_key_path = f"{private_key_path}.pub"
    try:
        with open(pub_key_path) as f:
            public_key = f.read().strip()
    except FileNotFoundError as e:
        raise ValueError(f"Public key '{pub_key_path}' not found") from e
    if not public_key:
        raise ValueError(f"Public key '{pub_key_path}' is empty")
    return LocalSSHKey(
        name=os.path.basename(private_key_path),
        public_key=public_key,
        private_key_path=private_key_path,
    )


async def reconcile_ssh_keys(local_keys: list[LocalSSHKey], provider: CloudProvider) -> list[str]:
    """Return the provider-side key ids to create the VM with.

    Keys already registered (same public key text, ignoring surrounding
    whitespace) are reused; others are uploaded. Two local keys matching the
    same remote key both contribute its id. Provider errors propagate: a
    failure here must stop creation before anything is ordered.
    """
    keys = [k for k in local_keys if k.normalized_public_key]
    if not keys:
        return []

    existing = list(await provider.list_ssh_keys())
    key_ids = []
    for key in keys:
        match = next((r for r in existing if r.public_key.strip() == key.normalized_public_key), None)
        if match is not None:
            logger.info(f"SSH key '{key.name}' already registered (id={match.id}).")
            key_ids.append(match.id)
            continue

        name = uploaded_key_name(key)
        logger.info(f"Registering SSH key '{name}'...")
        uploaded = await provider.add_ssh_key(name, key.normalized_public_key)
        logger.info(f"SSH key registered (id={uploaded.id}).")
        existing.append(uploaded)
        key_ids.append(uploaded.id)

    return key_ids
