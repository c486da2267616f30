"""DigitalOcean provider: droplets and account SSH keys via the v2 REST API."""

import logging

from agenthost.provisioning.capabilities import ProviderError
from agenthost.provisioning.rest import api_request
from agenthost.provisioning.types import CloudServer, CloudSSHKey

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.digitalocean.com/v2"
TOKEN_ENV_VAR = "DIGITALOCEAN_TOKEN"


def droplet_payload(name, region, size, image, ssh_key_ids, user_data=None):
    """Build the POST /droplets body.

    DigitalOcean accepts numeric key ids or fingerprints, so ids that look
    numeric are sent as integers.
    """
    data = {
        "name": name,
        "region": region,
        "size": size,
        "image": image,
        "backups": False,
        "ipv6": True,
        "monitoring": False,
    }
    if ssh_key_ids:
        data["ssh_keys"] = [int(k) if str(k).isdigit() else k for k in ssh_key_ids]
    if user_data:
        data["user_data"] = user_data
    return data


def _public_ipv4(droplet):
    for net in droplet.get("networks", {}).get("v4", []):
        if net.get("type") == "public":
            return net.get("ip_address")
    return None


def parse_droplet(droplet) -> CloudServer:
    try:
        return CloudServer(
            id=str(droplet["id"]),
            name=droplet.get("name", ""),
            status=droplet.get("status", ""),
            public_address=_public_ipv4(droplet),
            region=(droplet.get("region") or {}).get("slug", ""),
        )
    except (KeyError, TypeError) as e:
        raise ProviderError(f"Unexpected droplet payload: {e}") from e


def parse_ssh_key(key) -> CloudSSHKey:
    try:
        return CloudSSHKey(
            id=str(key["id"]),
            name=key.get("name", ""),
            public_key=key.get("public_key", ""),
            fingerprint=key.get("fingerprint", ""),
        )
    except (KeyError, TypeError) as e:
        raise ProviderError(f"Unexpected SSH key payload: {e}") from e


class DigitalOceanProvider:
    """CloudProvider backed by the DigitalOcean API."""

    provider_type = "digitalocean"

    def __init__(self, api_token, api_url=DEFAULT_API_URL):
        self.api_token = api_token
        self.api_url = api_url

    async def create_server(self, name, region, size, image, ssh_key_ids, user_data):
        data = droplet_payload(name, region, size, image, ssh_key_ids, user_data)
        result = await api_request("POST", f"{self.api_url}/droplets", self.api_token, data, action="create server")
        return parse_droplet(result.get("droplet", {}))

    async def get_server(self, server_id):
        result = await api_request(
            "GET", f"{self.api_url}/droplets/{server_id}", self.api_token, action="fetch server", allow_not_found=True
        )
        if result is None:
            return None
        return parse_droplet(result.get("droplet", {}))

    async def list_ssh_keys(self):
        result = await api_request(
            "GET", f"{self.api_url}/account/keys", self.api_token, params={"per_page": 200}, action="fetch SSH keys"
        )
        return [parse_ssh_key(k) for k in result.get("ssh_keys", [])]

    async def add_ssh_key(self, name, public_key):
        data = {"name": name, "public_key": public_key}
        result = await api_request("POST", f"{self.api_url}/account/keys", self.api_token, data, action="add SSH key")
        return parse_ssh_key(result.get("ssh_key", {}))
