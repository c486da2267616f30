"""Hetzner Cloud provider: servers and SSH keys via the v1 REST API."""

import logging

from agenthost.provisioning.capabilities import ProviderError
from agenthost.provisioning.rest import api_request
from agenthost.provisioning.types import CloudServer, CloudSSHKey

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.hetzner.cloud/v1"
TOKEN_ENV_VAR = "HCLOUD_TOKEN"


def server_payload(name, region, size, image, ssh_key_ids, user_data=None):
    """Build the POST /servers body.

    Hetzner calls the size ``server_type`` and the region ``location``, and
    only accepts numeric key ids.
    """
    data = {
        "name": name,
        "server_type": size,
        "image": image,
        "start_after_create": True,
    }
    if region:
        data["location"] = region
    key_ids = [int(k) for k in ssh_key_ids if str(k).isdigit()]
    if key_ids:
        data["ssh_keys"] = key_ids
    if user_data:
        data["user_data"] = user_data
    return data


def parse_server(server) -> CloudServer:
    try:
        ipv4 = (server.get("public_net") or {}).get("ipv4") or {}
        location = ((server.get("datacenter") or {}).get("location") or {}).get("name", "")
        return CloudServer(
            id=str(server["id"]),
            name=server.get("name", ""),
            status=server.get("status", ""),
            public_address=ipv4.get("ip"),
            region=location,
        )
    except (KeyError, TypeError, AttributeError) as e:
        raise ProviderError(f"Unexpected server payload: {e}") from e


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


class HetznerProvider:
    """CloudProvider backed by the Hetzner Cloud API."""

    provider_type = "hetzner"

    def __init__(self, api_token, api_url=DEFAULT_API_URL):
        self.api_token = api_token
        self.api_url = api_url

    async def create_server(self, name, region, size, image, ssh_key_ids, user_data):
        data = server_payload(name, region, size, image, ssh_key_ids, user_data)
        result = await api_request("POST", f"{self.api_url}/servers", self.api_token, data, action="create server")
        return parse_server(result.get("server", {}))

    async def get_server(self, server_id):
        result = await api_request(
            "GET", f"{self.api_url}/servers/{server_id}", self.api_token, action="fetch server", allow_not_found=True
        )
        if result is None:
            return None
        return parse_server(result.get("server", {}))

    async def list_ssh_keys(self):
        result = await api_request(
            "GET", f"{self.api_url}/ssh_keys", self.api_token, params={"per_page": 50}, action="fetch SSH keys"
        )
        return [parse_ssh_key(k) for k in result.get("ssh_keys", [])]

    async def add_ssh_key(self, name, public_key):
        data = {"name": name, "public_key": public_key}
        result = await api_request("POST", f"{self.api_url}/ssh_keys", self.api_token, data, action="add SSH key")
        return parse_ssh_key(result.get("ssh_key", {}))
