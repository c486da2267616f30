"""Provider lookup: map a provider name to its client and token env var."""

import os

from agenthost.provisioning import digitalocean as do_provider
from agenthost.provisioning import hetzner as hetzner_provider

PROVIDERS = {
    "digitalocean": (do_provider.DigitalOceanProvider, do_provider.TOKEN_ENV_VAR),
    "hetzner": (hetzner_provider.HetznerProvider, hetzner_provider.TOKEN_ENV_VAR),
}


def resolve_api_token(provider_name, api_token=None):
    """Return the API token from the argument or the provider's env var.

    Raises:
        ValueError: if the provider is unknown or no token is available.
    """
    if provider_name not in PROVIDERS:
        raise ValueError(f"Unknown provider: {provider_name}")
    _, env_var = PROVIDERS[provider_name]
    token = api_token or os.environ.get(env_var)
    if not token:
        raise ValueError(f"{provider_name} API token required. Use --api-token or set {env_var}.")
    return token


_PAYLOAD_BUILDERS = {
    "digitalocean": do_provider.droplet_payload,
    "hetzner": hetzner_provider.server_payload,
}


def create_payload(provider_name, name, region, size, image, ssh_key_ids, user_data=None):
    """The body *provider_name* would receive for a create call (used by --dry-run)."""
    if provider_name not in _PAYLOAD_BUILDERS:
        raise ValueError(f"Unknown provider: {provider_name}")
    return _PAYLOAD_BUILDERS[provider_name](name, region, size, image, ssh_key_ids, user_data)


def make_provider(provider_name, api_token, api_url=None):
    """Instantiate the CloudProvider client for *provider_name*."""
    if provider_name not in PROVIDERS:
        raise ValueError(f"Unknown provider: {provider_name}")
    cls, _ = PROVIDERS[provider_name]
    if api_url:
        return cls(api_token, api_url=api_url)
    return cls(api_token)
