"""Unit tests for provider lookup and token resolution."""

import pytest

from agenthost.provisioning.digitalocean import DigitalOceanProvider
from agenthost.provisioning.hetzner import HetznerProvider
from agenthost.provisioning.providers import create_payload, make_provider, resolve_api_token


def test_resolve_api_token_prefers_argument(monkeypatch):
    monkeypatch.setenv("DIGITALOCEAN_TOKEN", "from-env")
    assert resolve_api_token("digitalocean", "from-arg") == "from-arg"


def test_resolve_api_token_from_env(monkeypatch):
    monkeypatch.setenv("HCLOUD_TOKEN", "hcloud-env-token")
    assert resolve_api_token("hetzner") == "hcloud-env-token"


def test_resolve_api_token_missing(monkeypatch):
    monkeypatch.delenv("DIGITALOCEAN_TOKEN", raising=False)
    with pytest.raises(ValueError, match="DIGITALOCEAN_TOKEN"):
        resolve_api_token("digitalocean")


def test_unknown_provider():
    with pytest.raises(ValueError, match="Unknown provider"):
        resolve_api_token("linode", "t")
    with pytest.raises(ValueError, match="Unknown provider"):
        make_provider("linode", "t")


def test_make_provider():
    do = make_provider("digitalocean", "t")
    assert isinstance(do, DigitalOceanProvider)
    assert do.api_url == "https://api.digitalocean.com/v2"

    hz = make_provider("hetzner", "t", api_url="http://localhost:8080/v1")
    assert isinstance(hz, HetznerProvider)
    assert hz.api_url == "http://localhost:8080/v1"


def test_create_payload_dispatches_per_provider():
    do = create_payload("digitalocean", "a", "nyc3", "s-1vcpu-1gb", "ubuntu-24-04-x64", ["1"])
    hz = create_payload("hetzner", "a", "fsn1", "cpx11", "ubuntu-24.04", ["1"])
    assert do["size"] == "s-1vcpu-1gb"
    assert hz["server_type"] == "cpx11"
