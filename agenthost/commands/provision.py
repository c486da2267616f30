"""Provision command: order a VM and turn it into an agent host."""

import asyncio
import dataclasses
import json
import logging
import sys

import yaml

from agenthost.config import DEFAULT_SSH_KEY, ProvisionConfig, load_config
from agenthost.provisioning.cloud_config import generate_cloud_config
from agenthost.provisioning.installer import ScriptProxyInstaller
from agenthost.provisioning.orchestrator import Orchestrator
from agenthost.provisioning.providers import PROVIDERS, create_payload, make_provider, resolve_api_token
from agenthost.provisioning.ssh_keys import load_local_ssh_key
from agenthost.provisioning.ssh_transport import SSHShell
from agenthost.provisioning.types import ProvisioningPhase, ServerSpec
from agenthost.redact import register_secret

logger = logging.getLogger(__name__)


def _build_config(args) -> ProvisionConfig:
    config = load_config(args.config) if args.config else ProvisionConfig()

    install = config.install
    if args.no_agent:
        install = dataclasses.replace(install, enabled=False)
    if args.install_retries is not None:
        install = dataclasses.replace(install, retries=args.install_retries)
    if args.skip_install_on_failure:
        install = dataclasses.replace(install, skip_on_failure=True)
    if args.install_script_url:
        install = dataclasses.replace(install, script_url=args.install_script_url)

    config = config.with_overrides(
        provider=args.provider,
        api_url=args.api_url,
        name=args.name,
        region=args.region,
        size=args.size,
        image=args.image,
        username=args.username,
        ssh_keys=args.ssh_key,
        install=install,
    )
    config.validate()
    return config


def _build_spec(config: ProvisionConfig) -> ServerSpec:
    keys = [load_local_ssh_key(path) for path in (config.ssh_keys or [DEFAULT_SSH_KEY])]
    return ServerSpec(
        name=config.name,
        region=config.region,
        size=config.size,
        image=config.image,
        ssh_keys=keys,
        username=config.username,
    )


def _log_dry_run(config: ProvisionConfig, spec: ServerSpec):
    user_data = generate_cloud_config([k.public_key for k in spec.ssh_keys], username=spec.username)
    placeholder_ids = [f"<{k.name}>" for k in spec.ssh_keys]
    payload = create_payload(config.provider, spec.name, spec.region, spec.size, spec.image, placeholder_ids, user_data)
    logger.info(f"[dry-run] reconcile {len(spec.ssh_keys)} SSH key(s) with {config.provider}")
    logger.info(f"[dry-run] create server on {config.provider}:")
    logger.info(json.dumps(payload, indent=2))
    logger.info(f"[dry-run] poll every {config.timings.poll_interval}s (up to {config.timings.max_poll_attempts} polls)")
    logger.info(f"[dry-run] check cloud-init over ssh as {spec.username} (up to {config.timings.max_cloud_init_attempts} checks)")
    if config.install.enabled:
        logger.info(f"[dry-run] install proxy agent from {config.install.script_url}")
    else:
        logger.info("[dry-run] proxy agent install disabled")


def _log_connection_info(host):
    logger.info(f"Host:     {host.public_address}")
    logger.info(f"User:     {host.username}")
    logger.info(f"Server:   {host.provider_server_id}")
    logger.info(f"Connect:  ssh {host.address}")


def write_host_record(path, session):
    """Write the host candidate and final status to *path* as YAML."""
    status = session.status
    record = {
        "host": session.host_record.to_dict(),
        "status": {
            "provider": status.provider_status.value,
            "cloud_init": status.cloud_init_status.value,
            "proxy_install": status.proxy_install_status.value,
        },
    }
    with open(path, "w") as f:
        yaml.safe_dump(record, f, sort_keys=False)
    logger.info(f"Host record written to {path}")


async def supervise_session(session, retries=0, skip_on_failure=False):
    """Log phase changes and resolve proxy install failures.

    A failed install is retried up to *retries* times, then skipped if
    *skip_on_failure* is set, otherwise the session is cancelled.

    Returns:
        ProvisioningOutcome.
    """
    remaining = retries
    last_phase = None
    async for snapshot in session.updates():
        if snapshot.phase != last_phase:
            logger.info(f"==> {snapshot.phase.value.replace('_', ' ')}")
            last_phase = snapshot.phase
        if snapshot.phase != ProvisioningPhase.PROXY_INSTALL_ERROR or session.phase != ProvisioningPhase.PROXY_INSTALL_ERROR:
            continue
        if remaining > 0:
            remaining -= 1
            session.retry_install()
        elif skip_on_failure:
            session.skip_install()
        else:
            logger.error(f"Proxy install failed: {session.last_error}")
            session.cancel()
    return await session.wait()


def handle_provision(args):
    """CLI handler for 'provision'."""
    asyncio.run(_handle_provision(args))


async def _handle_provision(args):
    try:
        config = _build_config(args)
        spec = _build_spec(config)
    except ValueError as e:
        logger.error(f"Error: {e}")
        sys.exit(1)

    if args.dry_run:
        _log_dry_run(config, spec)
        return

    try:
        api_token = resolve_api_token(config.provider, args.api_token)
    except ValueError as e:
        logger.error(f"Error: {e}")
        sys.exit(1)
    register_secret(api_token)

    provider = make_provider(config.provider, api_token, config.api_url)
    shell = SSHShell()
    installer = ScriptProxyInstaller(shell, script_url=config.install.script_url) if config.install.enabled else None
    orchestrator = Orchestrator(provider, shell, installer, config.timings)

    session = orchestrator.create_server(spec)
    try:
        outcome = await supervise_session(session, config.install.retries, config.install.skip_on_failure)
    finally:
        session.cancel()

    if session.host_record is not None:
        _log_connection_info(session.host_record)
        if args.output:
            write_host_record(args.output, session)

    if not outcome.succeeded:
        if outcome.reason:
            logger.error(f"Provisioning did not complete: {outcome.reason}")
        sys.exit(1)
    status = session.status
    logger.info(f"Done. cloud-init: {status.cloud_init_status.value}, proxy agent: {status.proxy_install_status.value}")


def register_provision_command(subparsers):
    """Register the 'provision' subcommand."""
    parser = subparsers.add_parser("provision", help="Create a cloud VM and install the proxy agent on it")
    parser.add_argument("provider", nargs="?", choices=sorted(PROVIDERS), default=None, help="Cloud provider (or set 'provider' in --config)")
    parser.add_argument("--config", default=None, help="YAML file with provisioning settings")
    parser.add_argument("--name", default=None, help="Server name")
    parser.add_argument("--region", default=None, help="Region / location (e.g. nyc3, fsn1)")
    parser.add_argument("--size", default=None, help="Size / server type (e.g. s-2vcpu-4gb, cpx21)")
    parser.add_argument("--image", default=None, help="Image slug or name (e.g. ubuntu-24-04-x64)")
    parser.add_argument(
        "--ssh-key",
        action="append",
        default=None,
        help=f"SSH private key path; its .pub is authorized on the host (repeatable, default: {DEFAULT_SSH_KEY})",
    )
    parser.add_argument("--username", default=None, help="Login user created by cloud-init (default: codeagent)")
    parser.add_argument("--api-token", default=None, help="Provider API token (fallback: DIGITALOCEAN_TOKEN / HCLOUD_TOKEN)")
    parser.add_argument("--api-url", default=None, help="Override the provider API base URL")
    parser.add_argument("--no-agent", action="store_true", help="Do not install the proxy agent")
    parser.add_argument("--install-script-url", default=None, help="Proxy agent install script URL")
    parser.add_argument("--install-retries", type=int, default=None, help="Retry a failed agent install this many times")
    parser.add_argument(
        "--skip-install-on-failure",
        action="store_true",
        help="Finish successfully without the agent if its install keeps failing",
    )
    parser.add_argument("--output", default=None, help="Write the resulting host record to this YAML file")
    parser.add_argument("--dry-run", action="store_true", help="Print the requests without executing them")
    parser.set_defaults(func=handle_provision)
