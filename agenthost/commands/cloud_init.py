"""Cloud-init command: watch first-boot configuration on a running host."""

import asyncio
import logging
import os
import sys

from agenthost.config import DEFAULT_SSH_KEY
from agenthost.provisioning.cloud_init import DEFAULT_INTERVAL, DEFAULT_MAX_ATTEMPTS, CloudInitOutcome, watch_cloud_init
from agenthost.provisioning.ssh_transport import SSHShell
from agenthost.provisioning.types import SSHCredentials

logger = logging.getLogger(__name__)


def handle_cloud_init(args):
    """CLI handler for 'cloud-init'."""
    credentials = SSHCredentials(
        username=args.username,
        private_key_path=os.path.expanduser(args.ssh_key),
        port=args.port,
    )
    outcome, status = asyncio.run(
        watch_cloud_init(
            args.host,
            credentials,
            SSHShell(),
            interval=args.interval,
            max_attempts=args.max_attempts,
        )
    )
    logger.info(
        f"cloud-init: {status.cloud_init_status.value} "
        f"(ssh reachable: {'yes' if status.ssh_accessible else 'no'}, checks: {status.cloud_init_check_attempts})"
    )
    if outcome != CloudInitOutcome.DONE:
        sys.exit(1)


def register_cloud_init_command(subparsers):
    """Register the 'cloud-init' subcommand."""
    parser = subparsers.add_parser("cloud-init", help="Wait for cloud-init to finish on a running host")
    parser.add_argument("host", help="Host address (IP or hostname)")
    parser.add_argument("--ssh-key", default=DEFAULT_SSH_KEY, help=f"SSH private key path (default: {DEFAULT_SSH_KEY})")
    parser.add_argument("--username", default="codeagent", help="Login user (default: codeagent)")
    parser.add_argument("--port", type=int, default=22, help="SSH port (default: 22)")
    parser.add_argument("--interval", type=float, default=DEFAULT_INTERVAL, help="Seconds between checks")
    parser.add_argument("--max-attempts", type=int, default=DEFAULT_MAX_ATTEMPTS, help="Give up after this many checks")
    parser.set_defaults(func=handle_cloud_init)
