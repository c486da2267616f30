#!/usr/bin/env python3
"""Agent host provisioning tools: CLI entrypoint."""

import argparse

from agenthost.commands.cloud_init import register_cloud_init_command
from agenthost.commands.provision import register_provision_command
from agenthost.logging_setup import setup_cli_logging


def main():
    parser = argparse.ArgumentParser(description="Provision cloud VMs as coding agent hosts")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug output, prefixed with the emitting module")
    subparsers = parser.add_subparsers(dest="command", required=True)

    register_provision_command(subparsers)
    register_cloud_init_command(subparsers)

    args = parser.parse_args()
    setup_cli_logging(args.verbose)
    args.func(args)


if __name__ == "__main__":
    main()
