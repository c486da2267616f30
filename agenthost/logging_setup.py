"""CLI logging setup: plain %(message)s output, verbose mode adds logger names."""

import logging
import sys

from agenthost.redact import SecretRedactingFilter


class _ConsoleFormatter(logging.Formatter):
    """Shorten ``agenthost.provisioning.orchestrator`` to ``[orchestrator]``."""

    def format(self, record):
        if record.name.startswith("agenthost."):
            record.name = record.name.rsplit(".", 1)[-1]
        return super().format(record)


def setup_cli_logging(verbose=False):
    """Configure root logger for CLI commands.

    Default output is identical to print(). With ``verbose`` every line is
    prefixed with the emitting module so remote install output can be told
    apart from orchestrator progress.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stdout)
    if verbose:
        handler.setFormatter(_ConsoleFormatter("[%(name)s] %(message)s"))
    else:
        handler.setFormatter(logging.Formatter("%(message)s"))
    handler.addFilter(SecretRedactingFilter())
    root.addHandler(handler)
    root.addFilter(SecretRedactingFilter())
