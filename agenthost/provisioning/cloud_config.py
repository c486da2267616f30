"""First-boot (#cloud-config) user data for new hosts."""

import yaml

DEFAULT_USERNAME = "codeagent"

DEFAULT_PACKAGES = [
    "nodejs",
    "npm",
    "curl",
    "build-essential",
    "git",
]


def generate_cloud_config(public_keys, username=DEFAULT_USERNAME, packages=None, runcmd=None):
    """Build the cloud-init user data that creates the login user.

    Args:
        public_keys: public key strings authorized for *username*.
        packages: apt packages to install (default: DEFAULT_PACKAGES).
        runcmd: extra commands run once after packages are installed.

    Returns:
        YAML text starting with the ``#cloud-config`` header.
    """
    config = {
        "users": [
            {
                "name": username,
                "groups": "users, admin, sudo",
                "sudo": "ALL=(ALL) NOPASSWD:ALL",
                "shell": "/bin/bash",
                "ssh_authorized_keys": [k.strip() for k in public_keys if k and k.strip()],
            }
        ],
        "package_update": True,
        "package_upgrade": True,
        "packages": list(DEFAULT_PACKAGES if packages is None else packages),
        "runcmd": [f"mkdir -p /home/{username}/projects", f"chown {username}:{username} /home/{username}/projects"],
    }
    if runcmd:
        config["runcmd"].extend(runcmd)
    body = yaml.safe_dump(config, sort_keys=False, default_flow_style=False, width=4096)
    return "#cloud-config\n" + body
