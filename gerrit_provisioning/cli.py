"""
Command line entry points.

gerrit-add-ssh-keys
    Add SSH authentication keys to the Gerrit containers listed in
    $WORK_DIR/instances.json. With SSH_AUTH_USERNAME set a dedicated account
    (ID 1000001) is created and added to Administrators; otherwise the keys
    go to the default admin account (ID 1000000).

    Usage:
        SSH_AUTH_KEYS="$(cat ~/.ssh/id_ed25519.pub)" WORK_DIR=/tmp/gerrit gerrit-add-ssh-keys

gerrit-check-uv-checksum
    Pre-commit hook validating UV_VERSION / UV_CHECKSUM in the Dockerfile.
"""

import argparse
import sys
from pathlib import Path
from typing import Callable, List, Optional
import logging

from dotenv import load_dotenv
from pydantic import ValidationError

from gerrit_provisioning.config import Settings
from gerrit_provisioning.manifest import ManifestError, load_instances
from gerrit_provisioning.provisioner import AccountProvisioner
from gerrit_provisioning.reporting import (
    ConsoleReporter,
    annotate_error,
    annotate_warning,
    failure_messages,
    print_final_message,
    write_step_summary,
)
from gerrit_provisioning.results import ProvisioningReport
from gerrit_provisioning.schemas import ProvisioningRequest, format_validation_errors
from gerrit_provisioning.uv_checksum import run_hook

logger = logging.getLogger(__name__)


def configure_logging(verbose: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def _load_env(env_file: Optional[Path]):
    if env_file is not None:
        load_dotenv(env_file, override=False)
    else:
        load_dotenv()


def add_ssh_keys(
    settings: Settings,
    instances_file: Optional[Path] = None,
    strict: bool = False,
    verbose: bool = False,
    provisioner_factory: Optional[Callable[..., AccountProvisioner]] = None,
) -> int:
    """
    Provision the configured account on every tracked Gerrit instance.

    Returns:
        Process exit code: 0 on success or no-op, 1 on invalid input
        (or, with strict, when any step failed)
    """
    if not settings.ssh_auth_keys or not settings.ssh_auth_keys.strip():
        print("No SSH auth keys provided, skipping...")
        return 0

    try:
        request = ProvisioningRequest(
            ssh_auth_username=settings.ssh_auth_username,
            ssh_auth_keys=settings.ssh_auth_keys,
        )
        account = request.account()
    except ValidationError as e:
        for message in format_validation_errors(e):
            annotate_error(message)
        if any(err["loc"] and err["loc"][0] == "ssh_auth_keys" for err in e.errors()):
            annotate_error("SSH_AUTH_KEYS validation failed")
        return 1

    print("Adding SSH authentication keys to Gerrit container(s)...")
    if request.is_custom_account:
        print(f"Creating custom Gerrit user: {account.username} (account ID: {account.account_id})")
    else:
        print(f"Using default admin account (ID: {account.account_id})")

    manifest_path = instances_file or settings.instances_file
    logger.debug(f"Reading instances from {manifest_path}")
    try:
        instances, warnings = load_instances(manifest_path)
    except ManifestError as e:
        annotate_error(str(e))
        return 1
    for warning in warnings:
        annotate_warning(warning)

    reporter = ConsoleReporter(verbose=verbose)
    factory = provisioner_factory or AccountProvisioner
    provisioner = factory(settings.provisioner_config(), log_callback=reporter)

    report = ProvisioningReport(
        account=account,
        key_lines=request.key_lines,
        custom_account=request.is_custom_account,
    )
    for instance in instances:
        instance_report = provisioner.provision_instance(instance, account, request.key_lines)
        report.instances.append(instance_report)

        print(f"  Added {len(request.key_lines)} SSH public key(s) for user '{account.username}'")
        if request.is_custom_account and instance_report.group_member:
            print("  User added to Administrators group (create/merge permissions)")

    for message in failure_messages(report):
        annotate_warning(message)

    print_final_message(report)
    write_step_summary(report, settings.github_step_summary)

    if strict and not report.ok:
        return 1
    return 0


def add_ssh_keys_main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Add SSH authentication keys to Gerrit containers"
    )
    parser.add_argument(
        "--instances",
        type=Path,
        default=None,
        help="Instance tracking manifest (default: $WORK_DIR/instances.json)",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Load environment variables from this file (default: .env if present)",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit non-zero when any provisioning step failed",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show debug output, including every container command",
    )

    args = parser.parse_args(argv)
    configure_logging(args.verbose)
    _load_env(args.env_file)

    return add_ssh_keys(
        Settings(),
        instances_file=args.instances,
        strict=args.strict,
        verbose=args.verbose,
    )


def check_uv_checksum_main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Validate the uv binary checksum stored in the Dockerfile."
    )
    parser.add_argument(
        "--check-latest",
        action="store_true",
        help="Also check whether a newer uv release exists",
    )
    parser.add_argument(
        "--update-latest",
        action="store_true",
        help="Fetch the latest release and update the Dockerfile",
    )
    parser.add_argument(
        "--dockerfile",
        default=None,
        help="Path to the Dockerfile (default: $DOCKERFILE, else auto-detected)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show debug output",
    )

    args = parser.parse_args(argv)
    configure_logging(args.verbose)
    _load_env(None)
    settings = Settings()

    return run_hook(
        dockerfile=args.dockerfile or settings.dockerfile,
        github_token=settings.github_token,
        check_latest=args.check_latest,
        update_latest=args.update_latest,
    )


def main() -> None:
    sys.exit(add_ssh_keys_main())


def checksum_main() -> None:
    sys.exit(check_uv_checksum_main())


if __name__ == "__main__":
    main()
