"""
Gerrit Account Provisioner

Grants SSH access to Gerrit containers by writing accounts, external IDs and
group membership directly into the All-Users repository, then flushing
Gerrit's caches so the change is visible without a restart.

Per instance the steps run in a fixed order:

1. internal admin bootstrap (account 1000000, used to authenticate cache flushes)
2. account record with the supplied authorized keys
3. username external ID
4. Administrators group membership
5. cache flush

A failing step is recorded in the instance report and the remaining steps
and instances still run.
"""

import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple
import logging

from gerrit_provisioning import notedb
from gerrit_provisioning.all_users import AllUsersRepository
from gerrit_provisioning.cache_flush import CacheFlusher
from gerrit_provisioning.config import ProvisionerConfig
from gerrit_provisioning.remote import ContainerExec, RemoteCommandError
from gerrit_provisioning.results import InstanceReport, StepResult, StepStatus
from gerrit_provisioning.schemas import AccountSpec, InstanceEntry

logger = logging.getLogger(__name__)

SYSTEM_IDENTITY = ("Gerrit System", "gerrit@localhost")


class GroupNotFoundError(Exception):
    """Raised when group-names exists but has no Administrators entry"""
    pass


class ProvisioningError(Exception):
    """Raised when an All-Users update cannot be completed"""
    pass


@dataclass
class GerritContainer:
    """A Gerrit container and its All-Users repository."""
    container_id: str
    exec: ContainerExec
    all_users: AllUsersRepository


class AccountProvisioner:
    """Provisions one account with SSH keys on Gerrit containers."""

    def __init__(
        self,
        config: Optional[ProvisionerConfig] = None,
        log_callback: Optional[Callable[[str, str], None]] = None,
        container_factory: Optional[Callable[[str], GerritContainer]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or ProvisionerConfig()
        self.log_callback = log_callback or self._default_log
        self.container_factory = container_factory or self._default_container
        self.flusher = CacheFlusher(self.config, log_callback=self._log, sleep=sleep)

    def _default_log(self, level: str, message: str):
        logger.log(getattr(logging, level.upper(), logging.INFO), message)

    def _log(self, level: str, message: str):
        self.log_callback(level, message)

    def _default_container(self, container_id: str) -> GerritContainer:
        executor = ContainerExec(
            container_id,
            docker_binary=self.config.docker_binary,
            timeout=self.config.command_timeout,
        )
        return GerritContainer(
            container_id=container_id,
            exec=executor,
            all_users=AllUsersRepository(executor, self.config.all_users_repo),
        )

    # ------------------------------------------------------------------
    # Internal admin bootstrap
    # ------------------------------------------------------------------

    def ensure_admin_keypair(self, container: GerritContainer) -> Optional[str]:
        """
        Make sure the internal admin keypair exists and return its public key.

        Returns:
            The public key line, or None if it cannot be read
        """
        key_path = self.config.internal_admin_key
        executor = container.exec

        if not executor.file_exists(key_path):
            self._log("info", f"No SSH key found at {key_path}, generating one...")
            key_dir = key_path.rsplit("/", 1)[0]
            executor.make_dirs(key_dir)
            executor.run(["ssh-keygen", "-t", "ed25519", "-f", key_path, "-N", "", "-q"], check=True)
            executor.run(["chmod", "600", key_path], check=True)
            executor.run(["chmod", "644", f"{key_path}.pub"], check=True)

        pub_key = executor.read_file(f"{key_path}.pub")
        if pub_key is None or not pub_key.strip():
            return None
        return pub_key.strip()

    def ensure_internal_admin(self, container: GerritContainer) -> StepResult:
        """
        Bootstrap account 1000000 with a generated SSH key.

        The account only exists so the cache flush can authenticate, so
        every part of the bootstrap is best-effort: failures are noted and
        turn the result into DEGRADED, never FAILED.
        """
        self._log("info", "Creating internal admin account for cache operations...")
        admin = AccountSpec.internal_admin()
        root = self.config.internal_admin_scratch_root

        try:
            pub_key = self.ensure_admin_keypair(container)
        except Exception as e:
            self._log("warning", f"Could not generate SSH key for internal admin: {e}")
            return StepResult("internal admin", StepStatus.DEGRADED, "SSH keypair unavailable")

        if pub_key is None:
            self._log("warning", "Could not get SSH public key for internal admin")
            return StepResult("internal admin", StepStatus.DEGRADED, "SSH public key unavailable")

        notes = []
        actions = [
            ("account", lambda: self.ensure_account(
                container, admin, [pub_key], scratch_root=root, identity=SYSTEM_IDENTITY)),
            ("external ID", lambda: self.ensure_external_id(
                container, admin, scratch_root=root, identity=SYSTEM_IDENTITY)),
            ("group membership", lambda: self.ensure_group_membership(
                container, admin, scratch_root=root)),
        ]
        for label, action in actions:
            try:
                result = action()
                if result.status != StepStatus.SUCCESS:
                    notes.append(f"{label}: {result.message}")
            except Exception as e:
                self._log("info", f"Note: internal admin {label} not updated: {e}")
                notes.append(f"{label}: {e}")

        container.all_users.cleanup(root)

        if notes:
            return StepResult("internal admin", StepStatus.DEGRADED, "; ".join(notes), changed=True)
        self._log("info", "Internal admin account configured ✓")
        return StepResult("internal admin", StepStatus.SUCCESS, "Internal admin account configured", changed=True)

    # ------------------------------------------------------------------
    # Account record
    # ------------------------------------------------------------------

    def ensure_account(
        self,
        container: GerritContainer,
        account: AccountSpec,
        keys: List[str],
        scratch_root: Optional[str] = None,
        identity: Optional[Tuple[str, str]] = None,
    ) -> StepResult:
        """
        Create the account ref, or replace its authorized keys.

        The stored authorized_keys always ends up equal to `keys`; existing
        keys are never merged in. An update that changes nothing still
        commits and pushes.

        Raises:
            RemoteCommandError: If any git command fails
            ProvisioningError: If the existing ref cannot be fetched
        """
        ref = notedb.account_ref(account.account_id)
        root = scratch_root or self.config.scratch_root
        name, email = identity or (account.full_name, account.email)
        authorized_keys = notedb.render_authorized_keys(keys)

        self._log("info", f"Creating/updating account at {ref}...")
        exists = container.all_users.ref_exists(ref)

        clone = container.all_users.scratch("account-repo", root)
        clone.configure_identity(name, email)

        if exists:
            self._log("info", "Account ref already exists, updating SSH keys...")
            if not clone.fetch(ref, "existing"):
                raise ProvisioningError(f"Could not fetch existing account ref {ref}")
            clone.checkout("existing")
            clone.write_file(notedb.AUTHORIZED_KEYS_FILE, authorized_keys)
            clone.commit(f"Update SSH authorized keys for {account.username}", allow_empty=True)
            action = "updated"
        else:
            self._log("info", "Creating new account ref...")
            clone.write_file(
                notedb.ACCOUNT_CONFIG_FILE,
                notedb.render_account_config(account.full_name, account.email),
            )
            clone.write_file(notedb.AUTHORIZED_KEYS_FILE, authorized_keys)
            clone.commit(f"Create account {account.username} with SSH keys")
            action = "created"

        clone.push(ref)
        return StepResult("account", StepStatus.SUCCESS, f"Account {ref} {action}", changed=True)

    # ------------------------------------------------------------------
    # External ID
    # ------------------------------------------------------------------

    def ensure_external_id(
        self,
        container: GerritContainer,
        account: AccountSpec,
        scratch_root: Optional[str] = None,
        identity: Optional[Tuple[str, str]] = None,
    ) -> StepResult:
        """
        Register the username external ID for the account.

        refs/meta/external-ids is shared by every account on the server and
        is force-pushed from a freshly fetched tip. A concurrent writer that
        pushes between our fetch and our push loses its commit; this race is
        accepted.

        Raises:
            RemoteCommandError: If the commit or the push fails
        """
        key = notedb.external_id_key(account.username)
        path = notedb.external_id_path(key)
        root = scratch_root or self.config.scratch_root
        name, email = identity or (account.full_name, account.email)

        self._log("info", f"Registering external ID for username: {account.username}...")

        clone = container.all_users.scratch("external-ids-repo", root)
        clone.configure_identity(name, email)
        if clone.fetch(notedb.EXTERNAL_IDS_REF, "external-ids"):
            clone.checkout("external-ids")
        else:
            clone.checkout_orphan("external-ids")

        clone.write_file(path, notedb.render_external_id(key, account.account_id))
        clone.commit(f"Add external ID for {account.username}", allow_empty=True)
        clone.push(notedb.EXTERNAL_IDS_REF, force=True)

        return StepResult(
            "external ID", StepStatus.SUCCESS,
            f"External ID {key} registered at {path}", changed=True,
        )

    # ------------------------------------------------------------------
    # Group membership
    # ------------------------------------------------------------------

    def find_administrators_uuid(self, container: GerritContainer, root: str) -> Optional[str]:
        """
        Look up the Administrators group UUID on refs/meta/group-names.

        Returns:
            The UUID, or None if group-names cannot be fetched (no groups yet)

        Raises:
            GroupNotFoundError: If group-names exists without an Administrators entry
        """
        clone = container.all_users.scratch("group-names-repo", root)
        clone.configure_identity(*SYSTEM_IDENTITY)
        if not clone.fetch(notedb.GROUP_NAMES_REF, "group-names"):
            return None
        clone.checkout("group-names")

        files = clone.read_all()
        group_uuid = notedb.find_group_uuid(files, notedb.ADMINISTRATORS_GROUP)
        if group_uuid is None:
            available = ", ".join(sorted(files)) or "none"
            raise GroupNotFoundError(
                f"Could not find {notedb.ADMINISTRATORS_GROUP} group UUID (group files: {available})"
            )
        return group_uuid

    def ensure_group_membership(
        self,
        container: GerritContainer,
        account: AccountSpec,
        scratch_root: Optional[str] = None,
    ) -> StepResult:
        """
        Add the account to the Administrators group.

        Already being a member is a no-op: nothing is committed or pushed.

        Raises:
            GroupNotFoundError: If the Administrators group cannot be located
            RemoteCommandError: If the commit or the push fails
        """
        root = scratch_root or self.config.scratch_root
        self._log("info", f"Adding user '{account.username}' to {notedb.ADMINISTRATORS_GROUP} group...")

        group_uuid = self.find_administrators_uuid(container, root)
        if group_uuid is None:
            self._log("warning", "Could not fetch group-names ref")
            return StepResult("group membership", StepStatus.SKIPPED, "group-names ref not available yet")

        self._log("info", f"Found {notedb.ADMINISTRATORS_GROUP} group UUID: {group_uuid}")
        ref = notedb.group_ref(group_uuid)

        clone = container.all_users.scratch("group-members-repo", root)
        clone.configure_identity(*SYSTEM_IDENTITY)
        if clone.fetch(ref, "group-ref"):
            clone.checkout("group-ref")
            members = clone.read_file(notedb.MEMBERS_FILE)
        else:
            clone.checkout_orphan("group-ref")
            clone.write_file(notedb.GROUP_CONFIG_FILE, notedb.render_group_config())
            members = ""

        content, changed = notedb.add_member(members, account.account_id)
        if not changed:
            message = f"Account {account.account_id} is already a member of {notedb.ADMINISTRATORS_GROUP}"
            self._log("info", message)
            return StepResult("group membership", StepStatus.SUCCESS, message)

        clone.write_file(notedb.MEMBERS_FILE, content)
        clone.commit(
            f"Add {account.username} (account {account.account_id}) to "
            f"{notedb.ADMINISTRATORS_GROUP} group",
            allow_empty=True,
        )
        clone.push(ref)

        return StepResult(
            "group membership", StepStatus.SUCCESS,
            f"Added {account.username} to {notedb.ADMINISTRATORS_GROUP}", changed=True,
        )

    # ------------------------------------------------------------------
    # Cache flush
    # ------------------------------------------------------------------

    def flush_caches(self, container: GerritContainer) -> StepResult:
        return self.flusher.flush(container.exec)

    # ------------------------------------------------------------------
    # Per instance
    # ------------------------------------------------------------------

    def _run_step(self, name: str, action: Callable[[], StepResult]) -> StepResult:
        try:
            return action()
        except (RemoteCommandError, ProvisioningError, GroupNotFoundError) as e:
            self._log("error", f"{name} failed: {e}")
            return StepResult(name, StepStatus.FAILED, str(e))
        except Exception as e:
            logger.exception(f"Unexpected error during {name}")
            self._log("error", f"{name} failed unexpectedly: {type(e).__name__}: {e}")
            return StepResult(name, StepStatus.FAILED, f"{type(e).__name__}: {e}")

    def provision_instance(
        self,
        instance: InstanceEntry,
        account: AccountSpec,
        keys: List[str],
    ) -> InstanceReport:
        """
        Run every provisioning step against one Gerrit container.

        Never raises: unexpected errors are recorded as FAILED steps so the
        caller can move on to the next instance.

        Returns:
            InstanceReport with one StepResult per step
        """
        self._log("info", f"Processing instance: {instance.slug}")
        self._log("info", f"Container ID: {instance.cid}")

        report = InstanceReport(slug=instance.slug, container_id=instance.cid)
        try:
            container = self.container_factory(instance.cid)
        except Exception as e:
            logger.exception(f"Cannot attach to container {instance.cid}")
            self._log("error", f"Cannot attach to container {instance.cid}: {e}")
            report.steps.append(StepResult("container", StepStatus.FAILED, f"{type(e).__name__}: {e}"))
            return report

        steps = [
            ("internal admin", lambda: self.ensure_internal_admin(container)),
            ("account", lambda: self.ensure_account(container, account, keys)),
            ("external ID", lambda: self.ensure_external_id(container, account)),
            ("group membership", lambda: self.ensure_group_membership(container, account)),
            ("cache flush", lambda: self.flush_caches(container)),
        ]
        for name, action in steps:
            report.steps.append(self._run_step(name, action))

        try:
            container.all_users.cleanup(self.config.scratch_root)
        except Exception as e:
            self._log("warning", f"Could not clean up {self.config.scratch_root}: {e}")

        if report.ok:
            self._log("info", f"SSH keys added to {instance.slug} ✓")
        else:
            failed = ", ".join(step.step for step in report.failures)
            self._log("warning", f"Provisioning of {instance.slug} incomplete (failed: {failed})")
        return report
