import shutil

import pytest

from gerrit_provisioning import notedb
from gerrit_provisioning.all_users import AllUsersRepository
from gerrit_provisioning.config import ProvisionerConfig
from gerrit_provisioning.provisioner import AccountProvisioner, GerritContainer
from gerrit_provisioning.results import StepStatus
from gerrit_provisioning.schemas import AccountSpec

from conftest import ADMINISTRATORS_UUID, LocalExec, group_names_files

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git not available")

KEY_A = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIKeyA alice@laptop"
KEY_B = "ssh-rsa AAAAB3NzaC1yc2EAAAADAQABKeyB alice@desktop"

ACCOUNT_REF = "refs/users/01/1000001"
GROUP_REF = f"refs/groups/{ADMINISTRATORS_UUID[:2]}/{ADMINISTRATORS_UUID}"


@pytest.fixture
def executor(monkeypatch):
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", "/dev/null")
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    return LocalExec()


@pytest.fixture
def bare_repo(tmp_path, executor):
    path = str(tmp_path / "All-Users.git")
    executor.run(["git", "init", "-q", "--bare", path], check=True)
    return path


@pytest.fixture
def repo(executor, bare_repo):
    return AllUsersRepository(executor, bare_repo)


@pytest.fixture
def local_provisioner(tmp_path, executor, repo):
    container = GerritContainer(container_id="local", exec=executor, all_users=repo)
    config = ProvisionerConfig(scratch_root=str(tmp_path / "scratch"), flush_settle_seconds=0)
    return AccountProvisioner(
        config,
        log_callback=lambda level, message: None,
        container_factory=lambda cid: container,
        sleep=lambda seconds: None,
    ), container


def _show(executor, bare_repo, ref, path):
    result = executor.run(["git", "--git-dir", bare_repo, "show", f"{ref}:{path}"])
    return result.stdout if result.ok else None


def _tip(executor, bare_repo, ref):
    return executor.run(["git", "--git-dir", bare_repo, "rev-parse", ref], check=True).stdout.strip()


def _seed_group_names(repo, tmp_path):
    clone = repo.scratch("seed", str(tmp_path / "seed"))
    clone.configure_identity("Seed", "seed@localhost")
    for path, content in group_names_files().items():
        clone.write_file(path, content)
    clone.commit("Seed group names")
    clone.push(notedb.GROUP_NAMES_REF)


class TestScratchCloneWithGit:
    """Test scratch clones against a real bare repository"""

    def test_missing_ref(self, repo, tmp_path):
        """Unknown refs are reported as absent"""
        assert repo.ref_exists(ACCOUNT_REF) is False

        clone = repo.scratch("lookup", str(tmp_path / "scratch"))
        assert clone.fetch(ACCOUNT_REF, "existing") is False

    def test_orphan_commit_and_push(self, repo, executor, bare_repo, tmp_path):
        """An orphan branch can be committed and pushed to a new ref"""
        clone = repo.scratch("work", str(tmp_path / "scratch"))
        clone.configure_identity("Tester", "tester@localhost")
        clone.checkout_orphan("fresh")
        clone.write_file("ab/cdef", "hello\n")
        clone.commit("First")
        clone.push("refs/meta/test")

        assert repo.ref_exists("refs/meta/test") is True
        assert _show(executor, bare_repo, "refs/meta/test", "ab/cdef") == "hello\n"


class TestProvisioningWithGit:
    """Test provisioning steps against a real bare repository"""

    def test_account_create_then_replace(self, local_provisioner, executor, bare_repo):
        """Keys are written on create and fully replaced on update"""
        provisioner, container = local_provisioner
        account = AccountSpec.custom("alice")

        provisioner.ensure_account(container, account, [KEY_A])
        assert "fullName = alice" in _show(executor, bare_repo, ACCOUNT_REF, "account.config")
        assert _show(executor, bare_repo, ACCOUNT_REF, "authorized_keys") == f"{KEY_A}\n"

        provisioner.ensure_account(container, account, [KEY_B])
        assert _show(executor, bare_repo, ACCOUNT_REF, "authorized_keys") == f"{KEY_B}\n"

    def test_unchanged_update_still_commits(self, local_provisioner, executor, bare_repo):
        """Re-applying the same keys creates an empty commit"""
        provisioner, container = local_provisioner
        account = AccountSpec.custom("alice")

        provisioner.ensure_account(container, account, [KEY_A])
        first = _tip(executor, bare_repo, ACCOUNT_REF)
        provisioner.ensure_account(container, account, [KEY_A])

        assert _tip(executor, bare_repo, ACCOUNT_REF) != first
        assert _show(executor, bare_repo, ACCOUNT_REF, "authorized_keys") == f"{KEY_A}\n"

    def test_external_id_force_push(self, local_provisioner, executor, bare_repo):
        """The external ID lands at its content-addressed path, repeatably"""
        provisioner, container = local_provisioner
        account = AccountSpec.custom("alice")
        path = notedb.external_id_path("username:alice")

        provisioner.ensure_external_id(container, account)
        provisioner.ensure_external_id(container, account)

        content = _show(executor, bare_repo, notedb.EXTERNAL_IDS_REF, path)
        assert content == '[externalId "username:alice"]\n  accountId = 1000001\n'

    def test_group_membership(self, local_provisioner, repo, executor, bare_repo, tmp_path):
        """Membership is added once and repeat runs leave the ref alone"""
        provisioner, container = local_provisioner
        account = AccountSpec.custom("alice")
        _seed_group_names(repo, tmp_path)

        result = provisioner.ensure_group_membership(container, account)
        assert result.status == StepStatus.SUCCESS
        assert _show(executor, bare_repo, GROUP_REF, "members") == "1000001\n"
        tip = _tip(executor, bare_repo, GROUP_REF)

        repeat = provisioner.ensure_group_membership(container, account)
        assert repeat.changed is False
        assert _tip(executor, bare_repo, GROUP_REF) == tip

    def test_membership_skipped_without_groups(self, local_provisioner):
        """A repository without group-names skips membership"""
        provisioner, container = local_provisioner

        result = provisioner.ensure_group_membership(container, AccountSpec.custom("alice"))

        assert result.status == StepStatus.SKIPPED
