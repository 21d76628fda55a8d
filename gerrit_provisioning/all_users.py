"""
Git access to the All-Users repository inside a Gerrit container.

Each sub-operation works in its own scratch clone: a fresh repository under
the scratch root that fetches a single ref from the bare All-Users repository,
edits files, commits and pushes back. No ref-level locking is attempted.
"""

import posixpath
from typing import Dict, List, Optional
import logging

from gerrit_provisioning.remote import ContainerExec

logger = logging.getLogger(__name__)

DEFAULT_ALL_USERS_PATH = "/var/gerrit/git/All-Users.git"


class ScratchClone:
    """A throwaway working tree inside the container."""

    def __init__(self, executor: ContainerExec, path: str, remote: str):
        self.executor = executor
        self.path = path
        self.remote = remote

    def _git(self, *args: str, check: bool = True):
        return self.executor.run(["git", "-C", self.path, *args], check=check)

    def _file(self, name: str) -> str:
        return posixpath.join(self.path, name)

    def init(self) -> None:
        self.executor.remove_tree(self.path)
        self.executor.make_dirs(posixpath.dirname(self.path))
        self.executor.run(["git", "init", "-q", "--initial-branch=main", self.path], check=True)

    def configure_identity(self, name: str, email: str) -> None:
        self._git("config", "user.name", name)
        self._git("config", "user.email", email)

    def fetch(self, ref: str, branch: str) -> bool:
        """Fetch a ref into a local branch. Returns False if the ref is missing."""
        return self._git("fetch", "-q", self.remote, f"{ref}:{branch}", check=False).ok

    def checkout(self, branch: str) -> None:
        self._git("checkout", "-q", branch)

    def checkout_orphan(self, branch: str) -> None:
        self._git("checkout", "-q", "--orphan", branch)

    def list_files(self) -> List[str]:
        result = self._git("ls-tree", "-r", "--name-only", "HEAD", check=False)
        if not result.ok:
            return []
        return [line for line in result.stdout.splitlines() if line]

    def read_file(self, name: str) -> Optional[str]:
        return self.executor.read_file(self._file(name))

    def read_all(self) -> Dict[str, str]:
        return {name: self.read_file(name) or "" for name in self.list_files()}

    def write_file(self, name: str, content: str) -> None:
        target = self._file(name)
        parent = posixpath.dirname(target)
        if parent != self.path:
            self.executor.make_dirs(parent)
        self.executor.write_file(target, content)

    def commit(self, message: str, allow_empty: bool = False) -> None:
        self._git("add", "-A")
        args = ["commit", "-q", "-m", message]
        if allow_empty:
            args.append("--allow-empty")
        self._git(*args)

    def push(self, ref: str, force: bool = False) -> None:
        args = ["push", "-q"]
        if force:
            args.append("--force")
        args.extend([self.remote, f"HEAD:{ref}"])
        self._git(*args)


class AllUsersRepository:
    """The bare All-Users repository of one Gerrit site."""

    def __init__(self, executor: ContainerExec, path: str = DEFAULT_ALL_USERS_PATH):
        self.executor = executor
        self.path = path

    def ref_exists(self, ref: str) -> bool:
        result = self.executor.run(["git", "-C", self.path, "show-ref", ref])
        return result.ok and bool(result.stdout.strip())

    def scratch(self, name: str, root: str) -> ScratchClone:
        """
        Create a fresh scratch clone at <root>/<name>.

        Any previous directory at that location is removed first.

        Raises:
            RemoteCommandError: If the repository cannot be initialized
        """
        clone = ScratchClone(self.executor, posixpath.join(root, name), self.path)
        clone.init()
        return clone

    def cleanup(self, root: str) -> None:
        if not self.executor.remove_tree(root):
            logger.warning(f"Could not remove scratch directory {root}")
