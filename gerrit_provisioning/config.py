from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings

CACHE_NAMES = ["accounts", "external_ids", "groups", "groups_byuuid", "groups_members"]


class Settings(BaseSettings):
    # Provisioning input
    ssh_auth_keys: Optional[str] = None
    ssh_auth_username: Optional[str] = None

    # CI
    work_dir: str = "."
    github_step_summary: Optional[str] = None

    # Gerrit container layout
    all_users_repo: str = "/var/gerrit/git/All-Users.git"
    scratch_root: str = "/tmp/account-setup"
    internal_admin_scratch_root: str = "/tmp/internal-admin-setup"
    internal_admin_key: str = "/var/gerrit/ssh/id_rsa"
    fallback_admin_key: str = "/var/gerrit/.ssh/id_rsa"

    # Cache flush
    gerrit_http_port: int = 8080
    gerrit_ssh_port: int = 29418
    ssh_connect_timeout: int = 5
    flush_settle_seconds: float = 2.0

    # Container runtime
    docker_binary: str = "docker"
    command_timeout: float = 120.0

    # Checksum hook
    dockerfile: Optional[str] = None
    github_token: Optional[str] = None

    @property
    def instances_file(self) -> Path:
        return Path(self.work_dir) / "instances.json"

    def provisioner_config(self) -> "ProvisionerConfig":
        return ProvisionerConfig(
            all_users_repo=self.all_users_repo,
            scratch_root=self.scratch_root,
            internal_admin_scratch_root=self.internal_admin_scratch_root,
            internal_admin_key=self.internal_admin_key,
            fallback_admin_key=self.fallback_admin_key,
            http_port=self.gerrit_http_port,
            ssh_port=self.gerrit_ssh_port,
            ssh_connect_timeout=self.ssh_connect_timeout,
            flush_settle_seconds=self.flush_settle_seconds,
            docker_binary=self.docker_binary,
            command_timeout=self.command_timeout,
        )

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


@dataclass
class ProvisionerConfig:
    """Container-side settings threaded through every provisioning step."""
    all_users_repo: str = "/var/gerrit/git/All-Users.git"
    scratch_root: str = "/tmp/account-setup"
    internal_admin_scratch_root: str = "/tmp/internal-admin-setup"
    internal_admin_key: str = "/var/gerrit/ssh/id_rsa"
    fallback_admin_key: str = "/var/gerrit/.ssh/id_rsa"
    http_port: int = 8080
    ssh_port: int = 29418
    ssh_connect_timeout: int = 5
    flush_settle_seconds: float = 2.0
    docker_binary: str = "docker"
    command_timeout: float = 120.0
    cache_names: List[str] = field(default_factory=lambda: list(CACHE_NAMES))

    @property
    def admin_key_candidates(self) -> List[str]:
        return [self.internal_admin_key, self.fallback_admin_key]
