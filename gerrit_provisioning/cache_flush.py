"""
Gerrit cache invalidation.

Accounts, external IDs and groups written straight into All-Users are only
picked up once Gerrit drops its cached copies. Two ways of asking for that are
tried in order:

1. HTTP: become the internal admin through the development login endpoint
   (only available with DEVELOPMENT_BECOME_ANY_ACCOUNT) and POST a flush for
   each cache.
2. SSH: run `gerrit flush-caches` as the internal admin on the SSH port,
   first with --all, then cache by cache.

When both fail the changes still apply after the next Gerrit restart, so the
outcome is reported as degraded rather than failed.
"""

import time
from typing import Callable, Dict, List, Optional, Tuple
import logging

from gerrit_provisioning.config import ProvisionerConfig
from gerrit_provisioning.remote import ContainerExec
from gerrit_provisioning.results import StepResult, StepStatus
from gerrit_provisioning.schemas import INTERNAL_ADMIN_ACCOUNT_ID

logger = logging.getLogger(__name__)

SESSION_COOKIE = "GerritAccount"
XSRF_COOKIE = "XSRF_TOKEN"
HTTP_ONLY_PREFIX = "#HttpOnly_"


def parse_cookie_jar(jar: str) -> Dict[str, str]:
    """
    Parse a Netscape cookie jar as written by `curl -c -`.

    HttpOnly cookies are written with a `#HttpOnly_` prefix on the domain
    field; they are kept, all other comment lines are skipped.
    """
    cookies = {}
    for line in jar.splitlines():
        if line.startswith(HTTP_ONLY_PREFIX):
            line = line[len(HTTP_ONLY_PREFIX):]
        elif not line.strip() or line.startswith("#"):
            continue

        fields = line.split("\t")
        if len(fields) >= 7:
            cookies[fields[5]] = fields[6].strip()
    return cookies


class CacheFlusher:
    """Flushes the account and group caches of one Gerrit container."""

    def __init__(
        self,
        config: ProvisionerConfig,
        log_callback: Optional[Callable[[str, str], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.log_callback = log_callback or self._default_log
        self.sleep = sleep

    def _default_log(self, level: str, message: str):
        logger.log(getattr(logging, level.upper(), logging.INFO), message)

    def _log(self, level: str, message: str):
        self.log_callback(level, message)

    @property
    def base_url(self) -> str:
        return f"http://localhost:{self.config.http_port}"

    def flush(self, executor: ContainerExec) -> StepResult:
        self._log("info", "Reloading Gerrit caches...")

        flushed = self.flush_via_http(executor)
        if flushed:
            return StepResult(
                "cache flush", StepStatus.SUCCESS,
                f"Flushed {len(flushed)} cache(s) via HTTP API", changed=True,
            )

        flushed = self.flush_via_ssh(executor)
        if flushed:
            return StepResult(
                "cache flush", StepStatus.SUCCESS,
                f"Flushed {', '.join(flushed)} via SSH", changed=True,
            )

        message = "Cache flush not available, changes may take effect on next Gerrit restart"
        self._log("warning", message)
        return StepResult("cache flush", StepStatus.DEGRADED, message)

    def login(self, executor: ContainerExec) -> Optional[Tuple[str, str]]:
        """
        Become the internal admin account.

        Returns:
            Tuple of (session cookie, XSRF token), or None without a usable session
        """
        if self.config.flush_settle_seconds > 0:
            self.sleep(self.config.flush_settle_seconds)

        result = executor.run([
            "curl", "-s",
            "--retry", "2", "--retry-delay", "1",
            "-o", "/dev/null",
            "-c", "-",
            f"{self.base_url}/login/?account_id={INTERNAL_ADMIN_ACCOUNT_ID}",
        ])
        if not result.ok:
            logger.debug(f"Login request failed: {result.stderr.strip()}")
            return None

        cookies = parse_cookie_jar(result.stdout)
        session = cookies.get(SESSION_COOKIE)
        token = cookies.get(XSRF_COOKIE)
        if not session or not token:
            return None
        return session, token

    def flush_via_http(self, executor: ContainerExec) -> List[str]:
        """Returns the names of the caches flushed over HTTP."""
        credentials = self.login(executor)
        if credentials is None:
            self._log("debug", "No HTTP session available, falling back to SSH")
            return []

        session, token = credentials
        self._log("info", "Using HTTP API to flush caches...")
        flushed = []
        for cache in self.config.cache_names:
            result = executor.run([
                "curl", "-s",
                "-o", "/dev/null",
                "-w", "%{http_code}",
                "-X", "POST",
                "-b", f"{SESSION_COOKIE}={session}",
                "-H", f"X-Gerrit-Auth: {token}",
                f"{self.base_url}/a/config/server/caches/{cache}/flush",
            ])
            status = result.stdout.strip()
            if result.ok and status.startswith("2"):
                flushed.append(cache)
            else:
                self._log("warning", f"HTTP flush of cache {cache} failed (status {status or 'n/a'})")
        return flushed

    def _admin_key(self, executor: ContainerExec) -> Optional[str]:
        for path in self.config.admin_key_candidates:
            if executor.file_exists(path):
                return path
        return None

    def _ssh_command(self, key_path: str) -> List[str]:
        return [
            "ssh",
            "-o", "StrictHostKeyChecking=no",
            "-o", "UserKnownHostsFile=/dev/null",
            "-o", f"ConnectTimeout={self.config.ssh_connect_timeout}",
            "-p", str(self.config.ssh_port),
            "-i", key_path,
            "admin@localhost",
            "gerrit", "flush-caches",
        ]

    def flush_via_ssh(self, executor: ContainerExec) -> List[str]:
        """Returns the names of the caches flushed over SSH ("all" for --all)."""
        key_path = self._admin_key(executor)
        if key_path is None:
            self._log("info", "No SSH key found for cache flushing, skipping...")
            return []

        command = self._ssh_command(key_path)
        if executor.run(command + ["--all"]).ok:
            self._log("info", "All caches flushed successfully via SSH")
            return ["all"]

        flushed = []
        for cache in self.config.cache_names:
            if executor.run(command + ["--cache", cache]).ok:
                flushed.append(cache)
            else:
                self._log("debug", f"SSH flush of cache {cache} failed")
        return flushed
