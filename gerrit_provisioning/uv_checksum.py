"""
Pre-commit hook keeping the uv binary checksum in the Dockerfile honest.

Reads `ARG UV_VERSION=` and `ARG UV_CHECKSUM=` from the Dockerfile, compares
the checksum with the SHA-256 digest published alongside the uv release on
GitHub and patches the Dockerfile in place when they differ (autofix: the hook
then exits 1 so pre-commit shows the diff).

Exit codes:
    0  everything is valid and up to date
    1  the Dockerfile was modified, re-stage and retry
    2  hard error (network failure, missing file, unparsable ARG)
"""

import re
import sys
import time
from pathlib import Path
from typing import Callable, Optional, TextIO
import logging

import httpx

logger = logging.getLogger(__name__)

UV_TARGET = "uv-x86_64-unknown-linux-gnu.tar.gz"
RELEASE_CHECKSUM_URL = "https://github.com/astral-sh/uv/releases/download/{version}/{target}.sha256"
LATEST_RELEASE_URL = "https://api.github.com/repos/astral-sh/uv/releases/latest"

EXIT_OK = 0
EXIT_MODIFIED = 1
EXIT_ERROR = 2

_SHA256 = re.compile(r"^[0-9a-f]{64}$")
_VERSION = re.compile(r"^[0-9]+\.[0-9]+\.[0-9]+([a-zA-Z0-9.+-]*)?$")


class ChecksumError(Exception):
    """Raised when a published checksum or release cannot be retrieved"""
    pass


def is_valid_sha256(digest: Optional[str]) -> bool:
    return bool(digest) and bool(_SHA256.match(digest))


def is_valid_version(version: Optional[str]) -> bool:
    return bool(version) and bool(_VERSION.match(version))


def _arg_pattern(name: str) -> re.Pattern:
    return re.compile(rf"^ARG {re.escape(name)}=(?P<value>.*)$", re.MULTILINE)


def parse_arg(content: str, name: str) -> Optional[str]:
    """Value of the first `ARG <name>=<value>` line, or None."""
    match = _arg_pattern(name).search(content)
    if not match:
        return None
    return match.group("value").strip() or None


def patch_arg(content: str, name: str, value: str) -> str:
    """Replace the value of every `ARG <name>=` line."""
    return _arg_pattern(name).sub(lambda _: f"ARG {name}={value}", content)


def find_dockerfile(explicit: Optional[str] = None, start: Optional[Path] = None) -> Optional[Path]:
    """
    Locate the Dockerfile.

    An explicit path (from --dockerfile or DOCKERFILE) wins; otherwise walk
    upward from `start` (default: cwd) until a directory holding a
    Dockerfile is found.
    """
    if explicit:
        return Path(explicit)

    directory = (start or Path.cwd()).resolve()
    for candidate in [directory, *directory.parents]:
        dockerfile = candidate / "Dockerfile"
        if dockerfile.is_file():
            return dockerfile
    return None


class UvReleaseClient:
    """Reads uv release metadata from GitHub."""

    def __init__(
        self,
        github_token: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        retries: int = 2,
        retry_delay: float = 3.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.github_token = github_token
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=30.0, follow_redirects=True)
        self.retries = retries
        self.retry_delay = retry_delay
        self.sleep = sleep

    def close(self):
        """Close the HTTP client if it was created here."""
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> "UvReleaseClient":
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _headers(self, accept: Optional[str] = None) -> dict:
        headers = {}
        if self.github_token:
            headers["Authorization"] = f"Bearer {self.github_token}"
        if accept:
            headers["Accept"] = accept
        return headers

    def _get(self, url: str, accept: Optional[str] = None) -> httpx.Response:
        last_error = None
        for attempt in range(self.retries + 1):
            if attempt:
                self.sleep(self.retry_delay)
            try:
                response = self.client.get(url, headers=self._headers(accept))
            except httpx.TransportError as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.debug(f"GET {url} failed (attempt {attempt + 1}): {last_error}")
                continue

            if response.status_code >= 500 or response.status_code == 429:
                last_error = f"HTTP {response.status_code}"
                continue
            if response.status_code != 200:
                raise ChecksumError(f"HTTP {response.status_code} from {url}")
            return response

        raise ChecksumError(f"Request to {url} failed: {last_error}")

    def published_checksum(self, version: str) -> str:
        """
        Fetch the published SHA-256 digest of the Linux x86_64 tarball.

        The .sha256 sidecar has the format `<hex-digest>  <filename>`.

        Raises:
            ChecksumError: If the sidecar cannot be fetched or is empty
        """
        url = RELEASE_CHECKSUM_URL.format(version=version, target=UV_TARGET)
        body = self._get(url).text.strip()
        if not body:
            raise ChecksumError(f"Empty checksum file at {url}")
        return body.split()[0]

    def latest_version(self) -> Optional[str]:
        """
        Tag name of the newest uv release, or None if the API returned none.

        Raises:
            ChecksumError: If the API cannot be queried
        """
        response = self._get(LATEST_RELEASE_URL, accept="application/vnd.github+json")
        try:
            return response.json().get("tag_name") or None
        except ValueError as e:
            raise ChecksumError(f"Invalid JSON from GitHub API: {e}")


class ChecksumHook:
    """Validates (and optionally updates) UV_VERSION / UV_CHECKSUM."""

    def __init__(self, dockerfile: Path, releases: UvReleaseClient, stream: Optional[TextIO] = None):
        self.dockerfile = Path(dockerfile)
        self.releases = releases
        self.stream = stream or sys.stdout

    def _print(self, marker: str, message: str):
        print(f"{marker}  {message}", file=self.stream)

    def info(self, message: str):
        self._print("ℹ", message)

    def ok(self, message: str):
        self._print("✓", message)

    def warn(self, message: str):
        self._print("⚠", message)

    def err(self, message: str):
        self._print("✗", message)

    def _write(self, content: str):
        self.dockerfile.write_text(content, encoding="utf-8")

    def run(self, check_latest: bool = False, update_latest: bool = False) -> int:
        if update_latest:
            check_latest = True

        self.info(f"Dockerfile: {self.dockerfile}")
        try:
            content = self.dockerfile.read_text(encoding="utf-8")
        except OSError as e:
            self.err(f"Cannot read {self.dockerfile}: {e}")
            return EXIT_ERROR

        current_version = parse_arg(content, "UV_VERSION")
        current_checksum = parse_arg(content, "UV_CHECKSUM")
        if not current_version:
            self.err(f"Could not parse ARG UV_VERSION from {self.dockerfile}")
            return EXIT_ERROR
        if not current_checksum:
            self.err(f"Could not parse ARG UV_CHECKSUM from {self.dockerfile}")
            return EXIT_ERROR

        self.info(f"Current UV_VERSION  = {current_version}")
        self.info(f"Current UV_CHECKSUM = {current_checksum}")

        if not is_valid_version(current_version):
            self.err(f"UV_VERSION '{current_version}' does not look like a valid version.")
            return EXIT_ERROR
        if not is_valid_sha256(current_checksum):
            self.warn(f"UV_CHECKSUM '{current_checksum}' is not a valid SHA-256 hex digest.")
            self.warn("Will attempt to fetch the correct checksum.")

        self.info(f"Fetching published checksum for uv {current_version}...")
        try:
            published = self.releases.published_checksum(current_version)
        except ChecksumError as e:
            self.err(f"Failed to fetch checksum: {e}")
            self.err(f"Ensure UV_VERSION={current_version} refers to an existing release.")
            return EXIT_ERROR

        if not is_valid_sha256(published):
            self.err(f"Fetched checksum is not a valid SHA-256 digest: '{published}'")
            return EXIT_ERROR
        self.info(f"Published checksum  = {published}")

        modified = False
        if current_checksum != published:
            self.warn(f"Checksum mismatch for UV_VERSION={current_version}!")
            self.warn(f"  Dockerfile:  {current_checksum}")
            self.warn(f"  Published:   {published}")
            content = patch_arg(content, "UV_CHECKSUM", published)
            self._write(content)
            modified = True
            self.ok(f"UV_CHECKSUM updated to {published}")
        else:
            self.ok(f"UV_CHECKSUM is correct for UV_VERSION={current_version}")

        if check_latest:
            result = self._check_latest(content, current_version, update_latest)
            if result == EXIT_ERROR:
                return EXIT_ERROR
            modified = modified or result == EXIT_MODIFIED

        if modified:
            self.warn("Dockerfile was modified. Please stage the changes and retry.")
            return EXIT_MODIFIED

        self.ok("All checks passed.")
        return EXIT_OK

    def _check_latest(self, content: str, current_version: str, update: bool) -> int:
        self.info("Checking for latest uv release...")
        try:
            latest = self.releases.latest_version()
        except ChecksumError as e:
            # Non-fatal
            self.warn(f"Could not determine the latest uv release: {e}")
            return EXIT_OK

        if not latest:
            self.warn("GitHub API returned an empty tag_name (rate-limited?).")
            return EXIT_OK
        if latest == current_version:
            self.ok(f"uv {current_version} is already the latest release.")
            return EXIT_OK

        self.warn(f"A newer uv release is available: {latest} (current: {current_version})")
        if not update:
            self.info("Run with --update-latest to apply the upgrade.")
            return EXIT_OK

        self.info(f"Fetching checksum for uv {latest}...")
        try:
            latest_checksum = self.releases.published_checksum(latest)
        except ChecksumError as e:
            self.err(f"Could not fetch checksum for {latest}; aborting update. ({e})")
            return EXIT_ERROR
        if not is_valid_sha256(latest_checksum):
            self.err(f"Fetched checksum for {latest} is invalid: '{latest_checksum}'")
            return EXIT_ERROR

        self.info(f"Updating UV_VERSION  -> {latest}")
        self.info(f"Updating UV_CHECKSUM -> {latest_checksum}")
        content = patch_arg(content, "UV_VERSION", latest)
        content = patch_arg(content, "UV_CHECKSUM", latest_checksum)
        self._write(content)
        self.ok(f"Dockerfile updated to uv {latest}")
        return EXIT_MODIFIED


def run_hook(
    dockerfile: Optional[str] = None,
    github_token: Optional[str] = None,
    check_latest: bool = False,
    update_latest: bool = False,
    client: Optional[httpx.Client] = None,
    stream: Optional[TextIO] = None,
) -> int:
    path = find_dockerfile(dockerfile)
    if path is None:
        print("✗  Could not locate Dockerfile. Set the DOCKERFILE env var.", file=stream or sys.stdout)
        return EXIT_ERROR

    with UvReleaseClient(github_token=github_token, client=client) as releases:
        return ChecksumHook(path, releases, stream=stream).run(check_latest, update_latest)
