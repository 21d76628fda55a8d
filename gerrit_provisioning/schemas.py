from pydantic import BaseModel, ValidationError, validator, Field
from typing import List, Optional
import re

INTERNAL_ADMIN_ACCOUNT_ID = 1000000
CUSTOM_ACCOUNT_ID = 1000001

VALID_KEY_TYPES = (
    "ssh-rsa",
    "ssh-ed25519",
    "ssh-dss",
    "ecdsa-sha2-nistp256",
    "ecdsa-sha2-nistp384",
    "ecdsa-sha2-nistp521",
    "sk-ssh-ed25519",
    "sk-ecdsa-sha2-nistp256",
)

USERNAME_PATTERN = re.compile(r"[A-Za-z0-9._-]+")
USERNAME_MAX_LENGTH = 64

_KEY_LINE = re.compile(r"^(%s) " % "|".join(re.escape(t) for t in VALID_KEY_TYPES))


def _is_skippable(line: str) -> bool:
    stripped = line.strip()
    return not stripped or stripped.startswith("#")


def parse_key_lines(keys: str) -> List[str]:
    """Return the key lines of an SSH_AUTH_KEYS value, without blanks and comments."""
    return [line.strip() for line in keys.split("\n") if not _is_skippable(line)]


def format_validation_errors(error: ValidationError) -> List[str]:
    """Flatten a pydantic ValidationError into plain messages."""
    messages = []
    for err in error.errors():
        ctx_error = (err.get("ctx") or {}).get("error")
        messages.append(str(ctx_error) if ctx_error else err["msg"])
    return messages


class AccountSpec(BaseModel):
    account_id: int = Field(..., gt=0)
    username: str
    full_name: str
    email: str

    @validator("username")
    def validate_username(cls, v):
        if not USERNAME_PATTERN.fullmatch(v):
            raise ValueError(f"Invalid username: '{v}'")
        return v

    @validator("full_name", "email")
    def validate_single_line(cls, v):
        # Written verbatim into account.config
        if "\n" in v or "\r" in v:
            raise ValueError("Value must not contain line breaks")
        return v

    @property
    def is_internal_admin(self) -> bool:
        return self.account_id == INTERNAL_ADMIN_ACCOUNT_ID

    @classmethod
    def internal_admin(cls) -> "AccountSpec":
        return cls(
            account_id=INTERNAL_ADMIN_ACCOUNT_ID,
            username="admin",
            full_name="Administrator",
            email="admin@example.com",
        )

    @classmethod
    def custom(cls, username: str) -> "AccountSpec":
        return cls(
            account_id=CUSTOM_ACCOUNT_ID,
            username=username,
            full_name=username,
            email=f"{username}@gerrit.local",
        )


class ProvisioningRequest(BaseModel):
    ssh_auth_username: Optional[str] = None
    ssh_auth_keys: str

    @validator("ssh_auth_username")
    def validate_username(cls, v):
        if v is None or v == "":
            return None
        if not USERNAME_PATTERN.fullmatch(v):
            raise ValueError(
                f"Invalid SSH_AUTH_USERNAME: '{v}'. Username must contain only letters, "
                "numbers, dots, underscores, and hyphens"
            )
        if len(v) > USERNAME_MAX_LENGTH:
            raise ValueError(f"SSH_AUTH_USERNAME too long (max {USERNAME_MAX_LENGTH} characters)")
        return v

    @validator("ssh_auth_keys")
    def validate_keys(cls, v):
        for line_num, line in enumerate(v.split("\n"), start=1):
            if _is_skippable(line):
                continue
            if not _KEY_LINE.match(line):
                raise ValueError(
                    f"Invalid SSH key format on line {line_num}. "
                    f"Expected format: <key-type> <base64-key> [comment]. Got: {line[:50]}..."
                )
        if not parse_key_lines(v):
            raise ValueError("SSH_AUTH_KEYS contains no keys")
        return v

    @property
    def is_custom_account(self) -> bool:
        return self.ssh_auth_username is not None

    @property
    def key_lines(self) -> List[str]:
        return parse_key_lines(self.ssh_auth_keys)

    def account(self) -> AccountSpec:
        if self.ssh_auth_username:
            return AccountSpec.custom(self.ssh_auth_username)
        return AccountSpec.internal_admin()


class InstanceEntry(BaseModel):
    slug: str
    cid: Optional[str] = None
