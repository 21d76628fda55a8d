"""
Storage layout of the All-Users metadata repository.

Pure helpers that compute ref names, file paths and file contents the way
Gerrit lays them out in NoteDb. Nothing here talks to a container.
"""

import hashlib
import re
from typing import Dict, Iterable, List, Optional, Tuple

EXTERNAL_IDS_REF = "refs/meta/external-ids"
GROUP_NAMES_REF = "refs/meta/group-names"

ACCOUNT_CONFIG_FILE = "account.config"
AUTHORIZED_KEYS_FILE = "authorized_keys"
GROUP_CONFIG_FILE = "group.config"
MEMBERS_FILE = "members"

ADMINISTRATORS_GROUP = "Administrators"

_NAME_LINE = re.compile(r"^\s*name\s*=\s*(?P<name>.+?)\s*$")
_UUID_LINE = re.compile(r"^\s*uuid\s*=\s*(?P<uuid>\S+)\s*$")


def account_shard(account_id: int) -> str:
    """Two-digit shard: the account ID modulo 100, zero padded."""
    return f"{account_id % 100:02d}"


def account_ref(account_id: int) -> str:
    return f"refs/users/{account_shard(account_id)}/{account_id}"


def render_account_config(full_name: str, email: str) -> str:
    return (
        "[account]\n"
        f"  fullName = {full_name}\n"
        f"  preferredEmail = {email}\n"
        "  active = true\n"
    )


def render_authorized_keys(keys: Iterable[str]) -> str:
    lines = [key.strip() for key in keys if key.strip()]
    return "\n".join(lines) + "\n" if lines else ""


def external_id_key(username: str, scheme: str = "username") -> str:
    return f"{scheme}:{username}"


def external_id_path(key: str) -> str:
    """
    Content-addressed location of an external ID note.

    The SHA-1 of the key is split into a two character fan-out directory
    and the remaining 38 characters as the file name.
    """
    digest = hashlib.sha1(key.encode("utf-8")).hexdigest()
    return f"{digest[:2]}/{digest[2:]}"


def render_external_id(key: str, account_id: int) -> str:
    return (
        f'[externalId "{key}"]\n'
        f"  accountId = {account_id}\n"
    )


def group_ref(group_uuid: str) -> str:
    return f"refs/groups/{group_uuid[:2]}/{group_uuid}"


def render_group_config(name: str = ADMINISTRATORS_GROUP, visible_to_all: bool = False) -> str:
    return (
        "[group]\n"
        f"  name = {name}\n"
        f"  visibleToAll = {'true' if visible_to_all else 'false'}\n"
    )


def parse_members(content: Optional[str]) -> List[str]:
    if not content:
        return []
    return [line.strip() for line in content.splitlines() if line.strip()]


def add_member(content: Optional[str], account_id: int) -> Tuple[str, bool]:
    """
    Add an account ID to a members file.

    Returns:
        Tuple of (new content, changed). The content is sorted and
        deduplicated; changed is False when the ID was already listed.
    """
    members = parse_members(content)
    member = str(account_id)
    if member in members:
        return content or "", False

    members = sorted(set(members + [member]))
    return "\n".join(members) + "\n", True


def find_group_uuid(files: Dict[str, str], group_name: str = ADMINISTRATORS_GROUP) -> Optional[str]:
    """
    Locate a group's UUID in the checked out group-names tree.

    Args:
        files: Mapping of path -> content of every file on the ref
        group_name: Name declared by the wanted group

    Returns:
        The declared `uuid` of the matching entry, else its file name
        (without any fan-out directory). None if no entry matches.
    """
    for path in sorted(files):
        content = files[path] or ""
        name = None
        uuid = None
        for line in content.splitlines():
            name_match = _NAME_LINE.match(line)
            if name_match:
                name = name_match.group("name")
                continue
            uuid_match = _UUID_LINE.match(line)
            if uuid_match:
                uuid = uuid_match.group("uuid")

        if name == group_name:
            return uuid or path.rsplit("/", 1)[-1]

    return None
