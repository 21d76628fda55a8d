import json
from pathlib import Path
from typing import List, Tuple
import logging

from gerrit_provisioning.schemas import InstanceEntry

logger = logging.getLogger(__name__)


class ManifestError(Exception):
    """Raised when the instance tracking manifest is missing or malformed"""
    pass


def load_instances(path: Path) -> Tuple[List[InstanceEntry], List[str]]:
    """
    Read the instance tracking manifest.

    The manifest is a JSON object mapping instance slug to {"cid": ...}.
    Entries are returned in sorted slug order.

    Returns:
        Tuple of (instances with a container ID, warnings for skipped entries)

    Raises:
        ManifestError: If the file is missing or is not a JSON object
    """
    path = Path(path)
    if not path.is_file():
        raise ManifestError(f"Instances file not found: {path}")

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as e:
        raise ManifestError(f"Cannot read instances file {path}: {e}")
    except json.JSONDecodeError as e:
        raise ManifestError(f"Instances file {path} is not valid JSON: {e}")

    if not isinstance(data, dict):
        raise ManifestError(f"Instances file {path} must contain a JSON object")

    instances = []
    warnings = []
    for slug in sorted(data):
        entry = data[slug]
        cid = entry.get("cid") if isinstance(entry, dict) else None
        if cid is None or str(cid).strip() in ("", "null"):
            warnings.append(f"No container ID found for {slug}, skipping...")
            continue
        instances.append(InstanceEntry(slug=slug, cid=str(cid).strip()))

    logger.debug(f"Loaded {len(instances)} instance(s) from {path}")
    return instances, warnings
