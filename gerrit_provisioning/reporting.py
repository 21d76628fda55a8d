"""GitHub Actions output: workflow annotations, console progress and the step summary."""

from pathlib import Path
from typing import List, Optional, TextIO
import logging
import sys

from gerrit_provisioning.results import ProvisioningReport, StepStatus

logger = logging.getLogger(__name__)

SUMMARY_KEY_LINES = 5

_MARKERS = {
    "debug": " ",
    "info": "ℹ",
    "warning": "⚠",
    "error": "✗",
}

_STATUS_ICONS = {
    StepStatus.SUCCESS: "✅",
    StepStatus.SKIPPED: "⏭️",
    StepStatus.DEGRADED: "⚠️",
    StepStatus.FAILED: "❌",
}


def annotate_error(message: str, stream: Optional[TextIO] = None):
    print(f"::error::{message}", file=stream or sys.stdout)


def annotate_warning(message: str, stream: Optional[TextIO] = None):
    print(f"::warning::{message}", file=stream or sys.stdout)


class ConsoleReporter:
    """log_callback that prints provisioning progress for humans."""

    def __init__(self, stream: Optional[TextIO] = None, verbose: bool = False):
        self.stream = stream or sys.stdout
        self.verbose = verbose

    def __call__(self, level: str, message: str):
        level = level.lower()
        if level == "debug" and not self.verbose:
            return
        print(f"  {_MARKERS.get(level, ' ')} {message}", file=self.stream)


def render_step_summary(report: ProvisioningReport) -> str:
    """Build the Markdown block appended to the GitHub step summary."""
    account = report.account
    lines = [
        "### SSH Access Configured 🔑",
        "",
        "SSH public keys have been added to the Gerrit container(s).",
        "",
        f"**Username:** `{account.username}`",
        "",
    ]

    if report.custom_account:
        lines.append(f"**Account:** Custom user account created (ID: {account.account_id})")
        lines.append("")
        if report.instances and all(instance.group_member for instance in report.instances):
            lines.append("**Group:** Added to Administrators (full create/merge permissions)")
        else:
            lines.append("**Group:** Administrators membership could not be confirmed on every instance")
    else:
        lines.append(f"**Account:** Default admin account (ID: {account.account_id})")
    lines.append("")

    if report.instances:
        lines.append("| Instance | Account | External ID | Group | Cache flush |")
        lines.append("|---|---|---|---|---|")
        for instance in report.instances:
            cells = []
            for step in ("account", "external ID", "group membership", "cache flush"):
                result = instance.step(step)
                cells.append(_STATUS_ICONS[result.status] if result else "-")
            lines.append(f"| {instance.slug} | " + " | ".join(cells) + " |")
        lines.append("")

    lines.append("**Keys added:**")
    lines.append("```")
    lines.extend(report.key_lines[:SUMMARY_KEY_LINES])
    if len(report.key_lines) > SUMMARY_KEY_LINES:
        lines.append("... (and more)")
    lines.append("```")
    lines.append("")
    return "\n".join(lines) + "\n"


def write_step_summary(report: ProvisioningReport, summary_path: Optional[str]) -> bool:
    """
    Append the summary block to the step summary file.

    Returns:
        True if written, False if no summary target is configured or writing failed
    """
    if not summary_path:
        logger.debug("GITHUB_STEP_SUMMARY not set, skipping step summary")
        return False

    try:
        with open(Path(summary_path), "a", encoding="utf-8") as f:
            f.write(render_step_summary(report))
        return True
    except OSError as e:
        logger.warning(f"Could not write step summary to {summary_path}: {e}")
        return False


def print_final_message(report: ProvisioningReport, stream: Optional[TextIO] = None):
    out = stream or sys.stdout
    username = report.account.username
    print("", file=out)
    print("SSH authentication keys configured ✅", file=out)
    print("", file=out)
    print(f"You can now SSH to the Gerrit container(s) as '{username}'", file=out)
    print(f"Example: ssh -p <port> {username}@<host>", file=out)
    if report.custom_account:
        print("", file=out)
        print(f"User '{username}' has been added to the Administrators group.", file=out)
        print("This grants full permissions to create and merge changes.", file=out)


def failure_messages(report: ProvisioningReport) -> List[str]:
    messages = []
    for instance in report.instances:
        for step in instance.failures:
            messages.append(f"{instance.slug}: {step.step} failed: {step.message}")
    return messages
