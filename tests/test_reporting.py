import io

from gerrit_provisioning.reporting import (
    ConsoleReporter,
    annotate_error,
    annotate_warning,
    failure_messages,
    render_step_summary,
    write_step_summary,
)
from gerrit_provisioning.results import InstanceReport, ProvisioningReport, StepResult, StepStatus
from gerrit_provisioning.schemas import AccountSpec


def _instance(slug, group_status=StepStatus.SUCCESS, account_status=StepStatus.SUCCESS):
    return InstanceReport(
        slug=slug,
        container_id=f"cid-{slug}",
        steps=[
            StepResult("internal admin", StepStatus.SUCCESS, "ok"),
            StepResult("account", account_status, "push rejected" if account_status == StepStatus.FAILED else "ok"),
            StepResult("external ID", StepStatus.SUCCESS, "ok"),
            StepResult("group membership", group_status, "ok"),
            StepResult("cache flush", StepStatus.DEGRADED, "not available"),
        ],
    )


def _report(custom=True, keys=None, instances=None):
    account = AccountSpec.custom("ci-bot") if custom else AccountSpec.internal_admin()
    return ProvisioningReport(
        account=account,
        key_lines=keys or ["ssh-ed25519 AAAAkey1 one"],
        custom_account=custom,
        instances=instances if instances is not None else [_instance("main")],
    )


class TestAnnotations:
    """Test GitHub workflow command output"""

    def test_error_annotation(self):
        """Errors use the ::error:: workflow command"""
        out = io.StringIO()
        annotate_error("bad input", stream=out)

        assert out.getvalue() == "::error::bad input\n"

    def test_warning_annotation(self):
        """Warnings use the ::warning:: workflow command"""
        out = io.StringIO()
        annotate_warning("careful", stream=out)

        assert out.getvalue() == "::warning::careful\n"

    def test_failure_messages_name_instance_and_step(self):
        """Each failed step produces one message"""
        report = _report(instances=[_instance("main"), _instance("replica", account_status=StepStatus.FAILED)])

        assert failure_messages(report) == ["replica: account failed: push rejected"]


class TestConsoleReporter:
    """Test console progress output"""

    def test_debug_hidden_unless_verbose(self):
        """Debug lines only show in verbose mode"""
        out = io.StringIO()
        ConsoleReporter(stream=out)("debug", "git fetch")
        assert out.getvalue() == ""

        ConsoleReporter(stream=out, verbose=True)("debug", "git fetch")
        assert "git fetch" in out.getvalue()

    def test_warning_marker(self):
        """Warnings carry a marker"""
        out = io.StringIO()
        ConsoleReporter(stream=out)("warning", "flush unavailable")

        assert out.getvalue() == "  ⚠ flush unavailable\n"


class TestStepSummary:
    """Test the Markdown step summary"""

    def test_custom_account_summary(self):
        """Custom accounts report ID and group membership"""
        summary = render_step_summary(_report())

        assert summary.startswith("### SSH Access Configured 🔑\n")
        assert "**Username:** `ci-bot`" in summary
        assert "Custom user account created (ID: 1000001)" in summary
        assert "Added to Administrators" in summary
        assert "| main | ✅ | ✅ | ✅ | ⚠️ |" in summary

    def test_group_not_confirmed(self):
        """A skipped membership is not claimed in the summary"""
        report = _report(instances=[_instance("main"), _instance("replica", group_status=StepStatus.SKIPPED)])

        summary = render_step_summary(report)

        assert "Added to Administrators" not in summary
        assert "could not be confirmed" in summary

    def test_default_account_summary(self):
        """The default account has no group line"""
        summary = render_step_summary(_report(custom=False))

        assert "Default admin account (ID: 1000000)" in summary
        assert "**Group:**" not in summary

    def test_key_preview_is_truncated(self):
        """Only the first five keys are listed"""
        keys = [f"ssh-ed25519 AAAAkey{i} k{i}" for i in range(7)]

        summary = render_step_summary(_report(keys=keys))

        assert "ssh-ed25519 AAAAkey4 k4" in summary
        assert "ssh-ed25519 AAAAkey5 k5" not in summary
        assert "... (and more)" in summary

    def test_short_key_list_not_marked(self):
        """Five or fewer keys are shown without an ellipsis"""
        keys = [f"ssh-ed25519 AAAAkey{i} k{i}" for i in range(5)]

        assert "(and more)" not in render_step_summary(_report(keys=keys))

    def test_write_appends(self, tmp_path):
        """The summary is appended to existing content"""
        summary_file = tmp_path / "summary.md"
        summary_file.write_text("## Previous step\n")

        assert write_step_summary(_report(), str(summary_file)) is True

        content = summary_file.read_text()
        assert content.startswith("## Previous step\n")
        assert "SSH Access Configured" in content

    def test_write_without_target(self):
        """No summary path means nothing is written"""
        assert write_step_summary(_report(), None) is False

    def test_write_to_missing_directory(self, tmp_path):
        """An unwritable target is reported, not raised"""
        assert write_step_summary(_report(), str(tmp_path / "missing" / "summary.md")) is False
