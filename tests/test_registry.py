"""
Tests for TestRegistry and the command line runner.

Tests cover:
- Registering and selecting tests
- Pass/fail reports
- The registered GATT client scenarios
- TAP output and exit status
"""
import pytest

from attharness.cli import main
from attharness.engine.script import SENTINEL, raw_pdu
from attharness.exceptions import ConfigurationError, PduContentMismatch
from attharness.models import ContextRole, RunVerdict
from attharness.registry import TestRegistry
from attharness.suites.gatt_client import build_registry, run_client

SCENARIOS = ["/TP/GAC/CL/BV-01-C", "/TP/GAD/CL/BV-01-C", "/TP/GAD/CL/BV-02-C-1"]


class TestRegistration:
    """Tests for define_test() and select()."""

    def test_duplicate_name(self):
        """Test that a name can be registered only once."""
        registry = TestRegistry()
        registry.define_test("/a", run_client, ContextRole.RAW_TRANSPORT, None, raw_pdu(0x01))
        with pytest.raises(ConfigurationError):
            registry.define_test("/a", run_client, ContextRole.RAW_TRANSPORT, None, raw_pdu(0x01))

    def test_empty_script(self):
        """Test that a script needs at least one vector."""
        with pytest.raises(ConfigurationError):
            TestRegistry().define_test("/a", run_client, ContextRole.RAW_TRANSPORT, None)

    def test_sentinel_inside_script(self):
        """Test that an invalid vector is rejected at registration."""
        registry = TestRegistry()
        with pytest.raises(ConfigurationError):
            registry.define_test(
                "/a", run_client, ContextRole.RAW_TRANSPORT, None,
                raw_pdu(0x02, 0x00, 0x02), SENTINEL, raw_pdu(0x03, 0x00, 0x02),
            )
        assert "/a" not in registry

    def test_zero_length_vector(self):
        """Test that an empty PDU is rejected at registration."""
        registry = TestRegistry()
        with pytest.raises(ConfigurationError) as exc_info:
            registry.define_test("/a", run_client, ContextRole.RAW_TRANSPORT, None, raw_pdu())
        assert exc_info.value.details["size"] == 0
        assert len(registry) == 0

    def test_each_test_owns_its_case(self):
        """Test that registered tests do not share script storage."""
        registry = TestRegistry()
        first = registry.define_test("/a", run_client, ContextRole.RAW_TRANSPORT, None, raw_pdu(0x01))
        second = registry.define_test("/b", run_client, ContextRole.RAW_TRANSPORT, None, raw_pdu(0x02))
        assert first.test_case is not second.test_case
        assert first.test_case.vectors != second.test_case.vectors

    def test_select_by_prefix(self):
        """Test path selection over the registered scenarios."""
        registry = build_registry()
        assert registry.names() == SCENARIOS
        assert [t.name for t in registry.select(["/TP/GAD"])] == SCENARIOS[1:]
        assert len(registry.select()) == 3


class TestReports:
    """Tests for run() and run_one()."""

    @pytest.mark.parametrize("name", SCENARIOS)
    def test_scenario_passes(self, name):
        """Test each registered GATT client scenario end to end."""
        registry = build_registry()
        report = registry.run_one(registry[name])
        assert report.passed, report.error
        assert report.verdict == RunVerdict.PASSED

    def test_failure_report(self):
        """Test that a script violation becomes a failed report."""
        registry = TestRegistry()
        registry.define_test(
            "/bad", run_client, ContextRole.RAW_TRANSPORT, None, raw_pdu(0x02, 0x17, 0x00)
        )
        [report] = registry.run()

        assert not report.passed
        assert report.error_type == PduContentMismatch.__name__
        assert report.details["expected"] == "021700"

    def test_unexpected_exception_report(self):
        """Test that a crashing test function is reported, not raised."""
        registry = TestRegistry()

        def broken(test_case, debug_sink=None):
            raise RuntimeError("boom")

        registry.define_test("/broken", broken, ContextRole.RAW_TRANSPORT, None, raw_pdu(0x01))
        [report] = registry.run()
        assert report.verdict == RunVerdict.FAILED
        assert report.error == "boom"


class TestCli:
    """Tests for the attharness command."""

    def test_list(self, capsys):
        """Test that --list prints names only."""
        assert main(["--list"]) == 0
        assert capsys.readouterr().out.split() == SCENARIOS

    def test_run_all(self, capsys):
        """Test TAP output for a passing run."""
        assert main([]) == 0
        out = capsys.readouterr().out
        assert "1..3" in out
        assert "ok 1 /TP/GAC/CL/BV-01-C" in out
        assert "not ok" not in out

    def test_run_path(self, capsys):
        """Test running a subset."""
        assert main(["-p", "/TP/GAD/CL/BV-02"]) == 0
        out = capsys.readouterr().out
        assert "1..1" in out
        assert "ok 1 /TP/GAD/CL/BV-02-C-1" in out

    def test_verbose_hexdump(self, capsys):
        """Test that -v prints the PDU trace."""
        assert main(["-v", "-p", "/TP/GAC"]) == 0
        assert "GATT: > 02 00 02" in capsys.readouterr().out
