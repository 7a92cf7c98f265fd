"""
Unit tests for host environment probing.

Each test builds a fake filesystem root under tmp_path so the probe never
looks at the real host.
"""

import pytest

from texview.utils.environment import (
    WEBKIT_SANDBOX_DISABLE_VAR,
    WEBKIT_SANDBOX_DISABLE_VAR_MODERN,
    check_dependencies,
    detect_sandbox_restrictions,
    sandbox_environment,
)


def _write(root, relative, text=""):
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)


@pytest.mark.unit
class TestDetectSandboxRestrictions:
    """Tests for detect_sandbox_restrictions()."""

    def test_plain_host(self, tmp_path):
        probe = detect_sandbox_restrictions(environ={}, proc_root=tmp_path)

        assert probe.disabled is False
        assert probe.reason is None

    def test_wsl_interop(self, tmp_path):
        probe = detect_sandbox_restrictions(environ={"WSL_INTEROP": "/run/x"}, proc_root=tmp_path)

        assert probe.disabled
        assert "WSL" in probe.reason

    @pytest.mark.parametrize("marker", ["run/.containerenv", ".dockerenv", ".flatpak-info"])
    def test_container_markers(self, tmp_path, marker):
        _write(tmp_path, marker)

        probe = detect_sandbox_restrictions(environ={}, proc_root=tmp_path)

        assert probe.disabled
        assert marker in probe.reason

    def test_snap(self, tmp_path):
        probe = detect_sandbox_restrictions(environ={"SNAP": "/snap/texview/1"}, proc_root=tmp_path)

        assert probe.disabled

    def test_forced_by_environment(self, tmp_path):
        environ = {WEBKIT_SANDBOX_DISABLE_VAR: "1"}

        assert detect_sandbox_restrictions(environ=environ, proc_root=tmp_path).disabled

    def test_proc_version_mentions_microsoft(self, tmp_path):
        _write(tmp_path, "proc/version", "Linux version 5.15.90.1-microsoft-standard-WSL2")

        probe = detect_sandbox_restrictions(environ={}, proc_root=tmp_path)

        assert probe.disabled
        assert "/proc/version" in probe.reason

    def test_userns_disabled(self, tmp_path):
        _write(tmp_path, "proc/sys/kernel/unprivileged_userns_clone", "0\n")

        assert detect_sandbox_restrictions(environ={}, proc_root=tmp_path).disabled

    def test_userns_enabled(self, tmp_path):
        _write(tmp_path, "proc/sys/kernel/unprivileged_userns_clone", "1\n")

        assert not detect_sandbox_restrictions(environ={}, proc_root=tmp_path).disabled

    def test_apparmor_restriction(self, tmp_path):
        _write(tmp_path, "proc/sys/kernel/apparmor_restrict_unprivileged_userns", "1\n")

        probe = detect_sandbox_restrictions(environ={}, proc_root=tmp_path)

        assert probe.disabled
        assert "AppArmor" in probe.reason

    def test_container_cgroups(self, tmp_path):
        _write(tmp_path, "proc/1/cgroup", "0::/kubepods/besteffort/pod1234\n")

        probe = detect_sandbox_restrictions(environ={}, proc_root=tmp_path)

        assert probe.disabled
        assert "Cgroups" in probe.reason


@pytest.mark.unit
def test_sandbox_environment():
    assert sandbox_environment(False) == {}
    assert sandbox_environment(True) == {
        WEBKIT_SANDBOX_DISABLE_VAR: "1",
        WEBKIT_SANDBOX_DISABLE_VAR_MODERN: "1",
    }


@pytest.mark.unit
def test_check_dependencies_reports_missing(tmp_path):
    missing = check_dependencies(
        latex_compiler=str(tmp_path / "pdflatex"),
        rasterizer=str(tmp_path / "pdftocairo"),
        biber_tool=str(tmp_path / "biber"),
    )

    assert len(missing) == 3
    assert any("poppler-utils" in label for label in missing)


@pytest.mark.unit
def test_check_dependencies_finds_tools(fake_toolchain):
    config = fake_toolchain.config

    assert check_dependencies(config.latex_compiler, config.rasterizer, config.biber_tool) == []
