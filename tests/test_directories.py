"""
Tests for the directory resolver — layout, overrides and symbols.
"""

import pytest

from stackplane.core.config.defaults import PlannerDefaults
from stackplane.core.errors import NormalizationError
from stackplane.core.services.directories import resolve, resolve_for_stack, symbol_table


class TestResolve:
    def test_default_layout(self):
        layout = resolve("webapp")
        assert layout.base == "/opt/stacks"
        assert layout.stack == "/opt/stacks/webapp"
        assert layout.config == "/opt/stacks/webapp/config"
        assert layout.data == "/opt/stacks/webapp/data"
        assert layout.secrets == "/opt/stacks/webapp/secrets"

    def test_default_ownership_and_modes(self):
        layout = resolve("webapp")
        assert layout.get("data").owner == "root"
        assert layout.get("data").group == "root"
        assert layout.get("data").mode == "0750"
        assert layout.get("secrets").mode == "0700"

    def test_base_override(self):
        assert resolve("webapp", base_override="/srv/").stack == "/srv/webapp"

    def test_base_from_defaults(self):
        layout = resolve("webapp", defaults=PlannerDefaults(base_dir="/data/stacks"))
        assert layout.data == "/data/stacks/webapp/data"

    def test_reserved_entry_override(self):
        layout = resolve("webapp", extra_dirs={
            "data": {"path": "/mnt/fast/webapp", "owner": "1000", "mode": "0755"},
        })
        entry = layout.get("data")
        assert entry.path == "/mnt/fast/webapp"
        assert entry.owner == "1000"
        assert entry.mode == "0755"

    def test_relative_override_hangs_off_stack(self):
        layout = resolve("webapp", extra_dirs={"config": {"path": "etc"}})
        assert layout.config == "/opt/stacks/webapp/etc"

    def test_extra_directories(self):
        layout = resolve("webapp", extra_dirs={"logs": None, "cache": {"path": "tmp/cache"}})
        assert layout.path("logs") == "/opt/stacks/webapp/logs"
        assert layout.path("cache") == "/opt/stacks/webapp/tmp/cache"
        assert layout.names == ["base", "stack", "config", "data", "secrets", "cache", "logs"]

    def test_int_mode_is_octal_bits(self):
        # YAML reads unquoted 0750 as 488
        assert resolve("webapp", extra_dirs={"data": {"mode": 0o750}}).get("data").mode == "0750"

    def test_invalid_mode(self):
        with pytest.raises(NormalizationError) as exc:
            resolve("webapp", extra_dirs={"data": {"mode": "rwx"}})
        assert exc.value.issue.path == "directories.data.mode"

    def test_deterministic(self):
        extra = {"logs": {}, "data": {"owner": "app"}}
        assert resolve("x", extra_dirs=extra) == resolve("x", extra_dirs=extra)


class TestSymbols:
    def test_symbol_table(self):
        symbols = symbol_table(resolve("x", extra_dirs={"logs": {}}))
        assert symbols["$_data"] == "/opt/stacks/x/data"
        assert symbols["$_stack"] == "/opt/stacks/x"
        assert symbols["$_base"] == "/opt/stacks"
        assert symbols["$_logs"] == "/opt/stacks/x/logs"

    def test_resolve_for_stack(self):
        layout = resolve_for_stack({"name": "x", "directories": {"base": {"path": "/srv"}}})
        assert layout.stack == "/srv/x"
