"""
Tests for shorthand parsing — ports and directory symbols.
"""

import pytest

from stackplane.core.models.plan import PortMapping
from stackplane.core.services.shorthand import ShorthandError, parse_port, split_symbol, volume_source


class TestParsePort:
    @pytest.mark.parametrize(
        ("entry", "expected"),
        [
            ("8080:80/tcp", PortMapping(published=8080, target=80, protocol="tcp")),
            ("8080:80", PortMapping(published=8080, target=80)),
            ("53:53/udp", PortMapping(published=53, target=53, protocol="udp")),
            ("80", PortMapping(published=80, target=80)),
            (443, PortMapping(published=443, target=443)),
            ("127.0.0.1:8080:80", PortMapping(published=8080, target=80, host_ip="127.0.0.1")),
            ({"target": 80, "published": 8080}, PortMapping(published=8080, target=80)),
            ({"target": 80}, PortMapping(published=80, target=80)),
            ({"target": "53", "protocol": "udp"}, PortMapping(published=53, target=53, protocol="udp")),
        ],
    )
    def test_accepted_forms(self, entry, expected):
        assert parse_port(entry) == expected

    @pytest.mark.parametrize(
        "entry",
        ["0:80", "8080:70000", "8080:80/sctp", "http", "8000-8010:80", "a:b:c:d", True, None, 3.5,
         {"published": 80}],
    )
    def test_rejected_forms(self, entry):
        with pytest.raises(ShorthandError):
            parse_port(entry)

    def test_error_carries_expected_form(self):
        with pytest.raises(ShorthandError) as exc:
            parse_port("8080:99999")
        assert "1-65535" in exc.value.expected


class TestSymbols:
    SYMBOLS = {"$_data", "$_database", "$_config", "$_stack"}

    def test_literal_path(self):
        assert split_symbol("/srv/data", self.SYMBOLS) == (None, "/srv/data")

    def test_exact_symbol(self):
        assert split_symbol("$_data", self.SYMBOLS) == ("$_data", "")

    def test_symbol_with_subpath(self):
        assert split_symbol("$_config/nginx.conf", self.SYMBOLS) == ("$_config", "/nginx.conf")

    def test_longest_symbol_wins(self):
        assert split_symbol("$_database/pg", self.SYMBOLS) == ("$_database", "/pg")

    def test_unknown_symbol(self):
        with pytest.raises(ShorthandError, match=r"\$_cache"):
            split_symbol("$_cache/x", self.SYMBOLS)

    def test_volume_source(self):
        assert volume_source("$_data:/var/lib/app") == "$_data"
        assert volume_source("/anonymous") is None
        assert volume_source("$_data") == "$_data"
        assert volume_source({"source": "$_data", "target": "/x"}) == "$_data"
