"""
Tests for public IP change detection
"""
import httpx
import pytest

from meerkat.feeds.external_ip import IP_ADDRESS_FILENAME, IPAddressStore, PublicIPMonitor


def resolver(*bodies, status=200):
    """Transport answering successive requests with bodies"""
    replies = iter(bodies)
    seen = []

    def handler(request: httpx.Request):
        seen.append(request)
        return httpx.Response(status, content=next(replies))

    transport = httpx.MockTransport(handler)
    transport.seen = seen
    return transport


class TestIPAddressStore:

    def test_round_trip(self, tmp_path):
        store = IPAddressStore([tmp_path / "cache"])

        assert store.read() is None
        store.write("10.1.2.3")

        assert (tmp_path / "cache" / IP_ADDRESS_FILENAME).read_text() == "10.1.2.3"
        assert IPAddressStore([tmp_path / "cache"]).read() == "10.1.2.3"

    def test_falls_back_to_next_directory(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        store = IPAddressStore([blocker / "cache", tmp_path / "home"])

        assert store.storage_dir() == tmp_path / "home"

    def test_garbage_is_ignored(self, tmp_path):
        (tmp_path / IP_ADDRESS_FILENAME).write_text("not an address")

        assert IPAddressStore([tmp_path]).read() is None


class TestPublicIPMonitor:

    @pytest.mark.asyncio
    async def test_reports_only_changes(self, tmp_path):
        transport = resolver(b"1.2.3.4\n", b"1.2.3.4\n", b"5.6.7.8")
        store = IPAddressStore([tmp_path])
        monitor = PublicIPMonitor("http://resolver.test", store=store, transport=transport)

        assert await monitor() == "1.2.3.4"
        assert await monitor() == ""
        assert await monitor() == "5.6.7.8"
        assert store.read() == "5.6.7.8"
        assert transport.seen[0].headers["User-Agent"] == "curl/7.74.0"

    @pytest.mark.asyncio
    async def test_known_address_is_not_reported_after_restart(self, tmp_path):
        store = IPAddressStore([tmp_path])
        store.write("1.2.3.4")
        monitor = PublicIPMonitor("http://resolver.test", store=store,
                                  transport=resolver(b"1.2.3.4"))

        assert await monitor() == ""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [b"<html>rate limited</html>", b"1.2.3", b"999.1.1.1"])
    async def test_bad_replies_are_ignored(self, body):
        monitor = PublicIPMonitor("http://resolver.test", transport=resolver(body))

        assert await monitor() == ""
        assert monitor.public_ip is None

    @pytest.mark.asyncio
    async def test_http_error_is_ignored(self):
        monitor = PublicIPMonitor("http://resolver.test", transport=resolver(b"", status=503))

        assert await monitor() == ""
