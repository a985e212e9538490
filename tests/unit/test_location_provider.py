"""
Unit tests for location providers
"""

from aiohttp import web
from aiohttp.test_utils import TestServer as GeocoderServer

from src.services.sos.location_provider import (
    ReverseGeocodingLocationProvider, StaticLocationProvider
)


NOMINATIM_RESPONSE = {
    "display_name": "1, Market Street, San Francisco, California, USA",
    "address": {
        "road": "Market Street",
        "house_number": "1",
        "city": "San Francisco",
        "state": "California",
    },
}


async def start_geocoder(payload, status=200):
    async def handler(request):
        assert request.query['format'] == 'jsonv2'
        return web.json_response(payload, status=status)

    app = web.Application()
    app.router.add_get('/reverse', handler)
    server = GeocoderServer(app)
    await server.start_server()
    return server


class TestStaticLocationProvider:
    """Fixed-position provider"""

    async def test_returns_fresh_snapshot(self):
        provider = StaticLocationProvider(37.7749, -122.4194, accuracy=10.0)

        first = await provider.get_current_location()
        second = await provider.get_current_location()

        assert first.latitude == 37.7749
        assert first.accuracy == 10.0
        assert second.captured_at >= first.captured_at

    async def test_unavailable_until_updated(self):
        provider = StaticLocationProvider()

        assert await provider.get_current_location() is None
        provider.update(1.0, 2.0)
        assert (await provider.get_current_location()).longitude == 2.0
        provider.clear()
        assert await provider.get_current_location() is None

    def test_permission_requests_counted(self):
        provider = StaticLocationProvider()

        provider.request_permission()
        provider.request_permission()

        assert provider.permission_requests == 2


class TestReverseGeocodingLocationProvider:
    """Address lookup wrapper"""

    async def test_fills_missing_address(self):
        server = await start_geocoder(NOMINATIM_RESPONSE)
        try:
            provider = ReverseGeocodingLocationProvider(
                StaticLocationProvider(37.7749, -122.4194),
                geocoder_url=str(server.make_url('/reverse'))
            )
            location = await provider.get_current_location()
        finally:
            await server.close()

        assert location.address == "Market Street, 1, San Francisco, California"
        assert location.latitude == 37.7749

    async def test_keeps_existing_address_without_lookup(self):
        provider = ReverseGeocodingLocationProvider(
            StaticLocationProvider(1.0, 2.0, address="Home"),
            geocoder_url="http://127.0.0.1:9/reverse"
        )

        assert (await provider.get_current_location()).address == "Home"

    async def test_lookup_failure_keeps_coordinates(self):
        server = await start_geocoder({"error": "Unable to geocode"}, status=500)
        try:
            provider = ReverseGeocodingLocationProvider(
                StaticLocationProvider(1.0, 2.0),
                geocoder_url=str(server.make_url('/reverse'))
            )
            location = await provider.get_current_location()
        finally:
            await server.close()

        assert location.address is None
        assert location.coordinates_string() == "1.0, 2.0"

    async def test_unreachable_geocoder(self):
        provider = ReverseGeocodingLocationProvider(
            StaticLocationProvider(1.0, 2.0),
            geocoder_url="http://127.0.0.1:9/reverse",
            timeout_seconds=1
        )

        assert await provider.reverse_geocode(1.0, 2.0) is None

    def test_format_falls_back_to_display_name(self):
        provider = ReverseGeocodingLocationProvider(StaticLocationProvider())

        assert provider._format_address({"display_name": "Somewhere"}) == "Somewhere"
        assert provider._format_address({}) is None

    def test_permission_forwarded(self):
        inner = StaticLocationProvider()
        provider = ReverseGeocodingLocationProvider(inner)

        provider.request_permission()

        assert inner.permission_requests == 1
