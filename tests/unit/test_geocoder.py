"""
Unit tests for reverse geocoding.
"""

import httpx
import pytest

from memorygrove.media.geocoder import ReverseGeocoder


def make_geocoder(handler):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return ReverseGeocoder(base_url="https://geo.test/reverse", client=client)


class TestReverseGeocoder:

    def test_returns_country(self):
        seen = {}

        def handler(request):
            seen.update(request.url.params)
            return httpx.Response(200, json={"address": {"country": "France"}})

        geocoder = make_geocoder(handler)

        assert geocoder.country_for(48.8584, 2.2945) == "France"
        assert seen["lat"] == "48.8584"
        assert seen["lon"] == "2.2945"
        assert seen["format"] == "json"

    def test_missing_address_returns_none(self):
        geocoder = make_geocoder(lambda request: httpx.Response(200, json={"error": "Unable to geocode"}))

        assert geocoder.country_for(0.0, 0.0) is None

    def test_http_error_returns_none_without_retry(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        geocoder = make_geocoder(handler)

        assert geocoder.country_for(1.0, 2.0) is None
        assert len(calls) == 1

    def test_non_object_response_returns_none(self):
        geocoder = make_geocoder(lambda request: httpx.Response(200, json=["not", "a", "dict"]))

        assert geocoder.country_for(1.0, 2.0) is None

    def test_transport_errors_are_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 2:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"address": {"country": "Chile"}})

        geocoder = make_geocoder(handler)

        assert geocoder.country_for(-33.8, -70.6) == "Chile"
        assert len(calls) == 2

    def test_persistent_transport_error_returns_none(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        geocoder = make_geocoder(handler)

        assert geocoder.country_for(1.0, 2.0) is None

    def test_close(self):
        geocoder = make_geocoder(lambda request: httpx.Response(200, json={}))
        geocoder.close()
        assert geocoder._client is None
