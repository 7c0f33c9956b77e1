import json
import urllib.error
from unittest import mock

from django.core.cache import cache
from django.test import SimpleTestCase

from marketplace.geocoding import PostcodeGeocoder, haversine_miles, normalize_postcode


def upstream(payload):
    response = mock.MagicMock()
    response.__enter__.return_value.read.return_value = json.dumps(payload).encode("utf-8")
    return response


def not_found(url="https://api.postcodes.io"):
    return urllib.error.HTTPError(url, 404, "Not Found", None, None)


FULL_POSTCODE = {
    "status": 200,
    "result": {
        "postcode": "E7 9JH",
        "latitude": 51.5457,
        "longitude": 0.0265,
        "admin_district": "Newham",
        "admin_ward": "Forest Gate North",
        "country": "England",
    },
}


class GeocoderTests(SimpleTestCase):
    def setUp(self):
        cache.clear()
        self.geocoder = PostcodeGeocoder(base_url="https://geo.test", timeout=2, cache_seconds=600)

    def test_normalize_postcode(self):
        self.assertEqual(normalize_postcode(" e7  9jh "), "E79JH")
        self.assertEqual(normalize_postcode(None), "")

    def test_full_postcode_lookup_is_cached(self):
        with mock.patch("marketplace.geocoding.urllib.request.urlopen", return_value=upstream(FULL_POSTCODE)) as urlopen:
            first = self.geocoder.resolve("e7 9jh")
            second = self.geocoder.resolve("E79JH")

        self.assertEqual(urlopen.call_count, 1)
        self.assertEqual(first, second)
        self.assertEqual(first.postcode, "E7 9JH")
        self.assertEqual(first.district, "Newham")
        self.assertEqual(first.ward, "Forest Gate North")
        request = urlopen.call_args[0][0]
        self.assertEqual(request.full_url, "https://geo.test/postcodes/E79JH")
        self.assertEqual(urlopen.call_args[1]["timeout"], 2)

    def test_falls_back_to_outcode_lookup(self):
        outcode = {
            "status": 200,
            "result": {
                "outcode": "SW2",
                "latitude": 51.45,
                "longitude": -0.12,
                "admin_district": ["Lambeth", "Wandsworth"],
                "admin_ward": [],
                "country": ["England"],
            },
        }
        with mock.patch(
            "marketplace.geocoding.urllib.request.urlopen",
            side_effect=[not_found(), upstream(outcode)],
        ):
            result = self.geocoder.resolve("sw2")

        self.assertEqual(result.postcode, "SW2")
        self.assertEqual(result.district, "Lambeth")
        self.assertEqual(result.ward, "Unknown")
        self.assertEqual(result.country, "England")

    def test_unknown_postcode_returns_none(self):
        with mock.patch("marketplace.geocoding.urllib.request.urlopen", side_effect=[not_found(), not_found()]):
            self.assertIsNone(self.geocoder.resolve("ZZ99 9ZZ"))

    def test_network_failure_returns_none(self):
        with mock.patch(
            "marketplace.geocoding.urllib.request.urlopen",
            side_effect=urllib.error.URLError("connection refused"),
        ):
            self.assertIsNone(self.geocoder.resolve("E7 9JH"))

    def test_blank_postcode_does_not_call_upstream(self):
        with mock.patch("marketplace.geocoding.urllib.request.urlopen") as urlopen:
            self.assertIsNone(self.geocoder.resolve("   "))
        urlopen.assert_not_called()

    def test_haversine_miles(self):
        # Forest Gate to Brixton is roughly eight miles as the crow flies.
        distance = haversine_miles(51.5457, 0.0265, 51.4613, -0.1156)
        self.assertGreater(distance, 7)
        self.assertLess(distance, 9)
        self.assertEqual(haversine_miles(51.5, -0.1, 51.5, -0.1), 0.0)
