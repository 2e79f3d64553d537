"""
Reverse geocoding through OpenStreetMap Nominatim.

Nominatim's usage policy allows one request per second, so every lookup goes
through a single shared geopy RateLimiter.
"""
from typing import Optional

from geopy.exc import GeocoderServiceError, GeocoderTimedOut
from geopy.extra.rate_limiter import RateLimiter
from geopy.geocoders import Nominatim

from utils.logger import get_logger, log_exception
from utils.validation import valid_coordinates

MIN_REQUEST_INTERVAL = 1.1
REQUEST_TIMEOUT = 10

CITY_KEYS = ('city', 'town', 'village', 'municipality', 'county', 'suburb')
STATE_KEYS = ('state', 'province', 'region', 'state_district')

COMPONENT_TYPES = {
    'house_number': 'street_number',
    'road': 'route',
    'street': 'route',
    'residential': 'neighborhood',
    'suburb': 'administrative_area_level_3',
    'city': 'locality',
    'town': 'locality',
    'village': 'locality',
    'county': 'administrative_area_level_2',
    'state': 'administrative_area_level_1',
    'postcode': 'postal_code',
    'country': 'country',
}


def _first(address: dict, keys) -> Optional[str]:
    for key in keys:
        if address.get(key):
            return address[key]
    return None


def build_address_string(address: dict) -> str:
    """Short "City, State" label used as the region for pins."""
    city = _first(address, CITY_KEYS)
    state = _first(address, STATE_KEYS)
    if city and state:
        return f"{city}, {state}"
    return city or state or 'Unknown location'


def format_address_components(address: dict) -> list[dict]:
    """Nominatim address parts in the Google Maps `address_components` layout."""
    return [
        {'long_name': address[key], 'short_name': address[key], 'types': [type_]}
        for key, type_ in COMPONENT_TYPES.items()
        if address.get(key)
    ]


class GeocodingError(Exception):
    def __init__(self, message: str, status: int):
        super().__init__(message)
        self.status = status


class GeocodingService:
    def __init__(self, user_agent: str, geolocator=None, min_delay_seconds: float = MIN_REQUEST_INTERVAL):
        self.geolocator = geolocator or Nominatim(user_agent=user_agent, timeout=REQUEST_TIMEOUT)
        self._reverse = RateLimiter(
            self.geolocator.reverse,
            min_delay_seconds=min_delay_seconds,
            max_retries=0,
            swallow_exceptions=False,
        )
        self.logger = get_logger()

    def reverse_raw(self, lat: float, lng: float) -> Optional[dict]:
        self.logger.info(f"Nominatim geocoding request: lat={lat}, lng={lng}")
        try:
            location = self._reverse((lat, lng), exactly_one=True, addressdetails=True, zoom=18, timeout=REQUEST_TIMEOUT)
        except GeocoderTimedOut:
            raise GeocodingError('Geocoding request timeout', 408)
        except GeocoderServiceError as err:
            raise GeocodingError(f'Geocoding failed: {err}', 502)
        return location.raw if location is not None else None

    def reverse(self, lat: float, lng: float) -> dict:
        """Full lookup shaped like a Google reverse-geocode result."""
        raw = self.reverse_raw(lat, lng)
        address = (raw or {}).get('address')
        if not address:
            raise GeocodingError('No address found for these coordinates', 400)

        display_name = build_address_string(address)
        return {
            'success': True,
            'results': [{
                'formatted_address': display_name,
                'address_components': format_address_components(address),
                'place_id': raw.get('osm_id'),
                'geometry': {
                    'location': {
                        'lat': float(raw['lat']) if raw.get('lat') is not None else lat,
                        'lng': float(raw['lon']) if raw.get('lon') is not None else lng,
                    },
                },
            }],
            'primary_address': display_name,
        }

    def region_for(self, lat, lng) -> Optional[str]:
        if not valid_coordinates(lat, lng):
            return None
        try:
            return self.reverse(lat, lng)['primary_address']
        except GeocodingError as err:
            self.logger.warning(f"Reverse geocoding failed for ({lat}, {lng}): {err}")
            return None

    def display_name_for(self, lat, lng) -> Optional[str]:
        if not valid_coordinates(lat, lng):
            return None
        try:
            raw = self.reverse_raw(lat, lng)
        except GeocodingError as err:
            log_exception(err, context=f"last-seen geocode [{lat}, {lng}]")
            return None
        return (raw or {}).get('display_name')
