import base64
import time
from datetime import datetime, timezone
from typing import Optional

from repositories.pin_repo import AGGREGATION_ITEM_COLUMNS
from utils.error_handling import ApiError
from utils.logger import get_logger, log_exception
from utils.validation import to_float, valid_coordinates

PIN_TYPES = {'damaged': 'damage', 'safe': 'shelter'}
PIN_STATUSES = ('pending', 'confirmed', 'completed')
UNKNOWN_REGION = 'Unknown Region'

IMAGE_EXTENSIONS = {'image/jpeg': 'jpg', 'image/png': 'png', 'image/webp': 'webp', 'image/gif': 'gif'}


def _now_iso():
    return datetime.now(timezone.utc).isoformat()


def remaining_quantity(pin_item: dict) -> int:
    """Units still needed; an untouched row has no remaining_qty yet."""
    if pin_item.get('remaining_qty') is not None:
        return pin_item['remaining_qty']
    return pin_item.get('requested_qty') or 0


def pin_view(row: dict, created_by: Optional[str] = None) -> dict:
    return {
        'id': row['id'],
        'type': 'damaged' if row.get('type') == 'damage' else 'safe',
        'status': row.get('status'),
        'phone': row.get('phone'),
        'description': row.get('description'),
        'lat': to_float(row.get('latitude')),
        'lng': to_float(row.get('longitude')),
        'createdBy': created_by or 'Anonymous User',
        'createdAt': row.get('created_at'),
        'image': row.get('image_url'),
        'user_id': row.get('user_id'),
    }


def aggregate_supplies(pin_items: list[dict], pin_regions: dict) -> list[dict]:
    """Sum outstanding quantities per (region, item name), keeping first-seen order."""
    aggregated = {}
    for pin_item in pin_items:
        region = pin_regions.get(pin_item.get('pin_id'))
        item = pin_item.get('items')
        if not region or not item:
            continue
        item_name = item.get('name') or 'Unknown Item'
        key = (region, item_name)
        if key not in aggregated:
            aggregated[key] = {
                'region': region,
                'itemName': item_name,
                'unit': item.get('unit') or 'Unknown Unit',
                'itemId': pin_item.get('item_id'),
                'totalQuantityNeeded': 0,
            }
        aggregated[key]['totalQuantityNeeded'] += remaining_quantity(pin_item)
    return list(aggregated.values())


def help_request_status(pin_items: list[dict]) -> Optional[str]:
    """`partially_accepted`, `pending`, or None for a fully delivered pin."""
    if any(0 < remaining_quantity(pi) < (pi.get('requested_qty') or 0) for pi in pin_items):
        return 'partially_accepted'
    if all(remaining_quantity(pi) == 0 for pi in pin_items):
        return None
    return 'pending'


class PinService:
    def __init__(self, pin_repo, user_repo, geocoder=None):
        self.pin_repo = pin_repo
        self.user_repo = user_repo
        self.geocoder = geocoder
        self.logger = get_logger()

    def is_active_tracker(self, user_id: Optional[str]) -> bool:
        return bool(user_id and self.pin_repo.active_org_member(user_id))

    def initial_status(self, user_id: Optional[str], user_role: Optional[str]) -> str:
        if not user_id:
            return 'pending'
        if self.is_active_tracker(user_id) or user_role == 'organization':
            return 'confirmed'
        return 'pending'

    def _upload_image(self, image_base64: str, image_mime: str) -> Optional[str]:
        try:
            data = base64.b64decode(image_base64)
            ext = IMAGE_EXTENSIONS.get(image_mime, 'bin')
            path = f"pins/{int(time.time() * 1000)}_upload.{ext}"
            return self.pin_repo.upload_image(path, data, image_mime)
        except Exception as err:
            # pins are still useful without a photo
            log_exception(err, context="pin image upload")
            return None

    def create_pin(self, payload: dict) -> dict:
        pin_type = payload.get('type')
        if pin_type not in PIN_TYPES:
            raise ApiError("type must be 'damaged' or 'safe'", 400)
        lat, lng = payload.get('lat'), payload.get('lng')
        if not valid_coordinates(lat, lng):
            raise ApiError('Invalid coordinates', 400)

        user_id = payload.get('userId') or None
        image_url = None
        if payload.get('imageBase64') and payload.get('imageMime'):
            image_url = self._upload_image(payload['imageBase64'], payload['imageMime'])

        row = {
            'latitude': lat,
            'longitude': lng,
            'type': PIN_TYPES[pin_type],
            'phone': payload.get('phone'),
            'description': payload.get('description'),
            'status': self.initial_status(user_id, payload.get('userRole')),
            'image_url': image_url,
            'created_at': _now_iso(),
        }
        # user_id is a foreign key, so anonymous pins leave it out entirely
        if user_id:
            row['user_id'] = user_id

        created = self.pin_repo.insert_pin(row)
        if not created:
            raise ApiError('Failed to create pin', 500)
        self.logger.info(f"Pin {created['id']} created with status {created.get('status')}")
        return pin_view(created, payload.get('createdBy'))

    def _user_names(self, rows: list[dict]) -> dict:
        return self.user_repo.get_names(sorted({r['user_id'] for r in rows if r.get('user_id')}))

    def list_pins_with_items(self) -> list[dict]:
        rows = self.pin_repo.list_pins()
        if not rows:
            return []
        items_by_pin = {}
        for pi in self.pin_repo.pin_items():
            items_by_pin.setdefault(pi['pin_id'], []).append({
                'id': pi['id'],
                'pin_id': pi['pin_id'],
                'item_id': pi.get('item_id'),
                'requested_qty': pi.get('requested_qty'),
                'remaining_qty': pi.get('remaining_qty'),
                'item': pi.get('items'),
            })
        names = self._user_names(rows)
        pins = []
        for row in rows:
            view = pin_view(row, names.get(row.get('user_id')))
            view['pin_items'] = items_by_pin.get(row['id'], [])
            pins.append(view)
        return pins

    def list_items(self) -> list[dict]:
        return self.pin_repo.list_items()

    def update_status(self, pin_id, new_status: str, user_id: Optional[str] = None):
        if new_status not in PIN_STATUSES:
            raise ApiError('Invalid status', 400)
        update = {'status': new_status}
        if new_status == 'confirmed':
            member = self.pin_repo.active_org_member(user_id) if user_id else None
            if not member:
                raise ApiError('Only trackers can confirm pins', 403)
            update['confirmed_by'] = member['id']
            update['confirmed_at'] = _now_iso()
        self.pin_repo.update_pin(pin_id, update)

    def delete_pin(self, pin_id, user_role: Optional[str]):
        if user_role != 'organization':
            raise ApiError('Only organizations can delete pins', 403)
        self.pin_repo.delete_items_for_pin(pin_id)
        self.pin_repo.delete_pin(pin_id)
        self.logger.info(f"Pin deleted: {pin_id}")

    def create_pin_items(self, pin_id, items: list[dict]) -> int:
        if not items:
            return 0
        now = _now_iso()
        rows = [{
            'pin_id': pin_id,
            'item_id': item['item_id'],
            'requested_qty': item['requested_qty'],
            'remaining_qty': item['requested_qty'],
            'created_at': now,
        } for item in items]
        self.pin_repo.insert_pin_items(rows)
        return len(rows)

    def update_pin_item_quantity(self, pin_item_id, remaining_qty: int):
        self.pin_repo.set_remaining(pin_item_id, remaining_qty)

    def delete_pin_if_no_items_remain(self, pin_id) -> bool:
        if self.pin_repo.items_for_pin(pin_id, columns='id'):
            return False
        self.pin_repo.delete_pin(pin_id)
        return True

    def accept_items(self, pin_id, accepted: list[dict]) -> dict:
        """Subtract delivered quantities; a pin with nothing left outstanding is removed."""
        for entry in accepted:
            pin_item = self.pin_repo.get_pin_item(entry['pinItemId'])
            if not pin_item:
                self.logger.warning(f"pin_item {entry['pinItemId']} not found, skipping")
                continue
            current = pin_item.get('remaining_qty')
            if not isinstance(current, (int, float)):
                current = pin_item.get('requested_qty') or 0
            new_remaining = max(0, current - int(entry.get('acceptedQuantity') or 0))
            self.pin_repo.set_remaining(entry['pinItemId'], new_remaining)

        remaining = self.pin_repo.items_for_pin(pin_id, columns='remaining_qty')
        if remaining and all(pi.get('remaining_qty') == 0 for pi in remaining):
            self.logger.info(f"All items fulfilled for pin {pin_id}, removing it")
            self.pin_repo.delete_items_for_pin(pin_id)
            return {'success': True, 'completed': self.delete_pin_if_no_items_remain(pin_id)}
        return {'success': True, 'completed': False}

    def _region(self, lat, lng) -> Optional[str]:
        if self.geocoder is None:
            return None
        return self.geocoder.region_for(lat, lng)

    def help_requests(self) -> list[dict]:
        pins = self.pin_repo.confirmed_pins()
        if not pins:
            return []
        items_by_pin = {}
        for pi in self.pin_repo.pin_items([p['id'] for p in pins]):
            items_by_pin.setdefault(pi['pin_id'], []).append(pi)
        names = self._user_names(pins)

        requests = []
        for pin in pins:
            pin_items = items_by_pin.get(pin['id'], [])
            status = help_request_status(pin_items)
            if status is None:
                continue
            lat, lng = to_float(pin.get('latitude')), to_float(pin.get('longitude'))
            region = self._region(lat, lng) or 'Location unknown'
            accepted = []
            for pi in pin_items:
                requested = pi.get('requested_qty') or 0
                remaining = remaining_quantity(pi)
                if remaining >= requested:
                    continue
                accepted.append({
                    'category': (pi.get('items') or {}).get('name') or 'Unknown',
                    'unit': (pi.get('items') or {}).get('unit') or '',
                    'originalQuantity': requested,
                    'acceptedQuantity': requested - remaining,
                    'remainingQuantity': remaining,
                    'acceptedBy': 'Organization',
                    'acceptedAt': pi.get('created_at'),
                })
            entry = {
                'id': pin['id'],
                'title': f"Emergency Response - {'Damage' if pin.get('type') == 'damage' else 'Shelter'} Report",
                'description': pin.get('description') or '',
                'location': region,
                'region': region,
                'lat': lat,
                'lng': lng,
                'image': pin.get('image_url'),
                'status': status,
                'requestedBy': names.get(pin.get('user_id')) or pin.get('phone') or 'Unknown',
                'requestedAt': pin.get('created_at'),
                'requiredItems': [{
                    'category': (pi.get('items') or {}).get('name') or 'Unknown',
                    'unit': (pi.get('items') or {}).get('unit') or '',
                    'quantity': pi.get('requested_qty'),
                    'itemId': pi.get('item_id'),
                    'pinItemId': pi.get('id'),
                    'remainingQty': remaining_quantity(pi),
                } for pi in pin_items],
            }
            if accepted:
                entry['acceptedItems'] = accepted
            requests.append(entry)
        return requests

    def aggregated_supplies(self) -> list[dict]:
        pins = self.pin_repo.confirmed_pins(columns='id,status,latitude,longitude')
        self.logger.info(f"Aggregating supplies over {len(pins)} confirmed pin(s)")
        if not pins:
            return []
        pin_items = self.pin_repo.pin_items([p['id'] for p in pins], columns=AGGREGATION_ITEM_COLUMNS)
        if not pin_items:
            return []
        # one lookup per pin, not per pin item
        regions = {
            pin['id']: self._region(to_float(pin.get('latitude')), to_float(pin.get('longitude'))) or UNKNOWN_REGION
            for pin in pins
        }
        supplies = aggregate_supplies(pin_items, regions)
        self.logger.info(f"Returning {len(supplies)} aggregated supply row(s)")
        return supplies
