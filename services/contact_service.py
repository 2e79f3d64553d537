import json
import os
import re
import unicodedata

from utils.logger import get_logger, log_exception

DEFAULT_LIMIT = 6


def normalize_text(text) -> str:
    text = unicodedata.normalize('NFKC', (text or '').lower())
    return re.sub(r'\s+', ' ', text).strip()


def normalize_contact(raw: dict) -> dict:
    phones = raw.get('phones')
    if not isinstance(phones, list):
        phones = [phones]
    contact = dict(raw)
    contact.update({
        'organization': (raw.get('organization') or '').strip(),
        'name': (raw.get('name') or '').strip(),
        'location': (raw.get('location') or '').strip(),
        'region': (raw.get('region') or '').strip(),
        'phones': [p for p in phones if p],
    })
    return contact


def score_contact(contact: dict, query: str, tokens: list[str]) -> int:
    location = normalize_text(f"{contact['location']} {contact['region']}")
    org = normalize_text(f"{contact['organization']} {contact['name']}")
    score = 100 if location == query else 0
    score += sum(20 for t in tokens if t in location)
    score += sum(5 for t in tokens if t in org)
    return score


class ContactService:
    """Emergency contacts looked up by township, city or region name."""

    def __init__(self, path: str):
        self.path = path
        self._contacts = None
        self.logger = get_logger()

    def load(self) -> list[dict]:
        if self._contacts is not None:
            return self._contacts
        if not os.path.exists(self.path):
            self.logger.warning(f"Contacts file not found: {self.path}")
            self._contacts = []
            return self._contacts
        try:
            with open(self.path, encoding='utf-8') as fh:
                data = json.load(fh)
        except (OSError, ValueError) as err:
            log_exception(err, context=f"load contacts [{self.path}]")
            data = []
        self._contacts = [normalize_contact(c) for c in (data or [])]
        return self._contacts

    def find_contacts_near(self, place: str, limit: int = DEFAULT_LIMIT) -> list[dict]:
        contacts = self.load()
        query = normalize_text(place)
        if not query:
            return contacts[:limit]
        tokens = [t for t in query.split(' ') if t]
        scored = [(score_contact(c, query, tokens), c) for c in contacts]
        # sorted() is stable, so equal scores keep file order
        ranked = sorted((s for s in scored if s[0] > 0), key=lambda s: s[0], reverse=True)
        return [c for _, c in ranked[:limit]]
