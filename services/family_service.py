from datetime import datetime, timedelta, timezone
from typing import Optional

from repositories.family_repo import WINDOW_COLUMNS
from utils.error_handling import ApiError
from utils.logger import get_logger, log_exception

RECIPROCAL_RELATIONS = {
    'father': 'son/daughter',
    'mother': 'son/daughter',
    'son': 'father/mother',
    'daughter': 'father/mother',
    'brother': 'brother/sister',
    'sister': 'brother/sister',
    'husband': 'wife',
    'wife': 'husband',
    'grandfather': 'grandson/granddaughter',
    'grandmother': 'grandson/granddaughter',
    'uncle': 'nephew/niece',
    'aunt': 'nephew/niece',
}

SAFETY_STATUSES = ('safe', 'danger')


def reciprocal_relation(relation: Optional[str]) -> str:
    return RECIPROCAL_RELATIONS.get((relation or '').lower(), 'family')


def _utcnow():
    return datetime.now(timezone.utc)


class FamilyService:
    """Family links, link requests and the timed "are you okay" safety check."""

    def __init__(self, family_repo, user_repo, notification_service, clock=_utcnow):
        self.family_repo = family_repo
        self.user_repo = user_repo
        self.notifications = notification_service
        self.clock = clock
        self.logger = get_logger()

    # users

    def find_users(self, identifier: str) -> list[dict]:
        """Phone first, then email (only when it looks like one), then a name substring."""
        trimmed = (identifier or '').strip()
        if not trimmed:
            return []
        found = self.user_repo.find_by_phone(trimmed)
        if found:
            return found
        if '@' in trimmed and '.' in trimmed:
            found = self.user_repo.find_by_email(trimmed)
            if found:
                return found
        return self.user_repo.search_by_name(trimmed)

    def _user_name(self, user_id: str) -> Optional[str]:
        return self.user_repo.get_names([user_id]).get(user_id)

    def _notify(self, **kwargs):
        try:
            self.notifications.create_notification(**kwargs)
        except Exception as err:
            log_exception(err, context=f"notification [{kwargs.get('type_')}]")

    # members

    def list_members(self, user_id: str) -> list[dict]:
        links = self.family_repo.list_links(user_id)
        if not links:
            return []
        users = {u['id']: u for u in self.user_repo.get_many([l['member_id'] for l in links])}
        return [{
            'id': l['id'],
            'relation': l.get('relation'),
            'safety_status': l.get('safety_status'),
            'safety_check_started_at': l.get('safety_check_started_at'),
            'safety_check_expires_at': l.get('safety_check_expires_at'),
            'member': users.get(l['member_id'], {'id': l['member_id']}),
        } for l in links]

    def add_member_by_identifier(self, user_id: str, identifier: str, relation: Optional[str] = None) -> dict:
        found = self.find_users(identifier)
        if not found:
            raise ApiError('member_not_found', 404)
        return self.add_member_by_id(user_id, found[0]['id'], relation)

    def add_member_by_id(self, user_id: str, member_id: str, relation: Optional[str] = None) -> dict:
        if self.family_repo.get_link(user_id, member_id, columns='id'):
            raise ApiError('already_linked', 409)
        return self.family_repo.insert_link(user_id, member_id, relation)

    def remove_member(self, user_id: str, member_id: str):
        self.family_repo.delete_link(user_id, member_id)
        self.family_repo.delete_link(member_id, user_id)

    # requests

    def send_request(self, from_user_id: str, to_user_id: str, relation: str) -> dict:
        if self.family_repo.get_link(from_user_id, to_user_id, columns='id'):
            raise ApiError('already_linked', 409)
        if self.family_repo.has_pending_request(from_user_id, to_user_id):
            raise ApiError('request_already_sent', 409)
        request = self.family_repo.insert_request(from_user_id, to_user_id, relation)
        sender_name = self._user_name(from_user_id)
        self._notify(
            user_id=to_user_id,
            type_='family_request',
            title='Family request',
            body=f"{sender_name or 'Someone'} wants to add you as {relation}",
            payload={
                'request_id': (request or {}).get('id'),
                'from_user_id': from_user_id,
                'to_user_id': to_user_id,
                'relation': relation,
                'sender_name': sender_name,
            },
        )
        return request

    def _requests_with_party(self, column: str, user_id: str, party_column: str, key: str) -> list[dict]:
        requests = self.family_repo.pending_requests(column, user_id)
        if not requests:
            return []
        users = {u['id']: u for u in self.user_repo.get_many([r[party_column] for r in requests], columns='id,name,phone,email')}
        return [{
            'id': r['id'],
            'from_user_id': r['from_user_id'],
            'to_user_id': r['to_user_id'],
            'relation': r.get('relation'),
            'status': r.get('status'),
            'created_at': r.get('created_at'),
            key: users.get(r[party_column], {'id': r[party_column]}),
        } for r in requests]

    def pending_requests(self, user_id: str) -> list[dict]:
        return self._requests_with_party('to_user_id', user_id, 'from_user_id', 'sender')

    def sent_requests(self, user_id: str) -> list[dict]:
        return self._requests_with_party('from_user_id', user_id, 'to_user_id', 'receiver')

    def cancel_request(self, request_id):
        self.family_repo.delete_request(request_id)

    def approve_request(self, request_id):
        request = self.family_repo.get_request(request_id)
        if not request:
            raise ApiError('request_not_found', 404)
        relation = request.get('relation')
        self.family_repo.insert_link(request['from_user_id'], request['to_user_id'], relation)
        self.family_repo.insert_link(request['to_user_id'], request['from_user_id'], reciprocal_relation(relation))
        # Deleted rather than marked approved so it never reappears as pending
        self.family_repo.delete_request(request_id)

        accepter_name = self._user_name(request['to_user_id'])
        self._notify(
            user_id=request['from_user_id'],
            type_='family_request_accepted',
            title='Family request accepted',
            body=f"{accepter_name or 'They'} accepted your request",
            payload={
                'request_id': request_id,
                'from_user_id': request['from_user_id'],
                'to_user_id': request['to_user_id'],
                'relation': relation,
                'accepter_name': accepter_name,
            },
        )

    def reject_request(self, request_id):
        request = self.family_repo.get_request(request_id)
        if not request:
            raise ApiError('request_not_found', 404)
        self.family_repo.mark_request(request_id, 'rejected')
        self.family_repo.delete_request(request_id)

        rejector_name = self._user_name(request['to_user_id'])
        self._notify(
            user_id=request['from_user_id'],
            type_='family_request_rejected',
            title='Family request rejected',
            body=f"{rejector_name or 'They'} declined your request",
            payload={
                'request_id': request_id,
                'from_user_id': request['from_user_id'],
                'to_user_id': request['to_user_id'],
                'relation': request.get('relation'),
                'rejector_name': rejector_name,
            },
        )

    # safety checks

    def start_safety_check(self, from_user_id: str, to_user_id: str, duration_seconds: int) -> int:
        """Open an `unknown` window on the sender's link and ping the member."""
        link = self.family_repo.get_link(from_user_id, to_user_id)
        relation = (link or {}).get('relation') or 'family'

        started_at = self.clock()
        expires_at = started_at + timedelta(seconds=duration_seconds)
        if link and link.get('id'):
            self.family_repo.update_link(link['id'], {
                'safety_status': 'unknown',
                'safety_check_started_at': started_at.isoformat(),
                'safety_check_expires_at': expires_at.isoformat(),
            })

        sender_name = self._user_name(from_user_id)
        self.notifications.create_notification(
            user_id=to_user_id,
            type_='safety_check',
            title='Are you okay?',
            body=f"{sender_name or 'Someone'} ({relation}) is checking on you",
            payload={
                'from_user_id': from_user_id,
                'to_user_id': to_user_id,
                'relation': relation,
                'sender_name': sender_name,
                'buttonType': 'safety',
            },
        )
        return duration_seconds

    def respond_to_safety_check(self, responder_id: str, requester_id: str, status: str) -> bool:
        """Record the answer on the requester's link only, and only while its window is open."""
        updated = self.family_repo.set_status_if_window_open(
            requester_id, responder_id, status, self.clock().isoformat()
        )
        return bool(updated)

    def safety_window(self, user_id: str, member_id: str) -> Optional[dict]:
        return self.family_repo.get_link(user_id, member_id, columns=WINDOW_COLUMNS)

    def cleanup_expired_windows(self) -> int:
        cleared = self.family_repo.clear_expired_windows(self.clock().isoformat())
        if cleared:
            self.logger.info(f"Cleared {len(cleared)} expired safety window(s)")
        return len(cleared)
