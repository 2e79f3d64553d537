"""
Reference therapy sessions used to ground the mental-health assistant.

Sessions are matched to the user's message by plain keyword overlap. The
file is re-read whenever its modification time changes.
"""
import json
import os
import re

from utils.logger import get_logger

NON_WORD_RE = re.compile(r'[^a-z\u1000-\u109f0-9\s]')
DEFAULT_TOP_K = 3
EXCERPT_SEQUENCES = 3


def normalize(text: str) -> str:
    text = NON_WORD_RE.sub(' ', (text or '').lower())
    return re.sub(r'\s+', ' ', text).strip()


def session_text(session: dict) -> str:
    return normalize(' '.join([
        session.get('phase_name') or '',
        session.get('trauma_type') or '',
        session.get('session_topic') or '',
        ' '.join(session.get('full_conversation') or []),
        json.dumps(session.get('client_profile') or {}, ensure_ascii=False, separators=(',', ':')),
    ]))


def overlap_score(tokens: set, text: str) -> int:
    return sum(1 for t in tokens if t in text)


def build_context(matches: list[dict]) -> str:
    if not matches:
        return ''
    parts = []
    for m in matches:
        excerpt = '\n\n'.join('\n'.join(seq) for seq in (m.get('three_turn_sequences') or [])[:EXCERPT_SEQUENCES])
        parts.append(
            f"\nPHASE: {m.get('phase_name')} ({m.get('phase_code')})\n"
            f"TOPIC: {m.get('session_topic')}\n"
            f"TRAUMA TYPE: {m.get('trauma_type')}\n"
            f"CLIENT PROFILE: {json.dumps(m.get('client_profile') or {}, indent=2, ensure_ascii=False)}\n"
            f"\nEXCERPT:\n{excerpt}\n"
        )
    return 'THERAPY_REFERENCE DATA:\n' + '\n---\n'.join(parts)


class TherapyService:
    def __init__(self, path: str):
        self.path = path
        self._mtime = None
        self._sessions = []
        self.logger = get_logger()

    def load(self) -> list[dict]:
        try:
            mtime = os.stat(self.path).st_mtime
        except OSError:
            self.logger.warning(f"Therapy data not found: {self.path}")
            return []
        if self._mtime == mtime:
            return self._sessions
        with open(self.path, encoding='utf-8') as fh:
            self._sessions = json.load(fh) or []
        self._mtime = mtime
        self.logger.info(f"Loaded {len(self._sessions)} therapy session(s)")
        return self._sessions

    def search(self, query: str, top_k: int = DEFAULT_TOP_K) -> list[dict]:
        sessions = self.load()
        tokens = {t for t in normalize(query).split(' ') if t}
        scored = [(overlap_score(tokens, session_text(s)), s) for s in sessions]
        scored.sort(key=lambda s: s[0], reverse=True)
        return [s for _, s in scored[:top_k]]

    def context_for(self, query: str, top_k: int = DEFAULT_TOP_K) -> str:
        return build_context(self.search(query, top_k))
