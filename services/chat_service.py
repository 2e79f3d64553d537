from datetime import datetime, timezone
from typing import Optional

from services.llm_service import GeminiNotConfigured
from utils.logger import get_logger, log_exception

LANGUAGES = ('en', 'my')
ASSISTANTS = ('emergency', 'mental')
FALLBACK_MODEL = 'local:fallback'
MAX_OUTPUT_TOKENS = 512

SYSTEM_PROMPTS = {
    'emergency': {
        'en': "You are an AI assistant helping with earthquake & emergency safety. Be concise, practical, "
              "and safety-first. If this is a real emergency, remind the user to call 199.",
        'my': "သင်သည် ငလျင်နှင့် အရေးပေါ် လုံခြုံရေးအကြံပြုမှုအတွက် ကူညီပေးသော AI ဖြစ်သည်။ "
              "တိုတောင်းသော်လည်း အသုံးဝင်အောင်ဖြေပါ။ တကယ်အရေးပေါ်ဖြစ်ပါက 199 ကို ခေါ်ရန် အမြဲသတိပေးပါ။",
    },
    'mental': {
        'en': "You are a warm, supportive mental-health companion (not a clinician). Respond with empathy "
              "and calming language. Offer grounding such as box breathing (4-4-4-4). If the user indicates "
              "crisis or self-harm risk, suggest contacting a trusted person or calling 199.",
        'my': "သင်သည် နူးညံ့သိမ်မွေ့သော စိတ်ကျန်းမာရေး အကူအညီပေးသူ (ဆေးဘက်ဝင်မဟုတ်) ဖြစ်သည်။ "
              "နူးညံ့သိမ်မွေ့သောစကားဖြင့် အားပေးပါ။ အကွက်အသက်ရှူ ၄-၄-၄-၄ ကဲ့သို့သော ဂရောင်ဒင်းကို ပြောပြပါ။ "
              "အရေးကြီးစိုးရိမ်မှု/ကိုယ်ပိုင်အန္တရာယ်ရှိပါက ယုံကြည်ရသောသူ သို့မဟုတ် 199 ကို ဆက်သွယ်ရန် အကြံပြုပါ။",
    },
}

FALLBACK_RESPONSES = {
    'emergency': {
        'en': "Stay safe: Drop, Cover, Hold On. Move away from windows. Call 199 for real emergencies.",
        'my': "လုံခြုံရေးကို ဦးစားပေးပါ။ ခေါင်းပု၊ ဖုံး၊ ကိုင် လေ့ကျင့်ပါ။ အရေးပေါ်ဖြစ်ပါက 199 ကို ခေါ်ပါ။",
    },
    'mental': {
        'en': "Let's try box breathing: inhale 4, hold 4, exhale 4, hold 4 (x4). You're not alone. "
              "If you're in immediate danger, call 199 now.",
        'my': "အကွက်အသက်ရှူ ၄-၄-၄-၄ (၄ ကြိမ်) လေ့ကျင့်ပါ။ သင်တစ်ယောက်တည်း မဟုတ်ပါ။ အရေးပေါ် ဖြစ်ပါက 199 ကို ခေါ်ပါ။",
    },
}

# checked in order, first hit wins
CATEGORY_KEYWORDS = (
    ('safety', ('earthquake', 'ငလျင်', 'shake', 'tremor')),
    ('location', ('shelter', 'ခိုလှုံရာ', 'location', 'where')),
    ('medical', ('first aid', 'medical', 'injury', 'ပထမအကူအညီ', 'ဆေးရည်းအကူအညီ')),
    ('emergency', ('emergency', 'help', 'danger', 'အရေးပေါ်', 'urgent', 'call')),
)


def classify_category(message: str) -> str:
    lowered = (message or '').lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(k in lowered for k in keywords):
            return category
    return 'general'


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _pick(table: dict, assistant: str, language: str) -> str:
    return table[assistant if assistant in ASSISTANTS else 'emergency'][language if language in LANGUAGES else 'en']


def local_fallback(language: str, assistant: str) -> dict:
    return {
        'response': _pick(FALLBACK_RESPONSES, assistant, language),
        'category': 'mental' if assistant == 'mental' else 'general',
        'timestamp': _timestamp(),
        'model': FALLBACK_MODEL,
        'error': True,
    }


class ChatUnavailable(Exception):
    """Carries the localised fallback and the HTTP status to answer with."""

    def __init__(self, fallback: dict, status: int):
        super().__init__(fallback['response'])
        self.fallback = fallback
        self.status = status


class ChatService:
    def __init__(self, llm, model: str, therapy=None):
        self.llm = llm
        self.model = model
        self.therapy = therapy
        self.logger = get_logger()

    def system_prompt(self, message: str, language: str, assistant: str) -> str:
        prompt = _pick(SYSTEM_PROMPTS, assistant, language)
        if assistant == 'mental' and self.therapy is not None:
            context = self.therapy.context_for(message)
            if context:
                prompt = f"{prompt}\n\n{context}"
        return prompt

    def ask(self, message: str, language: str = 'en', assistant: str = 'emergency') -> dict:
        if not self.llm.configured:
            self.logger.warning("Gemini API key not configured, using local fallback")
            raise ChatUnavailable(local_fallback(language, assistant), 503)

        text: Optional[str] = None
        try:
            prompt = f"{self.system_prompt(message, language, assistant)}\n\nUser: {message}"
            text = self.llm.generate_text(
                prompt,
                model=self.model,
                temperature=0.5 if assistant == 'mental' else 0.7,
                max_output_tokens=MAX_OUTPUT_TOKENS,
            )
        except GeminiNotConfigured:
            raise ChatUnavailable(local_fallback(language, assistant), 503)
        except Exception as err:
            log_exception(err, context="chat generation")
        if not (text or '').strip():
            raise ChatUnavailable(local_fallback(language, assistant), 500)

        return {
            'response': text,
            'category': 'mental' if assistant == 'mental' else classify_category(message),
            'timestamp': _timestamp(),
            'model': self.model,
            'online': True,
            'error': False,
        }
