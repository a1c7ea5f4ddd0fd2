"""Crisis screening: a fixed phrase list checked before any model call."""

SAFETY_MESSAGE = (
    "⚠️ If you are in crisis, please call or text 988 or go to your nearest "
    "emergency room immediately."
)

# Present in SAFETY_MESSAGE; its appearance in an assistant turn marks the
# transcript as having discussed a crisis.
CRISIS_RESOURCE_MARKER = "988"

CRISIS_PHRASES = (
    "suicide",
    "kill myself",
    "end my life",
    "hurt myself",
    "self-harm",
    "killing people",
    "plan to die",
    "suicidal ideation",
    "harm intent",
    "homicidal ideation",
    "want to die",
)


class SafetyGate:
    def __init__(self, phrases: tuple[str, ...] = CRISIS_PHRASES):
        self.phrases = tuple(p.lower() for p in phrases)

    def evaluate(self, text: str) -> bool:
        """True when the text contains any crisis phrase, case-insensitively."""
        lowered = (text or "").lower()
        return any(phrase in lowered for phrase in self.phrases)


def mentions_crisis_resource(text: str) -> bool:
    return CRISIS_RESOURCE_MARKER in (text or "")
