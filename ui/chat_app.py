"""
SafetyBuddy Chat App
====================
Web chat interface for the first-aid assistant. Text messages and injury
photos are sent to FirstAidChatbot; emergencies are highlighted with a
red banner.

Run: streamlit run ui/chat_app.py
"""

import logging
import sys
from pathlib import Path

import streamlit as st

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from safetybuddy.chatbot import build_chatbot
from safetybuddy.config import LOG_FORMAT, ConfigurationError, get_settings
from safetybuddy.knowledge_base import KnowledgeBaseError
from safetybuddy.prompts import IMAGE_ATTACHMENT_MARKER, RESPONSE_TEMPLATES

logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
logger = logging.getLogger(__name__)

SEVERITY_BADGES = {
    "minor": "🟢 Minor",
    "moderate": "🟡 Moderate",
    "serious": "🟠 Serious",
    "emergency": "🔴 Emergency",
}

ACCEPTED_IMAGE_TYPES = ["jpg", "jpeg", "png", "webp"]

# ---------------------------------------------------------------------------
# Page configuration
# ---------------------------------------------------------------------------
st.set_page_config(
    page_title="SafetyBuddy First Aid",
    page_icon="🩹",
    layout="centered",
)

st.markdown(
    """
<style>
.block-container { max-width: 720px; }
.emergency-banner {
    background: #b42318;
    color: white;
    padding: 14px 18px;
    border-radius: 10px;
    font-weight: 600;
    margin-bottom: 12px;
}
</style>
""",
    unsafe_allow_html=True,
)


# ---------------------------------------------------------------------------
# Service loader
# ---------------------------------------------------------------------------
@st.cache_resource
def load_chatbot():
    """Build the chatbot once per Streamlit server process."""
    return build_chatbot(get_settings())


try:
    chatbot = load_chatbot()
except (ConfigurationError, KnowledgeBaseError) as exc:
    logger.error("SafetyBuddy failed to start: %s", exc)
    st.error(f"SafetyBuddy is not configured correctly: {exc}")
    st.stop()

# ---------------------------------------------------------------------------
# Session state defaults
# ---------------------------------------------------------------------------
_DEFAULTS: dict = dict(
    session_id=None,
    transcript=[],
    uploader_key=0,
)
for _key, _val in _DEFAULTS.items():
    if _key not in st.session_state:
        st.session_state[_key] = _val


def reset() -> None:
    """Forget the current conversation on both sides."""
    if st.session_state.session_id:
        chatbot.clear_session(st.session_state.session_id)
    st.session_state.session_id = None
    st.session_state.transcript = []
    st.session_state.uploader_key += 1


def send(text: str, image=None) -> None:
    """Run one turn and record it in the on-screen transcript."""
    shown = text
    if image is not None:
        shown = f"{text} {IMAGE_ATTACHMENT_MARKER}".strip()
    st.session_state.transcript.append({"role": "user", "content": shown})

    with st.spinner("SafetyBuddy is thinking..."):
        if image is not None:
            response = chatbot.chat_with_image(
                text,
                image.getvalue(),
                image.type or "image/jpeg",
                st.session_state.session_id,
            )
        else:
            response = chatbot.chat(text, st.session_state.session_id)

    st.session_state.session_id = response.session_id
    st.session_state.transcript.append(
        {
            "role": "assistant",
            "content": response.message,
            "is_emergency": response.is_emergency,
            "injury": response.suggested_injury,
        }
    )


# ---------------------------------------------------------------------------
# Sidebar
# ---------------------------------------------------------------------------
with st.sidebar:
    st.markdown("### 🩹 SafetyBuddy")
    st.caption("First-aid guidance for common household injuries.")
    if st.button("New conversation", use_container_width=True):
        reset()
        st.rerun()
    st.markdown("---")
    st.markdown(RESPONSE_TEMPLATES["disclaimer"])
    numbers = chatbot.knowledge_base.emergency_numbers
    st.markdown(f"**Emergency numbers:** {numbers.general}")
    if numbers.poison_control_us:
        st.markdown(f"**Poison control (US):** {numbers.poison_control_us}")

# ---------------------------------------------------------------------------
# Transcript
# ---------------------------------------------------------------------------
st.title("SafetyBuddy First Aid Assistant")

if not st.session_state.transcript:
    with st.chat_message("assistant"):
        st.markdown(RESPONSE_TEMPLATES["greeting"])

for entry in st.session_state.transcript:
    with st.chat_message(entry["role"]):
        if entry.get("is_emergency"):
            st.markdown(
                '<div class="emergency-banner">🚨 Possible emergency: call emergency services now</div>',
                unsafe_allow_html=True,
            )
        st.markdown(entry["content"])
        injury = entry.get("injury")
        if injury is not None:
            st.caption(f"Matched: {injury.name} · {SEVERITY_BADGES.get(injury.severity, injury.severity)}")

# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------
photo = st.file_uploader(
    "Attach a photo of the injury (optional, max 5 MB)",
    type=ACCEPTED_IMAGE_TYPES,
    key=f"photo_{st.session_state.uploader_key}",
)

prompt = st.chat_input("Describe what happened...")
if prompt is not None:
    text = prompt.strip()
    if photo is not None and photo.size > get_settings().max_image_bytes:
        st.warning("That image is too large. Please use a photo under 5 MB.")
    elif text or photo is not None:
        send(text, photo)
        if photo is not None:
            st.session_state.uploader_key += 1
        st.rerun()
