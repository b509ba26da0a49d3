"""
Prompt Composer
===============
Instruction text sent to the generative provider, plus the fixed replies
used when the provider is skipped (greeting) or fails (fallbacks).

Everything here is pure string construction.
"""

from __future__ import annotations

from typing import Optional, Sequence

from safetybuddy.models import ChatMessage

HISTORY_WINDOW = 6

IMAGE_ATTACHMENT_MARKER = "[Image attached]"
DEFAULT_IMAGE_MESSAGE = "Please analyze this image"

SYSTEM_PROMPT = """You are SafetyBuddy, a First Aid Assistant.
ROLE: Provide immediate, short, and actionable first-aid steps for domestic injuries.
GUIDELINES:
1. Be concise (emergency mode).
2. Prioritize safety.
3. If serious, say "CALL EMERGENCY SERVICES" immediately.
4. No medical diagnosis.
FORMAT:
- Brief assessment
- Numbered steps
- Warning signs that mean the person needs emergency help
- Disclaimer"""

EMERGENCY_SYSTEM_PROMPT = """EMERGENCY SITUATION DETECTED!

The user has described symptoms or a situation that may be life-threatening. Your response MUST:
1. Start with a clear, urgent call to action to phone emergency services
2. Provide the relevant emergency numbers (911 in US, 999 in UK, 112 in EU)
3. Give brief instructions on what to do while waiting for help
4. Keep the person calm and focused

Do NOT provide lengthy first-aid instructions in true emergencies - the priority is getting professional help immediately."""

IMAGE_PROMPT_TEMPLATE = """You are a first-aid assistant analyzing an image.

CRITICAL DISCLAIMERS:
- This is NOT a medical diagnosis
- If this appears to be a serious injury, the user should seek immediate professional medical help
- Emergency services should be called for: severe bleeding, burns covering large areas, deep wounds, signs of shock, difficulty breathing, or suspected fractures

Based on the image provided, please:
1. Describe what you observe
2. Assess the severity (minor, moderate, or potentially serious)
3. Provide appropriate first-aid steps if it's minor
4. STRONGLY recommend professional medical care if it appears moderate to serious

User's message: {user_message}

Remember: Be helpful but cautious. Better to over-recommend professional care than under-recommend it."""

CHAT_FALLBACK_MESSAGE = """I apologize, but I'm having trouble generating a response right now.

If this is an emergency, please call emergency services immediately (911 in US, 999 in UK, 112 in EU).

For non-emergency first-aid guidance, please try rephrasing your question."""

IMAGE_FALLBACK_MESSAGE = """I'm sorry, I couldn't analyze that image right now.

Please try again, or describe the injury in a text message instead.

If the injury looks serious, do not wait: call emergency services immediately (911 in US, 999 in UK, 112 in EU)."""

RESPONSE_TEMPLATES = {
    "greeting": """Hello! I'm SafetyBuddy your First Aid Assistant. I'm here to help you with guidance for common domestic accidents and injuries.

**I can help with:**
- Cuts and scrapes
- Burns
- Sprains and strains
- Nosebleeds
- Insect stings
- And more

**Important:** I provide first-aid guidance only, not medical diagnosis. For serious injuries, always call emergency services.

What can I help you with today?""",
    "disclaimer": """⚠️ **Important Disclaimer**

This chatbot provides basic first-aid guidance only. It is not a substitute for professional medical advice, diagnosis, or treatment.

**For life-threatening emergencies, always call emergency services immediately.**

If you're unsure about the severity of an injury, it's always better to seek professional medical help.""",
    "not_understood": """I'm not sure I understood your question completely. Could you provide more details about the injury or situation? For example:
- What happened?
- What symptoms are you seeing?
- Where is the injury located?

If this is an emergency, please call emergency services immediately.""",
    "end_conversation": """I hope this information was helpful! Remember:
- For serious injuries, always seek professional medical care
- When in doubt, it's better to call for help
- Keep emergency numbers handy

Stay safe! 🏥""",
}


def _one_line(text: str) -> str:
    # A message must not be able to open a new "User:"/"Assistant:" line.
    return " ".join(text.split())


def format_history(messages: Sequence[ChatMessage]) -> str:
    """Role-labelled transcript of the given messages, oldest first."""
    lines = []
    for message in messages:
        label = "User" if message.role == "user" else "Assistant"
        lines.append(f"{label}: {_one_line(message.content)}")
    return "\n".join(lines)


def build_prompt(
    user_message: str,
    injury_info: str,
    is_emergency: bool,
    recent_history: Optional[Sequence[ChatMessage]] = None,
) -> str:
    """Build the text prompt for one conversational turn.

    Args:
        user_message: The user's message, embedded literally.
        injury_info: Formatted knowledge-base entry, or "" when nothing matched.
        is_emergency: Use the emergency instructions instead of the general ones.
        recent_history: Session messages before this turn; only the last
            HISTORY_WINDOW are included.

    Returns:
        The prompt text.
    """
    if is_emergency:
        return (
            f"{EMERGENCY_SYSTEM_PROMPT}\n\n"
            f'User\'s message: "{user_message}"\n\n'
            "Provide an immediate emergency response."
        )

    prompt = (
        f"{SYSTEM_PROMPT}\n\n"
        f'User\'s message: "{user_message}"\n\n'
        f"Relevant first-aid information from knowledge base:\n{injury_info}\n\n"
        "Provide a helpful, conversational response using this information. "
        "Be concise and actionable."
    )

    window = list(recent_history or [])[-HISTORY_WINDOW:]
    if window:
        prompt += "\n\nRecent conversation:\n" + format_history(window)
    return prompt


def build_image_prompt(user_message: str) -> str:
    """Prompt for analysing an injury photo."""
    message = user_message.strip() if user_message else ""
    return IMAGE_PROMPT_TEMPLATE.format(user_message=message or DEFAULT_IMAGE_MESSAGE)
