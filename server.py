"""
SafetyBuddy — Chat API Server
=============================
FastAPI backend for the web chat client and the WhatsApp (Twilio) webhook.
Both adapters call the same two FirstAidChatbot entry points and differ
only in request parsing and response encoding.

Run:
    python server.py

Then POST to http://localhost:8000/api/chat
"""
from __future__ import annotations

import base64
import binascii
import logging
from contextlib import asynccontextmanager
from typing import Optional

import requests
import uvicorn
from fastapi import Depends, FastAPI, Form, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from twilio.twiml.messaging_response import MessagingResponse

from safetybuddy.chatbot import FirstAidChatbot, build_chatbot
from safetybuddy.config import LOG_FORMAT, Settings, get_settings
from safetybuddy.models import ChatRequest, ChatResponse
from safetybuddy.prompts import DEFAULT_IMAGE_MESSAGE, RESPONSE_TEMPLATES

logger = logging.getLogger(__name__)

VERSION = "1.0.0"

SERVER_ERROR_MESSAGE = (
    "I apologize, but I encountered an error. If this is an emergency, "
    "please call emergency services immediately."
)
WHATSAPP_ERROR_MESSAGE = (
    "Sorry, I encountered an error. If this is an emergency, "
    "please call emergency services immediately."
)
IMAGE_DOWNLOAD_FAILED_PREFIX = "I received an image but had trouble processing it. "


# ── helpers ───────────────────────────────────────────────────────────────────

def get_chatbot(request: Request) -> FirstAidChatbot:
    return request.app.state.chatbot


def _decode_image(data: str, mime_type: Optional[str]) -> tuple[bytes, str]:
    """Decode a base64 image, accepting either raw base64 or a data: URL."""
    if data.startswith("data:"):
        header, _, data = data.partition(",")
        if not mime_type:
            mime_type = header[len("data:"):].split(";")[0] or None
    # Some clients wrap long base64 payloads across lines
    data = "".join(data.split())
    try:
        image_bytes = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(400, "Image must be base64 encoded")
    if not image_bytes:
        raise HTTPException(400, "Image is empty")
    return image_bytes, mime_type or "image/jpeg"


def _twiml(message: str) -> Response:
    twiml = MessagingResponse()
    twiml.message(message)
    return Response(content=str(twiml), media_type="text/xml")


def _download_media(url: str, settings: Settings) -> bytes:
    """Fetch a WhatsApp media attachment from Twilio."""
    auth = None
    if settings.twilio_account_sid and settings.twilio_auth_token:
        auth = (settings.twilio_account_sid, settings.twilio_auth_token)
    response = requests.get(url, auth=auth, timeout=15)
    response.raise_for_status()
    return response.content


# ── app factory ───────────────────────────────────────────────────────────────

def create_app(
    chatbot: Optional[FirstAidChatbot] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Build the FastAPI app.

    Args:
        chatbot: Pre-built chatbot. When None it is built at startup from
            settings; a missing corpus or provider key aborts startup.
        settings: Settings override (defaults to the environment).
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "chatbot", None) is None:
            logger.info("Starting SafetyBuddy chat service...")
            app.state.chatbot = build_chatbot(settings)
        yield
        logger.info("SafetyBuddy chat service stopped.")

    app = FastAPI(title="SafetyBuddy First Aid Assistant", version=VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.chatbot = chatbot
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── API endpoints ─────────────────────────────────────────────────────────

    @app.post("/api/chat", response_model=ChatResponse)
    def api_chat(body: ChatRequest, bot: FirstAidChatbot = Depends(get_chatbot)):
        """One chat turn from the web client (text, optionally with an image)."""
        message = (body.message or "").strip()
        if not message and not body.image:
            raise HTTPException(400, "Message is required when no image is attached")

        image_bytes = None
        mime_type = body.mime_type
        if body.image:
            image_bytes, mime_type = _decode_image(body.image, body.mime_type)
            if len(image_bytes) > settings.max_image_bytes:
                raise HTTPException(413, "Image is too large")

        try:
            if image_bytes is not None:
                return bot.chat_with_image(message, image_bytes, mime_type, body.session_id)
            return bot.chat(message, body.session_id)
        except Exception as exc:
            logger.exception("Error in chat API: %s", exc)
            return JSONResponse(
                status_code=500,
                content={"error": "Internal server error", "message": SERVER_ERROR_MESSAGE},
            )

    @app.post("/api/whatsapp")
    def api_whatsapp(
        Body: str = Form(""),
        From: str = Form(""),
        NumMedia: int = Form(0),
        MediaUrl0: Optional[str] = Form(None),
        MediaContentType0: str = Form("image/jpeg"),
        bot: FirstAidChatbot = Depends(get_chatbot),
    ):
        """Twilio WhatsApp webhook. The sender's number is the session id."""
        session_id = From.replace("whatsapp:", "") or None
        message = Body.strip()

        try:
            if NumMedia > 0 and MediaUrl0:
                try:
                    image_bytes = _download_media(MediaUrl0, settings)
                except requests.RequestException as exc:
                    logger.error("Error downloading WhatsApp media: %s", exc)
                    response = bot.chat(IMAGE_DOWNLOAD_FAILED_PREFIX + message, session_id)
                else:
                    response = bot.chat_with_image(
                        message or DEFAULT_IMAGE_MESSAGE,
                        image_bytes,
                        MediaContentType0,
                        session_id,
                    )
            elif not message:
                return _twiml(RESPONSE_TEMPLATES["not_understood"])
            else:
                response = bot.chat(message, session_id)
        except Exception as exc:
            logger.exception("WhatsApp webhook error: %s", exc)
            return _twiml(WHATSAPP_ERROR_MESSAGE)

        return _twiml(response.message)

    @app.get("/api/sessions/{session_id}")
    def api_session(session_id: str, bot: FirstAidChatbot = Depends(get_chatbot)):
        """Conversation history for one session."""
        context = bot.get_context(session_id)
        if context is None:
            raise HTTPException(404, "Session not found")
        return context.model_dump(mode="json")

    @app.delete("/api/sessions/{session_id}")
    def api_clear_session(session_id: str, bot: FirstAidChatbot = Depends(get_chatbot)):
        if not bot.clear_session(session_id):
            raise HTTPException(404, "Session not found")
        return {
            "ok": True,
            "session_id": session_id,
            "message": RESPONSE_TEMPLATES["end_conversation"],
        }

    @app.get("/api/injuries")
    def api_injuries(bot: FirstAidChatbot = Depends(get_chatbot)):
        """Injury catalogue (id, name, severity)."""
        return [
            {"id": i.id, "name": i.name, "severity": i.severity}
            for i in bot.knowledge_base.get_all_injuries()
        ]

    @app.get("/api/injuries/{injury_id}")
    def api_injury(injury_id: str, bot: FirstAidChatbot = Depends(get_chatbot)):
        injury = bot.knowledge_base.get_injury_by_id(injury_id)
        if injury is None:
            raise HTTPException(404, "Injury not found")
        return injury.model_dump()

    @app.get("/health")
    def health(bot: FirstAidChatbot = Depends(get_chatbot)):
        return {
            "status": "ok",
            "service": "safetybuddy",
            "version": VERSION,
            "injuries": len(bot.knowledge_base.get_all_injuries()),
            "sessions": len(bot.store),
            "provider": "configured" if settings.provider_configured else "not configured",
        }

    return app


app = create_app()


if __name__ == "__main__":
    logging.basicConfig(level=get_settings().log_level, format=LOG_FORMAT)
    uvicorn.run("server:app", host="0.0.0.0", port=get_settings().port)
