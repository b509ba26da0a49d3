"""
API Server Tests
================
Exercises the web chat endpoint and the WhatsApp webhook with a fake
generative provider.

Run with: python -m pytest tests/test_server.py -v
"""

from __future__ import annotations

import base64
import sys
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import requests
from fastapi.testclient import TestClient

from safetybuddy.chatbot import FirstAidChatbot
from safetybuddy.config import ConfigurationError, Settings
from safetybuddy.knowledge_base import KnowledgeBase
from safetybuddy.prompts import IMAGE_FALLBACK_MESSAGE, RESPONSE_TEMPLATES
from server import IMAGE_DOWNLOAD_FAILED_PREFIX, WHATSAPP_ERROR_MESSAGE, create_app

DATA_DIR = PROJECT_ROOT / "data"


class FakeProvider:
    def __init__(self, reply: str = "Keep pressure on the cut.", fail: bool = False):
        self.reply = reply
        self.fail = fail
        self.prompts: list[str] = []
        self.image_calls: list[tuple] = []

    def generate_text(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.fail:
            raise RuntimeError("provider down")
        return self.reply

    def generate_from_text_and_image(self, prompt: str, image_bytes: bytes, mime_type: str) -> str:
        self.image_calls.append((prompt, image_bytes, mime_type))
        if self.fail:
            raise RuntimeError("provider down")
        return self.reply


def _settings(**overrides) -> Settings:
    base = dict(knowledge_dir=DATA_DIR, openai_api_key="test-key", azure_openai_endpoint="")
    base.update(overrides)
    return Settings(**base)


class TestChatEndpoint(unittest.TestCase):
    """POST /api/chat and the session/injury endpoints."""

    @classmethod
    def setUpClass(cls):
        cls.kb = KnowledgeBase.from_directory(DATA_DIR)

    def setUp(self):
        self.provider = FakeProvider()
        self.bot = FirstAidChatbot(self.kb, self.provider)
        self.client = TestClient(create_app(chatbot=self.bot, settings=_settings(max_image_bytes=1024)))

    def test_text_turn(self):
        resp = self.client.post("/api/chat", json={"message": "I cut my finger"})
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertFalse(body["isEmergency"])
        self.assertEqual(body["message"], self.provider.reply)
        self.assertEqual(body["suggestedInjury"]["name"], "Cuts and Scrapes")
        self.assertTrue(body["sessionId"])

    def test_session_id_round_trip(self):
        first = self.client.post("/api/chat", json={"message": "hello"}).json()
        self.assertEqual(first["message"], RESPONSE_TEMPLATES["greeting"])
        second = self.client.post(
            "/api/chat", json={"message": "I cut my finger", "sessionId": first["sessionId"]}
        ).json()
        self.assertEqual(second["sessionId"], first["sessionId"])
        self.assertEqual(len(self.bot.get_context(first["sessionId"]).messages), 4)

    def test_emergency_turn(self):
        body = self.client.post("/api/chat", json={"message": "He is NOT breathing"}).json()
        self.assertTrue(body["isEmergency"])
        self.assertEqual(body["message"], self.kb.get_emergency_response())
        self.assertIsNone(body["suggestedInjury"])

    def test_empty_message_rejected(self):
        self.assertEqual(self.client.post("/api/chat", json={"message": "   "}).status_code, 400)
        self.assertEqual(self.client.post("/api/chat", json={}).status_code, 400)
        self.assertEqual(self.provider.prompts, [])

    def test_image_turn(self):
        image = base64.b64encode(b"fake-png-bytes").decode()
        body = self.client.post(
            "/api/chat",
            json={"message": "Is this bad?", "image": image, "mimeType": "image/png"},
        ).json()
        self.assertEqual(body["message"], self.provider.reply)
        _, image_bytes, mime_type = self.provider.image_calls[0]
        self.assertEqual(image_bytes, b"fake-png-bytes")
        self.assertEqual(mime_type, "image/png")

    def test_image_data_url_sets_mime_type(self):
        image = "data:image/webp;base64," + base64.b64encode(b"webp").decode()
        resp = self.client.post("/api/chat", json={"image": image})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self.provider.image_calls[0][2], "image/webp")

    def test_image_provider_failure(self):
        self.provider.fail = True
        image = base64.b64encode(b"img").decode()
        body = self.client.post("/api/chat", json={"message": "look", "image": image}).json()
        self.assertEqual(body["message"], IMAGE_FALLBACK_MESSAGE)
        self.assertFalse(body["isEmergency"])
        self.assertEqual(self.bot.get_context(body["sessionId"]).messages, [])

    def test_line_wrapped_base64_accepted(self):
        encoded = base64.b64encode(b"wrapped-image-bytes" * 8).decode()
        wrapped = "\n".join(encoded[i:i + 76] for i in range(0, len(encoded), 76))
        resp = self.client.post("/api/chat", json={"message": "look", "image": wrapped + "\r\n"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self.provider.image_calls[0][1], b"wrapped-image-bytes" * 8)

    def test_invalid_image_rejected(self):
        resp = self.client.post("/api/chat", json={"message": "x", "image": "***not base64***"})
        self.assertEqual(resp.status_code, 400)

    def test_oversized_image_rejected(self):
        image = base64.b64encode(b"x" * 2048).decode()
        resp = self.client.post("/api/chat", json={"message": "x", "image": image})
        self.assertEqual(resp.status_code, 413)

    def test_session_history_and_clear(self):
        sid = self.client.post("/api/chat", json={"message": "hello"}).json()["sessionId"]

        history = self.client.get(f"/api/sessions/{sid}").json()
        self.assertEqual(history["session_id"], sid)
        self.assertEqual([m["role"] for m in history["messages"]], ["user", "assistant"])

        cleared = self.client.delete(f"/api/sessions/{sid}")
        self.assertEqual(cleared.status_code, 200)
        self.assertEqual(cleared.json()["message"], RESPONSE_TEMPLATES["end_conversation"])
        self.assertEqual(self.client.get(f"/api/sessions/{sid}").status_code, 404)
        self.assertEqual(self.client.delete(f"/api/sessions/{sid}").status_code, 404)

    def test_injury_catalogue(self):
        injuries = self.client.get("/api/injuries").json()
        self.assertEqual(len(injuries), 11)
        self.assertEqual(injuries[0], {"id": "cuts_scrapes", "name": "Cuts and Scrapes", "severity": "minor"})

        burns = self.client.get("/api/injuries/burns").json()
        self.assertEqual(burns["first_aid_steps"][0]["step"], 1)
        self.assertEqual(self.client.get("/api/injuries/unknown").status_code, 404)

    def test_health(self):
        body = self.client.get("/health").json()
        self.assertEqual(body["status"], "ok")
        self.assertEqual(body["provider"], "configured")
        self.assertEqual(body["injuries"], 11)


class TestWhatsAppWebhook(unittest.TestCase):
    """POST /api/whatsapp (Twilio form webhook, TwiML replies)."""

    @classmethod
    def setUpClass(cls):
        cls.kb = KnowledgeBase.from_directory(DATA_DIR)

    def setUp(self):
        self.provider = FakeProvider()
        self.bot = FirstAidChatbot(self.kb, self.provider)
        self.client = TestClient(
            create_app(
                chatbot=self.bot,
                settings=_settings(twilio_account_sid="AC123", twilio_auth_token="secret"),
            )
        )

    def test_text_message_uses_phone_number_as_session(self):
        resp = self.client.post(
            "/api/whatsapp", data={"Body": "I cut my finger", "From": "whatsapp:+15551234567"}
        )
        self.assertEqual(resp.status_code, 200)
        self.assertIn("text/xml", resp.headers["content-type"])
        self.assertIn("<Response><Message>Keep pressure on the cut.</Message></Response>", resp.text)
        self.assertIsNotNone(self.bot.get_context("+15551234567"))

    def test_reply_is_twiml_document(self):
        resp = self.client.post("/api/whatsapp", data={"Body": "I cut my finger", "From": "whatsapp:+1"})
        self.assertTrue(resp.text.startswith("<?xml"))
        self.assertTrue(resp.text.endswith("</Response>"))

    def test_engine_error_still_answers_with_twiml(self):
        with patch.object(self.bot, "chat", side_effect=RuntimeError("boom")):
            resp = self.client.post("/api/whatsapp", data={"Body": "I cut my finger", "From": "whatsapp:+1"})
        self.assertEqual(resp.status_code, 200)
        self.assertIn(f"<Message>{WHATSAPP_ERROR_MESSAGE}</Message>", resp.text)

    def test_reply_is_xml_escaped(self):
        self.provider.reply = "Use <gauze> & tape"
        resp = self.client.post("/api/whatsapp", data={"Body": "I cut my finger", "From": "whatsapp:+1"})
        self.assertIn("Use &lt;gauze&gt; &amp; tape", resp.text)

    def test_empty_body_gets_not_understood(self):
        resp = self.client.post("/api/whatsapp", data={"Body": "", "From": "whatsapp:+1"})
        self.assertIn("I'm not sure I understood your question", resp.text)
        self.assertIsNone(self.bot.get_context("+1"))

    def test_media_message(self):
        media = MagicMock(content=b"jpeg-bytes")
        with patch("server.requests.get", return_value=media) as get:
            resp = self.client.post(
                "/api/whatsapp",
                data={
                    "Body": "",
                    "From": "whatsapp:+447700900000",
                    "NumMedia": "1",
                    "MediaUrl0": "https://api.twilio.com/media/1",
                    "MediaContentType0": "image/png",
                },
            )
        self.assertEqual(resp.status_code, 200)
        get.assert_called_once_with(
            "https://api.twilio.com/media/1", auth=("AC123", "secret"), timeout=15
        )
        prompt, image_bytes, mime_type = self.provider.image_calls[0]
        self.assertIn("Please analyze this image", prompt)
        self.assertEqual(image_bytes, b"jpeg-bytes")
        self.assertEqual(mime_type, "image/png")

    def test_media_download_failure_falls_back_to_text(self):
        with patch("server.requests.get", side_effect=requests.ConnectionError("offline")):
            resp = self.client.post(
                "/api/whatsapp",
                data={
                    "Body": "is it infected?",
                    "From": "whatsapp:+15550000000",
                    "NumMedia": "1",
                    "MediaUrl0": "https://api.twilio.com/media/2",
                },
            )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self.provider.image_calls, [])
        first = self.bot.get_context("+15550000000").messages[0]
        self.assertEqual(first.content, IMAGE_DOWNLOAD_FAILED_PREFIX + "is it infected?")


class TestStartup(unittest.TestCase):
    """Configuration faults stop the service at startup."""

    def test_missing_provider_key_fails_startup(self):
        app = create_app(settings=_settings(openai_api_key="", azure_openai_key=""))
        with self.assertRaises(ConfigurationError):
            with TestClient(app):
                pass


if __name__ == "__main__":
    unittest.main(verbosity=2)
