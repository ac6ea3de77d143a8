# tests/conftest.py
import base64
import io
import json
import os
import types
from dataclasses import replace

os.environ.setdefault("OPENAI_API_KEY", "sk-test")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_dummy")
os.environ.setdefault("GCS_BUCKET", "test-bucket")
os.environ.setdefault("LOG_LEVEL", "INFO")

import pytest
from PIL import Image

from app.config import config as base_config
from app.lib import events
from app.lib.db import dispose_engine, init_db
from app.lib.imaging import decode_data_url, is_data_url, to_data_url
from app.lib.steps import StepRunner, Suspended
from app.pipeline import build_pipeline

# -------- Utilities --------
def png_bytes(color: str = "white", size=(16, 16)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()

PASS_SCORES = {"line_art": 5, "background": 4, "anatomy": 4, "hands": 4, "composition": 4, "feedback": ""}
COLORED_SCORES = {"line_art": 1, "background": 4, "anatomy": 4, "hands": 4, "composition": 4, "feedback": "Colored fills."}
SPARSE_SCORES = {"line_art": 5, "background": 2, "anatomy": 4, "hands": 4, "composition": 4, "feedback": ""}

MANIFEST = {
    "character_name": "Maya",
    "character_type": "human",
    "species": None,
    "physical_description": "a cheerful girl with freckles",
    "age_range": "6-8",
    "hair": {"style": "ponytail", "color": "brown", "length": "long", "texture": "curly"},
    "skin_tone": "light",
    "outfit": {"top": "striped t-shirt", "bottom": "denim overalls", "shoes": "sneakers", "accessories": []},
    "character_key_features": ["freckles", "pet dog named Biscuit"],
    "character_props": ["magnifying glass"],
    "theme": "jungle explorer",
    "style_tags": ["bold outlines", "whimsical", "no shading"],
    "negative_tags": ["color", "shading"],
}

PAGE_CONTEXT = {
    "background_elements": {
        "foreground": ["ferns", "a fallen log"],
        "midground": ["a rope bridge"],
        "background": ["tall trees", "distant waterfall"],
    },
    "scene_specific_negatives": ["no text"],
}

# -------- Mocks for OpenAI --------
class _MockImageData:
    def __init__(self, b64_json):
        self.b64_json = b64_json

class _MockImagesResponse:
    def __init__(self, b64_json, created=1700000000):
        self.data = [_MockImageData(b64_json)]
        self.created = created

class _MockMessage:
    def __init__(self, content: str):
        self.content = content

class _MockChoice:
    def __init__(self, content: str):
        self.message = _MockMessage(content)

class _MockChatResponse:
    def __init__(self, content: str):
        self.choices = [_MockChoice(content)]


class FakeOpenAI:
    """
    Routes chat calls by json_schema name and counts every call.
    Tests steer behaviour through the public attributes.
    """

    def __init__(self, page_count: int):
        self.page_count = page_count
        self.context_count = None          # override to force a mismatch
        self.scores = []                   # queue of quality_scores payloads; empty -> pass
        self.quality_error = None          # raise this from the quality gate
        self.calls = {}
        self.image_calls = []
        self.edit_references = []

    def _count(self, key: str) -> None:
        self.calls[key] = self.calls.get(key, 0) + 1

    def chat(self, model, messages, temperature=None, response_format=None, **kwargs):
        name = ((response_format or {}).get("json_schema") or {}).get("name")
        self._count(name or "text")
        if name == "character_manifest":
            payload = dict(MANIFEST)
        elif name == "pose_palette":
            payload = {"poses": ["leaping off a rock", "crouching to inspect a bug", "gasping with wide eyes"]}
        elif name == "scene_descriptions":
            payload = {"scenes": [
                {"page_number": n, "description": f"A jungle clearing. Maya explores spot {n} with Biscuit. Birds watch."}
                for n in range(self.page_count, 0, -1)
            ]}
        elif name == "global_theme_context":
            payload = {"theme_description": "lush jungle", "default_background_hints": ["vines"], "default_negatives": ["color"]}
        elif name == "page_contexts":
            n = self.page_count if self.context_count is None else self.context_count
            payload = {"pages": [PAGE_CONTEXT for _ in range(n)]}
        elif name == "quality_scores":
            if self.quality_error is not None:
                raise self.quality_error
            payload = self.scores.pop(0) if self.scores else PASS_SCORES
        else:
            system = messages[0]["content"]
            assert "refine" in system.lower() or "prompt" in system.lower()
            return _MockChatResponse("Refined prompt: pure black outlines only, no color.")
        return _MockChatResponse(json.dumps(payload))

    def images_generate(self, model, prompt, size, n, **kwargs):
        self.image_calls.append(("generate", prompt))
        return _MockImagesResponse(base64.b64encode(png_bytes()).decode("ascii"))

    def images_edit(self, model, prompt, size, n, image, **kwargs):
        self.image_calls.append(("edit", prompt))
        self.edit_references.append(image)
        return _MockImagesResponse(base64.b64encode(png_bytes()).decode("ascii"))


class FakeStore:
    """In-memory document store with gs-like locations."""

    def __init__(self):
        self.objects = {}

    def put(self, object_name: str, data: bytes, content_type: str) -> str:
        location = f"mem://{object_name}"
        self.objects[location] = (data, content_type)
        return location

    def get(self, location: str) -> bytes:
        if location in self.objects:
            return self.objects[location][0]
        if is_data_url(location):
            return decode_data_url(location)[0]
        raise KeyError(location)

    def url_for(self, location: str) -> str:
        if location in self.objects:
            data, ctype = self.objects[location]
            return to_data_url(data, ctype)
        return location


class EventRecorder:
    def __init__(self):
        self.sent = []

    def __call__(self, event, resource_id, payload=None, *, delay=0, cfg=None):
        self.sent.append({"event": event, "id": resource_id, "payload": payload or {}, "delay": delay})
        return f"tasks/{len(self.sent)}"

    def of(self, event):
        return [e for e in self.sent if e["event"] == event]

# -------- Fixtures --------
@pytest.fixture
def cfg():
    return replace(
        base_config,
        page_count=3,
        preview_count=2,
        page_sleep_seconds=0,
        step_max_retries=1,
        step_retry_delay=0,
        max_quality_retries=2,
        quality_gate_fail_open=True,
        stripe_secret_key="sk_test_dummy",
        stripe_webhook_secret="whsec_dummy",
    )

@pytest.fixture(autouse=True)
def db(tmp_path):
    dispose_engine()
    engine = init_db(f"sqlite:///{tmp_path / 'test.db'}")
    yield engine
    dispose_engine()

@pytest.fixture(autouse=True)
def fake_openai(monkeypatch, cfg):
    """
    Auto-mock the OpenAI client everywhere so tests don't hit the network.
    """
    from app.lib import openai_client

    fake = FakeOpenAI(cfg.page_count)
    monkeypatch.setattr(openai_client.client.chat.completions, "create", fake.chat)
    monkeypatch.setattr(openai_client.client.images, "generate", fake.images_generate)
    monkeypatch.setattr(openai_client.client.images, "edit", fake.images_edit)
    return fake

@pytest.fixture(autouse=True)
def sent_events(monkeypatch):
    recorder = EventRecorder()
    monkeypatch.setattr(events, "send_event", recorder)
    return recorder

@pytest.fixture
def store():
    return FakeStore()

@pytest.fixture
def pipeline(cfg, store):
    return build_pipeline(cfg, store=store)

@pytest.fixture
def stripe_sessions(monkeypatch):
    """Mock checkout session creation; returns the list of created sessions' params."""
    import stripe

    created = []

    def _create(**params):
        session = types.SimpleNamespace(id=f"cs_test_{len(created) + 1}", url=f"https://checkout.test/{len(created) + 1}")
        created.append({"id": session.id, **params})
        return session

    monkeypatch.setattr(stripe.checkout.Session, "create", _create)
    return created

# -------- Helpers --------
def drive(handler, run_key, cfg, *, rounds: int = 20):
    """Deliver a trigger repeatedly (as the queue would) until the run stops suspending."""
    for _ in range(rounds):
        steps = StepRunner(run_key, cfg, scheduler=lambda delay: None)
        try:
            return handler(steps)
        except Suspended:
            continue
    raise AssertionError(f"{run_key} still suspended after {rounds} deliveries")

def make_paid_order(store, *, email="parent@example.com", user_input=None, price_tier="standard"):
    """An order that has picked a preview and been paid for."""
    from app.lib import queries

    order = queries.create_order(user_input or {"description": "A curious girl named Maya", "character_name": "Maya", "theme": "jungle"}, price_tier=price_tier)
    preview = store.put(f"previews/{order.id}/preview-0-seed-1.png", png_bytes(), "image/png")
    queries.set_order_previews(order.id, [{"url": preview, "seed": 1}])
    queries.select_order_preview(order.id, preview, 1)
    assert queries.mark_order_paid(order.id, session_id=f"cs_{order.id}", email=email, amount_cents=1200, currency="usd")
    return queries.get_order(order.id)

@pytest.fixture
def client(pipeline):
    from fastapi.testclient import TestClient

    from app.main import app
    from app.pipeline import get_pipeline

    app.dependency_overrides[get_pipeline] = lambda: pipeline
    yield TestClient(app)
    app.dependency_overrides.clear()
