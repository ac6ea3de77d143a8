# app/lib/llm.py
"""
Thin wrapper over the OpenAI chat API for the three call shapes the pipeline uses:
structured JSON (strict json_schema), free text, and structured JSON about an image.
"""
from __future__ import annotations

import json
from typing import Any, Dict, List

from app.config import Config
from app.lib import openai_client
from app.lib.json_tools import extract_json_block, strip_wrapping
from app.logger import get_logger

log = get_logger(__name__)

# -------- JSON Schema helpers (OpenAI strict-mode subset) --------

STRING = {"type": "string"}
INTEGER = {"type": "integer"}

def obj(props: dict) -> dict:
    # strict mode: every key listed in required, no extra keys
    return {
        "type": "object",
        "additionalProperties": False,
        "properties": props,
        "required": list(props.keys()),
    }

def arr(items: dict) -> dict:
    return {"type": "array", "items": items}

def nullable(schema: dict) -> dict:
    if "enum" in schema or schema.get("type") == "object":
        return {"anyOf": [schema, {"type": "null"}]}
    return {**schema, "type": [schema["type"], "null"]}

def enum(*values: str) -> dict:
    return {"type": "string", "enum": list(values)}


class LLMClient:
    def __init__(self, cfg: Config, client: Any = None):
        self.cfg = cfg
        self._client = client

    @property
    def client(self):
        return self._client or openai_client.client

    def model_for(self, complexity: str, price_tier: str = "standard") -> str:
        """Standard tier always runs the cheap model; premium upgrades high-complexity calls."""
        if price_tier == "premium" and complexity == "high":
            return self.cfg.ai_model_complex
        return self.cfg.ai_model_manifest

    def structured(
        self,
        *,
        model: str,
        system: str,
        user: Any,
        schema_name: str,
        schema: dict,
        temperature: float = 0.4,
    ) -> Dict[str, Any]:
        resp = self.client.chat.completions.create(
            model=model,
            temperature=temperature,
            response_format={
                "type": "json_schema",
                "json_schema": {"name": schema_name, "schema": schema, "strict": True},
            },
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        )
        raw = (resp.choices[0].message.content or "").strip()
        log.debug(f"{schema_name} <- {model}: {len(raw)} chars")
        return json.loads(extract_json_block(raw))

    def text(self, *, model: str, system: str, user: str, temperature: float = 0.4) -> str:
        resp = self.client.chat.completions.create(
            model=model,
            temperature=temperature,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        )
        return strip_wrapping(resp.choices[0].message.content or "")

    def structured_about_image(
        self,
        *,
        model: str,
        system: str,
        image_url: str,
        instruction: str,
        schema_name: str,
        schema: dict,
    ) -> Dict[str, Any]:
        content: List[Dict[str, Any]] = [
            {"type": "image_url", "image_url": {"url": image_url}},
            {"type": "text", "text": instruction},
        ]
        return self.structured(
            model=model,
            system=system,
            user=content,
            schema_name=schema_name,
            schema=schema,
            temperature=0.0,
        )
