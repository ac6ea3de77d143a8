# app/lib/json_tools.py
import json
import re

def extract_json_block(text: str) -> str:
    """Strip code fences / chatter around a JSON object or array."""
    s = text.strip()
    if s.startswith("```"):
        s = re.sub(r"^```(?:json)?\s*", "", s, flags=re.IGNORECASE)
        s = re.sub(r"\s*```$", "", s)
    try:
        json.loads(s)
        return s
    except ValueError:
        pass
    m = re.search(r"\{.*\}", s, flags=re.DOTALL)
    if m:
        return m.group(0)
    m = re.search(r"\[.*\]", s, flags=re.DOTALL)
    return m.group(0) if m else s

def strip_wrapping(text: str) -> str:
    """Remove fences and surrounding quotes from a plain-text model answer."""
    s = text.strip()
    if s.startswith("```"):
        s = re.sub(r"^```\w*\s*", "", s)
        s = re.sub(r"\s*```$", "", s)
    if len(s) >= 2 and s[0] == s[-1] and s[0] in {'"', "'"}:
        s = s[1:-1]
    return s.strip()
