import os
from types import SimpleNamespace

import pytest

from visibility_scan.config import cfg
from visibility_scan.services import llm_client
from visibility_scan.services.llm_client import _extract_json_from_text, call_llm

# Helper to check env keys
HAS_OPENAI = bool(os.getenv("OPENAI_API_KEY"))
HAS_GEMINI = bool(os.getenv("GEMINI_API_KEY"))
HAS_ANTHROPIC = bool(os.getenv("ANTHROPIC_API_KEY"))


class TestExtractJson:
    """Test JSON recovery from model text"""

    def test_fenced_object(self):
        """Test JSON inside a fenced block"""
        assert _extract_json_from_text('```json\n{"a": 1}\n```') == {"a": 1}

    def test_array_with_prose(self):
        """Test a JSON array surrounded by prose"""
        assert _extract_json_from_text('Here you go: ["x", "y"] hope that helps') == ["x", "y"]

    def test_outer_structure_wins(self):
        """Test the outer structure is extracted"""
        text = '[{"text": "a"}, {"text": "b"}]'
        assert _extract_json_from_text(text) == [{"text": "a"}, {"text": "b"}]

    def test_trailing_comma(self):
        """Test a trailing comma is repaired"""
        assert _extract_json_from_text('{"a": [1, 2,],}') == {"a": [1, 2]}

    def test_no_json(self):
        """Test text without JSON"""
        assert _extract_json_from_text("no structure here") is None
        assert _extract_json_from_text("") is None


class TestCallLlm:
    """Test provider routing with a stand-in SDK client"""

    @pytest.mark.asyncio
    async def test_openai_chat(self, monkeypatch):
        """Test an OpenAI chat call"""
        captured = {}

        async def create(**kwargs):
            captured.update(kwargs)
            message = SimpleNamespace(content='["Acme", "Bolt"]')
            return SimpleNamespace(choices=[SimpleNamespace(message=message)],
                                   usage=SimpleNamespace(prompt_tokens=12, completion_tokens=4))

        fake = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
        monkeypatch.setattr(llm_client, "_openai_client", fake)
        resp = await call_llm("List competitors", provider="openai", model="gpt-4o-mini", system="be terse")

        assert resp["structured"] == ["Acme", "Bolt"]
        assert resp["usage"] == {"input_tokens": 12, "output_tokens": 4}
        assert resp["provider"] == "openai"
        assert captured["messages"][0] == {"role": "system", "content": "be terse"}

    @pytest.mark.asyncio
    async def test_anthropic_text_blocks(self, monkeypatch):
        """Test Anthropic text blocks are joined"""
        async def create(**kwargs):
            blocks = [SimpleNamespace(type="text", text="Hello "), SimpleNamespace(type="text", text="there")]
            return SimpleNamespace(content=blocks, usage=SimpleNamespace(input_tokens=3, output_tokens=2))

        monkeypatch.setattr(llm_client, "_anthropic_client", SimpleNamespace(messages=SimpleNamespace(create=create)))
        resp = await call_llm("hi", provider="anthropic")
        assert resp["text"] == "Hello there"
        assert resp["model"] == cfg.ANTHROPIC_MODEL

    @pytest.mark.asyncio
    async def test_unknown_provider(self):
        """Test an unknown provider is rejected"""
        with pytest.raises(ValueError):
            await call_llm("hi", provider="mystery")

    @pytest.mark.asyncio
    async def test_missing_key(self, monkeypatch):
        """Test a provider without an API key is rejected"""
        monkeypatch.setattr(llm_client, "_perplexity_client", None)
        monkeypatch.setattr(cfg, "PERPLEXITY_API_KEY", None)
        with pytest.raises(RuntimeError):
            await call_llm("hi", provider="perplexity")

    def test_no_provider_configured(self, monkeypatch):
        """Test no configured provider raises"""
        for key in ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GEMINI_API_KEY"):
            monkeypatch.setattr(cfg, key, None)
        with pytest.raises(RuntimeError):
            llm_client.default_provider()


@pytest.mark.parametrize("provider_key", ["gemini", "openai", "anthropic"])
@pytest.mark.asyncio
async def test_call_llm_basic_text(provider_key):
    """
    Live smoke test: call call_llm with a simple prompt for each provider if
    the corresponding API key is present. Assert we get non-empty text.
    """
    if provider_key == "openai" and not HAS_OPENAI:
        pytest.skip("OPENAI_API_KEY not set; skipping OpenAI test")
    if provider_key == "gemini" and not HAS_GEMINI:
        pytest.skip("GEMINI_API_KEY not set; skipping Gemini test")
    if provider_key == "anthropic" and not HAS_ANTHROPIC:
        pytest.skip("ANTHROPIC_API_KEY not set; skipping Anthropic test")

    prompt = "Name two well-known plumbing companies in Sydney as a JSON array of strings."
    resp = await call_llm(prompt, provider=provider_key, max_tokens=200, temperature=0.0)

    assert isinstance(resp, dict), f"Expected dict from call_llm, got {type(resp)}"
    txt = resp["text"]
    assert isinstance(txt, str), f"Response text not a string: {type(txt)}"
    assert txt.strip() != "", f"Empty text in response. raw: {resp.get('raw')}"
