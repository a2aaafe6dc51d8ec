"""
LLM Client Abstraction
Single entry point for all AI calls in the PLS tracker.
Primary: Gemini 1.5 Flash (document extraction, assistant, report summaries)
Fallback: Groq LLaMA 3.1 70B for text-only calls
"""
import json
import logging
import os
from typing import Any, Dict, List, Optional

import litellm

from app.services.errors import BoundaryError

logger = logging.getLogger("pls-llm")

PRIMARY_MODEL = os.getenv("LLM_PRIMARY_MODEL", "gemini/gemini-1.5-flash")
FALLBACK_MODEL = os.getenv("LLM_FALLBACK_MODEL", "groq/llama-3.1-70b-versatile")
VISION_MODEL = os.getenv("LLM_VISION_MODEL", "gemini/gemini-1.5-flash")

# Suppress litellm verbose logging
litellm.set_verbose = False


def _with_json_instruction(messages: list) -> list:
    messages = [dict(m) for m in messages]
    if messages and messages[0]["role"] == "system":
        messages[0]["content"] += "\n\nIMPORTANT: Respond with valid JSON only."
    else:
        messages = [{"role": "system", "content": "You must respond with valid JSON only."}] + messages
    return messages


async def complete(
    messages: list,
    temperature: float = 0.1,
    json_mode: bool = False,
    max_tokens: int = 4096,
) -> str:
    """
    Call the primary LLM. Falls back to the secondary model on rate limit or error.
    Returns the response content string.
    """
    kwargs = {
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    try:
        response = await litellm.acompletion(model=PRIMARY_MODEL, **kwargs)
        return response.choices[0].message.content
    except litellm.RateLimitError:
        logger.warning("Primary LLM rate limit hit, falling back to %s", FALLBACK_MODEL)
    except litellm.AuthenticationError:
        logger.warning("Primary LLM auth error, falling back to %s", FALLBACK_MODEL)
    except Exception as e:
        logger.warning(f"Primary LLM error ({type(e).__name__}: {e}), falling back")

    try:
        fallback_kwargs = {k: v for k, v in kwargs.items() if k != "response_format"}
        if json_mode:
            fallback_kwargs["messages"] = _with_json_instruction(fallback_kwargs["messages"])
        response = await litellm.acompletion(model=FALLBACK_MODEL, **fallback_kwargs)
        return response.choices[0].message.content
    except Exception as e:
        logger.error(f"Both LLMs failed. Fallback error: {e}")
        raise BoundaryError(f"All LLM providers failed. Last error: {e}")


async def complete_with_vision(
    files_base64: List[str],
    prompt: str,
    mime_type: str = "image/png",
    temperature: float = 0.1,
    json_mode: bool = False,
) -> str:
    """
    Vision-capable call for scanned PDFs and photographed documents.
    files_base64: base64-encoded payloads, all of `mime_type`.
    """
    content: List[Dict[str, Any]] = [
        {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{b64}"}}
        for b64 in files_base64
    ]
    content.append({"type": "text", "text": prompt})
    messages = [{"role": "user", "content": content}]

    kwargs: Dict[str, Any] = {"temperature": temperature, "max_tokens": 8192}
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    try:
        response = await litellm.acompletion(model=VISION_MODEL, messages=messages, **kwargs)
        return response.choices[0].message.content
    except Exception as e:
        logger.error(f"Vision LLM failed: {e}")
        raise BoundaryError(f"Vision LLM failed: {e}")


async def complete_with_tools(
    messages: list,
    tools: List[Dict[str, Any]],
    temperature: float = 0.1,
) -> Dict[str, Any]:
    """
    One function-calling round on the primary model.

    Returns {"content": str, "tool_calls": [{"name": str, "arguments": dict}]}.
    Arguments that are not valid JSON are passed through as an empty dict.
    """
    try:
        response = await litellm.acompletion(
            model=PRIMARY_MODEL,
            messages=messages,
            tools=tools,
            tool_choice="auto",
            temperature=temperature,
        )
    except Exception as e:
        logger.error(f"Tool-calling LLM failed: {e}")
        raise BoundaryError(f"Assistant is unavailable: {e}")

    message = response.choices[0].message
    calls: List[Dict[str, Any]] = []
    for call in getattr(message, "tool_calls", None) or []:
        raw = call.function.arguments or "{}"
        try:
            arguments = json.loads(raw) if isinstance(raw, str) else dict(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding malformed tool arguments for %s", call.function.name)
            arguments = {}
        calls.append({"name": call.function.name, "arguments": arguments})
    return {"content": message.content or "", "tool_calls": calls}


def get_system_prompt(role: str, context: Optional[str] = None) -> str:
    """Standard system prompts for different AI roles."""
    prompts = {
        "extractor": (
            "You are a document analyst at a Brazilian construction company working with CAIXA "
            "housing financing. You read FRE (Ficha Resumo do Empreendimento) sheets, synthetic "
            "budgets (Orçamento Sintético) and physical-financial schedules (Cronograma "
            "Físico-Financeiro) and return their data as strict JSON. Monetary values are plain "
            "numbers without currency symbols or thousands separators."
        ),
        "assistant": (
            "You are a construction-site assistant for a housing project. The user reports "
            "progress on budget services for specific housing units. When the user states "
            "progress, call the updateProgress tool using service and unit names exactly as "
            "listed below. Use \"all\" as a unit name to mean every unit. Progress is a "
            "percentage from 0 to 100. Reply in Portuguese."
        ),
        "reporter": (
            "You are a civil engineer writing a short executive summary of a construction "
            "progress measurement for a CAIXA housing project. Write 2 to 3 paragraphs in "
            "Portuguese, highlighting overall progress, the most and least advanced categories "
            "and the financial balance still to be measured."
        ),
    }
    prompt = prompts.get(role, prompts["extractor"])
    if context:
        prompt = f"{prompt}\n\n{context}"
    return prompt
