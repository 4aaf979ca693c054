from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Callable

import google.generativeai as genai

from grantwright import prompts
from grantwright.config import Settings
from grantwright.models import FundingScheme

logger = logging.getLogger("grantwright.gemini")

QUOTA_EXCEEDED_MESSAGE = "API Quota Limit Reached. Please try again later or use your own API key."


class GeminiRuntimeError(RuntimeError):
    """Raised when Gemini invocation fails or returns invalid output."""


class GeminiQuotaError(GeminiRuntimeError):
    """Raised when the provider rejects a call for quota or rate-limit reasons."""


def is_quota_error(exc: BaseException) -> bool:
    if getattr(exc, "code", None) == 429:
        return True
    text = str(exc)
    return "429" in text or "RESOURCE_EXHAUSTED" in text.upper()


class GoogleGenerativeClient:
    """Thin adapter over `google.generativeai` so the orchestrator can be driven by fakes in tests."""

    def __init__(self, api_key: str) -> None:
        genai.configure(api_key=api_key)

    def generate(self, *, model_id: str, contents: Any, temperature: float, max_output_tokens: int) -> str:
        model = genai.GenerativeModel(
            model_id,
            generation_config={"temperature": temperature, "max_output_tokens": max_output_tokens},
        )
        return model.generate_content(contents).text

    def chat(
        self,
        *,
        model_id: str,
        history: list[dict[str, Any]],
        message: str,
        temperature: float,
        max_output_tokens: int,
    ) -> str:
        model = genai.GenerativeModel(
            model_id,
            generation_config={"temperature": temperature, "max_output_tokens": max_output_tokens},
        )
        session = model.start_chat(history=history)
        return session.send_message(message).text


class GeminiProposalOrchestrator:
    def __init__(self, settings: Settings, client: Any | None = None) -> None:
        self._settings = settings
        self._client = client or self._create_client()

    def summarize_call(
        self,
        *,
        source_url: str,
        source_content: str,
        user_prompt: str | None,
        text_mode: bool,
    ) -> dict[str, object]:
        prompt = prompts.call_summary_prompt(
            source_url=source_url,
            source_content=source_content[: self._settings.call_prompt_max_chars],
            user_prompt=user_prompt,
            text_mode=text_mode,
        )
        payload = self._invoke_json_model(prompt, operation="summarize_call")
        constraints = payload.get("constraints")
        return {
            "summary": str(payload.get("summary") or "").strip(),
            "constraints": constraints if isinstance(constraints, dict) else {},
        }

    def brainstorm_ideas(
        self,
        summary: str,
        constraints: dict[str, Any],
        user_prompt: str | None,
    ) -> list[dict[str, object]]:
        payload = self._invoke_json_model(
            prompts.idea_brainstorm_prompt(summary, constraints, user_prompt),
            operation="brainstorm_ideas",
        )
        ideas = payload.get("ideas")
        if not isinstance(ideas, list):
            raise GeminiRuntimeError("Gemini idea response did not include an ideas array.")
        return [idea for idea in ideas if isinstance(idea, dict)]

    def assess_relevance(
        self,
        *,
        source_url: str,
        source_content: str,
        constraints: dict[str, Any],
        ideas: list[dict[str, Any]],
        user_prompt: str | None,
    ) -> dict[str, object]:
        prompt = prompts.relevance_prompt(
            source_url=source_url,
            source_content=source_content[: self._settings.call_prompt_max_chars],
            constraints=constraints,
            ideas=ideas,
            user_prompt=user_prompt,
        )
        return self._invoke_json_model(prompt, operation="assess_relevance")

    def draft_proposal(
        self,
        *,
        idea: dict[str, Any],
        summary: str,
        constraints: dict[str, Any],
        partners: list[dict[str, Any]],
        user_prompt: str | None,
        funding_scheme: FundingScheme | None,
    ) -> dict[str, object]:
        prompt = prompts.proposal_prompt(
            idea=idea,
            summary=summary,
            constraints=constraints,
            partners=partners,
            user_prompt=user_prompt,
            funding_scheme=funding_scheme,
        )
        return self._invoke_json_model(prompt, operation="draft_proposal")

    def detect_section(self, instruction: str, available_sections: list[str]) -> str:
        payload = self._invoke_json_model(
            prompts.section_detection_prompt(instruction, available_sections),
            operation="detect_section",
        )
        return str(payload.get("section") or "").strip()

    def rewrite_section(
        self,
        *,
        summary: str | None,
        budget_limit: str,
        section: str,
        current_content: Any,
        instruction: str,
    ) -> Any:
        payload = self._invoke_json_model(
            prompts.section_edit_prompt(
                summary=summary,
                budget_limit=budget_limit,
                section=section,
                current_content=current_content,
                instruction=instruction,
            ),
            operation="rewrite_section",
        )
        if "content" not in payload:
            raise GeminiRuntimeError("Gemini edit response did not include content.")
        return payload["content"]

    def draft_section(self, *, section_title: str, proposal_context: str, existing_sections: list[str]) -> dict[str, object]:
        payload = self._invoke_json_model(
            prompts.new_section_prompt(
                section_title=section_title,
                proposal_context=proposal_context,
                existing_sections=existing_sections,
            ),
            operation="draft_section",
        )
        return {
            "title": str(payload.get("title") or section_title),
            "content": payload.get("content") or "",
        }

    def copilot_reply(
        self,
        *,
        context: dict[str, Any],
        section_keys: list[str],
        history: list[dict[str, str]],
        message: str,
    ) -> str:
        chat_history: list[dict[str, Any]] = [
            {"role": "user", "parts": [prompts.copilot_system_prompt(context, section_keys)]},
            {"role": "model", "parts": [prompts.COPILOT_ACKNOWLEDGEMENT]},
        ]
        for item in history:
            role = "model" if item.get("role") == "assistant" else "user"
            chat_history.append({"role": role, "parts": [str(item.get("content") or "")]})

        return self._invoke(
            lambda: self._client.chat(
                model_id=self._settings.gemini_model_id,
                history=chat_history,
                message=message,
                temperature=self._settings.agent_temperature,
                max_output_tokens=self._settings.agent_max_output_tokens,
            ),
            operation="copilot_reply",
            prompt_chars=len(message),
        )

    def extract_partner_profile(self, pdf_bytes: bytes) -> dict[str, object]:
        contents = [prompts.PARTNER_EXTRACTION_PROMPT, {"mime_type": "application/pdf", "data": pdf_bytes}]
        return self._invoke_json_model(contents, operation="extract_partner_profile")

    def _create_client(self) -> Any:
        if not self._settings.gemini_api_key:
            raise GeminiRuntimeError("GEMINI_API_KEY is not configured.")
        return GoogleGenerativeClient(self._settings.gemini_api_key)

    def _invoke(self, call: Callable[[], str], *, operation: str, prompt_chars: int) -> str:
        model_id = self._settings.gemini_model_id
        if not model_id:
            raise GeminiRuntimeError("Gemini model ID is not configured.")

        started = time.perf_counter()
        try:
            text = call()
        except Exception as exc:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            quota = is_quota_error(exc)
            logger.warning(
                "gemini_invoke_failed",
                extra={
                    "event": "gemini_invoke_failed",
                    "operation": operation,
                    "model_id": model_id,
                    "duration_ms": duration_ms,
                    "quota_exceeded": quota,
                    "error": str(exc),
                },
            )
            if quota:
                raise GeminiQuotaError(QUOTA_EXCEEDED_MESSAGE) from exc
            raise GeminiRuntimeError(f"Gemini invocation failed for model '{model_id}': {exc}") from exc

        if not isinstance(text, str) or not text.strip():
            raise GeminiRuntimeError("Gemini response did not include textual output.")
        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.info(
            "gemini_invoke_completed",
            extra={
                "event": "gemini_invoke_completed",
                "operation": operation,
                "model_id": model_id,
                "duration_ms": duration_ms,
                "prompt_chars": prompt_chars,
                "response_chars": len(text),
            },
        )
        return text.strip()

    def _invoke_json_model(self, contents: Any, *, operation: str) -> dict[str, object]:
        prompt_chars = len(contents) if isinstance(contents, str) else len(str(contents[0]))
        text = self._invoke(
            lambda: self._client.generate(
                model_id=self._settings.gemini_model_id,
                contents=contents,
                temperature=self._settings.agent_temperature,
                max_output_tokens=self._settings.agent_max_output_tokens,
            ),
            operation=operation,
            prompt_chars=prompt_chars,
        )
        try:
            payload = parse_json_object(text)
        except GeminiRuntimeError:
            raise
        except Exception as exc:
            raise GeminiRuntimeError(f"Gemini response parsing failed for {operation}: {exc}") from exc
        if not isinstance(payload, dict):
            raise GeminiRuntimeError("Gemini response must be a JSON object.")
        return payload


def parse_json_object(raw: str) -> Any:
    candidate = raw.strip()
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass

    fenced = re.search(r"```(?:json)?\s*(.*?)\s*```", candidate, flags=re.IGNORECASE | re.DOTALL)
    if fenced:
        try:
            return json.loads(fenced.group(1))
        except json.JSONDecodeError:
            pass

    start = candidate.find("{")
    end = candidate.rfind("}")
    if start != -1 and end != -1 and end > start:
        try:
            return json.loads(candidate[start : end + 1])
        except json.JSONDecodeError as exc:
            raise GeminiRuntimeError("Gemini response contained malformed JSON content.") from exc

    raise GeminiRuntimeError("Gemini response was not valid JSON.")
