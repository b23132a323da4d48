"""LLM-backed email classification.

Objective:
    Turn a batch of :class:`gmail_triage.models.MessageMeta` into
    :class:`gmail_triage.models.LabeledEmail` objects, one keep/trash/review
    decision per email.

Core strategy:
    1. Send only header fields and the snippet of each email to a Groq
       chat model, with a fixed system prompt and a JSON response format.
    2. Decode ``{"decisions": [...]}`` from the first choice.
    3. Merge decisions back onto the input batch by id, filling defaults
       for ids the model skipped.

The client transports and decodes; it does not classify on its own.

High-level call tree:
    - :class:`EmailClassifier`
        - :meth:`EmailClassifier.classify_batch`
            - :meth:`EmailClassifier._build_system_prompt`
                - :meth:`EmailClassifier._load_system_prompt_template`
            - :meth:`EmailClassifier._build_user_prompt`
            - Groq chat completion
            - :meth:`EmailClassifier._decode_decisions`
            - :func:`merge_decisions`

Operational notes:
    - The system prompt lives in ``gmail_triage/prompts/triage_system_prompt.md``.
    - Rate-limit (429) and 5xx retries are left to the Groq SDK
      (``max_retries``); anything still failing becomes :class:`RemoteError`.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any, Optional

from groq import APIConnectionError, APIStatusError, Groq
from pydantic import ValidationError

from .config import AppConfig, DecisionAction, TriageSettings
from .exceptions import AuthError, DecodeError, RemoteError
from .models import Decision, LabeledEmail, MessageMeta

logger = logging.getLogger(__name__)


def merge_decisions(
    emails: list[MessageMeta], decisions: list[Decision]
) -> list[LabeledEmail]:
    """Attach decisions to emails by id.

    - Output order is the input order, not the model's order.
    - Decisions whose id matches no input email are dropped.
    - Emails without a decision get :meth:`Decision.default_for`.
    - Each attached decision carries its email's id.

    Args:
        emails: Batch sent to the model.
        decisions: Decoded decisions, any order.

    Returns:
        list[LabeledEmail]: One labeled email per input email.
    """
    by_id = {d.id: d for d in decisions if d.id}

    labeled = []
    for email in emails:
        decision = by_id.get(email.id)
        if decision is None:
            decision = Decision.default_for(email.id)
        else:
            decision = decision.model_copy(update={"id": email.id})
        labeled.append(
            LabeledEmail(**email.model_dump(), decision=decision)
        )
    return labeled


class EmailClassifier:
    """
    Groq chat-completion client for triage decisions.

    The Groq client is created lazily so a missing API key surfaces as
    :class:`AuthError` at call time rather than at construction.

    Attributes:
        config: Process configuration.
        client: Groq API client (None until first use).
    """

    def __init__(self, config: AppConfig) -> None:
        """
        Initialize classifier.

        Args:
            config: Process configuration (retry policy).
        """
        self.config = config
        self.client: Optional[Groq] = None
        self._client_key: Optional[str] = None

    def _get_client(self, api_key: str) -> Groq:
        """Get or create the Groq client for ``api_key``.

        Args:
            api_key: Groq API key from the user settings.

        Returns:
            Groq: Client instance.
        """
        if self.client is None or self._client_key != api_key:
            self.client = Groq(api_key=api_key, max_retries=self.config.groq_max_retries)
            self._client_key = api_key
        return self.client

    def _load_system_prompt_template(self) -> str:
        """Load the system prompt template from disk.

        Returns:
            str: Prompt template text.
        """
        prompt_path = Path(__file__).resolve().parent / "prompts" / "triage_system_prompt.md"
        return prompt_path.read_text(encoding="utf-8")

    def _render_system_prompt_template(self, template: str, settings: TriageSettings) -> str:
        """Render placeholders with plain substitution.

        The template contains JSON examples, so ``str.format`` cannot be used.

        Args:
            template: Raw template text.
            settings: User settings.

        Returns:
            str: Rendered prompt.
        """
        replacements = {
            "{actions}": ", ".join(a.value for a in DecisionAction),
            "{categories}": ", ".join(settings.categories_list),
        }

        rendered = template
        for key, value in replacements.items():
            rendered = rendered.replace(key, value)
        return rendered

    def _build_system_prompt(self, settings: TriageSettings) -> str:
        """
        Build the system prompt.

        Falls back to an inline prompt if the template file cannot be read.

        Args:
            settings: User settings.

        Returns:
            str: System prompt.
        """
        try:
            template = self._load_system_prompt_template()
            return self._render_system_prompt_template(template, settings)
        except OSError as e:
            logger.warning(f"Failed to load system prompt file: {e}")
            return "\n".join(
                [
                    "You are an email triage assistant.",
                    "You will be given a JSON array of email metadata objects.",
                    "For each email decide an action: keep, trash, or review.",
                    "Rules:",
                    "- Prefer KEEP for receipts, invoices, banking, account/security alerts, 2FA, school/work, shipping updates, and anything that looks important.",
                    "- Prefer TRASH for obvious promos, spam, random repo noise, low-value newsletters, and stuff the user can safely ignore.",
                    "- Use REVIEW if uncertain.",
                    "Return ONLY valid JSON with this shape:",
                    '{ "decisions": [ {"id": "...", "action": "keep|trash|review", '
                    f'"category": "{"|".join(settings.categories_list)}", '
                    '"summary": "short", "reason": "short" } ] }',
                ]
            )

    def _build_user_prompt(self, emails: list[MessageMeta]) -> str:
        """
        Build the user message: the batch as JSON.

        Args:
            emails: Batch to classify.

        Returns:
            str: JSON document ``{"emails": [...]}``.
        """
        return json.dumps({"emails": [e.prompt_payload() for e in emails]}, ensure_ascii=False)

    def _strip_code_fences(self, text: str) -> str:
        """Remove Markdown code fences from a model response."""
        return re.sub(r"```(?:json)?\s*|```", "", text, flags=re.IGNORECASE)

    def _extract_first_json_object(self, response_text: str) -> Optional[Any]:
        """Decode the first JSON object found in a model response.

        ``response_format`` asks for bare JSON, but some models still wrap
        it in prose or code fences.

        Args:
            response_text: Raw model response text.

        Returns:
            Optional[Any]: Decoded object, or None if nothing decodes.
        """
        if not response_text:
            return None

        cleaned = self._strip_code_fences(response_text)

        decoder = json.JSONDecoder()
        start = cleaned.find("{")
        while start != -1:
            try:
                obj, _ = decoder.raw_decode(cleaned[start:])
                return obj
            except json.JSONDecodeError:
                start = cleaned.find("{", start + 1)
        return None

    def _decode_decisions(self, response_text: str) -> list[Decision]:
        """
        Decode the ``decisions`` list from a model response.

        Individual malformed entries are skipped.

        Args:
            response_text: First choice message content.

        Returns:
            list[Decision]: Decoded decisions.

        Raises:
            DecodeError: If no JSON object or no ``decisions`` list is present.
        """
        try:
            parsed = json.loads(response_text)
        except json.JSONDecodeError:
            parsed = self._extract_first_json_object(response_text)

        if not isinstance(parsed, dict):
            raise DecodeError("classification response is not a JSON object")

        raw_decisions = parsed.get("decisions")
        if not isinstance(raw_decisions, list):
            raise DecodeError("classification response has no 'decisions' list")

        decisions = []
        for item in raw_decisions:
            if not isinstance(item, dict) or not item.get("id"):
                logger.debug(f"Skipping decision without id: {item!r}")
                continue
            try:
                decisions.append(Decision.model_validate({**item, "id": str(item["id"])}))
            except ValidationError as e:
                logger.warning(f"Skipping malformed decision for id={item.get('id')}: {e}")
        return decisions

    def classify_batch(
        self, settings: TriageSettings, emails: list[MessageMeta]
    ) -> list[LabeledEmail]:
        """
        Classify one batch of emails.

        Args:
            settings: User settings (API key, model).
            emails: Batch of metadata, at most ``settings.batch_size`` long.

        Returns:
            list[LabeledEmail]: Same length and order as ``emails``.

        Raises:
            AuthError: If no Groq API key is configured.
            RemoteError: If the Groq API call fails.
        """
        if not settings.groq_api_key:
            raise AuthError("Missing Groq API key.")
        if not emails:
            return []

        client = self._get_client(settings.groq_api_key)

        try:
            response = client.chat.completions.create(
                model=settings.groq_model,
                temperature=0,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": self._build_system_prompt(settings)},
                    {"role": "user", "content": self._build_user_prompt(emails)},
                ],
            )
        except APIStatusError as e:
            body = e.response.text if e.response is not None else str(e)
            logger.error(f"Groq API error: {e.status_code} - {body}")
            raise RemoteError(e.status_code, body, service="Groq") from e
        except APIConnectionError as e:
            logger.error(f"Groq API request failed: {e}")
            raise RemoteError(None, str(e), service="Groq") from e

        content = ""
        if response.choices:
            content = (response.choices[0].message.content or "").strip()
        logger.debug(f"LLM response: {content}")

        try:
            decisions = self._decode_decisions(content or "{}")
        except DecodeError as e:
            logger.warning(
                "Classification response unusable; defaulting batch to review (size=%s, error=%s)",
                len(emails),
                e,
            )
            decisions = []

        labeled = merge_decisions(emails, decisions)
        missing = sum(1 for e in labeled if e.decision == Decision.default_for(e.id))
        logger.info(
            f"Classified batch of {len(emails)} emails ({missing} without a decision)"
        )
        return labeled
