"""
Screenshot Extraction using Gemini Vision

DESIGN DECISION: We use Gemini because:
1. Vision-capable models read MMG confirmation screens well
2. Structured output via a strict JSON prompt
3. Same provider and SDK as the rest of the Stashway backend

CRITICAL BOUNDARIES:
- The model TRANSCRIBES, it does not DECIDE. It never sees the expected
  amount or reference code and has no say in whether a payment is valid.
- Output is untrusted. It is validated into ExtractionFields right here,
  and anything that looks wrong becomes None.
- The raw response is never thrown away. It travels with the parsed
  fields, and with the exception when parsing fails.

There is no automatic retry. A failed extraction is recorded on the
request and the uploader submits the screenshot again.
"""

import asyncio
import json
from typing import Any, Optional

import google.generativeai as genai
import structlog
from pydantic import BaseModel, Field

from stashway.config import get_settings
from stashway.config.settings import GeminiSettings
from stashway.models.payment import ExtractionFields, ExtractionKind


logger = structlog.get_logger(__name__)


_FIELD_SPEC = """Return ONLY a JSON object with these exact keys:
{{
  "extracted_amount": number or null,
  "extracted_transaction_id": string or null,
  "extracted_reference_code": string or null (exactly 24 characters if found),
  "extracted_datetime": string (ISO 8601) or null,
  "extracted_sender": string or null,
  "extracted_receiver": string or null
}}

If any field cannot be found, use null. Be precise with the reference_code - it should be exactly 24 uppercase alphanumeric characters."""

PAYER_PROMPT = """Analyze this MMG (Mobile Money Guyana) payment success screenshot.

Extract the following information from the image:
- transaction_id: The transaction ID or reference number
- amount: The payment amount (as a number, in GYD if mentioned)
- datetime: The transaction date and time (in ISO 8601 format if possible)
- reference_code: A 24-character alphanumeric code that appears in the message (look for "REF:" followed by code)
- sender: The sender's name or phone number
- receiver: The receiver's name or phone number (should be {payee} or Stashway)

""" + _FIELD_SPEC

ADMIN_PROMPT = """Analyze this MMG (Mobile Money Guyana) funds received notification screenshot.

Extract the following information from the image:
- transaction_id: The transaction ID or reference number
- amount: The received amount (as a number, in GYD if mentioned)
- datetime: The transaction date and time (in ISO 8601 format if possible)
- reference_code: A 24-character alphanumeric code that appears in the message (look for "REF:" followed by code)
- sender: The sender's name or phone number
- receiver: The receiver's name or phone number (should be {payee})

""" + _FIELD_SPEC


class ExtractionError(Exception):
    """Base exception for screenshot extraction errors."""

    def __init__(self, message: str, raw_response: Optional[str] = None):
        super().__init__(message)
        self.raw_response = raw_response


class ExtractionFormatError(ExtractionError):
    """The model answered, but not with a JSON object."""
    pass


class ExtractionServiceError(ExtractionError):
    """The model could not be reached, errored, or timed out."""
    pass


class ExtractorResult(BaseModel):
    """Validated fields plus the verbatim model output."""

    fields: ExtractionFields
    raw_response: str = Field(default="")


def find_json_object(text: str) -> Optional[dict[str, Any]]:
    """
    Return the first balanced {...} substring of text that parses as JSON.

    Braces inside JSON strings are ignored while balancing, so values
    like "REF:{...}" don't end the object early.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        resume = start + 1
        for pos in range(start, len(text)):
            char = text[pos]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    try:
                        data = json.loads(text[start:pos + 1])
                    except RecursionError:
                        # Skip the candidates nested inside this one too
                        resume = pos + 1
                        break
                    except ValueError:
                        # Malformed JSON or an integer over the digit limit
                        break
                    if isinstance(data, dict):
                        return data
                    break
        start = text.find("{", resume)
    return None


class GeminiScreenshotExtractor:
    """
    Reads the six payment fields off an MMG screenshot.

    RESPONSIBILITIES:
    - Pick the prompt for the screenshot's side (payer or admin)
    - Bound the model call by a timeout
    - Parse and validate the answer

    BOUNDARIES:
    - NEVER persists anything
    - NEVER retries
    """

    def __init__(
        self,
        settings: Optional[GeminiSettings] = None,
        payee_identifier: Optional[str] = None,
        model: Any = None,
    ):
        self._settings = settings or get_settings().gemini
        self._payee = payee_identifier or get_settings().payments.payee_identifier
        self._model = model if model is not None else self._configure_genai()

    def _configure_genai(self):
        """Configure Google Generative AI."""
        genai.configure(api_key=self._settings.api_key)
        return genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config={
                "temperature": self._settings.temperature,
                "max_output_tokens": self._settings.max_tokens,
            },
        )

    def prompt_for(self, kind: ExtractionKind) -> str:
        template = PAYER_PROMPT if kind == ExtractionKind.USER_SUCCESS else ADMIN_PROMPT
        return template.format(payee=self._payee)

    async def extract(
        self,
        image_bytes: bytes,
        kind: ExtractionKind,
        mime_type: str = "image/png",
    ) -> ExtractorResult:
        """
        Run the vision model on one screenshot.

        Returns:
            ExtractorResult with validated fields; individual fields may be None

        Raises:
            ExtractionServiceError: Model unreachable, failed, or timed out
            ExtractionFormatError: No JSON object in the model's answer
        """
        prompt = self.prompt_for(kind)
        image_part = {"mime_type": mime_type, "data": image_bytes}

        try:
            response = await asyncio.wait_for(
                self._model.generate_content_async([prompt, image_part]),
                timeout=self._settings.request_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise ExtractionServiceError(
                f"Extraction timed out after {self._settings.request_timeout_seconds:g}s"
            )
        except Exception as e:
            raise ExtractionServiceError(f"Extraction service error: {e}")

        try:
            raw = response.text or ""
        except Exception as e:
            # .text raises when the candidate was blocked or empty
            raise ExtractionServiceError(f"Extraction returned no text: {e}")

        data = find_json_object(raw)
        if data is None:
            logger.warning(
                "extraction_unparseable",
                kind=kind.value,
                raw_preview=raw[:200],
            )
            raise ExtractionFormatError(
                "Extraction response did not contain a JSON object",
                raw_response=raw,
            )

        try:
            fields = ExtractionFields.model_validate(data)
        except (ValueError, RecursionError) as e:
            logger.warning("extraction_invalid_fields", kind=kind.value, error=str(e)[:200])
            raise ExtractionFormatError(
                f"Extraction response had unusable fields: {str(e)[:200]}",
                raw_response=raw,
            )

        logger.info(
            "extraction_parsed",
            kind=kind.value,
            missing=[name for name, value in fields.model_dump().items() if value is None],
        )
        return ExtractorResult(fields=fields, raw_response=raw)
