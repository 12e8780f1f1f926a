"""Gemini vision client for reading analog gas meter images."""

import json
import logging
import re
import time
from datetime import datetime, timezone
from typing import Any, BinaryIO, Optional

from google import genai
from google.genai import types

from mqvision.core.image import decode_image, encode_jpeg, fit_within
from mqvision.core.reading import Reading

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash-lite"

DEFAULT_SYSTEM_PROMPT = (
    "You read analog gas meters from photos. Answer only with JSON of the form "
    '{"read": "<meter value>", "date": "<date shown or empty>"}. '
    'Mark digits you cannot read with "?".'
)

DEFAULT_PROMPT = "Process the image and extract the reading and date."

FIX_AMBIGUOUS_PROMPT = """The value "{ambiguous}" represents the output of a analog-meter-reading analysis performed on an image.
Uncertain digits within the reading are denoted by the "?" character.

Using the previously recorded meter value {previous:f} as a reference,
infer and replace the "?" characters to estimate the most probable complete reading.

Instructions:
- Return a string with the exact same length as the input value.
- Output only the predicted value, without any explanations or additional text.
"""

_AMBIGUOUS_CHARS = set(".?0123456789")
_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


class ExtractionError(RuntimeError):
    """Reading a gauge image failed."""


class GeminiGaugeReader:
    """Extract gauge readings from images with a Gemini model.

    Args:
        api_key: Gemini API key.
        model: Model name. A "googleai/" prefix is accepted and stripped.
        system_prompt: System instruction for image reading.
        prompt: User prompt sent along with the image.
        max_dimension: Longest image side sent to the model (0 = original).
        jpeg_quality: JPEG quality of the image sent to the model.
        client: Preconfigured genai client (for testing).

    Example:
        >>> reader = GeminiGaugeReader(api_key="...", model="gemini-2.5-flash-lite")
        >>> with open("gauge.jpg", "rb") as f:
        ...     reading = reader.read_gauge(f)
        >>> reading.read
        '1234.567'
    """

    def __init__(
        self,
        api_key: str = "",
        model: str = DEFAULT_MODEL,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        prompt: str = DEFAULT_PROMPT,
        max_dimension: int = 1600,
        jpeg_quality: int = 90,
        client: Optional[Any] = None,
    ):
        self._model_name = model.removeprefix("googleai/")
        self._prompt = prompt
        self._max_dimension = max_dimension
        self._jpeg_quality = jpeg_quality

        self._client = client or genai.Client(api_key=api_key)
        self._vision_config = types.GenerateContentConfig(
            system_instruction=system_prompt,
            temperature=0.1,
            top_k=10,
            response_mime_type="application/json",
        )

    @property
    def model_name(self) -> str:
        return self._model_name

    def read_gauge(self, image: BinaryIO) -> Reading:
        """Read the meter value from an image stream.

        Args:
            image: Readable binary stream with an encoded image.

        Returns:
            Reading with read_at and it_takes filled in.

        Raises:
            ExtractionError: If the image is not decodable or the model
                response is unusable.
        """
        start = time.monotonic()

        data = image.read()
        frame = decode_image(data)
        if frame is None:
            raise ExtractionError(f"Not a decodable image ({len(data)} bytes)")

        frame = fit_within(frame, self._max_dimension)
        jpeg = encode_jpeg(frame, self._jpeg_quality)
        logger.debug(
            f"Sending {frame.shape[1]}x{frame.shape[0]} image "
            f"({len(jpeg)} bytes) to {self._model_name}"
        )

        try:
            response = self._client.models.generate_content(
                model=self._model_name,
                contents=[
                    types.Part.from_bytes(data=jpeg, mime_type="image/jpeg"),
                    self._prompt,
                ],
                config=self._vision_config,
            )
            text = response.text or ""
        except Exception as e:
            raise ExtractionError(f"Failed to analyze: {e}") from e

        reading = parse_reading(text)
        reading.it_takes = f"{time.monotonic() - start:.3f}s"
        reading.read_at = datetime.now(timezone.utc)
        logger.info(f"Read gauge: {reading.read} ({reading.date}) in {reading.it_takes}")
        return reading

    def parse_ambiguous_digits(self, previous_value: float, ambiguous: str) -> str:
        """Fill in "?" digits using the previous value as a reference.

        Args:
            previous_value: Last known meter value.
            ambiguous: Reading with "?" for uncertain digits.

        Returns:
            The model's most probable complete reading.

        Raises:
            ValueError: If ``ambiguous`` has characters other than digits,
                "." and "?".
            ExtractionError: If the model call fails.
        """
        if not set(ambiguous) <= _AMBIGUOUS_CHARS:
            raise ValueError(f"Ambiguous value string {ambiguous!r} is not valid")

        prompt = FIX_AMBIGUOUS_PROMPT.format(ambiguous=ambiguous, previous=previous_value)
        try:
            response = self._client.models.generate_content(
                model=self._model_name,
                contents=prompt,
            )
            return (response.text or "").strip()
        except Exception as e:
            raise ExtractionError(f"Failed to generate: {e}") from e


def parse_reading(text: str) -> Reading:
    """Parse the model's JSON answer into a Reading.

    Raises:
        ExtractionError: If the answer is not a JSON object with "read".
    """
    cleaned = _CODE_FENCE.sub("", text.strip())
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ExtractionError(f"Model answer is not JSON: {text[:200]!r}") from e

    if isinstance(data, list) and data:
        data = data[0]
    if not isinstance(data, dict) or "read" not in data:
        raise ExtractionError(f"Model answer has no reading: {text[:200]!r}")

    return Reading(read=str(data["read"]).strip(), date=str(data.get("date") or ""))
