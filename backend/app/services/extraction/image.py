"""
Image analysis for Image blocks.

The vision model gets the image by URL and is asked for a JSON description
(visual summary, style, colors, elements, mood, category, tags). The reply is
validated with ImageAnalysis. Any failure produces a fallback analysis built
from the block's own title and description, so an image block is never lost.
"""

import json
import logging
import re
from typing import List, Optional

from anthropic import AsyncAnthropic, APIError
from pydantic import BaseModel, Field, ValidationError

from app.core.config import settings

logger = logging.getLogger(__name__)


VISION_PROMPT = """Analyze this image for a personal research library. Respond with JSON only:
{
  "description": "2-3 sentences describing what the image shows",
  "style": "artistic or photographic style",
  "colors": ["dominant colors"],
  "elements": ["notable objects, people or text"],
  "mood": "overall mood",
  "category": "one of: photography, illustration, design, art, diagram, screenshot, typography, architecture, other",
  "tags": ["5-10 search keywords"]
}"""


class VisionError(Exception):
    """Raised when the vision model cannot describe an image."""
    pass


class ImageAnalysis(BaseModel):
    description: str
    style: str = "unknown"
    colors: List[str] = Field(default_factory=list)
    elements: List[str] = Field(default_factory=list)
    mood: str = "neutral"
    category: str = "image"
    tags: List[str] = Field(default_factory=list)

    @classmethod
    def fallback(cls, title: Optional[str], description: Optional[str]) -> "ImageAnalysis":
        return cls(
            description=title or description or "Image content could not be analyzed",
            style="unknown",
            mood="neutral",
            category="image",
            tags=[title.lower()] if title else [],
        )


class VisionClient:
    """
    Anthropic Messages API wrapper for image descriptions.

    Example:
        >>> vision = VisionClient(api_key=settings.ANTHROPIC_API_KEY)
        >>> analysis = await vision.analyze("https://images.are.na/...jpg", title="Stairwell")
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        client: Optional[AsyncAnthropic] = None,
    ):
        self.model = model or settings.VISION_MODEL
        self.max_tokens = max_tokens or settings.VISION_MAX_TOKENS
        self.temperature = settings.VISION_TEMPERATURE

        if client is None:
            api_key = api_key or settings.ANTHROPIC_API_KEY
            if not api_key:
                raise ValueError("ANTHROPIC_API_KEY is required for image analysis")
            client = AsyncAnthropic(api_key=api_key)
        self.client = client

    async def analyze(
        self,
        image_url: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> ImageAnalysis:
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                messages=[{
                    "role": "user",
                    "content": [
                        {"type": "image", "source": {"type": "url", "url": image_url}},
                        {"type": "text", "text": self.build_prompt(title, description)},
                    ],
                }],
            )
        except APIError as e:
            raise VisionError(f"Vision request failed: {e}")

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        return self.parse_analysis(text)

    @staticmethod
    def build_prompt(title: Optional[str], description: Optional[str]) -> str:
        """The block's own title and description give the model context."""
        context = []
        if title:
            context.append(f'Title: "{title}"')
        if description:
            context.append(f'Description: "{description}"')
        if not context:
            return VISION_PROMPT
        return "\n".join(context) + "\n\n" + VISION_PROMPT

    @staticmethod
    def parse_analysis(text: str) -> ImageAnalysis:
        """Pull the first JSON object out of the reply and validate it."""
        match = re.search(r"\{.*\}", text or "", flags=re.DOTALL)
        if not match:
            raise VisionError("Vision reply contained no JSON object")
        try:
            return ImageAnalysis.model_validate(json.loads(match.group(0)))
        except (json.JSONDecodeError, ValidationError) as e:
            raise VisionError(f"Vision reply was not a valid analysis: {e}")


class ImageExtractor:
    """Turns an image block into a searchable text document."""

    def __init__(self, vision: Optional[VisionClient] = None):
        self.vision = vision

    async def extract(
        self,
        image_url: Optional[str],
        title: Optional[str],
        description: Optional[str],
    ) -> tuple[str, List[str]]:
        """
        Returns:
            (document text, reasons the vision step was skipped or failed)
        """
        raw_title = title
        title = title or "Untitled image"

        if not image_url:
            lines = [f"Title: {title}"]
            if description:
                lines.append(f"Description: {description}")
            return "\n".join(lines), ["no image URL"]

        errors: List[str] = []
        if self.vision is None:
            errors.append("vision: not configured")
            analysis = ImageAnalysis.fallback(title, description)
        else:
            try:
                analysis = await self.vision.analyze(image_url, title=raw_title, description=description)
            except VisionError as e:
                logger.warning(f"Image analysis failed for {image_url}: {e}")
                errors.append(f"vision: {e}")
                analysis = ImageAnalysis.fallback(title, description)

        return self.format_document(title, description, analysis), errors

    @staticmethod
    def format_document(title: str, description: Optional[str], analysis: ImageAnalysis) -> str:
        lines = [f"Title: {title}"]
        if description:
            lines.append(f"Description: {description}")
        lines.append(f"Visual Analysis: {analysis.description}")
        lines.append(f"Style: {analysis.style}")
        if analysis.colors:
            lines.append(f"Colors: {', '.join(analysis.colors)}")
        if analysis.elements:
            lines.append(f"Elements: {', '.join(analysis.elements)}")
        lines.append(f"Mood: {analysis.mood}")
        lines.append(f"Category: {analysis.category}")
        if analysis.tags:
            lines.append(f"Tags: {', '.join(analysis.tags)}")
        return "\n".join(lines)
