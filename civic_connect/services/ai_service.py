import google.generativeai as genai
import asyncio
import logging
from typing import Callable, List, Optional

from civic_connect.core.exceptions import SummaryGenerationError
from civic_connect.services.prompt_manager import PromptManager

logger = logging.getLogger(__name__)

FALLBACK_MODELS = [
    "gemini-2.5-flash",
    "gemini-2.0-flash",
    "gemini-1.5-flash-8b",
]


class GeminiSummarizer:
    """
    Generates short factual issue summaries for officials with Google Gemini.

    Image storage paths are turned into public URLs and listed in the prompt;
    the model reads them as context rather than receiving the bytes.
    """

    def __init__(
        self,
        api_key: Optional[str],
        model_name: str = "gemini-2.5-flash",
        url_resolver: Optional[Callable[[str], str]] = None,
        prompts: Optional[PromptManager] = None,
    ):
        self.model_name = model_name
        self._url_resolver = url_resolver
        self._prompts = prompts or PromptManager()
        self._model = None
        self._enabled = False

        if not api_key:
            logger.warning("GEMINI_API_KEY is not set; disabling AI summaries.")
            return
        try:
            genai.configure(api_key=api_key)
            self._enabled = True
        except Exception as e:
            logger.warning(f"Failed to configure Gemini API: {e}. Disabling AI summaries.")

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _get_model(self):
        if self._model is not None:
            return self._model
        try:
            self._model = genai.GenerativeModel(self.model_name)
            return self._model
        except Exception as e:
            logger.warning(f"{self.model_name} not available; attempting fallbacks: {e}")
            for alt in FALLBACK_MODELS:
                if alt == self.model_name:
                    continue
                try:
                    logger.info(f"Trying fallback model: {alt}")
                    self._model = genai.GenerativeModel(alt)
                    return self._model
                except Exception as e2:
                    logger.warning(f"Fallback model {alt} failed: {e2}")
            raise SummaryGenerationError(f"No Gemini model available: {e}")

    def image_urls(self, image_paths: Optional[List[str]]) -> List[str]:
        """Best-effort conversion of storage paths; paths that fail to resolve are skipped."""
        urls: List[str] = []
        if not image_paths or self._url_resolver is None:
            return urls
        for path in image_paths:
            try:
                url = self._url_resolver(path)
            except Exception as e:
                logger.warning(f"Failed to build public URL for image {path}: {e}")
                continue
            if url:
                urls.append(url)
        return urls

    def build_prompt(self, title: str, address: Optional[str], image_urls: List[str]) -> str:
        parts = [self._prompts.load_prompt("issue_summary"), f"Title: {title}"]
        if address:
            parts.append(f"Location: {address}")

        if image_urls:
            parts.append("Images (public URLs):")
            for index, url in enumerate(image_urls, start=1):
                parts.append(f"Image {index}: {url}")
            parts.append(self._prompts.load_prompt("issue_summary_images"))

        return "\n".join(parts)

    async def generate(
        self,
        title: str,
        address: Optional[str] = None,
        image_paths: Optional[List[str]] = None,
    ) -> str:
        if not self._enabled:
            raise SummaryGenerationError("Gemini is not configured")

        prompt = self.build_prompt(title, address, self.image_urls(image_paths))
        model = self._get_model()

        logger.debug(f"🤖 Requesting summary for '{title[:40]}' ({len(prompt)} chars)")
        try:
            response = await asyncio.to_thread(model.generate_content, prompt)
            text = response.text
        except Exception as e:
            raise SummaryGenerationError(str(e)) from e

        return (text or "").strip()
