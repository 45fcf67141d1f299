"""
In-memory prompt catalogue backed by the prompt library object.
"""

from __future__ import annotations

import asyncio
import uuid

from datetime import UTC, datetime
from typing import Protocol

from api.middleware.exception_handlers import PromptNotFoundError, ValidationException
from core.constants import USER_PROMPT_ID_PREFIX
from models.analysis_models import PromptDefinition, PromptLibrary, PromptSummary
from utils.logger import logger


class PromptLibraryStorage(Protocol):
    async def get_prompt_library(self) -> PromptLibrary: ...

    async def save_prompt_library(self, library: PromptLibrary) -> None: ...


class PromptStore:
    """Prompt catalogue loaded once at startup; additions are written back."""

    def __init__(self, storage: PromptLibraryStorage):
        self._storage = storage
        self._prompts: list[PromptDefinition] = []
        self._lock = asyncio.Lock()

    @property
    def count(self) -> int:
        return len(self._prompts)

    async def load(self) -> None:
        """Load the library from storage. Failure propagates so startup aborts."""
        library = await self._storage.get_prompt_library()
        self._prompts = list(library.prompts)
        if self._prompts:
            logger.info(f"Loaded {len(self._prompts)} prompts: {', '.join(p.id for p in self._prompts)}")
        else:
            logger.warning("Prompt library is empty")

    def list(self, search: str | None = None) -> list[PromptSummary]:
        """List prompts, optionally filtered by a case-insensitive search term.

        The term is matched against title, description and category.
        """
        prompts = self._prompts
        if search:
            query = search.lower()
            prompts = [
                p
                for p in prompts
                if query in p.title.lower() or query in p.description.lower() or query in p.category.lower()
            ]
        return [PromptSummary.from_definition(p) for p in prompts]

    def get(self, prompt_id: str) -> PromptDefinition:
        """Get one prompt.

        Raises:
            PromptNotFoundError: If no prompt has ``prompt_id``.
        """
        for prompt in self._prompts:
            if prompt.id == prompt_id:
                return prompt
        raise PromptNotFoundError(prompt_id)

    async def add(self, title: str, prompt_text: str, category: str) -> PromptDefinition:
        """Append a user-contributed prompt and persist the library.

        The in-memory catalogue only changes once the save succeeded.

        Raises:
            ValidationException: If title or prompt text is blank.
            StorageError: If the library cannot be saved.
        """
        if not title.strip() or not prompt_text.strip():
            raise ValidationException("Prompt title and prompt text must not be empty")

        prompt = PromptDefinition(
            id=f"{USER_PROMPT_ID_PREFIX}{uuid.uuid4().hex[:8]}",
            title=title,
            description=f"User-contributed prompt: {title}",
            category=category,
            created_by="user",
            created_at=datetime.now(UTC).isoformat(),
            prompt_text=prompt_text,
        )

        async with self._lock:
            updated = [*self._prompts, prompt]
            await self._storage.save_prompt_library(PromptLibrary(prompts=updated))
            self._prompts = updated

        logger.info(f"Added prompt {prompt.id} ({title})")
        return prompt


__all__ = ["PromptLibraryStorage", "PromptStore"]
