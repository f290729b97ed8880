"""Language-specific agent defaults."""
import logging
from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "zh-CN"


class LanguageDefaults(BaseModel):
    """Greeting, failure text, prompt and voices for one language tag."""

    model_config = ConfigDict(frozen=True)

    language: str
    greeting: str
    failure: str
    system_prompt: str
    voices: Dict[str, str] = {}

    def voice_for(self, vendor: str) -> Optional[str]:
        """Voice id to use with a TTS vendor."""
        return self.voices.get(str(vendor))


class LanguageCatalog:
    """Language defaults loaded from a YAML data file."""

    def __init__(self, data_file: Optional[str] = None):
        """Initialize with optional data file path."""
        if data_file is None:
            data_file = Path(__file__).parent / "data" / "languages.yaml"
        self.data_file = Path(data_file)
        self._languages: Optional[Dict[str, LanguageDefaults]] = None
        self._default_language = DEFAULT_LANGUAGE

    def _load(self) -> Dict[str, LanguageDefaults]:
        """Load language defaults from YAML."""
        if self._languages is None:
            with open(self.data_file, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            self._default_language = data.get("default", DEFAULT_LANGUAGE)
            self._languages = {
                tag: LanguageDefaults(language=tag, **values)
                for tag, values in (data.get("languages") or {}).items()
            }
            if self._default_language not in self._languages:
                raise ValueError(
                    f"Default language {self._default_language!r} missing from {self.data_file}"
                )
        return self._languages

    @property
    def default_language(self) -> str:
        self._load()
        return self._default_language

    def lookup(self, language: Optional[str]) -> LanguageDefaults:
        """Exact match on the language tag, falling back to the default locale."""
        languages = self._load()
        if language and language in languages:
            return languages[language]
        if language:
            logger.info(
                f"[LANGUAGE] No defaults for '{language}', using {self._default_language}"
            )
        return languages[self._default_language]


_catalog: Optional[LanguageCatalog] = None


def get_language_catalog() -> LanguageCatalog:
    """Shared catalog backed by the packaged data file."""
    global _catalog
    if _catalog is None:
        _catalog = LanguageCatalog()
    return _catalog
