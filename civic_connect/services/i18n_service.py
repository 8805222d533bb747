import json
import logging
from pathlib import Path
from typing import Dict, Iterable, Optional

logger = logging.getLogger(__name__)

DEFAULT_I18N_DIR = Path(__file__).parent.parent / "data" / "i18n"


def load_json_data(file_path: Path) -> dict:
    """Load JSON data from a file."""
    try:
        with open(file_path, "r", encoding="utf-8") as file:
            data = json.load(file)
        logger.debug(f"Loaded JSON data from {file_path}")
        return data
    except FileNotFoundError:
        logger.error(f"JSON file {file_path} not found")
        return {}
    except json.JSONDecodeError as e:
        logger.error(f"Failed to decode JSON from {file_path}: {str(e)}")
        return {}


class Translator:
    """
    Message tables keyed by language code. Lookups fall back to the default
    language and then to the key itself, so a missing entry never fails a request.
    """

    def __init__(self, tables: Dict[str, Dict[str, str]], default_language: str = "en"):
        if default_language not in tables:
            raise ValueError(f"default language {default_language!r} has no message table")
        self.tables = tables
        self.default_language = default_language

    @classmethod
    def from_directory(cls, directory: Path = DEFAULT_I18N_DIR, default_language: str = "en") -> "Translator":
        tables = {}
        for path in sorted(directory.glob("*.json")):
            tables[path.stem] = load_json_data(path)
        logger.info(f"🌐 Loaded translations for: {', '.join(tables) or 'none'}")
        return cls(tables, default_language)

    @property
    def languages(self) -> Iterable[str]:
        return self.tables.keys()

    def supports(self, language: Optional[str]) -> bool:
        return bool(language) and language in self.tables

    def negotiate(self, preferred: Optional[str] = None, accept_language: Optional[str] = None) -> str:
        """Pick the profile language, then the first supported Accept-Language entry, then the default."""
        if self.supports(preferred):
            return preferred
        if accept_language:
            for part in accept_language.split(","):
                code = part.split(";")[0].strip().lower().split("-")[0]
                if self.supports(code):
                    return code
        return self.default_language

    def table(self, language: Optional[str]) -> Dict[str, str]:
        merged = dict(self.tables[self.default_language])
        if self.supports(language):
            merged.update(self.tables[language])
        return merged

    def t(self, key: str, language: Optional[str] = None) -> str:
        if self.supports(language) and key in self.tables[language]:
            return self.tables[language][key]
        return self.tables[self.default_language].get(key, key)
