from pathlib import Path
from typing import Dict, List, Optional


class PromptManager:
    def __init__(self, search_paths: Optional[List[Path]] = None):
        # Packaged prompts first, then a working-directory override
        self.search_paths = search_paths or [
            Path(__file__).parent.parent / "prompts",   # civic_connect/prompts
            Path.cwd() / "prompts",                     # project_root/prompts (optional)
        ]
        self._cache: Dict[str, str] = {}

    def load_prompt(self, name: str) -> str:
        if name in self._cache:
            return self._cache[name]

        filename = f"{name}.txt"

        for base in self.search_paths:
            file_path = base / filename
            if file_path.exists():
                text = file_path.read_text(encoding="utf-8").strip()
                self._cache[name] = text
                return text

        # If not found in ANY path → clear useful error
        raise FileNotFoundError(
            f"Prompt file '{filename}' not found in paths: "
            f"{[str(p) for p in self.search_paths]}"
        )
