"""Internationalization for boot menu and status screens."""

import json
from pathlib import Path
from typing import Any, Optional

_current_lang = "en_US"
_translations: dict[str, dict[str, Any]] = {}
_i18n_dir = Path(__file__).parent


def load_language(lang: str) -> None:
    """Load a language file into the translation cache."""
    global _current_lang
    lang_file = _i18n_dir / f"{lang}.json"
    if lang_file.exists():
        with open(lang_file, "r", encoding="utf-8") as f:
            _translations[lang] = json.load(f)
        _current_lang = lang
    else:
        raise FileNotFoundError(f"Language file not found: {lang_file}")


def set_language(lang: str) -> None:
    """Switch the current language."""
    global _current_lang
    if lang not in _translations:
        load_language(lang)
    _current_lang = lang


def _lookup(lang: str, key: str) -> Any:
    data: Any = _translations.get(lang, {})
    for k in key.split("."):
        if isinstance(data, dict):
            data = data.get(k)
        else:
            return None
    return data


def t(key: str, **kwargs: Any) -> str:
    """Get a translated string by dot-separated key.

    Falls back to ``en_US`` and then to the key itself.
    Example: t("menu.press_for_menu", seconds=3) -> "Press Enter for the boot menu (3s)..."
    """
    data = _lookup(_current_lang, key)
    if data is None and _current_lang != "en_US":
        data = _lookup("en_US", key)
    if data is None:
        return key
    result = str(data)
    for k, v in kwargs.items():
        result = result.replace(f"{{{k}}}", str(v))
    return result


def get_current_language() -> str:
    """Return the current language code."""
    return _current_lang


def get_available_languages() -> list[str]:
    """Return list of available language codes."""
    return [f.stem for f in _i18n_dir.glob("*.json")]


def init(lang: Optional[str] = None) -> None:
    """Initialize i18n: load all available languages and set the active one."""
    for f in _i18n_dir.glob("*.json"):
        load_language(f.stem)
    set_language(lang if lang in _translations else "en_US")
