"""
Message translation for rdagent-reregister log output.

Operator-facing log text is wrapped in ``_()`` so that fleets running a
non-English locale can ship a ``messages.mo`` catalog under ``locales/``.
Without a catalog the messages pass through unchanged.
"""

import gettext
import os
from typing import Dict, Optional

DEFAULT_LANGUAGE = "en"

LOCALE_DIR = os.path.join(os.path.dirname(__file__), "locales")

_state = {"language": DEFAULT_LANGUAGE}
_catalogs: Dict[str, gettext.NullTranslations] = {}


def set_language(language: Optional[str]) -> None:
    """Select the catalog used by subsequent ``_()`` calls."""
    _state["language"] = language or DEFAULT_LANGUAGE


def get_language() -> str:
    """Return the active language code."""
    return _state["language"]


def _catalog(language: str) -> gettext.NullTranslations:
    if language not in _catalogs:
        try:
            _catalogs[language] = gettext.translation(
                "messages", LOCALE_DIR, [language]
            )
        except FileNotFoundError:
            _catalogs[language] = gettext.NullTranslations()
    return _catalogs[language]


def _(message: str) -> str:
    """Translate a message into the active language."""
    return _catalog(_state["language"]).gettext(message)
