import logging
import os
import re
from dataclasses import dataclass
from typing import Dict, Optional

logger = logging.getLogger(__name__)

FILENAME_RE = re.compile(r"^([a-z]{2})-([a-z0-9][a-z0-9-]*)\.html$")
_TITLE_RE = re.compile(r"<title[^>]*>([^<]+)</title>", re.IGNORECASE)
_H1_RE = re.compile(r"<h1[^>]*>([^<]+)</h1>", re.IGNORECASE)

# Localized slug -> canonical page type, per language
SLUG_PAGE_TYPES: Dict[str, Dict[str, str]] = {
    "se": {
        "integritetspolicy": "privacy",
        "anvandarvillkor": "terms",
        "aterbetalningspolicy": "refund",
        "leveranspolicy": "delivery",
    },
    "de": {
        "datenschutzerklaerung": "privacy",
        "nutzungsbedingungen": "terms",
        "rueckerstattungsrichtlinie": "refund",
        "versandrichtlinie": "delivery",
    },
    "fi": {
        "tietosuojaseloste": "privacy",
        "kayttoehdot": "terms",
        "palautus-hyvityskaytanto": "refund",
        "toimitusehdot": "delivery",
    },
}

DEFAULT_TITLES: Dict[str, Dict[str, str]] = {
    "se": {
        "privacy": "Integritetspolicy",
        "terms": "Användarvillkor",
        "refund": "Återbetalningspolicy",
        "delivery": "Leveranspolicy",
    },
    "de": {
        "privacy": "Datenschutzerklärung",
        "terms": "Nutzungsbedingungen",
        "refund": "Rückerstattungsrichtlinie",
        "delivery": "Versandrichtlinie",
    },
    "fi": {
        "privacy": "Tietosuojaseloste",
        "terms": "Käyttöehdot",
        "refund": "Palautus- ja hyvityskäytäntö",
        "delivery": "Toimitusehdot",
    },
}


@dataclass(frozen=True)
class LegalPage:
    slug: str
    title: str
    content: str
    filename: str


def page_type_for_slug(slug: str, language: str) -> Optional[str]:
    return SLUG_PAGE_TYPES.get(language, {}).get(slug)


def extract_title(content: Optional[str]) -> Optional[str]:
    """First ``<title>``, else first ``<h1>``, else None."""
    if not content:
        return None
    for pattern in (_TITLE_RE, _H1_RE):
        match = pattern.search(content)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return None


def default_title(page_type: str, language: str) -> str:
    return DEFAULT_TITLES.get(language, {}).get(page_type) or f"{page_type} ({language})"


class LegalPageLoader:
    """Index of localized legal pages read from ``<lang>-<slug>.html`` files.

    The index is built once (``load_all``) and only read afterwards.
    """

    def __init__(self, directory: str):
        self.directory = directory
        self._pages: Dict[str, Dict[str, LegalPage]] = {}

    @staticmethod
    def parse(filename: Optional[str]) -> Optional[dict]:
        """Strict filename parse. Unknown slugs are rejected here, unlike ``load_all``."""
        if not filename:
            return None
        match = FILENAME_RE.match(filename)
        if not match:
            return None
        language, slug = match.groups()
        page_type = page_type_for_slug(slug, language)
        if page_type is None:
            return None
        return {"language": language, "page_type": page_type}

    def load_all(self) -> Dict[str, Dict[str, LegalPage]]:
        if not os.path.isdir(self.directory):
            logger.warning(f"Legal pages directory not found: {self.directory}")
            self._pages = {}
            return self._pages

        pages: Dict[str, Dict[str, LegalPage]] = {}
        for filename in sorted(os.listdir(self.directory)):
            match = FILENAME_RE.match(filename)
            if not match:
                if filename.endswith(".html"):
                    logger.warning(f"Skipping legal page with invalid name: {filename}")
                continue

            language, slug = match.groups()
            page_type = page_type_for_slug(slug, language)
            if page_type is None:
                # Keep the content under its own slug until the dictionary catches up
                logger.warning(f"Unknown legal slug '{slug}' for language '{language}', keeping it as its own page type")
                page_type = slug

            try:
                with open(os.path.join(self.directory, filename), encoding="utf-8") as fh:
                    content = fh.read()
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Could not read legal page {filename}: {e}")
                continue

            title = extract_title(content) or default_title(page_type, language)
            pages.setdefault(language, {})[page_type] = LegalPage(
                slug=slug, title=title, content=content, filename=filename
            )

        self._pages = pages
        logger.info(f"Legal pages loaded: {len(pages)} languages from {self.directory}")
        return pages

    def get_legal_page(self, language: str, page_type: str) -> Optional[LegalPage]:
        return self._pages.get(language, {}).get(page_type)

    def get_localized_slug(self, page_type: str, language: str) -> Optional[str]:
        page = self.get_legal_page(language, page_type)
        return page.slug if page else None

    def get_available_languages(self) -> list[str]:
        return list(self._pages)

    @staticmethod
    def generate_slug(language: str, page_type: str) -> str:
        for slug, mapped in SLUG_PAGE_TYPES.get(language, {}).items():
            if mapped == page_type:
                return slug
        return page_type
