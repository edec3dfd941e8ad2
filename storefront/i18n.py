"""Locale negotiation and translated text."""
from typing import Any, Dict, Mapping, Optional

from fastapi import Header

from storefront.config import DEFAULT_LOCALE, SUPPORTED_LOCALES
from storefront.errors import ValidationError

Translations = Dict[str, str]


def resolve_locale(accept_language: Optional[str]) -> str:
    """
    Pick the locale for a request from its Accept-Language header.

    Accepts bare tags ("ar"), region subtags ("ar-SA") and q-lists
    ("fr;q=0.9, ar;q=0.8"). The first supported primary tag wins; anything
    else falls back to the default locale.
    """
    if not accept_language:
        return DEFAULT_LOCALE

    for part in accept_language.split(","):
        tag = part.split(";")[0].strip().lower()
        primary = tag.split("-")[0]
        if primary in SUPPORTED_LOCALES:
            return primary

    return DEFAULT_LOCALE


def get_locale(accept_language: Optional[str] = Header(None)) -> str:
    """Dependency resolving the request locale."""
    return resolve_locale(accept_language)


def validate_translations(value: Any, field: str, required: bool = True) -> Translations:
    """
    Validate a locale -> text mapping before it is written.

    Raises:
        ValidationError: unknown locale, non-string text, or missing default
    """
    if value is None:
        value = {}
    if not isinstance(value, Mapping):
        raise ValidationError(f"{field} must be a mapping of locale to text", field=field)

    cleaned: Translations = {}
    for locale, text in value.items():
        if locale not in SUPPORTED_LOCALES:
            raise ValidationError(f"Unsupported locale '{locale}' in {field}", field=field)
        if not isinstance(text, str):
            raise ValidationError(f"{field}.{locale} must be a string", field=field)
        if text.strip():
            cleaned[locale] = text.strip()

    if required and DEFAULT_LOCALE not in cleaned:
        raise ValidationError(f"{field} requires a '{DEFAULT_LOCALE}' translation", field=field)

    return cleaned


def translate(translations: Optional[Mapping[str, str]], locale: str) -> str:
    """Requested locale, then the default locale, then empty."""
    if not translations:
        return ""
    return translations.get(locale) or translations.get(DEFAULT_LOCALE) or ""
