"""
String normalization and sameness scoring for track titles and artists.

Scores are 0-100 like rapidfuzz; callers divide by 100.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass

from rapidfuzz import fuzz
from rapidfuzz.distance import Levenshtein

# [^\w\s] would also strip non-latin letters, so list the symbols explicitly
SYMBOLS_WHITESPACE_REGEX = re.compile(r"[`=(){}<>;',.~!@#$%^&*_+|:\"?\-\\\[\]/\s]")
SYMBOLS_REGEX = re.compile(r"[`=(){}<>;',.~!@#$%^&*_+|:\"?\-\\\[\]/]")
MULTI_WHITESPACE_REGEX = re.compile(r"\s{2,}")

# "Title (feat. A & B) - Remix" => primary "Title", secondary "(feat. A & B) - Remix"
PRIMARY_SECONDARY_SECTIONS_REGEX = re.compile(
    r"^(?P<primary>.+?)(?P<secondary>(?:[(\[]?(?:\Wft\.?|\Wfeat\.?|featuring|\Wvs\.)).*)", re.IGNORECASE
)
SECONDARY_CAPTURED_REGEX = re.compile(
    r"[(\[]\s*(?P<joiner>ft\.?\W|feat\.?\W|featuring|vs\.?\W)\s*(?P<credits>.*)[)\]](?P<suffix>.*)", re.IGNORECASE
)
SECONDARY_FREE_REGEX = re.compile(
    r"^\s*(?P<joiner>ft\.?\W|feat\.?\W|featuring|vs\.?\W)\s*(?P<credits>(?:.+?(?= - |\s*[(\[]))|(?:.*))(?P<suffix>.*)",
    re.IGNORECASE,
)
DEFAULT_DELIMITERS = (",", "&", "/", "\\")


def normalize_str(value: str, keep_single_whitespace: bool = False) -> str:
    """Lower case, strip accents and punctuation."""
    decomposed = unicodedata.normalize("NFD", value)
    plain = "".join(c for c in decomposed if not unicodedata.combining(c))
    if not keep_single_whitespace:
        return SYMBOLS_WHITESPACE_REGEX.sub("", plain).lower()
    plain = SYMBOLS_REGEX.sub("", plain)
    return MULTI_WHITESPACE_REGEX.sub(" ", plain).lower().strip()


def parse_string_list(value: str, delimiters=DEFAULT_DELIMITERS) -> list[str]:
    parts = [value]
    for d in delimiters:
        parts = [p for chunk in parts for p in chunk.split(d)]
    return [p.strip() for p in parts]


@dataclass(frozen=True)
class PlayCredits:
    primary: str
    primary_composite: str
    secondary: tuple[str, ...] = ()
    suffix: str | None = None


def parse_credits(value: str, delimiters=DEFAULT_DELIMITERS) -> PlayCredits | None:
    """Split "Title (feat. A & B) - Remix" into primary title and credits.

    Returns None when the string has no joiner.
    """
    if value.strip() == "":
        return None
    sections = PRIMARY_SECONDARY_SECTIONS_REGEX.match(value)
    if sections is None:
        return None
    primary = sections.group("primary").strip()
    for strat in (SECONDARY_CAPTURED_REGEX, SECONDARY_FREE_REGEX):
        credits = strat.search(sections.group("secondary"))
        if credits is not None:
            suffix = credits.group("suffix") or None
            return PlayCredits(
                primary=primary,
                primary_composite=f"{primary}{suffix or ''}",
                secondary=tuple(parse_string_list(credits.group("credits"), delimiters)),
                suffix=suffix,
            )
    return None


def string_sameness(a: str, b: str) -> float:
    """Highest of normalized Levenshtein and Indel similarity, 0-100."""
    if a == b:
        return 100.0
    leven = Levenshtein.normalized_similarity(a, b) * 100
    return max(leven, fuzz.ratio(a, b))


def compare_normalized_strings(existing: str, candidate: str) -> float:
    """Sameness of two strings, independent of token order.

    Both strings are normalized and tokenized, then the tokens of the shorter
    one are reordered to line up with their closest tokens in the longer one
    before the final comparison.
    """
    normal_existing = normalize_str(existing, keep_single_whitespace=True)
    normal_candidate = normalize_str(candidate, keep_single_whitespace=True)

    e_tokens = normal_existing.split(" ")
    c_tokens = normal_candidate.split(" ")
    if len(e_tokens) > len(c_tokens):
        longer, remaining = e_tokens, list(c_tokens)
    else:
        longer, remaining = c_tokens, list(e_tokens)

    ordered: list[str] = []
    for token in longer:
        if not remaining:
            break
        best_index = 0
        best_score = 0.0
        for index, other in enumerate(remaining):
            score = string_sameness(token, other)
            if score > best_score:
                best_score = score
                best_index = index
        ordered.append(remaining.pop(best_index))

    return string_sameness(" ".join(longer), " ".join(ordered))


def compare_tracks(existing: str | None, candidate: str | None) -> float:
    """Title sameness 0-100, taking the better of raw and credit-stripped titles."""
    if existing is None and candidate is None:
        return 100.0
    if existing is None or candidate is None:
        return 0.0

    existing_credits = parse_credits(existing)
    existing_primary = existing_credits.primary_composite if existing_credits else existing
    candidate_credits = parse_credits(candidate)
    candidate_primary = candidate_credits.primary_composite if candidate_credits else candidate

    cleaned = compare_normalized_strings(existing_primary, candidate_primary)
    naive = compare_normalized_strings(existing, candidate)
    return max(cleaned, naive)


def compare_artists(existing: list[str] | tuple[str, ...], candidate: list[str] | tuple[str, ...]) -> float:
    return compare_normalized_strings(" ".join(existing), " ".join(candidate))
