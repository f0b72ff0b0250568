"""
Core matching engine for MiGeL position mapping.

Matching Approach:
    - Every MiGeL position carries keywords per language (DE / FR / IT), taken from
      the Bezeichnung column of the matching language sheet
    - Primary keywords come from the first Bezeichnung line only; long (>= 8 char)
      keywords from later lines are secondary "bonus" keywords
    - An inverted index over ALL keywords (every line + Limitation, every language)
      is used to find candidate positions with a cheap substring pre-filter
    - Candidates are then scored at word level, language by language: German
      keywords are only compared to the German product text, French to French,
      Italian to Italian. This is what keeps "pression" (FR) from matching inside
      "Kompressionsschraube" (DE)

Score / Acceptance:
    - ratio = matched keyword characters / all keyword characters (primary set)
    - 2+ matched keywords:  ratio >= 0.3 and longest matched keyword >= 6 chars
    - 1 matched keyword:    ratio >= 0.5 and the keyword is >= 10 chars long
    - Among passing positions the highest ratio wins, then the longest keyword

Most UDI products have no MiGeL position at all, so "no match" is the normal
outcome and never an error.
"""

import logging
from dataclasses import dataclass, field, fields, replace
from enum import Enum
import re
from types import MappingProxyType
from typing import Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd
import yaml

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
MIN_KEYWORD_LENGTH = 3      # Primary and index keywords
MIN_SECONDARY_LENGTH = 8    # Bonus keywords from lines after the first
FUZZY_MIN_LENGTH = 7        # Keywords this long may also match without their last char
COMPOUND_MIN_EXTRA = 2      # Host word must be MORE than this much longer for a suffix match

MULTI_MIN_COUNT = 2         # "Corroborated" match: at least this many keywords
MULTI_MIN_RATIO = 0.3
MULTI_MIN_LENGTH = 6
SINGLE_MIN_RATIO = 0.5      # Single keyword match needs a long, heavy keyword
SINGLE_MIN_LENGTH = 10

RESULT_COLUMNS = ['migel_code', 'migel_bezeichnung', 'migel_limitation']

STOP_WORDS = frozenset([
    # German articles, prepositions, conjunctions
    'der', 'die', 'das', 'den', 'dem', 'des', 'ein', 'eine', 'eines', 'einem', 'einen', 'einer',
    'fuer', 'mit', 'von', 'und', 'oder', 'bei', 'auf', 'nach', 'ueber', 'unter', 'aus', 'bis',
    'pro', 'als', 'inkl', 'exkl', 'max', 'min', 'per', 'zur', 'zum', 'ins', 'vom', 'ohne',
    'auch', 'sich', 'noch', 'wenn', 'muss', 'darf', 'resp', 'bzw',
    # German generic terms (common in both MiGeL and product names)
    'kauf', 'miete', 'tag', 'jahr', 'monate', 'stueck', 'set', 'alle', 'nur',
    'wird', 'ist', 'kann', 'sind', 'werden', 'wurde', 'hat', 'haben',
    'steril', 'unsteril', 'sterile', 'non',
    'diverse', 'divers', 'diversi',
    'gross', 'klein', 'lang', 'kurz',
    'position', 'definierte', 'einstellbare',
    # French
    'les', 'des', 'pour', 'avec', 'par', 'une', 'dans', 'sur', 'qui', 'que',
    'achat', 'location', 'piece', 'sans',
    # Italian
    'acquisto', 'noleggio', 'pezzo', 'senza',
    # English
    'the', 'for', 'and', 'with', 'per',
    # Generic product terms that match too broadly at word level
    'material', 'produkt', 'products', 'product', 'medical', 'device',
    'system', 'systeme', 'systems', 'geraet', 'geraete', 'appareil',
    # Shared by screws, stockings, catheters, ...
    'compression', 'compressione', 'kompression',
    'verlaengerung', 'extension', 'estensione', 'prolongation',
    'silikon', 'silicone',
    # Generic surgical instrument terms
    'ecarteur', 'divaricatore', 'retraktor',
])


class Language(Enum):
    """Catalog languages, in tie-break order."""
    DE = 'DE'
    FR = 'FR'
    IT = 'IT'


LANGUAGES: Tuple[Language, ...] = (Language.DE, Language.FR, Language.IT)

# (allow_suffix, allow_fuzzy) per language.
# Compound-word and truncation matching only make sense for German; for FR/IT they
# produce cross-type hits like "prothese" inside "endoprothese".
LANGUAGE_RULES: Dict[Language, Tuple[bool, bool]] = {
    Language.DE: (True, True),
    Language.FR: (False, False),
    Language.IT: (False, False),
}


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MatchConfig:
    """Tuning parameters for keyword extraction and acceptance."""
    stop_words: FrozenSet[str] = STOP_WORDS
    min_keyword_length: int = MIN_KEYWORD_LENGTH
    min_secondary_length: int = MIN_SECONDARY_LENGTH
    fuzzy_min_length: int = FUZZY_MIN_LENGTH
    compound_min_extra: int = COMPOUND_MIN_EXTRA
    multi_min_count: int = MULTI_MIN_COUNT
    multi_min_ratio: float = MULTI_MIN_RATIO
    multi_min_length: int = MULTI_MIN_LENGTH
    single_min_ratio: float = SINGLE_MIN_RATIO
    single_min_length: int = SINGLE_MIN_LENGTH


DEFAULT_CONFIG = MatchConfig()

_INT_FIELDS = (
    'min_keyword_length', 'min_secondary_length', 'fuzzy_min_length', 'compound_min_extra',
    'multi_min_count', 'multi_min_length', 'single_min_length',
)
_FLOAT_FIELDS = ('multi_min_ratio', 'single_min_ratio')


def _is_number(value, types) -> bool:
    # YAML `true` loads as bool, which is an int subclass
    return isinstance(value, types) and not isinstance(value, bool)


def _word_list(path, key: str, value) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(w, str) for w in value):
        raise ValueError(f"{path}: {key} must be a list of words, got {value!r}")
    return value


def load_match_config(path) -> MatchConfig:
    """
    Load a MatchConfig from a YAML file.

    Any subset of the MatchConfig fields may be given. `stop_words` replaces the
    built-in list, `extra_stop_words` extends it. Unknown keys raise ValueError so
    a typo does not silently fall back to the default.
    """
    with open(path, encoding='utf-8') as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")

    known = {f.name for f in fields(MatchConfig)}
    unknown = set(raw) - known - {'extra_stop_words'}
    if unknown:
        raise ValueError(f"{path}: unknown config keys: {', '.join(sorted(unknown))}")

    overrides = {k: v for k, v in raw.items() if k in known}
    for key in _INT_FIELDS:
        if key in overrides and not _is_number(overrides[key], int):
            raise ValueError(f"{path}: {key} must be an integer, got {overrides[key]!r}")
    for key in _FLOAT_FIELDS:
        if key in overrides:
            if not _is_number(overrides[key], (int, float)):
                raise ValueError(f"{path}: {key} must be a number, got {overrides[key]!r}")
            overrides[key] = float(overrides[key])

    stop_words = set(STOP_WORDS)
    if 'stop_words' in overrides:
        stop_words = set(_word_list(path, 'stop_words', overrides['stop_words']))
    stop_words.update(_word_list(path, 'extra_stop_words', raw.get('extra_stop_words')))
    # Stop words are compared against normalized lowercase tokens
    overrides['stop_words'] = frozenset(normalize_text(str(w)).lower() for w in stop_words)

    return replace(DEFAULT_CONFIG, **overrides)


# ---------------------------------------------------------------------------
# Text normalization
# ---------------------------------------------------------------------------

_CHAR_TABLE = str.maketrans({
    'ä': 'ae', 'ö': 'oe', 'ü': 'ue', 'ß': 'ss',
    'Ä': 'Ae', 'Ö': 'Oe', 'Ü': 'Ue',
    'é': 'e', 'è': 'e', 'ê': 'e', 'à': 'a', 'â': 'a',
    'ù': 'u', 'û': 'u', 'ô': 'o', 'î': 'i', 'ç': 'c',
    'É': 'E', 'È': 'E', 'Ê': 'E', 'À': 'A', 'Â': 'A',
    'Ù': 'U', 'Û': 'U', 'Ô': 'O', 'Î': 'I', 'Ç': 'C',
})

_NON_ALNUM = re.compile(r'[\W_]+')


def normalize_text(text: str) -> str:
    """
    Replace umlauts and accents with plain ASCII so that ALL-CAPS product names
    ("ABSAUGGERÄTE") and catalog text ("Absauggeräte") compare equal after
    lower-casing. Must run before lower().
    """
    if not isinstance(text, str):
        return ''
    return text.translate(_CHAR_TABLE)


def normalize_lower(text: str) -> str:
    return normalize_text(text).lower()


def split_words(text: str) -> List[str]:
    """Split on every non-alphanumeric character. Order and duplicates are kept."""
    return [w for w in _NON_ALNUM.split(text) if w]


# ---------------------------------------------------------------------------
# Keyword extraction
# ---------------------------------------------------------------------------

def _lines(text: str) -> List[str]:
    """Split on \n only; a trailing \r is dropped from each line."""
    return [line[:-1] if line.endswith('\r') else line for line in text.split('\n')]


def _first_line(text: str) -> str:
    return _lines(text)[0]


def extract_keywords(
    text: str,
    min_length: int = MIN_KEYWORD_LENGTH,
    stop_words: Iterable[str] = STOP_WORDS,
) -> Tuple[str, ...]:
    """Normalized lowercase words of at least `min_length` chars, minus stop words, sorted."""
    words = split_words(normalize_lower(text))
    return tuple(sorted({w for w in words if len(w) >= min_length and w not in stop_words}))


def extract_first_line_keywords(text: str, config: MatchConfig = DEFAULT_CONFIG) -> Tuple[str, ...]:
    """Primary keywords: first line only."""
    return extract_keywords(_first_line(text or ''), config.min_keyword_length, config.stop_words)


def extract_full_text_keywords(text: str, config: MatchConfig = DEFAULT_CONFIG) -> Tuple[str, ...]:
    """Index keywords: every line."""
    return extract_keywords(text or '', config.min_keyword_length, config.stop_words)


def extract_secondary_keywords(text: str, config: MatchConfig = DEFAULT_CONFIG) -> Tuple[str, ...]:
    """
    Bonus keywords: long words from the lines AFTER the first.

    Only long words are kept because they are specific enough to corroborate a
    primary hit; short words from the detail lines are mostly qualifiers.
    """
    rest = ' '.join(_lines(text or '')[1:])
    if not rest.strip():
        return ()
    return extract_keywords(rest, config.min_secondary_length, config.stop_words)


# ---------------------------------------------------------------------------
# Catalog items
# ---------------------------------------------------------------------------

def _empty_keywords() -> Dict[Language, Tuple[str, ...]]:
    return {lang: () for lang in LANGUAGES}


@dataclass(frozen=True)
class CatalogItem:
    """One MiGeL position. Keyword sets are keyed by Language; a missing sheet row
    leaves that language empty, which scores zero."""
    position_id: str
    display_text: str
    limitation_text: str = ''
    primary_keywords: Mapping[Language, Tuple[str, ...]] = field(default_factory=_empty_keywords)
    secondary_keywords: Mapping[Language, Tuple[str, ...]] = field(default_factory=_empty_keywords)
    index_keywords: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, 'primary_keywords', MappingProxyType(dict(self.primary_keywords)))
        object.__setattr__(self, 'secondary_keywords', MappingProxyType(dict(self.secondary_keywords)))

    def keywords(self, lang: Language) -> Tuple[str, ...]:
        return tuple(self.primary_keywords.get(lang, ()))

    def secondary(self, lang: Language) -> Tuple[str, ...]:
        return tuple(self.secondary_keywords.get(lang, ()))


def build_catalog_item(
    position_id: str,
    texts: Mapping[Language, Tuple[str, str]],
    config: MatchConfig = DEFAULT_CONFIG,
) -> CatalogItem:
    """
    Build a CatalogItem from per-language (bezeichnung, limitation) texts.

    The German text supplies the display and limitation columns of the output;
    if there is no German text, the first available language is used instead.
    """
    primary = _empty_keywords()
    secondary = _empty_keywords()
    index_kw = set()

    for lang in LANGUAGES:
        if lang not in texts:
            continue
        bezeichnung, limitation = texts[lang]
        bezeichnung = bezeichnung or ''
        primary[lang] = extract_first_line_keywords(bezeichnung, config)
        secondary[lang] = extract_secondary_keywords(bezeichnung, config)
        index_kw.update(extract_full_text_keywords(bezeichnung, config))
        if limitation:
            index_kw.update(extract_full_text_keywords(limitation, config))

    display_lang = Language.DE if Language.DE in texts else next(
        (lang for lang in LANGUAGES if lang in texts), None)
    display_text, limitation_text = '', ''
    if display_lang is not None:
        bezeichnung, limitation_text = texts[display_lang]
        display_text = _first_line(bezeichnung or '').strip()

    return CatalogItem(
        position_id=position_id,
        display_text=display_text,
        limitation_text=limitation_text or '',
        primary_keywords=primary,
        secondary_keywords=secondary,
        index_keywords=tuple(sorted(index_kw)),
    )


# ---------------------------------------------------------------------------
# Inverted index
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CatalogIndex:
    """
    keyword -> position ids of the items whose index keywords contain it.

    `order` maps each position id to its place in the catalog so candidate scoring
    can run in catalog order (deterministic tie-breaks).
    """
    postings: Mapping[str, Tuple[str, ...]]
    order: Mapping[str, int]

    def __post_init__(self):
        object.__setattr__(self, 'postings', MappingProxyType(dict(self.postings)))
        object.__setattr__(self, 'order', MappingProxyType(dict(self.order)))

    def __len__(self) -> int:
        return len(self.postings)


def build_index(items: Sequence[CatalogItem]) -> CatalogIndex:
    """Build the keyword index once; it is never mutated afterwards."""
    postings: Dict[str, List[str]] = {}
    order: Dict[str, int] = {}
    for i, item in enumerate(items):
        order.setdefault(item.position_id, i)
        for kw in item.index_keywords:
            postings.setdefault(kw, []).append(item.position_id)
    return CatalogIndex(
        postings={kw: tuple(ids) for kw, ids in postings.items()},
        order=order,
    )


# ---------------------------------------------------------------------------
# Word-level matching primitives
# ---------------------------------------------------------------------------

def fuzzy_contains(haystack: str, keyword: str, config: MatchConfig = DEFAULT_CONFIG) -> bool:
    """Substring test for the candidate pre-filter (not word-bounded)."""
    if keyword in haystack:
        return True
    if len(keyword) >= config.fuzzy_min_length:
        return keyword[:-1] in haystack
    return False


def _matches_word(words: Sequence[str], keyword: str, allow_suffix: bool, min_extra: int) -> bool:
    for word in words:
        if word == keyword:
            return True
        # Head of a German compound: "katheter" in "verweilkatheter"
        if allow_suffix and len(word) > len(keyword) + min_extra and word.endswith(keyword):
            return True
    return False


def word_match(
    words: Sequence[str],
    keyword: str,
    allow_suffix: bool,
    allow_fuzzy: bool,
    config: MatchConfig = DEFAULT_CONFIG,
) -> bool:
    """
    True if `keyword` matches one of `words`.

    allow_suffix: also accept compound words ending in the keyword.
    allow_fuzzy: for long keywords, retry with the last character dropped
                 (German plural/case: Orthese / Orthesen).
    """
    if _matches_word(words, keyword, allow_suffix, config.compound_min_extra):
        return True
    if allow_fuzzy and len(keyword) >= config.fuzzy_min_length:
        return _matches_word(words, keyword[:-1], allow_suffix, config.compound_min_extra)
    return False


def keyword_score(
    words: Sequence[str],
    keywords: Sequence[str],
    allow_suffix: bool,
    allow_fuzzy: bool,
    config: MatchConfig = DEFAULT_CONFIG,
) -> Tuple[float, int, int]:
    """
    Returns (ratio, max_matched_length, matched_count).

    ratio is weighted by keyword length: matched chars / all keyword chars.
    """
    total = sum(len(kw) for kw in keywords)
    if total == 0:
        return 0.0, 0, 0

    matched_weight = 0
    max_len = 0
    count = 0
    for kw in keywords:
        if word_match(words, kw, allow_suffix, allow_fuzzy, config):
            matched_weight += len(kw)
            count += 1
            max_len = max(max_len, len(kw))
    return matched_weight / total, max_len, count


# ---------------------------------------------------------------------------
# Candidate scoring
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LanguageScore:
    ratio: float
    max_length: int
    count: int


@dataclass(frozen=True)
class CandidateScore:
    item: CatalogItem
    language: Language
    ratio: float
    max_length: int
    count: int
    passed: bool
    per_language: Mapping[Language, LanguageScore]


@dataclass(frozen=True)
class MatchQuery:
    """Per-row product text, already routed into language buckets."""
    de: str = ''
    fr: str = ''
    it: str = ''
    brand: str = ''

    def bucket(self, lang: Language) -> str:
        return {Language.DE: self.de, Language.FR: self.fr, Language.IT: self.it}[lang]


def passes_threshold(ratio: float, max_length: int, count: int,
                     config: MatchConfig = DEFAULT_CONFIG) -> bool:
    if count >= config.multi_min_count:
        return ratio >= config.multi_min_ratio and max_length >= config.multi_min_length
    if count == 1:
        return ratio >= config.single_min_ratio and max_length >= config.single_min_length
    return False


def _language_score(item: CatalogItem, lang: Language, words: Sequence[str],
                    config: MatchConfig) -> LanguageScore:
    allow_suffix, allow_fuzzy = LANGUAGE_RULES[lang]
    ratio, max_len, count = keyword_score(words, item.keywords(lang), allow_suffix, allow_fuzzy, config)
    # Secondary keywords only corroborate a primary hit; on their own a single long
    # word from a detail line would match unrelated products.
    if count > 0:
        _, sec_max, sec_count = keyword_score(words, item.secondary(lang), allow_suffix, allow_fuzzy, config)
        count += sec_count
        max_len = max(max_len, sec_max)
    return LanguageScore(ratio, max_len, count)


def score_candidate(item: CatalogItem, words: Mapping[Language, Sequence[str]],
                    config: MatchConfig = DEFAULT_CONFIG) -> CandidateScore:
    """Score one item against the per-language word lists and apply the thresholds."""
    per_language = {lang: _language_score(item, lang, words[lang], config) for lang in LANGUAGES}

    best_lang = LANGUAGES[0]
    for lang in LANGUAGES[1:]:
        if per_language[lang].ratio > per_language[best_lang].ratio:
            best_lang = lang
    best = per_language[best_lang]

    return CandidateScore(
        item=item,
        language=best_lang,
        ratio=best.ratio,
        max_length=best.max_length,
        count=best.count,
        passed=passes_threshold(best.ratio, best.max_length, best.count, config),
        per_language=per_language,
    )


def _lowered_buckets(desc_de: str, desc_fr: str, desc_it: str, brand: str) -> Dict[Language, str]:
    raw = {Language.DE: desc_de, Language.FR: desc_fr, Language.IT: desc_it}
    return {lang: normalize_lower(f"{text or ''} {brand or ''}") for lang, text in raw.items()}


def find_candidates(combined: str, index: CatalogIndex,
                    config: MatchConfig = DEFAULT_CONFIG) -> List[str]:
    """Position ids whose index keywords occur in `combined`, in catalog order."""
    found = set()
    for kw, ids in index.postings.items():
        if fuzzy_contains(combined, kw, config):
            found.update(ids)
    return sorted(found, key=lambda pid: index.order.get(pid, len(index.order)))


def _score_all(
    desc_de: str, desc_fr: str, desc_it: str, brand: str,
    catalog: Sequence[CatalogItem], index: CatalogIndex, config: MatchConfig,
) -> List[CandidateScore]:
    lowered = _lowered_buckets(desc_de, desc_fr, desc_it, brand)
    combined = ' '.join(lowered[lang] for lang in LANGUAGES)
    words = {lang: split_words(text) for lang, text in lowered.items()}

    scores = []
    for pid in find_candidates(combined, index, config):
        pos = index.order.get(pid)
        if pos is None or pos >= len(catalog):
            continue
        scores.append(score_candidate(catalog[pos], words, config))
    return scores


def find_best_match(
    desc_de: str,
    desc_fr: str,
    desc_it: str,
    brand: str,
    catalog: Sequence[CatalogItem],
    index: CatalogIndex,
    config: MatchConfig = DEFAULT_CONFIG,
) -> Optional[CatalogItem]:
    """
    Find the best MiGeL position for one product, or None.

    Steps:
        1. Candidate discovery: substring test of every index keyword against
           all buckets + brand (broad, any language)
        2. Per-language word-level scoring (never mixing languages)
        3. Pick the language with the highest ratio (DE, FR, IT on ties)
        4. Acceptance thresholds
        5. Highest ratio wins, ties go to the longer matched keyword
    """
    best = None
    for cand in _score_all(desc_de, desc_fr, desc_it, brand, catalog, index, config):
        if not cand.passed:
            continue
        if best is None or (cand.ratio, cand.max_length) > (best.ratio, best.max_length):
            best = cand
    return best.item if best is not None else None


def match_query(query: MatchQuery, catalog: Sequence[CatalogItem], index: CatalogIndex,
                config: MatchConfig = DEFAULT_CONFIG) -> Optional[CatalogItem]:
    return find_best_match(query.de, query.fr, query.it, query.brand, catalog, index, config)


# ---------------------------------------------------------------------------
# Single-query diagnostics (for UI "Test Match" feature)
# ---------------------------------------------------------------------------

def explain_match(
    query: MatchQuery,
    catalog: Sequence[CatalogItem],
    index: CatalogIndex,
    config: MatchConfig = DEFAULT_CONFIG,
    limit: int = 10,
) -> List[dict]:
    """
    Score breakdown for every candidate of one query, best first.

    Passing candidates sort before failing ones, so the first row is the
    position find_best_match would return (when it passed).
    """
    scores = _score_all(query.de, query.fr, query.it, query.brand, catalog, index, config)
    ranked = sorted(
        enumerate(scores),
        key=lambda p: (not p[1].passed, -p[1].ratio, -p[1].max_length, p[0]),
    )
    rows = []
    for _, cand in ranked[:limit]:
        row = {
            'position_id': cand.item.position_id,
            'bezeichnung': cand.item.display_text,
            'language': cand.language.value,
            'ratio': round(cand.ratio, 3),
            'max_length': cand.max_length,
            'count': cand.count,
            'passed': cand.passed,
        }
        for lang, s in cand.per_language.items():
            row[f'ratio_{lang.value.lower()}'] = round(s.ratio, 3)
        rows.append(row)
    return rows


# ---------------------------------------------------------------------------
# Table matching
# ---------------------------------------------------------------------------

def run_matching(
    df_rows: pd.DataFrame,
    catalog: Sequence[CatalogItem],
    index: CatalogIndex,
    config: MatchConfig = DEFAULT_CONFIG,
    progress_callback: Optional[Callable] = None,
    query_builder: Optional[Callable] = None,
) -> pd.DataFrame:
    """
    Match every row of a flattened UDI table against the catalog.

    Args:
        df_rows: flattened swissdamed rows (see udi.flatten_records)
        catalog / index: built once per run
        progress_callback: optional callable(current, total) for UI progress
        query_builder: row -> MatchQuery, defaults to udi.build_match_query

    Returns:
        Copy of df_rows with migel_code, migel_bezeichnung, migel_limitation
        (empty strings where nothing matched).
    """
    if query_builder is None:
        from udi import build_match_query
        query_builder = build_match_query

    df = df_rows.copy()
    total = len(df)
    results = []
    for _, row in df.iterrows():
        item = match_query(query_builder(row), catalog, index, config)
        if item is None:
            results.append(('', '', ''))
        else:
            results.append((item.position_id, item.display_text, item.limitation_text))

        if progress_callback and (len(results) % 50 == 0 or len(results) == total):
            progress_callback(len(results), total)

    for i, col in enumerate(RESULT_COLUMNS):
        df[col] = [r[i] for r in results]

    matched = sum(1 for r in results if r[0])
    logger.info("MiGeL matches: %d out of %d rows", matched, total)
    return df


def matched_rows(df_result: pd.DataFrame) -> pd.DataFrame:
    """Only the rows that received a MiGeL position."""
    return df_result[df_result['migel_code'] != ''].reset_index(drop=True)


def coverage_summary(df_result: pd.DataFrame, top: int = 10) -> Dict[str, object]:
    """Match counts for a run_matching result, plus the most frequent positions."""
    total = len(df_result)
    codes = df_result['migel_code'] if 'migel_code' in df_result.columns else pd.Series(dtype=str)
    matched = int((codes != '').sum())
    top_positions = codes[codes != ''].value_counts().head(top)
    return {
        'total': total,
        'matched': matched,
        'unmatched': total - matched,
        'match_rate': round(matched / total * 100, 2) if total else 0.0,
        'top_positions': [(str(k), int(v)) for k, v in top_positions.items()],
    }
