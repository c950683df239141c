"""
Prompt Extractor
Finds the planning period and the total budget in a free-text request such as
"Plano de fevereiro a agosto de 2026 com investimento de R$ 50.000"
"""

import logging
import re
import unicodedata
from datetime import datetime
from typing import NamedTuple, Optional

from plan_models import MONTHS_LIST, ErrorKind, PlanConstraints

logger = logging.getLogger(__name__)

MIN_YEAR = 2020
MAX_YEAR = 2050
MAX_MONTH_COUNT = 36
DEFAULT_MONTH_COUNT = 3


def normalize_text(text: str) -> str:
    """Lower-case and strip accents so 'Março' and 'marco' match the same pattern"""
    decomposed = unicodedata.normalize('NFKD', text or '')
    return ''.join(ch for ch in decomposed if not unicodedata.combining(ch)).lower()


def _build_month_lookup():
    lookup = {}
    for index, name in enumerate(MONTHS_LIST):
        lookup[normalize_text(name)] = index
    english = ['january', 'february', 'march', 'april', 'may', 'june', 'july',
               'august', 'september', 'october', 'november', 'december']
    for index, name in enumerate(english):
        lookup[name] = index
    abbreviations = {
        'jan': 0, 'fev': 1, 'feb': 1, 'mar': 2, 'abr': 3, 'apr': 3, 'mai': 4,
        'jun': 5, 'jul': 6, 'ago': 7, 'aug': 7, 'set': 8, 'sep': 8, 'sept': 8,
        'out': 9, 'oct': 9, 'nov': 10, 'dez': 11, 'dec': 11,
    }
    lookup.update(abbreviations)
    return lookup


MONTH_LOOKUP = _build_month_lookup()

# Ordered: the first pattern producing a valid period wins
PERIOD_PATTERNS = [
    # "marco de 2026 a janeiro de 2027", "march 2026 to january 2027"
    re.compile(r'\b(?P<start>[a-z]+)\s+(?:de\s+|of\s+)?(?P<start_year>\d{4})\s+'
               r'(?:a|ate|ao|to|until|till|through|-|–)\s+'
               r'(?P<end>[a-z]+)\s+(?:de\s+|of\s+)?(?P<year>\d{4})\b'),
    # "fevereiro a agosto de 2026", "janeiro ate junho 2026"
    re.compile(r'\b(?P<start>[a-z]+)\s+(?:a|ate|ao)\s+(?P<end>[a-z]+)\s+(?:de\s+)?(?P<year>\d{4})\b'),
    # "february to august of 2026", "may until july, 2026"
    re.compile(r'\b(?P<start>[a-z]+)\s+(?:to|until|till|through)\s+(?P<end>[a-z]+),?\s+(?:of\s+)?(?P<year>\d{4})\b'),
    # "fev-ago 2026", "feb – aug of 2026", "jan/mar de 2026"
    re.compile(r'\b(?P<start>[a-z]+)\s*(?:-|–|/)\s*(?P<end>[a-z]+),?\s+(?:de\s+|of\s+)?(?P<year>\d{4})\b'),
]

NUMBER_WORDS = {
    'um': 1, 'uma': 1, 'one': 1, 'dois': 2, 'duas': 2, 'two': 2, 'tres': 3, 'three': 3,
    'quatro': 4, 'four': 4, 'cinco': 5, 'five': 5, 'seis': 6, 'six': 6,
    'nove': 9, 'nine': 9, 'doze': 12, 'twelve': 12,
}

MONTH_COUNT_PATTERN = re.compile(
    r'\b(?P<count>\d{1,2}|' + '|'.join(NUMBER_WORDS) + r')\s+(?:meses|mes|months?)\b'
)

_AMOUNT = r'(?P<amount>\d[\d.,]*)'
_MULTIPLIER = r'(?:\s*(?P<multiplier>mil|k|thousand)\b)?'

# Ordered: currency symbol, labeled, thousand shorthand, currency word
BUDGET_PATTERNS = [
    ('currency_symbol', re.compile(r'(?:r\$|us\$|\$|€|£)\s*' + _AMOUNT + _MULTIPLIER)),
    ('labeled', re.compile(r'\b(?:investimento|orcamento|verba|budget|investment)\b[^\d]{0,40}?'
                           + _AMOUNT + _MULTIPLIER)),
    ('thousand', re.compile(r'\b' + _AMOUNT + r'\s*(?P<multiplier>mil|k|thousand)\b')),
    ('currency_word', re.compile(r'\b' + _AMOUNT + r'\s*(?:reais|real|brl|dolares|dollars|usd|euros|eur)\b')),
]

# Next numeral after a label when the first one was a year ("orcamento para 2026: 50 mil")
LABELED_CONTINUATION = re.compile(r'[^\d]{0,40}?' + _AMOUNT + _MULTIPLIER)


class Period(NamedTuple):
    start_month: int
    start_year: int
    end_month: int
    end_year: int
    month_count: int


def _valid_year(raw: str) -> Optional[int]:
    try:
        year = int(raw)
    except (TypeError, ValueError):
        return None
    return year if MIN_YEAR <= year <= MAX_YEAR else None


def _build_period(start_name: str, end_name: str, year_raw: str,
                  start_year_raw: Optional[str] = None) -> Optional[Period]:
    start = MONTH_LOOKUP.get(start_name)
    end = MONTH_LOOKUP.get(end_name)
    end_year = _valid_year(year_raw)
    if start is None or end is None or end_year is None:
        return None

    if start_year_raw is not None:
        start_year = _valid_year(start_year_raw)
        if start_year is None or (start_year, start) > (end_year, end):
            return None
        month_count = (end_year - start_year) * 12 + end - start + 1
        return Period(start, start_year, end, end_year, month_count)

    # Single stated year belongs to the start month; a smaller end index wraps into next year
    start_year = end_year
    if end < start:
        return Period(start, start_year, end, start_year + 1, (12 - start) + end + 1)
    return Period(start, start_year, end, start_year, end - start + 1)


def _period_from(start_month: int, start_year: int, month_count: int) -> Period:
    last = start_month + month_count - 1
    return Period(start_month, start_year, last % 12, start_year + last // 12, month_count)


def default_period(now: Optional[datetime] = None) -> Period:
    now = now or datetime.now()
    return _period_from(now.month - 1, now.year, DEFAULT_MONTH_COUNT)


def _match_explicit_period(text: str) -> Optional[Period]:
    for pattern in PERIOD_PATTERNS:
        # Rejected matches (unknown month names) resume one character later
        match = pattern.search(text)
        while match:
            groups = match.groupdict()
            period = _build_period(groups['start'], groups['end'], groups['year'],
                                   groups.get('start_year'))
            if period:
                logger.debug(f"[EXTRACT] Period matched '{match.group(0)}' → {period}")
                return period
            match = pattern.search(text, match.start() + 1)
    return None


def _match_month_count(text: str, now: datetime) -> Optional[Period]:
    for match in MONTH_COUNT_PATTERN.finditer(text):
        raw = match.group('count')
        count = int(raw) if raw.isdigit() else NUMBER_WORDS[raw]
        if 1 <= count <= MAX_MONTH_COUNT:
            logger.debug(f"[EXTRACT] Month count matched '{match.group(0)}' → {count}")
            return _period_from(now.month - 1, now.year, count)
    return None


def extract_period(prompt: str, now: Optional[datetime] = None) -> Optional[Period]:
    """
    Find the planning period in a request

    Tries the explicit "<month> to <month> of <year>" patterns first, then an
    "N months" count starting at the current month.

    Returns:
        Period, or None when the request states no period
    """
    now = now or datetime.now()
    text = normalize_text(prompt)
    return _match_explicit_period(text) or _match_month_count(text, now)


def parse_amount(raw: str, multiplier: Optional[str] = None) -> Optional[float]:
    """
    Parse a captured numeral, reading '.' as thousands and ',' as decimal separator

    '50.000' → 50000, '1.234,56' → 1234.56, ('50', 'mil') → 50000
    """
    cleaned = (raw or '').strip('.,')
    if ',' in cleaned:
        cleaned = cleaned.replace('.', '').replace(',', '.')
    else:
        cleaned = cleaned.replace('.', '')

    try:
        amount = float(cleaned)
    except ValueError:
        return None

    if multiplier:
        amount *= 1000
    return amount if amount > 0 else None


def _is_year(raw: str, multiplier: Optional[str]) -> bool:
    """A bare four-digit year with no currency or thousand marker"""
    digits = (raw or '').strip('.,')
    return not multiplier and len(digits) == 4 and digits.isdigit() and _valid_year(digits) is not None


def _skip_years(text: str, match):
    """Move a labeled match past stated years to the amount that follows, or None"""
    while match and _is_year(match.group('amount'), match.group('multiplier')):
        match = LABELED_CONTINUATION.match(text, match.end('amount'))
    return match


def extract_budget(prompt: str) -> Optional[float]:
    """Find the total budget in a request; None when no pattern yields a positive amount"""
    text = normalize_text(prompt)
    for name, pattern in BUDGET_PATTERNS:
        for match in pattern.finditer(text):
            if name == 'labeled':
                match = _skip_years(text, match)
                if match is None:
                    continue
            amount = parse_amount(match.group('amount'), match.groupdict().get('multiplier'))
            if amount is not None:
                logger.debug(f"[EXTRACT] Budget matched by {name}: '{match.group(0)}' → {amount}")
                return amount
    return None


def default_constraints(now: Optional[datetime], total_budget: float) -> PlanConstraints:
    """Default plan: three months from the current month with the caller's budget"""
    period = default_period(now)
    return PlanConstraints(*period, total_budget=total_budget)


def extract_constraints(prompt: str, now: Optional[datetime] = None,
                        default_budget: Optional[float] = None) -> Optional[PlanConstraints]:
    """
    Extract plan constraints from a free-text request

    Args:
        prompt: The user's planning request
        now: Clock value for the month-count and default periods
        default_budget: Budget to use when the request names a period but no amount

    Returns:
        PlanConstraints, or None when nothing usable was found and the
        caller should apply its defaults
    """
    now = now or datetime.now()
    period = extract_period(prompt, now)
    budget = extract_budget(prompt)

    if period is None and budget is None:
        logger.info(f"[EXTRACT] {ErrorKind.EXTRACTION_AMBIGUOUS.value}: no period or budget found - defaults apply")
        return None

    if budget is None:
        if not default_budget or default_budget <= 0:
            logger.info(f"[EXTRACT] {ErrorKind.EXTRACTION_AMBIGUOUS.value}: period found but no budget "
                        f"and no default budget - defaults apply")
            return None
        budget = default_budget

    period = period or default_period(now)
    constraints = PlanConstraints(*period, total_budget=budget)
    logger.info(f"[EXTRACT] Constraints: {constraints.month_count} months from "
                f"{MONTHS_LIST[constraints.start_month]}/{constraints.start_year}, budget={budget:.2f}")
    return constraints
