"""
Text normalization utilities and the lookup tables used by extraction,
matching and review flagging
"""
import re
import unicodedata
from typing import Dict, Iterable, List, Mapping, Tuple

# Legal-entity suffixes, longest first so the regex alternation prefers them
LEGAL_SUFFIXES: Tuple[str, ...] = (
    "S.R.L.", "S.A.S.", "S.A.", "C.A.", "Corporation", "Corp.", "Corp",
    "Limited", "Ltd.", "Ltd", "Inc.", "Inc", "LLC", "GmbH", "SpA", "SRL",
    "SA", "CA",
)

# Sentence-initial determiners that are never part of a name
DETERMINERS = frozenset({"EL", "LA", "LOS", "LAS", "LO", "UN", "UNA", "THE", "A", "AN"})

# Prepositions that introduce a place ("en Caracas", "from Miami")
LOCATIVE_PREPOSITIONS: Tuple[str, ...] = ("en", "de", "desde", "hacia", "al", "a", "in", "from", "to")

# Places recognized by the locative rule, normalized for comparison
KNOWN_LOCATIONS = frozenset({
    "venezuela", "colombia", "brasil", "brazil", "eeuu", "estados unidos",
    "united states", "panama", "mexico", "miami", "caracas", "bogota",
    "madrid", "espana", "spain", "nueva york", "new york", "washington",
    "beijing", "pekin", "moscu", "moscow", "la habana", "havana", "cuba",
    "aruba", "curazao", "curacao", "maracaibo", "valencia", "zulia",
    "tachira", "barinas", "lisboa", "andorra", "suiza", "switzerland",
})

# Words that the capitalization rule picks up as PERSON but never are
SUSPICIOUS_PERSON_TOKENS = frozenset({
    "USANDO", "UTILIZ", "SIENDO", "CUANDO", "AUNQUE", "CADA", "DURANTE",
    "HACIA", "SOBRE", "DESPUES", "ANTES", "OTRA", "MISMO", "ACERCA",
    "FUERA", "DENTRO", "AFIRM", "INDICO", "DIJO", "SENALO", "SEGUN",
    "ADEMAS", "TAMBIEN", "ESTE", "ESTA", "ESTOS", "ESTAS",
})

# Place and country names misclassified as PERSON
GEO_TERMS = frozenset({
    "VENEZUELA", "MEXICO", "BRASIL", "COLOMBIA", "ARUBA", "MADRID",
    "HAVANA", "HABANA", "CARACAS", "BOGOTA", "BUENOS", "AIRES", "SAN",
    "JOSE", "AMERICA", "EUROPE", "EUROPA", "AFRICA", "PANAMA", "MIAMI",
    "CUBA",
})

# Spanish given names and their common variants
SPANISH_NICKNAMES: Dict[str, Tuple[str, ...]] = {
    "nicolas": ("nico",),
    "jose": ("pepe",),
    "jesus": ("chucho",),
    "francisco": ("pancho", "paco"),
    "alejandro": ("alex",),
    "antonio": ("tony",),
    "carlos": ("charlie",),
    "luis": ("lucho",),
    "rafael": ("rafa",),
    "miguel": ("mike",),
}

_WHITESPACE = re.compile(r"\s+")


def strip_diacritics(text: str) -> str:
    """
    Decompose characters and drop combining marks (José -> Jose)
    """
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def collapse_whitespace(text: str) -> str:
    """Trim and collapse runs of whitespace to one space"""
    return _WHITESPACE.sub(" ", text or "").strip()


def normalize_mention_text(text: str) -> str:
    """
    Canonical form used for mention normalized text and graph node names:
    upper case, no diacritics, single spaces
    """
    return collapse_whitespace(strip_diacritics(text)).upper()


def normalize_for_comparison(text: str) -> str:
    """
    Form used for similarity scoring: lower case, no diacritics, single spaces
    """
    return collapse_whitespace(strip_diacritics(text)).lower()


def normalize_for_matching(text: str) -> str:
    """
    Form used against the identity registry: case-folded, no diacritics
    """
    return collapse_whitespace(strip_diacritics(text)).casefold()


def is_known_location(phrase: str, locations: Iterable[str] = KNOWN_LOCATIONS) -> bool:
    """Check whether a phrase is a known place name"""
    return normalize_for_comparison(phrase) in locations


def expand_nicknames(
    name: str,
    nicknames: Mapping[str, Tuple[str, ...]] = SPANISH_NICKNAMES
) -> List[str]:
    """
    Generate variants of a name by substituting known nicknames, one token at
    a time ("nicolas maduro" -> ["nicolas maduro", "nico maduro"]).

    Args:
        name: Name already normalized for matching
        nicknames: Given name -> nickname table

    Returns:
        Variants, the input first, without duplicates
    """
    parts = name.split(" ")
    variants = [name]

    for index, part in enumerate(parts):
        for nickname in nicknames.get(part, ()):
            variant = list(parts)
            variant[index] = nickname
            variants.append(" ".join(variant))

    # Remove duplicates while preserving order
    seen = set()
    unique_variants = []
    for variant in variants:
        if variant not in seen:
            seen.add(variant)
            unique_variants.append(variant)

    return unique_variants
