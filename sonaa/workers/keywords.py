"""
Keyword filter sets
-------------------
Static topical tables for the aggregator:

* EXCLUDED_KEYWORDS - dropped from the merged pool, whatever the source.
  Guitars, bass, drums, stage lighting and acoustic/orchestral gear.
* SOURCE_INCLUDE_KEYWORDS - per-source allowlists for broad feeds that only
  occasionally publish on-topic items (Bandcamp Daily covers every genre).

Matching is a case-insensitive substring test against
title + categories + snippet. Tables are immutable; pass your own
KeywordRules to the aggregator to override them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, List, Mapping, Tuple

from sonaa.workers.models import Article

EXCLUDED_KEYWORDS: Tuple[str, ...] = (
    # guitar brands & models
    "guitar", "guitare", "fender", "gibson", "stratocaster", "telecaster", "strat", "tele",
    "les paul", "epiphone", "squier", "ibanez", "marshall", "gretsch", "prs", "jackson",
    "harley benton", "st-modern", "st modern", "jazzmaster", "jaguar", "mustang",
    "revstar", "pacifica", "cort", "esp ltd", "schecter", "godin", "rickenbacker",
    "charvel", "kramer", "danelectro", "yamaha pacifica", "taylor", "martin",
    # body types
    "solid body", "solid-body", "hollow body", "hollow-body", "semi-hollow",
    "single cut", "single-cut", "double cut", "double-cut", "offset body",
    "thinline", "archtop", "dreadnought", "parlor", "jumbo",
    # luthier terms
    "fret", "frettes", "frette", "fretboard", "touche érable", "touche palissandre",
    "neck profile", "manche collé", "manche vissé", "roasted maple", "rosewood",
    "pickups", "pickup", "micro guitare", "micros", "humbucker", "single coil", "p90",
    "single-coil", "soapbar", "bridge", "chevalet", "sillet", "nut", "headstock",
    "tuning pegs", "mécaniques", "pickguard", "truss rod",
    # guitar hardware & accessories
    "pedalboard", "stompbox", "guitar pedal", "pédale guitare", "overdrive", "distortion",
    "fuzz", "wah wah", "capo", "plectrum", "mediator", "guitar strap", "sangle guitare",
    "guitar amp", "ampli guitare", "combo amp", "stack amp", "cabinet", "baffle",
    "whammy bar", "vibrato", "tremolo arm", "floyd rose",
    # bass
    "basse électrique", "electric bass", "jazz bass", "precision bass", "p-bass", "j-bass",
    "basse active", "basse passive", "ampli basse", "bass amp", "bass guitar",
    "short scale", "long scale",
    # drums & acoustic
    "drum kit", "batterie acoustique", "cymbals", "cymbale", "snare drum", "caisse claire",
    "hi-hat", "zildjian", "sabian", "paiste", "vic firth", "tama", "pearl drums",
    "dw drums", "ludwig", "sonor", "acoustic drum", "baguette", "drumsticks",
    # stage lighting & dmx
    "lighting", "éclairage", "projecteur", "fresnel", "moving head", "lyre",
    "spot led", "wash led", "beam", "dmx", "stroboscope", "strobe", "machine à fumée",
    "fog machine", "hazer", "brouillard", "laser world", "laserworld", "lasers",
    "par can", "par led", "blinder", "dimmer", "gradateur", "truss", "structure alu",
    "robe lighting", "chauvet", "adj", "cameo", "varytec", "showtec", "elation",
    "clay paky", "martin lighting", "ma lighting", "grandma", "chamsys", "obsidian",
    "scène", "stage tech", "rigging",
    # wind, brass & orchestral
    "saxophone", "sax", "trumpet", "trompette", "clarinet", "clarinette",
    "flute", "flûte", "violin", "violon", "cello", "violoncelle", "orchestra",
    "trombone", "tuba", "ukulele", "banjo", "mandolin", "harmonica", "accordéon",
    "accordion", "grand piano", "piano à queue", "piano droit",
)

BANDCAMP_ELECTRO_KEYWORDS: Tuple[str, ...] = (
    "electronic", "synth", "techno", "house", "ambient", "drone", "experimental",
    "club", "dance", "beat", "modular", "eurorack", "idm", "jungle", "drum and bass",
    "dubstep", "garage", "electro", "lo-fi", "vaporwave", "trance", "breakbeat",
)

SOURCE_INCLUDE_KEYWORDS: Mapping[str, Tuple[str, ...]] = MappingProxyType({
    "bandcamp-daily": BANDCAMP_ELECTRO_KEYWORDS,
})


@dataclass(frozen=True)
class KeywordRules:
    exclude: Tuple[str, ...] = EXCLUDED_KEYWORDS
    include_by_source: Mapping[str, Tuple[str, ...]] = field(
        default_factory=lambda: SOURCE_INCLUDE_KEYWORDS
    )


DEFAULT_KEYWORD_RULES = KeywordRules()


def article_text(article: Article) -> str:
    return " ".join([article.title, " ".join(article.categories), article.content_snippet]).lower()


def contains_any(text: str, keywords: Iterable[str]) -> bool:
    return any(k.lower() in text for k in keywords)


def is_excluded(article: Article, rules: KeywordRules = DEFAULT_KEYWORD_RULES) -> bool:
    return contains_any(article_text(article), rules.exclude)


def passes_source_filter(article: Article, source_id: str, rules: KeywordRules = DEFAULT_KEYWORD_RULES) -> bool:
    """True when the source has no allowlist, or the article hits one of its keywords."""
    include = rules.include_by_source.get(source_id)
    if not include:
        return True
    return contains_any(article_text(article), include)


def apply_exclusions(articles: Iterable[Article], rules: KeywordRules = DEFAULT_KEYWORD_RULES) -> List[Article]:
    """Global pass over the merged pool. Pure: returns a new list, never mutates."""
    return [a for a in articles if not is_excluded(a, rules)]
