# references.py
# Scripture reference parsing.
#
# Turns free-text references ("John 3:16", "1 Jn 2:1-3", "Psalm 23") into
# structured book/chapter/verse components. Unknown or malformed input
# yields None, never an exception.

import re

from pydantic import BaseModel


class ParsedReference(BaseModel):
    """A reference resolved to its canonical book name and verse span."""

    book: str
    chapter: int
    verse_start: int
    verse_end: int | None = None


# ---------------------------------------------------------------------------
# Book aliases (lower-case variant → canonical name)
# ---------------------------------------------------------------------------

_OLD_TESTAMENT: dict[str, tuple[str, ...]] = {
    "Genesis": ("gen", "genesis"),
    "Exodus": ("exo", "exodus"),
    "Leviticus": ("lev", "leviticus"),
    "Numbers": ("num", "numbers"),
    "Deuteronomy": ("deu", "deut", "deuteronomy"),
    "Joshua": ("jos", "josh", "joshua"),
    "Judges": ("jdg", "judg", "judges"),
    "Ruth": ("rut", "ruth"),
    "1 Samuel": ("1sa", "1sam", "1 sam", "1 samuel"),
    "2 Samuel": ("2sa", "2sam", "2 sam", "2 samuel"),
    "1 Kings": ("1ki", "1 kings"),
    "2 Kings": ("2ki", "2 kings"),
    "1 Chronicles": ("1ch", "1 chronicles"),
    "2 Chronicles": ("2ch", "2 chronicles"),
    "Ezra": ("ezr", "ezra"),
    "Nehemiah": ("neh", "nehemiah"),
    "Esther": ("est", "esther"),
    "Job": ("job",),
    "Psalms": ("psa", "psalm", "psalms", "ps"),
    "Proverbs": ("pro", "prov", "proverbs"),
    "Ecclesiastes": ("ecc", "eccl", "ecclesiastes"),
    "Song of Solomon": ("sng", "song", "song of solomon", "song of songs", "sos"),
    "Isaiah": ("isa", "isaiah"),
    "Jeremiah": ("jer", "jeremiah"),
    "Lamentations": ("lam", "lamentations"),
    "Ezekiel": ("ezk", "ezek", "ezekiel"),
    "Daniel": ("dan", "daniel"),
    "Hosea": ("hos", "hosea"),
    "Joel": ("jol", "joel"),
    "Amos": ("amo", "amos"),
    "Obadiah": ("oba", "obad", "obadiah"),
    "Jonah": ("jon", "jonah"),
    "Micah": ("mic", "micah"),
    "Nahum": ("nam", "nahum"),
    "Habakkuk": ("hab", "habakkuk"),
    "Zephaniah": ("zep", "zeph", "zephaniah"),
    "Haggai": ("hag", "haggai"),
    "Zechariah": ("zec", "zech", "zechariah"),
    "Malachi": ("mal", "malachi"),
}

_NEW_TESTAMENT: dict[str, tuple[str, ...]] = {
    "Matthew": ("mat", "matt", "matthew"),
    "Mark": ("mrk", "mark"),
    "Luke": ("luk", "luke"),
    "John": ("jhn", "john"),
    "Acts": ("act", "acts"),
    "Romans": ("rom", "romans"),
    "1 Corinthians": ("1co", "1cor", "1 cor", "1 corinthians"),
    "2 Corinthians": ("2co", "2cor", "2 cor", "2 corinthians"),
    "Galatians": ("gal", "galatians"),
    "Ephesians": ("eph", "ephesians"),
    "Philippians": ("php", "phil", "philippians"),
    "Colossians": ("col", "colossians"),
    "1 Thessalonians": ("1th", "1thes", "1 thess", "1 thessalonians"),
    "2 Thessalonians": ("2th", "2thes", "2 thess", "2 thessalonians"),
    "1 Timothy": ("1ti", "1tim", "1 tim", "1 timothy"),
    "2 Timothy": ("2ti", "2tim", "2 tim", "2 timothy"),
    "Titus": ("tit", "titus"),
    "Philemon": ("phm", "phlm", "philemon"),
    "Hebrews": ("heb", "hebrews"),
    "James": ("jas", "james"),
    "1 Peter": ("1pe", "1pet", "1 pet", "1 peter"),
    "2 Peter": ("2pe", "2pet", "2 pet", "2 peter"),
    "1 John": ("1jn", "1john", "1 john"),
    "2 John": ("2jn", "2john", "2 john"),
    "3 John": ("3jn", "3john", "3 john"),
    "Jude": ("jud", "jude"),
    "Revelation": ("rev", "revelation", "revelations"),
}

BOOK_ALIASES: dict[str, str] = {
    alias: book
    for table in (_OLD_TESTAMENT, _NEW_TESTAMENT)
    for book, aliases in table.items()
    for alias in aliases
}

_VERSE_PATTERN = re.compile(
    r"^(\d?\s*[A-Za-z]+(?:\s+[A-Za-z]+)?(?:\s+[A-Za-z]+)?)\s+(\d+):(\d+)(?:-(\d+))?$"
)
_CHAPTER_PATTERN = re.compile(r"^(\d?\s*[A-Za-z]+(?:\s+[A-Za-z]+)?)\s+(\d+)$")


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _lookup_book(raw: str, allow_prefix: bool) -> str | None:
    key = re.sub(r"\s+", " ", raw.lower().strip())
    if key in BOOK_ALIASES:
        return BOOK_ALIASES[key]
    if not allow_prefix:
        return None
    # First alias that the spelling starts with, in table order.
    for alias, book in BOOK_ALIASES.items():
        if key.startswith(alias):
            return book
    return None


def parse_reference(ref: str) -> ParsedReference | None:
    """
    Parse a reference string into structured components.

        "John 3:16"       → John 3, verse 16
        "1 John 2:1-3"    → 1 John 2, verses 1–3
        "Psalm 23"        → Psalms 23, verse 1 (chapter only)

    Returns None when the book or the shape is not recognised.
    """
    if not ref or not isinstance(ref, str):
        return None

    trimmed = ref.strip()
    match = _VERSE_PATTERN.match(trimmed)

    if not match:
        chapter_match = _CHAPTER_PATTERN.match(trimmed)
        if not chapter_match:
            return None
        book = _lookup_book(chapter_match.group(1), allow_prefix=False)
        if book is None:
            return None
        return ParsedReference(book=book, chapter=int(chapter_match.group(2)), verse_start=1)

    book = _lookup_book(match.group(1), allow_prefix=True)
    if book is None:
        return None

    return ParsedReference(
        book=book,
        chapter=int(match.group(2)),
        verse_start=int(match.group(3)),
        verse_end=int(match.group(4)) if match.group(4) else None,
    )


def normalize_reference(ref: str) -> str | None:
    """Render a reference in canonical form, e.g. "Jhn 3:16" → "John 3:16"."""
    parsed = parse_reference(ref)
    if parsed is None:
        return None
    if parsed.verse_end:
        return f"{parsed.book} {parsed.chapter}:{parsed.verse_start}-{parsed.verse_end}"
    return f"{parsed.book} {parsed.chapter}:{parsed.verse_start}"


def is_same_passage(ref1: str, ref2: str) -> bool:
    """True when both references point at the same book and chapter."""
    a, b = parse_reference(ref1), parse_reference(ref2)
    if a is None or b is None:
        return False
    return a.book == b.book and a.chapter == b.chapter


def is_same_verse(ref1: str, ref2: str) -> bool:
    """True when both references share a chapter and their verse spans overlap."""
    a, b = parse_reference(ref1), parse_reference(ref2)
    if a is None or b is None:
        return False
    if a.book != b.book or a.chapter != b.chapter:
        return False

    end_a = a.verse_end or a.verse_start
    end_b = b.verse_end or b.verse_start
    return a.verse_start <= end_b and b.verse_start <= end_a
