"""Group name generation.

Format tokens (settings.group_name_format):
  {cluster}    → cluster abbreviation, up to 3 letters
  {season}     → season abbreviation (W, SP, SU, A, F, D, X, H, T, ...)
  {yy}         → two-digit year
  {variety}    → rice variety abbreviation, up to 3 letters
  {seq:N}      → zero-padded group sequence, N digits, continues after groups
                 already committed for the same cluster / season / year

Default format:
  {cluster}-{season}{yy}-{variety}-G{seq:2}   e.g. CLS-W24-JAS-G01
"""

import re

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.group import Group

UNKNOWN = "UNK"

# Phrases first so "dong xuan" wins over "dong"
SEASON_ABBREVIATIONS = {
    "winter spring": "WS",
    "summer autumn": "SA",
    "dong xuan": "DX",
    "he thu": "HT",
    "thu dong": "TD",
    "mua dong": "MD",
    "mua xuan": "MX",
    "mua he": "MH",
    "mua thu": "MT",
    "winter": "W",
    "spring": "SP",
    "summer": "SU",
    "autumn": "A",
    "fall": "F",
    "dry": "D",
    "wet": "WE",
    "dong": "D",
    "xuan": "X",
    "he": "H",
    "thu": "T",
}

_SEPARATORS = re.compile(r"[\s\-_]+")


def abbreviate(text: str | None, max_length: int = 3) -> str:
    """Initials for multi-word names, leading letters otherwise."""
    if not text or not text.strip():
        return UNKNOWN
    words = [w for w in _SEPARATORS.split(text.strip()) if w]
    if len(words) > 1:
        return "".join(w[0] for w in words)[:max_length].upper()
    return words[0][:max_length].upper()


def season_abbreviation(season_name: str | None) -> str:
    if not season_name or not season_name.strip():
        return UNKNOWN
    normalized = " ".join(_SEPARATORS.split(season_name.strip().lower()))
    for phrase, abbr in SEASON_ABBREVIATIONS.items():
        if re.search(rf"\b{re.escape(phrase)}\b", normalized):
            return abbr
    return abbreviate(season_name, 2)


def format_group_name(
    cluster_name: str | None,
    season_name: str | None,
    year: int,
    variety_name: str | None,
    sequence: int,
    fmt: str | None = None,
) -> str:
    fmt = fmt or settings.group_name_format
    seq_match = re.search(r"\{seq:(\d+)\}", fmt)
    seq_width = int(seq_match.group(1)) if seq_match else 2

    name = (
        fmt.replace("{cluster}", abbreviate(cluster_name))
        .replace("{season}", season_abbreviation(season_name))
        .replace("{yy}", f"{year % 100:02d}")
        .replace("{variety}", abbreviate(variety_name))
    )
    return re.sub(r"\{seq:\d+\}", f"{sequence:0{seq_width}d}", name)


async def count_existing_groups(
    db: AsyncSession, cluster_id: str, season_id: str, year: int
) -> int:
    """Groups already committed for this cluster / season / year."""
    result = await db.execute(
        select(func.count(Group.id)).where(
            Group.cluster_id == cluster_id,
            Group.season_id == season_id,
            Group.year == year,
        )
    )
    return result.scalar() or 0
