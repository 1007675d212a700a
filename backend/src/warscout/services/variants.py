from __future__ import annotations

import logging
from itertools import combinations
from typing import Iterable, Mapping, Sequence

from .models import CounterEntry, VariantResolution

logger = logging.getLogger("warscout.variants")

# Characters whose presence changes which counters work on an otherwise fixed team.
DEFAULT_TEAM_MODIFIERS: dict[str, str] = {
    "ODIN": "odin",
    "SUPERSKRULL": "superskrull",
    "MEPHISTO": "mephisto",
    "DORMAMMU": "dormammu",
    "COSMICGHOSTRIDER": "cosmicghostrider",
    "PROFESSORX": "xavier",
    "PROFESSORXAVIER": "xavier",
    "TIGRA": "tigra",
    "MOCKINGBIRD": "tigra",
    "RONIN": "tigra",
    "FRANKLINRICHARDS": "franklin",
    "KNULL": "knull",
    "ARES": "ares",
    "BLACKKNIGHT": "blackknight",
    "DOOM": "doom",
    "KANG": "kang",
    "KANGTHECONQUEROR": "kang",
    "CAPTAINBRITAIN": "captainbritain",
    "APOCALYPSE": "apocalypse",
    "PHOENIXFORCE": "phoenixforce",
    "PHOENIX": "phoenixforce",
    "JEANGREY": "phoenixforce",
    "JEANGREY_PHOENIX": "phoenixforce",
}


def compose_variant_id(base_id: str, modifiers: Iterable[str]) -> str:
    """Canonical variant id: base id plus sorted modifier tokens, "_"-joined."""
    tokens = sorted({str(token).strip() for token in modifiers if str(token).strip()})
    if not tokens:
        return base_id
    return "_".join([base_id, *tokens])


def detect_modifiers(
    char_ids: Iterable[str | None],
    rules: Mapping[str, str] | None = None,
) -> list[str]:
    table = DEFAULT_TEAM_MODIFIERS if rules is None else rules
    present = {str(cid or "").strip().upper() for cid in char_ids}
    found = {token for char_id, token in table.items() if char_id.upper() in present}
    return sorted(found)


def variant_candidates(base_id: str, modifiers: Sequence[str]) -> list[str]:
    """Most specific first: all modifiers, pairs, singles, then the base team."""
    tokens = sorted(set(modifiers))
    ordered: list[str] = []
    if tokens:
        ordered.append(compose_variant_id(base_id, tokens))
        if len(tokens) >= 2:
            for pair in combinations(tokens, 2):
                ordered.append(compose_variant_id(base_id, pair))
        for token in tokens:
            ordered.append(compose_variant_id(base_id, [token]))
    ordered.append(base_id)

    out: list[str] = []
    seen: set[str] = set()
    for candidate in ordered:
        if candidate in seen:
            continue
        seen.add(candidate)
        out.append(candidate)
    return out


def resolve_variant(
    base_id: str,
    char_ids: Iterable[str | None],
    counters: Mapping[str, Sequence[CounterEntry]],
    rules: Mapping[str, str] | None = None,
) -> VariantResolution:
    modifiers = detect_modifiers(char_ids, rules)
    candidates = variant_candidates(base_id, modifiers)
    logger.debug("variant candidates for %s: %s", base_id, candidates)

    for candidate in candidates:
        entries = counters.get(candidate) or ()
        if entries:
            return VariantResolution(
                base_id=base_id,
                variant_id=candidate,
                modifiers=tuple(modifiers),
                counters=tuple(entries),
            )

    logger.info("no counters for %s or its variants %s", base_id, candidates)
    return VariantResolution(base_id=base_id, variant_id=base_id, modifiers=tuple(modifiers), counters=())


def variant_display_name(base_name: str, base_id: str, variant_id: str) -> str:
    if variant_id == base_id or not variant_id.startswith(base_id + "_"):
        return base_name
    tokens = variant_id[len(base_id) + 1 :].split("_")
    labels = " + ".join(token[:1].upper() + token[1:] for token in tokens if token)
    return f"{base_name} + {labels}" if labels else base_name
