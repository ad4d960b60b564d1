"""Static per-domain policy tables for vintage item identification.

# ─── PURPOSE (Junior Developer Guide) ──────────────────────────────────
#
# This module contains curated, hand-coded knowledge about how each
# specialist domain (furniture, silver, watches, ...) behaves in the
# pipeline and in interactive sessions:
#
#   - which stage messages / progress bands the stream reports,
#   - the confidence ceiling a domain can honestly reach from photos,
#   - how free-text domain labels from the model map onto the 15 experts,
#   - which photo requests and quick questions suit each domain,
#   - which domains get which follow-up information needs.
#
# All functions are **pure** (no side effects, no I/O).  Tables are built
# once at module-load time and accessed via dict/set lookups.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from src.models.analysis import DomainExpert, StageName
from src.models.session import NeedType


# ═════════════════════════════════════════════════════════════════════════
# 1. STAGE MESSAGES AND PROGRESS BANDS
# ═════════════════════════════════════════════════════════════════════════
# (start message, complete message) per stage.

STAGE_MESSAGES: dict[StageName, tuple[str, str]] = {
    StageName.TRIAGE: ("Identifying item category...", "Category identified"),
    StageName.EVIDENCE: ("Examining maker marks and details...", "Evidence extracted"),
    StageName.IDENTIFICATION: (
        "Matching against expert knowledge base...",
        "Identification candidates found",
    ),
    StageName.SYNTHESIS: ("Generating comprehensive analysis...", "Analysis complete"),
}

# (progress at stage:start, progress at stage:complete).  Bands are
# contiguous so progress never decreases across a run.
STAGE_PROGRESS: dict[StageName, tuple[float, float]] = {
    StageName.TRIAGE: (5.0, 20.0),
    StageName.EVIDENCE: (20.0, 45.0),
    StageName.IDENTIFICATION: (45.0, 70.0),
    StageName.SYNTHESIS: (70.0, 95.0),
}

STAGE_ORDER: tuple[StageName, ...] = (
    StageName.TRIAGE,
    StageName.EVIDENCE,
    StageName.IDENTIFICATION,
    StageName.SYNTHESIS,
)


# ═════════════════════════════════════════════════════════════════════════
# 2. CONFIDENCE CEILINGS
# ═════════════════════════════════════════════════════════════════════════
# The highest overall confidence a photo-only analysis may report for a
# domain.  Domains where reproductions are common or where marks are tiny
# (watches, jewelry, silver) top out lower than furniture or books.
# Overridable per deploy via config.yaml ``pipeline.domain_ceilings``.

DOMAIN_CONFIDENCE_CEILINGS: dict[DomainExpert, float] = {
    DomainExpert.FURNITURE: 0.95,
    DomainExpert.CERAMICS: 0.92,
    DomainExpert.GLASS: 0.92,
    DomainExpert.SILVER: 0.90,
    DomainExpert.JEWELRY: 0.88,
    DomainExpert.WATCHES: 0.88,
    DomainExpert.ART: 0.90,
    DomainExpert.TEXTILES: 0.90,
    DomainExpert.TOYS: 0.95,
    DomainExpert.BOOKS: 0.95,
    DomainExpert.TOOLS: 0.95,
    DomainExpert.LIGHTING: 0.92,
    DomainExpert.ELECTRONICS: 0.95,
    DomainExpert.VEHICLES: 0.90,
    DomainExpert.GENERAL: 0.85,
}


def confidence_ceiling(
    domain: DomainExpert, overrides: dict[str, float] | None = None
) -> float:
    """Return the confidence ceiling for *domain*, honouring config overrides."""
    if overrides and domain.value in overrides:
        return float(overrides[domain.value])
    return DOMAIN_CONFIDENCE_CEILINGS.get(domain, DOMAIN_CONFIDENCE_CEILINGS[DomainExpert.GENERAL])


# ═════════════════════════════════════════════════════════════════════════
# 3. DOMAIN LABEL REPAIR
# ═════════════════════════════════════════════════════════════════════════
# Models routinely answer with a near-miss label.  These are mapped before
# falling back to fuzzy matching and finally to GENERAL.

DOMAIN_ALIASES: dict[str, DomainExpert] = {
    "architecture": DomainExpert.ART,
    "photography": DomainExpert.ART,
    "photograph": DomainExpert.ART,
    "photos": DomainExpert.ART,
    "painting": DomainExpert.ART,
    "prints": DomainExpert.ART,
    "pottery": DomainExpert.CERAMICS,
    "porcelain": DomainExpert.CERAMICS,
    "clocks": DomainExpert.WATCHES,
    "rugs": DomainExpert.TEXTILES,
    "lamps": DomainExpert.LIGHTING,
    "music": DomainExpert.GENERAL,
    "records": DomainExpert.GENERAL,
    "collectibles": DomainExpert.GENERAL,
    "memorabilia": DomainExpert.GENERAL,
    "unknown": DomainExpert.GENERAL,
}


# ═════════════════════════════════════════════════════════════════════════
# 4. INFORMATION-NEED DOMAIN SETS
# ═════════════════════════════════════════════════════════════════════════

MARKS_CRITICAL_DOMAINS: frozenset[DomainExpert] = frozenset(
    {DomainExpert.SILVER, DomainExpert.JEWELRY}
)
UNDERSIDE_DOMAINS: frozenset[DomainExpert] = frozenset(
    {
        DomainExpert.FURNITURE,
        DomainExpert.CERAMICS,
        DomainExpert.GLASS,
        DomainExpert.SILVER,
        DomainExpert.TOYS,
        DomainExpert.LIGHTING,
    }
)
BACK_DOMAINS: frozenset[DomainExpert] = frozenset(
    {DomainExpert.ART, DomainExpert.FURNITURE, DomainExpert.TEXTILES}
)
MEASUREMENT_DOMAINS: frozenset[DomainExpert] = frozenset(
    {DomainExpert.FURNITURE, DomainExpert.TEXTILES, DomainExpert.CERAMICS}
)
HIGH_RISK_DOMAINS: frozenset[DomainExpert] = frozenset(
    {
        DomainExpert.WATCHES,
        DomainExpert.JEWELRY,
        DomainExpert.SILVER,
        DomainExpert.ART,
        DomainExpert.CERAMICS,
    }
)


# ═════════════════════════════════════════════════════════════════════════
# 5. PHOTO REQUEST WORDING
# ═════════════════════════════════════════════════════════════════════════

DOMAIN_PHOTO_REQUESTS: dict[DomainExpert, dict[NeedType, str]] = {
    DomainExpert.FURNITURE: {
        NeedType.PHOTO_UNDERSIDE: "Please photograph the underside, looking for labels, stamps, or construction details.",
        NeedType.PHOTO_BACK: "A photo of the back showing construction joints and wood would be very helpful.",
        NeedType.PHOTO_DETAIL: "Close-ups of any hardware, joints, or decorative elements would help with dating.",
        NeedType.PHOTO_MARKS: "Look for any maker stamps, labels, or guild marks, often hidden underneath.",
    },
    DomainExpert.CERAMICS: {
        NeedType.PHOTO_UNDERSIDE: "The base/foot rim is crucial - please photograph the bottom showing any marks.",
        NeedType.PHOTO_MARKS: "Close-up of any pottery marks, signatures, or impressed stamps.",
        NeedType.PHOTO_DETAIL: "A detail shot of the glaze quality and any decoration would help.",
    },
    DomainExpert.GLASS: {
        NeedType.PHOTO_UNDERSIDE: "Please photograph the base showing the pontil mark or any signatures.",
        NeedType.PHOTO_DETAIL: "A close-up showing glass quality, bubbles, or color variations.",
        NeedType.PHOTO_MARKS: "Any etched or acid-stamped signatures, often on the base.",
    },
    DomainExpert.SILVER: {
        NeedType.PHOTO_MARKS: "Hallmarks are essential - please photograph all visible marks clearly.",
        NeedType.PHOTO_DETAIL: "Close-up of construction details, especially joins and edges.",
        NeedType.PHOTO_UNDERSIDE: "Base showing any additional marks or construction quality.",
    },
    DomainExpert.JEWELRY: {
        NeedType.PHOTO_MARKS: "Please photograph any hallmarks, maker marks, or stamps (often inside bands).",
        NeedType.PHOTO_DETAIL: "Close-up of gemstone settings and metalwork quality.",
        NeedType.PHOTO_BACK: "The reverse/back of the piece showing construction.",
    },
    DomainExpert.WATCHES: {
        NeedType.PHOTO_MARKS: "Serial numbers on the case back are crucial for authentication.",
        NeedType.PHOTO_DETAIL: "Close-up of the dial showing printing quality and lume application.",
        NeedType.PHOTO_BACK: "Case back engravings and serial/model numbers.",
    },
    DomainExpert.ART: {
        NeedType.PHOTO_BACK: "The reverse of the artwork showing labels, stamps, or gallery marks.",
        NeedType.PHOTO_MARKS: "Any signatures, dates, or edition numbers.",
        NeedType.PHOTO_DETAIL: "Close-up showing brushwork, print quality, or medium characteristics.",
    },
    DomainExpert.TEXTILES: {
        NeedType.PHOTO_BACK: "The reverse side shows weave structure and construction.",
        NeedType.PHOTO_DETAIL: "Close-up of weave, stitching, or fiber quality.",
        NeedType.PHOTO_MARKS: "Any labels, selvedge marks, or maker identifications.",
    },
    DomainExpert.TOYS: {
        NeedType.PHOTO_MARKS: "Manufacturer marks, typically on the base or underside.",
        NeedType.PHOTO_DETAIL: "Close-up of paint, mechanism, or construction details.",
        NeedType.PHOTO_UNDERSIDE: "Base showing manufacturer info and country of origin.",
    },
    DomainExpert.BOOKS: {
        NeedType.PHOTO_MARKS: "Copyright page and any bookplates or signatures.",
        NeedType.PHOTO_DETAIL: "Condition of binding, gilding, and pages.",
        NeedType.PHOTO_CONTEXT: "Full view showing dust jacket condition if applicable.",
    },
    DomainExpert.TOOLS: {
        NeedType.PHOTO_MARKS: "Maker marks, patent dates, or manufacturer stamps.",
        NeedType.PHOTO_DETAIL: "Close-up of construction quality and materials.",
    },
    DomainExpert.LIGHTING: {
        NeedType.PHOTO_MARKS: "Base stamps, tags, or labels identifying the maker.",
        NeedType.PHOTO_DETAIL: "Glass or shade quality, soldering on leaded glass.",
        NeedType.PHOTO_UNDERSIDE: "Base showing maker stamps (especially important for Tiffany).",
    },
    DomainExpert.ELECTRONICS: {
        NeedType.PHOTO_MARKS: "Model numbers, serial numbers, and manufacturer info.",
        NeedType.PHOTO_DETAIL: "Condition and originality of components.",
        NeedType.PHOTO_BACK: "Internal construction if accessible.",
    },
    DomainExpert.VEHICLES: {
        NeedType.PHOTO_MARKS: "VIN, body tags, engine stamps.",
        NeedType.PHOTO_DETAIL: "Condition of key components, matching numbers.",
    },
    DomainExpert.GENERAL: {
        NeedType.PHOTO_MARKS: "Any visible marks, stamps, or labels.",
        NeedType.PHOTO_DETAIL: "Close-ups of construction quality and materials.",
        NeedType.PHOTO_UNDERSIDE: "Bottom or base of the item.",
    },
}


def photo_request(domain: DomainExpert, need_type: NeedType, fallback: str) -> str:
    """Domain-specific wording for a photo need, or *fallback*."""
    return DOMAIN_PHOTO_REQUESTS.get(domain, {}).get(need_type, fallback)


# ═════════════════════════════════════════════════════════════════════════
# 6. QUICK QUESTIONS
# ═════════════════════════════════════════════════════════════════════════

QUICK_QUESTIONS: dict[DomainExpert, list[str]] = {
    DomainExpert.FURNITURE: [
        "Do you see any labels or stamps when you look underneath?",
        "Are there any dovetail joints visible in the drawers?",
    ],
    DomainExpert.CERAMICS: [
        "What marks do you see on the bottom?",
        "Does it feel heavy for its size?",
    ],
    DomainExpert.GLASS: [
        "Can you see a pontil mark on the base?",
        "Does the glass have any bubbles or imperfections?",
    ],
    DomainExpert.SILVER: [
        "What hallmarks can you identify?",
        'Is it marked "sterling" or just "silver"?',
    ],
    DomainExpert.JEWELRY: [
        "Are there any stamps inside the band?",
        "Is the clasp original?",
    ],
    DomainExpert.WATCHES: [
        "What is the serial number on the case back?",
        "Does the movement appear original?",
    ],
    DomainExpert.ART: [
        "Are there any labels on the back?",
        "Is it signed? Where?",
    ],
}

_DEFAULT_QUICK_QUESTIONS: list[str] = [
    "Are there any marks or labels you can see?",
    "Do you know the history of this item?",
]


def quick_questions_for(domain: DomainExpert) -> list[str]:
    """Canned follow-up prompts for *domain* (generic ones when none are curated)."""
    return list(QUICK_QUESTIONS.get(domain, _DEFAULT_QUICK_QUESTIONS))
