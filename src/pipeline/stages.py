"""Stage prompts, prior-context assembly and payload repair.

# ─── HOW A STAGE TALKS TO THE MODEL (Junior Developer Guide) ──────────
#
#   build_stage_prompt()  ──→ StagePrompt (system + user text)
#   build_prior_context() ──→ dict of everything earlier stages learned
#                              plus user-supplied evidence
#   client.infer(...)     ──→ raw dict (already JSON-repaired)
#   parse_stage_payload() ──→ (typed payload, defaulted_fields)
#
# Vision models are sloppy with enums and numbers.  parse_stage_payload()
# never trusts a field as-is:
#   - camelCase keys are folded to snake_case ("domainExpert" → "domain")
#   - enum labels go through alias tables and a fuzzy match before
#     falling back ("photography" → art, "antiquey" → antique,
#     unknown category → vintage, unknown quality tier → mid)
#   - confidences are clamped (85 → 0.85)
#   - prices are coerced from "$1,250" strings and humanised
#   - any field that still fails pydantic validation is dropped back to
#     its typed default and reported in ``defaulted_fields``
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from src.config.domain_policy import DOMAIN_ALIASES
from src.interfaces.vision_client import StagePrompt
from src.models.analysis import (
    AnalysisOutcome,
    AnalysisRequest,
    AuthenticityRisk,
    DealRating,
    DomainExpert,
    ProductCategory,
    QualityTier,
    ResponseType,
    StageName,
)
from src.models.stages import (
    EvidencePayload,
    IdentificationPayload,
    SynthesisPayload,
    TriagePayload,
)
from src.utils.confidence import clamp_confidence
from src.utils.pricing import coerce_price, humanize_price
from src.utils.text_normalizer import fuzzy_match

PAYLOAD_MODELS: dict[StageName, type[BaseModel]] = {
    StageName.TRIAGE: TriagePayload,
    StageName.EVIDENCE: EvidencePayload,
    StageName.IDENTIFICATION: IdentificationPayload,
    StageName.SYNTHESIS: SynthesisPayload,
}

# Keys the model is known to use for fields we name differently.
_FIELD_ALIASES: dict[str, str] = {
    "domain_expert": "domain",
    "all_visible_text": "visible_text",
    "maker_marks": "marks",
    "construction_details": "construction",
    "notable_features": "features",
    "condition": "condition_notes",
    "origin": "origin_region",
    "era": "era_label",
    "candidates": "alternatives",
    "value_min": "estimated_value_min",
    "value_max": "estimated_value_max",
}

_CONFIDENCE_FIELDS = frozenset({
    "confidence",
    "maker_confidence",
    "dating_confidence",
    "authentication_confidence",
    "valuation_confidence",
    "identification_confidence",
})

_LIST_FIELDS = frozenset({
    "visible_text",
    "marks",
    "materials",
    "construction",
    "features",
    "evidence_for",
    "evidence_against",
    "verification_tips",
    "red_flags",
})

_YEAR_FIELDS = frozenset({"period_start", "period_end"})

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")

# What the domain expert should look at first in the evidence stage.
_DOMAIN_FOCUS: dict[DomainExpert, str] = {
    DomainExpert.FURNITURE: (
        "joinery (dovetails, mortise and tenon, dowels), saw and plane marks, "
        "secondary woods, hardware, labels or branded stamps inside drawers"
    ),
    DomainExpert.CERAMICS: (
        "base marks and impressed numbers, glaze type and crazing, foot ring "
        "wear, body colour at unglazed areas, decoration technique"
    ),
    DomainExpert.GLASS: (
        "pontil mark, mould seams, acid-etched or engraved signatures, "
        "colour and iridescence, bubbles and inclusions"
    ),
    DomainExpert.SILVER: (
        "hallmarks (maker, standard, assay office, date letter), sterling or "
        "plate indications, wear on high points, seam and solder work"
    ),
    DomainExpert.JEWELRY: (
        "metal stamps (14K, 750, 925), maker's marks, clasp and setting "
        "construction, stone cut and mounting"
    ),
    DomainExpert.WATCHES: (
        "dial signature and printing quality, case reference and serial "
        "numbers, crown and bracelet markings, movement if visible"
    ),
    DomainExpert.ART: (
        "signature and date, medium and support, canvas weave or paper, "
        "stretcher and back labels, gallery stamps"
    ),
    DomainExpert.TEXTILES: (
        "weave structure, fibre, dyes, knot count for rugs, labels and "
        "selvedge, hand versus machine stitching"
    ),
    DomainExpert.TOYS: (
        "manufacturer stamps, material (tin, cast iron, celluloid, plastic), "
        "patent numbers, paint wear and original boxes"
    ),
    DomainExpert.BOOKS: (
        "title page and copyright page, edition statements, binding, "
        "publisher marks, dust jacket price"
    ),
}


# ---------------------------------------------------------------------------
# Prompt construction
# ---------------------------------------------------------------------------


def build_stage_prompt(
    stage: StageName,
    request: AnalysisRequest,
    triage: TriagePayload | None = None,
    enhancements: list[str] | None = None,
    max_tokens: int = 2000,
) -> StagePrompt:
    """Return the StagePrompt for *stage*.

    ``triage`` must be supplied for every stage after triage; it selects the
    domain expert persona.  ``enhancements`` (learned insights) are only
    used by the synthesis stage.
    """
    if stage == StageName.TRIAGE:
        return StagePrompt(
            stage=stage,
            system_prompt=_TRIAGE_SYSTEM,
            user_prompt=(
                "First, carefully read and transcribe ALL visible text in this "
                "image. Then categorize the item."
            ),
            max_tokens=min(max_tokens, 800),
            temperature=0.1,
        )

    domain = triage.domain if triage else DomainExpert.GENERAL
    item_type = triage.item_type if triage else "item"
    persona = f"You are a world-class {domain.value} expert providing brutally honest analysis."

    if stage == StageName.EVIDENCE:
        focus = _DOMAIN_FOCUS.get(domain, "marks, labels, materials and construction")
        return StagePrompt(
            stage=stage,
            system_prompt=f"{persona}\n\n{_EVIDENCE_SYSTEM}\n\nFOCUS FOR THIS DOMAIN: {focus}.",
            user_prompt=f"Extract every piece of physical evidence from this {item_type}.",
            max_tokens=max_tokens,
            temperature=0.1,
        )

    if stage == StageName.IDENTIFICATION:
        return StagePrompt(
            stage=stage,
            system_prompt=f"{persona}\n\n{_IDENTIFICATION_SYSTEM}",
            user_prompt=(
                f"Identify this {item_type} as precisely as the evidence allows, "
                "with maker, pattern or model, and date range."
            ),
            max_tokens=max_tokens,
            temperature=0.2,
        )

    system = f"{persona}\n\n{_SYNTHESIS_SYSTEM}"
    if request.asking_price is not None:
        system += (
            f"\n\nDEAL ANALYSIS (Asking Price: ${request.asking_price:,}):\n"
            "Rate deal_rating as: exceptional (50%+ below market), good (20-50% "
            "below), fair (within 20%), overpriced.  Explain in deal_explanation."
        )
    else:
        system += "\n\nNo asking price was given: set deal_rating and deal_explanation to null."
    if enhancements:
        system += "\n\nLEARNED INSIGHTS (from previous analyses):\n" + "\n".join(
            f"- {line}" for line in enhancements
        )
    return StagePrompt(
        stage=stage,
        system_prompt=system,
        user_prompt=(
            f"Produce the final analysis of this {item_type}: valuation, "
            "authentication checklist and an honest confidence breakdown."
        ),
        max_tokens=max_tokens,
        temperature=0.2,
    )


def build_prior_context(
    request: AnalysisRequest,
    payloads: dict[StageName, BaseModel],
    prior: AnalysisOutcome | None = None,
) -> dict[str, Any]:
    """Accumulate what earlier stages and the user have contributed.

    Context only ever grows within a run: each stage sees every earlier
    stage's payload, the user's context and all collected evidence.
    """
    context: dict[str, Any] = {
        stage.value: payload.model_dump(mode="json") for stage, payload in payloads.items()
    }
    if request.user_context:
        context["user_context"] = request.user_context
    if request.asking_price is not None:
        context["asking_price_usd"] = request.asking_price
    if request.additional_evidence:
        context["user_evidence"] = [
            {
                "need": r.need_type,
                "kind": r.response_type.value,
                # Photos travel as images; only their position is referenced here.
                "content": (
                    r.content if r.response_type == ResponseType.TEXT else "(see attached photo)"
                ),
            }
            for r in request.additional_evidence
        ]
    if prior is not None:
        context["previous_identification"] = {
            "name": prior.name,
            "maker": prior.maker,
            "era": prior.era_label,
            "confidence": prior.overall_confidence,
        }
    return context


def stage_images(request: AnalysisRequest) -> list[str]:
    """Original images followed by any photos supplied as evidence."""
    return [*request.images, *request.evidence_images]


# ---------------------------------------------------------------------------
# Payload repair
# ---------------------------------------------------------------------------


def default_payload(stage: StageName) -> BaseModel:
    """Typed defaults used when a stage exhausts its retries."""
    return PAYLOAD_MODELS[stage]()


def stage_confidence(stage: StageName, payload: BaseModel) -> float:
    """The confidence a stage reports about its own output."""
    if isinstance(payload, SynthesisPayload):
        return payload.identification_confidence
    return float(getattr(payload, "confidence", 0.0))


def parse_stage_payload(
    stage: StageName,
    raw: dict[str, Any],
    request: AnalysisRequest | None = None,
) -> tuple[BaseModel, list[str]]:
    """Validate *raw* model output into the stage's payload model.

    Returns
    -------
    tuple
        ``(payload, defaulted_fields)`` where ``defaulted_fields`` names
        every field that had to fall back to its typed default.
    """
    model = PAYLOAD_MODELS[stage]
    known = set(model.model_fields)
    defaulted: list[str] = []

    data: dict[str, Any] = {}
    for key, value in raw.items():
        name = _canonical_key(key)
        if name in known and name not in data:
            data[name] = value

    for name in list(data):
        repaired, ok = _repair_field(name, data[name])
        if ok:
            data[name] = repaired
        else:
            del data[name]
            defaulted.append(name)

    if stage == StageName.SYNTHESIS:
        _normalise_value_range(data)
        if request is not None and request.asking_price is None:
            data.pop("deal_rating", None)
            data.pop("deal_explanation", None)

    # Drop whatever pydantic still rejects, one pass per offending field.
    for _ in range(len(known) + 1):
        try:
            payload = model.model_validate(data)
            return payload, defaulted
        except PydanticValidationError as exc:
            bad = {str(err["loc"][0]) for err in exc.errors() if err.get("loc")}
            bad &= set(data)
            if not bad:
                break
            for name in sorted(bad):
                del data[name]
                defaulted.append(name)

    return model(), sorted(known)


def _canonical_key(key: str) -> str:
    snake = _CAMEL_RE.sub("_", str(key)).lower()
    return _FIELD_ALIASES.get(snake, snake)


def _repair_field(name: str, value: Any) -> tuple[Any, bool]:
    """Return ``(repaired_value, ok)`` for a single field."""
    if name == "category":
        return _repair_enum(value, ProductCategory, {}, ProductCategory.VINTAGE)
    if name == "domain":
        return _repair_enum(value, DomainExpert, DOMAIN_ALIASES, DomainExpert.GENERAL)
    if name == "quality_tier":
        return _repair_enum(value, QualityTier, {}, QualityTier.MID)
    if name == "authenticity_risk":
        return _repair_enum(value, AuthenticityRisk, {}, AuthenticityRisk.MEDIUM)
    if name == "deal_rating":
        if value is None:
            return None, True
        return _repair_enum(value, DealRating, {}, None)
    if name in _CONFIDENCE_FIELDS:
        if value is None:
            return None, False
        repaired = clamp_confidence(value, default=-1.0)
        return (repaired, True) if repaired >= 0.0 else (None, False)
    if name in _LIST_FIELDS:
        if value is None:
            return [], True
        if isinstance(value, str):
            return ([value] if value.strip() else []), True
        if isinstance(value, list):
            return [str(v) for v in value if v is not None and str(v).strip()], True
        return None, False
    if name in _YEAR_FIELDS:
        if value is None:
            return None, True
        year = _coerce_year(value)
        return (year, True) if year is not None else (None, False)
    if name in ("estimated_value_min", "estimated_value_max"):
        if value is None:
            return None, True
        price = coerce_price(value)
        return (humanize_price(price), True) if price is not None else (None, False)
    if name == "alternatives":
        return _repair_alternatives(value), True
    return value, True


def _repair_enum(
    value: Any,
    enum_cls: type,
    aliases: dict[str, Any],
    fallback: Any,
) -> tuple[Any, bool]:
    if isinstance(value, enum_cls):
        return value, True
    label = str(value or "").strip().lower().replace("-", "_").replace(" ", "_")
    values = [member.value for member in enum_cls]
    if label in values:
        return enum_cls(label), True
    if label in aliases:
        return aliases[label], True
    match = fuzzy_match(label, values, threshold=0.85) if label else None
    if match is not None:
        return enum_cls(match[0]), True
    # Unrecognised: the caller drops the field so the payload default
    # (the documented fallback) applies and the field is reported.
    return fallback, False


def _coerce_year(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        year = int(value)
    else:
        found = re.search(r"\d{4}", str(value))
        if not found:
            return None
        year = int(found.group(0))
    return year if 0 < year <= 2100 else None


def _repair_alternatives(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    repaired: list[dict[str, Any]] = []
    for item in value:
        if isinstance(item, str) and item.strip():
            repaired.append({"name": item.strip()})
        elif isinstance(item, dict) and item.get("name"):
            repaired.append(
                {
                    "name": str(item["name"]),
                    "confidence": clamp_confidence(item.get("confidence"), default=0.0),
                    "reason": str(item.get("reason") or ""),
                }
            )
    return repaired[:5]


def _normalise_value_range(data: dict[str, Any]) -> None:
    low = data.get("estimated_value_min")
    high = data.get("estimated_value_max")
    if low is None and high is not None:
        data["estimated_value_min"] = high
    elif high is None and low is not None:
        data["estimated_value_max"] = low
    elif low is not None and high is not None and low > high:
        data["estimated_value_min"], data["estimated_value_max"] = high, low


# ---------------------------------------------------------------------------
# Prompt text
# ---------------------------------------------------------------------------

_TRIAGE_SYSTEM = """\
You are an expert appraiser doing initial triage of an item.

CRITICAL FIRST STEP: carefully examine the image and transcribe ALL visible
text: brand names, model names or numbers, maker's marks, signatures,
stamps, labels, tags and engravings.  This text is essential for accurate
identification.

THEN categorize:
1. category is the AGE category, not the item type.  Exactly one of:
   antique (pre-1920, authentic age or patina), vintage (1920-1990,
   collectible), modern_branded (post-1990 with a visible brand),
   modern_generic (post-1990 with no clear brand, or if uncertain).
2. domain is the specialist who should examine it.  Exactly one of:
   furniture, ceramics, glass, silver, jewelry, watches, art, textiles,
   toys, books, tools, lighting, electronics, vehicles, general.
   Photographs and architecture are "art"; anything else that does not fit
   is "general".
3. quality_tier is one of: museum, high, mid, low, unknown.

Respond with a JSON object:
{
  "category": "antique | vintage | modern_branded | modern_generic",
  "domain": "one of the 15 domains",
  "item_type": "specific description WITH brand/model if visible",
  "estimated_era": "e.g. '1890-1910' or null",
  "quality_tier": "museum | high | mid | low | unknown",
  "confidence": 0.0-1.0,
  "reasoning": "brief explanation, citing any visible text",
  "visible_branding": "exact brand as visible, or null",
  "visible_text": ["every", "piece", "of", "visible", "text"]
}"""

_EVIDENCE_SYSTEM = """\
Your job in this step is ONLY to record physical evidence; do not identify
the item yet.  Use the triage context you are given.

Respond with a JSON object:
{
  "marks": ["each maker's mark, hallmark, signature, label or stamp, transcribed exactly"],
  "materials": ["materials you can see"],
  "construction": ["construction details and techniques"],
  "features": ["distinctive design features"],
  "condition_notes": "condition as observed, including wear, damage, repair or restoration",
  "damage_noted": true or false,
  "confidence": 0.0-1.0 (how clearly the evidence can be read from these photos)
}"""

_IDENTIFICATION_SYSTEM = """\
Using the triage and evidence context, identify the item.

Use PRECISE names: "Roseville Pinecone Jardiniere, Pattern 632-4", not
"Art Pottery Vase"; "Rolex Submariner Reference 5513", not "Vintage Watch".
Include maker, pattern, model or reference whenever identifiable.

Set confidence honestly:
- 0.9+    brand or maker clearly visible and positively identified
- 0.7-0.9 strong identification from style and construction
- 0.5-0.7 reasonable guess with some uncertainty
- <0.5    uncertain, more information needed

Respond with a JSON object:
{
  "name": "full specific name",
  "maker": "manufacturer or null",
  "era_label": "e.g. 'Victorian Era' or '1956-1970'",
  "period_start": 1890,
  "period_end": 1910,
  "style": "design style or movement",
  "origin_region": "country or region of manufacture",
  "alternatives": [{"name": "...", "confidence": 0.0-1.0, "reason": "..."}],
  "maker_confidence": 0.0-1.0,
  "confidence": 0.0-1.0
}"""

_SYNTHESIS_SYSTEM = """\
Combine everything established so far into the final analysis.  Your
description must be about THIS specific item, not generic category text.
Values are whole US dollars for the item as shown.

Respond with a JSON object:
{
  "name": "...", "maker": "... or null", "era_label": "...",
  "period_start": 1890, "period_end": 1910,
  "style": "...", "origin_region": "...",
  "description": "2-4 sentences on what this item is and its condition",
  "historical_context": "2-4 sentences of historical significance",
  "estimated_value_min": 100, "estimated_value_max": 300,
  "evidence_for": ["observations supporting the identification"],
  "evidence_against": ["observations that do not fit"],
  "authenticity_risk": "low | medium | high | very_high",
  "expert_referral_recommended": true or false,
  "expert_referral_reason": "... or null",
  "deal_rating": "exceptional | good | fair | overpriced or null",
  "deal_explanation": "... or null",
  "verification_tips": ["specific checks the owner can make"],
  "red_flags": ["warning signs of reproduction, fake or damage"],
  "identification_confidence": 0.0-1.0,
  "dating_confidence": 0.0-1.0,
  "authentication_confidence": 0.0-1.0,
  "valuation_confidence": 0.0-1.0
}"""

