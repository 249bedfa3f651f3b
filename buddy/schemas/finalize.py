"""Finalize schemas — the extraction contract and the API response."""

from typing import Annotated

from pydantic import BaseModel, BeforeValidator, ConfigDict


# ── Extraction output (model-produced, untrusted) ───────────────────


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


def _scalar_to_str(value):
    """Numbers become strings; containers are a shape error."""
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, int | float):
        return str(value)
    raise ValueError("expected a string")


ScalarText = Annotated[str | None, BeforeValidator(_scalar_to_str)]


def _number_or_none(value):
    """Scores are advisory: anything that is not a number is treated as absent."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return value
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


LooseNumber = Annotated[float | None, BeforeValidator(_number_or_none)]


class ProfileUpdate(_Lenient):
    key: ScalarText = None
    value: ScalarText = None
    importance: LooseNumber = None


class ExtractedEvent(_Lenient):
    title: ScalarText = None
    summary: ScalarText = None
    importance: LooseNumber = None


class RelationshipDelta(_Lenient):
    bond: LooseNumber = None
    trust: LooseNumber = None
    warmth: LooseNumber = None
    repair: LooseNumber = None


class ExtractionResult(_Lenient):
    """Strict JSON the extraction call must return."""

    profile_updates: list[ProfileUpdate] | None = None
    events: list[ExtractedEvent] | None = None
    relationship_delta: RelationshipDelta | None = None


# ── API response ────────────────────────────────────────────────────


class AxisDelta(BaseModel):
    bond: int
    trust: int
    warmth: int
    repair: int


class RelationshipRead(BaseModel):
    bond: float
    trust: float
    warmth: float
    repair: float
    stage: int
    delta: AxisDelta


class FinalizeResponse(BaseModel):
    ok: bool = True
    profile_updates: int
    events_upserted: int
    relationship: RelationshipRead
