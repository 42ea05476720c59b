"""
Machine state value representation.

A persisted snapshot value is either a plain string for simple states
("Requested") or a nested mapping for composite/parallel states:

    {"Services Request": {"Setup Request": "Setup Requested",
                          "Catering Request": "Catering Approved"}}

Both encodings are read through parse_state_value() into a tagged variant,
and everything that inspects state goes through the helpers below.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class SimpleState:
    """Leaf state identified by its display name."""

    name: str


@dataclass(frozen=True)
class CompositeState:
    """Composite state: region name -> nested state value."""

    regions: dict[str, "StateValue"] = field(default_factory=dict)


StateValue = SimpleState | CompositeState


def parse_state_value(raw: Any) -> StateValue:
    """
    Read a wire-format state value (string or nested mapping).

    Args:
        raw: String, mapping, or an already parsed StateValue

    Returns:
        SimpleState or CompositeState

    Raises:
        ValueError: If raw is neither a string nor a mapping
    """
    if isinstance(raw, (SimpleState, CompositeState)):
        return raw
    if isinstance(raw, str):
        return SimpleState(raw)
    if isinstance(raw, dict):
        return CompositeState({str(key): parse_state_value(value) for key, value in raw.items()})
    raise ValueError(f"Unsupported state value: {raw!r}")


def to_wire(value: StateValue) -> str | dict[str, Any]:
    """Encode a StateValue back to its wire format."""
    if isinstance(value, SimpleState):
        return value.name
    return {region: to_wire(child) for region, child in value.regions.items()}


def top_level_name(value: StateValue) -> str:
    """
    Name of the outermost state.

    For a composite value this is its first region key, which is how the
    machine encodes the parallel parent ("Services Request", "Service Closeout").
    """
    if isinstance(value, SimpleState):
        return value.name
    if not value.regions:
        return ""
    return next(iter(value.regions))


def contains_state(value: StateValue, name: str) -> bool:
    """True if name appears anywhere in the value, as a region or a leaf."""
    if isinstance(value, SimpleState):
        return value.name == name
    for region, child in value.regions.items():
        if region == name or contains_state(child, name):
            return True
    return False
