"""Validate-then-filter decoding of oracle responses."""

from dataclasses import dataclass, field
from typing import Any, Generic, List, Type, TypeVar

from pydantic import BaseModel, ValidationError

from k8s_recommender.utils.exceptions import OracleMalformedOutput

T = TypeVar("T", bound=BaseModel)


@dataclass
class DecodedProposal(Generic[T]):
    items: List[T] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)


def decode_items(raw: Any, list_key: str, item_model: Type[T], template_id: str) -> DecodedProposal[T]:
    """
    Decode ``raw[list_key]`` into ``item_model`` instances.

    Items failing validation are dropped and described in ``rejected``.
    The response as a whole is malformed (and worth a retry) when it is not
    an object holding a list, or when every item of a non-empty list is
    rejected.
    """
    if not isinstance(raw, dict):
        raise OracleMalformedOutput(f"Expected a JSON object, got {type(raw).__name__}", template_id, raw)
    values = raw.get(list_key, [])
    if values is None:
        values = []
    if not isinstance(values, list):
        raise OracleMalformedOutput(f"Expected '{list_key}' to be a list", template_id, raw)

    decoded: DecodedProposal[T] = DecodedProposal()
    for position, value in enumerate(values):
        try:
            decoded.items.append(item_model.model_validate(value))
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'item'}: {err['msg']}" for err in e.errors()
            )
            decoded.rejected.append(f"{list_key}[{position}]: {problems}")

    if values and not decoded.items:
        raise OracleMalformedOutput(
            f"Every item in '{list_key}' failed validation",
            template_id,
            raw,
        )
    return decoded
