from numbers import Real
from typing import Any, List, Mapping

from .normalize import normalize_industry, normalize_need


def _is_number(v: Any) -> bool:
    return isinstance(v, Real) and not isinstance(v, bool)


def validate_query(entity: Any) -> List[str]:
    """
    Returns hard errors for a query entity. Empty list means usable.

    Only an absent or non-mapping entity is fatal; bad fields are reported
    by ``query_warnings`` and degrade to a neutral encoding.
    """
    if entity is None:
        return ["Query entity is required"]
    if not isinstance(entity, Mapping):
        return [f"Query entity must be a mapping, got {type(entity).__name__}"]
    return []


def query_warnings(entity: Mapping[str, Any]) -> List[str]:
    """Fields that will be ignored or neutralized by the feature encoder."""
    warnings: List[str] = []

    industry = entity.get("industry")
    if industry is not None and normalize_industry(industry) is None:
        warnings.append(f"Unknown industry {industry!r}; using neutral encoding")

    scale = entity.get("scale")
    if scale is not None and not (_is_number(scale) and scale >= 0):
        warnings.append("Field 'scale' must be a non-negative number; ignored")

    needs = entity.get("needs")
    if needs is not None:
        if not isinstance(needs, (list, tuple)):
            warnings.append("Field 'needs' must be a list of tags; ignored")
        else:
            unknown = [n for n in needs if normalize_need(n) is None]
            if unknown:
                warnings.append(f"Unmatched need tags ignored: {unknown}")

    return warnings


def validate_candidate(record: Any) -> List[str]:
    if not isinstance(record, Mapping):
        return ["Candidate must be a mapping"]
    cid = record.get("id")
    if cid is None or (isinstance(cid, str) and cid.strip() == ""):
        return ["Candidate is missing an 'id'"]
    return []


def validate_query_vector(vector: Any) -> List[str]:
    if vector is None:
        return ["Query vector is required"]
    if isinstance(vector, (str, bytes)) or not hasattr(vector, "__len__"):
        return ["Query vector must be a sequence of numbers"]
    if len(vector) == 0:
        return ["Query vector must not be empty"]
    if not all(_is_number(v) for v in vector):
        return ["Query vector must contain only numbers"]
    return []


def validate_options(shots: Any, parallelism: Any, limit: Any, timeout: Any) -> List[str]:
    errors: List[str] = []
    for name, value in (("shots", shots), ("parallelism", parallelism), ("limit", limit)):
        if not isinstance(value, int) or isinstance(value, bool) or value < 1:
            errors.append(f"Option '{name}' must be a positive integer")
    if timeout is not None and not (_is_number(timeout) and timeout > 0):
        errors.append("Option 'timeout' must be a positive number of seconds")
    return errors
