"""
Submission validator builder.

Turns a form's stored field definitions into a Pydantic model at request time.
Each field type maps to one rule; the model is keyed by field name (via
aliases, so any stored name works as a payload key).

    model = build_validator(form.fields)
    data = validate_submission(form.fields, payload)   # raises SubmissionValidationError
"""
import math
import re
from typing import Annotated, Any, Callable, Dict, Iterable, List, Optional

from fastapi import status
from pydantic import AfterValidator, ConfigDict, EmailStr, Field as PydanticField, PlainValidator, ValidationError, create_model
from pydantic_core import PydanticCustomError

from formhub.core.errors import ApiError
from formhub.core.logging import submissions_logger
from formhub.db.enums import FieldType, UnknownFieldPolicy


class SubmissionValidationError(ApiError):
    """A payload did not satisfy the form's fields. Always a client error."""

    def __init__(self, errors: List[dict]):
        super().__init__(
            "Validation failed",
            status.HTTP_400_BAD_REQUEST,
            "validation_error",
            details=errors,
        )
        self.errors = errors

    @property
    def fields(self) -> List[str]:
        return [e["field"] for e in self.errors]


def option_values(options: Optional[Iterable[Any]]) -> List[Any]:
    """Options are stored either as plain values or as {value, label} objects."""
    values = []
    for option in options or []:
        if isinstance(option, dict):
            if "value" in option:
                values.append(option["value"])
        else:
            values.append(option)
    return values


def _coerce_number(value: Any):
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise PydanticCustomError("number_type", "Input should be a finite number")
        return value
    if isinstance(value, str):
        text = value.strip()
        if text:
            try:
                return int(text)
            except ValueError:
                pass
            try:
                number = float(text)
            except ValueError:
                pass
            else:
                if math.isfinite(number):
                    return number
    raise PydanticCustomError("number_type", "Input should be a number")


def _one_of(values: List[Any]) -> Callable[[Any], Any]:
    expected = ", ".join(repr(v) for v in values) or "(no options)"

    def check(value: Any) -> Any:
        # compare type as well so 1 does not match "1" and True does not match 1
        for allowed in values:
            if type(allowed) is type(value) and allowed == value:
                return value
        raise PydanticCustomError("enum", "Input should be one of: {expected}", {"expected": expected})

    return check


def _matches(pattern: "re.Pattern[str]") -> Callable[[Any], Any]:
    def check(value: Any) -> Any:
        if pattern.search(str(value)) is None:
            raise PydanticCustomError(
                "pattern_mismatch",
                "Value does not match the required pattern",
            )
        return value

    return check


def _misconfigured(field_name: str) -> Callable[[Any], Any]:
    def check(value: Any) -> Any:
        raise PydanticCustomError(
            "pattern_invalid",
            "Field '{field}' has an invalid validation pattern",
            {"field": field_name},
        )

    return check


def base_rule(field) -> Any:
    """The annotation for a field's declared type."""
    try:
        field_type = FieldType(field.type)
    except ValueError:
        return Any

    if field_type == FieldType.email:
        return EmailStr
    if field_type == FieldType.number:
        return Annotated[Any, PlainValidator(_coerce_number)]
    if field_type in (FieldType.text, FieldType.textarea):
        return str
    if field_type == FieldType.select:
        return Annotated[Any, PlainValidator(_one_of(option_values(field.options)))]
    return Any


def field_rule(field) -> tuple:
    """(annotation, FieldInfo) for one field, including the optional and regex wrappers."""
    annotation = base_rule(field)

    if field.validation_regex:
        try:
            pattern = re.compile(field.validation_regex)
        except re.error as e:
            # Stored pattern is broken: reject every submission, present or not
            submissions_logger.warning(
                "Invalid validation regex, rejecting submissions",
                field=field.name,
                pattern=field.validation_regex,
                reason=str(e),
            )
            annotation = Annotated[Any, PlainValidator(_misconfigured(field.name))]
            return annotation, PydanticField(None, alias=field.name, validate_default=True)
        annotation = Annotated[annotation, AfterValidator(_matches(pattern))]

    if field.required:
        return annotation, PydanticField(..., alias=field.name)
    return Optional[annotation], PydanticField(None, alias=field.name)


_EXTRA_BY_POLICY = {
    UnknownFieldPolicy.ignore: "ignore",
    UnknownFieldPolicy.reject: "forbid",
    UnknownFieldPolicy.register: "allow",
}


def build_validator(fields, unknown_fields: UnknownFieldPolicy = UnknownFieldPolicy.ignore) -> type:
    """
    Build a Pydantic model for a submission payload.

    Fields keep their stored order. When names repeat, the first definition wins.
    """
    definitions: Dict[str, tuple] = {}
    seen = set()
    for index, field in enumerate(fields):
        if field.name in seen:
            continue
        seen.add(field.name)
        definitions[f"field_{index}"] = field_rule(field)

    config = ConfigDict(
        extra=_EXTRA_BY_POLICY[UnknownFieldPolicy(unknown_fields)],
        populate_by_name=False,
    )
    return create_model("SubmissionPayload", __config__=config, **definitions)


def _format_errors(exc: ValidationError) -> List[dict]:
    errors = []
    for err in exc.errors():
        loc = err.get("loc") or ()
        errors.append({
            "field": str(loc[0]) if loc else "",
            "message": err.get("msg", "Invalid value"),
            "type": err.get("type", "value_error"),
        })
    return errors


def validate_submission(
    fields,
    payload: Any,
    unknown_fields: UnknownFieldPolicy = UnknownFieldPolicy.ignore,
) -> Dict[str, Any]:
    """
    Validate a payload and return the normalised data to store.

    Only supplied fields are returned (absent optional fields are left out);
    unknown keys are included only under the register policy. Those keys become
    optional text fields, so their values must be strings or null.
    """
    if not isinstance(payload, dict):
        raise SubmissionValidationError([{
            "field": "",
            "message": "Submission payload must be a JSON object",
            "type": "model_type",
        }])

    policy = UnknownFieldPolicy(unknown_fields)
    model = build_validator(fields, policy)
    unregistrable = _unregistrable(fields, payload) if policy == UnknownFieldPolicy.register else []
    try:
        instance = model.model_validate(payload)
    except ValidationError as e:
        raise SubmissionValidationError(_format_errors(e) + unregistrable)
    if unregistrable:
        raise SubmissionValidationError(unregistrable)

    return instance.model_dump(mode="json", by_alias=True, exclude_unset=True)


def unknown_keys(fields, payload: Dict[str, Any]) -> List[str]:
    """Payload keys that match no declared field, in payload order."""
    names = {f.name for f in fields}
    return [key for key in payload if key not in names]


def _unregistrable(fields, payload: Dict[str, Any]) -> List[dict]:
    return [
        {"field": key, "message": "Input should be a valid string", "type": "string_type"}
        for key in unknown_keys(fields, payload)
        if payload[key] is not None and not isinstance(payload[key], str)
    ]
