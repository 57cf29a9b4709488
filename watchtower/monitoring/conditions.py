"""
Condition Evaluation

The condition DSL used by alerts: single conditions, AND/OR groups, a
registry of field accessors over normalized probe data, and the evaluator
that compares current (and previous) values against expectations.
"""

from __future__ import annotations

import json
import math
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Callable, Literal, Union
from uuid import uuid4

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from watchtower.monitoring.errors import UnknownFieldError, UnknownOperatorError

logger = structlog.get_logger(__name__)


class ConditionField(str, Enum):
    """Fields a condition can address in normalized probe data."""

    TITLE = "title"
    TEXT = "text"
    HTML = "html"
    STATUS_CODE = "status_code"
    RESPONSE_TIME = "response_time"
    PRICE = "price"
    SPECIFIC_PRICE = "specific_price"
    METRIC = "metric"
    SPECIFIC_METRIC = "specific_metric"
    PERFORMANCE_LOAD_TIME = "performance_load_time"
    PERFORMANCE_FCP = "performance_fcp"
    PERFORMANCE_LCP = "performance_lcp"
    PERFORMANCE_CLS = "performance_cls"
    PERFORMANCE_FID = "performance_fid"
    SEO_TITLE = "seo_title"
    SEO_DESCRIPTION = "seo_description"
    SEO_H1_COUNT = "seo_h1_count"
    SEO_IMAGE_ALT_RATIO = "seo_image_alt_ratio"
    CUSTOM_SELECTOR = "custom_selector"
    ELEMENT_COUNT = "element_count"
    ELEMENT_TEXT = "element_text"
    ELEMENT_ATTRIBUTE = "element_attribute"
    SOCIAL_FOLLOWERS = "social_followers"
    SOCIAL_ENGAGEMENT = "social_engagement"


class ConditionOperator(str, Enum):
    """Comparison operators."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"
    CHANGED = "changed"
    NOT_CHANGED = "not_changed"
    INCREASED = "increased"
    DECREASED = "decreased"
    PERCENTAGE_INCREASE = "percentage_increase"
    PERCENTAGE_DECREASE = "percentage_decrease"
    REGEX_MATCH = "regex_match"
    REGEX_NOT_MATCH = "regex_not_match"


FIELD_DISPLAY_NAMES: dict[str, str] = {
    "title": "Page Title",
    "text": "Page Text",
    "html": "HTML Content",
    "status_code": "Status Code",
    "response_time": "Response Time",
    "price": "Price",
    "specific_price": "Specific Price",
    "metric": "Metric",
    "specific_metric": "Specific Metric",
    "performance_load_time": "Load Time",
    "performance_fcp": "First Contentful Paint",
    "performance_lcp": "Largest Contentful Paint",
    "performance_cls": "Cumulative Layout Shift",
    "performance_fid": "First Input Delay",
    "seo_title": "SEO Title",
    "seo_description": "SEO Description",
    "seo_h1_count": "H1 Tag Count",
    "seo_image_alt_ratio": "Image Alt Text Ratio",
    "custom_selector": "Custom Element",
    "element_count": "Element Count",
    "element_text": "Element Text",
    "element_attribute": "Element Attribute",
    "social_followers": "Social Followers",
    "social_engagement": "Social Engagement",
}

OPERATOR_DISPLAY_NAMES: dict[str, str] = {
    "equals": "equals",
    "not_equals": "does not equal",
    "greater_than": "is greater than",
    "less_than": "is less than",
    "greater_than_or_equal": "is greater than or equal to",
    "less_than_or_equal": "is less than or equal to",
    "contains": "contains",
    "not_contains": "does not contain",
    "starts_with": "starts with",
    "ends_with": "ends with",
    "exists": "exists",
    "not_exists": "does not exist",
    "changed": "has changed",
    "not_changed": "has not changed",
    "increased": "has increased",
    "decreased": "has decreased",
    "percentage_increase": "increased by percentage",
    "percentage_decrease": "decreased by percentage",
    "regex_match": "matches regex",
    "regex_not_match": "does not match regex",
}


# =============================================================================
# DSL models
# =============================================================================


class Condition(BaseModel):
    """A single comparison of one field against an expected value."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    kind: Literal["condition"] = "condition"
    field: str
    operator: str
    value: Any = None

    # Qualifiers
    selector: str | None = None
    attribute: str | None = None
    metric_name: str | None = None
    price_selector: str | None = None
    social_platform: Literal["facebook", "twitter", "instagram", "youtube"] | None = None
    social_metric: str | None = None

    threshold: float | None = None  # Percentage operators
    case_sensitive: bool = False
    regex: str | None = None

    @field_validator("field", "operator", mode="before")
    @classmethod
    def _plain_string(cls, value: Any) -> Any:
        # Enum members hash by name, registries are keyed by value
        if isinstance(value, Enum):
            return value.value
        return value


class ConditionGroup(BaseModel):
    """A boolean AND/OR tree of conditions and nested groups."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    kind: Literal["group"] = "group"
    operator: Literal["AND", "OR"]
    conditions: list[ConditionNode] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _tag_children(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("conditions"), list):
            data = {**data, "conditions": [_tag(item) for item in data["conditions"]]}
        return data


ConditionNode = Annotated[Union[Condition, ConditionGroup], Field(discriminator="kind")]

ConditionGroup.model_rebuild()

ConditionSet = Union[list[Condition], ConditionGroup]


def _is_group_shape(item: dict[str, Any]) -> bool:
    return item.get("operator") in ("AND", "OR") and "conditions" in item


def _tag(item: Any) -> Any:
    """Add the ``kind`` discriminator to untagged dicts."""
    if isinstance(item, dict) and "kind" not in item:
        return {**item, "kind": "group" if _is_group_shape(item) else "condition"}
    return item


def parse_conditions(raw: Any) -> ConditionSet:
    """
    Parse a stored condition set.

    Accepts a JSON string, a list of condition dicts, a group dict, or
    already-built models. Only called at the storage boundary.

    Args:
        raw: Stored representation

    Returns:
        A flat list of conditions or a condition group
    """
    if raw is None or raw == "":
        return []
    if isinstance(raw, str):
        return parse_conditions(json.loads(raw))
    if isinstance(raw, ConditionGroup):
        return raw
    if isinstance(raw, Condition):
        return [raw]
    if isinstance(raw, dict):
        tagged = _tag(raw)
        if tagged["kind"] == "group":
            return ConditionGroup.model_validate(tagged)
        return [Condition.model_validate(tagged)]
    if isinstance(raw, list):
        return [
            item if isinstance(item, Condition) else Condition.model_validate(_tag(item))
            for item in raw
        ]
    raise TypeError(f"Cannot parse conditions from {type(raw).__name__}")


def dump_conditions(conditions: ConditionSet) -> str:
    """Serialize a condition set for storage."""
    if isinstance(conditions, ConditionGroup):
        return conditions.model_dump_json()
    return json.dumps([c.model_dump(mode="json") for c in conditions])


# =============================================================================
# Results
# =============================================================================


class EvaluationResult(BaseModel):
    """Verdict for a single condition."""

    passed: bool
    message: str
    condition_id: str
    field: str
    operator: str
    actual_value: Any = None
    expected_value: Any = None
    details: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None


class GroupEvaluationResult(BaseModel):
    """Verdict for a condition group, with each child's result."""

    passed: bool
    message: str
    group_id: str
    operator: Literal["AND", "OR"]
    results: list[Union[EvaluationResult, GroupEvaluationResult]] = Field(default_factory=list)


GroupEvaluationResult.model_rebuild()


class EvaluationContext(BaseModel):
    """Inputs for evaluating one monitor run."""

    current_data: dict[str, Any]
    previous_data: dict[str, Any] | None = None
    monitor_id: str
    url: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AlertEvaluation(BaseModel):
    """Outcome of evaluating one alert's condition set."""

    results: list[EvaluationResult] = Field(default_factory=list)
    group_results: list[GroupEvaluationResult] = Field(default_factory=list)
    triggered: bool = False

    def to_records(self) -> list[dict[str, Any]]:
        """Serializable form for check records."""
        return [r.model_dump(mode="json") for r in [*self.results, *self.group_results]]


# =============================================================================
# Field accessors
# =============================================================================

Accessor = Callable[[dict[str, Any], Condition], Any]

FIELD_ACCESSORS: dict[str, Accessor] = {}


def _accessor(*fields: ConditionField) -> Callable[[Accessor], Accessor]:
    def register(func: Accessor) -> Accessor:
        for f in fields:
            FIELD_ACCESSORS[f.value] = func
        return func

    return register


def _simple(key: str, default: Any) -> Accessor:
    def get(data: dict[str, Any], condition: Condition) -> Any:
        return data.get(key) or default

    return get


def _nested(section: str, key: str, default: Any) -> Accessor:
    def get(data: dict[str, Any], condition: Condition) -> Any:
        return (data.get(section) or {}).get(key) or default

    return get


FIELD_ACCESSORS.update({
    ConditionField.TITLE.value: _simple("title", ""),
    ConditionField.TEXT.value: _simple("text", ""),
    ConditionField.HTML.value: _simple("html", ""),
    ConditionField.STATUS_CODE.value: _simple("status_code", 0),
    ConditionField.RESPONSE_TIME.value: _simple("response_time", 0),
    ConditionField.PERFORMANCE_LOAD_TIME.value: _nested("performance", "load_time", 0),
    ConditionField.PERFORMANCE_FCP.value: _nested("performance", "first_contentful_paint", 0),
    ConditionField.PERFORMANCE_LCP.value: _nested("performance", "largest_contentful_paint", 0),
    ConditionField.PERFORMANCE_CLS.value: _nested("performance", "cumulative_layout_shift", 0),
    ConditionField.PERFORMANCE_FID.value: _nested("performance", "first_input_delay", 0),
    ConditionField.SEO_TITLE.value: _nested("seo", "title", ""),
    ConditionField.SEO_DESCRIPTION.value: _nested("seo", "meta_description", ""),
})


@_accessor(ConditionField.PRICE)
def _price(data: dict[str, Any], condition: Condition) -> Any:
    prices = data.get("prices") or []
    if not prices:
        return 0
    if not condition.selector:
        return prices[0].get("price")
    match = next((p for p in prices if p.get("selector") == condition.selector), None)
    return (match or {}).get("price") or 0


@_accessor(ConditionField.SPECIFIC_PRICE)
def _specific_price(data: dict[str, Any], condition: Condition) -> Any:
    prices = data.get("prices") or []
    match = next((p for p in prices if p.get("selector") == condition.price_selector), None)
    return (match or {}).get("price") or 0


@_accessor(ConditionField.METRIC, ConditionField.SPECIFIC_METRIC)
def _metric(data: dict[str, Any], condition: Condition) -> Any:
    metrics = data.get("metrics") or []
    match = next((m for m in metrics if m.get("name") == condition.metric_name), None)
    return (match or {}).get("value") or 0


@_accessor(ConditionField.SEO_H1_COUNT)
def _seo_h1_count(data: dict[str, Any], condition: Condition) -> Any:
    return len((data.get("seo") or {}).get("h1_tags") or [])


@_accessor(ConditionField.SEO_IMAGE_ALT_RATIO)
def _seo_image_alt_ratio(data: dict[str, Any], condition: Condition) -> Any:
    seo = data.get("seo")
    if not seo:
        return 0
    return (seo.get("image_alt_tags") or 0) / max(seo.get("total_images") or 0, 1) * 100


def _element(data: dict[str, Any], condition: Condition) -> dict[str, Any]:
    elements = data.get("elements") or {}
    return elements.get(condition.selector or "") or {}


@_accessor(ConditionField.CUSTOM_SELECTOR, ConditionField.ELEMENT_TEXT)
def _element_text(data: dict[str, Any], condition: Condition) -> Any:
    return _element(data, condition).get("text") or ""


@_accessor(ConditionField.ELEMENT_COUNT)
def _element_count(data: dict[str, Any], condition: Condition) -> Any:
    return _element(data, condition).get("count") or 0


@_accessor(ConditionField.ELEMENT_ATTRIBUTE)
def _element_attribute(data: dict[str, Any], condition: Condition) -> Any:
    attributes = _element(data, condition).get("attributes") or {}
    return attributes.get(condition.attribute or "") or ""


def _social_platform(data: dict[str, Any], condition: Condition) -> dict[str, Any] | None:
    social = data.get("social_media")
    if not social or not condition.social_platform:
        return None
    return social.get(condition.social_platform)


@_accessor(ConditionField.SOCIAL_FOLLOWERS)
def _social_followers(data: dict[str, Any], condition: Condition) -> Any:
    platform = _social_platform(data, condition)
    if not platform:
        return 0
    if condition.social_platform in ("twitter", "instagram"):
        return platform.get("followers") or 0
    if condition.social_platform == "youtube":
        return platform.get("subscribers") or 0
    return 0  # Facebook pages expose no follower count


@_accessor(ConditionField.SOCIAL_ENGAGEMENT)
def _social_engagement(data: dict[str, Any], condition: Condition) -> Any:
    platform = _social_platform(data, condition)
    if not platform:
        return 0
    if condition.social_platform == "facebook":
        for key in ("likes", "shares", "comments"):
            if key in platform:
                return platform[key] or 0
        return 0
    if condition.social_platform in ("twitter", "instagram"):
        return platform.get("engagement") or 0
    if condition.social_platform == "youtube":
        return platform.get("views") or 0
    return 0


def extract_value(condition: Condition, data: dict[str, Any]) -> Any:
    """
    Pull a condition's field out of normalized probe data.

    Raises:
        UnknownFieldError: If no accessor is registered for the field
    """
    accessor = FIELD_ACCESSORS.get(condition.field)
    if accessor is None:
        raise UnknownFieldError(condition.field)
    return accessor(data, condition)


# =============================================================================
# Coercion helpers
# =============================================================================

_NON_NUMERIC = re.compile(r"[^\d.\-]")
_NUMERIC_PREFIX = re.compile(r"-?(\d+\.?\d*|\.\d+)")


def to_number(value: Any) -> float:
    """Coerce to a number; strings keep only digits, '.' and '-'. Unparsable is 0."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, float) and math.isnan(value):
        return 0
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        match = _NUMERIC_PREFIX.match(_NON_NUMERIC.sub("", value))
        return float(match.group(0)) if match else 0
    return 0


def to_text(value: Any, case_sensitive: bool = False) -> str:
    """Coerce to a string; falsy values become empty."""
    if not value:
        text = ""
    elif isinstance(value, bool):
        text = "true"
    elif isinstance(value, float) and value.is_integer():
        text = str(int(value))
    else:
        text = str(value)
    return text if case_sensitive else text.lower()


def is_equal(actual: Any, expected: Any, case_sensitive: bool = False) -> bool:
    """Strings compare case-insensitively unless asked; other values strictly."""
    if isinstance(actual, str) and isinstance(expected, str):
        if case_sensitive:
            return actual == expected
        return actual.lower() == expected.lower()
    if isinstance(actual, bool) != isinstance(expected, bool):
        return False
    return actual == expected


def _is_absent(value: Any) -> bool:
    return value is None or value == ""


# =============================================================================
# Evaluator
# =============================================================================


class ConditionEvaluator:
    """
    Evaluates conditions and condition groups against an evaluation context.

    Evaluation is pure: the same condition and data always give the same
    verdict. An error in one condition becomes a failed result for that
    condition only.
    """

    def __init__(self, context: EvaluationContext) -> None:
        self.context = context
        self._operators: dict[str, Callable[[Condition, Any], bool]] = {
            "equals": lambda c, a: is_equal(a, c.value, c.case_sensitive),
            "not_equals": lambda c, a: not is_equal(a, c.value, c.case_sensitive),
            "greater_than": lambda c, a: to_number(a) > to_number(c.value),
            "less_than": lambda c, a: to_number(a) < to_number(c.value),
            "greater_than_or_equal": lambda c, a: to_number(a) >= to_number(c.value),
            "less_than_or_equal": lambda c, a: to_number(a) <= to_number(c.value),
            "contains": lambda c, a: to_text(c.value, c.case_sensitive) in to_text(a, c.case_sensitive),
            "not_contains": lambda c, a: to_text(c.value, c.case_sensitive) not in to_text(a, c.case_sensitive),
            "starts_with": lambda c, a: to_text(a, c.case_sensitive).startswith(to_text(c.value, c.case_sensitive)),
            "ends_with": lambda c, a: to_text(a, c.case_sensitive).endswith(to_text(c.value, c.case_sensitive)),
            "exists": lambda c, a: not _is_absent(a),
            "not_exists": lambda c, a: _is_absent(a),
            "changed": self._has_changed,
            "not_changed": lambda c, a: not self._has_changed(c, a),
            "increased": self._has_increased,
            "decreased": self._has_decreased,
            "percentage_increase": self._has_percentage_increase,
            "percentage_decrease": self._has_percentage_decrease,
            "regex_match": self._regex_match,
            "regex_not_match": self._regex_not_match,
        }

    def evaluate_condition(self, condition: Condition) -> EvaluationResult:
        """Evaluate one condition against the current data."""
        try:
            actual = extract_value(condition, self.context.current_data)
            passed = self._compare(condition, actual)
        except Exception as e:
            logger.warning(
                "Condition evaluation failed",
                condition_id=condition.id,
                field=condition.field,
                operator=condition.operator,
                error=str(e),
            )
            return EvaluationResult(
                passed=False,
                message=f"Error evaluating condition: {e}",
                condition_id=condition.id,
                field=condition.field,
                operator=condition.operator,
                expected_value=condition.value,
                details={"error": str(e)},
                error=str(e),
            )

        return EvaluationResult(
            passed=passed,
            message=self._message(condition, actual, passed),
            condition_id=condition.id,
            field=condition.field,
            operator=condition.operator,
            actual_value=actual,
            expected_value=condition.value,
            details={
                "field": condition.field,
                "operator": condition.operator,
                "expected_value": condition.value,
                "actual_value": actual,
                "selector": condition.selector,
                "metric_name": condition.metric_name,
                "threshold": condition.threshold,
                "timestamp": self.context.timestamp.isoformat(),
            },
        )

    def evaluate_group(self, group: ConditionGroup) -> GroupEvaluationResult:
        """Recursively evaluate a group with AND/OR aggregation."""
        results: list[EvaluationResult | GroupEvaluationResult] = []
        for item in group.conditions:
            if isinstance(item, ConditionGroup):
                results.append(self.evaluate_group(item))
            else:
                results.append(self.evaluate_condition(item))

        if not results:
            passed = False
        elif group.operator == "AND":
            passed = all(r.passed for r in results)
        else:
            passed = any(r.passed for r in results)

        passed_count = sum(1 for r in results if r.passed)
        verdict = "✓ Condition group passed" if passed else "✗ Condition group failed"
        return GroupEvaluationResult(
            passed=passed,
            message=f"{verdict} ({passed_count}/{len(results)} conditions met with {group.operator} logic)",
            group_id=group.id,
            operator=group.operator,
            results=results,
        )

    # Operators

    def _compare(self, condition: Condition, actual: Any) -> bool:
        operator = self._operators.get(condition.operator)
        if operator is None:
            raise UnknownOperatorError(condition.operator)
        return operator(condition, actual)

    def _previous_value(self, condition: Condition) -> tuple[bool, Any]:
        previous = self.context.previous_data
        if previous is None:
            return False, None
        return True, extract_value(condition, previous)

    def _has_changed(self, condition: Condition, actual: Any) -> bool:
        found, previous = self._previous_value(condition)
        return found and not is_equal(actual, previous)

    def _has_increased(self, condition: Condition, actual: Any) -> bool:
        found, previous = self._previous_value(condition)
        return found and to_number(actual) > to_number(previous)

    def _has_decreased(self, condition: Condition, actual: Any) -> bool:
        found, previous = self._previous_value(condition)
        return found and to_number(actual) < to_number(previous)

    def _has_percentage_increase(self, condition: Condition, actual: Any) -> bool:
        found, previous = self._previous_value(condition)
        if not found:
            return False
        current_num, previous_num = to_number(actual), to_number(previous)
        if previous_num == 0:
            return current_num > 0
        change = (current_num - previous_num) / abs(previous_num) * 100
        return change >= (condition.threshold or 0)

    def _has_percentage_decrease(self, condition: Condition, actual: Any) -> bool:
        found, previous = self._previous_value(condition)
        if not found:
            return False
        current_num, previous_num = to_number(actual), to_number(previous)
        if previous_num == 0:
            return False
        change = (previous_num - current_num) / abs(previous_num) * 100
        return change >= (condition.threshold or 0)

    @staticmethod
    def _pattern(condition: Condition) -> str | None:
        if condition.regex:
            return condition.regex
        if isinstance(condition.value, str) and condition.value:
            return condition.value
        return None

    def _regex_search(self, condition: Condition, pattern: str, actual: Any) -> bool:
        flags = 0 if condition.case_sensitive else re.IGNORECASE
        return re.search(pattern, to_text(actual, condition.case_sensitive), flags) is not None

    def _regex_match(self, condition: Condition, actual: Any) -> bool:
        pattern = self._pattern(condition)
        return bool(pattern) and self._regex_search(condition, pattern, actual)

    def _regex_not_match(self, condition: Condition, actual: Any) -> bool:
        pattern = self._pattern(condition)
        return not pattern or not self._regex_search(condition, pattern, actual)

    # Messages

    @staticmethod
    def _message(condition: Condition, actual: Any, passed: bool) -> str:
        field_name = FIELD_DISPLAY_NAMES.get(condition.field, condition.field)
        operator_name = OPERATOR_DISPLAY_NAMES.get(condition.operator, condition.operator)
        if passed:
            return f"✓ {field_name} {operator_name} expected value"
        return (
            f"✗ {field_name} {operator_name} expected value "
            f"(actual: {actual}, expected: {condition.value})"
        )


def evaluate_alert(conditions: ConditionSet, context: EvaluationContext) -> AlertEvaluation:
    """
    Evaluate an alert's condition set and apply the triggering rule.

    A flat list triggers when any condition fails; a group triggers when its
    top-level verdict is false.
    """
    evaluator = ConditionEvaluator(context)
    if isinstance(conditions, ConditionGroup):
        group_result = evaluator.evaluate_group(conditions)
        return AlertEvaluation(group_results=[group_result], triggered=not group_result.passed)

    results = [evaluator.evaluate_condition(c) for c in conditions]
    return AlertEvaluation(results=results, triggered=any(not r.passed for r in results))


class ConditionTemplates:
    """Ready-made conditions for common monitoring cases."""

    @staticmethod
    def price_increase(price_selector: str, threshold: float) -> Condition:
        return Condition(
            id="price_increase",
            field="specific_price",
            operator="percentage_increase",
            value=0,
            price_selector=price_selector,
            threshold=threshold,
        )

    @staticmethod
    def price_decrease(price_selector: str, threshold: float) -> Condition:
        return Condition(
            id="price_decrease",
            field="specific_price",
            operator="percentage_decrease",
            value=0,
            price_selector=price_selector,
            threshold=threshold,
        )

    @staticmethod
    def price_above(price_selector: str, max_price: float) -> Condition:
        return Condition(
            id="price_above",
            field="specific_price",
            operator="greater_than",
            value=max_price,
            price_selector=price_selector,
        )

    @staticmethod
    def price_below(price_selector: str, min_price: float) -> Condition:
        return Condition(
            id="price_below",
            field="specific_price",
            operator="less_than",
            value=min_price,
            price_selector=price_selector,
        )

    @staticmethod
    def slow_load_time(max_load_time: float) -> Condition:
        return Condition(
            id="slow_load_time",
            field="performance_load_time",
            operator="greater_than",
            value=max_load_time,
        )

    @staticmethod
    def poor_fcp(max_fcp: float) -> Condition:
        return Condition(id="poor_fcp", field="performance_fcp", operator="greater_than", value=max_fcp)

    @staticmethod
    def content_changed(selector: str) -> Condition:
        return Condition(
            id="content_changed",
            field="element_text",
            operator="changed",
            selector=selector,
        )

    @staticmethod
    def title_contains(keyword: str) -> Condition:
        return Condition(id="title_contains", field="title", operator="contains", value=keyword)

    @staticmethod
    def seo_title_too_long(max_length: int) -> Condition:
        return Condition(
            id="seo_title_too_long",
            field="seo_title",
            operator="greater_than",
            value=max_length,
        )

    @staticmethod
    def missing_h1() -> Condition:
        return Condition(id="missing_h1", field="seo_h1_count", operator="equals", value=0)

    @staticmethod
    def metric_increase(metric_name: str, threshold: float) -> Condition:
        return Condition(
            id="metric_increase",
            field="specific_metric",
            operator="percentage_increase",
            value=0,
            metric_name=metric_name,
            threshold=threshold,
        )

    @staticmethod
    def followers_decrease(platform: str, threshold: float) -> Condition:
        return Condition(
            id="followers_decrease",
            field="social_followers",
            operator="percentage_decrease",
            value=0,
            social_platform=platform,
            threshold=threshold,
        )
