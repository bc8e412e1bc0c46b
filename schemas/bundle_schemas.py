"""
Admin API Schemas
=================

One typed request DTO per admin intent. The body (JSON or form-encoded) is
parsed exactly once at the router boundary; services only ever see these
models and ``BundleRule`` values.

INTENTS:
--------
- create                                   -> CreateBundleAction
- update / update-rules / update-bundle    -> UpdateBundleAction
- delete / delete-bundle                   -> DeleteBundleAction
- create-discount / revoke-discount        -> DiscountAction
"""

from typing import Any, Dict, List, Literal, Optional, Type, Union
import json
import logging

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from services.errors import ValidationFailed
from services.rule_set import BundleRule, parse_rules

logger = logging.getLogger(__name__)


def _coerce_rules(value: Any) -> Any:
    """Form bodies carry rules as a JSON string."""
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            value = json.loads(text)
        except ValueError as e:
            raise ValueError("Invalid rules format") from e
    if value is not None and not isinstance(value, list):
        raise ValueError("rules must be a list")
    return value


class _ActionBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class _RulesMixin(BaseModel):
    rules: Optional[List[Dict[str, Any]]] = None

    @field_validator("rules", mode="before")
    @classmethod
    def _parse_rules(cls, value: Any) -> Any:
        return _coerce_rules(value)

    def parsed_rules(self) -> Optional[List[BundleRule]]:
        return None if self.rules is None else parse_rules(self.rules)


class CreateBundleAction(_RulesMixin, _ActionBase):
    intent: Literal["create"]
    name: Optional[str] = None
    collection_id: Optional[str] = Field(None, alias="collectionId")
    collection_title: Optional[str] = Field(None, alias="collectionTitle")

    @field_validator("collection_id", mode="before")
    @classmethod
    def _stringify_collection_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


class UpdateBundleAction(_RulesMixin, _ActionBase):
    intent: Literal["update", "update-rules", "update-bundle"]
    bundle_id: str = Field(..., validation_alias=AliasChoices("bundleId", "id"), min_length=1)
    name: Optional[str] = None

    @model_validator(mode="after")
    def _require_intent_fields(self) -> "UpdateBundleAction":
        if self.intent == "update-rules" and self.rules is None:
            raise ValueError("Missing required field: rules")
        if self.intent == "update-bundle" and self.name is None:
            raise ValueError("Missing required field: name")
        if self.intent == "update" and self.rules is None and self.name is None:
            raise ValueError("Missing required fields: name and/or rules")
        return self


class DeleteBundleAction(_ActionBase):
    intent: Literal["delete", "delete-bundle"]
    bundle_id: str = Field(..., validation_alias=AliasChoices("bundleId", "id"), min_length=1)


class DiscountAction(_ActionBase):
    intent: Literal["create-discount", "revoke-discount"]
    bundle_id: str = Field(..., validation_alias=AliasChoices("bundleId", "id"), min_length=1)
    rule_index: int = Field(..., alias="ruleIndex")


AdminAction = Union[CreateBundleAction, UpdateBundleAction, DeleteBundleAction, DiscountAction]

INTENT_MODELS: Dict[str, Type[BaseModel]] = {
    "create": CreateBundleAction,
    "update": UpdateBundleAction,
    "update-rules": UpdateBundleAction,
    "update-bundle": UpdateBundleAction,
    "delete": DeleteBundleAction,
    "delete-bundle": DeleteBundleAction,
    "create-discount": DiscountAction,
    "revoke-discount": DiscountAction,
}


def _validation_failed(exc: ValidationError) -> ValidationFailed:
    first = exc.errors()[0]
    field_name = ".".join(str(part) for part in first.get("loc", ())) or "body"
    if first.get("type") == "missing":
        return ValidationFailed(ValidationFailed.MISSING_FIELD, f"Missing required field: {field_name}")
    message = str(first.get("msg", "invalid value")).removeprefix("Value error, ")
    if message.startswith("Missing required"):
        return ValidationFailed(ValidationFailed.MISSING_FIELD, message)
    return ValidationFailed(ValidationFailed.INVALID_FORMAT, f"Invalid {field_name}: {message}")


def parse_admin_action(body: Dict[str, Any]) -> AdminAction:
    """Select the DTO by ``intent`` and validate the body against it."""
    intent = (body or {}).get("intent")
    if not isinstance(intent, str):
        raise ValidationFailed(ValidationFailed.INVALID_FORMAT, f"Invalid intent: {intent!r}")
    model = INTENT_MODELS.get(intent)
    if model is None:
        raise ValidationFailed(ValidationFailed.INVALID_FORMAT, f"Invalid intent: {intent!r}")
    try:
        return model.model_validate(body)
    except ValidationError as e:
        raise _validation_failed(e) from e


# =============================================================================
# Legacy create-discount endpoint + webhook payloads
# =============================================================================

class CreateDiscountRequest(BaseModel):
    """Payload of POST /api/create-discount (credentials optional; config is the fallback)."""

    bundle_id: str = Field(..., alias="bundleId", min_length=1)
    rule_index: int = Field(..., alias="ruleIndex")
    shop_domain: Optional[str] = Field(None, alias="shopDomain")
    access_token: Optional[str] = Field(None, alias="accessToken")

    model_config = ConfigDict(populate_by_name=True)


class CartLineItem(BaseModel):
    quantity: int = 0
    variant_id: Optional[Any] = None
    title: Optional[str] = None
    price: Optional[Any] = None

    model_config = ConfigDict(extra="allow")

    @field_validator("quantity", mode="before")
    @classmethod
    def _default_quantity(cls, value: Any) -> Any:
        return 0 if value in (None, "") else value


class CartUpdatePayload(BaseModel):
    id: Optional[Any] = None
    token: Optional[str] = None
    line_items: List[CartLineItem] = Field(default_factory=list)

    model_config = ConfigDict(extra="allow")
