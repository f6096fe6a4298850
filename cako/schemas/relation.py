"""Relation Schemas — Pydantic models for relation descriptors.

Invariants:
    - RelationDefine.type selects exactly one description shape
    - many2many has exactly two distinct owners (`owner` or `owners` accepted)
    - many2many `through` never names one of its owners
    - one2many / hasOne alias is read from the `as` key (stored as `as_`)

Design Decisions:
    - Descriptors accepted as plain dicts and validated at the define_relation boundary
    - extra="forbid": a misspelled key is a configuration error, not a silent default
"""

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from cako.core.domain_types import RelationType


class Many2ManyDescription(BaseModel):
    """Symmetric relation through a join entity."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    owners: tuple[str, str] = Field(
        validation_alias=AliasChoices("owner", "owners"),
    )
    through: str | None = None
    extra_attributes: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("extraAttributes", "extra_attributes"),
    )

    @field_validator("owners")
    @classmethod
    def owners_distinct(cls, v: tuple[str, str]) -> tuple[str, str]:
        if v[0] == v[1]:
            raise ValueError("many2many owners must be two distinct entities")
        return v

    @model_validator(mode="after")
    def through_is_not_an_owner(self) -> "Many2ManyDescription":
        if self.through is not None and self.through in self.owners:
            raise ValueError(
                f"many2many through '{self.through}' must not be one of its owners",
            )
        return self


class _OwnedDescription(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    owner: str
    to: str
    as_: str | None = Field(None, alias="as")


class One2ManyDescription(_OwnedDescription):
    """`owner` has many `to`; `to` belongs to `owner` (under `as` if given)."""


class HasOneDescription(_OwnedDescription):
    """`owner` has one `to`, exposed under `as`."""


_DESCRIPTIONS: dict[RelationType, type[BaseModel]] = {
    RelationType.MANY2MANY: Many2ManyDescription,
    RelationType.ONE2MANY: One2ManyDescription,
    RelationType.HAS_ONE: HasOneDescription,
}


class RelationDefine(BaseModel):
    """Tagged relation descriptor: `{type, description}`."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    type: RelationType
    description: Many2ManyDescription | One2ManyDescription | HasOneDescription

    @model_validator(mode="before")
    @classmethod
    def select_description(cls, data: Any) -> Any:
        """Validate `description` against the shape named by `type`."""
        if not isinstance(data, dict):
            return data
        try:
            relation_type = RelationType(data.get("type"))
        except ValueError:
            return data
        description = data.get("description")
        if isinstance(description, dict):
            data = {
                **data,
                "description": _DESCRIPTIONS[relation_type].model_validate(description),
            }
        return data

    @model_validator(mode="after")
    def description_matches_type(self) -> "RelationDefine":
        expected = _DESCRIPTIONS[self.type]
        if type(self.description) is not expected:
            raise ValueError(
                f"{self.type.value} relation requires a {expected.__name__}",
            )
        return self
