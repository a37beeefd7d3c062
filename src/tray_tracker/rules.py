"""Migration rules: declarative source -> target field mappings."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

from tray_tracker.exceptions import ValidationError

# Audit fields written next to a migrated value. Rollback clears them.
MIGRATED_AT_FIELD = "migrated_at"
MIGRATION_VERSION_FIELD = "migration_version"
PRIOR_TARGET_FIELD = "migration_prior_target"

# Audit fields stamped on documents copied by a relocation rule
RELOCATED_AT_FIELD = "relocated_at"
RELOCATION_VERSION_FIELD = "relocation_version"

# Pseudo source field that reads the document id instead of a stored field
ID_SOURCE = "$id"


class MigrationRule(BaseModel):
    """Copy ``source_field`` into ``target_field`` where only the source is set.

    A ``source_field`` of ``$id`` backfills the target from the document id.
    """

    model_config = ConfigDict(frozen=True)

    collection: str = Field(..., min_length=1)
    source_field: str = Field(..., min_length=1)
    target_field: str = Field(..., min_length=1)
    version: str = Field("v1", min_length=1)
    condition: Optional[Dict[str, Any]] = None
    delete_source: bool = False
    legacy_truthiness: bool = False
    # Rules that touch the same documents need distinct audit fields
    audit_prefix: str = ""
    description: str = ""

    @model_validator(mode="after")
    def _check_fields(self) -> "MigrationRule":
        if self.source_field == self.target_field:
            raise ValueError("source_field and target_field must differ")
        if self.source_field.startswith("$") and not self.reads_id:
            raise ValueError(f"Unknown pseudo field '{self.source_field}'; only '{ID_SOURCE}' is supported")
        if self.target_field.startswith("$"):
            raise ValueError("target_field cannot start with '$'")
        if self.reads_id and self.delete_source:
            raise ValueError("delete_source cannot be used with an id source")
        for field in (self.source_field, self.target_field):
            if field in self.reserved_fields:
                raise ValueError(f"'{field}' is reserved and cannot be migrated")
        return self

    @property
    def reads_id(self) -> bool:
        return self.source_field == ID_SOURCE

    @property
    def migrated_at_field(self) -> str:
        return f"{self.audit_prefix}{MIGRATED_AT_FIELD}"

    @property
    def migration_version_field(self) -> str:
        return f"{self.audit_prefix}{MIGRATION_VERSION_FIELD}"

    @property
    def prior_target_field(self) -> str:
        return f"{self.audit_prefix}{PRIOR_TARGET_FIELD}"

    @property
    def reserved_fields(self) -> set:
        return {"_id", self.migrated_at_field, self.migration_version_field, self.prior_target_field}

    @property
    def write_collection(self) -> str:
        return self.collection

    @property
    def source_name(self) -> str:
        return self.source_field

    @property
    def target_name(self) -> str:
        return self.target_field

    @property
    def label(self) -> str:
        return f"{self.collection}.{self.source_field}->{self.target_field}@{self.version}"


class RelocationRule(BaseModel):
    """Copy whole documents from ``collection`` into ``target_collection``.

    Copies keep the source id. The source collection is never modified, so a
    rollback only has to delete the copies this version created.
    """

    model_config = ConfigDict(frozen=True)

    collection: str = Field(..., min_length=1)
    target_collection: str = Field(..., min_length=1)
    version: str = Field("v1", min_length=1)
    condition: Optional[Dict[str, Any]] = None
    description: str = ""

    @model_validator(mode="after")
    def _check_collections(self) -> "RelocationRule":
        if self.collection == self.target_collection:
            raise ValueError("collection and target_collection must differ")
        return self

    @property
    def migrated_at_field(self) -> str:
        return RELOCATED_AT_FIELD

    @property
    def migration_version_field(self) -> str:
        return RELOCATION_VERSION_FIELD

    @property
    def write_collection(self) -> str:
        return self.target_collection

    @property
    def source_name(self) -> str:
        return self.collection

    @property
    def target_name(self) -> str:
        return self.target_collection

    @property
    def label(self) -> str:
        return f"{self.collection}->{self.target_collection}@{self.version}"


Rule = Union[MigrationRule, RelocationRule]


BUILTIN_RULES: Dict[str, List[Rule]] = {
    "tray_name_v1": [
        MigrationRule(
            collection="tray_tracking",
            source_field="name",
            target_field="tray_name",
            version="tray_name_v1",
            description="Standardize trays on tray_name",
        ),
    ],
    "tray_id_v1": [
        MigrationRule(
            collection="tray_tracking",
            source_field=ID_SOURCE,
            target_field="tray_id",
            version="tray_id_v1",
            audit_prefix="tray_id_",
            description="Backfill tray_id from the document id",
        ),
    ],
    "timestamps_v1": [
        MigrationRule(
            collection="tray_tracking",
            source_field="createdAt",
            target_field="created_at",
            version="timestamps_v1",
            audit_prefix="created_at_",
            description="Snake-case tray creation timestamp",
        ),
        MigrationRule(
            collection="tray_tracking",
            source_field="updatedAt",
            target_field="updated_at",
            version="timestamps_v1",
            audit_prefix="updated_at_",
            description="Snake-case tray update timestamp",
        ),
        # Runs after updatedAt so trays that had both keep updatedAt's value
        MigrationRule(
            collection="tray_tracking",
            source_field="lastModified",
            target_field="updated_at",
            version="timestamps_v1",
            audit_prefix="last_modified_",
            description="Fold lastModified into updated_at",
        ),
    ],
    "facility_timestamps_v1": [
        MigrationRule(
            collection="facilities",
            source_field="createdAt",
            target_field="created_at",
            version="facility_timestamps_v1",
            audit_prefix="created_at_",
            description="Snake-case facility creation timestamp",
        ),
        MigrationRule(
            collection="facilities",
            source_field="updatedAt",
            target_field="updated_at",
            version="facility_timestamps_v1",
            audit_prefix="updated_at_",
            description="Snake-case facility update timestamp",
        ),
    ],
    "surgeons_to_physicians_v1": [
        RelocationRule(
            collection="surgeons",
            target_collection="physicians",
            version="surgeons_to_physicians_v1",
            description="Copy surgeons into the physicians collection",
        ),
    ],
}


def build_rule(item: Dict[str, Any]) -> Rule:
    """Build a relocation rule when ``target_collection`` is given, else a field rule."""
    if isinstance(item, dict) and "target_collection" in item:
        return RelocationRule(**item)
    return MigrationRule(**item)


def load_rules(path: Path) -> Dict[str, List[Rule]]:
    """Load named rule sets from a YAML file.

    The file maps a name to either a single rule or a list of rules::

        surgeon_ref_v1:
          collection: cases
          source_field: surgeon
          target_field: physician_id

        trays_to_tracking_v1:
          collection: trays
          target_collection: tray_tracking
    """
    data = yaml.safe_load(path.read_text()) or {}
    if not isinstance(data, dict):
        raise ValidationError(f"Rules file {path} must contain a mapping of names to rules")

    rules: Dict[str, List[Rule]] = {}
    for name, entry in data.items():
        entries = entry if isinstance(entry, list) else [entry]
        try:
            rules[str(name)] = [build_rule(item) for item in entries]
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid rule '{name}' in {path}: {exc}") from exc
    return rules


def available_rules(rules_file: Optional[Path] = None) -> Dict[str, List[Rule]]:
    rules = dict(BUILTIN_RULES)
    if rules_file:
        if not rules_file.exists():
            raise ValidationError(f"Rules file not found: {rules_file}")
        rules.update(load_rules(rules_file))
    return rules


def resolve_rules(name: str, rules_file: Optional[Path] = None) -> List[Rule]:
    rules = available_rules(rules_file)
    if name not in rules:
        known = ", ".join(sorted(rules))
        raise ValidationError(f"Unknown rule '{name}'. Available: {known}")
    return rules[name]
