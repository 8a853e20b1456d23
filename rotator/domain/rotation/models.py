"""Rotation Domain Models."""
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from pydantic import BaseModel, ConfigDict, Field


class StagingLabel(str, Enum):
    """Staging labels as the vault names them."""
    CURRENT = "AWSCURRENT"
    PENDING = "AWSPENDING"
    PREVIOUS = "AWSPREVIOUS"


class RotationStep(str, Enum):
    CREATE = "createSecret"
    SET = "setSecret"
    TEST = "testSecret"
    FINISH = "finishSecret"


class AccessLevel(str, Enum):
    READ = "read"
    READ_WRITE = "readwrite"


class SecretVersion(BaseModel):
    """One immutable version of a secret and the labels it currently holds."""
    version_id: str = Field(..., min_length=1)
    value: Dict[str, Any] = Field(default_factory=dict)
    labels: Set[StagingLabel] = Field(default_factory=set)


class PasswordPolicy(BaseModel):
    """Constraints handed to the vault's random password generator."""
    length: int = Field(default=32, ge=1, le=4096)
    exclude_punctuation: bool = True
    exclude_numbers: bool = False
    exclude_uppercase: bool = False
    exclude_lowercase: bool = False
    exclude_characters: str = ""
    include_space: bool = False
    require_each_included_type: bool = True


class RotationRequest(BaseModel):
    """Inbound invocation from the rotation orchestrator.

    Field aliases match the orchestrator's event keys; the step is kept as a raw
    string so unrecognized steps reach the dispatcher instead of failing here.
    """
    model_config = ConfigDict(populate_by_name=True)

    step: str = Field(..., alias="Step")
    client_request_token: str = Field(..., alias="ClientRequestToken", min_length=1)
    secret_id: str = Field(..., alias="SecretId", min_length=1)


class StagingSlots:
    """Enum-keyed view of which version holds each staging label.

    Vaults store labels as free-form strings per version; folding them into one
    slot per label makes the single-holder invariant checkable.
    """

    def __init__(self, slots: Optional[Mapping[StagingLabel, Optional[str]]] = None):
        self._slots: Dict[StagingLabel, Optional[str]] = {label: None for label in StagingLabel}
        if slots:
            self._slots.update(slots)

    @classmethod
    def from_version_stages(cls, version_stages: Mapping[str, Iterable[str]]) -> "StagingSlots":
        """Build from a ``{version_id: [label, ...]}`` map.

        Raises ValueError if a label is held by more than one version. Labels the
        rotation protocol does not use are ignored.
        """
        slots: Dict[StagingLabel, Optional[str]] = {}
        for version_id, stages in version_stages.items():
            for stage in stages:
                try:
                    label = StagingLabel(stage)
                except ValueError:
                    continue
                if slots.get(label) is not None:
                    raise ValueError(
                        f"Label {label.value} held by both {slots[label]} and {version_id}"
                    )
                slots[label] = version_id
        return cls(slots)

    def holder(self, label: StagingLabel) -> Optional[str]:
        return self._slots[label]

    def labels_of(self, version_id: str) -> List[StagingLabel]:
        return [label for label, holder in self._slots.items() if holder == version_id]

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {label.value: holder for label, holder in self._slots.items()}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StagingSlots):
            return NotImplemented
        return self._slots == other._slots

    def __repr__(self) -> str:
        return f"StagingSlots({self.as_dict()})"
