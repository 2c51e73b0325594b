"""Consensus analysis value object.

Member indices are 1-based positions in the ordered response list that was
sent for analysis. Consistency checks that depend on that list need the
response count, passed as validation context:

    ConsensusAnalysis.model_validate(payload, context={"total_responses": 3})
"""

from pydantic import Field, ValidationInfo, model_validator

from .base import HubBaseModel


class ConsensusGroup(HubBaseModel):
    """A cluster of semantically similar responses."""

    id: str = Field(..., min_length=1)
    label: str
    criteria: str
    members: list[int]
    count: int = Field(..., ge=0)


class ConsensusRecord(HubBaseModel):
    """The group the analysis considers the consensus."""

    group_id: str = Field(..., min_length=1)
    label: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str


class ConsensusAnalysis(HubBaseModel):
    """Grouped themes plus a confidence-scored consensus."""

    question: str
    groups: list[ConsensusGroup]
    consensus: ConsensusRecord

    @model_validator(mode="after")
    def check_consistency(self, info: ValidationInfo) -> "ConsensusAnalysis":
        group_ids = [g.id for g in self.groups]
        if len(set(group_ids)) != len(group_ids):
            raise ValueError("group ids must be unique")
        if self.consensus.group_id not in group_ids:
            raise ValueError(
                f"consensus.group_id {self.consensus.group_id!r} matches no group"
            )

        total = (info.context or {}).get("total_responses")
        if total is None:
            return self

        counted = sum(g.count for g in self.groups)
        if counted != total:
            raise ValueError(
                f"group counts sum to {counted} but {total} responses were analyzed"
            )
        for group in self.groups:
            out_of_range = [m for m in group.members if m < 1 or m > total]
            if out_of_range:
                raise ValueError(
                    f"group {group.id!r} references responses {out_of_range} "
                    f"outside 1..{total}"
                )
        return self

    @property
    def consensus_group(self) -> ConsensusGroup:
        return next(g for g in self.groups if g.id == self.consensus.group_id)
