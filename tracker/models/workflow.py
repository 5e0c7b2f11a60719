"""
Order Tracker — Workflow domain models.

Models:
    - WorkflowStage:     ordered top-level step of an organization's workflow
    - WorkflowSubStage:  ordered sub-step inside one stage
    - Order:             customer order; owns items
    - Item:              tracked unit; rests at exactly one Position
    - ItemHistory:       append-only interval an item spent at one Position

Architecture:
    Organization ──1:N──▶ WorkflowStage ──1:N──▶ WorkflowSubStage
    Organization ──1:N──▶ Order ──1:N──▶ Item ──1:N──▶ ItemHistory

Occupancy rules:
    A stage with sub-stages is never occupiable on its own: an item in such
    a stage always carries a sub_stage_id. At most one ItemHistory row per
    item has exited_at IS NULL; that row mirrors the item's position.
"""

from dataclasses import dataclass

from tracker.models import db
from tracker.models.base import OrganizationModel, _utcnow, _uuid, isoformat


@dataclass(frozen=True)
class Position:
    """Immutable (stage, sub-stage) location of an item."""

    stage_id: str
    sub_stage_id: str | None = None

    def to_dict(self) -> dict:
        return {"stage_id": self.stage_id, "sub_stage_id": self.sub_stage_id}

    def __str__(self) -> str:
        if self.sub_stage_id:
            return f"{self.stage_id}/{self.sub_stage_id}"
        return self.stage_id


# ═════════════════════════════════════════════════════════════════════════════
# Configuration: stages and sub-stages
# ═════════════════════════════════════════════════════════════════════════════


class WorkflowStage(OrganizationModel):
    __tablename__ = "workflow_stages"
    __table_args__ = (
        db.UniqueConstraint(
            "organization_id", "sequence_order", name="uq_stage_org_sequence",
        ),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False)
    sequence_order = db.Column(
        db.Integer, nullable=False,
        comment="Unique within organization; gaps allowed",
    )
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    sub_stages = db.relationship(
        "WorkflowSubStage",
        back_populates="stage",
        cascade="all, delete-orphan",
        order_by="WorkflowSubStage.sequence_order",
        lazy="selectin",
    )

    def to_dict(self, include_sub_stages=True):
        d = {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "sequence_order": self.sequence_order,
            "created_at": isoformat(self.created_at),
        }
        if include_sub_stages:
            d["sub_stages"] = [ss.to_dict() for ss in self.sub_stages]
        return d

    def __repr__(self):
        return f"<WorkflowStage {self.sequence_order}: {self.name}>"


class WorkflowSubStage(OrganizationModel):
    __tablename__ = "workflow_sub_stages"
    __table_args__ = (
        db.UniqueConstraint(
            "stage_id", "sequence_order", name="uq_sub_stage_stage_sequence",
        ),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    stage_id = db.Column(
        db.String(36),
        db.ForeignKey("workflow_stages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    sequence_order = db.Column(
        db.Integer, nullable=False,
        comment="Unique within parent stage; gaps allowed",
    )
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    stage = db.relationship("WorkflowStage", back_populates="sub_stages")

    def to_dict(self):
        return {
            "id": self.id,
            "stage_id": self.stage_id,
            "name": self.name,
            "sequence_order": self.sequence_order,
            "created_at": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<WorkflowSubStage {self.sequence_order}: {self.name}>"


# ═════════════════════════════════════════════════════════════════════════════
# Tracked entities: orders, items, history
# ═════════════════════════════════════════════════════════════════════════════


class Order(OrganizationModel):
    __tablename__ = "orders"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    order_number = db.Column(db.String(50), nullable=False)
    customer_name = db.Column(db.String(200), nullable=True)
    details = db.Column(db.JSON, default=dict, comment="Opaque payload, not interpreted here")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    items = db.relationship("Item", back_populates="order", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "order_number": self.order_number,
            "customer_name": self.customer_name,
            "details": self.details or {},
            "created_at": isoformat(self.created_at),
        }


class Item(OrganizationModel):
    __tablename__ = "items"
    __table_args__ = (
        db.Index("idx_items_org_position", "organization_id", "current_stage_id", "current_sub_stage_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    order_id = db.Column(
        db.String(36),
        db.ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    current_stage_id = db.Column(
        db.String(36),
        db.ForeignKey("workflow_stages.id", ondelete="RESTRICT"),
        nullable=False,
    )
    current_sub_stage_id = db.Column(
        db.String(36),
        db.ForeignKey("workflow_sub_stages.id", ondelete="RESTRICT"),
        nullable=True,
    )
    details = db.Column(db.JSON, default=dict, comment="Opaque payload, not interpreted here")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    order = db.relationship("Order", back_populates="items")
    history = db.relationship(
        "ItemHistory",
        back_populates="item",
        lazy="dynamic",
        order_by="ItemHistory.entered_at",
    )

    @property
    def position(self) -> Position:
        return Position(self.current_stage_id, self.current_sub_stage_id)

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "order_id": self.order_id,
            "current_stage_id": self.current_stage_id,
            "current_sub_stage_id": self.current_sub_stage_id,
            "details": self.details or {},
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }

    def __repr__(self):
        return f"<Item {self.id} @ {self.position}>"


class ItemHistory(OrganizationModel):
    """
    Append-only dwell record: one row per interval an item spent at one
    position. ``exited_at`` is NULL only for the item's current interval;
    once set, the row is never touched again.
    """

    __tablename__ = "item_history"
    __table_args__ = (
        db.Index("idx_item_history_item_entered", "item_id", "entered_at"),
        db.Index("idx_item_history_org_open", "organization_id", "exited_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    item_id = db.Column(
        db.String(36),
        db.ForeignKey("items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    stage_id = db.Column(
        db.String(36),
        db.ForeignKey("workflow_stages.id", ondelete="SET NULL"),
        nullable=True,
    )
    sub_stage_id = db.Column(
        db.String(36),
        db.ForeignKey("workflow_sub_stages.id", ondelete="SET NULL"),
        nullable=True,
    )
    entered_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    exited_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rework_reason = db.Column(db.Text, nullable=True)
    user_id = db.Column(db.String(36), nullable=True, comment="Acting user (identity provider id)")

    item = db.relationship("Item", back_populates="history")
    stage = db.relationship("WorkflowStage")
    sub_stage = db.relationship("WorkflowSubStage")

    @property
    def position(self) -> Position:
        return Position(self.stage_id, self.sub_stage_id)

    @property
    def is_open(self) -> bool:
        return self.exited_at is None

    def to_dict(self):
        return {
            "id": self.id,
            "item_id": self.item_id,
            "stage_id": self.stage_id,
            "sub_stage_id": self.sub_stage_id,
            "entered_at": isoformat(self.entered_at),
            "exited_at": isoformat(self.exited_at),
            "rework_reason": self.rework_reason,
            "user_id": self.user_id,
        }

    def __repr__(self):
        state = "open" if self.is_open else "closed"
        return f"<ItemHistory {self.item_id} @ {self.position} ({state})>"
