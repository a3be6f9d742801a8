"""
Module: authorization_kernel.models.authorization
Responsibility: ORM persistence for service authorizations, their
    per-service-type sub-authorizations, and the utilization ledger row.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/dtos.py (for the status enum) only.

Invariants enforced:
    - start_date <= end_date (ck_authorization_date_range).
    - (authorization_id, service_type_id) unique (uq_authorization_service_type).
    - authorized_units >= 0 on every sub-authorization.
    - used_units >= 0 and exactly one ledger row per authorization
      (uq_utilization_authorization).  The upper bound used_units <= cap is
      enforced by the ledger's conditional UPDATE, since the cap is the sum
      of the sub-authorization rows.

Failure modes:
    - IntegrityError on duplicate service types or a second ledger row;
      services check first and wrap whatever still escapes in StorageFailure.

Non-goals:
    - No hard deletes.  Deactivation is a status (DENIED / CANCELLED).
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from authorization_kernel.db.base import Base, TrackedBase, UUIDString
from authorization_kernel.domain.dtos import AuthorizationStatus

_STATUS_TYPE = SAEnum(
    AuthorizationStatus,
    name="authorization_status",
    native_enum=False,
    length=20,
    values_callable=lambda statuses: [s.value for s in statuses],
    validate_strings=True,
)


class Authorization(TrackedBase):
    """
    Authorization header.

    Contract:
        A payer/program grant allowing a client to receive capped units of
        the listed service types between start_date and end_date inclusive.
        Mutated only through AuthorizationStore and the status machine.
    """

    __tablename__ = "authorizations"

    __table_args__ = (
        CheckConstraint("start_date <= end_date", name="ck_authorization_date_range"),
        Index("idx_authorization_client_status", "client_id", "status"),
        Index("idx_authorization_dates", "start_date", "end_date"),
        Index("idx_authorization_number", "authorization_number"),
    )

    client_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    program_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # External reference from the payer; not unique
    authorization_number: Mapped[str] = mapped_column(String(50), nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[AuthorizationStatus] = mapped_column(
        _STATUS_TYPE,
        default=AuthorizationStatus.APPROVED,
        nullable=False,
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    service_types: Mapped[list["AuthorizationServiceType"]] = relationship(
        back_populates="authorization",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="AuthorizationServiceType.created_at",
    )

    utilization: Mapped["AuthorizationUtilization | None"] = relationship(
        back_populates="authorization",
        uselist=False,
    )

    def __repr__(self) -> str:
        return f"<Authorization {self.authorization_number}: {self.status.value}>"


class AuthorizationServiceType(TrackedBase):
    """
    Sub-authorization: the cap and validity window for one service type.

    effective_date / end_date are NULL when the parent's range applies.
    """

    __tablename__ = "authorization_service_types"

    __table_args__ = (
        UniqueConstraint(
            "authorization_id", "service_type_id", name="uq_authorization_service_type"
        ),
        CheckConstraint("authorized_units >= 0", name="ck_service_type_units"),
        Index("idx_service_type_lookup", "service_type_id", "authorization_id"),
    )

    authorization_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("authorizations.id", ondelete="CASCADE"),
        nullable=False,
    )

    service_type_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    authorized_units: Mapped[int] = mapped_column(BigInteger, nullable=False)

    daily_limit: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    weekly_limit: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    monthly_limit: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    # Negotiated rate per unit
    rate: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    effective_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    authorization: Mapped["Authorization"] = relationship(back_populates="service_types")

    def __repr__(self) -> str:
        return f"<AuthorizationServiceType {self.service_type_id}: {self.authorized_units}>"


class AuthorizationUtilization(Base):
    """
    Utilization ledger row: units consumed against one authorization.

    Created with the authorization, or lazily (zero) on first ledger read
    or write.  Mutated only by UtilizationLedger.
    """

    __tablename__ = "authorization_utilization"

    __table_args__ = (
        UniqueConstraint("authorization_id", name="uq_utilization_authorization"),
        CheckConstraint("used_units >= 0", name="ck_utilization_non_negative"),
    )

    authorization_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("authorizations.id", ondelete="CASCADE"),
        nullable=False,
    )

    used_units: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Signed delta applied by the most recent adjustment
    last_update_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    last_updated: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    last_updated_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    authorization: Mapped["Authorization"] = relationship(back_populates="utilization")

    def __repr__(self) -> str:
        return f"<AuthorizationUtilization {self.authorization_id}: {self.used_units}>"
