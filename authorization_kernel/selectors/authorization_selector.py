"""
Module: authorization_kernel.selectors.authorization_selector
Responsibility: Read-side queries over authorizations, their service types
    and the utilization ledger, returned as frozen DTOs.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - One explicit ORM -> DTO mapping per entity (_authorization_to_dto,
      _service_type_to_dto, _utilization_to_dto).  Nothing else converts.
    - Cancelled authorizations are hidden from every listing query through
      ``_live()``.  ``get(id)`` still returns them.
    - A missing ledger row reads as zero used units; the selector never
      creates it.
    - Utilization percentage and remaining units are derived on read.
"""

from datetime import date, timedelta
from uuid import UUID

from sqlalchemy import exists, func, select
from sqlalchemy.orm import Session

from authorization_kernel.domain.dtos import (
    AuthorizationInfo,
    AuthorizationPage,
    AuthorizationStatus,
    DateRange,
    ServiceTypeInfo,
    UtilizationSnapshot,
)
from authorization_kernel.domain.utilization import build_snapshot
from authorization_kernel.models.authorization import (
    Authorization,
    AuthorizationServiceType,
    AuthorizationUtilization,
)
from authorization_kernel.selectors.base import BaseSelector


def _service_type_to_dto(
    row: AuthorizationServiceType, parent: Authorization
) -> ServiceTypeInfo:
    return ServiceTypeInfo(
        id=row.id,
        authorization_id=row.authorization_id,
        service_type_id=row.service_type_id,
        authorized_units=row.authorized_units,
        effective_date=row.effective_date or parent.start_date,
        end_date=row.end_date or parent.end_date,
        daily_limit=row.daily_limit,
        weekly_limit=row.weekly_limit,
        monthly_limit=row.monthly_limit,
        rate=row.rate,
    )


def _utilization_to_dto(
    authorization_id: UUID,
    row: AuthorizationUtilization | None,
    authorized_units: int,
) -> UtilizationSnapshot:
    if row is None:
        return build_snapshot(authorization_id, 0, authorized_units)
    return build_snapshot(
        authorization_id,
        row.used_units,
        authorized_units,
        last_update_amount=row.last_update_amount,
        last_updated=row.last_updated,
        last_updated_by_id=row.last_updated_by_id,
    )


def _authorization_to_dto(
    model: Authorization, utilization: AuthorizationUtilization | None
) -> AuthorizationInfo:
    service_types = tuple(
        _service_type_to_dto(row, model) for row in model.service_types
    )
    authorized = sum(st.authorized_units for st in service_types)
    status = model.status
    if not isinstance(status, AuthorizationStatus):
        status = AuthorizationStatus(status)
    return AuthorizationInfo(
        id=model.id,
        client_id=model.client_id,
        program_id=model.program_id,
        authorization_number=model.authorization_number,
        start_date=model.start_date,
        end_date=model.end_date,
        status=status,
        notes=model.notes,
        service_types=service_types,
        utilization=_utilization_to_dto(model.id, utilization, authorized),
        created_at=model.created_at,
        updated_at=model.updated_at,
        created_by_id=model.created_by_id,
        updated_by_id=model.updated_by_id,
    )


class AuthorizationSelector(BaseSelector[Authorization]):
    """
    Selector for authorization aggregates.

    Every query loads with ``populate_existing`` so that values written by
    conditional UPDATE statements earlier in the same session are visible.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    @staticmethod
    def _live():
        """The single soft-delete filter: cancelled authorizations are hidden."""
        return Authorization.status != AuthorizationStatus.CANCELLED

    def _utilization_rows(
        self, authorization_ids: list[UUID]
    ) -> dict[UUID, AuthorizationUtilization]:
        if not authorization_ids:
            return {}
        rows = self.session.execute(
            select(AuthorizationUtilization)
            .where(AuthorizationUtilization.authorization_id.in_(authorization_ids))
            .execution_options(populate_existing=True)
        ).scalars()
        return {row.authorization_id: row for row in rows}

    def _to_dtos(self, models: list[Authorization]) -> list[AuthorizationInfo]:
        ledger = self._utilization_rows([m.id for m in models])
        return [_authorization_to_dto(m, ledger.get(m.id)) for m in models]

    def _fetch(self, query) -> list[Authorization]:
        return list(
            self.session.execute(
                query.execution_options(populate_existing=True)
            ).scalars().all()
        )

    # ------------------------------------------------------------------
    # Single aggregate
    # ------------------------------------------------------------------

    def get(self, authorization_id: UUID) -> AuthorizationInfo | None:
        """Full aggregate by id, including cancelled ones.  None if absent."""
        models = self._fetch(
            select(Authorization).where(Authorization.id == authorization_id)
        )
        if not models:
            return None
        return self._to_dtos(models)[0]

    def exists(self, authorization_id: UUID) -> bool:
        return bool(
            self.session.execute(
                select(exists().where(Authorization.id == authorization_id))
            ).scalar()
        )

    # ------------------------------------------------------------------
    # Ledger reads
    # ------------------------------------------------------------------

    def used_units(self, authorization_id: UUID) -> int:
        """Current used units; zero when no ledger row exists yet."""
        value = self.session.execute(
            select(AuthorizationUtilization.used_units).where(
                AuthorizationUtilization.authorization_id == authorization_id
            )
        ).scalar_one_or_none()
        return int(value or 0)

    def authorized_units(self, authorization_id: UUID) -> int:
        """Authorization-level cap: the sum of every service type's cap."""
        value = self.session.execute(
            select(
                func.coalesce(func.sum(AuthorizationServiceType.authorized_units), 0)
            ).where(AuthorizationServiceType.authorization_id == authorization_id)
        ).scalar_one()
        return int(value)

    def utilization(self, authorization_id: UUID) -> UtilizationSnapshot:
        row = self._utilization_rows([authorization_id]).get(authorization_id)
        return _utilization_to_dto(
            authorization_id, row, self.authorized_units(authorization_id)
        )

    def service_type_ids(self, authorization_id: UUID) -> list[UUID]:
        return list(
            self.session.execute(
                select(AuthorizationServiceType.service_type_id).where(
                    AuthorizationServiceType.authorization_id == authorization_id
                )
            ).scalars()
        )

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def find_active_for_client(
        self, client_id: UUID, as_of: date
    ) -> list[AuthorizationInfo]:
        """ACTIVE authorizations for the client whose range contains as_of."""
        query = (
            select(Authorization)
            .where(
                Authorization.client_id == client_id,
                Authorization.status == AuthorizationStatus.ACTIVE,
                Authorization.start_date <= as_of,
                Authorization.end_date >= as_of,
            )
            .order_by(Authorization.start_date.desc())
        )
        return self._to_dtos(self._fetch(query))

    def find_expiring(self, today: date, days_threshold: int) -> list[AuthorizationInfo]:
        """ACTIVE authorizations ending within [today, today + days_threshold]."""
        horizon = today + timedelta(days=days_threshold)
        query = (
            select(Authorization)
            .where(
                Authorization.status == AuthorizationStatus.ACTIVE,
                Authorization.end_date >= today,
                Authorization.end_date <= horizon,
            )
            .order_by(Authorization.end_date)
        )
        return self._to_dtos(self._fetch(query))

    def find_by_number(self, authorization_number: str) -> list[AuthorizationInfo]:
        query = (
            select(Authorization)
            .where(
                self._live(),
                Authorization.authorization_number == authorization_number,
            )
            .order_by(Authorization.start_date.desc())
        )
        return self._to_dtos(self._fetch(query))

    def find_for_client(
        self,
        client_id: UUID,
        statuses: list[AuthorizationStatus] | None = None,
        date_range: DateRange | None = None,
        service_type_id: UUID | None = None,
        page: int = 1,
        page_size: int = 25,
    ) -> AuthorizationPage:
        """
        One page of a client's authorizations, newest start date first.

        Args:
            statuses: Restrict to these statuses (cancelled stays hidden).
            date_range: Restrict to authorizations intersecting this range.
            service_type_id: Restrict to authorizations covering this type.
            page: 1-based page number.
            page_size: Rows per page.
        """
        page = max(page, 1)
        page_size = max(page_size, 1)

        conditions = [self._live(), Authorization.client_id == client_id]
        if statuses:
            conditions.append(Authorization.status.in_(list(statuses)))
        if date_range is not None:
            conditions.append(Authorization.start_date <= date_range.end_date)
            conditions.append(Authorization.end_date >= date_range.start_date)
        if service_type_id is not None:
            conditions.append(
                exists().where(
                    AuthorizationServiceType.authorization_id == Authorization.id,
                    AuthorizationServiceType.service_type_id == service_type_id,
                )
            )

        total = self.session.execute(
            select(func.count()).select_from(Authorization).where(*conditions)
        ).scalar_one()

        query = (
            select(Authorization)
            .where(*conditions)
            .order_by(Authorization.start_date.desc(), Authorization.created_at.desc())
            .limit(page_size)
            .offset((page - 1) * page_size)
        )
        return AuthorizationPage(
            items=tuple(self._to_dtos(self._fetch(query))),
            total=int(total),
            page=page,
            page_size=page_size,
        )

    def overlapping_ids(
        self,
        client_id: UUID,
        service_type_ids: list[UUID],
        date_range: DateRange,
        statuses: frozenset[AuthorizationStatus],
        exclude_authorization_id: UUID | None = None,
    ) -> list[UUID]:
        """
        Ids of the client's authorizations that share a service type and
        intersect date_range (closed intervals).
        """
        if not service_type_ids or not statuses:
            return []
        query = (
            select(Authorization.id)
            .where(
                Authorization.client_id == client_id,
                Authorization.status.in_(list(statuses)),
                Authorization.start_date <= date_range.end_date,
                Authorization.end_date >= date_range.start_date,
                exists().where(
                    AuthorizationServiceType.authorization_id == Authorization.id,
                    AuthorizationServiceType.service_type_id.in_(list(service_type_ids)),
                ),
            )
            .order_by(Authorization.start_date)
        )
        if exclude_authorization_id is not None:
            query = query.where(Authorization.id != exclude_authorization_id)
        return list(self.session.execute(query).scalars())
