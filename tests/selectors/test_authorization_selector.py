"""
Tests for AuthorizationSelector listings.

- list/find queries hide cancelled authorizations through one filter.
- Pagination is newest start date first.
"""

from datetime import date
from uuid import uuid4

from authorization_kernel.domain.dtos import AuthorizationStatus, DateRange, ServiceTypeEntry
from authorization_kernel.selectors.authorization_selector import AuthorizationSelector
from tests.conftest import build_header


def _seed(make_authorization, client, count):
    return [
        make_authorization(
            client_id=client,
            start_date=date(2020 + i, 1, 1),
            end_date=date(2020 + i, 12, 31),
            authorization_number=f"AUTH-{i}",
        )
        for i in range(count)
    ]


class TestFindForClient:
    def test_pagination_newest_first(self, session, make_authorization):
        client = uuid4()
        created = _seed(make_authorization, client, 5)
        selector = AuthorizationSelector(session)

        first = selector.find_for_client(client, page=1, page_size=2)
        last = selector.find_for_client(client, page=3, page_size=2)

        assert first.total == 5
        assert first.total_pages == 3
        assert [a.id for a in first.items] == [created[4].id, created[3].id]
        assert [a.id for a in last.items] == [created[0].id]

    def test_cancelled_hidden(self, session, make_authorization):
        client = uuid4()
        make_authorization(client_id=client)
        make_authorization(client_id=client, status=AuthorizationStatus.CANCELLED)

        page = AuthorizationSelector(session).find_for_client(client)
        assert page.total == 1
        assert all(a.status != AuthorizationStatus.CANCELLED for a in page.items)

    def test_cancelled_hidden_even_when_requested(self, session, make_authorization):
        client = uuid4()
        make_authorization(client_id=client, status=AuthorizationStatus.CANCELLED)
        page = AuthorizationSelector(session).find_for_client(
            client, statuses=[AuthorizationStatus.CANCELLED]
        )
        assert page.total == 0

    def test_filters(self, session, make_authorization):
        client = uuid4()
        s1 = uuid4()
        match = make_authorization(
            client_id=client, service_type_ids=[s1], status=AuthorizationStatus.APPROVED
        )
        make_authorization(client_id=client, status=AuthorizationStatus.APPROVED)
        make_authorization(client_id=client, service_type_ids=[s1])
        make_authorization(
            client_id=client,
            service_type_ids=[s1],
            status=AuthorizationStatus.APPROVED,
            start_date=date(2022, 1, 1),
            end_date=date(2022, 12, 31),
        )

        page = AuthorizationSelector(session).find_for_client(
            client,
            statuses=[AuthorizationStatus.APPROVED],
            date_range=DateRange(date(2024, 3, 1), date(2024, 3, 31)),
            service_type_id=s1,
        )
        assert [a.id for a in page.items] == [match.id]


class TestLedgerReads:
    def test_authorized_units_sums_caps(self, session, store):
        info = store.create(
            build_header(), [ServiceTypeEntry(uuid4(), 20), ServiceTypeEntry(uuid4(), 15)]
        )
        selector = AuthorizationSelector(session)
        assert selector.authorized_units(info.id) == 35
        assert selector.used_units(info.id) == 0
        assert selector.authorized_units(uuid4()) == 0
        assert selector.get(uuid4()) is None
