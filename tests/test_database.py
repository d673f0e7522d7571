import pytest

from synpat.database import Portfolio, PortfolioPatent
from synpat.errors import NotFoundError
from synpat.hooks import HookEvent


def counters(db, portfolio_id):
    portfolio = db.get_portfolio(portfolio_id)
    return portfolio.n_patents, portfolio.essential_count


class TestPortfolioCounters:
    def test_counts_follow_membership(self, db, portfolio):
        assert counters(db, portfolio['id']) == (2, 1)

        db.remove_patent_from_portfolio(portfolio['id'], portfolio['patent_ids'][1])
        assert counters(db, portfolio['id']) == (1, 0)

    def test_adding_twice_keeps_one_link(self, db, portfolio):
        first = portfolio['patent_ids'][0]
        db.add_patent_to_portfolio(portfolio['id'], first, is_essential=True)

        assert counters(db, portfolio['id']) == (2, 2)
        session = db.get_session()
        try:
            assert session.query(PortfolioPatent).filter_by(patent_id=first).count() == 1
        finally:
            session.close()

    def test_removing_unlinked_patent(self, db, portfolio, make_patent):
        stray = make_patent("US3333333", "Stray")
        assert db.remove_patent_from_portfolio(portfolio['id'], stray) is False
        assert counters(db, portfolio['id']) == (2, 1)

    def test_reconcile_repairs_drift(self, db, portfolio):
        with db.session_scope() as session:
            session.get(Portfolio, portfolio['id']).n_patents = 17

        assert db.reconcile_portfolio_counts() == 1
        assert counters(db, portfolio['id']) == (2, 1)
        assert db.reconcile_portfolio_counts() == 0

    def test_unknown_rows(self, db, widget_patent):
        with pytest.raises(NotFoundError):
            db.add_patent_to_portfolio(99, widget_patent)
        portfolio_id = db.create_portfolio({'title': 'Empty'})
        with pytest.raises(NotFoundError):
            db.add_patent_to_portfolio(portfolio_id, 99)


class TestReads:
    def test_portfolio_patents_follow_display_order(self, db, portfolio, make_patent):
        third = make_patent("US4444444", "Widget spring")
        db.add_patent_to_portfolio(portfolio['id'], third, display_order=-1)

        numbers = [p.patent_number for p in db.get_portfolio_patents(portfolio['id'])]
        assert numbers == ['US4444444', 'US1111111', 'US2222222']

    def test_get_patents_keeps_requested_order(self, db, portfolio):
        first, second = portfolio['patent_ids']
        assert [p.id for p in db.get_patents([second, 999, first])] == [second, first]

    def test_create_portfolio_emits_event(self, db, hooks):
        created = []
        hooks.subscribe(HookEvent.PORTFOLIO_CREATED, lambda portfolio_id: created.append(portfolio_id))
        portfolio_id = db.create_portfolio({'title': 'Codecs', 'not_a_column': 'ignored'})
        assert created == [portfolio_id]
        assert db.get_portfolio(portfolio_id).status == 'active'

    def test_to_dict_serializes_dates_and_decimals(self, db, portfolio):
        data = db.get_portfolio(portfolio['id']).to_dict()
        assert data['upfront_fee'] == 250000.0
        assert isinstance(data['created_at'], str)
