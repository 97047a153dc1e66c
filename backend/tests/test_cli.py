# Overview: Pytest coverage for the Flask CLI bootstrap commands.

from chifa_pos.models import CashDrawer, Pharmacy
from chifa_pos.services import identity_service


class TestBootstrapCommands:

    def test_create_pharmacy(self, app, db_session):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["pharmacies", "create", "--name", "Pharmacie Es Salam", "--code", "SALAM"])

        assert "PASS Created pharmacy" in result.output
        assert db_session.query(Pharmacy).filter_by(code="SALAM").count() == 1

    def test_duplicate_pharmacy_code(self, app, db_session, pharmacy_a):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["pharmacies", "create", "--name", "Autre", "--code", pharmacy_a.code])
        assert "FAIL" in result.output

    def test_issue_token_resolves(self, app, db_session, pharmacy_a):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            "tokens", "issue", "--pharmacy-id", str(pharmacy_a.id),
            "--actor-id", "u-cli", "--name", "Samir K.", "--employee",
        ])

        token = result.output.strip().splitlines()[-1]
        actor = identity_service.resolve_token(token)
        assert actor.actor_id == "u-cli"
        assert actor.pharmacy_id == pharmacy_a.id
        assert actor.is_employee is True

    def test_create_and_list_drawers(self, app, db_session, pharmacy_a):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            "drawers", "create", "--pharmacy-id", str(pharmacy_a.id), "--code", "CAISSE-9", "--name", "Nuit",
        ])
        assert "PASS Created drawer" in result.output
        assert db_session.query(CashDrawer).filter_by(code="CAISSE-9").count() == 1

        result = runner.invoke(args=["drawers", "list", "--pharmacy-id", str(pharmacy_a.id)])
        assert "CAISSE-9" in result.output

    def test_list_sessions(self, app, db_session, session_a):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["sessions", "list", "--pharmacy-id", str(session_a.pharmacy_id)])

        assert session_a.session_number in result.output
        assert "Showing 1 of 1 session(s)" in result.output
