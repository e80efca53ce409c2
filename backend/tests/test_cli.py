"""Tests for the command-line interface."""

import json
from datetime import datetime, timedelta

import pytest
from typer.testing import CliRunner

from homebase import cli
from homebase.accounts.models import AccountCreate, Role
from homebase.accounts.service import AccountService
from homebase.billing.models import ProcessedWebhookEvent
from homebase.referral.models import AgentPayout, PayoutStatus

from conftest import FakeTransferClient

runner = CliRunner()


@pytest.fixture
def cli_db(database, monkeypatch):
    monkeypatch.setattr(cli, "db", database)
    monkeypatch.setattr(cli, "StripeTransferClient", FakeTransferClient)
    return database


def _signup(database, email, role=Role.HOMEOWNER, referral_code=None, **kwargs):
    with database.session() as session:
        account = AccountService(session).create_account(
            AccountCreate(email=email, role=role, referral_code=referral_code, **kwargs)
        )
        return account.id, account.referral_code


def _write_events(path, account_id, months):
    lines = [
        json.dumps({
            "account_id": account_id,
            "period_start": f"2026-{month:02d}-01T00:00:00",
            "period_end": f"2026-{month:02d}-28T00:00:00",
            "status": "paid",
            "amount": "29.00",
        })
        for month in months
    ]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


class TestCli:
    """Tests for CLI commands."""

    def test_process_events_and_payouts(self, cli_db, tmp_path):
        """Test a batch vests a payout that process-payouts then pays."""
        _, code = _signup(cli_db, "agent@example.com", Role.AGENT, payout_account_id="acct_1")
        referee_id, _ = _signup(cli_db, "owner@example.com", referral_code=code)
        events = _write_events(tmp_path / "events.jsonl", referee_id, [3, 1, 4, 2])

        result = runner.invoke(cli.app, ["process-events", str(events)])
        assert result.exit_code == 0, result.output
        assert "Processed: 4" in result.output

        result = runner.invoke(cli.app, ["process-payouts"])
        assert result.exit_code == 0, result.output

        with cli_db.session() as session:
            payout = session.query(AgentPayout).one()
            assert payout.status == PayoutStatus.PAID

    def test_process_events_reports_failures(self, cli_db, tmp_path):
        """Test failed accounts give a non-zero exit code."""
        events = _write_events(tmp_path / "events.jsonl", 404, [1])

        result = runner.invoke(cli.app, ["process-events", str(events)])

        assert result.exit_code == 1

    def test_no_pending_payouts(self, cli_db):
        """Test an empty payout queue."""
        result = runner.invoke(cli.app, ["process-payouts"])

        assert result.exit_code == 0
        assert "No pending payouts" in result.output

    def test_summary(self, cli_db):
        """Test the summary command."""
        account_id, code = _signup(cli_db, "owner@example.com")

        result = runner.invoke(cli.app, ["summary", str(account_id)])

        assert result.exit_code == 0
        assert code in result.output

    def test_summary_unknown_account(self, cli_db):
        """Test summary for a missing account."""
        assert runner.invoke(cli.app, ["summary", "999"]).exit_code == 1

    def test_recompute_credits(self, cli_db):
        """Test recomputing credits for all referrers."""
        _signup(cli_db, "a@example.com")
        _signup(cli_db, "b@example.com", Role.CONTRACTOR)

        result = runner.invoke(cli.app, ["recompute-credits"])

        assert result.exit_code == 0
        assert "Recomputed credits for 2 accounts" in result.output

    def test_retry_payout_unknown(self, cli_db):
        """Test retrying a missing payout."""
        assert runner.invoke(cli.app, ["retry-payout", "12"]).exit_code == 1

    def test_cleanup_webhooks(self, cli_db, monkeypatch):
        """Test old webhook markers are removed and recent ones kept."""
        monkeypatch.setattr("homebase.storage.db.db", cli_db)
        with cli_db.session() as session:
            session.add(ProcessedWebhookEvent(
                event_id="evt_old", event_type="invoice.paid", source="stripe",
                processed_at=datetime.utcnow() - timedelta(days=45),
            ))
            session.add(ProcessedWebhookEvent(
                event_id="evt_new", event_type="invoice.paid", source="stripe",
                processed_at=datetime.utcnow(),
            ))

        result = runner.invoke(cli.app, ["cleanup-webhooks", "--days", "30"])

        assert result.exit_code == 0
        assert "Deleted 1 webhook events" in result.output
        with cli_db.session() as session:
            assert [e.event_id for e in session.query(ProcessedWebhookEvent).all()] == ["evt_new"]
