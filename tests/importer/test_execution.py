from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.exc import OperationalError

from leads_app.importer.pipeline import execution
from leads_app.importer.pipeline.execution import execute_import_run
from leads_app.importer.results import ErrorKind
from leads_app.models import ImportRow, ImportRowStatus, ImportRun, ImportRunStatus, Lead, db

from tests.importer.factories import lead_row


def _rows(run_id: int) -> list[ImportRow]:
    return db.session.query(ImportRow).filter_by(run_id=run_id).order_by(ImportRow.row_number).all()


def _assert_counters_balance(run: ImportRun) -> None:
    assert run.processed_rows == (
        run.created_count + run.hard_duplicate_count + run.soft_duplicate_count + run.error_count
    )


def test_distinct_rows_all_create_leads(workspace, upload_run):
    run_id = upload_run(
        [
            lead_row("Acme Plumbing", email="info@acmeplumbing.com", city="Austin"),
            lead_row("Beta Roofing", phone="512-555-0100", city="Dallas"),
            lead_row("Gamma Dental", website="https://gammadental.com", city="Houston"),
        ]
    )

    result = execute_import_run(db.session, workspace.id, run_id)

    assert result.ok
    summary = result.value
    assert summary.status == ImportRunStatus.COMPLETED.value
    assert summary.total_rows == summary.processed_rows == summary.created_count == 3
    assert summary.finished_at is not None

    leads = db.session.query(Lead).order_by(Lead.id).all()
    assert [lead.business_name for lead in leads] == ["Acme Plumbing", "Beta Roofing", "Gamma Dental"]
    assert all(lead.created_by_import_run_id == run_id for lead in leads)
    assert leads[0].domain_norm == "acmeplumbing.com"
    assert [row.matched_lead_id for row in _rows(run_id)] == [lead.id for lead in leads]


def test_same_batch_hard_duplicate_points_at_first_row_lead(workspace, upload_run):
    run_id = upload_run(
        [
            lead_row("Acme Plumbing", email="info@acmeplumbing.com"),
            lead_row("Acme Plumbing Services", email="INFO@acmeplumbing.com "),
        ]
    )

    summary = execute_import_run(db.session, workspace.id, run_id).value

    assert summary.created_count == 1
    assert summary.hard_duplicate_count == 1
    first, second = _rows(run_id)
    assert second.status == ImportRowStatus.HARD_DUPLICATE
    assert second.matched_lead_id == first.matched_lead_id
    assert db.session.query(Lead).count() == 1


def test_same_batch_soft_duplicate(workspace, upload_run):
    run_id = upload_run(
        [
            lead_row("Acme Plumbing", email="info@acmeplumbing.com", city="Austin"),
            lead_row("Acme Plumbing LLC", email="acme.plumbing@gmail.com", city="austin"),
        ]
    )

    summary = execute_import_run(db.session, workspace.id, run_id).value

    assert summary.created_count == 1
    assert summary.soft_duplicate_count == 1
    first, second = _rows(run_id)
    assert second.status == ImportRowStatus.SOFT_DUPLICATE
    assert second.matched_lead_id == first.matched_lead_id
    assert second.soft_score == 1.0


def test_phone_formats_match_existing_lead(workspace, lead_factory, upload_run):
    existing = lead_factory(business_name="Zenith Roofing", phone="(415) 555-0101")
    run_id = upload_run([lead_row("Totally Different Name", phone="+1 415-555-0101")])

    summary = execute_import_run(db.session, workspace.id, run_id).value

    assert summary.hard_duplicate_count == 1
    assert _rows(run_id)[0].matched_lead_id == existing.id


def test_hard_match_beats_soft_match(workspace, lead_factory, upload_run):
    lead_factory(business_name="Acme Plumbing", city="Austin")
    by_email = lead_factory(business_name="Someone Else", email="hello@acme.com")
    run_id = upload_run([lead_row("Acme Plumbing", email="hello@acme.com", city="Austin")])

    execute_import_run(db.session, workspace.id, run_id)

    row = _rows(run_id)[0]
    assert row.status == ImportRowStatus.HARD_DUPLICATE
    assert row.matched_lead_id == by_email.id


def test_hidden_leads_are_ignored_by_dedupe(workspace, other_workspace, lead_factory, upload_run):
    archived = lead_factory(business_name="Old Acme", email="dup@acme.com")
    archived.archived_at = datetime.now(timezone.utc)
    primary = lead_factory(business_name="Primary", email="primary@elsewhere.org")
    tombstoned = lead_factory(business_name="Merged Away", phone="5125550100")
    tombstoned.merged_into_lead_id = primary.id
    db.session.commit()
    lead_factory(workspace_id=other_workspace.id, business_name="Tenant Two", website="acme.io")

    run_id = upload_run(
        [
            lead_row("New Acme", email="dup@acme.com"),
            lead_row("New Beta", phone="512-555-0100"),
            lead_row("New Gamma", website="https://acme.io"),
        ]
    )

    summary = execute_import_run(db.session, workspace.id, run_id).value

    assert summary.created_count == 3
    assert summary.hard_duplicate_count == 0


def test_invalid_rows_become_errors_without_stopping_the_run(workspace, upload_run):
    run_id = upload_run(
        [
            lead_row("Acme Plumbing"),
            lead_row("", email="nobody@example.com"),
            lead_row("x" * 300),
            lead_row("Beta Roofing"),
        ]
    )

    summary = execute_import_run(db.session, workspace.id, run_id).value

    assert summary.status == ImportRunStatus.COMPLETED.value
    assert summary.created_count == 2
    assert summary.error_count == 2
    rows = _rows(run_id)
    assert rows[1].error_message == "Missing required field 'business_name'."
    assert "exceeds 255 characters" in rows[2].error_message
    assert rows[1].matched_lead_id is None


def test_counters_balance_after_mixed_run(workspace, lead_factory, upload_run):
    lead_factory(business_name="Acme Plumbing", email="info@acmeplumbing.com", city="Austin")
    run_id = upload_run(
        [
            lead_row("Acme Plumbing", email="info@acmeplumbing.com"),
            lead_row("Acme Plumbin", city="Austin"),
            lead_row(""),
            lead_row("Delta Electric", city="Austin"),
        ]
    )

    execute_import_run(db.session, workspace.id, run_id)

    run = db.session.get(ImportRun, run_id)
    _assert_counters_balance(run)
    assert (run.created_count, run.hard_duplicate_count, run.soft_duplicate_count, run.error_count) == (1, 1, 1, 1)
    assert run.processed_rows == run.total_rows == 4


def test_threshold_override(workspace, lead_factory, upload_run):
    lead_factory(business_name="Acme Plumbing", city="Austin")
    run_id = upload_run([lead_row("Acme Plumbin", city="Austin")])

    summary = execute_import_run(db.session, workspace.id, run_id, threshold=0.99).value

    assert summary.created_count == 1
    assert summary.soft_duplicate_count == 0


def test_soft_threshold_comes_from_config(app, workspace, lead_factory, upload_run):
    app.config["LEADS_SOFT_MATCH_THRESHOLD"] = 0.99
    lead_factory(business_name="Acme Plumbing", city="Austin")
    run_id = upload_run([lead_row("Acme Plumbin", city="Austin")])

    summary = execute_import_run(db.session, workspace.id, run_id).value

    assert summary.created_count == 1


def test_reexecuting_completed_run_changes_nothing(workspace, upload_run):
    run_id = upload_run([lead_row("Acme Plumbing"), lead_row("Beta Roofing")])
    first = execute_import_run(db.session, workspace.id, run_id).value

    second = execute_import_run(db.session, workspace.id, run_id)

    assert second.ok
    assert second.value.created_count == first.created_count == 2
    assert second.value.processed_rows == 2
    assert db.session.query(Lead).count() == 2


def test_interrupted_run_resumes_pending_rows(workspace, upload_run):
    run_id = upload_run([lead_row("Acme Plumbing"), lead_row("Beta Roofing")])
    run = db.session.get(ImportRun, run_id)
    run.status = ImportRunStatus.EXECUTING
    run.started_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
    db.session.commit()

    summary = execute_import_run(db.session, workspace.id, run_id).value

    assert summary.status == ImportRunStatus.COMPLETED.value
    assert summary.created_count == 2
    assert summary.started_at.year == 2024


def test_run_without_mapping_is_rejected(workspace, upload_run):
    run_id = upload_run([lead_row("Acme Plumbing")], mapping=None)

    result = execute_import_run(db.session, workspace.id, run_id)

    assert result.error.kind == ErrorKind.CONFLICT
    assert db.session.get(ImportRun, run_id).status == ImportRunStatus.PENDING_MAPPING
    assert db.session.query(Lead).count() == 0


def test_run_with_missing_rows_is_failed(workspace, upload_run):
    run_id = upload_run([lead_row("Acme Plumbing"), lead_row("Beta Roofing")])
    db.session.delete(_rows(run_id)[1])
    db.session.commit()

    result = execute_import_run(db.session, workspace.id, run_id)

    assert result.error.kind == ErrorKind.CONFLICT
    run = db.session.get(ImportRun, run_id)
    assert run.status == ImportRunStatus.FAILED
    assert "expected 2" in run.error_summary
    assert db.session.query(Lead).count() == 0
    assert execute_import_run(db.session, workspace.id, run_id).error.kind == ErrorKind.CONFLICT


def test_unknown_run(workspace):
    assert execute_import_run(db.session, workspace.id, 12345).error.kind == ErrorKind.NOT_FOUND


def test_storage_error_on_one_row_is_isolated(workspace, upload_run, monkeypatch):
    real_build_lead = execution.build_lead

    def build_lead_failing_for_beta(workspace_id, payload, **kwargs):
        if payload.get("business_name") == "Beta Roofing":
            raise OperationalError("INSERT INTO leads", {}, Exception("disk I/O error"))
        return real_build_lead(workspace_id, payload, **kwargs)

    monkeypatch.setattr(execution, "build_lead", build_lead_failing_for_beta)
    run_id = upload_run([lead_row("Acme Plumbing"), lead_row("Beta Roofing"), lead_row("Gamma Dental")])

    result = execute_import_run(db.session, workspace.id, run_id)

    assert result.ok
    summary = result.value
    assert summary.status == ImportRunStatus.COMPLETED.value
    assert (summary.created_count, summary.error_count, summary.processed_rows) == (2, 1, 3)
    rows = _rows(run_id)
    assert [row.status for row in rows] == [
        ImportRowStatus.CREATED,
        ImportRowStatus.ERROR,
        ImportRowStatus.CREATED,
    ]
    assert "disk I/O error" in rows[1].error_message
    assert rows[1].matched_lead_id is None
    assert sorted(lead.business_name for lead in db.session.query(Lead)) == ["Acme Plumbing", "Gamma Dental"]
