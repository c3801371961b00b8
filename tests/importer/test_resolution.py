from __future__ import annotations

import pytest
from sqlalchemy.orm import Session

from leads_app.importer.pipeline.execution import execute_import_run
from leads_app.importer.pipeline.resolution import resolve_soft_duplicate
from leads_app.importer.results import ErrorKind
from leads_app.models import ImportRow, ImportRowStatus, ImportRun, Lead, LeadNote, MergeLog, db

from tests.importer.factories import lead_row


@pytest.fixture
def soft_duplicate(workspace, lead_factory, upload_run):
    """An executed run whose only row is a soft duplicate of an existing lead."""

    existing = lead_factory(business_name="Acme Plumbing", email="info@acmeplumbing.com", city="Austin")
    run_id = upload_run(
        [
            lead_row(
                "Acme Plumbing Inc",
                contact="Jo Rivera",
                email="owner@gmail.com",
                phone="512-555-0100",
                city="Austin",
            )
        ]
    )
    execute_import_run(db.session, workspace.id, run_id)
    row = db.session.query(ImportRow).filter_by(run_id=run_id).one()
    assert row.status == ImportRowStatus.SOFT_DUPLICATE
    return run_id, row.id, existing.id


def test_create_resolution_makes_a_new_lead(workspace, soft_duplicate):
    run_id, row_id, existing_id = soft_duplicate

    result = resolve_soft_duplicate(db.session, workspace.id, run_id, row_id, "create", 9, reason="Different branch")

    assert result.ok
    outcome = result.value
    assert outcome.action == "create"
    assert outcome.lead_id not in (None, existing_id)
    assert outcome.row.status == ImportRowStatus.CREATED.value
    assert outcome.row.matched_lead_id == outcome.lead_id
    assert outcome.row.resolution_reason == "Different branch"
    lead = db.session.get(Lead, outcome.lead_id)
    assert lead.business_name == "Acme Plumbing Inc"
    assert lead.created_by_import_run_id == run_id
    assert db.session.query(Lead).filter(Lead.visible()).count() == 2


def test_skip_resolution_writes_nothing_but_the_row(workspace, soft_duplicate):
    run_id, row_id, _ = soft_duplicate

    result = resolve_soft_duplicate(db.session, workspace.id, run_id, row_id, "skip", 9)

    assert result.value.row.status == ImportRowStatus.SKIPPED.value
    assert result.value.lead_id is None
    assert db.session.query(Lead).count() == 1
    row = db.session.get(ImportRow, row_id)
    assert row.resolution_action == "skip"
    assert row.resolved_by_id == 9
    assert row.resolved_at is not None


def test_merge_resolution_folds_row_into_existing_lead(workspace, soft_duplicate):
    run_id, row_id, existing_id = soft_duplicate

    result = resolve_soft_duplicate(
        db.session,
        workspace.id,
        run_id,
        row_id,
        "merge",
        9,
        matched_lead_id=existing_id,
        chosen_fields={"email": "existing", "phone": "incoming", "contact_name": "incoming"},
    )

    assert result.ok
    outcome = result.value
    assert outcome.lead_id == existing_id
    assert outcome.row.status == ImportRowStatus.HARD_DUPLICATE.value
    assert outcome.row.matched_lead_id == existing_id

    db.session.expire_all()
    lead = db.session.get(Lead, existing_id)
    assert lead.email == "info@acmeplumbing.com"
    assert lead.phone == "512-555-0100"
    assert lead.contact_name == "Jo Rivera"
    assert db.session.query(Lead).filter(Lead.visible()).count() == 1

    log = db.session.get(MergeLog, outcome.merge_log_id)
    assert log.import_run_id == run_id
    assert log.primary_lead_id == existing_id
    assert db.session.get(Lead, log.merged_lead_id).merged_into_lead_id == existing_id


def test_resolution_leaves_run_counters_alone(workspace, soft_duplicate):
    run_id, row_id, _ = soft_duplicate

    resolve_soft_duplicate(db.session, workspace.id, run_id, row_id, "create", 9)

    run = db.session.get(ImportRun, run_id)
    assert run.soft_duplicate_count == 1
    assert run.created_count == 0


def test_row_can_only_be_resolved_once(workspace, soft_duplicate):
    run_id, row_id, _ = soft_duplicate
    assert resolve_soft_duplicate(db.session, workspace.id, run_id, row_id, "skip", 9).ok

    again = resolve_soft_duplicate(db.session, workspace.id, run_id, row_id, "create", 9)

    assert again.error.kind == ErrorKind.CONFLICT
    assert db.session.query(Lead).count() == 1


def test_resolution_input_validation(workspace, soft_duplicate):
    run_id, row_id, existing_id = soft_duplicate

    unknown = resolve_soft_duplicate(db.session, workspace.id, run_id, row_id, "archive", 9)
    no_target = resolve_soft_duplicate(db.session, workspace.id, run_id, row_id, "merge", 9, chosen_fields={})
    no_choices = resolve_soft_duplicate(
        db.session, workspace.id, run_id, row_id, "merge", 9, matched_lead_id=existing_id
    )

    assert unknown.error.kind == ErrorKind.VALIDATION
    assert no_target.error.kind == ErrorKind.VALIDATION
    assert no_choices.error.kind == ErrorKind.VALIDATION
    assert db.session.get(ImportRow, row_id).status == ImportRowStatus.SOFT_DUPLICATE


def test_only_soft_duplicates_are_resolvable(workspace, upload_run):
    run_id = upload_run([lead_row("Acme Plumbing")])
    execute_import_run(db.session, workspace.id, run_id)
    row = db.session.query(ImportRow).filter_by(run_id=run_id).one()

    result = resolve_soft_duplicate(db.session, workspace.id, run_id, row.id, "skip", 9)

    assert result.error.kind == ErrorKind.CONFLICT


def test_failed_merge_rolls_back_the_claim(workspace, other_workspace, soft_duplicate, lead_factory):
    run_id, row_id, _ = soft_duplicate
    foreign = lead_factory(workspace_id=other_workspace.id, business_name="Acme Plumbing")

    result = resolve_soft_duplicate(
        db.session, workspace.id, run_id, row_id, "merge", 9, matched_lead_id=foreign.id, chosen_fields={}
    )

    assert result.error.kind == ErrorKind.NOT_FOUND
    assert db.session.get(ImportRow, row_id).status == ImportRowStatus.SOFT_DUPLICATE
    assert db.session.query(Lead).filter_by(workspace_id=workspace.id).count() == 1
    assert db.session.query(MergeLog).count() == 0


def test_rows_from_other_workspaces_are_not_found(other_workspace, soft_duplicate):
    run_id, row_id, _ = soft_duplicate

    result = resolve_soft_duplicate(db.session, other_workspace.id, run_id, row_id, "skip", 9)

    assert result.error.kind == ErrorKind.NOT_FOUND


def test_merge_resolution_notes_the_surviving_lead(workspace, soft_duplicate):
    run_id, row_id, existing_id = soft_duplicate

    result = resolve_soft_duplicate(
        db.session, workspace.id, run_id, row_id, "merge", 9, matched_lead_id=existing_id, chosen_fields={}
    )

    assert result.ok
    notes = db.session.query(LeadNote).filter_by(lead_id=existing_id).all()
    assert len(notes) == 1
    assert notes[0].body.startswith(f"Merged from import run {run_id} row 1 at ")
    assert notes[0].author_id == 9
    assert notes[0].workspace_id == workspace.id


def test_failed_merge_leaves_no_note(workspace, other_workspace, soft_duplicate, lead_factory):
    run_id, row_id, existing_id = soft_duplicate
    foreign = lead_factory(workspace_id=other_workspace.id, business_name="Acme Plumbing")

    resolve_soft_duplicate(
        db.session, workspace.id, run_id, row_id, "merge", 9, matched_lead_id=foreign.id, chosen_fields={}
    )

    assert db.session.query(LeadNote).count() == 0


def test_resolver_losing_the_race_gets_conflict(workspace, soft_duplicate):
    run_id, row_id, _ = soft_duplicate
    # Loaded as unresolved in this session before the other resolver commits.
    assert db.session.get(ImportRow, row_id).status == ImportRowStatus.SOFT_DUPLICATE

    with Session(db.engine) as other:
        assert resolve_soft_duplicate(other, workspace.id, run_id, row_id, "skip", 11).ok

    result = resolve_soft_duplicate(db.session, workspace.id, run_id, row_id, "create", 9)

    assert result.error.kind == ErrorKind.CONFLICT
    assert db.session.query(Lead).count() == 1
    db.session.expire_all()
    row = db.session.get(ImportRow, row_id)
    assert row.status == ImportRowStatus.SKIPPED
    assert row.resolved_by_id == 11
    assert row.matched_lead_id is None
