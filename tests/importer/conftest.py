from __future__ import annotations

import pytest

from leads_app.importer.pipeline.normalization import normalize_lead_payload
from leads_app.importer.pipeline.run_service import ImportRunService
from leads_app.models import Lead, db
from tests.importer.factories import LEAD_HEADERS, LEAD_MAPPING, build_csv


@pytest.fixture
def run_service(app):
    return ImportRunService(db.session)


@pytest.fixture
def lead_factory(workspace):
    """Persist a lead with its normalized identity columns filled in."""

    def _factory(*, workspace_id: int | None = None, **fields) -> Lead:
        values = {"business_name": "Acme Plumbing", **fields}
        lead = Lead(workspace_id=workspace_id or workspace.id, **values)
        lead.apply_normalized(normalize_lead_payload(values))
        db.session.add(lead)
        db.session.commit()
        return lead

    return _factory


@pytest.fixture
def upload_run(workspace, run_service):
    """Create a run from CSV rows, optionally storing a column mapping."""

    def _upload(rows, *, headers=None, mapping=LEAD_MAPPING, filename="leads.csv", idempotency_key=None) -> int:
        result = run_service.create_run_from_upload(
            workspace.id,
            7,
            filename,
            build_csv(headers or LEAD_HEADERS, rows),
            idempotency_key=idempotency_key,
        )
        assert result.ok, result.error
        run_id = result.value.run.id
        if mapping is not None:
            mapped = run_service.set_column_mapping(workspace.id, run_id, mapping)
            assert mapped.ok, mapped.error
        return run_id

    return _upload
