from __future__ import annotations

from datetime import datetime, time, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from api.db.session import SessionLocal
from api.models import ContractStatusEnum, EmailNotification, Event
from api.services import contract_store
from api.services.analysis import ContractAnalysisService, contract_stats
from api.services.exceptions import ExtractorTimeoutError, NotFoundError, StorageError
from api.services.intake import validate_upload
from api.services.notifications import KIND_ANALYSIS_READY, KIND_NOTICE_DEADLINE

PDF_BYTES = b"%PDF-1.7\n" + b"A" * 4096 + b"\n%%EOF"


def _upload(name: str = "contract.pdf"):
    return validate_upload(PDF_BYTES, name, "application/pdf")


@pytest.fixture()
def service(db_session, fake_extractor, fake_storage) -> ContractAnalysisService:
    return ContractAnalysisService(db_session, fake_extractor, fake_storage)


def test_analyze_new_success_stores_payload(service, db_session, user, fake_storage) -> None:
    contract_id = service.analyze_new(_upload(), user.id)

    contract = service.get(contract_id, user.id)
    assert contract.status == ContractStatusEnum.ANALYZED
    assert contract.analysis["provider"] == "Acme Mobile"
    assert contract.last_error is None
    assert contract.analyzed_at is not None
    assert fake_storage.objects[contract.storage_key] == PDF_BYTES

    events = db_session.execute(select(Event.type).where(Event.contract_id == contract_id)).scalars().all()
    assert set(events) == {"upload", "analysis_completed"}


def test_analyze_new_extractor_failure_is_persisted(service, user, fake_extractor) -> None:
    fake_extractor.fail = True

    contract_id = service.analyze_new(_upload(), user.id)

    contract = service.get(contract_id, user.id)
    assert contract.status == ContractStatusEnum.FAILED
    assert contract.analysis is None
    assert contract.last_error == "extractor unavailable"


def test_analyze_new_never_leaves_contract_pending(service, user, fake_extractor) -> None:
    ids = [service.analyze_new(_upload("a.pdf"), user.id)]
    fake_extractor.fail = True
    ids.append(service.analyze_new(_upload("b.pdf"), user.id))

    statuses = {service.get(contract_id, user.id).status for contract_id in ids}
    assert statuses == {ContractStatusEnum.ANALYZED, ContractStatusEnum.FAILED}


def test_failed_reanalyze_keeps_previous_payload(service, user, fake_extractor) -> None:
    contract_id = service.analyze_new(_upload(), user.id)
    original = service.get(contract_id, user.id).analysis

    fake_extractor.fail = True
    assert service.reanalyze(contract_id, user.id) is False

    contract = service.get(contract_id, user.id)
    assert contract.status == ContractStatusEnum.FAILED
    assert contract.last_error == "extractor unavailable"
    assert contract.analysis == original


def test_reanalyze_is_idempotent_with_deterministic_extractor(service, user, fake_extractor) -> None:
    contract_id = service.analyze_new(_upload(), user.id)

    assert service.reanalyze(contract_id, user.id) is True
    first = service.get(contract_id, user.id).analysis
    assert service.reanalyze(contract_id, user.id) is True
    second = service.get(contract_id, user.id).analysis

    assert first == second
    assert service.get(contract_id, user.id).status == ContractStatusEnum.ANALYZED
    assert len(fake_extractor.calls) == 3


def test_reanalyze_after_failure_recovers(service, user, fake_extractor) -> None:
    fake_extractor.fail = True
    contract_id = service.analyze_new(_upload(), user.id)

    fake_extractor.fail = False
    assert service.reanalyze(contract_id, user.id) is True

    contract = service.get(contract_id, user.id)
    assert contract.status == ContractStatusEnum.ANALYZED
    assert contract.last_error is None
    assert contract.analysis is not None


def test_other_owner_gets_not_found(service, user, other_user) -> None:
    contract_id = service.analyze_new(_upload(), user.id)

    with pytest.raises(NotFoundError):
        service.get(contract_id, other_user.id)
    with pytest.raises(NotFoundError):
        service.reanalyze(contract_id, other_user.id)
    assert service.delete(contract_id, other_user.id) is False
    assert service.get(contract_id, user.id).id == contract_id


def test_stale_version_write_is_rejected(db_session, user) -> None:
    contract = contract_store.create_contract(
        db_session,
        user_id=user.id,
        filename="c.pdf",
        content_type="application/pdf",
        size_bytes=10,
        storage_key="contracts/x/c.pdf",
    )
    db_session.commit()

    first = contract_store.mark_analyzing(db_session, contract.id, user.id)
    second = contract_store.mark_analyzing(db_session, contract.id, user.id)
    assert (first, second) == (1, 2)

    assert contract_store.record_analysis_success(
        db_session, contract.id, user.id, analysis={"summary": "old"}, expected_version=first
    ) is False
    assert contract_store.record_analysis_success(
        db_session, contract.id, user.id, analysis={"summary": "new"}, expected_version=second
    ) is True
    db_session.commit()

    assert contract_store.get_contract(db_session, contract.id, user.id).analysis == {"summary": "new"}


def test_concurrent_reanalyze_drops_older_result(service, user, fake_extractor) -> None:
    contract_id = service.analyze_new(_upload(), user.id)
    original = service.get(contract_id, user.id).analysis

    class RacingExtractor(type(fake_extractor)):
        def extract(self, content, filename, content_type):
            # a second re-analysis starts while this one is still running
            with SessionLocal() as other:
                contract_store.mark_analyzing(other, contract_id, user.id)
                other.commit()
            return super().extract(content, "racing.pdf", content_type)

    service.extractor = RacingExtractor()

    assert service.reanalyze(contract_id, user.id) is False
    contract = service.get(contract_id, user.id)
    assert contract.status == ContractStatusEnum.ANALYZING
    assert contract.analysis == original


def test_delete_racing_reanalyze_returns_false(service, user, fake_extractor) -> None:
    contract_id = service.analyze_new(_upload(), user.id)

    class DeletingExtractor(type(fake_extractor)):
        def extract(self, content, filename, content_type):
            with SessionLocal() as other:
                contract_store.delete_contract(other, contract_id, user.id)
                other.commit()
            return super().extract(content, filename, content_type)

    service.extractor = DeletingExtractor()

    assert service.reanalyze(contract_id, user.id) is False
    with pytest.raises(NotFoundError):
        service.get(contract_id, user.id)


def test_delete_twice_returns_false_second_time(service, user, fake_storage) -> None:
    contract_id = service.analyze_new(_upload(), user.id)
    storage_key = service.get(contract_id, user.id).storage_key

    assert service.delete(contract_id, user.id) is True
    assert storage_key not in fake_storage.objects
    assert service.delete(contract_id, user.id) is False


def test_stats_count_analyzing_as_pending(db_session, service, user, other_user, fake_extractor) -> None:
    service.analyze_new(_upload("ok.pdf"), user.id)
    fake_extractor.fail = True
    service.analyze_new(_upload("bad.pdf"), user.id)

    contract_store.create_contract(
        db_session, user_id=user.id, filename="w.pdf", content_type="application/pdf", size_bytes=1, storage_key="k1"
    )
    running = contract_store.create_contract(
        db_session, user_id=user.id, filename="r.pdf", content_type="application/pdf", size_bytes=1, storage_key="k2"
    )
    contract_store.mark_analyzing(db_session, running.id, user.id)
    db_session.commit()

    stats = contract_stats(db_session, user.id)
    assert stats.as_dict() == {"total": 4, "analyzed": 1, "pending": 2, "failed": 1}
    assert service.stats(other_user.id).as_dict() == {"total": 0, "analyzed": 0, "pending": 0, "failed": 0}


def test_success_schedules_ready_and_deadline_reminders(db_session, service, user, fake_extractor) -> None:
    deadline = datetime.now(timezone.utc).date() + timedelta(days=90)
    fake_extractor.notice_deadline = deadline

    contract_id = service.analyze_new(_upload(), user.id)

    notifications = db_session.execute(
        select(EmailNotification).where(EmailNotification.contract_id == contract_id)
    ).scalars().all()
    kinds = sorted(notification.kind for notification in notifications)
    assert kinds == [KIND_ANALYSIS_READY, KIND_NOTICE_DEADLINE, KIND_NOTICE_DEADLINE]
    assert all(notification.recipient_email == user.email for notification in notifications)

    reminder_times = {
        notification.scheduled_for.replace(tzinfo=None)
        for notification in notifications
        if notification.kind == KIND_NOTICE_DEADLINE
    }
    assert reminder_times == {
        datetime.combine(deadline - timedelta(days=30), time(hour=8)),
        datetime.combine(deadline - timedelta(days=7), time(hour=8)),
    }


def test_reanalyze_does_not_duplicate_notifications(db_session, service, user, fake_extractor) -> None:
    fake_extractor.notice_deadline = datetime.now(timezone.utc).date() + timedelta(days=10)

    contract_id = service.analyze_new(_upload(), user.id)
    service.reanalyze(contract_id, user.id)
    service.reanalyze(contract_id, user.id)

    kinds = sorted(
        db_session.execute(
            select(EmailNotification.kind).where(EmailNotification.contract_id == contract_id)
        ).scalars().all()
    )
    # 30-day reminder already lies in the past
    assert kinds == [KIND_ANALYSIS_READY, KIND_NOTICE_DEADLINE]


def test_failure_schedules_nothing(db_session, service, user, fake_extractor) -> None:
    fake_extractor.fail = True
    service.analyze_new(_upload(), user.id)

    assert db_session.execute(select(EmailNotification)).scalars().all() == []


def test_extractor_timeout_marks_contract_failed(service, user, fake_extractor) -> None:
    class SlowExtractor(type(fake_extractor)):
        def extract(self, content, filename, content_type):
            raise ExtractorTimeoutError("Extractor timed out after 60s")

    service.extractor = SlowExtractor()

    contract_id = service.analyze_new(_upload(), user.id)

    contract = service.get(contract_id, user.id)
    assert contract.status == ContractStatusEnum.FAILED
    assert contract.analysis is None
    assert contract.last_error == "Extractor timed out after 60s"


def test_storage_fault_while_recording_outcome_leaves_row_analyzing(service, user, monkeypatch) -> None:
    def _broken_write(*_args, **_kwargs):
        raise OperationalError("UPDATE contracts", {}, Exception("connection lost"))

    monkeypatch.setattr(contract_store, "record_analysis_success", _broken_write)

    with pytest.raises(StorageError):
        service.analyze_new(_upload(), user.id)

    monkeypatch.undo()
    contracts = contract_store.list_contracts(service.db, user.id)
    assert [contract.status for contract in contracts] == [ContractStatusEnum.ANALYZING]
