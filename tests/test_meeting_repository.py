from datetime import date

import pytest
from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError

from voice_minutes.errors import NotFoundError, PersistenceError, ValidationError
from voice_minutes.models import ActionItemInfo, AgendaInfo, StructuredMeeting, TranscriptionResult
from voice_minutes.services.db import ActionItemRow, ParticipantRow


def _asset(repository, name="meeting.mp3"):
    return repository.save_audio_asset(
        file_name=f"uuid_1_{name}", original_name=name, file_path=f"/tmp/{name}", file_size=123, mime_type="audio/mpeg"
    )


def test_save_meeting_then_get_by_id(repository, structured):
    asset = _asset(repository)
    saved = repository.save_meeting(structured, audio_asset_id=asset["id"])

    assert saved.complete
    meeting = repository.get_meeting_by_id(saved.meeting["id"])
    assert meeting["title"] == "Weekly Sync"
    assert meeting["status"] == "draft"
    assert meeting["audio_file"]["id"] == asset["id"]
    assert len(meeting["participants"]) == 2
    assert [a["title"] for a in meeting["agendas"]] == ["Budget", "Hiring"]
    assert len(meeting["action_items"]) == 2

    kim = meeting["participants"][0]
    assert (kim["participant_name"], kim["speaking_time"]) == ("Kim", 0.4)
    budget_actions = meeting["agendas"][0]["action_items"]
    assert budget_actions[0]["task_description"] == "Send report"
    assert budget_actions[0]["due_date"] == "2025-11-01"
    assert budget_actions[0]["status"] == "open"
    assert meeting["agendas"][1]["action_items"][0]["assignee"] == "未定"


def test_failed_agenda_is_recorded_and_others_saved(repository):
    # model_construct で検証を通さず、NOT NULL 違反になる議題を混ぜる
    bad = AgendaInfo.model_construct(
        order=1, title=None, discussion="", key_points=[], decisions=None,
        action_items=[ActionItemInfo(task="Orphan task")],
    )
    good = AgendaInfo(order=2, title="Budget", action_items=[ActionItemInfo(task="Send report")])
    structured = StructuredMeeting.model_construct(agendas=[bad, good])

    saved = repository.save_meeting(structured)

    assert [f["order"] for f in saved.failed_agendas] == [1]
    assert saved.failed_action_items == []
    meeting = repository.get_meeting_by_id(saved.meeting["id"])
    assert [a["title"] for a in meeting["agendas"]] == ["Budget"]
    assert sorted(i["task_description"] for i in meeting["action_items"]) == ["Orphan task", "Send report"]


@pytest.fixture
def reject_insert():
    """指定した行の INSERT だけを失敗させる"""
    installed = []

    def _install(row_cls, predicate):
        def listener(mapper, connection, target):
            if predicate(target):
                raise SQLAlchemyError(f"insert rejected: {row_cls.__tablename__}")

        event.listen(row_cls, "before_insert", listener)
        installed.append((row_cls, listener))

    yield _install
    for row_cls, listener in installed:
        event.remove(row_cls, "before_insert", listener)


def test_failed_participant_is_recorded_and_others_saved(repository, reject_insert):
    reject_insert(ParticipantRow, lambda row: row.participant_name == "Bad")
    structured = StructuredMeeting.model_validate({
        "meeting_info": {"title": "Weekly Sync"},
        "participants": [{"name": "Kim"}, {"name": "Bad"}, {"name": "Lee"}],
    })

    saved = repository.save_meeting(structured)

    assert not saved.complete
    assert [f["name"] for f in saved.failed_participants] == ["Bad"]
    assert saved.to_dict()["failed_participants"][0]["name"] == "Bad"
    meeting = repository.get_meeting_by_id(saved.meeting["id"])
    assert [p["participant_name"] for p in meeting["participants"]] == ["Kim", "Lee"]


def test_failed_action_item_is_recorded_and_siblings_saved(repository, reject_insert):
    reject_insert(ActionItemRow, lambda row: row.task_description == "Broken task")
    structured = StructuredMeeting.model_validate({
        "meeting_info": {"title": "Weekly Sync"},
        "agendas": [{
            "order": 1,
            "title": "Budget",
            "action_items": [{"task": "Send report"}, {"task": "Broken task"}, {"task": "Book room"}],
        }],
    })

    saved = repository.save_meeting(structured)

    assert not saved.complete
    assert saved.failed_agendas == []
    assert [f["task"] for f in saved.failed_action_items] == ["Broken task"]
    meeting = repository.get_meeting_by_id(saved.meeting["id"])
    assert [a["title"] for a in meeting["agendas"]] == ["Budget"]
    assert [i["task_description"] for i in meeting["agendas"][0]["action_items"]] == ["Send report", "Book room"]


def test_audio_status_transitions(repository, structured):
    asset = _asset(repository)

    with pytest.raises(ValidationError):
        repository.update_audio_asset_status(asset["id"], "completed")

    repository.update_audio_asset_status(asset["id"], "processing")
    with pytest.raises(PersistenceError):
        repository.update_audio_asset_status(asset["id"], "completed")

    repository.save_meeting(structured, audio_asset_id=asset["id"])
    done = repository.update_audio_asset_status(asset["id"], "completed")
    assert done["upload_status"] == "completed"
    assert done["processed_at"] is not None

    with pytest.raises(ValidationError):
        repository.update_audio_asset_status(asset["id"], "failed")


def test_failed_is_terminal(repository):
    asset = _asset(repository)
    repository.update_audio_asset_status(asset["id"], "failed", error_message="boom")
    assert repository.get_audio_asset(asset["id"])["error_message"] == "boom"
    with pytest.raises(ValidationError):
        repository.update_audio_asset_status(asset["id"], "processing")


def test_unknown_ids(repository):
    with pytest.raises(NotFoundError):
        repository.update_audio_asset_status(999, "processing")
    with pytest.raises(NotFoundError):
        repository.get_meeting_by_id(999)
    with pytest.raises(NotFoundError):
        repository.update_action_item(999, status="completed")


def test_meeting_lifecycle(repository):
    meeting = repository.create_meeting("手動登録の会議", meeting_date="2025-10-30")
    assert meeting["status"] == "draft"

    approved = repository.update_approval_status(meeting["id"], "approved", approved_by="佐藤")
    assert approved["approved_by"] == "佐藤"
    with pytest.raises(ValidationError):
        repository.update_approval_status(meeting["id"], "rejected")
    assert repository.update_approval_status(meeting["id"], "archived")["status"] == "archived"
    with pytest.raises(ValidationError):
        repository.update_approval_status(meeting["id"], "approved")


def test_approval_updates_documents(repository, structured):
    saved = repository.save_meeting(structured)
    meeting_id = saved.meeting["id"]
    repository.save_generated_document(meeting_id, "m.html", "/tmp/m.html", "html")

    repository.update_approval_status(meeting_id, "rejected")
    docs = repository.get_meeting_by_id(meeting_id)["documents"]
    assert [d["approval_status"] for d in docs] == ["rejected"]


def test_update_and_delete_meeting(repository, structured):
    saved = repository.save_meeting(structured)
    meeting_id = saved.meeting["id"]

    updated = repository.update_meeting(meeting_id, {"title": "Weekly Sync #2", "location": "Zoom", "status": "x"})
    assert (updated["title"], updated["location"], updated["status"]) == ("Weekly Sync #2", "Zoom", "draft")
    with pytest.raises(ValidationError):
        repository.update_meeting(meeting_id, {"title": " "})
    with pytest.raises(ValidationError):
        repository.update_meeting(meeting_id, {"meeting_type": None})
    assert repository.get_meeting_by_id(meeting_id)["meeting_type"] == "定例会議"

    repository.delete_meeting(meeting_id)
    with pytest.raises(NotFoundError):
        repository.get_meeting_by_id(meeting_id)


def test_action_items_counts_and_update(repository, structured):
    meeting_id = repository.save_meeting(structured).meeting["id"]
    actions = repository.get_action_items(meeting_id)
    assert (actions["total"], actions["open"], actions["completed"]) == (2, 2, 0)

    first = actions["items"][0]["id"]
    item = repository.update_action_item(first, status="completed", notes="送付済み", completion_date="2025-10-31")
    assert (item["status"], item["completion_date"], item["notes"]) == ("completed", "2025-10-31", "送付済み")

    actions = repository.get_action_items(meeting_id)
    assert (actions["open"], actions["completed"]) == (1, 1)

    reopened = repository.update_action_item(first, status="open")
    assert reopened["completion_date"] is None
    with pytest.raises(ValidationError):
        repository.update_action_item(first, status="done")


def test_meeting_list_and_statistics(repository, structured):
    asset = _asset(repository)
    repository.update_audio_asset_status(asset["id"], "processing")
    repository.save_meeting(structured, audio_asset_id=asset["id"])
    repository.update_audio_asset_status(asset["id"], "completed")
    other = _asset(repository, "other.mp3")
    repository.update_audio_asset_status(other["id"], "failed")
    manual = repository.create_meeting("手動")
    repository.update_approval_status(manual["id"], "approved")

    page = repository.get_meeting_list(limit=10)
    assert page["total"] == 2
    assert page["items"][0]["title"] == "手動"
    assert page["items"][1]["agenda_count"] == 2
    assert repository.get_meeting_list(status="approved")["total"] == 1
    with pytest.raises(ValidationError):
        repository.get_meeting_list(status="bogus")

    stats = repository.get_statistics()
    assert stats["total_meetings"] == 2
    assert stats["total_audio_files"] == 2
    assert stats["completed_files"] == 1
    assert stats["recent_meetings"] == 2
    assert stats["success_rate"] == 50.0


def test_voice_analysis_saved(repository, structured):
    asset = _asset(repository)
    transcription = TranscriptionResult(text="hello", language="ja", duration_seconds=3.0)
    analysis = repository.save_voice_analysis(asset["id"], transcription, structured, processing_seconds=1.5)

    assert analysis["key_topics"] == ["Budget", "Hiring"]
    assert analysis["confidence_score"] == 0.9
    assert repository.get_audio_asset(asset["id"])["voice_analysis"][0]["transcription_text"] == "hello"


def test_reconstruct_structure(repository, structured):
    meeting_id = repository.save_meeting(structured).meeting["id"]
    rebuilt = repository.reconstruct_structure(repository.get_meeting_by_id(meeting_id))

    assert rebuilt.meeting_info.title == "Weekly Sync"
    assert [a.title for a in rebuilt.agendas] == ["Budget", "Hiring"]
    assert rebuilt.agendas[0].action_items[0].deadline == date(2025, 11, 1)
    assert [p.speaking_frequency for p in rebuilt.participants] == ["high", "low"]
    assert rebuilt.key_outcomes.main_decisions == ["Keep the budget flat"]


def test_pending_action_items_across_meetings(repository, structured):
    first = repository.save_meeting(structured).meeting["id"]
    second = repository.save_meeting(structured).meeting["id"]
    done = repository.get_action_items(second)["items"][0]["id"]
    repository.update_action_item(done, status="completed")

    pending = repository.get_pending_action_items()
    # 期限ありが先、期限なしは最後
    assert [(i["meeting_id"], i["task_description"]) for i in pending] == [
        (first, "Send report"), (first, "Post job listing"), (second, "Post job listing"),
    ]
    assert pending[0]["meeting_title"] == "Weekly Sync"

    others = repository.get_pending_action_items(exclude_meeting_id=first)
    assert [i["meeting_id"] for i in others] == [second]
    assert len(repository.get_pending_action_items(limit=1)) == 1
