from datetime import date

from voice_minutes.models import (
    ActionItemInfo,
    AgendaInfo,
    ParticipantInfo,
    StructuredMeeting,
    UNASSIGNED,
    speaking_frequency_from_fraction,
)
from tests.conftest import SAMPLE_STRUCTURE


def test_agendas_sorted_by_order(structured):
    assert [a.title for a in structured.agendas] == ["Budget", "Hiring"]
    assert [a.order for a in structured.agendas] == [1, 2]


def test_missing_order_filled_by_position():
    s = StructuredMeeting.model_validate({"agendas": [{"title": "A"}, {"title": "B", "order": None}]})
    assert [(a.order, a.title) for a in s.agendas] == [(1, "A"), (2, "B")]


def test_action_item_normalization():
    item = ActionItemInfo.model_validate({"task": "Post job listing", "assignee": "", "deadline": "来週中", "priority": "低"})
    assert item.assignee == UNASSIGNED
    assert item.deadline is None
    assert item.priority == "low"

    dated = ActionItemInfo.model_validate({"task": "Send report", "deadline": "2025-11-01T00:00:00"})
    assert dated.deadline == date(2025, 11, 1)
    assert dated.priority == "medium"


def test_decisions_is_single_value():
    assert AgendaInfo.model_validate({"title": "x", "decisions": ["A", "B"]}).decisions == "A; B"
    assert AgendaInfo.model_validate({"title": "x", "decisions": ""}).decisions is None


def test_speaking_time_mapping():
    assert ParticipantInfo(name="Kim", speaking_frequency="high").speaking_time_fraction == 0.4
    assert ParticipantInfo(name="Lee", speaking_frequency="low").speaking_time_fraction == 0.2
    assert speaking_frequency_from_fraction(0.4) == "high"
    assert speaking_frequency_from_fraction(0.3) == "medium"
    assert speaking_frequency_from_fraction(0.25) == "low"


def test_null_sections_become_empty():
    s = StructuredMeeting.model_validate({
        "meeting_info": None,
        "participants": None,
        "agendas": None,
        "key_outcomes": None,
        "analysis_metadata": {"confidence_score": "1.7"},
    })
    assert s.meeting_info.title == "（無題）"
    assert s.participants == [] and s.agendas == []
    assert s.analysis_metadata.confidence_score == 1.0


def test_all_action_items_follow_agenda_order():
    s = StructuredMeeting.model_validate(SAMPLE_STRUCTURE)
    assert [i.task for i in s.all_action_items()] == ["Send report", "Post job listing"]
