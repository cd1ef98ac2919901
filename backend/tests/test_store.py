"""
Tests for persisting tailoring results and their version chains.
"""

import pytest
from unittest.mock import MagicMock

from tailor_service.models import TailoredResume
from tailor_service.store import ResumeStore, TailoredResumeDraft


@pytest.fixture
def store(memory_store):
    return memory_store


def _draft(**overrides):
    values = dict(
        original_content="Original resume",
        tailored_content="Tailored resume v1",
        job_description="Backend engineer JD",
        match_score={"before": 55, "after": 78},
        improvement_metrics={"atsKeywordsMatched": 3},
        job_title="Backend Engineer",
        company_name="Acme",
        session_id="sess-1",
        user_id="user-1",
    )
    values.update(overrides)
    return TailoredResumeDraft(**values)


def test_first_version_is_its_own_root(store):
    resume_id = store.save_tailored_resume(_draft())
    record = store.get(resume_id)

    assert record.version_number == 1
    assert record.root_resume_id == resume_id
    assert record.parent_resume_id is None
    assert record.match_score == {"before": 55, "after": 78}
    assert record.created_at is not None


def test_child_inherits_from_parent(store):
    root_id = store.save_tailored_resume(_draft())
    child_id = store.save_tailored_resume(_draft(
        original_content="Different original",
        tailored_content="Tailored resume v2",
        job_description="Another JD",
        parent_resume_id=root_id,
    ))
    grandchild_id = store.save_tailored_resume(_draft(parent_resume_id=child_id))

    child = store.get(child_id)
    assert child.version_number == 2
    assert child.parent_resume_id == root_id
    assert child.root_resume_id == root_id
    assert child.original_content == "Original resume"
    assert child.job_description == "Backend engineer JD"
    assert child.tailored_content == "Tailored resume v2"

    grandchild = store.get(grandchild_id)
    assert grandchild.version_number == 3
    assert grandchild.root_resume_id == root_id


def test_unknown_parent_starts_new_chain(store):
    resume_id = store.save_tailored_resume(_draft(parent_resume_id="does-not-exist"))
    record = store.get(resume_id)

    assert record.version_number == 1
    assert record.parent_resume_id is None
    assert record.root_resume_id == resume_id


def test_unknown_company_and_blank_title_are_dropped(store):
    record = store.get(store.save_tailored_resume(_draft(company_name="Unknown Company", job_title="  ")))

    assert record.company_name is None
    assert record.job_title is None


def test_list_versions(store):
    root_id = store.save_tailored_resume(_draft())
    child_id = store.save_tailored_resume(_draft(
        parent_resume_id=root_id, match_score={"before": 78, "after": 85}
    ))
    store.save_tailored_resume(_draft(tailored_content="unrelated"))

    result = store.list_versions(child_id)

    assert result["rootResumeId"] == root_id
    assert [v["id"] for v in result["versions"]] == [root_id, child_id]
    assert [v["version_number"] for v in result["versions"]] == [1, 2]
    assert [v["matchScore"] for v in result["versions"]] == [78, 85]


def test_list_versions_unknown_id(store):
    assert store.list_versions("missing") is None


def test_failed_save_rolls_back():
    session = MagicMock()
    session.flush.side_effect = RuntimeError("disk full")
    store = ResumeStore(lambda: session)

    with pytest.raises(RuntimeError):
        store.save_tailored_resume(_draft())

    session.rollback.assert_called_once()
    session.close.assert_called_once()
    session.commit.assert_not_called()


def test_table_name():
    assert TailoredResume.__tablename__ == "tailored_resumes"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
