import pytest
from fastapi import HTTPException

from conftest import in_minutes, run

from codebridge.assignments.service import apply_late_penalty, check_upload_policy, compute_grade


# ==================== GRADING MATH ====================

def test_late_penalty():
    assert apply_late_penalty(80, 10, is_late=True) == 72
    assert apply_late_penalty(80, 10, is_late=False) == 80
    assert apply_late_penalty(80, 0, is_late=True) == 80
    assert apply_late_penalty(80, 100, is_late=True) == 0


def test_compute_grade_uses_default_passing_score():
    grade = compute_grade({"max_score": 50}, {"is_late": False}, 25)
    assert grade == {"score": 25, "final_score": 25, "percentage": 50.0, "passed": True}


def test_compute_grade_late_submission_can_fail():
    assignment = {"max_score": 100, "passing_score": 60, "late_submission_penalty": 20}
    grade = compute_grade(assignment, {"is_late": True}, 70)
    assert grade["final_score"] == 56
    assert grade["percentage"] == 56.0
    assert grade["passed"] is False


@pytest.mark.parametrize("score", [-1, 101])
def test_compute_grade_rejects_out_of_range(score):
    with pytest.raises(HTTPException) as exc:
        compute_grade({"max_score": 100}, {}, score)
    assert exc.value.status_code == 400


def test_upload_policy_checks_type_and_size():
    policy = {"allowed_types": ["pdf", "zip"], "max_file_size_mb": 1}
    check_upload_policy([{"url": "https://cdn/x/report.PDF", "file_size": 1024}], policy)
    check_upload_policy([{"url": "https://cdn/x/blob", "file_type": "zip"}], policy)
    check_upload_policy([{"url": "https://cdn/x/run.exe"}], {})

    with pytest.raises(HTTPException) as exc:
        check_upload_policy([{"url": "https://cdn/x/run.exe"}], policy)
    assert exc.value.detail == "File type not allowed: https://cdn/x/run.exe"

    with pytest.raises(HTTPException) as exc:
        check_upload_policy([{"url": "u", "file_name": "big.pdf", "file_size": 2 * 1024 * 1024}], policy)
    assert exc.value.detail == "File exceeds 1 MB limit: big.pdf"


# ==================== API ====================

@pytest.fixture
def course(tutor, student, make_course, enroll):
    course = make_course(tutor)
    enroll(course, student)
    return course


def create_assignment(client, tutor, course, **overrides):
    payload = {
        "course_id": course["course_id"],
        "title": "Linked lists",
        "description": "Implement a singly linked list",
        "due_date": in_minutes(60 * 24),
        "max_score": 100,
        **overrides
    }
    response = client.post("/assignments", json=payload, headers=tutor["headers"])
    assert response.status_code == 201, response.text
    return response.json()["data"]


def test_create_assignment_defaults_and_notifies(client, db, tutor, student, course):
    assignment = create_assignment(client, tutor, course)
    assert assignment["passing_score"] == 50
    assert assignment["tutor_id"] == tutor["user_id"]

    notification = run(db.notifications.find_one({"user_id": student["user_id"], "type": "assignment"}))
    assert notification["metadata"]["assignment_id"] == assignment["assignment_id"]


def test_passing_score_above_max_rejected(client, tutor, course):
    response = client.post("/assignments", json={
        "course_id": course["course_id"],
        "title": "Trees",
        "description": "Binary search trees",
        "due_date": in_minutes(60),
        "max_score": 10,
        "passing_score": 20
    }, headers=tutor["headers"])
    assert response.status_code == 400


def test_other_tutor_cannot_create(client, make_user, course):
    other = make_user("tutor", verified_tutor=True)
    response = client.post("/assignments", json={
        "course_id": course["course_id"],
        "title": "Trees",
        "description": "Binary search trees",
        "due_date": in_minutes(60)
    }, headers=other["headers"])
    assert response.status_code == 403


def test_submit_requires_enrollment_and_content(client, tutor, student, make_user, course):
    assignment = create_assignment(client, tutor, course)
    url = f"/assignments/{assignment['assignment_id']}/submit"

    outsider = make_user("student")
    assert client.post(url, json={"submission_text": "hi"}, headers=outsider["headers"]).status_code == 403

    empty = client.post(url, json={"submission_text": "   "}, headers=student["headers"])
    assert empty.status_code == 400
    assert empty.json()["message"] == "Submission must include text or files"


def test_submission_files_follow_upload_policy(client, db, tutor, student, course):
    run(db.platform_settings.insert_one({"key": "integrations", "uploads": {"allowed_types": ["pdf"]}}))
    assignment = create_assignment(client, tutor, course)
    url = f"/assignments/{assignment['assignment_id']}/submit"

    rejected = client.post(url, json={"files": [{"url": "https://cdn/x/hack.exe"}]}, headers=student["headers"])
    assert rejected.status_code == 400
    assert rejected.json()["message"] == "File type not allowed: https://cdn/x/hack.exe"

    accepted = client.post(url, json={"files": [{"url": "https://cdn/x/answer.pdf"}]}, headers=student["headers"])
    assert accepted.status_code == 201
    assert accepted.json()["data"]["files"][0]["url"] == "https://cdn/x/answer.pdf"


def test_submit_and_resubmit(client, db, tutor, student, course):
    assignment = create_assignment(client, tutor, course)
    url = f"/assignments/{assignment['assignment_id']}/submit"

    first = client.post(url, json={"submission_text": "class Node: ..."}, headers=student["headers"])
    assert first.status_code == 201
    submission = first.json()["data"]
    assert submission["status"] == "submitted"
    assert submission["attempt_number"] == 1
    assert submission["is_late"] is False

    graded = client.put(
        f"/assignments/submissions/{submission['submission_id']}/grade",
        json={"score": 90, "feedback": "Nice"},
        headers=tutor["headers"]
    )
    assert graded.json()["data"]["status"] == "graded"

    second = client.post(url, json={"submission_text": "class Node: pass"}, headers=student["headers"])
    resubmitted = second.json()["data"]
    assert resubmitted["status"] == "resubmitted"
    assert resubmitted["attempt_number"] == 2
    assert resubmitted["score"] is None
    assert resubmitted["submission_id"] == submission["submission_id"]

    assert run(db.submissions.count_documents({"assignment_id": assignment["assignment_id"]})) == 1
    stats = run(db.student_stats.find_one({"user_id": student["user_id"]}))
    assert stats["assignments_submitted"] == 1


def test_deadline_enforced(client, tutor, student, course):
    assignment = create_assignment(client, tutor, course, due_date=in_minutes(-60))
    response = client.post(
        f"/assignments/{assignment['assignment_id']}/submit",
        json={"submission_text": "late"},
        headers=student["headers"]
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Assignment deadline has passed"


def test_late_submission_penalized_when_allowed(client, tutor, student, course):
    assignment = create_assignment(
        client, tutor, course,
        due_date=in_minutes(-60),
        allow_late_submission=True,
        late_submission_penalty=10
    )
    submitted = client.post(
        f"/assignments/{assignment['assignment_id']}/submit",
        json={"submission_text": "late but done"},
        headers=student["headers"]
    ).json()["data"]
    assert submitted["is_late"] is True

    graded = client.put(
        f"/assignments/submissions/{submitted['submission_id']}/grade",
        json={"score": 80},
        headers=tutor["headers"]
    ).json()["data"]
    assert graded["score"] == 80
    assert graded["final_score"] == 72
    assert graded["percentage"] == 72.0
    assert graded["passed"] is True


def test_grade_validation(client, tutor, student, course):
    assignment = create_assignment(client, tutor, course, max_score=10)
    submitted = client.post(
        f"/assignments/{assignment['assignment_id']}/submit",
        json={"submission_text": "answer"},
        headers=student["headers"]
    ).json()["data"]
    url = f"/assignments/submissions/{submitted['submission_id']}/grade"

    too_high = client.put(url, json={"score": 11}, headers=tutor["headers"])
    assert too_high.status_code == 400
    assert too_high.json()["message"] == "Score must be between 0 and 10"

    missing = client.put(url, json={}, headers=tutor["headers"])
    assert missing.json()["message"] == "Score is required"

    no_ai = client.put(url, json={"accept_ai_score": True}, headers=tutor["headers"])
    assert no_ai.json()["message"] == "No AI suggestion available for this submission"


def test_regrading_awards_xp_once(client, db, tutor, student, course):
    assignment = create_assignment(client, tutor, course)
    submitted = client.post(
        f"/assignments/{assignment['assignment_id']}/submit",
        json={"submission_text": "answer"},
        headers=student["headers"]
    ).json()["data"]
    url = f"/assignments/submissions/{submitted['submission_id']}/grade"

    def xp():
        return run(db.student_stats.find_one({"user_id": student["user_id"]}))["xp"]

    before = xp()
    assert client.put(url, json={"score": 70}, headers=tutor["headers"]).status_code == 200
    after_first = xp()
    assert after_first > before

    regraded = client.put(url, json={"score": 75, "feedback": "Fixed the edge case"}, headers=tutor["headers"])
    assert regraded.json()["data"]["score"] == 75
    assert xp() == after_first
    assert run(db.student_activities.count_documents({
        "user_id": student["user_id"], "activity_type": "assignment_graded"
    })) == 1


def test_grading_emails_the_student(client, outbox, tutor, student, course):
    assignment = create_assignment(client, tutor, course)
    submitted = client.post(
        f"/assignments/{assignment['assignment_id']}/submit",
        json={"submission_text": "answer"},
        headers=student["headers"]
    ).json()["data"]
    outbox.sent.clear()

    client.put(f"/assignments/submissions/{submitted['submission_id']}/grade", json={"score": 64}, headers=tutor["headers"])
    assert [m["To"] for m in outbox.sent] == [student["email"]]


def test_student_sees_only_published_assignments(client, tutor, student, course):
    create_assignment(client, tutor, course, title="Visible")
    create_assignment(client, tutor, course, title="Draft", is_published=False)

    as_student = client.get(f"/assignments/course/{course['course_id']}", headers=student["headers"]).json()
    assert [a["title"] for a in as_student["data"]] == ["Visible"]
    assert as_student["data"][0]["my_submission"] is None

    as_tutor = client.get(f"/assignments/course/{course['course_id']}", headers=tutor["headers"]).json()
    assert as_tutor["count"] == 2


def test_delete_assignment_removes_submissions(client, db, tutor, student, course):
    assignment = create_assignment(client, tutor, course)
    client.post(
        f"/assignments/{assignment['assignment_id']}/submit",
        json={"submission_text": "answer"},
        headers=student["headers"]
    )

    response = client.delete(f"/assignments/{assignment['assignment_id']}", headers=tutor["headers"])
    assert response.status_code == 200
    assert run(db.submissions.count_documents({})) == 0
