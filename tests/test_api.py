from conftest import STUDENT_A, STUDENT_B, auth_headers, correct_for, hours, question_ids
from exam_session.core.auth import TEACHER
from exam_session.models.orm import ExamStatus


def _start(client, exam_id, headers=None):
    r = client.post(f"/v1/student/exams/{exam_id}/attempt", json={}, headers=headers or {})
    assert r.status_code == 200, r.text
    return r.json()


def test_health(api):
    r = api.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_requires_identity(api, make_exam):
    exam_id = make_exam()
    r = api.post(f"/v1/student/exams/{exam_id}/attempt", json={})
    assert r.status_code == 401
    assert r.json()["error"]["type"] == "unauthorized"


def test_teacher_role_cannot_start(api, make_exam):
    exam_id = make_exam()
    r = api.post(f"/v1/student/exams/{exam_id}/attempt", json={}, headers=auth_headers(STUDENT_A, (TEACHER,)))
    assert r.status_code == 401


def test_admission_errors_use_error_envelope(student_client, make_exam):
    cases = [
        (make_exam(status=ExamStatus.DRAFT), 403, "exam_not_active"),
        (make_exam(start_time=hours(2)), 403, "exam_not_started"),
        (make_exam(end_time=hours(-2)), 403, "exam_ended"),
        (make_exam(students=(), class_id="class-2"), 403, "not_enrolled"),
        ("missing", 404, "exam_not_found"),
    ]
    for exam_id, status_code, code in cases:
        r = student_client.post(f"/v1/student/exams/{exam_id}/attempt", json={})
        assert r.status_code == status_code, (code, r.text)
        assert r.json()["error"]["type"] == code


def test_full_attempt_flow(student_client, make_exam):
    exam_id = make_exam(n_questions=4, duration_minutes=30)
    qids = question_ids(exam_id, 4)
    started = _start(student_client, exam_id)
    attempt_id, token = started["attemptId"], started["sessionToken"]

    r = student_client.get(f"/v1/student/attempts/{attempt_id}", params={"sessionToken": token})
    assert r.status_code == 200
    state = r.json()
    assert state["remainingSeconds"] == 1800
    assert len(state["exam"]["questions"]) == 4
    assert "correctOption" not in state["exam"]["questions"][0]

    r = student_client.put(f"/v1/student/attempts/{attempt_id}/progress", json={
        "sessionToken": token, "answers": {qids[0]: correct_for(0)}, "flags": {qids[1]: True}, "elapsedSeconds": 60,
    })
    assert r.json() == {"ok": True, "elapsedSeconds": 60, "status": None}

    r = student_client.post(f"/v1/student/attempts/{attempt_id}/heartbeat", json={"sessionToken": token})
    assert r.json() == {"kicked": False}

    r = student_client.post(f"/v1/student/attempts/{attempt_id}/submit", json={
        "sessionToken": token, "answers": {qids[2]: correct_for(2)}, "elapsedSeconds": 90, "trigger": "manual",
    })
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True and body["alreadySubmitted"] is False
    assert (body["score"], body["maxScore"]) == (2, 4)

    r = student_client.post(f"/v1/student/attempts/{attempt_id}/heartbeat", json={"sessionToken": token})
    assert r.json() == {"kicked": False, "reason": "already_submitted"}

    r = student_client.get(f"/v1/student/attempts/{attempt_id}/result")
    assert r.status_code == 200
    result = r.json()
    assert result["score"] == 2
    assert result["elapsedSeconds"] == 90
    assert [q["isCorrect"] for q in result["questions"]] == [True, False, True, False]


def test_second_login_kicks_first(student_client, make_exam):
    exam_id = make_exam()
    first = _start(student_client, exam_id)
    second = _start(student_client, exam_id)
    url = f"/v1/student/attempts/{first['attemptId']}/heartbeat"

    stale = student_client.post(url, json={"sessionToken": first["sessionToken"]}).json()
    assert stale["kicked"] is True and stale["reason"] == "session_replaced"
    assert student_client.post(url, json={"sessionToken": second["sessionToken"]}).json() == {"kicked": False}

    r = student_client.put(f"/v1/student/attempts/{first['attemptId']}/progress",
                           json={"sessionToken": first["sessionToken"], "elapsedSeconds": 5})
    assert r.status_code == 409
    assert r.json()["error"]["type"] == "session_replaced"


def test_violation_threshold_over_http(student_client, make_exam):
    exam_id = make_exam(max_violations=3)
    s = _start(student_client, exam_id)
    url = f"/v1/student/attempts/{s['attemptId']}/violations"
    bodies = [student_client.post(url, json={"sessionToken": s["sessionToken"], "type": "TAB_SWITCH"}).json()
              for _ in range(3)]
    assert [b["violationCount"] for b in bodies] == [1, 2, 3]
    assert [b["shouldAutoSubmit"] for b in bodies] == [False, False, True]
    assert bodies[-1]["maxViolations"] == 3

    r = student_client.post(f"/v1/student/attempts/{s['attemptId']}/submit",
                            json={"sessionToken": s["sessionToken"], "trigger": "violation_threshold"})
    assert r.json()["trigger"] == "violation_threshold"

    r = student_client.post(url, json={"sessionToken": s["sessionToken"], "type": "TAB_SWITCH"})
    assert r.status_code == 409
    assert r.json()["error"]["type"] == "invalid_state"


def test_rejects_bad_option_and_negative_elapsed(student_client, make_exam):
    exam_id = make_exam(n_questions=1)
    (q1,) = question_ids(exam_id, 1)
    s = _start(student_client, exam_id)
    url = f"/v1/student/attempts/{s['attemptId']}/progress"
    r = student_client.put(url, json={"sessionToken": s["sessionToken"], "answers": {q1: "E"}})
    assert r.status_code == 422
    assert r.json()["error"]["type"] == "validation_error"
    r = student_client.put(url, json={"sessionToken": s["sessionToken"], "elapsedSeconds": -3})
    assert r.status_code == 422


def test_other_students_attempt_is_not_found(api, make_exam):
    exam_id = make_exam(students=(STUDENT_A, STUDENT_B))
    s = _start(api, exam_id, auth_headers(STUDENT_A))
    r = api.get(f"/v1/student/attempts/{s['attemptId']}/result", headers=auth_headers(STUDENT_B))
    assert r.status_code == 404
    assert r.json()["error"]["type"] == "attempt_not_found"


def test_result_before_submit(student_client, make_exam):
    exam_id = make_exam()
    s = _start(student_client, exam_id)
    r = student_client.get(f"/v1/student/attempts/{s['attemptId']}/result")
    assert r.status_code == 409
    assert r.json()["error"]["type"] == "result_not_available"


def test_restart_after_submit_is_rejected(student_client, make_exam):
    exam_id = make_exam()
    s = _start(student_client, exam_id)
    student_client.post(f"/v1/student/attempts/{s['attemptId']}/submit", json={"sessionToken": s["sessionToken"]})
    r = student_client.post(f"/v1/student/exams/{exam_id}/attempt", json={})
    assert r.status_code == 409
    assert r.json()["error"]["type"] == "already_submitted"


def test_submit_records_client_ip(student_client, make_exam, teacher_headers):
    exam_id = make_exam()
    s = _start(student_client, exam_id)
    student_client.post(f"/v1/student/attempts/{s['attemptId']}/submit",
                        json={"sessionToken": s["sessionToken"]}, headers={"X-Forwarded-For": "10.0.0.7, 10.0.0.1"})
    detail = student_client.get(f"/v1/teacher/exams/{exam_id}/attempts/{STUDENT_A}", headers=teacher_headers).json()
    assert detail["submitIp"] == "10.0.0.7"


def test_teacher_review(api, make_exam, teacher_headers):
    exam_id = make_exam(n_questions=2, students=(STUDENT_A, STUDENT_B))
    qids = question_ids(exam_id, 2)
    a = _start(api, exam_id, auth_headers(STUDENT_A))
    _start(api, exam_id, auth_headers(STUDENT_B))
    api.post(f"/v1/student/attempts/{a['attemptId']}/violations",
             json={"sessionToken": a["sessionToken"], "type": "FULLSCREEN_EXIT"}, headers=auth_headers(STUDENT_A))

    r = api.post(f"/v1/teacher/exams/{exam_id}/attempts/{STUDENT_A}/graded", headers=teacher_headers)
    assert r.status_code == 409

    api.post(f"/v1/student/attempts/{a['attemptId']}/submit",
             json={"sessionToken": a["sessionToken"], "answers": {qids[0]: correct_for(0)}},
             headers=auth_headers(STUDENT_A))

    listing = api.get(f"/v1/teacher/exams/{exam_id}/attempts", headers=teacher_headers).json()
    statuses = {row["studentId"]: row["status"] for row in listing["attempts"]}
    assert statuses == {STUDENT_A: "SUBMITTED", STUDENT_B: "IN_PROGRESS"}

    detail = api.get(f"/v1/teacher/exams/{exam_id}/attempts/{STUDENT_A}", headers=teacher_headers).json()
    assert detail["score"] == 1 and detail["maxScore"] == 2
    assert [v["type"] for v in detail["violations"]] == ["FULLSCREEN_EXIT"]
    assert detail["questions"][0]["correctOption"] == correct_for(0)

    graded = api.post(f"/v1/teacher/exams/{exam_id}/attempts/{STUDENT_A}/graded", headers=teacher_headers).json()
    assert graded["status"] == "GRADED" and graded["score"] == 1

    r = api.get(f"/v1/student/attempts/{a['attemptId']}/result", headers=auth_headers(STUDENT_A))
    assert r.json()["status"] == "GRADED"


def test_teacher_cannot_see_foreign_exam(api, make_exam):
    exam_id = make_exam()
    r = api.get(f"/v1/teacher/exams/{exam_id}/attempts", headers=auth_headers("someone-else", (TEACHER,)))
    assert r.status_code == 404
