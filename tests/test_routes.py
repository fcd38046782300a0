"""End-to-end flows through the HTTP surface."""

from datetime import timedelta

from sqlmodel import select

from vhl_portal.access import SessionState
from vhl_portal.deps import get_session_state
from vhl_portal.main import app
from vhl_portal.models import Exam, ExamAttempt, Question, Result
from vhl_portal.routers import exam as exam_router
from vhl_portal.services import exam_service
from vhl_portal.utils import utcnow

STUDENT_PASSWORD = "student123"
ADMIN_PASSWORD = "admin123"
JSON = {"Accept": "application/json"}


def test_root_and_protected_pages_redirect_to_login(client):
    for path in ("/", "/dashboard", "/admin", "/admin/results", "/exam/1"):
        response = client.get(path)
        assert response.status_code == 303, path
        assert response.headers["location"] == "/login"


def test_loading_session_renders_placeholder(client):
    app.dependency_overrides[get_session_state] = lambda: SessionState()
    response = client.get("/dashboard")
    assert response.status_code == 200
    assert "Loading" in response.text
    assert "location" not in response.headers


def test_login_failure_and_success(client, student_user):
    response = client.login(student_user.email, "wrong")
    assert response.status_code == 400
    assert "Invalid email or password." in response.text

    response = client.login(student_user.email, STUDENT_PASSWORD)
    assert response.status_code == 303
    assert response.headers["location"] == "/dashboard"

    response = client.get("/login")
    assert response.headers["location"] == "/dashboard"


def test_signup_then_logout(client):
    response = client.post(
        "/signup",
        data={"full_name": "Dana", "email": "dana@example.com", "phone": "", "password": "secret1"},
    )
    assert response.status_code == 303
    assert client.get("/dashboard").status_code == 200

    client.get("/logout")
    assert client.get("/dashboard").headers["location"] == "/login"

    response = client.post(
        "/signup",
        data={"full_name": "Dana", "email": "dana@example.com", "password": "secret1"},
    )
    assert response.status_code == 400
    assert "already exists" in response.text


def test_student_is_kept_out_of_admin_pages(client, student_user, exam):
    client.login(student_user.email, STUDENT_PASSWORD)

    for path in ("/admin", "/admin/results", f"/admin/questions/{exam.id}"):
        response = client.get(path)
        assert response.status_code == 303, path
        assert response.headers["location"] == "/dashboard"

    response = client.post(f"/admin/exams/{exam.id}/toggle-results")
    assert response.headers["location"] == "/dashboard"


def test_admin_reaches_admin_and_student_pages(client, admin_user, exam, session):
    response = client.login(admin_user.email, ADMIN_PASSWORD)
    assert response.headers["location"] == "/admin"

    admin_page = client.get("/admin")
    assert admin_page.status_code == 200
    assert exam.title in admin_page.text
    assert client.get("/dashboard").status_code == 200

    preview = client.get(f"/exam/{exam.id}")
    assert preview.status_code == 200
    assert "Preview" in preview.text
    assert session.exec(select(ExamAttempt)).all() == []


def test_student_takes_exam_end_to_end(client, enrolled_student, exam, exam_questions, timers, session):
    client.login(enrolled_student.email, STUDENT_PASSWORD)

    dashboard = client.get("/dashboard")
    assert exam.title in dashboard.text
    assert "Start exam" in dashboard.text

    page = client.get(f"/exam/{exam.id}")
    assert page.status_code == 200
    assert 'id="countdown"' in page.text
    attempt = session.exec(select(ExamAttempt)).one()
    assert timers.pending(attempt.id)

    q1, q2 = exam_questions
    saved = client.post(f"/exam/{exam.id}/answer", json={"question_id": q1.id, "option": "A"})
    assert saved.status_code == 200
    assert saved.json() == {"status": "saved", "answers": {str(q1.id): "A"}}
    client.post(f"/exam/{exam.id}/answer", json={"question_id": q2.id, "option": "C"})

    bad = client.post(f"/exam/{exam.id}/answer", json={"question_id": q1.id, "option": "E"})
    assert bad.status_code == 422

    submitted = client.post(f"/exam/{exam.id}/submit", headers=JSON)
    assert submitted.status_code == 200
    body = submitted.json()
    assert body["status"] == "submitted"
    # Results are not released yet
    assert "score" not in body
    assert not timers.pending(attempt.id)

    again = client.post(f"/exam/{exam.id}/submit", headers=JSON)
    assert again.json()["result_id"] == body["result_id"]
    assert len(session.exec(select(Result)).all()) == 1

    late = client.post(f"/exam/{exam.id}/answer", json={"question_id": q1.id, "option": "B"})
    assert late.status_code == 409

    reopen = client.get(f"/exam/{exam.id}")
    assert reopen.status_code == 303
    assert reopen.headers["location"].startswith("/dashboard?error=")

    assert client.get(f"/results/{body['result_id']}").status_code == 404
    assert "Completed" in client.get("/dashboard").text


def test_form_submit_redirects_to_published_result(client, enrolled_student, exam, exam_questions, session):
    stored = session.get(Exam, exam.id)
    stored.publish_result = True
    session.add(stored)
    session.commit()

    client.login(enrolled_student.email, STUDENT_PASSWORD)
    client.get(f"/exam/{exam.id}")
    client.post(f"/exam/{exam.id}/answer", json={"question_id": exam_questions[1].id, "option": "C"})

    response = client.post(f"/exam/{exam.id}/submit")
    assert response.status_code == 303
    location = response.headers["location"]
    assert location.startswith("/results/")

    page = client.get(location)
    assert page.status_code == 200
    assert "2 / 3" in page.text
    assert "66.67%" in page.text


def test_expired_enrollment_is_turned_away(client, student_user, batch, exam, enroll):
    enroll(student_user, batch, days=-1)
    client.login(student_user.email, STUDENT_PASSWORD)

    response = client.get(f"/exam/{exam.id}")
    assert response.status_code == 303
    assert response.headers["location"].startswith("/dashboard?error=")
    assert "access has expired" in client.get("/dashboard").text


def test_page_load_after_deadline_submits_once(client, enrolled_student, exam, timers, session):
    started = utcnow() - timedelta(minutes=31)
    view = exam_service.start_attempt(session, exam.id, enrolled_student, now=started)
    client.login(enrolled_student.email, STUDENT_PASSWORD)

    response = client.get(f"/exam/{exam.id}")
    assert response.status_code == 303
    assert response.headers["location"].startswith("/dashboard?error=")

    attempt = session.get(ExamAttempt, view.attempt.id)
    session.refresh(attempt)
    assert attempt.is_submitted
    assert not timers.pending(attempt.id)

    again = client.get(f"/exam/{exam.id}")
    assert again.status_code == 303
    assert len(session.exec(select(Result)).all()) == 1


def test_page_load_just_before_deadline_stays_open(
    client, enrolled_student, exam, timers, session, monkeypatch
):
    started = utcnow() - timedelta(minutes=29)
    view = exam_service.start_attempt(session, exam.id, enrolled_student, now=started)
    almost = view.deadline - timedelta(milliseconds=400)
    monkeypatch.setattr(exam_router, "utcnow", lambda: almost)
    client.login(enrolled_student.email, STUDENT_PASSWORD)

    page = client.get(f"/exam/{exam.id}")
    assert page.status_code == 200
    assert timers.pending(view.attempt.id)

    attempt = session.get(ExamAttempt, view.attempt.id)
    session.refresh(attempt)
    assert not attempt.is_submitted
    assert session.exec(select(Result)).all() == []


def test_attempt_page_counts_unanswered_questions(client, enrolled_student, exam, exam_questions):
    client.login(enrolled_student.email, STUDENT_PASSWORD)
    client.post(f"/exam/{exam.id}/answer", json={"question_id": exam_questions[0].id, "option": "A"})

    page = client.get(f"/exam/{exam.id}")
    assert page.status_code == 200
    assert f'data-total-questions="{len(exam_questions)}"' in page.text
    assert "unanswered question" in page.text


def test_admin_manages_exam_and_questions(client, admin_user, batch, session):
    client.login(admin_user.email, ADMIN_PASSWORD)

    invalid = client.post("/admin/exams", data={"title": "", "batch_id": str(batch.id)})
    assert invalid.status_code == 400
    assert "Title is required." in invalid.text

    created = client.post(
        "/admin/exams",
        data={
            "title": "Korean TOPIK Mock",
            "batch_id": str(batch.id),
            "duration_minutes": "20",
            "total_marks": "10",
            "is_published": "1",
        },
    )
    assert created.status_code == 303
    exam = session.exec(select(Exam).where(Exam.title == "Korean TOPIK Mock")).one()
    assert exam.is_published and not exam.publish_result

    for text in ("First?", "Second?"):
        response = client.post(
            f"/admin/questions/{exam.id}",
            data={
                "question": text,
                "option_a": "1",
                "option_b": "2",
                "option_c": "3",
                "option_d": "4",
                "correct_option": "B",
                "marks": "5",
            },
        )
        assert response.status_code == 303

    second = session.exec(select(Question).where(Question.question == "Second?")).one()
    moved = client.post(f"/admin/questions/{exam.id}/{second.id}/move", data={"direction": "up"})
    assert moved.status_code == 303
    page = client.get(f"/admin/questions/{exam.id}")
    assert page.text.index("Second?") < page.text.index("First?")

    assert client.post(f"/admin/questions/{exam.id}/{second.id}/move", data={"direction": "left"}).status_code == 400

    client.post(f"/admin/exams/{exam.id}/toggle-results")
    session.refresh(exam)
    assert exam.publish_result

    assert client.get("/admin/results").status_code == 200
    assert client.post(f"/admin/exams/{exam.id}/delete").status_code == 303
    assert client.get(f"/admin/exams/{exam.id}/edit").status_code == 404
