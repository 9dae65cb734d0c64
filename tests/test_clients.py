"""Tests for the remote integration clients using a mocked requests session."""

from datetime import datetime
from unittest.mock import Mock

import pytest
import requests

from companion_sync.clients.base import sanitize_token
from companion_sync.clients.blackboard import BlackboardClient
from companion_sync.clients.canvas import CanvasClient, parse_link_next
from companion_sync.clients.github import (
    derive_task_name, parse_deadline_date, parse_deadlines_from_markdown,
)
from companion_sync.clients.ical import ICalClient, filter_by_window, parse_ics
from companion_sync.clients.teams import TeamsClient
from companion_sync.clients.types import CanvasCourse, CourseRepo, RepoReadme, TeamsClass
from companion_sync.sync.exceptions import IntegrationNotConfiguredError, RemoteApiError


SAMPLE_ICS = b"\r\n".join([
    b"BEGIN:VCALENDAR",
    b"VERSION:2.0",
    b"PRODID:-//companion//test//EN",
    b"BEGIN:VEVENT",
    b"UID:evt-1",
    b"SUMMARY:DAT120 Lecture",
    b"DTSTART:20260202T091500Z",
    b"DTEND:20260202T110000Z",
    b"LOCATION:KE E-101",
    b"END:VEVENT",
    b"BEGIN:VEVENT",
    b"UID:evt-2",
    b"SUMMARY:Exam DAT120",
    b"DTSTART;VALUE=DATE:20260601",
    b"END:VEVENT",
    b"BEGIN:VEVENT",
    b"SUMMARY:Broken",
    b"END:VEVENT",
    b"END:VCALENDAR",
    b"",
])


def response(payload=None, ok=True, status_code=200, headers=None, content=b"", text="", reason="OK"):
    resp = Mock()
    resp.ok = ok
    resp.status_code = status_code
    resp.reason = reason
    resp.headers = headers or {}
    resp.content = content
    resp.text = text
    resp.json.return_value = payload
    return resp


def session_returning(*responses):
    session = Mock()
    session.get.side_effect = list(responses)
    return session


def test_parse_link_next():
    header = ('<https://canvas.example.edu/api/v1/courses?page=2>; rel="next", '
              '<https://canvas.example.edu/api/v1/courses?page=5>; rel="last"')

    assert parse_link_next(header) == "https://canvas.example.edu/api/v1/courses?page=2"
    assert parse_link_next('<https://x/courses?page=5>; rel="last"') is None
    assert parse_link_next(None) is None


def test_sanitize_token():
    assert sanitize_token("  abc–def  ") == "abc-def"
    assert sanitize_token("æøå") is None
    assert sanitize_token(None) is None


def test_canvas_follows_pagination():
    session = session_returning(
        response([{"id": 1, "name": "Algorithms"}],
                 headers={"Link": '<https://canvas.example.edu/api/v1/courses?page=2>; rel="next"'}),
        response([{"id": 2, "name": "Databases", "unknown": True}]),
    )
    client = CanvasClient("https://canvas.example.edu/", "token", session=session)

    courses = client.get_courses()

    assert [c.id for c in courses] == [1, 2]
    first_url = session.get.call_args_list[0].args[0]
    assert first_url.startswith("https://canvas.example.edu/api/v1/courses?")
    assert first_url.endswith("&per_page=100")
    assert session.get.call_args_list[1].args[0] == "https://canvas.example.edu/api/v1/courses?page=2"
    assert session.get.call_args_list[0].kwargs["headers"]["Authorization"] == "Bearer token"


def test_canvas_assignments_skip_malformed_items():
    session = session_returning(response([
        {"id": 11, "name": "Problem set 1", "due_at": "2026-03-05T22:59:00Z", "points_possible": 10},
        {"id": 12},
    ]))
    client = CanvasClient("https://canvas.example.edu", "token", session=session)

    assignments = client.get_all_assignments([CanvasCourse(id=7, name="Algorithms")])

    assert [a.id for a in assignments] == [11]
    assert assignments[0].course_id == 7


def test_non_ok_response_raises_remote_api_error():
    session = session_returning(response(ok=False, status_code=401, reason="Unauthorized"))
    client = CanvasClient("https://canvas.example.edu", "token", session=session)

    with pytest.raises(RemoteApiError) as exc_info:
        client.get_courses()

    assert exc_info.value.status_code == 401
    assert str(exc_info.value) == "canvas request failed: 401 Unauthorized"


def test_network_failure_raises_remote_api_error():
    session = Mock()
    session.get.side_effect = requests.ConnectionError("connection refused")
    client = CanvasClient("https://canvas.example.edu", "token", session=session)

    with pytest.raises(RemoteApiError, match="network error"):
        client.get_courses()


def test_missing_token_raises_not_configured():
    session = Mock()
    client = CanvasClient("https://canvas.example.edu", None, session=session)

    assert not client.is_configured()
    with pytest.raises(IntegrationNotConfiguredError, match="canvas not connected"):
        client.get_courses()
    session.get.assert_not_called()


def test_blackboard_unwraps_membership_rows():
    session = session_returning(
        response({"results": [
            {"course": {"id": "_1_1", "name": "Algorithms", "courseId": "ALG-101"}},
            {"id": "_2_1", "name": "Databases"},
        ]}),
        response({"results": [
            {"id": "_a_1", "title": "Essay", "availability": {"adaptiveRelease": {"end": "2026-03-10T12:00:00Z"}},
             "score": {"possible": 100}},
        ]}),
        response({"results": []}),
    )
    client = BlackboardClient("https://bb.example.edu", "token", session=session)

    courses = client.get_courses()
    assignments = client.get_all_assignments(courses)

    assert [c.id for c in courses] == ["_1_1", "_2_1"]
    assert courses[0].course_id == "ALG-101"
    assert len(assignments) == 1
    assert assignments[0].course_id == "_1_1"
    assert assignments[0].due == "2026-03-10T12:00:00Z"


def test_teams_assignments_carry_class_id():
    session = session_returning(response({"value": [
        {"id": "a1", "displayName": "Lab report", "dueDateTime": "2026-03-01T10:00:00Z", "status": "submitted",
         "classId": "stale"},
    ]}))
    client = TeamsClient("token", session=session)

    assignments = client.get_all_assignments([TeamsClass(id="class-1", displayName="Physics")])

    assert assignments[0].class_id == "class-1"
    assert assignments[0].status == "submitted"
    assert session.get.call_args.args[0] == "https://graph.microsoft.com/v1.0/education/classes/class-1/assignments"


def test_parse_ics():
    events = parse_ics(SAMPLE_ICS)

    assert [e.summary for e in events] == ["DAT120 Lecture", "Exam DAT120", "Broken"]
    lecture, exam, broken = events
    assert lecture.start_time == datetime(2026, 2, 2, 9, 15)
    assert lecture.end_time == datetime(2026, 2, 2, 11, 0)
    assert lecture.location == "KE E-101"
    assert lecture.uid == "evt-1"
    assert exam.start_time == datetime(2026, 6, 1)
    assert exam.end_time is None
    assert broken.start_time is None


def test_filter_by_window_keeps_undated_events():
    events = parse_ics(SAMPLE_ICS)

    kept = filter_by_window(events, past_days=7, future_days=30, now=datetime(2026, 2, 1))

    assert [e.summary for e in kept] == ["DAT120 Lecture", "Broken"]
    assert len(filter_by_window(events, now=datetime(2026, 2, 1))) == 3


def test_ical_client_converts_webcal_and_fetches():
    session = session_returning(response(content=SAMPLE_ICS))
    client = ICalClient("webcal://tp.example.edu/ical/abc", integration="tp", session=session)

    assert client.base_url == "https://tp.example.edu/ical/abc"
    assert client.is_configured()

    events = client.get_events()

    assert len(events) == 3
    headers = session.get.call_args.kwargs["headers"]
    assert headers == {"Accept": "text/calendar"}


def test_ical_client_requires_http_url():
    assert not ICalClient("ftp://tp.example.edu/ical", integration="tp").is_configured()
    assert not ICalClient(None, integration="timeedit").is_configured()


@pytest.mark.parametrize("raw, expected", [
    ("2026-03-01 23:59", datetime(2026, 3, 1, 23, 59)),
    ("**2026-03-01**", datetime(2026, 3, 1)),
    ("01.03.2026 12:00", datetime(2026, 3, 1, 12, 0)),
    ("March 5, 2026", datetime(2026, 3, 5)),
    ("Mar 5, 2026", datetime(2026, 3, 5)),
    ("sometime soon", None),
    ("", None),
])
def test_parse_deadline_date(raw, expected):
    assert parse_deadline_date(raw) == expected


def test_derive_task_name():
    repo = CourseRepo(owner="uni", repo="dat120-labs", course="DAT120")

    assert derive_task_name(RepoReadme(path="README.md", content="## Lab 1\ntext"), repo) == "Lab 1"
    assert derive_task_name(RepoReadme(path="lab3/README.md", content="no heading"), repo) == "lab3"
    assert derive_task_name(RepoReadme(path="README.md", content="no heading"), repo) == "DAT120 lab"


def test_parse_deadlines_from_markdown():
    repo = CourseRepo(owner="uni", repo="dat120-labs", course="DAT120")
    readme = RepoReadme(path="lab2/README.md", content="\n".join([
        "# Lab 2: Sorting",
        "",
        "| Item | Value |",
        "|------|-------|",
        "| Deadline | 2026-03-01 23:59 |",
        "| Deadline (resubmission) | sometime soon |",
    ]))

    deadlines = parse_deadlines_from_markdown(readme, repo)

    assert [d.remote_id for d in deadlines] == [
        "uni/dat120-labs:lab2/README.md:0",
        "uni/dat120-labs:lab2/README.md:1",
    ]
    assert deadlines[0].task == "Lab 2: Sorting"
    assert deadlines[0].due == "2026-03-01T23:59:00"
    assert deadlines[1].due == "sometime soon"
