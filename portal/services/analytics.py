from __future__ import annotations

from sqlalchemy import func

from ..app import db
from ..models import EVENT_STATUSES, PARTICIPATION_STATUSES, Event, Participation, Student
from .participations import HOUR_STATUSES

TOP_VOLUNTEERS = 10

# upper bound (inclusive) -> label
ATTENDANCE_RANGES = ((25, "0-25%"), (50, "26-50%"), (75, "51-75%"), (100, "76-100%"))


def _participation_stats() -> dict[int, dict]:
    rows = (
        db.session.query(
            Participation.event_id,
            Participation.status,
            func.count(Participation.id),
            func.coalesce(func.sum(Participation.volunteer_hours), 0),
        )
        .group_by(Participation.event_id, Participation.status)
        .all()
    )
    stats: dict[int, dict] = {}
    for event_id, status, count, hours in rows:
        entry = stats.setdefault(
            event_id,
            {"registered": 0, **{s: 0 for s in PARTICIPATION_STATUSES}, "totalHours": 0.0},
        )
        entry["registered"] += count
        entry[status] = entry.get(status, 0) + count
        if status in HOUR_STATUSES:
            entry["totalHours"] += float(hours or 0)
    return stats


def event_analytics() -> dict:
    """Per-event participation counts plus type and month distributions."""
    events = db.session.query(Event).order_by(Event.start_date.desc(), Event.id.desc()).all()
    stats = _participation_stats()
    empty = {"registered": 0, **{s: 0 for s in PARTICIPATION_STATUSES}, "totalHours": 0.0}

    type_distribution: dict[str, int] = {}
    monthly: dict[str, int] = {}
    summary = {"total": len(events), **{s: 0 for s in EVENT_STATUSES}}
    rows = []
    for event in events:
        type_distribution[event.event_type] = type_distribution.get(event.event_type, 0) + 1
        month = event.start_date.strftime("%Y-%m")
        monthly[month] = monthly.get(month, 0) + 1
        summary[event.status] = summary.get(event.status, 0) + 1
        rows.append(
            {
                "eventId": event.id,
                "title": event.title,
                "type": event.event_type,
                "date": event.start_date.isoformat(),
                "status": event.status,
                "stats": dict(stats.get(event.id, empty)),
            }
        )
    return {
        "events": rows,
        "summary": summary,
        "typeDistribution": type_distribution,
        "monthlyEvents": dict(sorted(monthly.items())),
    }


def _attendance_bucket(percentage: float | None) -> str:
    if percentage is None:
        return "noData"
    for upper, label in ATTENDANCE_RANGES:
        if percentage <= upper:
            return label
    return ATTENDANCE_RANGES[-1][1]


def student_analytics() -> dict:
    students = db.session.query(Student).order_by(Student.id).all()
    departments: dict[str, int] = {}
    years: dict[str, int] = {}
    ranges = {label: 0 for _, label in ATTENDANCE_RANGES}
    ranges["noData"] = 0
    for student in students:
        departments[student.department] = departments.get(student.department, 0) + 1
        year_key = f"Year {student.year}"
        years[year_key] = years.get(year_key, 0) + 1
        ranges[_attendance_bucket(student.attendance_percentage)] += 1

    with_data = [s.attendance_percentage for s in students if s.attendance_percentage is not None]
    hours = [s.total_volunteer_hours or 0 for s in students]
    top = sorted(students, key=lambda s: (-(s.total_volunteer_hours or 0), s.name))
    return {
        "totalStudents": len(students),
        "eligibleStudents": sum(1 for s in students if s.is_eligible),
        "averageAttendance": round(sum(with_data) / len(with_data), 2) if with_data else 0,
        "averageVolunteerHours": round(sum(hours) / len(hours), 2) if hours else 0,
        "departmentDistribution": departments,
        "yearDistribution": years,
        "attendanceRanges": ranges,
        "topVolunteers": [
            {
                "name": s.name,
                "registrationNumber": s.registration_number,
                "department": s.department,
                "hours": s.total_volunteer_hours or 0,
            }
            for s in top[:TOP_VOLUNTEERS]
        ],
    }
