"""Concurrent callers against a shared SQLite file.

Each worker uses its own session, as separate requests would; a barrier
releases them together so their transactions overlap.
"""

import threading

import pytest
from sqlalchemy import text
from sqlmodel import Session, func, select

from teamhub import errors, models
from teamhub.database import build_engine
from teamhub.repositories import StudentRepository, VoteRepository
from teamhub.services import ElectionService, MembershipService, MentorshipService


def run_concurrently(engine, calls):
    """Run each `call(session)` in its own thread and collect outcomes.

    An outcome is the call's return value or the `DomainError` it raised.
    """
    barrier = threading.Barrier(len(calls))
    outcomes = [None] * len(calls)

    def worker(index, call):
        with Session(engine, expire_on_commit=False) as session:
            barrier.wait()
            try:
                outcomes[index] = call(session)
            except errors.DomainError as exc:
                outcomes[index] = exc

    threads = [threading.Thread(target=worker, args=(i, c)) for i, c in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return outcomes


def test_only_one_join_wins_the_last_slot(engine, session, make_student, read):
    alice, bob = make_student("SE001"), make_student("SE002")
    svc = MembershipService(session)
    team = svc.create_team(alice, "Rockets", "", 3)
    svc.join_team(bob, team["id"])
    contenders = [make_student(f"SE1{n:02d}") for n in range(6)]

    outcomes = run_concurrently(
        engine,
        [lambda s, p=p: MembershipService(s).join_team(p, team["id"]) for p in contenders],
    )

    winners = [o for o in outcomes if isinstance(o, dict)]
    assert len(winners) == 1
    assert winners[0]["member_count"] == 3
    assert all(isinstance(o, errors.Full) for o in outcomes if not isinstance(o, dict))
    assert read(lambda s: StudentRepository(s).count_members(team["id"])) == 3
    assert read(lambda s: s.get(models.Team, team["id"]).status) == "Voting"


def test_concurrent_votes_are_counted_one_at_a_time(engine, session, make_student, read):
    ids = [f"SE00{n}" for n in range(1, 9)]
    students = [make_student(sid) for sid in ids]
    svc = MembershipService(session)
    team = svc.create_team(students[0], "Rockets", "", len(students))
    for p in students[1:]:
        svc.join_team(p, team["id"])
    voters = students[:4]

    outcomes = run_concurrently(
        engine,
        [lambda s, p=p: ElectionService(s).vote_leader(p, team["id"], "SE008") for p in voters],
    )

    assert sorted(o["votes"] for o in outcomes) == [1, 2, 3, 4]
    assert all(o["status"] == "voted" for o in outcomes)
    assert read(lambda s: VoteRepository(s).tallies(team["id"])) == {"SE008": 4}


def test_concurrent_mentorship_requests_leave_one_pending(engine, session, make_student, make_lecturer, read):
    leader = make_student("SE001")
    team = MembershipService(session).create_team(leader, "Rockets", "", 3)
    make_lecturer("GV01")
    make_lecturer("GV02")

    outcomes = run_concurrently(
        engine,
        [lambda s, lid=lid: MentorshipService(s).send_request(leader, team["id"], lid) for lid in ("GV01", "GV02")],
    )

    assert len([o for o in outcomes if isinstance(o, dict)]) == 1
    assert len([o for o in outcomes if isinstance(o, errors.RequestPending)]) == 1
    pending = read(lambda s: s.exec(
        select(func.count())
        .select_from(models.MentorshipRequest)
        .where(models.MentorshipRequest.status == "pending")
    ).one())
    assert pending == 1


def test_lock_timeout_reports_transient_not_full(engine, tmp_path, session, make_student, read):
    alice, bob = make_student("SE001"), make_student("SE002")
    team = MembershipService(session).create_team(alice, "Rockets", "", 2)
    impatient = build_engine(f"sqlite:///{tmp_path / 'test.db'}", lock_timeout=0.2)

    try:
        with engine.connect() as holder:
            holder.execute(text("SELECT 1"))  # holds the write lock until rollback
            with Session(impatient, expire_on_commit=False) as s:
                with pytest.raises(errors.Transient):
                    MembershipService(s).join_team(bob, team["id"])
            holder.rollback()

        with Session(impatient, expire_on_commit=False) as s:
            joined = MembershipService(s).join_team(bob, team["id"])
    finally:
        impatient.dispose()

    assert joined["member_count"] == 2
    assert read(lambda s: s.get(models.Student, "SE002").team_id) == team["id"]
