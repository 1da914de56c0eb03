import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from models import db, Level, Record

VIDEO = "https://www.youtube.com/watch?v=abc123"


@pytest.fixture
def level(fill):
    return fill("main", 1)[0]


def completions(level_id):
    db.session.expire_all()
    return db.session.get(Level, level_id).completion_count


def test_submit_creates_pending_record(records, make_user, level):
    player = make_user("Pat")
    record = records.submit(player, level.id, VIDEO)
    assert (record.status, record.user_id, record.level_id) == ("pending", player.id, level.id)
    assert record.submitted_at is not None
    assert record.reviewed_at is None


@pytest.mark.parametrize("url", ["", "not a url", "ftp://files.example.com/run.mp4", None, 42])
def test_submit_rejects_bad_urls(records, make_user, level, url):
    with pytest.raises(ValidationError):
        records.submit(make_user("Pat"), level.id, url)


def test_submit_unknown_level(records, make_user):
    with pytest.raises(NotFoundError):
        records.submit(make_user("Pat"), 404, VIDEO)


def test_submit_twice_is_refused_until_rejected(records, make_user, level):
    player = make_user("Pat")
    mod = make_user("Mo", is_moderator=True)
    first = records.submit(player, level.id, VIDEO)
    with pytest.raises(ConflictError):
        records.submit(player, level.id, VIDEO)

    records.reject(first.id, mod)
    second = records.submit(player, level.id, VIDEO)
    assert second.id != first.id


def test_approve_counts_completion(records, make_user, level):
    player = make_user("Pat")
    admin = make_user("Ada", is_admin=True)
    record = records.submit(player, level.id, VIDEO)

    approved = records.approve(record.id, admin)

    assert approved.status == "approved"
    assert approved.reviewed_by == admin.id
    assert approved.reviewed_at is not None
    assert completions(level.id) == 1


def test_reject_leaves_count_alone(records, make_user, level):
    player = make_user("Pat")
    mod = make_user("Mo", is_moderator=True)
    record = records.submit(player, level.id, VIDEO)

    rejected = records.reject(record.id, mod)

    assert (rejected.status, rejected.reviewed_by) == ("rejected", mod.id)
    assert completions(level.id) == 0


def test_second_review_is_refused(records, make_user, level):
    player = make_user("Pat")
    admin = make_user("Ada", is_admin=True)
    record = records.submit(player, level.id, VIDEO)
    records.approve(record.id, admin)

    with pytest.raises(ConflictError):
        records.approve(record.id, admin)
    with pytest.raises(ConflictError):
        records.reject(record.id, admin)
    assert completions(level.id) == 1
    assert records.get_record(record.id).status == "approved"


def test_only_staff_reviews(records, make_user, level):
    player = make_user("Pat")
    record = records.submit(player, level.id, VIDEO)
    with pytest.raises(ForbiddenError):
        records.approve(record.id, player)
    assert records.get_record(record.id).status == "pending"


def test_review_unknown_record(records, make_user):
    with pytest.raises(NotFoundError):
        records.approve(12345, make_user("Ada", is_admin=True))


def test_list_records_filters(records, make_user, fill):
    a, b = fill("main", 2)
    pat, sam = make_user("Pat"), make_user("Sam")
    admin = make_user("Ada", is_admin=True)
    r1 = records.submit(pat, a.id, VIDEO)
    records.submit(pat, b.id, VIDEO)
    records.submit(sam, a.id, VIDEO)
    records.approve(r1.id, admin)

    assert len(records.list_records()) == 3
    assert [r.id for r in records.list_records(status="approved")] == [r1.id]
    assert len(records.list_records(status="pending")) == 2
    assert {r.user_id for r in records.list_records(user_id=pat.id)} == {pat.id}
    with pytest.raises(ValidationError):
        records.list_records(status="lost")


def test_submit_race_is_a_conflict(records, make_user, level, monkeypatch):
    player = make_user("Pat")
    records.submit(player, level.id, VIDEO)

    # A concurrent submit that ran its check before the first one committed.
    monkeypatch.setattr(records, "_open_record", lambda user_id, level_id: None)
    with pytest.raises(ConflictError):
        records.submit(player, level.id, VIDEO)

    assert len(records.list_records(user_id=player.id)) == 1


def test_store_allows_one_open_record_per_level(make_user, level):
    player = make_user("Pat")
    for status in ("rejected", "rejected", "pending"):
        db.session.add(Record(user_id=player.id, level_id=level.id, video_url=VIDEO, status=status))
    db.session.commit()

    db.session.add(Record(user_id=player.id, level_id=level.id, video_url=VIDEO, status="approved"))
    with pytest.raises(IntegrityError):
        db.session.flush()
    db.session.rollback()


@pytest.mark.parametrize("action", ["approve", "reject"])
def test_review_lost_to_concurrent_reviewer(records, make_user, level, monkeypatch, action):
    player = make_user("Pat")
    admin = make_user("Ada", is_admin=True)
    record = records.submit(player, level.id, VIDEO)
    fetch = records.get_record

    def fetch_then_race(record_id):
        found = fetch(record_id)
        assert found.status == "pending"
        # Another reviewer approves between our read and our write.
        db.session.execute(
            update(Record)
            .where(Record.id == found.id)
            .values(status="approved")
            .execution_options(synchronize_session=False)
        )
        db.session.execute(
            update(Level)
            .where(Level.id == found.level_id)
            .values(completion_count=Level.completion_count + 1)
            .execution_options(synchronize_session=False)
        )
        return found

    monkeypatch.setattr(records, "get_record", fetch_then_race)
    with pytest.raises(ConflictError, match="concurrently"):
        getattr(records, action)(record.id, admin)

    # Our failed review rolled back without adding a completion of its own.
    assert completions(level.id) == 0
