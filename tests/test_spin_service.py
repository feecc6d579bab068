import random
from datetime import timedelta

import pytest
from sqlalchemy import event

from app.date_utils import utc_now
from app.errors import InvalidInputError, NotFoundError
from app.models import Category, SpinResult, Task, TaskStatus, User
from app.spin_service import (
    complete_spin,
    delete_spin_result,
    get_pending_spins,
    get_spin_history,
    get_spins_by_category,
    spin_wheel,
)
from app.task_service import delete_task, update_task_status


def balance(db, user_id):
    db.expire_all()
    return db.get(User, user_id).points


@pytest.fixture()
def three_tasks(user, make_task):
    """Pending tasks in nature, sport, nature."""
    return [
        make_task(user.id, title="Walk", category=Category.NATURE, points=10),
        make_task(user.id, title="Run", category=Category.SPORT, points=20),
        make_task(user.id, title="Garden", category=Category.NATURE, points=15),
    ]


class TestSpinWheel:
    def test_only_selects_requested_categories(self, db, user, three_tasks):
        nature_ids = {three_tasks[0].id, three_tasks[2].id}
        rng = random.Random(42)
        for _ in range(20):
            result = spin_wheel(db, user.id, ["nature"], exclude_completed=False, rng=rng)
            assert result["task"]["id"] in nature_ids
            assert result["spinResult"]["category"] == "nature"

    def test_repeat_spin_returns_same_pending_record(self, db, user, three_tasks):
        first = spin_wheel(db, user.id, ["nature"], rng=random.Random(1))
        second = spin_wheel(db, user.id, ["nature"], rng=random.Random(2))

        assert first["isNew"] is True
        assert second["isNew"] is False
        assert second["spinResult"]["id"] == first["spinResult"]["id"]
        assert second["task"]["id"] == first["task"]["id"]
        assert db.query(SpinResult).count() == 1

    def test_no_duplicate_pending_spins_per_task(self, db, user, three_tasks):
        rng = random.Random(7)
        for _ in range(10):
            spin_wheel(db, user.id, ["nature", "sport"], rng=rng)

        pending = db.query(SpinResult.task_id).filter(SpinResult.is_completed.is_(False)).all()
        task_ids = [task_id for (task_id,) in pending]
        assert len(task_ids) == len(set(task_ids))

    def test_response_carries_task_display_fields(self, db, user, three_tasks):
        result = spin_wheel(db, user.id, ["sport"])
        assert result["task"] == {
            "id": three_tasks[1].id,
            "title": "Run",
            "description": "Run description",
            "category": "sport",
            "points": 20,
        }
        assert result["spinResult"]["isCompleted"] is False
        assert result["spinResult"]["pointsEarned"] == 0
        assert "sport" in result["message"]

    def test_empty_categories(self, db, user, three_tasks):
        with pytest.raises(InvalidInputError) as exc_info:
            spin_wheel(db, user.id, [])
        assert exc_info.value.message == "Please select at least one category to spin the wheel."

    def test_invalid_categories_are_named(self, db, user, three_tasks):
        with pytest.raises(InvalidInputError) as exc_info:
            spin_wheel(db, user.id, ["nature", "arts-crafts", "cooking"])
        assert "arts-crafts" in exc_info.value.message
        assert "cooking" in exc_info.value.message

    def test_no_available_tasks(self, db, user, three_tasks):
        with pytest.raises(InvalidInputError):
            spin_wheel(db, user.id, ["meditation"])

    def test_done_tasks_are_never_selected(self, db, user, three_tasks):
        update_task_status(db, user.id, three_tasks[1].id, "done")
        with pytest.raises(InvalidInputError):
            spin_wheel(db, user.id, ["sport"])

    def test_other_users_tasks_are_never_selected(self, db, user, make_user, make_task):
        stranger = make_user("stranger")
        make_task(stranger.id, category=Category.FRIENDS)
        with pytest.raises(InvalidInputError):
            spin_wheel(db, user.id, ["friends"])

    def test_spin_outside_window_is_reused_for_same_task(self, db, user, make_task):
        make_task(user.id, category=Category.FAMILY)
        first = spin_wheel(db, user.id, ["family"])

        db.query(SpinResult).filter(SpinResult.id == first["spinResult"]["id"]).update(
            {SpinResult.spin_date: utc_now() - timedelta(hours=25)},
            synchronize_session=False,
        )
        db.commit()

        again = spin_wheel(db, user.id, ["family"])
        assert again["isNew"] is False
        assert again["spinResult"]["id"] == first["spinResult"]["id"]

    def test_without_exclusion_every_spin_is_new(self, db, user, make_task):
        make_task(user.id, category=Category.FAMILY)
        first = spin_wheel(db, user.id, ["family"], exclude_completed=False)
        second = spin_wheel(db, user.id, ["family"], exclude_completed=False)
        assert second["isNew"] is True
        assert second["spinResult"]["id"] != first["spinResult"]["id"]

    def test_pending_spin_in_other_category_does_not_block(self, db, user, three_tasks):
        nature = spin_wheel(db, user.id, ["nature"])
        sport = spin_wheel(db, user.id, ["sport"])
        assert sport["isNew"] is True
        assert sport["task"]["id"] == three_tasks[1].id
        assert sport["spinResult"]["id"] != nature["spinResult"]["id"]


class TestCompleteSpin:
    def test_awards_task_points(self, db, user, three_tasks):
        spin_id = spin_wheel(db, user.id, ["sport"])["spinResult"]["id"]

        spin = complete_spin(db, user.id, spin_id)

        assert spin.is_completed is True
        assert spin.completed_at is not None
        assert spin.points_earned == 20
        task = db.get(Task, three_tasks[1].id)
        assert task.status == TaskStatus.DONE
        assert task.completed_at is not None
        assert balance(db, user.id) == 20

    def test_second_completion_is_not_found(self, db, user, three_tasks):
        spin_id = spin_wheel(db, user.id, ["sport"])["spinResult"]["id"]
        complete_spin(db, user.id, spin_id)

        with pytest.raises(NotFoundError):
            complete_spin(db, user.id, spin_id)
        assert balance(db, user.id) == 20

    def test_task_already_done_is_not_awarded_twice(self, db, user, three_tasks):
        spin_id = spin_wheel(db, user.id, ["sport"])["spinResult"]["id"]
        update_task_status(db, user.id, three_tasks[1].id, "done")

        spin = complete_spin(db, user.id, spin_id)

        assert spin.points_earned == 20
        assert balance(db, user.id) == 20

    def test_deleted_task(self, db, user, three_tasks):
        spin_id = spin_wheel(db, user.id, ["sport"])["spinResult"]["id"]
        delete_task(db, user.id, three_tasks[1].id)

        with pytest.raises(NotFoundError):
            complete_spin(db, user.id, spin_id)

    def test_concurrent_completion_credits_once(self, db, session_factory, user, three_tasks):
        spin_id = spin_wheel(db, user.id, ["sport"])["spinResult"]["id"]
        first = session_factory()
        second = session_factory()
        fired = []

        @event.listens_for(second, "do_orm_execute")
        def finish_first(orm_execute_state):
            # The other request wins between our SELECT and our UPDATE
            if orm_execute_state.is_update and not fired:
                fired.append(True)
                complete_spin(first, user.id, spin_id)

        try:
            with pytest.raises(NotFoundError):
                complete_spin(second, user.id, spin_id)
        finally:
            first.close()
            second.close()

        assert fired
        assert balance(db, user.id) == 20
        db.expire_all()
        assert db.get(SpinResult, spin_id).points_earned == 20

    def test_other_users_spin(self, db, user, make_user, three_tasks):
        spin_id = spin_wheel(db, user.id, ["sport"])["spinResult"]["id"]
        intruder = make_user("intruder")

        with pytest.raises(NotFoundError):
            complete_spin(db, intruder.id, spin_id)
        assert balance(db, intruder.id) == 0

    def test_completed_task_leaves_the_wheel(self, db, user, three_tasks):
        spin_id = spin_wheel(db, user.id, ["sport"])["spinResult"]["id"]
        complete_spin(db, user.id, spin_id)

        with pytest.raises(InvalidInputError):
            spin_wheel(db, user.id, ["sport"])


class TestDeleteSpin:
    def test_delete_pending(self, db, user, three_tasks):
        spin_id = spin_wheel(db, user.id, ["sport"])["spinResult"]["id"]
        delete_spin_result(db, user.id, spin_id)

        assert db.query(SpinResult).count() == 0
        with pytest.raises(NotFoundError):
            delete_spin_result(db, user.id, spin_id)

    def test_completed_spin_cannot_be_deleted(self, db, user, three_tasks):
        spin_id = spin_wheel(db, user.id, ["sport"])["spinResult"]["id"]
        complete_spin(db, user.id, spin_id)

        with pytest.raises(NotFoundError):
            delete_spin_result(db, user.id, spin_id)

    def test_deleted_spin_frees_the_task(self, db, user, three_tasks):
        first = spin_wheel(db, user.id, ["sport"])
        delete_spin_result(db, user.id, first["spinResult"]["id"])

        again = spin_wheel(db, user.id, ["sport"])
        assert again["isNew"] is True


class TestHistoryAndStats:
    def test_history_with_stats(self, db, user, three_tasks):
        sport_spin = spin_wheel(db, user.id, ["sport"])["spinResult"]["id"]
        complete_spin(db, user.id, sport_spin)
        spin_wheel(db, user.id, ["nature"], rng=random.Random(3))

        history = get_spin_history(db, user.id, {})

        assert history["meta"] == {"page": 1, "limit": 10, "total": 2, "totalPages": 1}
        assert history["data"]["stats"]["totalSpins"] == 2
        assert history["data"]["stats"]["completedSpins"] == 1
        assert history["data"]["stats"]["totalPointsEarned"] == 20
        spins = history["data"]["spinResults"]
        assert spins[0]["category"] == "nature"
        assert spins[1]["task"]["title"] == "Run"

    def test_history_filters(self, db, user, three_tasks):
        sport_spin = spin_wheel(db, user.id, ["sport"])["spinResult"]["id"]
        complete_spin(db, user.id, sport_spin)
        spin_wheel(db, user.id, ["nature"])

        completed = get_spin_history(db, user.id, {"completed": "true"})
        assert [spin["category"] for spin in completed["data"]["spinResults"]] == ["sport"]
        assert completed["meta"]["total"] == 1

        nature = get_spin_history(db, user.id, {"category": "nature", "isCompleted": "false"})
        assert nature["meta"]["total"] == 1

        with pytest.raises(InvalidInputError):
            get_spin_history(db, user.id, {"completed": "maybe"})

    def test_empty_history(self, db, user):
        history = get_spin_history(db, user.id, None)
        assert history["data"]["spinResults"] == []
        assert history["data"]["stats"] == {
            "totalSpins": 0,
            "completedSpins": 0,
            "totalPointsEarned": 0,
            "favoriteCategory": None,
        }

    def test_favorite_category(self, db, user, make_task):
        make_task(user.id, title="Chess", category=Category.FRIENDS)
        make_task(user.id, title="Yoga", category=Category.MEDITATION)
        spin_wheel(db, user.id, ["friends"], exclude_completed=False)
        spin_wheel(db, user.id, ["friends"], exclude_completed=False)
        spin_wheel(db, user.id, ["meditation"], exclude_completed=False)

        stats = get_spin_history(db, user.id, {})["data"]["stats"]
        assert stats["favoriteCategory"] == "friends"

    def test_pending_spins(self, db, user, three_tasks):
        sport = spin_wheel(db, user.id, ["sport"])["spinResult"]["id"]
        nature = spin_wheel(db, user.id, ["nature"])["spinResult"]["id"]

        pending = get_pending_spins(db, user.id)
        assert [spin["id"] for spin in pending] == [nature, sport]
        assert pending[1]["task"]["title"] == "Run"

        delete_task(db, user.id, three_tasks[1].id)
        db.expire_all()
        pending = get_pending_spins(db, user.id)
        assert pending[1]["task"] is None

    def test_spins_by_category(self, db, user, three_tasks):
        completed = spin_wheel(db, user.id, ["sport"])["spinResult"]["id"]
        complete_spin(db, user.id, completed)
        spin_wheel(db, user.id, ["nature"], exclude_completed=False)
        spin_wheel(db, user.id, ["nature"], exclude_completed=False)
        spin_wheel(db, user.id, ["nature"], exclude_completed=False)

        rows = {row["category"]: row for row in get_spins_by_category(db, user.id)}
        assert rows["sport"] == {
            "category": "sport",
            "totalSpins": 1,
            "completedSpins": 1,
            "pointsEarned": 20,
            "completionRate": 100.0,
        }
        assert rows["nature"]["totalSpins"] == 3
        assert rows["nature"]["completionRate"] == 0.0
        assert "family" not in rows
