"""
Seed the configured database with demo users, tasks and one spin.

Usage:
    python seed_sample_data.py
"""
import random
from datetime import timedelta

from sqlalchemy import text

from app.date_utils import utc_now
from app.db import engine, get_db_session, init_db
from app.models import Category, SpinResult, Task, User
from app.spin_service import spin_wheel
from app.task_service import create_task, update_task_status
from app.user_service import ensure_admin, register_user

USERS = [
    ("Ayesha Rahman", "ayesha@example.com", "ayesha*123"),
    ("Tanvir Hasan", "tanvir@example.com", "tanvir*123"),
]

TASKS = [
    ("Paint a birdhouse", "Use the leftover wood from the shed.", Category.ARTS_AND_CRAFTS, 20),
    ("Morning walk in the park", "Thirty minutes before breakfast.", Category.NATURE, 10),
    ("Call grandparents", "Catch up on the week.", Category.FAMILY, 15),
    ("Play badminton", "Book the court for Saturday.", Category.SPORT, 25),
    ("Board game night", "Invite the neighbours.", Category.FRIENDS, 10),
    ("Ten minute breathing session", "Box breathing, 4-4-4-4.", Category.MEDITATION, 5),
    ("Plant tomato seedlings", "Balcony pots, water daily.", Category.NATURE, 15),
]


def main() -> None:
    init_db()

    with engine.begin() as conn:
        conn.execute(text("DELETE FROM spin_results"))
        conn.execute(text("DELETE FROM tasks"))
        conn.execute(text("DELETE FROM users"))

    with get_db_session() as db:
        ensure_admin(db, "admin@example.com", "admin*123")

        user_ids = []
        for name, email, password in USERS:
            user = register_user(db, {
                "name": name,
                "email": email,
                "password": password,
                "confirm_password": password,
            })
            user_ids.append(user.id)

        rng = random.Random(7)
        for user_id in user_ids:
            for title, description, category, points in TASKS:
                create_task(db, user_id, {
                    "title": title,
                    "description": description,
                    "category": category,
                    "points": points,
                    "due_date": utc_now() + timedelta(days=rng.randint(2, 14)),
                })

        first_task = db.query(Task).filter(Task.user_id == user_ids[0]).order_by(Task.id).first()
        update_task_status(db, user_ids[0], first_task.id, "done")
        spin_wheel(db, user_ids[0], [Category.NATURE.value, Category.SPORT.value], rng=rng)

        counts = {
            "users": db.query(User).count(),
            "tasks": db.query(Task).count(),
            "spin_results": db.query(SpinResult).count(),
        }
        seeded_users = [(u.id, u.email, u.role.value, u.points) for u in db.query(User).order_by(User.id)]

    print("Seeding complete:", counts)
    print("Users:", seeded_users)


if __name__ == "__main__":
    main()
