"""Seed database with demo data."""
from datetime import date, timedelta

from app.database import SessionLocal, init_db
from app.auth import get_password_hash
from app.models import User
from app.services.audit import AuditContext
from app.use_cases.orders import create_order_use_case


USERS = [
    {'name': 'Carlos Rodriguez', 'email': 'admin@example.com', 'password': 'admin123', 'role': 'admin'},
    {'name': 'Ana Martinez', 'email': 'manager@example.com', 'password': 'manager123', 'role': 'production_manager'},
    {'name': 'Miguel Torres', 'email': 'miguel@example.com', 'password': 'operator123', 'role': 'operator'},
    {'name': 'Laura Diaz', 'email': 'laura@example.com', 'password': 'operator123', 'role': 'operator'},
]


def seed():
    """Seed database with demo data."""
    init_db()
    db = SessionLocal()

    try:
        users = []
        for data in USERS:
            user = User(
                name=data['name'],
                email=data['email'],
                password_hash=get_password_hash(data['password']),
                role=data['role'],
            )
            db.add(user)
            users.append(user)
        db.commit()
        admin, manager, miguel, laura = users

        today = date.today()
        context = AuditContext(actor=manager, ip_address="127.0.0.1", user_agent="seed")
        orders_data = [
            {
                'kind': 'normal',
                'start_date': today - timedelta(days=10),
                'expected_end_date': today + timedelta(days=20),
                'tasks': [
                    {'description': 'Cut raw material', 'expected_end_date': today - timedelta(days=3),
                     'status': 'completed'},
                    {'description': 'Machine housings', 'expected_end_date': today + timedelta(days=5)},
                ],
                'user_ids': [miguel.id],
            },
            {
                'kind': 'urgent',
                'start_date': today - timedelta(days=5),
                'expected_end_date': today + timedelta(days=2),
                'deadline': today + timedelta(days=2),
                'tasks': [
                    {'description': 'Assemble prototype', 'expected_end_date': today - timedelta(days=1)},
                    {'description': 'Quality check', 'expected_end_date': today + timedelta(days=1)},
                ],
                'user_ids': [miguel.id, laura.id],
            },
            {
                'kind': 'urgent',
                'start_date': today,
                'expected_end_date': today + timedelta(days=7),
                'deadline': today + timedelta(days=6),
                'tasks': [
                    {'description': 'Prepare tooling', 'expected_end_date': today + timedelta(days=3)},
                ],
                'user_ids': [laura.id],
            },
        ]
        for data in orders_data:
            create_order_use_case(db=db, current_user=manager, data=data, context=context)

        print("Database seeded successfully!")
        print("\nDemo users:")
        for data in USERS:
            print(f"  {data['email']}/{data['password']} ({data['role']})")

    except Exception as e:
        db.rollback()
        print(f"Error seeding database: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed()
