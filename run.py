import os

from dotenv import load_dotenv

from filegate import create_app, Base
from filegate.seed import seed_admin


def init_db():
    app = create_app()
    engine = app.db_engine
    print(f"Creating tables on {engine}")
    Base.metadata.create_all(bind=engine)
    print("Tables created")

    email = os.environ.get('ADMIN_EMAIL')
    password = os.environ.get('ADMIN_PASSWORD')
    if email and password:
        admin = seed_admin(app, email, password)
        app.audit.flush()
        print(f"Admin created: {admin.email}" if admin else f"Admin already exists: {email}")


if __name__ == '__main__':
    load_dotenv()
    init_db()
