import getpass

import psycopg2
from dotenv import load_dotenv
from passlib.hash import bcrypt

from backend.config import load_database_config

load_dotenv()


def main():
    username = input("Username: ").strip()
    email = input("Email: ").strip().lower() or None
    role = input("Role [staff]: ").strip().lower() or "staff"
    password = getpass.getpass("Password: ")
    pw_hash = bcrypt.hash(password)

    db_cfg = load_database_config().as_connect_kwargs()
    with psycopg2.connect(**db_cfg) as conn, conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO users (username, email, password_hash, role)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (username) DO NOTHING
            """,
            (username, email, pw_hash, role),
        )
        conn.commit()
    print("Done. (If username existed already, it was unchanged.)")


if __name__ == "__main__":
    main()
