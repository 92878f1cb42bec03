#!/usr/bin/env python3
"""
Create the payments/accounts tables for the sql backend.
Run from the project root: python -m scripts.init_db
"""
from app.db.base import Base
from app.db.session import engine
from app.models import account, payment  # noqa: F401  (register tables)


def main() -> None:
    Base.metadata.create_all(bind=engine)
    print(f"Tables ready: {', '.join(sorted(Base.metadata.tables))}")


if __name__ == "__main__":
    main()
