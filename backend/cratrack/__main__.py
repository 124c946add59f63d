from __future__ import annotations

import argparse

import uvicorn

from .config import settings


def main() -> None:
    parser = argparse.ArgumentParser(prog="cratrack")
    parser.add_argument("command", nargs="?", default="serve", choices=["serve", "seed"])
    parser.add_argument("--user", default="demo-user", help="user id attached to the seeded company")
    args = parser.parse_args()

    if args.command == "seed":
        from . import models
        from .database import db_session, engine
        from .seed import seed_demo

        models.Base.metadata.create_all(bind=engine)
        with db_session() as db:
            company, mission = seed_demo(db, args.user)
            print(f"company={company.id} mission={mission.id} user={args.user}")
        return

    uvicorn.run("cratrack.main:app", host=settings.host, port=settings.port, reload=False)


if __name__ == "__main__":
    main()
