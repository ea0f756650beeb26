from __future__ import annotations

import argparse

from sqlalchemy import select

from compound_access.db.base import Base
from compound_access.db.session import SessionLocal, engine

# Import models to register with SQLAlchemy
import compound_access.models  # noqa: F401
from compound_access.models.billing import Service
from compound_access.models.compound import Compound
from compound_access.services.entitlement_resolver import REQUIRED_SERVICES


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create tables and optionally seed the service catalogue for a compound")
    parser.add_argument("--compound-id", help="Seed the services entitlements depend on for this compound")
    args = parser.parse_args(argv)

    Base.metadata.create_all(bind=engine)

    if args.compound_id:
        db = SessionLocal()
        try:
            compound = db.get(Compound, args.compound_id)
            if compound is None:
                print(f"compound not found: {args.compound_id}")
                return 1

            existing = set(db.execute(select(Service.name).where(Service.compound_id == compound.id)).scalars().all())
            for name in sorted(set(REQUIRED_SERVICES.values())):
                if name not in existing:
                    db.add(Service(compound_id=compound.id, name=name))
            db.commit()
        finally:
            db.close()

    print("DB initialized")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
