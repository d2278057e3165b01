"""
Seed demo outlets and staff accounts into the configured backend.

Creates a handful of outlets, then one sign-in account plus profile per
requested role. Managers are assigned to the outlets named with --manager-outlet
(or the first outlet when none are given).
"""

from __future__ import annotations

import argparse
import logging
import sys
import uuid
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from rental_backend.db import Outlet, UserProfile, UserRole
from rental_backend.dependencies import Backend, build_backend
from rental_backend.results import AuthApiError


logger = logging.getLogger(__name__)

DEMO_OUTLETS = [
    ("OUT-AND", "Andheri", "Mumbai", "Maharashtra"),
    ("OUT-BAN", "Bandra", "Mumbai", "Maharashtra"),
    ("OUT-KOR", "Koramangala", "Bengaluru", "Karnataka"),
]


def seed_outlets(backend: Backend) -> list[Outlet]:
    outlets = []
    for code, name, city, state in DEMO_OUTLETS:
        outlet = Outlet(
            id=str(uuid.uuid5(uuid.NAMESPACE_URL, f"outlet:{code}")),
            name=name,
            code=code,
            city=city,
            state=state,
        )
        backend.db.save_outlet(outlet)
        outlets.append(outlet)
    logger.info("Seeded %d outlets", len(outlets))
    return outlets


def seed_user(
    backend: Backend,
    *,
    email: str,
    password: str,
    full_name: str,
    role: UserRole,
) -> UserProfile | None:
    try:
        user = backend.auth.create_user(email, password)
    except AuthApiError as exc:
        logger.warning("Skipping %s: %s", email, exc.message)
        return None
    profile = UserProfile(id=user.id, email=user.email, full_name=full_name, role=role)
    backend.db.save_user_profile(profile)
    logger.info("Created %s account %s", role.value, user.email)
    return profile


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed demo rental data")
    parser.add_argument(
        "--password",
        default="demo-pass-123",
        help="Password for every seeded account",
    )
    parser.add_argument(
        "--domain",
        default="rental.test",
        help="Email domain for seeded accounts",
    )
    parser.add_argument(
        "--role",
        action="append",
        choices=[role.value for role in UserRole],
        help="Role to seed an account for (repeatable; default: admin and manager)",
    )
    parser.add_argument(
        "--manager-outlet",
        action="append",
        default=[],
        help="Outlet code to assign seeded managers to (repeatable)",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(message)s")
    backend = build_backend()

    outlets = seed_outlets(backend)
    by_code = {outlet.code: outlet for outlet in outlets}
    unknown = [code for code in args.manager_outlet if code not in by_code]
    if unknown:
        logger.error("Unknown outlet codes: %s", ", ".join(unknown))
        return 1
    manager_outlets = [by_code[code] for code in args.manager_outlet] or outlets[:1]

    for role_name in args.role or ["admin", "manager"]:
        role = UserRole(role_name)
        profile = seed_user(
            backend,
            email=f"{role.value}@{args.domain}",
            password=args.password,
            full_name=f"Demo {role.value.title()}",
            role=role,
        )
        if profile and role == UserRole.MANAGER:
            for outlet in manager_outlets:
                backend.db.assign_outlet(profile.id, outlet.id)
            logger.info(
                "Assigned %s to %s",
                profile.email,
                ", ".join(outlet.name for outlet in manager_outlets),
            )

    return 0


if __name__ == "__main__":
    sys.exit(main())
