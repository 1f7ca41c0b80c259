"""
Seed script: creates regions, HEIs, programs, semesters, academic years,
document locations and one user per role, then prints bearer tokens.
Run from the project root: python -m scripts.seed
"""
import asyncio
import sys
import os
import uuid

# Ensure the project root is on sys.path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select
from liquidation_api.database import AsyncSessionLocal
from liquidation_api.models.region import Region
from liquidation_api.models.hei import HEI
from liquidation_api.models.program import Program
from liquidation_api.models.semester import Semester
from liquidation_api.models.academic_year import AcademicYear
from liquidation_api.models.document_location import DocumentLocation
from liquidation_api.models.user import User
from liquidation_api.services.auth_service import create_access_token
from liquidation_api.services.permissions import (
    ROLE_SUPER_ADMIN,
    ROLE_ADMIN,
    ROLE_HEI,
    ROLE_REGIONAL_COORDINATOR,
    ROLE_ACCOUNTANT,
)

# ---------- Fixed UUIDs ----------

REGION_NCR_ID = uuid.UUID("10000000-0000-0000-0000-000000000001")
REGION_III_ID = uuid.UUID("10000000-0000-0000-0000-000000000003")

HEI_PUP_ID = uuid.UUID("20000000-0000-0000-0000-000000000001")
HEI_BULSU_ID = uuid.UUID("20000000-0000-0000-0000-000000000002")

USER_SUPER_ADMIN_ID = uuid.UUID("a0000000-0000-0000-0000-000000000001")
USER_ADMIN_ID = uuid.UUID("a0000000-0000-0000-0000-000000000002")
USER_HEI_ID = uuid.UUID("a0000000-0000-0000-0000-000000000003")
USER_RC_NCR_ID = uuid.UUID("a0000000-0000-0000-0000-000000000004")
USER_RC_III_ID = uuid.UUID("a0000000-0000-0000-0000-000000000005")
USER_ACCOUNTANT_ID = uuid.UUID("a0000000-0000-0000-0000-000000000006")

PROGRAMS = [
    ("TES", "Tertiary Education Subsidy"),
    ("TDP", "Tulong Dunong Program"),
    ("STUFAPS", "Student Financial Assistance Programs"),
    ("COSCHO", "CHED Scholarship Program"),
]

SEMESTERS = [
    ("1ST", "First Semester", 1),
    ("2ND", "Second Semester", 2),
    ("SUM", "Summer", 3),
]

DOCUMENT_LOCATIONS = [
    "Records Section",
    "Accounting Unit",
    "COA Office",
    "Archive Room",
]


async def seed():
    async with AsyncSessionLocal() as db:
        # Check if already seeded
        result = await db.execute(select(Region).where(Region.id == REGION_NCR_ID))
        if result.scalar_one_or_none():
            print("Seed data already exists. Skipping.")
            return

        # --- Regions ---
        db.add_all([
            Region(id=REGION_NCR_ID, code="NCR", name="National Capital Region"),
            Region(id=REGION_III_ID, code="III", name="Central Luzon"),
        ])
        await db.flush()

        # --- HEIs ---
        db.add_all([
            HEI(
                id=HEI_PUP_ID,
                uii="13001",
                code="PUP",
                name="Polytechnic University of the Philippines",
                region_id=REGION_NCR_ID,
            ),
            HEI(
                id=HEI_BULSU_ID,
                uii="03012",
                code="BULSU",
                name="Bulacan State University",
                region_id=REGION_III_ID,
            ),
        ])

        # --- Lookups ---
        db.add_all([Program(code=code, name=name) for code, name in PROGRAMS])
        db.add_all([
            Semester(code=code, name=name, sort_order=order)
            for code, name, order in SEMESTERS
        ])
        db.add_all([
            AcademicYear(code=f"{y}-{y + 1}", start_year=y, end_year=y + 1)
            for y in (2023, 2024, 2025)
        ])
        db.add_all([
            DocumentLocation(name=name, sort_order=i)
            for i, name in enumerate(DOCUMENT_LOCATIONS, start=1)
        ])
        await db.flush()

        # --- Users ---
        users = [
            User(id=USER_SUPER_ADMIN_ID, email="superadmin@example.com",
                 name="Super Admin", role=ROLE_SUPER_ADMIN),
            User(id=USER_ADMIN_ID, email="admin@example.com",
                 name="System Admin", role=ROLE_ADMIN),
            User(id=USER_HEI_ID, email="liquidation@pup.example.com",
                 name="PUP Scholarship Office", role=ROLE_HEI, hei_id=HEI_PUP_ID),
            User(id=USER_RC_NCR_ID, email="rc.ncr@example.com",
                 name="Regional Coordinator NCR", role=ROLE_REGIONAL_COORDINATOR,
                 region_id=REGION_NCR_ID),
            User(id=USER_RC_III_ID, email="rc.r3@example.com",
                 name="Regional Coordinator III", role=ROLE_REGIONAL_COORDINATOR,
                 region_id=REGION_III_ID),
            User(id=USER_ACCOUNTANT_ID, email="accounting@example.com",
                 name="Accounting Unit", role=ROLE_ACCOUNTANT),
        ]
        db.add_all(users)
        await db.commit()

        print("Seed complete. Bearer tokens:")
        for user in users:
            token = create_access_token(
                user_id=str(user.id),
                role=user.role,
                name=user.name,
                email=user.email,
                hei_id=str(user.hei_id) if user.hei_id else None,
                region_id=str(user.region_id) if user.region_id else None,
                expires_minutes=60 * 24 * 7,
            )
            print(f"  {user.role:<22} {user.email:<32} {token}")


if __name__ == "__main__":
    asyncio.run(seed())
