#!/usr/bin/env python3
"""
Database Initialization Script for the Campus Voting System
Run this script to initialize or reset the database with proper schema
"""

import os
import sys
from datetime import timedelta

sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from campusvote import database, elections, voters  # noqa: E402
from campusvote.models import utcnow  # noqa: E402
from campusvote.schemas import (  # noqa: E402
    CandidateCreate,
    ElectionCreate,
    PositionCreate,
    VoterCreate,
)

SAMPLE_ADMIN = VoterCreate(
    student_id="admin",
    name="Election Administrator",
    email="admin@student.university.edu",
    password="admin123",
    role="admin",
)

SAMPLE_STUDENT = VoterCreate(
    student_id="s1000001",
    name="Lumine Traveler",
    email="lumine@student.university.edu",
    password="student123",
    role="student",
)


def sample_election(days: int = 7) -> ElectionCreate:
    now = utcnow()
    return ElectionCreate(
        title="Student Council Election 2025",
        description="Annual student council election",
        start_date=now,
        end_date=now + timedelta(days=days),
        positions=[
            PositionCreate(
                id="president",
                title="President",
                candidates=[
                    CandidateCreate(id="alice", name="Alice Chen",
                                    bio="Engineering", goals="Innovation and progress for all students"),
                    CandidateCreate(id="bob", name="Bob Smith",
                                    bio="Business", goals="Financial responsibility and transparency"),
                ],
            ),
            PositionCreate(
                id="secretary",
                title="Secretary",
                candidates=[
                    CandidateCreate(id="carol", name="Carol Wang",
                                    bio="Arts", goals="Creative expression and student wellness"),
                    CandidateCreate(id="dan", name="Dan Okafor", bio="Science"),
                ],
            ),
        ],
    )


def seed_sample_data(db):
    """Create the sample admin, student and an active election"""
    admin = voters.get_voter(db, SAMPLE_ADMIN.student_id) or voters.create_voter(db, SAMPLE_ADMIN)
    student = voters.get_voter(db, SAMPLE_STUDENT.student_id) or voters.create_voter(db, SAMPLE_STUDENT)
    election = elections.create_election(db, sample_election(), admin.student_id)
    return admin, student, election


def init_database(db_path: str = "voting_system.db", interactive: bool = True, seed: bool = True):
    """Initialize or reset the database"""

    print("=" * 60)
    print("CAMPUS VOTING SYSTEM - DATABASE INITIALIZATION")
    print("=" * 60)

    # Check if database exists
    if os.path.exists(db_path):
        print("\nWARNING: Existing database found!")
        response = "yes"
        if interactive:
            response = input("Do you want to delete it and create a fresh one? (yes/no): ").lower()

        if response != "yes":
            print("Keeping existing database. Exiting...")
            return False
        os.remove(db_path)
        print("Old database deleted successfully.")

    print("\nCreating new database with latest schema...")
    database.configure(f"sqlite:///{db_path}")
    database.init_db()

    if seed:
        with database.SessionLocal() as db:
            admin, student, election = seed_sample_data(db)
            print("Sample data created successfully!")
            print(f"   - admin login: {admin.student_id} / {SAMPLE_ADMIN.password}")
            print(f"   - student login: {student.student_id} / {SAMPLE_STUDENT.password}")
            print(f"   - 1 active election: '{election.title}' ({election.id})")

    print("\n" + "=" * 60)
    print("DATABASE INITIALIZATION COMPLETE!")
    print("=" * 60)
    print("\nYou can now run:")
    print("  uvicorn campusvote.backend:app --port 8000")
    return True


if __name__ == "__main__":
    path = sys.argv[1] if len(sys.argv) > 1 else "voting_system.db"
    success = init_database(path)
    if not success:
        sys.exit(1)
