#!/usr/bin/env python3
"""
Seed a demo firm for local development.

Creates "Demo Chambers" with one user per internal role, a client account,
a submitted case report and a matter assigned to the associate. Every account uses the password given on
the command line (default: demo-password).
"""

import argparse
from datetime import datetime

DEMO_DOMAIN = "demo.casebridge.local"


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed CaseBridge demo data.")
    parser.add_argument("--password", default="demo-password", help="Password for every demo account")
    args = parser.parse_args()

    from casebridge.auth import auth_context_for_user, get_password_hash
    from casebridge.db.models import AccountType, InternalRole, User, UserStatus
    from casebridge.db.session import get_db_session, init_db
    from casebridge import firms, matters

    init_db()

    with get_db_session() as db:
        admin_email = f"admin@{DEMO_DOMAIN}"
        if db.query(User).filter(User.email == admin_email).first():
            print("Demo data already present.")
            return 0

        registration, _ = firms.register_firm(
            db, "Demo Chambers", admin_email, args.password, "Ada", "Obi",
            firm_address="12 Marina Road, Lagos",
        )
        firm = firms.complete_firm_registration(db, registration)
        admin = db.query(User).filter(User.email == admin_email).first()
        admin.email_confirmed_at = admin.email_confirmed_at or datetime.utcnow()

        def staff(email, first, last, role):
            user = User(
                firm_id=firm.id,
                email=f"{email}@{DEMO_DOMAIN}",
                first_name=first,
                last_name=last,
                account_type=AccountType.STAFF,
                internal_role=role,
                status=UserStatus.ACTIVE,
                password_hash=get_password_hash(args.password),
            )
            user.email_confirmed_at = datetime.utcnow()
            db.add(user)
            return user

        manager = staff("manager", "Chidi", "Okafor", InternalRole.CASE_MANAGER)
        associate = staff("associate", "Bola", "Ade", InternalRole.ASSOCIATE_LAWYER)
        client = User(
            email=f"client@{DEMO_DOMAIN}",
            first_name="Kemi",
            last_name="Bello",
            account_type=AccountType.CLIENT,
            status=UserStatus.ACTIVE,
            password_hash=get_password_hash(args.password),
            email_confirmed_at=datetime.utcnow(),
        )
        db.add(client)
        db.commit()

        report = matters.submit_case_report(
            db, auth_context_for_user(client), "employment", "Unpaid final salary",
            "Former employer has not paid two months of salary since March.",
            jurisdiction="Lagos", preferred_firm_id=firm.id,
        )

        admin_auth = auth_context_for_user(admin)
        matter = matters.create_matter(
            db, admin_auth, client.id, "Tenancy dispute - 4 Allen Avenue",
            description="Landlord withholding deposit after lease end.",
            category="property",
            jurisdiction="Lagos",
        )
        matters.assign_matter(db, admin_auth, matter.id, associate.id, manager.id, "Demo assignment")

        print(f"Firm:      {firm.name} ({firm.id})")
        for user in (admin, manager, associate, client):
            print(f"  {user.email}")
        print(f"Matter:    {matter.title} ({matter.id})")
        print(f"Report:    {report.title} ({report.id})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
